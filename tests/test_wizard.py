import asyncio
import random

import pytest
from pydantic import ValidationError

from errors import ApiError
from wizard import (
    InvalidTransition,
    LoadProfile,
    NoEndpointsSelected,
    Step,
    Wizard,
    WizardError,
    WizardWarning,
    simulated_executor,
)


def wizard_at_review(executor=None):
    w = Wizard(executor or simulated_executor(delay=0, rng=random.Random(1)))
    w.start()
    w.select_application("cdr-clinical")
    w.toggle_api("ep-1")
    w.toggle_api("ep-3")
    w.continue_to_configure()
    w.review()
    return w


def test_start_moves_to_application():
    w = Wizard()

    w.start()

    assert w.step == Step.APPLICATION
    assert w.breadcrumbs() == ["Dashboard", "Select Application"]


def test_selecting_application_clears_previous_endpoints():
    w = Wizard()
    w.start()
    w.select_application("cdr-clinical")
    w.select_all_apis()
    w.back()

    w.select_application("member-portal")

    assert w.step == Step.APIS
    assert w.selected_api_ids == []
    assert w.breadcrumbs() == ["Dashboard", "Member Portal API", "API Selection"]


def test_forward_moves_need_the_predecessor_step():
    w = Wizard()

    with pytest.raises(InvalidTransition):
        w.select_application("cdr-clinical")
    with pytest.raises(InvalidTransition):
        w.review()
    assert w.step == Step.DASHBOARD


def test_unknown_application_is_rejected():
    w = Wizard()
    w.start()

    with pytest.raises(WizardError):
        w.select_application("radiology")
    assert w.step == Step.APPLICATION


def test_continue_without_endpoints_warns_and_stays():
    w = Wizard()
    w.start()
    w.select_application("cdr-clinical")

    with pytest.raises(NoEndpointsSelected) as info:
        w.continue_to_configure()

    assert info.value.notice.title == "No APIs selected"
    assert info.value.notice.variant == "destructive"
    assert w.step == Step.APIS
    assert w.selected_api_ids == []


def test_toggle_adds_and_removes():
    w = Wizard()
    w.start()
    w.select_application("cdr-clinical")

    w.toggle_api("ep-2")
    w.toggle_api("ep-4")
    w.toggle_api("ep-2")

    assert w.selected_api_ids == ["ep-4"]
    w.clear_apis()
    assert w.selected_api_ids == []


def test_back_preserves_selections():
    w = wizard_at_review()

    w.back()
    w.back()

    assert w.step == Step.APIS
    assert w.selected_api_ids == ["ep-1", "ep-3"]
    assert w.application_id == "cdr-clinical"


def test_back_from_dashboard_is_invalid():
    with pytest.raises(InvalidTransition):
        Wizard().back()


def test_update_profile_validates_values():
    w = wizard_at_review()
    w.back()

    w.update_profile(virtual_users=250, response_time_threshold=400)
    assert w.profile.virtual_users == 250

    with pytest.raises(ValidationError):
        w.update_profile(duration=0)
    assert w.profile.duration == LoadProfile().duration


def test_step_indicator_tracks_progress():
    w = wizard_at_review()

    statuses = [(s.label, s.status) for s in w.step_indicator()]

    assert statuses == [
        ("Application", "completed"),
        ("APIs", "completed"),
        ("Configure", "completed"),
        ("Review", "active"),
        ("Results", "pending"),
    ]


def test_k6_preview_reflects_profile():
    w = wizard_at_review()
    w.back()
    w.update_profile(response_time_threshold=500, error_rate_threshold=1)
    w.review()

    preview = w.k6_preview()

    assert preview["application"] == {"id": "cdr-clinical", "name": "CDR Clinical API"}
    assert preview["endpoints"] == [
        {"method": "GET", "path": "/api/v1/patients"},
        {"method": "GET", "path": "/api/v1/patients/{id}/records"},
    ]
    stages = preview["configuration"]["scenarios"]["main"]["stages"]
    assert stages == [{"duration": "5m", "target": 100}, {"duration": "10m", "target": 100}]
    assert preview["configuration"]["thresholds"] == {
        "http_req_duration": ["p(95)<500"],
        "http_req_failed": ["rate<0.01"],
    }


@pytest.mark.asyncio
async def test_save_builds_submission_then_lands_on_results():
    w = wizard_at_review()

    task = w.save_and_trigger("  Nightly baseline ")

    assert w.step == Step.REVIEW
    assert w.submission == {
        "name": "Nightly baseline",
        "applicationId": "cdr-clinical",
        "selectedApiIds": ["ep-1", "ep-3"],
        "virtualUsers": 100,
        "rampUpTime": 5,
        "duration": 10,
        "thinkTime": 3,
    }

    await task

    assert w.step == Step.RESULTS
    assert w.run["status"] == "completed"
    assert w.results["totalRequests"] == 100 * 10 * 50
    assert w.insight() is not None
    assert w.banner is None


@pytest.mark.asyncio
async def test_blank_name_is_refused():
    w = wizard_at_review()

    with pytest.raises(WizardWarning):
        w.save_and_trigger("   ")
    assert w.step == Step.REVIEW
    assert not w.is_running


@pytest.mark.asyncio
async def test_navigating_away_discards_pending_run():
    w = wizard_at_review(simulated_executor(delay=30))

    task = w.save_and_trigger("slow")
    w.back()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert w.step == Step.CONFIGURE
    assert w.run is None


@pytest.mark.asyncio
async def test_reset_cancels_pending_run():
    w = wizard_at_review(simulated_executor(delay=30))
    task = w.save_and_trigger("slow")

    w.reset()
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert w.step == Step.DASHBOARD
    assert w.application_id is None


@pytest.mark.asyncio
async def test_failed_submission_shows_banner_and_allows_retry():
    attempts = []

    async def flaky(submission):
        attempts.append(submission["name"])
        if len(attempts) == 1:
            raise ApiError("connection refused")
        return await simulated_executor(delay=0)(submission)

    w = wizard_at_review(flaky)

    await w.save_and_trigger("first")
    assert w.step == Step.REVIEW
    assert w.banner.title == "Could not run load test"
    assert w.banner.description == "connection refused"

    await w.save_and_trigger("second")
    assert w.step == Step.RESULTS
    assert attempts == ["first", "second"]


@pytest.mark.asyncio
async def test_new_test_resets_everything():
    w = wizard_at_review()
    w.back()
    w.update_profile(virtual_users=5)
    w.review()
    await w.save_and_trigger("run")

    w.new_test()

    assert w.step == Step.DASHBOARD
    assert w.selected_api_ids == []
    assert w.profile == LoadProfile()
    assert w.results is None
    assert w.breadcrumbs() == ["Dashboard"]


@pytest.mark.asyncio
async def test_run_again_returns_to_review():
    w = wizard_at_review()
    await w.save_and_trigger("run")

    w.back()

    assert w.step == Step.REVIEW
    assert w.selected_api_ids == ["ep-1", "ep-3"]


def test_update_profile_stores_validated_values():
    w = wizard_at_review()
    w.back()

    w.update_profile(response_time_threshold="400", error_rate_threshold="1.5")
    w.review()

    assert w.profile.response_time_threshold == 400.0
    assert isinstance(w.profile.error_rate_threshold, float)
    assert w.k6_preview()["configuration"]["thresholds"] == {
        "http_req_duration": ["p(95)<400"],
        "http_req_failed": ["rate<0.015"],
    }


@pytest.mark.parametrize("value", ["250", True])
def test_update_profile_rejects_non_integer_counts(value):
    w = wizard_at_review()
    w.back()

    with pytest.raises(ValidationError):
        w.update_profile(virtual_users=value)
    assert w.profile.virtual_users == LoadProfile().virtual_users


def test_application_search_narrows_the_catalog():
    w = Wizard()
    w.start()

    w.search_applications("  CLINICAL ")

    assert [a.id for a in w.visible_applications()] == ["cdr-clinical", "clinical-data"]
    w.search_applications("")
    assert len(w.visible_applications()) == 6


def test_favorites_tab_lists_only_favorites():
    w = Wizard()
    w.start()

    assert w.toggle_favorite("pharmacy-network").title == "Added to favorites"
    w.toggle_favorite("member-portal")
    assert w.toggle_favorite("member-portal").title == "Removed from favorites"
    w.show_tab("favorites")

    assert [a.id for a in w.visible_applications()] == ["pharmacy-network"]
    with pytest.raises(WizardError):
        w.show_tab("recent")
    with pytest.raises(WizardError):
        w.toggle_favorite("radiology")


def test_favorites_survive_reset():
    w = Wizard()
    w.toggle_favorite("cdr-clinical")
    w.show_tab("favorites")

    w.reset()

    assert w.favorites == {"cdr-clinical"}
    assert [a.id for a in w.visible_applications()] == ["cdr-clinical"]
