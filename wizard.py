"""Step-by-step load test wizard.

The wizard walks dashboard -> application -> apis -> configure -> review ->
results. Forward moves only happen from the immediate predecessor; ``back``
is always allowed and keeps whatever has been selected so far. Saving from
``review`` builds the configuration payload right away and schedules the run
as an ``asyncio.Task``; the wizard lands on ``results`` only when that task
delivers. Any navigation away from ``review`` cancels the pending task so a
late result cannot overwrite a newer flow.
"""
import asyncio
import enum
import logging
import random
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from catalog import APPLICATIONS, Application, get_application
from errors import ApiError
from results import Insight, simulate_results, summarize
from schemas import TestConfigurationCreate, TestConfigurationUpdate

logger = logging.getLogger(__name__)

SIMULATED_RUN_DELAY = 1.5

Executor = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class Step(str, enum.Enum):
    DASHBOARD = "dashboard"
    APPLICATION = "application"
    APIS = "apis"
    CONFIGURE = "configure"
    REVIEW = "review"
    RESULTS = "results"


ORDER = [Step.DASHBOARD, Step.APPLICATION, Step.APIS, Step.CONFIGURE, Step.REVIEW, Step.RESULTS]

# numbered steps shown in the indicator; the dashboard is not one of them
INDICATOR_LABELS = [
    (Step.APPLICATION, "Application"),
    (Step.APIS, "APIs"),
    (Step.CONFIGURE, "Configure"),
    (Step.REVIEW, "Review"),
    (Step.RESULTS, "Results"),
]

BREADCRUMB_TAILS = {
    Step.APIS: "API Selection",
    Step.CONFIGURE: "Configure Test",
    Step.REVIEW: "Review",
    Step.RESULTS: "Test Results",
}

APPLICATION_TABS = ("all", "favorites")


@dataclass(frozen=True)
class Notice:
    title: str
    description: str = ""
    variant: str = "default"


class WizardError(Exception):
    pass


class InvalidTransition(WizardError):
    def __init__(self, action: str, step: Step):
        super().__init__(f"cannot {action} from the {step.value} step")
        self.action = action
        self.step = step


class WizardWarning(WizardError):
    """A user-facing refusal; the wizard state is left untouched."""

    def __init__(self, notice: Notice):
        super().__init__(notice.title)
        self.notice = notice


class NoEndpointsSelected(WizardWarning):
    def __init__(self):
        super().__init__(
            Notice(
                title="No APIs selected",
                description="Please select at least one API endpoint",
                variant="destructive",
            )
        )


@dataclass(frozen=True)
class LoadProfile:
    virtual_users: int = 100
    ramp_up_time: int = 5
    duration: int = 10
    think_time: int = 3
    response_time_threshold: Optional[float] = None
    error_rate_threshold: Optional[float] = None


@dataclass(frozen=True)
class StepState:
    number: int
    label: str
    status: str  # completed | active | pending


def simulated_executor(delay: float = SIMULATED_RUN_DELAY, rng: Optional[random.Random] = None) -> Executor:
    """Produce a completed run locally after ``delay`` seconds. Nothing is sent anywhere."""

    async def execute(submission: Dict[str, Any]) -> Dict[str, Any]:
        started = datetime.now(timezone.utc)
        await asyncio.sleep(delay)
        return {
            "id": str(uuid.uuid4()),
            "testConfigurationId": None,
            "status": "completed",
            "startedAt": started.isoformat(),
            "completedAt": datetime.now(timezone.utc).isoformat(),
            "results": simulate_results(submission["virtualUsers"], submission["duration"], rng),
        }

    return execute


def remote_executor(client, poll_interval: float = 0.5) -> Executor:
    """Persist the submission through the API and wait for the triggered run."""

    async def execute(submission: Dict[str, Any]) -> Dict[str, Any]:
        return await client.submit(submission, poll_interval=poll_interval)

    return execute


class Wizard:
    def __init__(self, executor: Optional[Executor] = None):
        self.executor = executor or simulated_executor()
        self.step = Step.DASHBOARD
        self.application_id: Optional[str] = None
        self.selected_api_ids: List[str] = []
        self.profile = LoadProfile()
        self.submission: Optional[Dict[str, Any]] = None
        self.run: Optional[Dict[str, Any]] = None
        self.banner: Optional[Notice] = None
        self._pending: Optional[asyncio.Task] = None
        # application picker preferences; kept across resets
        self.app_search = ""
        self.app_tab = "all"
        self.favorites: Set[str] = set()

    # ---- derived state ----

    @property
    def application(self) -> Optional[Application]:
        return get_application(self.application_id) if self.application_id else None

    @property
    def results(self) -> Optional[Dict[str, Any]]:
        return self.run["results"] if self.run else None

    @property
    def is_running(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def visible_applications(self) -> List[Application]:
        """Catalog entries matching the search text and the active tab."""
        query = self.app_search.strip().lower()
        return [
            app
            for app in APPLICATIONS.values()
            if query in app.name.lower() and (self.app_tab == "all" or app.id in self.favorites)
        ]

    def step_indicator(self) -> List[StepState]:
        current = ORDER.index(self.step)
        states = []
        for number, (step, label) in enumerate(INDICATOR_LABELS, start=1):
            position = ORDER.index(step)
            if position == current:
                status = "active"
            elif position < current:
                status = "completed"
            else:
                status = "pending"
            states.append(StepState(number, label, status))
        return states

    def breadcrumbs(self) -> List[str]:
        if self.step == Step.DASHBOARD:
            return ["Dashboard"]
        if self.step == Step.APPLICATION:
            return ["Dashboard", "Select Application"]
        app_name = self.application.name if self.application else "Application"
        return ["Dashboard", app_name, BREADCRUMB_TAILS[self.step]]

    def default_name(self) -> str:
        return f"{self.application.name} Test" if self.application else ""

    def k6_preview(self) -> Dict[str, Any]:
        """The k6 scenario the current selections would translate to."""
        app = self.application
        endpoints = []
        if app:
            for api_id in self.selected_api_ids:
                ep = app.endpoint(api_id)
                if ep:
                    endpoints.append({"method": ep.method, "path": ep.path})

        p = self.profile
        thresholds = {}
        if p.response_time_threshold:
            thresholds["http_req_duration"] = [f"p(95)<{p.response_time_threshold:g}"]
        if p.error_rate_threshold:
            thresholds["http_req_failed"] = [f"rate<{p.error_rate_threshold / 100:g}"]

        return {
            "application": {"id": app.id, "name": app.name} if app else None,
            "endpoints": endpoints,
            "configuration": {
                "scenarios": {
                    "main": {
                        "executor": "ramping-vus",
                        "startVUs": 0,
                        "stages": [
                            {"duration": f"{p.ramp_up_time}m", "target": p.virtual_users},
                            {"duration": f"{p.duration}m", "target": p.virtual_users},
                        ],
                    }
                },
                "thresholds": thresholds,
            },
        }

    def insight(self) -> Optional[Insight]:
        if not self.results:
            return None
        return summarize(self.results, self.profile.response_time_threshold, self.profile.error_rate_threshold)

    # ---- transitions ----

    def _require(self, step: Step, action: str):
        if self.step != step:
            raise InvalidTransition(action, self.step)

    def _cancel_pending(self):
        if self._pending is not None and not self._pending.done():
            logger.info("discarding pending run for %r", (self.submission or {}).get("name"))
            self._pending.cancel()
        self._pending = None

    def start(self):
        self._require(Step.DASHBOARD, "start")
        self._cancel_pending()
        self.step = Step.APPLICATION

    def search_applications(self, query: str):
        self.app_search = query or ""

    def show_tab(self, tab: str):
        if tab not in APPLICATION_TABS:
            raise WizardError(f"unknown tab {tab!r}")
        self.app_tab = tab

    def toggle_favorite(self, app_id: str) -> Notice:
        if get_application(app_id) is None:
            raise WizardError(f"unknown application {app_id!r}")
        if app_id in self.favorites:
            self.favorites.discard(app_id)
            return Notice(title="Removed from favorites")
        self.favorites.add(app_id)
        return Notice(title="Added to favorites")

    def select_application(self, app_id: str):
        self._require(Step.APPLICATION, "select an application")
        if get_application(app_id) is None:
            raise WizardError(f"unknown application {app_id!r}")
        self.application_id = app_id
        self.selected_api_ids = []
        self.step = Step.APIS

    def toggle_api(self, api_id: str):
        self._require(Step.APIS, "toggle an endpoint")
        if self.application.endpoint(api_id) is None:
            raise WizardError(f"unknown endpoint {api_id!r} for {self.application_id}")
        if api_id in self.selected_api_ids:
            self.selected_api_ids = [i for i in self.selected_api_ids if i != api_id]
        else:
            self.selected_api_ids = self.selected_api_ids + [api_id]

    def select_all_apis(self):
        self._require(Step.APIS, "select endpoints")
        self.selected_api_ids = [ep.id for ep in self.application.endpoints]

    def clear_apis(self):
        self._require(Step.APIS, "clear endpoints")
        self.selected_api_ids = []

    def continue_to_configure(self):
        self._require(Step.APIS, "continue to configuration")
        if not self.selected_api_ids:
            raise NoEndpointsSelected()
        self.step = Step.CONFIGURE

    def update_profile(self, **changes):
        """Change load parameters; values go through the same checks as a saved configuration."""
        self._require(Step.CONFIGURE, "change the load profile")
        unknown = set(changes) - set(LoadProfile.__dataclass_fields__)
        if unknown:
            raise WizardError(f"unknown load parameter(s): {', '.join(sorted(unknown))}")
        validated = TestConfigurationUpdate(**changes).model_dump(exclude_unset=True)
        self.profile = replace(self.profile, **validated)

    def review(self):
        self._require(Step.CONFIGURE, "review")
        self.step = Step.REVIEW

    def build_submission(self, name: str) -> Dict[str, Any]:
        config = TestConfigurationCreate(
            name=name,
            application_id=self.application_id,
            selected_api_ids=self.selected_api_ids,
            virtual_users=self.profile.virtual_users,
            ramp_up_time=self.profile.ramp_up_time,
            duration=self.profile.duration,
            think_time=self.profile.think_time,
            response_time_threshold=self.profile.response_time_threshold,
            error_rate_threshold=self.profile.error_rate_threshold,
        )
        return config.model_dump(by_alias=True, exclude_none=True)

    def save_and_trigger(self, name: str) -> asyncio.Task:
        """Submit from ``review``; must be called with an event loop running."""
        self._require(Step.REVIEW, "save and trigger")
        if not name or not name.strip():
            raise WizardWarning(Notice(title="Test name required", variant="destructive"))

        self._cancel_pending()
        self.submission = self.build_submission(name)
        self.banner = Notice(
            title="Load test triggered!",
            description=(
                f"Testing {len(self.selected_api_ids)} APIs with "
                f"{self.profile.virtual_users} virtual users"
            ),
        )
        self._pending = asyncio.get_running_loop().create_task(self._await_run(self.submission))
        return self._pending

    async def _await_run(self, submission: Dict[str, Any]):
        try:
            run = await self.executor(submission)
        except ApiError as exc:
            logger.warning("load test submission failed: %s", exc)
            if self._pending is asyncio.current_task():
                self.banner = Notice(title="Could not run load test", description=exc.message, variant="destructive")
                self._pending = None
            return None

        # a newer flow may have replaced this task while the executor was finishing
        if self._pending is not asyncio.current_task() or self.step != Step.REVIEW:
            return None
        self.run = run
        self.banner = None
        self._pending = None
        self.step = Step.RESULTS
        return run

    def back(self):
        if self.step == Step.DASHBOARD:
            raise InvalidTransition("go back", self.step)
        self._cancel_pending()
        self.step = ORDER[ORDER.index(self.step) - 1]

    def new_test(self):
        """Leave the results page and clear everything for a fresh run."""
        self._require(Step.RESULTS, "start a new test")
        self.reset()

    def reset(self):
        self._cancel_pending()
        self.step = Step.DASHBOARD
        self.application_id = None
        self.selected_api_ids = []
        self.profile = LoadProfile()
        self.submission = None
        self.run = None
        self.banner = None
