"""Request/response shapes for configurations and runs.

Bodies travel as camelCase JSON; attributes are snake_case so the models can
be built straight from ORM rows.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from errors import InvalidRunStateError

RunStatus = Literal["pending", "running", "completed", "failed"]
FINISHED_STATUSES = ("completed", "failed")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite hands timestamps back without tzinfo; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dedupe(ids: List[str]) -> List[str]:
    seen = []
    for api_id in ids:
        if api_id not in seen:
            seen.append(api_id)
    return seen


class TestResults(CamelModel):
    avg_response_time: float = Field(ge=0)
    p95_response_time: float = Field(ge=0)
    p99_response_time: float = Field(ge=0)
    error_rate: float = Field(ge=0, le=100)
    requests_per_second: float = Field(ge=0)
    # older records only carry the latency/error figures
    total_requests: int | None = Field(default=None, ge=0)
    successful_requests: int | None = Field(default=None, ge=0)
    failed_requests: int | None = Field(default=None, ge=0)


class TestConfigurationCreate(CamelModel):
    name: str = Field(min_length=1)
    application_id: str = Field(min_length=1)
    selected_api_ids: List[str] = Field(min_length=1)
    # strict: JSON booleans and numeric strings are not counts
    virtual_users: int = Field(ge=1, strict=True)
    ramp_up_time: int = Field(ge=1, strict=True)
    duration: int = Field(ge=1, strict=True)
    think_time: int = Field(ge=1, strict=True)
    response_time_threshold: float | None = Field(default=None, gt=0)
    error_rate_threshold: float | None = Field(default=None, gt=0)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("selected_api_ids")
    @classmethod
    def _collapse_duplicates(cls, v: List[str]) -> List[str]:
        return _dedupe(v)


class TestConfigurationUpdate(CamelModel):
    """Partial update: any subset of the create fields, same constraints."""

    name: str | None = Field(default=None, min_length=1)
    application_id: str | None = Field(default=None, min_length=1)
    selected_api_ids: List[str] | None = Field(default=None, min_length=1)
    virtual_users: int | None = Field(default=None, ge=1, strict=True)
    ramp_up_time: int | None = Field(default=None, ge=1, strict=True)
    duration: int | None = Field(default=None, ge=1, strict=True)
    think_time: int | None = Field(default=None, ge=1, strict=True)
    response_time_threshold: float | None = Field(default=None, gt=0)
    error_rate_threshold: float | None = Field(default=None, gt=0)

    @field_validator(
        "name",
        "application_id",
        "selected_api_ids",
        "virtual_users",
        "ramp_up_time",
        "duration",
        "think_time",
    )
    @classmethod
    def _required_fields_not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("selected_api_ids")
    @classmethod
    def _collapse_duplicates(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TestConfigurationOut(CamelModel):
    id: str
    name: str
    application_id: str
    selected_api_ids: List[str]
    virtual_users: int
    ramp_up_time: int
    duration: int
    think_time: int
    response_time_threshold: float | None = None
    error_rate_threshold: float | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, v):
        return as_utc(v)


def check_run_state(status: str, results: Any, completed_at: datetime | None = None) -> None:
    """Results are present exactly when the run completed; completedAt only on a finished run."""
    if status == "completed" and results is None:
        raise InvalidRunStateError("A completed run requires results")
    if status != "completed" and results is not None:
        raise InvalidRunStateError(f"A {status} run cannot carry results")
    if status not in FINISHED_STATUSES and completed_at is not None:
        raise InvalidRunStateError(f"A {status} run cannot have a completion time")


class TestRunCreate(CamelModel):
    test_configuration_id: str = Field(min_length=1)
    status: RunStatus = "pending"
    completed_at: datetime | None = None
    results: TestResults | None = None

    @field_validator("completed_at")
    @classmethod
    def _utc_completed_at(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def _results_match_status(self):
        if self.status == "completed" and self.results is None:
            raise ValueError("a completed run requires results")
        if self.status != "completed" and self.results is not None:
            raise ValueError("results are only allowed on a completed run")
        if self.status not in FINISHED_STATUSES and self.completed_at is not None:
            raise ValueError("completedAt is only allowed on a completed or failed run")
        return self


class TestRunUpdate(CamelModel):
    status: RunStatus | None = None
    completed_at: datetime | None = None
    results: TestResults | None = None

    @field_validator("completed_at")
    @classmethod
    def _utc_completed_at(cls, v):
        return as_utc(v)

    @field_validator("status")
    @classmethod
    def _status_not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if data.get("results") is not None:
            data["results"] = dump_results(self.results)
        return data


class TestRunOut(CamelModel):
    id: str
    test_configuration_id: str
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    results: Dict[str, Any] | None = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _utc_timestamps(cls, v):
        return as_utc(v)


def dump_results(results: TestResults | None) -> Dict[str, Any] | None:
    """Results are stored in their wire (camelCase) form."""
    if results is None:
        return None
    return results.model_dump(by_alias=True, exclude_none=True)


def format_validation_error(exc: ValidationError | List[Dict[str, Any]]) -> str:
    """Flatten every field violation into one readable sentence."""
    errors = exc.errors() if isinstance(exc, ValidationError) else exc
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "Validation error: " + "; ".join(parts)
