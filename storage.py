"""Persistence operations for test configurations and runs.

Every function takes an open ``Session``; callers own its lifecycle (the API
gets one from ``database.get_db``, the worker from ``SessionLocal``). Lookups
return ``None`` for an unknown id; SQLAlchemy failures are re-raised as
``StorageError`` after the session is rolled back.
"""
import logging
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, StorageError
from models import TestConfiguration, TestRun, utcnow
from schemas import (
    FINISHED_STATUSES,
    TestConfigurationCreate,
    TestRunCreate,
    as_utc,
    check_run_state,
    dump_results,
)

logger = logging.getLogger(__name__)

DEFAULT_RUNS_LIMIT = 50
MAX_RUNS_LIMIT = 500


def _wrap_storage_errors(fn):
    @wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        try:
            return fn(db, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("storage operation %s failed: %s", fn.__name__, exc)
            raise StorageError(f"{fn.__name__} failed") from exc

    return wrapper


def _next_timestamp(previous: Optional[datetime]) -> datetime:
    now = utcnow()
    if previous is not None and now <= as_utc(previous):
        now = as_utc(previous) + timedelta(microseconds=1)
    return now


# ---- configurations ----


@_wrap_storage_errors
def create_configuration(db: Session, data: TestConfigurationCreate) -> TestConfiguration:
    now = utcnow()
    config = TestConfiguration(**data.model_dump(), created_at=now, updated_at=now)
    db.add(config)
    db.commit()
    db.refresh(config)
    logger.info("created test configuration %s (%s)", config.id, config.name)
    return config


@_wrap_storage_errors
def get_configuration(db: Session, config_id: str) -> Optional[TestConfiguration]:
    return db.query(TestConfiguration).filter(TestConfiguration.id == config_id).first()


@_wrap_storage_errors
def list_configurations(db: Session) -> List[TestConfiguration]:
    return db.query(TestConfiguration).order_by(TestConfiguration.created_at.desc()).all()


@_wrap_storage_errors
def update_configuration(db: Session, config_id: str, changes: Dict[str, Any]) -> Optional[TestConfiguration]:
    config = db.query(TestConfiguration).filter(TestConfiguration.id == config_id).first()
    if not config:
        return None

    for field, value in changes.items():
        setattr(config, field, value)
    config.updated_at = _next_timestamp(config.updated_at)

    db.add(config)
    db.commit()
    db.refresh(config)
    return config


@_wrap_storage_errors
def delete_configuration(db: Session, config_id: str) -> bool:
    config = db.query(TestConfiguration).filter(TestConfiguration.id == config_id).first()
    if not config:
        return False
    # ORM cascade removes the runs; the FK cascade covers rows this session never loaded
    db.delete(config)
    db.commit()
    logger.info("deleted test configuration %s", config_id)
    return True


# ---- runs ----


@_wrap_storage_errors
def create_run(db: Session, data: TestRunCreate) -> TestRun:
    exists = db.query(TestConfiguration.id).filter(TestConfiguration.id == data.test_configuration_id).first()
    if not exists:
        raise NotFoundError("Test configuration not found")

    run = TestRun(
        test_configuration_id=data.test_configuration_id,
        status=data.status,
        started_at=utcnow(),
        completed_at=data.completed_at,
        results=dump_results(data.results),
    )
    if run.status in FINISHED_STATUSES and run.completed_at is None:
        run.completed_at = utcnow()

    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info("created test run %s for configuration %s", run.id, run.test_configuration_id)
    return run


@_wrap_storage_errors
def get_run(db: Session, run_id: str) -> Optional[TestRun]:
    return db.query(TestRun).filter(TestRun.id == run_id).first()


@_wrap_storage_errors
def list_runs_for_configuration(db: Session, config_id: str) -> List[TestRun]:
    return (
        db.query(TestRun)
        .filter(TestRun.test_configuration_id == config_id)
        .order_by(TestRun.started_at.desc())
        .all()
    )


@_wrap_storage_errors
def list_runs(db: Session, limit: Optional[int] = None) -> List[TestRun]:
    if limit is None:
        limit = DEFAULT_RUNS_LIMIT
    limit = max(0, min(limit, MAX_RUNS_LIMIT))
    return db.query(TestRun).order_by(TestRun.started_at.desc()).limit(limit).all()


@_wrap_storage_errors
def update_run(db: Session, run_id: str, changes: Dict[str, Any]) -> Optional[TestRun]:
    run = db.query(TestRun).filter(TestRun.id == run_id).first()
    if not run:
        return None

    status = changes.get("status", run.status)
    results = changes["results"] if "results" in changes else run.results
    completed_at = changes["completed_at"] if "completed_at" in changes else run.completed_at
    # a run leaving "completed" drops its old metrics unless new ones are supplied
    if "status" in changes and status != "completed" and "results" not in changes:
        results = None
    # a reopened run loses the completion time it inherited
    if status not in FINISHED_STATUSES and "completed_at" not in changes:
        completed_at = None
    check_run_state(status, results, completed_at)

    for field, value in changes.items():
        setattr(run, field, value)
    run.results = results
    run.completed_at = completed_at
    if status in FINISHED_STATUSES and run.completed_at is None:
        run.completed_at = utcnow()

    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info("updated test run %s (status=%s)", run.id, run.status)
    return run
