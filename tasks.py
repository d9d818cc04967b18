# tasks.py
import json
import logging
import os
import time

from redis import Redis

import storage
from database import SessionLocal
from results import simulate_results

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SIMULATED_RUN_DELAY = float(os.getenv("SIMULATED_RUN_DELAY", "1.5"))

redis = Redis.from_url(REDIS_URL, decode_responses=True)


def publish(run_id: str, payload: dict):
    channel = f"run:{run_id}"
    redis.publish(channel, json.dumps(payload, default=str))


def simulate_run_job(run_id: str, delay: float | None = None):
    """RQ job: walk a triggered run through running -> completed with mock metrics.

    Nothing is sent to the target APIs. A failure marks the run failed and
    re-raises so RQ records the job as failed too.
    """
    delay = SIMULATED_RUN_DELAY if delay is None else delay

    db = SessionLocal()
    try:
        run = storage.get_run(db, run_id)
        if not run:
            logger.warning("run %s vanished before the worker picked it up", run_id)
            return None
        config = run.configuration

        storage.update_run(db, run_id, {"status": "running"})
        publish(run_id, {"type": "progress", "run_id": run_id, "status": "running"})

        try:
            time.sleep(delay)
            metrics = simulate_results(config.virtual_users, config.duration)
            storage.update_run(db, run_id, {"status": "completed", "results": metrics})
        except Exception:
            logger.exception("simulated run %s failed", run_id)
            storage.update_run(db, run_id, {"status": "failed"})
            publish(run_id, {"type": "error", "run_id": run_id, "status": "failed"})
            raise
    finally:
        db.close()

    publish(run_id, {"type": "done", "run_id": run_id, "status": "completed", "metrics": metrics})
    logger.info("simulated run %s completed", run_id)
    return metrics
