# seed.py
import logging
from datetime import timedelta

import storage
from database import Base, SessionLocal, engine
from logging_setup import configure_logging
from models import TestConfiguration, utcnow
from schemas import TestConfigurationCreate, TestRunCreate

logger = logging.getLogger(__name__)

SAMPLE_CONFIGURATIONS = [
    {
        "name": "CDR Clinical API Baseline Test",
        "applicationId": "cdr-clinical",
        "selectedApiIds": ["ep-1", "ep-2", "ep-3"],
        "virtualUsers": 100,
        "rampUpTime": 5,
        "duration": 10,
        "thinkTime": 3,
        "responseTimeThreshold": 500,
        "errorRateThreshold": 1,
    },
    {
        "name": "Member Portal API Load Test",
        "applicationId": "member-portal",
        "selectedApiIds": ["ep-1", "ep-2"],
        "virtualUsers": 200,
        "rampUpTime": 10,
        "duration": 15,
        "thinkTime": 2,
    },
]

SAMPLE_RESULTS = [
    {
        "avgResponseTime": 180,
        "p95ResponseTime": 350,
        "p99ResponseTime": 480,
        "errorRate": 0.5,
        "requestsPerSecond": 50,
        "totalRequests": 30000,
        "successfulRequests": 29850,
        "failedRequests": 150,
    },
    {
        "avgResponseTime": 210,
        "p95ResponseTime": 390,
        "p99ResponseTime": 520,
        "errorRate": 0.8,
        "requestsPerSecond": 45,
        "totalRequests": 27000,
        "successfulRequests": 26784,
        "failedRequests": 216,
    },
]


def seed(db) -> bool:
    """Insert the sample configurations and runs into an empty database.

    Returns False (and writes nothing) when any configuration already exists.
    """
    if db.query(TestConfiguration.id).first():
        logger.info("database already seeded, skipping")
        return False

    baseline, portal = [
        storage.create_configuration(db, TestConfigurationCreate.model_validate(data))
        for data in SAMPLE_CONFIGURATIONS
    ]

    now = utcnow()
    for results, hours_ago in zip(SAMPLE_RESULTS, (2, 24)):
        run = storage.create_run(
            db,
            TestRunCreate.model_validate(
                {
                    "testConfigurationId": baseline.id,
                    "status": "completed",
                    "completedAt": now - timedelta(hours=hours_ago - 1),
                    "results": results,
                }
            ),
        )
        # backdate so history ordering reflects when the runs happened
        run.started_at = now - timedelta(hours=hours_ago)
        db.commit()

    storage.create_run(db, TestRunCreate(test_configuration_id=portal.id, status="running"))
    logger.info("database seeded")
    return True


def main():
    configure_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
