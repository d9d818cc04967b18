import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestConfiguration(Base):
    __tablename__ = "test_configurations"

    id = Column(String, primary_key=True, default=new_id)

    name = Column(String, nullable=False)
    application_id = Column(String, nullable=False)
    selected_api_ids = Column(JSON, nullable=False)
    virtual_users = Column(Integer, nullable=False)
    ramp_up_time = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)
    think_time = Column(Integer, nullable=False)
    response_time_threshold = Column(Float, nullable=True)
    error_rate_threshold = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    runs = relationship(
        "TestRun",
        back_populates="configuration",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TestRun(Base):
    __tablename__ = "test_runs"

    id = Column(String, primary_key=True, default=new_id)

    test_configuration_id = Column(
        String,
        ForeignKey("test_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String, nullable=False, default="pending")
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # metrics payload, see results.simulate_results
    results = Column(JSON, nullable=True)

    configuration = relationship("TestConfiguration", back_populates="runs")
