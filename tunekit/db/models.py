"""
SQLAlchemy database models for experiment history.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid():
    """Generate UUID string."""
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class ExperimentRun(Base):
    """Experiment runs."""
    __tablename__ = 'experiment_runs'

    id = Column(String, primary_key=True, default=generate_uuid)
    target = Column(String, nullable=False)
    algorithm = Column(String, nullable=False)  # sweep, tabu

    parameter_space = Column(JSON, nullable=False)
    settings = Column(JSON)

    best_params = Column(JSON)
    best_score = Column(Float)
    iterations = Column(Integer, nullable=False, default=0)
    failures = Column(Integer, nullable=False, default=0)
    stopped = Column(Boolean, nullable=False, default=False)

    started_at = Column(DateTime, default=utcnow)
    finished_at = Column(DateTime)

    # Relationships
    trials = relationship("ExperimentTrial", back_populates="run", order_by="ExperimentTrial.iteration")


class ExperimentTrial(Base):
    """Individual evaluated candidates."""
    __tablename__ = 'experiment_trials'

    id = Column(String, primary_key=True, default=generate_uuid)
    run_id = Column(String, ForeignKey('experiment_runs.id'), nullable=False)

    iteration = Column(Integer, nullable=False)
    trial_params = Column(JSON, nullable=False)
    results = Column(JSON)
    score = Column(Float)  # NULL for failed candidates
    status = Column(String, nullable=False)  # ok, failed
    error = Column(Text)
    attempts = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    run = relationship("ExperimentRun", back_populates="trials")
