"""
Database session management and experiment persistence.
"""

import logging
import math
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base, ExperimentRun, ExperimentTrial, utcnow

logger = logging.getLogger(__name__)


def init_db(database_url: str) -> Engine:
    """Create the engine for ``database_url`` and its schema."""
    logger.info("Initializing database schema...")
    engine = create_engine(database_url, echo=False, pool_pre_ping=True)
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema created successfully")
    return engine


@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """
    Get database session context manager.

    Usage:
        with get_session(engine) as session:
            session.query(...)
    """
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def _finite(value: Any) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def save_experiment(
    session: Session,
    target: str,
    parameter_space: Dict[str, Any],
    result: Any,
    settings: Optional[Dict[str, Any]] = None
) -> str:
    """
    Persist an experiment result and its trials.

    Args:
        session: Open database session
        target: Target name
        parameter_space: Parameter name -> list of values
        result: ExperimentResult to store
        settings: Settings snapshot (JSON-serializable)

    Returns:
        ID of the stored run
    """
    logger.info("Persisting experiment run to DB...")
    run_row = ExperimentRun(
        target=target,
        algorithm=result.algorithm.value,
        parameter_space={name: list(values) for name, values in parameter_space.items()},
        settings=settings,
        best_params=result.best_params or None,
        best_score=_finite(result.best_score),
        iterations=result.iterations,
        failures=result.failures,
        stopped=result.stopped,
        finished_at=utcnow(),
    )
    session.add(run_row)
    session.flush()

    for trial in result.trials.to_dict(orient="records"):
        session.add(ExperimentTrial(
            run_id=run_row.id,
            iteration=int(trial["iteration"]),
            trial_params=trial["params"],
            results=trial.get("results") or None,
            score=_finite(trial["fitness"]) if trial["status"] == "ok" else None,
            status=trial["status"],
            error=trial.get("error") if isinstance(trial.get("error"), str) else None,
            attempts=int(trial.get("attempts", 1)),
        ))

    session.flush()
    logger.info(f"Experiment run persisted: id={run_row.id}, trials={len(result.trials)}")
    return run_row.id
