"""Database models and session management."""

from .db import get_session, init_db, save_experiment
from .models import ExperimentRun, ExperimentTrial

__all__ = [
    "get_session",
    "init_db",
    "save_experiment",
    "ExperimentRun",
    "ExperimentTrial",
]
