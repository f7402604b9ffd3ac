"""Search algorithms: exhaustive sweep and tabu search."""

from .base import AlgorithmKind, BestRecord, SearchAlgorithm
from .sweep import ParameterSweeper
from .tabu import Move, TabuSearch

__all__ = [
    "AlgorithmKind",
    "BestRecord",
    "SearchAlgorithm",
    "ParameterSweeper",
    "TabuSearch",
    "Move",
]
