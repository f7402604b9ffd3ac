"""
Search algorithm interface shared by the exhaustive sweep and tabu search.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.space import Candidate, ParameterSpace


class AlgorithmKind(Enum):
    """Discriminates the available search algorithms."""

    EXHAUSTIVE_SWEEP = "sweep"
    TABU_SEARCH = "tabu"


@dataclass(frozen=True)
class BestRecord:
    """Best candidate seen so far and its fitness."""
    candidate: Optional[Candidate] = None
    fitness: float = float("-inf")

    def improved_by(self, fitness: float) -> bool:
        """True if ``fitness`` strictly beats the recorded best."""
        return fitness > self.fitness

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameters": self.candidate.to_dict() if self.candidate is not None else None,
            "score": self.fitness,
        }


class SearchAlgorithm(ABC):
    """
    Abstract base class for search algorithms.

    Protocol: the caller evaluates the candidate last handed out (by
    ``select_starting_point`` or ``run``) and passes its fitness to ``run``,
    which returns the next candidate to evaluate. Once ``finished()`` is
    true, ``run`` returns the terminal candidate without changing state.
    """

    kind: AlgorithmKind

    def __init__(self, space: ParameterSpace):
        self.space = space
        self.iterations = 0
        self._best = BestRecord()
        self._proposed: Optional[Candidate] = None

    def knows_starting_point(self) -> bool:
        return False

    def select_starting_point(self) -> Candidate:
        raise NotImplementedError(f"{type(self).__name__} does not choose its own starting point")

    def set_starting_point(self, candidate: Candidate) -> None:
        """Tell the algorithm which candidate will be evaluated first."""
        self._proposed = candidate

    @property
    def current(self) -> Optional[Candidate]:
        """Candidate whose fitness the next ``run`` call expects."""
        return self._proposed

    def best(self) -> BestRecord:
        return self._best

    def _update_best(self, candidate: Candidate, fitness: float) -> bool:
        if self._best.improved_by(fitness):
            self._best = BestRecord(candidate=candidate, fitness=fitness)
            return True
        return False

    @abstractmethod
    def run(self, fitness: float) -> Candidate:
        """Consume the fitness of the proposed candidate and return the next one."""
        pass

    @abstractmethod
    def finished(self) -> bool:
        pass
