"""
Exhaustive parameter sweep over the full Cartesian product.
"""

import logging
from typing import List

from ..core.space import Candidate, ParameterSpace
from .base import AlgorithmKind, SearchAlgorithm

logger = logging.getLogger(__name__)


class ParameterSweeper(SearchAlgorithm):
    """
    Evaluates every candidate of the space exactly once.

    Candidates are enumerated in ``ParameterSpace.candidates()`` order, so two
    sweeps over the same space propose the same sequence.
    """

    kind = AlgorithmKind.EXHAUSTIVE_SWEEP

    def __init__(self, space: ParameterSpace):
        super().__init__(space)
        self.combinations: List[Candidate] = list(space.candidates())
        self._index = 0
        self._proposed = self.combinations[0]

    def knows_starting_point(self) -> bool:
        return True

    def select_starting_point(self) -> Candidate:
        return self.combinations[0]

    def set_starting_point(self, candidate: Candidate) -> None:
        """Start the sweep at ``candidate``'s position in the enumeration."""
        try:
            self._index = self.combinations.index(candidate)
        except ValueError:
            raise ValueError(f"{candidate} is not part of the swept space") from None
        # Rotate so every candidate is still visited once
        if self._index:
            self.combinations = self.combinations[self._index:] + self.combinations[:self._index]
            self._index = 0
        self._proposed = self.combinations[0]

    @property
    def remaining(self) -> int:
        return len(self.combinations) - self._index

    def run(self, fitness: float) -> Candidate:
        if self.finished():
            return self._proposed

        self.iterations += 1
        if self._update_best(self._proposed, fitness):
            logger.debug(f"Sweep improved best: {fitness:.6g} at {self._proposed}")

        self._index += 1
        if self._index < len(self.combinations):
            self._proposed = self.combinations[self._index]
        else:
            logger.info(f"Sweep complete after {self.iterations} candidates")
        return self._proposed

    def finished(self) -> bool:
        return self._index >= len(self.combinations)
