"""
Tabu search over a discrete parameter space.

One candidate is scored per call to ``run``. The search scores the
neighbourhood of the current candidate (every one-parameter perturbation,
shuffled with a seeded generator and optionally truncated), then moves to the
best admissible neighbour. Moving a parameter away from a value makes that
(parameter, value) attribute tabu for the next ``tenure`` moves, unless the
neighbour restoring it beats the best fitness recorded before the
neighbourhood was explored (aspiration).
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np

from ..core.space import Candidate, ParameterSpace
from ..exceptions import ConfigurationError
from .base import AlgorithmKind, SearchAlgorithm

logger = logging.getLogger(__name__)

Attribute = Tuple[str, object]


class _Phase(Enum):
    START = auto()
    NEIGHBOUR = auto()
    RESTART = auto()


@dataclass(frozen=True)
class Move:
    """A transition of the current candidate."""
    number: int
    iteration: int
    previous: Candidate
    candidate: Candidate
    fitness: float
    best_before: float
    tabu: bool = False
    aspiration: bool = False


class TabuSearch(SearchAlgorithm):
    """
    Tabu search with attribute-based tabu list and aspiration by best fitness.

    Termination is whichever fires first: ``max_iterations`` scored
    candidates, ``stall_limit`` scored candidates without improving the best,
    or every candidate of the space having been scored.
    """

    kind = AlgorithmKind.TABU_SEARCH

    def __init__(
        self,
        space: ParameterSpace,
        tenure: int = 5,
        max_iterations: int = 100,
        stall_limit: Optional[int] = 20,
        neighbourhood_size: Optional[int] = None,
        seed: Optional[int] = None,
        start: Optional[Candidate] = None
    ):
        """
        Initialize tabu search.

        Args:
            space: Parameter space to search
            tenure: Number of moves a tabu attribute stays forbidden
            max_iterations: Maximum number of candidates to score
            stall_limit: Stop after this many scores without improvement (None disables)
            neighbourhood_size: Neighbours scored per move (None = all)
            seed: Random seed for neighbour ordering and restarts
            start: Explicit starting candidate
        """
        super().__init__(space)
        if tenure < 1:
            raise ConfigurationError("tabu tenure must be >= 1")
        if max_iterations < 1:
            raise ConfigurationError("max_iterations must be >= 1")
        if stall_limit is not None and stall_limit < 1:
            raise ConfigurationError("stall_limit must be >= 1 or None")
        if neighbourhood_size is not None and neighbourhood_size < 1:
            raise ConfigurationError("neighbourhood_size must be >= 1 or None")

        self.tenure = tenure
        self.max_iterations = max_iterations
        self.stall_limit = stall_limit
        self.neighbourhood_size = neighbourhood_size
        self.seed = seed
        self.rng = np.random.default_rng(seed)

        self.memory: Dict[Candidate, float] = {}
        self.moves: List[Move] = []
        self.current_fitness: float = float("-inf")
        self._current: Optional[Candidate] = None
        self._tabu: Dict[Attribute, int] = {}
        self._pending: Deque[Candidate] = deque()
        self._scored: List[Tuple[Candidate, float]] = []
        self._best_before = float("-inf")
        self._since_improvement = 0
        self._idle_moves = 0
        self._exhausted = False
        self._phase = _Phase.START

        self._start = space.validate(start) if start is not None else None
        if self._start is not None:
            self._proposed = self._start

    # ------------------------------------------------------------
    # Starting point
    # ------------------------------------------------------------

    def knows_starting_point(self) -> bool:
        return self._start is not None

    def select_starting_point(self) -> Candidate:
        if self._start is None:
            return super().select_starting_point()
        return self._start

    def set_starting_point(self, candidate: Candidate) -> None:
        if self.iterations:
            raise RuntimeError("starting point can only be set before the first run")
        self._proposed = self.space.validate(candidate)
        self._phase = _Phase.START

    # ------------------------------------------------------------
    # Tabu list
    # ------------------------------------------------------------

    @property
    def tabu_list(self) -> List[Attribute]:
        """Attributes forbidden for the next move."""
        upcoming = len(self.moves) + 1
        return [attr for attr, expires in self._tabu.items() if upcoming <= expires]

    def is_tabu(self, candidate: Candidate) -> bool:
        """True if moving to ``candidate`` restores a forbidden attribute."""
        if self._current is None:
            return False
        upcoming = len(self.moves) + 1
        for name in self.space.names:
            value = candidate[name]
            if value != self._current[name] and upcoming <= self._tabu.get((name, value), 0):
                return True
        return False

    # ------------------------------------------------------------
    # Search protocol
    # ------------------------------------------------------------

    @property
    def position(self) -> Optional[Candidate]:
        """Candidate the neighbourhood is currently built around."""
        return self._current

    def run(self, fitness: float) -> Candidate:
        if self._proposed is None:
            raise RuntimeError("run() called before a starting point was set")
        if self.finished():
            return self._proposed

        candidate = self._proposed
        self.iterations += 1
        self.memory[candidate] = fitness
        if self._update_best(candidate, fitness):
            self._since_improvement = 0
            logger.debug(f"Tabu search improved best: {fitness:.6g} at {candidate}")
        else:
            self._since_improvement += 1

        if self._phase in (_Phase.START, _Phase.RESTART):
            self._settle(candidate, fitness)
        else:
            self._scored.append((candidate, fitness))

        return self._advance()

    def finished(self) -> bool:
        if self._exhausted or self.iterations >= self.max_iterations:
            return True
        if self.stall_limit is not None and self._since_improvement >= self.stall_limit:
            return True
        return len(self.memory) >= self.space.size()

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _settle(self, candidate: Candidate, fitness: float) -> None:
        """Make ``candidate`` the current position and open its neighbourhood."""
        self._current = candidate
        self.current_fitness = fitness
        neighbours = self.space.neighbours(candidate)
        order = self.rng.permutation(len(neighbours))
        neighbours = [neighbours[i] for i in order]
        if self.neighbourhood_size is not None:
            neighbours = neighbours[:self.neighbourhood_size]
        self._pending = deque(neighbours)
        self._scored = []
        self._best_before = self._best.fitness

    def _advance(self) -> Candidate:
        while not self.finished():
            while self._pending:
                neighbour = self._pending.popleft()
                if neighbour in self.memory:
                    self._scored.append((neighbour, self.memory[neighbour]))
                    continue
                self._phase = _Phase.NEIGHBOUR
                self._proposed = neighbour
                self._idle_moves = 0
                return neighbour

            # Moving among already scored candidates cannot go on forever
            if self._idle_moves <= len(self.memory) and self._move():
                self._idle_moves += 1
                continue

            restart = self._random_unscored()
            if restart is None:
                self._exhausted = True
                break
            logger.debug(f"Tabu search restarting from {restart}")
            self._phase = _Phase.RESTART
            self._proposed = restart
            self._idle_moves = 0
            return restart

        return self._proposed

    def _move(self) -> bool:
        """Move to the best admissible scored neighbour. False if none exists."""
        chosen = None
        for neighbour, fitness in self._scored:
            tabu = self.is_tabu(neighbour)
            aspiration = tabu and fitness > self._best_before
            if tabu and not aspiration:
                continue
            if chosen is None or fitness > chosen[1]:
                chosen = (neighbour, fitness, tabu, aspiration)
        if chosen is None:
            return False

        neighbour, fitness, tabu, aspiration = chosen
        number = len(self.moves) + 1
        previous = self._current
        self.moves.append(Move(
            number=number,
            iteration=self.iterations,
            previous=previous,
            candidate=neighbour,
            fitness=fitness,
            best_before=self._best_before,
            tabu=tabu,
            aspiration=aspiration,
        ))
        for name in self.space.names:
            if neighbour[name] != previous[name]:
                self._tabu[(name, previous[name])] = number + self.tenure
        if aspiration:
            logger.debug(f"Aspiration overrides tabu for {neighbour} ({fitness:.6g})")

        self._settle(neighbour, fitness)
        return True

    def _random_unscored(self, attempts: int = 100) -> Optional[Candidate]:
        if len(self.memory) >= self.space.size():
            return None
        for _ in range(attempts):
            candidate = self.space.sample(self.rng)
            if candidate not in self.memory:
                return candidate
        # Mostly explored: fall back to the first unscored candidate in order
        for candidate in self.space.candidates():
            if candidate not in self.memory:
                return candidate
        return None
