"""
Experiment controller: runs the optimisation cycle.

Each iteration runs the target on the current candidate, scores its output
with the objectives, and feeds the fitness to the search algorithm, which
returns the next candidate. The loop is strictly sequential and stops when
the algorithm is finished or a stop is requested.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .config import Settings
from .core.space import Candidate
from .exceptions import ExecutionError
from .objective.handler import Evaluation, ObjectiveHandler
from .objective.base import ObjectiveRecord
from .objective.loader import build_handler
from .search.base import AlgorithmKind, BestRecord, SearchAlgorithm
from .search.sweep import ParameterSweeper
from .search.tabu import TabuSearch
from .target.base import BaseTarget
from .target.command import load_target

logger = logging.getLogger(__name__)


class ExperimentState(Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    DONE = "done"


@dataclass
class ExperimentResult:
    """Result of an experiment."""
    best: BestRecord
    algorithm: AlgorithmKind
    iterations: int
    trials: pd.DataFrame
    stopped: bool = False
    failures: int = 0

    @property
    def best_params(self) -> Dict[str, Any]:
        return self.best.candidate.to_dict() if self.best.candidate is not None else {}

    @property
    def best_score(self) -> float:
        return self.best.fitness

    def top_n(self, n: int = 10) -> pd.DataFrame:
        """Return the top N trials sorted by fitness."""
        if self.trials.empty:
            return self.trials
        return self.trials.nlargest(n, "fitness")

    def __repr__(self) -> str:
        return (
            f"ExperimentResult(\n"
            f"  algorithm={self.algorithm.value},\n"
            f"  best_score={self.best_score:.4f},\n"
            f"  best_params={self.best_params},\n"
            f"  iterations={self.iterations},\n"
            f"  failures={self.failures},\n"
            f"  stopped={self.stopped}\n"
            f")"
        )


class Experiment:
    """
    Optimisation experiment over one target.

    States: INITIALIZING (algorithm and starting point chosen) -> ITERATING
    -> DONE. ``run()`` returns the best record found; ``stop()`` ends the run
    at the next iteration boundary with the partial result.
    """

    def __init__(
        self,
        target: BaseTarget,
        objectives: ObjectiveHandler,
        settings: Optional[Settings] = None,
        start: Optional[Mapping[str, Any]] = None,
        algorithm: Optional[SearchAlgorithm] = None
    ):
        """
        Initialize experiment.

        Args:
            target: Target to run for each candidate
            objectives: Registered objective functions
            settings: Experiment settings (defaults read from the environment)
            start: Explicit starting candidate, overriding the algorithm's choice
            algorithm: Search algorithm to use instead of selecting one by space size
        """
        self.state = ExperimentState.INITIALIZING
        self.settings = settings or Settings()
        self.target = target
        self.objectives = objectives
        self.space = target.parameter_space
        self.rng = np.random.default_rng(self.settings.seed)

        self.algorithm = algorithm or self.select_algorithm()
        self.start = self.select_starting_point(start)
        self.algorithm.set_starting_point(self.start)

        self.current: Candidate = self.start
        self.best: BestRecord = self.algorithm.best()
        self.iterations = 0
        self.failures = 0
        self.trials: List[Dict[str, Any]] = []
        self._stop = threading.Event()

        logger.info(
            f"Experiment on {target.name}: {self.space.size()} candidates, "
            f"algorithm={self.algorithm.kind.value}, start={dict(self.start)}"
        )

    @classmethod
    def from_settings(
        cls,
        target_name: str,
        settings: Settings,
        start: Optional[Mapping[str, Any]] = None
    ) -> "Experiment":
        """Load the named target and the objective plugins, then build an experiment."""
        target = load_target(
            target_name,
            settings.target_dirs,
            work_dir=settings.work_dir,
            retain_intermediates=settings.retain_intermediates,
        )
        objectives = build_handler(
            settings.objectives_dir,
            settings.objectives_subset,
            threads=settings.threads,
            parallel=settings.parallel_objectives,
        )
        return cls(target, objectives, settings=settings, start=start)

    # ------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------

    @property
    def algorithm_kind(self) -> AlgorithmKind:
        return self.algorithm.kind

    def select_algorithm(self) -> SearchAlgorithm:
        """Sweep spaces smaller than the cutoff; tabu search the rest."""
        size = self.space.size()
        if size < self.settings.sweep_cutoff:
            logger.info(f"Space size {size} < cutoff {self.settings.sweep_cutoff}: exhaustive sweep")
            return ParameterSweeper(self.space)
        logger.info(f"Space size {size} >= cutoff {self.settings.sweep_cutoff}: tabu search")
        return TabuSearch(
            self.space,
            tenure=self.settings.tabu_tenure,
            max_iterations=self.settings.max_iterations,
            stall_limit=self.settings.stall_limit,
            neighbourhood_size=self.settings.neighbourhood_size,
            seed=self.settings.seed,
        )

    def select_starting_point(self, start: Optional[Mapping[str, Any]] = None) -> Candidate:
        """User choice first, then the algorithm's own, then a random point."""
        if start is not None:
            return self.space.validate(start)
        if self.algorithm.knows_starting_point():
            return self.algorithm.select_starting_point()
        return self.random_start_point()

    def random_start_point(self) -> Candidate:
        """Return a random candidate from the parameter space."""
        return self.space.sample(self.rng)

    # ------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------

    def stop(self) -> None:
        """Request termination at the next iteration boundary."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def run(self) -> ExperimentResult:
        """
        Run until the algorithm finishes or a stop is requested.

        Returns:
            ExperimentResult holding the best record and the trial history
        """
        self.state = ExperimentState.ITERATING
        stopped = False
        while not self.algorithm.finished():
            if self._stop.is_set():
                logger.warning(f"Stop requested after {self.iterations} iterations")
                stopped = True
                break
            self.run_iteration()

        self.state = ExperimentState.DONE
        logger.info(
            f"Experiment complete after {self.iterations} iterations. "
            f"Best score: {self.best.fitness:.4f} at {self.best.to_dict()['parameters']}"
        )
        return self._compile_result(stopped)

    def run_iteration(self) -> Candidate:
        """
        Run one target execution, one evaluation and one algorithm step.

        Returns:
            The next candidate to evaluate
        """
        candidate = self.current
        started = time.monotonic()
        fitness, evaluation, error, attempts = self._score(candidate)

        self.current = self.algorithm.run(fitness)
        self.best = self.algorithm.best()
        self.iterations += 1

        self.trials.append({
            "iteration": self.iterations,
            "params": candidate.to_dict(),
            "fitness": fitness,
            "status": "ok" if error is None else "failed",
            "error": error,
            "attempts": attempts,
            "reduced": evaluation.reduced if evaluation is not None else None,
            "results": self._results_to_dict(evaluation),
            "duration": time.monotonic() - started,
        })

        logger.debug(f"Iteration {self.iterations}: {candidate} -> {fitness}")
        if self.iterations % 10 == 0:
            logger.info(f"Completed {self.iterations} iterations, best score: {self.best.fitness:.4f}")
        return self.current

    def fitness(self, evaluation: Evaluation) -> float:
        """Scalar fitness from an evaluation; higher is always better."""
        if self.settings.objective_mode == "reduced":
            return -float(evaluation.reduced)
        value = float(evaluation.scalar())
        return value if self.settings.maximize else -value

    def _score(self, candidate: Candidate) -> Tuple[float, Optional[Evaluation], Optional[str], int]:
        """
        Run and evaluate ``candidate`` under the failure policy.

        Execution failures and missing output never escape: after the allowed
        retries the candidate gets ``failure_fitness``.
        """
        retries = self.settings.max_retries if self.settings.failure_policy == "retry" else 0
        attempts = 0
        while True:
            attempts += 1
            try:
                raw_output = self.target.run(candidate)
            except ExecutionError as e:
                error = e
            else:
                try:
                    evaluation = self.objectives.evaluate(
                        raw_output,
                        raw_output.output_files,
                        threads=self.settings.threads,
                        all_results=self.settings.objective_mode == "reduced",
                    )
                finally:
                    self.target.cleanup(raw_output)
                if evaluation.ok:
                    return self.fitness(evaluation), evaluation, None, attempts
                error = evaluation.error

            if attempts <= retries:
                logger.warning(f"Candidate {dict(candidate)} failed ({error}); retry {attempts}/{retries}")
                continue

            self.failures += 1
            logger.warning(
                f"Candidate {dict(candidate)} failed ({error}); "
                f"scoring as {self.settings.failure_fitness}"
            )
            return self.settings.failure_fitness, None, str(error), attempts

    @staticmethod
    def _results_to_dict(evaluation: Optional[Evaluation]) -> Dict[str, Any]:
        if evaluation is None:
            return {}
        return {
            name: value.model_dump() if isinstance(value, ObjectiveRecord) else value
            for name, value in evaluation.results.items()
        }

    def _compile_result(self, stopped: bool) -> ExperimentResult:
        return ExperimentResult(
            best=self.best,
            algorithm=self.algorithm.kind,
            iterations=self.iterations,
            trials=pd.DataFrame(self.trials),
            stopped=stopped,
            failures=self.failures,
        )
