"""
Objective handler: runs the registered objectives against a target's output
and reduces multiple objectives to a single distance from the optimum.
"""

import glob
import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..exceptions import ConfigurationError, MissingOutputError, ObjectiveError
from .base import Number, ObjectiveRecord

logger = logging.getLogger(__name__)

ObjectiveResult = Union[Number, ObjectiveRecord]


@dataclass
class Evaluation:
    """Outcome of scoring one target run."""
    results: Dict[str, ObjectiveResult] = field(default_factory=dict)
    reduced: Optional[float] = None
    error: Optional[MissingOutputError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def scalar(self) -> Number:
        """Result of the first objective, unwrapping structured records."""
        if self.error is not None:
            raise self.error
        value = next(iter(self.results.values()))
        return value.result if isinstance(value, ObjectiveRecord) else value


def dimension_reduce(results: Mapping[str, Any]) -> float:
    """
    Weighted Euclidean distance of the results from their optima.

        sqrt(sum(w * ((optimum - result) / max) ** 2)) / n

    0 means every objective hit its optimum. When optimum, result and max are
    all integers the quotient is floor-divided.
    """
    if not results:
        raise ValueError("cannot reduce an empty result set")
    total = 0
    for name, value in results.items():
        record = _as_record(name, value)
        o, a, m = record.optimum, record.result, record.max
        if all(isinstance(x, int) for x in (o, a, m)):
            term = (o - a) // m
        else:
            term = (o - a) / m
        total += record.weighting * term ** 2
    return math.sqrt(total) / len(results)


def _as_record(name: str, value: Any) -> ObjectiveRecord:
    if isinstance(value, ObjectiveRecord):
        return value
    if isinstance(value, Mapping):
        try:
            return ObjectiveRecord.model_validate(dict(value))
        except ValidationError as e:
            raise ObjectiveError(name, f"invalid objective record: {e}") from e
    raise ObjectiveError(
        name, f"returned {value!r}; reduction needs a record with result, optimum, weighting and max"
    )


def _coerce(name: str, value: Any) -> ObjectiveResult:
    if isinstance(value, bool):
        raise ObjectiveError(name, f"returned a boolean ({value})")
    if isinstance(value, (int, float, ObjectiveRecord)):
        return value
    if isinstance(value, Mapping):
        return _as_record(name, value)
    # numpy scalars and other numeric types
    if hasattr(value, "item"):
        return _coerce(name, value.item())
    raise ObjectiveError(name, f"returned unsupported result type {type(value).__name__}")


class ObjectiveHandler:
    """
    Registry of objective functions and evaluator of target output.

    Objectives run in registration order. With ``parallel`` set they are
    submitted to a thread pool; results keep registration order either way.
    """

    def __init__(
        self,
        objectives: Optional[Mapping[str, Any]] = None,
        threads: int = 6,
        parallel: bool = False
    ):
        self.objectives: Dict[str, Any] = {}
        self.threads = threads
        self.parallel = parallel
        for name, objective in (objectives or {}).items():
            self.register(name, objective)

    def register(self, name: str, objective: Any) -> None:
        """Add ``objective`` under a unique ``name``."""
        if name in self.objectives:
            raise ConfigurationError(f"Objective '{name}' is already registered")
        if not callable(getattr(objective, "run", None)):
            raise ConfigurationError(f"Objective '{name}' has no run() method")
        self.objectives[name] = objective

    def __len__(self) -> int:
        return len(self.objectives)

    def collect_output_files(self, output_locations: Mapping[str, str]) -> Dict[str, List[str]]:
        """
        Resolve declared output globs to absolute paths.

        Raises:
            MissingOutputError: if a glob matches nothing or an empty file
        """
        output_files = {}
        for key, pattern in output_locations.items():
            files = sorted(glob.glob(pattern))
            if not files or any(os.path.getsize(f) == 0 for f in files):
                raise MissingOutputError(key, pattern)
            output_files[key] = [os.path.abspath(f) for f in files]
        return output_files

    def run_objective(
        self,
        name: str,
        objective: Any,
        raw_output: Any,
        output_files: Dict[str, List[str]],
        threads: int
    ) -> ObjectiveResult:
        """Run a single objective, converting its failures into ObjectiveError."""
        try:
            value = objective.run(raw_output, output_files, threads)
        except NotImplementedError:
            logger.error(
                f"Objective {name} ({type(objective).__name__}) does not implement run(); "
                f"objective plugins must override ObjectiveFunction.run"
            )
            raise
        except Exception as e:
            raise ObjectiveError(name, f"failed with {type(e).__name__}: {e}") from e
        return _coerce(name, value)

    def evaluate(
        self,
        raw_output: Any,
        output_locations: Mapping[str, str],
        threads: Optional[int] = None,
        all_results: bool = False
    ) -> Evaluation:
        """
        Score one target run with every registered objective.

        Missing output is returned in ``Evaluation.error`` instead of raised.

        Args:
            raw_output: Output returned by the target
            output_locations: Declared output key -> glob pattern
            threads: Worker count hinted to each objective
            all_results: Also compute the reduced multi-objective distance

        Returns:
            Evaluation with per-objective results
        """
        if not self.objectives:
            raise ConfigurationError("No objectives registered")
        threads = threads or self.threads

        try:
            output_files = self.collect_output_files(output_locations)
        except MissingOutputError as e:
            logger.warning(str(e))
            return Evaluation(error=e)

        if self.parallel and len(self.objectives) > 1:
            with ThreadPoolExecutor(max_workers=len(self.objectives)) as pool:
                futures = {
                    name: pool.submit(self.run_objective, name, obj, raw_output, output_files, threads)
                    for name, obj in self.objectives.items()
                }
                results = {name: future.result() for name, future in futures.items()}
        else:
            results = {
                name: self.run_objective(name, obj, raw_output, output_files, threads)
                for name, obj in self.objectives.items()
            }

        logger.debug(f"Objective results: {results}")
        evaluation = Evaluation(results=results)
        if all_results:
            evaluation.reduced = dimension_reduce(results)
        return evaluation

    dimension_reduce = staticmethod(dimension_reduce)
