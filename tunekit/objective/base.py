"""
Objective function interface and structured objective records.
"""

from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, field_validator

Number = Union[int, float]


class ObjectiveRecord(BaseModel):
    """
    Structured objective result used for multi-objective reduction.

    ``max`` normalizes the distance between ``result`` and ``optimum``.
    """

    model_config = ConfigDict(frozen=True)

    result: Number
    optimum: Number
    weighting: Number = 1
    max: Number

    @field_validator("max")
    @classmethod
    def check_max(cls, v):
        if v == 0:
            raise ValueError("max must be non-zero")
        return v

    @field_validator("weighting")
    @classmethod
    def check_weighting(cls, v):
        if v < 0:
            raise ValueError("weighting must be non-negative")
        return v


class ObjectiveFunction:
    """
    Base class for objective plugins.

    Subclasses override ``run`` and return either a number or an
    ``ObjectiveRecord`` (or a dict with its keys). Higher results are better
    unless the experiment is configured to minimize.

    ``run`` may be called from a worker thread and must not mutate state
    shared with other objectives.
    """

    def run(self, raw_output: Any, output_files: Dict[str, List[str]], threads: int) -> Union[Number, ObjectiveRecord, dict]:
        """
        Score one run of the target.

        Args:
            raw_output: RawOutput returned by the target
            output_files: Declared output key -> absolute paths of matching files
            threads: Number of workers the objective may use
        """
        raise NotImplementedError
