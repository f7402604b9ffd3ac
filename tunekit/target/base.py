"""
Target interface: the external program whose parameters are tuned.
"""

import logging
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..core.space import Candidate, ParameterSpace
from ..exceptions import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class RawOutput:
    """Everything a single target run produced."""
    candidate: Candidate
    workdir: Path
    output_files: Dict[str, str]
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    duration: float = 0.0
    value: Any = None


class BaseTarget(ABC):
    """
    Abstract base class for targets.

    A target declares a parameter space and a mapping of output keys to glob
    patterns (relative to the run's working directory), and runs the program
    once per candidate in a fresh working directory.
    """

    def __init__(
        self,
        name: str,
        parameter_space: ParameterSpace,
        output_files: Mapping[str, str],
        work_dir: Optional[Union[str, Path]] = None,
        retain_intermediates: bool = False
    ):
        self.name = name
        self.parameter_space = parameter_space
        self.output_files = dict(output_files)
        self.work_dir = Path(work_dir) if work_dir is not None else None
        self.retain_intermediates = retain_intermediates
        self.last_workdir: Optional[Path] = None

    @property
    def parameter_ranges(self) -> Dict[str, tuple]:
        return self.parameter_space.ranges

    def make_workdir(self) -> Path:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"{self.name}_", dir=self.work_dir))
        self.last_workdir = path
        return path

    def resolve_outputs(self, workdir: Path) -> Dict[str, str]:
        """Make the declared output globs absolute for ``workdir``."""
        resolved = {}
        for key, pattern in self.output_files.items():
            resolved[key] = pattern if Path(pattern).is_absolute() else str(workdir / pattern)
        return resolved

    def cleanup(self, raw_output: Optional[RawOutput] = None, workdir: Optional[Path] = None) -> None:
        """Remove a run's working directory unless intermediates are retained."""
        if self.retain_intermediates:
            return
        path = raw_output.workdir if raw_output is not None else workdir
        if path is not None:
            shutil.rmtree(path, ignore_errors=True)

    @abstractmethod
    def run(self, candidate: Candidate) -> RawOutput:
        """
        Run the target with ``candidate``'s parameter values.

        Raises:
            ExecutionError: if the program cannot be run or fails
        """
        pass


class FunctionTarget(BaseTarget):
    """
    Target backed by a Python callable.

    The callable is invoked as ``func(workdir, **parameters)`` and may write
    output files into ``workdir``; its return value is kept in
    ``RawOutput.value``.
    """

    def __init__(
        self,
        name: str,
        parameter_space: ParameterSpace,
        func: Callable[..., Any],
        output_files: Optional[Mapping[str, str]] = None,
        work_dir: Optional[Union[str, Path]] = None,
        retain_intermediates: bool = False
    ):
        super().__init__(name, parameter_space, output_files or {}, work_dir, retain_intermediates)
        self.func = func

    def run(self, candidate: Candidate) -> RawOutput:
        workdir = self.make_workdir()
        started = time.monotonic()
        try:
            value = self.func(workdir, **candidate)
        except Exception as e:
            self.cleanup(workdir=workdir)
            raise ExecutionError(
                f"Target {self.name} failed for {candidate}: {e}", candidate=candidate
            ) from e
        return RawOutput(
            candidate=candidate,
            workdir=workdir,
            output_files=self.resolve_outputs(workdir),
            duration=time.monotonic() - started,
            value=value,
        )
