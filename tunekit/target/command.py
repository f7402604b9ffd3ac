"""
Command-line targets defined in YAML files.

Example definition (``targets/assembler.yml``)::

    name: assembler
    command: "assemble --kmer {k} --cov {cutoff} --reads {reads} -o out.fa"
    input_files:
      reads: data/reads.fq
    parameter_ranges:
      k: {type: int, low: 21, high: 61, step: 10}
      cutoff: [1, 2, 5]
    output_files:
      contigs: out.fa
    timeout: 3600
"""

import logging
import os
import shlex
import string
import subprocess
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..core.space import Candidate, ParameterSpace
from ..exceptions import ConfigurationError, ExecutionError, TargetLoadError
from .base import BaseTarget, RawOutput

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("command", "parameter_ranges", "output_files")
TARGET_SUFFIXES = (".yml", ".yaml")


class TargetDefinition(BaseModel):
    """Validated contents of a target definition file."""
    name: str
    command: Union[str, List[str]]
    parameter_ranges: Dict[str, Any]
    output_files: Dict[str, str]
    input_files: Dict[str, str] = Field(default_factory=dict)
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = None

    def arguments(self) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)


def check_config(config: Dict[str, Any]) -> List[str]:
    """Return the required keys missing from ``config``."""
    return [key for key in REQUIRED_FIELDS if key not in config]


def locate_definition(name: str, target_dirs: Iterable[Union[str, Path]]) -> Optional[Path]:
    """
    Find the definition file for target ``name``.

    ``name`` may be a path to a YAML file; otherwise every directory in
    ``target_dirs`` is searched and the first ``<name>.yml`` or
    ``<name>.yaml`` wins.
    """
    direct = Path(name)
    if direct.suffix in TARGET_SUFFIXES and direct.is_file():
        return direct
    for directory in target_dirs:
        for suffix in TARGET_SUFFIXES:
            path = Path(directory) / f"{name}{suffix}"
            if path.is_file():
                return path
    return None


def load_definition(path: Union[str, Path]) -> TargetDefinition:
    """
    Load and validate a target definition file.

    Raises:
        TargetLoadError: if the file is unreadable, not YAML, or invalid
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise TargetLoadError(f"Target definition file {path} cannot be read: {e}") from e
    except yaml.YAMLError as e:
        raise TargetLoadError(f"Target definition file {path} is not valid YAML: {e}") from e
    if not isinstance(config, dict):
        raise TargetLoadError(f"Target definition file {path} is not valid YAML")

    missing = check_config(config)
    if missing:
        raise TargetLoadError(f"Target definition file {path} is missing required fields: {missing}")

    config.setdefault("name", path.stem)
    try:
        definition = TargetDefinition.model_validate(config)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise TargetLoadError(
            f"Target definition file {path} contains the following errors:\n - " + "\n - ".join(errors)
        ) from e

    # Input files are relative to the definition file
    base = path.resolve().parent
    definition.input_files = {
        key: str(Path(value) if Path(value).is_absolute() else base / value)
        for key, value in definition.input_files.items()
    }
    return definition


class CommandTarget(BaseTarget):
    """Runs an external command rendered from the candidate's values."""

    def __init__(
        self,
        definition: TargetDefinition,
        work_dir: Optional[Union[str, Path]] = None,
        retain_intermediates: bool = False
    ):
        try:
            space = ParameterSpace.from_spec(definition.parameter_ranges)
        except ConfigurationError as e:
            raise TargetLoadError(f"Target {definition.name}: {e}") from e
        super().__init__(definition.name, space, definition.output_files, work_dir, retain_intermediates)
        self.definition = definition
        self.input_files = dict(definition.input_files)
        self.timeout = definition.timeout
        self._check_command()

    def _check_command(self) -> None:
        errors = []
        known = set(self.parameter_space.names) | set(self.input_files)
        for arg in self.definition.arguments():
            try:
                fields = [field_name for _, field_name, _, _ in string.Formatter().parse(arg)]
            except ValueError as e:
                errors.append(f"command argument '{arg}' is malformed: {e}")
                continue
            for field_name in fields:
                if field_name is None:
                    continue
                if field_name == "" or field_name.isdigit():
                    errors.append(f"command uses positional placeholder '{{{field_name}}}' in '{arg}'")
                elif field_name not in known:
                    errors.append(f"command refers to unknown placeholder '{{{field_name}}}'")
        for key, path in self.input_files.items():
            if not Path(path).exists():
                errors.append(f"input file {key} does not exist: {path}")
        if errors:
            raise TargetLoadError(
                f"Target {self.name} contains the following errors:\n - " + "\n - ".join(errors)
            )

    def render(self, candidate: Candidate) -> List[str]:
        """Command arguments with placeholders filled from ``candidate``."""
        values = {**self.input_files, **candidate}
        return [arg.format(**values) for arg in self.definition.arguments()]

    def run(self, candidate: Candidate) -> RawOutput:
        try:
            args = self.render(candidate)
        except (KeyError, IndexError, ValueError) as e:
            raise TargetLoadError(f"Target {self.name}: command cannot be rendered for {candidate}: {e!r}") from e
        workdir = self.make_workdir()
        env = {**os.environ, **self.definition.env} if self.definition.env else None

        logger.debug(f"Running {self.name} in {workdir}: {' '.join(args)}")
        started = time.monotonic()
        try:
            proc = subprocess.run(
                args,
                cwd=workdir,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            self.cleanup(workdir=workdir)
            raise ExecutionError(
                f"Target {self.name} timed out after {self.timeout}s for {candidate}",
                candidate=candidate,
            ) from e
        except OSError as e:
            self.cleanup(workdir=workdir)
            raise ExecutionError(
                f"Target {self.name} could not be started: {e}", candidate=candidate
            ) from e

        if proc.returncode != 0:
            self.cleanup(workdir=workdir)
            tail = (proc.stderr or "").strip().splitlines()[-5:]
            raise ExecutionError(
                f"Target {self.name} exited with code {proc.returncode} for {candidate}: " + " | ".join(tail),
                candidate=candidate,
                returncode=proc.returncode,
            )

        return RawOutput(
            candidate=candidate,
            workdir=workdir,
            output_files=self.resolve_outputs(workdir),
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
            duration=time.monotonic() - started,
        )


def load_target(
    name: str,
    target_dirs: Iterable[Union[str, Path]] = (),
    work_dir: Optional[Union[str, Path]] = None,
    retain_intermediates: bool = False
) -> CommandTarget:
    """
    Load target ``name`` from the first matching definition file.

    Raises:
        TargetLoadError: if no definition exists or it is invalid
    """
    path = locate_definition(name, target_dirs)
    if path is None:
        raise TargetLoadError(f"Target definition file does not exist for {name}")
    logger.info(f"Loading target {name} from {path}")
    return CommandTarget(load_definition(path), work_dir=work_dir, retain_intermediates=retain_intermediates)
