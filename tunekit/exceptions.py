"""
Exception hierarchy for tunekit.

Per-iteration failures (ExecutionError, MissingOutputError) are handled by the
experiment loop. Everything else is fatal and propagates to the caller.
"""

from typing import Any, Optional


class TunekitError(Exception):
    """Base class for all tunekit errors."""

    pass


# ================================================================
# Fatal: configuration and integration
# ================================================================

class ConfigurationError(TunekitError, ValueError):
    """Malformed parameter space, settings or registry."""

    pass


class TargetLoadError(ConfigurationError):
    """Target definition is missing or invalid."""

    pass


class ObjectiveError(TunekitError):
    """An objective plugin failed while scoring or returned a malformed record."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"objective {name}: {message}")


# ================================================================
# Per-iteration: recoverable
# ================================================================

class ExecutionError(TunekitError):
    """The target program could not be run or exited abnormally."""

    def __init__(self, message: str, candidate: Optional[Any] = None, returncode: Optional[int] = None):
        self.candidate = candidate
        self.returncode = returncode
        super().__init__(message)


class MissingOutputError(TunekitError):
    """A declared output artifact is absent or empty."""

    def __init__(self, key: str, pattern: str):
        self.key = key
        self.pattern = pattern
        super().__init__(f"output files for {key} matching {pattern} do not exist or are empty")
