"""Targets: the programs being tuned."""

from .base import BaseTarget, FunctionTarget, RawOutput
from .command import CommandTarget, TargetDefinition, load_definition, load_target, locate_definition

__all__ = [
    "BaseTarget",
    "FunctionTarget",
    "RawOutput",
    "CommandTarget",
    "TargetDefinition",
    "load_definition",
    "load_target",
    "locate_definition",
]
