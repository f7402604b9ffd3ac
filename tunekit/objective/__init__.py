"""Objective plugins, evaluation and multi-objective reduction."""

from .base import ObjectiveFunction, ObjectiveRecord
from .handler import Evaluation, ObjectiveHandler, dimension_reduce
from .loader import build_handler, load_objectives

__all__ = [
    "ObjectiveFunction",
    "ObjectiveRecord",
    "Evaluation",
    "ObjectiveHandler",
    "dimension_reduce",
    "build_handler",
    "load_objectives",
]
