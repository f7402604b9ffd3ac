"""Parameter space and candidate data model."""

from .space import Candidate, ParameterSpace, expand_range

__all__ = ["Candidate", "ParameterSpace", "expand_range"]
