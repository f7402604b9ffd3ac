"""
Discrete parameter spaces and the candidates drawn from them.
"""

import itertools
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import ConfigurationError


class Candidate(Mapping):
    """
    An immutable assignment of one value to every parameter.

    Equality and hashing are structural, so candidates can be used as
    dictionary keys and set members.
    """

    __slots__ = ("_items", "_lookup")

    def __init__(self, values: Mapping):
        self._items: Tuple[Tuple[str, Any], ...] = tuple(values.items())
        self._lookup: Dict[str, Any] = dict(self._items)

    def __getitem__(self, name: str) -> Any:
        return self._lookup[name]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other) -> bool:
        if isinstance(other, Candidate):
            return self._lookup == other._lookup
        if isinstance(other, Mapping):
            return self._lookup == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._items))

    def __repr__(self) -> str:
        return f"Candidate({self._lookup})"

    def with_value(self, name: str, value: Any) -> "Candidate":
        """Return a copy with ``name`` set to ``value``."""
        if name not in self._lookup:
            raise KeyError(name)
        return Candidate({k: (value if k == name else v) for k, v in self._items})

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._items)


def expand_range(name: str, spec: Any) -> Tuple[Any, ...]:
    """
    Expand a parameter range specification into its ordered values.

    Accepted forms:
        [v1, v2, ...]                                   explicit values
        {"type": "int", "low": 1, "high": 9, "step": 2}
        {"type": "float", "low": 0.0, "high": 1.0, "num": 5}
        {"type": "float", "low": 0.0, "high": 1.0, "step": 0.25}
        {"type": "categorical", "choices": ["a", "b"]}
    """
    if isinstance(spec, Mapping):
        kind = spec.get("type", "categorical")
        try:
            if kind == "int":
                step = int(spec.get("step", 1))
                if step <= 0:
                    raise ConfigurationError(f"Parameter '{name}': step must be positive")
                values = list(range(int(spec["low"]), int(spec["high"]) + 1, step))
            elif kind == "float":
                low, high = float(spec["low"]), float(spec["high"])
                if "step" in spec:
                    step = float(spec["step"])
                    if step <= 0:
                        raise ConfigurationError(f"Parameter '{name}': step must be positive")
                    # Include the upper bound when it falls on the grid
                    n = int(np.floor((high - low) / step + 1e-9)) + 1
                    values = np.round(low + step * np.arange(n), 12).tolist()
                else:
                    num = int(spec.get("num", 5))
                    if num < 1:
                        raise ConfigurationError(f"Parameter '{name}': num must be at least 1")
                    values = np.linspace(low, high, num).tolist()
            elif kind == "categorical":
                values = list(spec["choices"])
            else:
                raise ConfigurationError(f"Parameter '{name}': unknown range type '{kind}'")
        except ConfigurationError:
            raise
        except KeyError as e:
            raise ConfigurationError(f"Parameter '{name}': range spec missing {e}") from e
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Parameter '{name}': invalid range spec {dict(spec)!r}: {e}") from e
    elif isinstance(spec, (str, bytes)) or not isinstance(spec, (Sequence, range)):
        raise ConfigurationError(f"Parameter '{name}': range must be a list or a range spec, got {spec!r}")
    else:
        values = list(spec)

    if not values:
        raise ConfigurationError(f"Parameter '{name}' has an empty range")
    try:
        distinct = len(set(values)) == len(values)
    except TypeError as e:
        raise ConfigurationError(f"Parameter '{name}': values must be hashable") from e
    if not distinct:
        raise ConfigurationError(f"Parameter '{name}' has duplicate values: {values}")
    return tuple(values)


class ParameterSpace:
    """
    Mapping from parameter name to its ordered, finite range of values.

    Parameters keep their declaration order, which fixes the enumeration
    order of ``candidates()``.
    """

    def __init__(self, ranges):
        items = list(ranges.items()) if isinstance(ranges, Mapping) else list(ranges)
        if not items:
            raise ConfigurationError("Parameter space has no parameters")

        self._ranges: Dict[str, Tuple[Any, ...]] = {}
        for name, values in items:
            if name in self._ranges:
                raise ConfigurationError(f"Duplicate parameter name: {name}")
            self._ranges[name] = expand_range(name, values)

    @classmethod
    def from_spec(cls, spec: Mapping) -> "ParameterSpace":
        """Build a space from a ``{name: range spec}`` mapping."""
        return cls(spec)

    @property
    def names(self) -> List[str]:
        return list(self._ranges)

    @property
    def ranges(self) -> Dict[str, Tuple[Any, ...]]:
        return dict(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)

    def __repr__(self) -> str:
        dims = ", ".join(f"{n}[{len(r)}]" for n, r in self._ranges.items())
        return f"ParameterSpace({dims})"

    def size(self) -> int:
        """Number of candidates in the full Cartesian product."""
        total = 1
        for values in self._ranges.values():
            total *= len(values)
        return total

    def sample(self, rng: Optional[np.random.Generator] = None) -> Candidate:
        """Draw a candidate uniformly, one independent draw per parameter."""
        rng = rng if rng is not None else np.random.default_rng()
        return Candidate({
            name: values[int(rng.integers(len(values)))]
            for name, values in self._ranges.items()
        })

    def candidates(self) -> Iterator[Candidate]:
        """Iterate the Cartesian product in a fixed, reproducible order."""
        names = self.names
        for combo in itertools.product(*self._ranges.values()):
            yield Candidate(dict(zip(names, combo)))

    def neighbours(self, candidate: Candidate) -> List[Candidate]:
        """All candidates differing from ``candidate`` in exactly one parameter."""
        result = []
        for name, values in self._ranges.items():
            for value in values:
                if value != candidate[name]:
                    result.append(candidate.with_value(name, value))
        return result

    def __contains__(self, candidate) -> bool:
        if not isinstance(candidate, Mapping) or set(candidate) != set(self._ranges):
            return False
        return all(candidate[name] in values for name, values in self._ranges.items())

    def validate(self, candidate: Mapping) -> Candidate:
        """
        Check that ``candidate`` assigns an allowed value to every parameter.

        Raises:
            ConfigurationError: naming the first offending parameter
        """
        missing = [n for n in self._ranges if n not in candidate]
        if missing:
            raise ConfigurationError(f"Candidate is missing parameters: {missing}")
        extra = [n for n in candidate if n not in self._ranges]
        if extra:
            raise ConfigurationError(f"Candidate has unknown parameters: {extra}")
        for name, values in self._ranges.items():
            if candidate[name] not in values:
                raise ConfigurationError(
                    f"Value {candidate[name]!r} for '{name}' is not in its range {list(values)}"
                )
        return candidate if isinstance(candidate, Candidate) else Candidate(
            {name: candidate[name] for name in self._ranges}
        )
