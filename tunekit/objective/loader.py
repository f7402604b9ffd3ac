"""
Discovery of objective plugins from a directory of Python files.

Each ``<name>.py`` file defines one or more ``ObjectiveFunction`` subclasses;
the class named after the file (``my_score.py`` -> ``MyScore``) is preferred.
An optional ``objectives.txt`` lists the file stems to load, one per line.
"""

import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..exceptions import ConfigurationError
from .base import ObjectiveFunction
from .handler import ObjectiveHandler

logger = logging.getLogger(__name__)

SUBSET_FILE = "objectives.txt"


def camelize(stem: str) -> str:
    return "".join(part.capitalize() for part in stem.split("_") if part)


def read_subset(directory: Path) -> Optional[List[str]]:
    """File stems listed in ``objectives.txt``, or None if it is absent."""
    subset_file = directory / SUBSET_FILE
    if not subset_file.exists():
        return None
    lines = (line.strip() for line in subset_file.read_text().splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def _import_file(path: Path):
    module_name = f"tunekit_objectives.{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot import objective from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(spec.name, None)
        raise ConfigurationError(f"Failed to load objective file {path}: {e}") from e
    return module


def _objective_classes(module, stem: str) -> List[type]:
    classes = [
        obj for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, ObjectiveFunction)
        and obj is not ObjectiveFunction
        and obj.__module__ == module.__name__
    ]
    preferred = [cls for cls in classes if cls.__name__ == camelize(stem)]
    return preferred or classes


def load_objectives(
    directory: Union[str, Path],
    subset: Optional[Iterable[str]] = None
) -> Dict[str, ObjectiveFunction]:
    """
    Instantiate the objective plugins found in ``directory``.

    ``objectives.txt`` in the directory takes precedence over ``subset``.

    Returns:
        Mapping of class name -> objective instance
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(f"Objectives directory does not exist: {directory}")

    selected = read_subset(directory)
    if selected is None and subset is not None:
        selected = list(subset)

    objectives: Dict[str, ObjectiveFunction] = {}
    for path in sorted(directory.glob("*.py")):
        if path.stem.startswith("_"):
            continue
        if selected is not None and path.stem not in selected:
            continue
        module = _import_file(path)
        classes = _objective_classes(module, path.stem)
        if not classes:
            logger.warning(f"No ObjectiveFunction subclass found in {path}")
            continue
        for cls in classes:
            if cls.__name__ in objectives:
                raise ConfigurationError(f"Objective '{cls.__name__}' is defined more than once")
            objectives[cls.__name__] = cls()

    if selected is not None:
        found = {p.stem for p in directory.glob("*.py")}
        for stem in selected:
            if stem not in found:
                logger.warning(f"Objective '{stem}' is listed but {stem}.py does not exist")

    logger.info(f"Loaded {len(objectives)} objectives from {directory}: {list(objectives)}")
    return objectives


def build_handler(
    directory: Union[str, Path],
    subset: Optional[Iterable[str]] = None,
    threads: int = 6,
    parallel: bool = False
) -> ObjectiveHandler:
    """Load the plugins in ``directory`` into a new ObjectiveHandler."""
    return ObjectiveHandler(load_objectives(directory, subset), threads=threads, parallel=parallel)
