"""Pytest configuration and fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tunekit.config import Settings
from tunekit.core.space import ParameterSpace
from tunekit.db.models import Base
from tunekit.objective.base import ObjectiveFunction
from tunekit.objective.handler import ObjectiveHandler
from tunekit.target.base import FunctionTarget


class FileScore(ObjectiveFunction):
    """Reads the score a target wrote to its 'score' output."""

    def run(self, raw_output, output_files, threads):
        with open(output_files["score"][0]) as f:
            return float(f.read())


def score_writer(score_fn):
    """Target function writing score_fn(params) to score.txt."""
    def func(workdir, **params):
        (workdir / "score.txt").write_text(str(score_fn(params)))
        return params
    return func


def peak(params):
    """Single maximum of 2 at x=7, y=2, z=2."""
    return -(params["x"] - 7) ** 2 - (params["y"] - 2) ** 2 + params["z"]


@pytest.fixture
def small_space():
    """Six-candidate space."""
    return ParameterSpace({"a": [1, 2, 3], "b": ["x", "y"]})


@pytest.fixture
def large_space():
    """300-candidate space with a single peak under `peak`."""
    return ParameterSpace({
        "x": list(range(10)),
        "y": list(range(10)),
        "z": [0, 1, 2],
    })


@pytest.fixture
def settings(tmp_path):
    """Deterministic settings isolated from the environment."""
    return Settings(
        _env_file=None,
        sweep_cutoff=100,
        seed=42,
        max_iterations=100,
        stall_limit=None,
        work_dir=tmp_path / "runs",
    )


@pytest.fixture
def make_target(tmp_path):
    """Build a FunctionTarget writing score_fn(params) as its output."""
    def _make(space, score_fn, name="target", **kwargs):
        return FunctionTarget(
            name,
            space,
            score_writer(score_fn),
            output_files={"score": "score.txt"},
            work_dir=kwargs.pop("work_dir", tmp_path / "runs"),
            **kwargs
        )
    return _make


@pytest.fixture
def peak_score():
    return peak


@pytest.fixture
def file_score():
    return FileScore


@pytest.fixture
def handler():
    """Handler with the single FileScore objective."""
    return ObjectiveHandler({"FileScore": FileScore()})


@pytest.fixture
def drive():
    """Run a search algorithm against a fitness function until it finishes."""
    def _drive(algorithm, fitness_fn, start=None, limit=10000):
        candidate = start if start is not None else algorithm.current
        if start is not None:
            algorithm.set_starting_point(start)
        proposed = [candidate]
        best_history = []
        for _ in range(limit):
            if algorithm.finished():
                break
            candidate = algorithm.run(fitness_fn(candidate))
            best_history.append(algorithm.best().fitness)
            if not algorithm.finished():
                proposed.append(candidate)
        return proposed, best_history
    return _drive


@pytest.fixture
def test_db():
    """Create in-memory SQLite database for testing."""
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
