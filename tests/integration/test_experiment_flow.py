"""Integration tests for the experiment loop with in-process targets."""
import pytest

from tunekit.core.space import Candidate
from tunekit.db.db import save_experiment
from tunekit.db.models import ExperimentRun, ExperimentTrial
from tunekit.exceptions import ConfigurationError, ObjectiveError
from tunekit.experiment import Experiment, ExperimentState
from tunekit.objective.base import ObjectiveFunction
from tunekit.objective.handler import ObjectiveHandler
from tunekit.search.base import AlgorithmKind
from tunekit.target.base import FunctionTarget, RawOutput


def doubled(params):
    return params["a"] * (2 if params["b"] == "y" else 1)


class Distance(ObjectiveFunction):
    """Normalised distance of parameter 'a' from 3."""

    def run(self, raw_output, output_files, threads):
        return {"result": float(raw_output.value["a"]), "optimum": 3.0, "weighting": 1, "max": 3.0}


class Failing(ObjectiveFunction):
    def run(self, raw_output, output_files, threads):
        raise KeyError("contigs")


def test_small_space_is_swept(small_space, settings, make_target, handler):
    experiment = Experiment(make_target(small_space, doubled), handler, settings=settings)
    assert experiment.algorithm_kind is AlgorithmKind.EXHAUSTIVE_SWEEP
    assert experiment.state is ExperimentState.INITIALIZING

    result = experiment.run()

    assert experiment.state is ExperimentState.DONE
    assert result.algorithm is AlgorithmKind.EXHAUSTIVE_SWEEP
    assert result.iterations == 6
    assert len(result.trials) == 6
    assert result.best_params == {"a": 3, "b": "y"}
    assert result.best_score == 6.0
    assert not result.stopped
    assert result.top_n(2)["fitness"].tolist() == [6.0, 4.0]


def test_cutoff_boundary_selects_tabu(small_space, settings, make_target, handler):
    """A space exactly the size of the cutoff is tabu searched."""
    swept = Experiment(
        make_target(small_space, doubled), handler,
        settings=settings.model_copy(update={"sweep_cutoff": 7}),
    )
    searched = Experiment(
        make_target(small_space, doubled), handler,
        settings=settings.model_copy(update={"sweep_cutoff": 6}),
    )

    assert swept.algorithm_kind is AlgorithmKind.EXHAUSTIVE_SWEEP
    assert searched.algorithm_kind is AlgorithmKind.TABU_SEARCH
    assert searched.start in small_space

    result = searched.run()
    assert result.best_score == 6.0
    assert result.iterations == small_space.size()


def test_user_start_is_evaluated_first(large_space, settings, make_target, handler, peak_score):
    start = {"x": 5, "y": 5, "z": 1}
    experiment = Experiment(make_target(large_space, peak_score), handler, settings=settings, start=start)
    assert experiment.start == start

    experiment.run_iteration()
    assert experiment.trials[0]["params"] == start


def test_invalid_start_rejected(small_space, settings, make_target, handler):
    with pytest.raises(ConfigurationError):
        Experiment(make_target(small_space, doubled), handler, settings=settings, start={"a": 7, "b": "x"})
    with pytest.raises(ConfigurationError):
        Experiment(make_target(small_space, doubled), handler, settings=settings, start={"a": 1})


def test_tabu_experiment_is_reproducible(large_space, settings, make_target, handler, peak_score, tmp_path):
    runs = []
    for i in range(2):
        target = make_target(large_space, peak_score, work_dir=tmp_path / f"runs{i}")
        result = Experiment(target, handler, settings=settings).run()
        assert result.algorithm is AlgorithmKind.TABU_SEARCH
        runs.append(result)

    assert runs[0].trials["params"].tolist() == runs[1].trials["params"].tolist()
    assert runs[0].best_params == runs[1].best_params
    assert runs[0].best_score == runs[0].trials["fitness"].max()
    assert runs[0].iterations <= settings.max_iterations


def test_best_never_decreases(large_space, settings, make_target, handler, peak_score):
    experiment = Experiment(make_target(large_space, peak_score), handler, settings=settings)
    history = []
    for _ in range(40):
        if experiment.algorithm.finished():
            break
        experiment.run_iteration()
        history.append(experiment.best.fitness)
    assert history == sorted(history)


def test_failed_candidates_are_penalized(small_space, settings, make_target, handler, tmp_path):
    def fragile(params):
        if params["a"] == 2:
            raise RuntimeError("segfault")
        return doubled(params)

    experiment = Experiment(make_target(small_space, fragile), handler, settings=settings)
    result = experiment.run()

    failed = result.trials[result.trials["status"] == "failed"]
    assert result.failures == 2
    assert len(failed) == 2
    assert all(p["a"] == 2 for p in failed["params"])
    assert (failed["fitness"] == settings.failure_fitness).all()
    assert all("segfault" in e for e in failed["error"])
    assert result.best_params == {"a": 3, "b": "y"}
    assert list((tmp_path / "runs").iterdir()) == []


def test_missing_output_is_not_fatal(small_space, settings, handler, tmp_path):
    def sometimes_silent(workdir, a, b):
        if b == "y":
            (workdir / "score.txt").write_text(str(a))

    target = FunctionTarget(
        "silent", small_space, sometimes_silent,
        output_files={"score": "score.txt"}, work_dir=tmp_path / "runs",
    )
    result = Experiment(target, handler, settings=settings).run()

    assert result.failures == 3
    assert result.best_params == {"a": 3, "b": "y"}
    errors = result.trials.loc[result.trials["status"] == "failed", "error"]
    assert all("score" in e for e in errors)


def test_retry_policy(small_space, settings, make_target, handler):
    attempts = {}

    def flaky(params):
        key = (params["a"], params["b"])
        attempts[key] = attempts.get(key, 0) + 1
        if attempts[key] == 1 or params["a"] == 1:
            raise RuntimeError("transient")
        return doubled(params)

    retrying = settings.model_copy(update={"failure_policy": "retry", "max_retries": 2})
    result = Experiment(make_target(small_space, flaky), handler, settings=retrying).run()

    by_a = {p["a"]: n for p, n in zip(result.trials["params"], result.trials["attempts"])}
    assert by_a[1] == 3
    assert by_a[2] == 2
    assert by_a[3] == 2
    assert result.failures == 2
    assert result.best_score == 6.0


def test_unimplemented_objective_is_fatal(small_space, settings, make_target, tmp_path):
    handler = ObjectiveHandler({"Lazy": ObjectiveFunction()})
    experiment = Experiment(make_target(small_space, doubled), handler, settings=settings)

    with pytest.raises(NotImplementedError):
        experiment.run()
    assert list((tmp_path / "runs").iterdir()) == []


def test_objective_error_is_fatal(small_space, settings, make_target):
    handler = ObjectiveHandler({"Failing": Failing()})
    experiment = Experiment(make_target(small_space, doubled), handler, settings=settings)

    with pytest.raises(ObjectiveError) as excinfo:
        experiment.run()
    assert excinfo.value.name == "Failing"


def test_stop_returns_partial_result(small_space, settings, make_target, handler):
    holder = {}
    calls = []

    def score(params):
        calls.append(params)
        if len(calls) == 3:
            holder["experiment"].stop()
        return params["a"]

    experiment = Experiment(make_target(small_space, score), handler, settings=settings)
    holder["experiment"] = experiment
    result = experiment.run()

    assert result.stopped
    assert result.iterations == 3
    assert result.best_params == {"a": 2, "b": "x"}
    assert experiment.state is ExperimentState.DONE


def test_stop_before_first_iteration(small_space, settings, make_target, handler):
    experiment = Experiment(make_target(small_space, doubled), handler, settings=settings)
    experiment.stop()
    result = experiment.run()

    assert result.stopped
    assert result.iterations == 0
    assert result.best_params == {}
    assert result.top_n().empty


def test_reduced_mode(small_space, settings, make_target):
    handler = ObjectiveHandler({"Distance": Distance()})
    reduced = settings.model_copy(update={"objective_mode": "reduced"})
    result = Experiment(make_target(small_space, doubled), handler, settings=reduced).run()

    assert result.best_params == {"a": 3, "b": "x"}
    assert result.best_score == 0
    assert result.trials["reduced"].tolist() == pytest.approx([2 / 3, 2 / 3, 1 / 3, 1 / 3, 0, 0])
    assert result.trials["results"][0]["Distance"]["optimum"] == 3.0


def test_minimize(small_space, settings, make_target, handler):
    minimizing = settings.model_copy(update={"maximize": False})
    result = Experiment(make_target(small_space, doubled), handler, settings=minimizing).run()

    assert result.best_params == {"a": 1, "b": "x"}
    assert result.best_score == -1.0


def test_retained_workdirs(small_space, settings, make_target, handler, tmp_path):
    target = make_target(small_space, doubled, retain_intermediates=True)
    Experiment(target, handler, settings=settings).run()

    workdirs = list((tmp_path / "runs").iterdir())
    assert len(workdirs) == 6
    assert all((w / "score.txt").exists() for w in workdirs)


def test_custom_algorithm(small_space, settings, make_target, handler):
    from tunekit.search.tabu import TabuSearch

    algorithm = TabuSearch(small_space, seed=0, start=Candidate({"a": 1, "b": "x"}), stall_limit=None)
    experiment = Experiment(make_target(small_space, doubled), handler, settings=settings, algorithm=algorithm)

    assert experiment.start == {"a": 1, "b": "x"}
    assert experiment.run().best_score == 6.0


def test_raw_output_reaches_objectives(small_space, settings, make_target):
    seen = []

    class Spy(ObjectiveFunction):
        def run(self, raw_output, output_files, threads):
            seen.append((raw_output, threads))
            return 1.0

    handler = ObjectiveHandler({"Spy": Spy()})
    Experiment(make_target(small_space, doubled), handler, settings=settings).run()

    raw_output, threads = seen[0]
    assert isinstance(raw_output, RawOutput)
    assert raw_output.value == {"a": 1, "b": "x"}
    assert threads == settings.threads


def test_save_experiment(small_space, settings, make_target, handler, test_db):
    def fragile(params):
        if params["b"] == "x":
            raise RuntimeError("bad input")
        return doubled(params)

    result = Experiment(make_target(small_space, fragile), handler, settings=settings).run()
    run_id = save_experiment(
        test_db, target="target", parameter_space=small_space.ranges,
        result=result, settings=settings.model_dump(mode="json"),
    )
    test_db.commit()

    run = test_db.query(ExperimentRun).filter_by(id=run_id).one()
    assert run.algorithm == "sweep"
    assert run.best_params == {"a": 3, "b": "y"}
    assert run.best_score == 6.0
    assert run.failures == 3
    assert run.parameter_space == {"a": [1, 2, 3], "b": ["x", "y"]}
    assert len(run.trials) == 6

    failed = test_db.query(ExperimentTrial).filter_by(run_id=run_id, status="failed").all()
    assert len(failed) == 3
    assert all(t.score is None for t in failed)
    assert all("bad input" in t.error for t in failed)
