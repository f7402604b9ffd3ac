"""Unit tests for objective plugin discovery."""
import textwrap

import pytest

from tunekit.exceptions import ConfigurationError
from tunekit.objective.base import ObjectiveFunction
from tunekit.objective.loader import build_handler, camelize, load_objectives


def write_plugin(directory, stem, class_name, value):
    source = textwrap.dedent(f"""
        from tunekit.objective import ObjectiveFunction


        class {class_name}(ObjectiveFunction):
            def run(self, raw_output, output_files, threads):
                return {value}
    """)
    (directory / f"{stem}.py").write_text(source)


@pytest.fixture
def objectives_dir(tmp_path):
    directory = tmp_path / "objectives"
    directory.mkdir()
    write_plugin(directory, "contig_count", "ContigCount", 10)
    write_plugin(directory, "n50", "N50", 20)
    return directory


def test_camelize():
    assert camelize("contig_count") == "ContigCount"
    assert camelize("n50") == "N50"


def test_loads_every_plugin(objectives_dir):
    objectives = load_objectives(objectives_dir)

    assert set(objectives) == {"ContigCount", "N50"}
    for objective in objectives.values():
        assert isinstance(objective, ObjectiveFunction)
    assert objectives["N50"].run(None, {}, 1) == 20


def test_subset_file_takes_precedence(objectives_dir):
    (objectives_dir / "objectives.txt").write_text("n50\n")
    objectives = load_objectives(objectives_dir, subset=["contig_count"])
    assert list(objectives) == ["N50"]


def test_subset_argument(objectives_dir):
    objectives = load_objectives(objectives_dir, subset=["contig_count"])
    assert list(objectives) == ["ContigCount"]


def test_listed_but_missing_plugin_is_skipped(objectives_dir):
    (objectives_dir / "objectives.txt").write_text("n50\nmissing_one\n")
    objectives = load_objectives(objectives_dir)
    assert list(objectives) == ["N50"]


def test_private_files_and_helpers_ignored(objectives_dir):
    (objectives_dir / "_helpers.py").write_text("VALUE = 1\n")
    (objectives_dir / "notes.py").write_text("VALUE = 2\n")
    objectives = load_objectives(objectives_dir)
    assert set(objectives) == {"ContigCount", "N50"}


def test_broken_plugin_is_configuration_error(objectives_dir):
    (objectives_dir / "broken.py").write_text("this is not python\n")
    with pytest.raises(ConfigurationError, match="broken.py"):
        load_objectives(objectives_dir)


def test_missing_directory(tmp_path):
    with pytest.raises(ConfigurationError):
        load_objectives(tmp_path / "nope")


def test_build_handler(objectives_dir):
    handler = build_handler(objectives_dir, threads=2, parallel=True)
    assert set(handler.objectives) == {"ContigCount", "N50"}
    assert handler.threads == 2
    assert handler.parallel
