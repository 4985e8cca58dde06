"""Tests for the batch run controller."""

import json
import threading

import pytest

from gltf_optimizer.batch import BatchRunner, find_models, run_batch
from gltf_optimizer.config import OutputConfig
from gltf_optimizer.errors import ConfigurationError

from conftest import FakeEngine, FakeIO

STAGES = ["prune", {"weld": {"tolerance": 0.001}}, {"simplify": {"ratio": 0.5}}]


class TestFindModels:
    def test_sorted_scene_files_only(self, source_tree):
        files = find_models(source_tree)
        assert [path.relative_to(source_tree).as_posix() for path in files] == [
            "a.glb",
            "b.glb",
            "props/c.gltf",
        ]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            find_models(tmp_path / "nope")


class TestBatchRunner:
    def test_all_files_processed(self, source_tree, tmp_path, fake_io, fake_engine):
        target = tmp_path / "out"
        result = BatchRunner(fake_io, fake_engine, STAGES).run(source_tree, target)

        assert result.stats.processed == 3
        assert result.stats.failed == 0
        assert result.stats.success
        assert result.stats.duration_ms >= 0
        assert (target / "a.glb").exists()
        assert (target / "props" / "c.gltf").exists()

    def test_failure_is_isolated(self, source_tree, tmp_path, fake_engine):
        io = FakeIO(fail_stages={"b": "weld"})
        result = BatchRunner(io, fake_engine, STAGES).run(source_tree, tmp_path / "out")

        assert result.stats.processed == 2
        assert result.stats.failed == 1
        assert [path.name for path in io.reads] == ["a.glb", "b.glb", "c.gltf"]

        (failure,) = result.failures
        assert failure.source_path.name == "b.glb"
        assert failure.failed_stage == "weld(tolerance=0.001)"
        assert "rejected b" in failure.error_message
        assert not (tmp_path / "out" / "b.glb").exists()

    def test_read_error_counts_as_failure(self, source_tree, tmp_path, fake_engine):
        class BrokenIO(FakeIO):
            def read(self, path):
                if path.stem == "a":
                    raise OSError("disk on fire")
                return super().read(path)

        result = BatchRunner(BrokenIO(), fake_engine, STAGES).run(source_tree, tmp_path / "out")
        assert (result.stats.processed, result.stats.failed) == (2, 1)
        assert "disk on fire" in result.failures[0].error_message

    def test_partial_output_counts_as_failure(self, source_tree, tmp_path, fake_engine):
        io = FakeIO(fail_formats={"gltf"})
        runner = BatchRunner(io, fake_engine, STAGES, output_config={"format": "both"})

        result = runner.run(source_tree, tmp_path / "out")

        assert result.stats.failed == 3
        # The formats that did succeed are kept
        assert (tmp_path / "out" / "a.glb").exists()
        assert result.failures[0].output_paths == [tmp_path / "out" / "a.glb"]

    def test_progress_callback(self, source_tree, tmp_path, fake_io, fake_engine):
        calls = []
        BatchRunner(fake_io, fake_engine, STAGES).run(
            source_tree, tmp_path / "out", on_progress=lambda done, total: calls.append((done, total))
        )
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_lod_generation_writes_sidecar(self, source_tree, tmp_path, fake_engine):
        # Halved by the simplify stage, still in the top complexity tier
        io = FakeIO(vertex_count=300_000)
        target = tmp_path / "out"
        result = BatchRunner(io, fake_engine, STAGES, generate_lod=True).run(source_tree, target)

        assert result.stats.success
        index_path = target / "props" / "c_lod_config.json"
        assert result.files[-1].lod_index_path == index_path
        data = json.loads(index_path.read_text())
        assert [entry["level"] for entry in data["levels"]] == [1.0, 0.7, 0.4, 0.2, 0.1]
        assert (target / "props" / "c_lod_0_7.glb").exists()

    def test_explicit_lod_levels(self, source_tree, tmp_path, fake_io, fake_engine):
        target = tmp_path / "out"
        BatchRunner(fake_io, fake_engine, STAGES, generate_lod=True, lod_levels=[0.5]).run(
            source_tree, target
        )
        data = json.loads((target / "a_lod_config.json").read_text())
        assert [entry["path"] for entry in data["levels"]] == ["a_lod_1.glb", "a_lod_0_5.glb"]

    def test_parallel_workers(self, source_tree, tmp_path, fake_engine):
        io = FakeIO(fail_stages={"a": "prune"})
        result = BatchRunner(io, fake_engine, STAGES, workers=2).run(source_tree, tmp_path / "out")
        assert (result.stats.processed, result.stats.failed) == (2, 1)
        assert len(result.files) == 3

    def test_cancelled_run_stops_early(self, source_tree, tmp_path, fake_io, fake_engine):
        cancel = threading.Event()
        cancel.set()
        result = BatchRunner(fake_io, fake_engine, STAGES, cancel=cancel).run(source_tree, tmp_path / "out")
        assert result.stats.total == 0
        assert fake_io.reads == []

    def test_cancelled_parallel_run_counts_nothing(self, source_tree, tmp_path, fake_io, fake_engine):
        cancel = threading.Event()
        cancel.set()
        result = BatchRunner(fake_io, fake_engine, STAGES, workers=2, cancel=cancel).run(
            source_tree, tmp_path / "out"
        )
        assert (result.stats.processed, result.stats.failed) == (0, 0)
        assert result.files == []
        assert fake_io.reads == []


class TestBatchConfiguration:
    def test_invalid_output_config_fails_before_any_file(self, fake_io, fake_engine):
        with pytest.raises(ConfigurationError):
            BatchRunner(fake_io, fake_engine, STAGES, output_config={"format": "fbx"})
        assert fake_io.reads == []

    def test_unsupported_stage_fails_before_any_file(self, fake_io):
        with pytest.raises(ConfigurationError):
            BatchRunner(fake_io, FakeEngine(), ["palette"])

    def test_invalid_levels(self, fake_io, fake_engine):
        with pytest.raises(ConfigurationError):
            BatchRunner(fake_io, fake_engine, STAGES, lod_levels=[0.5, 0.9])

    @pytest.mark.parametrize("workers", [0, -1])
    def test_workers_must_be_positive(self, fake_io, fake_engine, workers):
        with pytest.raises(ConfigurationError, match="workers"):
            BatchRunner(fake_io, fake_engine, STAGES, workers=workers)

    def test_unknown_lod_format_fails_before_any_file(self, fake_io, fake_engine):
        with pytest.raises(ConfigurationError, match="fbx"):
            BatchRunner(fake_io, fake_engine, STAGES, generate_lod=True, lod_format="fbx")
        assert fake_io.reads == []
        assert fake_io.writes == []

    def test_gltf_lod_format_accepted(self, fake_io, fake_engine):
        runner = BatchRunner(fake_io, fake_engine, STAGES, generate_lod=True, lod_format="gltf")
        assert runner.lod_format == "gltf"

    def test_direct_output_config_is_validated(self, fake_io, fake_engine):
        with pytest.raises(ConfigurationError):
            BatchRunner(fake_io, fake_engine, STAGES, output_config=OutputConfig(format="fbx"))
        assert fake_io.reads == []


def test_run_batch_returns_stats(source_tree, tmp_path, fake_io, fake_engine):
    stats = run_batch(source_tree, tmp_path / "out", STAGES, io=fake_io, engine=fake_engine)
    assert (stats.processed, stats.failed) == (3, 0)
