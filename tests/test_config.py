"""Tests for run configuration files and service settings."""

from pathlib import Path

import pytest

from gltf_optimizer.config import (
    OutputFormat,
    Naming,
    ServiceSettings,
    load_run_config,
)
from gltf_optimizer.errors import ConfigurationError
from gltf_optimizer.stages import StageKind


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "run.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadRunConfig:
    def test_full_config(self, tmp_path):
        path = write_config(
            tmp_path,
            """
stages:
  - prune
  - weld: {tolerance: 0.001}
  - name: simplify
    params: {ratio: 0.5, error: 0.002}
output:
  format: both
  naming: suffix
lod:
  enabled: true
  levels: [1.0, 0.5, 0.25]
workers: 4
""",
        )
        config = load_run_config(path)

        assert [stage.name for stage in config.stages] == [
            StageKind.PRUNE,
            StageKind.WELD,
            StageKind.SIMPLIFY,
        ]
        assert config.stages[2].params == {"ratio": 0.5, "error": 0.002}
        assert config.output.format == OutputFormat.BOTH
        assert config.output.naming == Naming.SUFFIX
        assert config.generate_lod is True
        assert config.lod_levels == (1.0, 0.5, 0.25)
        assert config.workers == 4

    def test_empty_file_uses_defaults(self, tmp_path):
        config = load_run_config(write_config(tmp_path, ""))
        assert config.stages[0].name == StageKind.PRUNE
        assert config.output.format == OutputFormat.PRESERVE
        assert config.generate_lod is False
        assert config.lod_levels is None

    @pytest.mark.parametrize(
        "text",
        [
            "stages: [explode]\n",
            "output: {format: obj}\n",
            "lod: {levels: [0.2, 0.4]}\n",
            "workers: 0\n",
            "surprise: true\n",
            "- just\n- a list\n",
            "stages: [unclosed\n",
        ],
    )
    def test_invalid(self, tmp_path, text):
        with pytest.raises(ConfigurationError):
            load_run_config(write_config(tmp_path, text))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_run_config(tmp_path / "missing.yaml")


class TestServiceSettings:
    def test_defaults(self, monkeypatch):
        for name in ("GLTFOPT_UPLOAD_DIR", "GLTFOPT_OUTPUT_DIR", "GLTFOPT_S3_BUCKET", "GLTFOPT_QUEUE_NAME"):
            monkeypatch.delenv(name, raising=False)
        settings = ServiceSettings.from_env()
        assert settings.upload_dir == Path("/tmp/gltfopt/uploads")
        assert settings.s3_bucket is None
        assert settings.queue_name == "gltfopt:jobs"

    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GLTFOPT_OUTPUT_DIR", str(tmp_path))
        monkeypatch.setenv("GLTFOPT_S3_BUCKET", "assets")
        settings = ServiceSettings.from_env()
        assert settings.output_dir == tmp_path
        assert settings.s3_bucket == "assets"
