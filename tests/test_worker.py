"""Tests for the queue worker."""

import json

import pytest
import trimesh

from gltf_optimizer import worker as worker_module
from gltf_optimizer.config import ServiceSettings
from gltf_optimizer.worker import Worker


class FakeRedis:
    def __init__(self):
        self.published = []
        self.queue = []

    @classmethod
    def from_url(cls, url):
        return cls()

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))

    def blpop(self, name, timeout=0):
        if self.queue:
            return name, self.queue.pop(0)
        return None


@pytest.fixture
def settings(tmp_path):
    return ServiceSettings(upload_dir=tmp_path / "uploads", output_dir=tmp_path / "outputs")


@pytest.fixture
def redis_worker(monkeypatch, settings):
    monkeypatch.setattr(worker_module, "HAS_REDIS", True)
    monkeypatch.setattr(worker_module, "redis", FakeRedis, raising=False)
    return Worker("redis://localhost:6379/0", settings=settings)


@pytest.fixture
def box_path(tmp_path):
    path = tmp_path / "box.glb"
    scene = trimesh.Scene()
    scene.add_geometry(trimesh.creation.box(), geom_name="box")
    path.write_bytes(scene.export(file_type="glb"))
    return path


class TestWorkerSetup:
    def test_unsupported_scheme(self, settings):
        with pytest.raises(ValueError, match="Unsupported queue type"):
            Worker("ftp://queue", settings=settings)

    def test_creates_directories(self, redis_worker, settings):
        assert settings.upload_dir.is_dir()
        assert settings.output_dir.is_dir()


class TestProcessJob:
    def test_analyze_job(self, redis_worker, box_path):
        redis_worker.process_job(
            {"job_id": "j1", "type": "analyze", "input": {"local_path": str(box_path)}}
        )

        ((channel, payload),) = redis_worker.redis.published
        assert channel == "gltfopt:results:j1"
        assert payload["status"] == "completed"
        assert payload["result"]["triangle_count"] == 12
        assert payload["result"]["suggested_lods"] == [1.0]
        assert box_path.exists()

    def test_optimize_job(self, redis_worker, box_path, settings):
        redis_worker.process_job(
            {
                "job_id": "j2",
                "input": {"local_path": str(box_path)},
                "params": {"format": "both", "lod": True, "levels": [0.5]},
            }
        )

        ((_, payload),) = redis_worker.redis.published
        assert payload["status"] == "completed"
        names = sorted(path.rsplit("/", 1)[-1] for path in payload["result"]["outputs"])
        assert names == ["box.glb", "box.gltf", "box_lod_0_5.glb", "box_lod_1.glb"]
        assert (settings.output_dir / "j2" / "box_lod_config.json").exists()

    def test_unknown_job_type_reported_as_failure(self, redis_worker, box_path):
        redis_worker.process_job(
            {"job_id": "j3", "type": "render", "input": {"local_path": str(box_path)}}
        )

        ((_, payload),) = redis_worker.redis.published
        assert payload["status"] == "failed"
        assert "render" in payload["error"]

    def test_invalid_stage_reported_as_failure(self, redis_worker, box_path):
        redis_worker.process_job(
            {
                "job_id": "j4",
                "input": {"local_path": str(box_path)},
                "params": {"stages": ["palette"]},
            }
        )

        ((_, payload),) = redis_worker.redis.published
        assert payload["status"] == "failed"
        assert "palette" in payload["error"]

    def test_missing_input(self, redis_worker):
        redis_worker.process_job({"job_id": "j5", "type": "analyze"})
        ((_, payload),) = redis_worker.redis.published
        assert payload["error"] == "No input source specified in job"

    def test_get_job_from_queue(self, redis_worker):
        redis_worker.redis.queue.append(json.dumps({"job_id": "q1"}))
        assert redis_worker._get_job() == {"job_id": "q1"}
        assert redis_worker._get_job() is None
