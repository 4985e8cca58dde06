"""
Shared pytest fixtures for gltf-optimizer tests.

The fake document and transform engines keep the core tests independent of
real scene files: documents are plain records and every capability just logs
what it was asked to do.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pytest

from gltf_optimizer.errors import DocumentIOError, StageError
from gltf_optimizer.models import ComplexityMetrics
from gltf_optimizer.stages import StageKind


# ============================================================================
# FAKE ENGINES
# ============================================================================

@dataclass
class FakeMaterial:
    name: str
    double_sided: bool = True


@dataclass
class FakeDocument:
    """In-memory stand-in for a scene document."""

    name: str
    vertex_count: int = 1000
    triangle_count: int = 500
    applied: List[tuple] = field(default_factory=list)
    materials: List[FakeMaterial] = field(default_factory=list)
    fail_stage: Optional[str] = None


class FakeIO:
    """Document engine that records every write.

    Writes also touch the target file so existence checks behave as on disk.
    """

    def __init__(
        self,
        vertex_count: int = 1000,
        triangle_count: int = 500,
        fail_stages: Optional[Dict[str, str]] = None,
        fail_formats: Optional[set] = None,
    ) -> None:
        self.vertex_count = vertex_count
        self.triangle_count = triangle_count
        self.fail_stages = fail_stages or {}
        self.fail_formats = fail_formats or set()
        self.reads: List[Path] = []
        self.writes: List[tuple] = []
        self.clones = 0

    def read(self, path: Path) -> FakeDocument:
        path = Path(path)
        if not path.exists():
            raise DocumentIOError("source file not found", path=path)
        self.reads.append(path)
        return FakeDocument(
            name=path.stem,
            vertex_count=self.vertex_count,
            triangle_count=self.triangle_count,
            materials=[FakeMaterial("body")],
            fail_stage=self.fail_stages.get(path.stem),
        )

    def write(self, path: Path, document: FakeDocument, options: Mapping[str, Any]) -> None:
        path = Path(path)
        fmt = path.suffix.lstrip(".")
        if fmt in self.fail_formats:
            raise DocumentIOError(f"{fmt} encoder unavailable", path=path)
        self.writes.append((path, copy.deepcopy(document), dict(options)))
        path.write_text(document.name, encoding="utf-8")

    def clone(self, document: FakeDocument) -> FakeDocument:
        self.clones += 1
        return copy.deepcopy(document)

    def query_complexity(self, document: FakeDocument) -> ComplexityMetrics:
        return ComplexityMetrics(
            vertex_count=document.vertex_count,
            triangle_count=document.triangle_count,
        )

    def list_materials(self, document: FakeDocument) -> List[FakeMaterial]:
        return list(document.materials)

    def set_double_sided(self, material: FakeMaterial, double_sided: bool) -> None:
        material.double_sided = double_sided


class FakeEngine:
    """Transform engine whose capabilities log ``(kind, params)`` on the document."""

    def __init__(self, kinds: Optional[List[StageKind]] = None) -> None:
        kinds = kinds or [
            StageKind.PRUNE,
            StageKind.DEDUP,
            StageKind.WELD,
            StageKind.SIMPLIFY,
            StageKind.NORMALS,
            StageKind.TEXTURE_COMPRESS,
        ]
        self._capabilities = {kind: self._make_capability(kind) for kind in kinds}

    @property
    def capabilities(self):
        return self._capabilities

    @staticmethod
    def _make_capability(kind: StageKind):
        def capability(document: FakeDocument, params: Mapping[str, Any]) -> None:
            if document.fail_stage == kind.value:
                raise StageError(f"{kind.value} rejected {document.name}")
            document.applied.append((kind.value, dict(params)))
            if kind == StageKind.SIMPLIFY:
                ratio = params.get("ratio", 1.0)
                document.vertex_count = int(document.vertex_count * ratio)
                document.triangle_count = int(document.triangle_count * ratio)

        return capability


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def fake_io() -> FakeIO:
    return FakeIO()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A source directory with three models, one in a subdirectory."""
    source = tmp_path / "models"
    (source / "props").mkdir(parents=True)
    for relative in ("a.glb", "b.glb", "props/c.gltf"):
        (source / relative).write_text("scene", encoding="utf-8")
    (source / "notes.txt").write_text("not a model", encoding="utf-8")
    return source
