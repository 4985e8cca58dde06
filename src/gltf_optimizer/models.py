"""Data models for gltf-optimizer."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class ComplexityMetrics:
    """Measured size of a scene document."""

    vertex_count: int
    triangle_count: int


@dataclass
class LODVariant:
    """One level of detail: a simplification ratio and its own document."""

    level: float
    document: Any


@dataclass
class LODIndexEntry:
    """A single level in the LOD index sidecar."""

    level: float
    path: str
    distance_threshold: int

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "path": self.path,
            "distanceThreshold": self.distance_threshold,
        }


@dataclass
class LODIndex:
    """Persisted LOD index record.

    Paths are relative to the directory containing the sidecar file.
    """

    model: str
    levels: list[LODIndexEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "levels": [entry.to_dict() for entry in self.levels],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LODIndex":
        return cls(
            model=data["model"],
            levels=[
                LODIndexEntry(
                    level=entry["level"],
                    path=entry["path"],
                    distance_threshold=entry["distanceThreshold"],
                )
                for entry in data.get("levels", [])
            ],
        )


@dataclass
class RunStats:
    """Counters for a single batch run."""

    processed: int = 0
    failed: int = 0
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return self.processed + self.failed

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class FileResult:
    """Result of processing one source file."""

    success: bool
    source_path: Path
    output_paths: list[Path] = field(default_factory=list)
    skipped_paths: list[Path] = field(default_factory=list)
    lod_index_path: Optional[Path] = None

    # Timing
    total_time_ms: float = 0

    # Errors
    error_message: Optional[str] = None
    failed_stage: Optional[str] = None


@dataclass
class BatchResult:
    """Statistics plus per-file results of a batch run."""

    stats: RunStats
    files: list[FileResult] = field(default_factory=list)

    @property
    def failures(self) -> list[FileResult]:
        return [result for result in self.files if not result.success]
