"""Collaborator interfaces for document I/O and transform engines.

The pipeline, LOD generator and batch runner only talk to these protocols.
``gltf_optimizer.document`` and ``gltf_optimizer.transforms`` provide the
trimesh-backed implementations.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from gltf_optimizer.models import ComplexityMetrics
from gltf_optimizer.stages import StageKind

# A capability mutates the document in place.
Capability = Callable[[Any, Mapping[str, Any]], None]


@runtime_checkable
class DocumentIO(Protocol):
    """Reads, writes, clones and inspects scene documents."""

    def read(self, path: Path) -> Any:
        ...

    def write(self, path: Path, document: Any, options: Mapping[str, Any]) -> None:
        ...

    def clone(self, document: Any) -> Any:
        ...

    def query_complexity(self, document: Any) -> ComplexityMetrics:
        ...

    def list_materials(self, document: Any) -> Iterable[Any]:
        ...

    def set_double_sided(self, material: Any, double_sided: bool) -> None:
        ...


@runtime_checkable
class TransformEngine(Protocol):
    """Provides one capability per supported stage kind."""

    @property
    def capabilities(self) -> Mapping[StageKind, Capability]:
        ...
