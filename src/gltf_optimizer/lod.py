"""Adaptive LOD generation."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence, Union

from gltf_optimizer.config import FORMAT_SETTINGS
from gltf_optimizer.engine import DocumentIO, TransformEngine
from gltf_optimizer.errors import ConfigurationError
from gltf_optimizer.models import ComplexityMetrics, LODIndex, LODIndexEntry, LODVariant
from gltf_optimizer.stages import StageKind

logger = logging.getLogger(__name__)

# (max triangles, max vertices, levels), most complex first
COMPLEXITY_TIERS: tuple[tuple[int, int, tuple[float, ...]], ...] = (
    (50_000, 100_000, (1.0, 0.7, 0.4, 0.2, 0.1)),
    (20_000, 50_000, (1.0, 0.7, 0.4, 0.15)),
    (5_000, 10_000, (1.0, 0.6, 0.2)),
    (500, 1_000, (1.0, 0.3)),
)

BASE_ERROR = 0.001
MIN_SIMPLIFY_POINTS = 100


def levels_for_complexity(metrics: ComplexityMetrics) -> list[float]:
    """LOD level set for a document of the given size."""
    for max_tris, max_verts, levels in COMPLEXITY_TIERS:
        if metrics.triangle_count > max_tris or metrics.vertex_count > max_verts:
            return list(levels)
    return [1.0]


def distance_threshold(level: float) -> int:
    """Suggested switch distance for a level, ``round(100 / level)`` with halves up."""
    return int(math.floor(100 / level + 0.5))


def level_label(level: float) -> str:
    """``1.0`` -> ``"1"``, ``0.15`` -> ``"0_15"``."""
    return format(level, "g").replace(".", "_")


def validate_levels(levels: Sequence[float]) -> list[float]:
    """Check an explicit level list and return it with the base level first.

    A leading 1.0 is taken as the base. The remaining levels must lie in
    (0, 1) and be strictly decreasing.
    """
    try:
        levels = [float(level) for level in levels]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"LOD levels must be numbers: {levels!r}") from e

    reduced = levels[1:] if levels and levels[0] == 1.0 else levels
    for level in reduced:
        if not 0 < level < 1:
            raise ConfigurationError(f"LOD level {level} must be between 0 and 1 (exclusive)")
    for previous, level in zip(reduced, reduced[1:]):
        if level >= previous:
            raise ConfigurationError(f"LOD levels must be strictly decreasing: {levels!r}")

    return [1.0, *reduced]


class LODGenerator:
    """Generate simplified variants of a post-pipeline document.

    Every reduced level is simplified from its own clone of the input, so
    errors do not compound from one level to the next.

    Example:
        variants = LODGenerator(io, engine).generate(document)
    """

    def __init__(
        self,
        io: DocumentIO,
        engine: TransformEngine,
        base_error: float = BASE_ERROR,
        min_points: int = MIN_SIMPLIFY_POINTS,
    ) -> None:
        """Initialize LOD generator.

        Args:
            io: Document engine used for cloning and complexity queries
            engine: Transform engine providing the simplify capability
            base_error: Error budget at level 1.0; level ``r`` gets ``base_error / r``
            min_points: Primitives with this many points or fewer are left untouched
        """
        if StageKind.SIMPLIFY not in engine.capabilities:
            raise ConfigurationError("Transform engine has no simplify capability")
        self.io = io
        self.engine = engine
        self.base_error = base_error
        self.min_points = min_points

    def resolve_levels(self, document: Any, levels: Optional[Sequence[float]] = None) -> list[float]:
        if levels is not None:
            return validate_levels(levels)

        metrics = self.io.query_complexity(document)
        computed = levels_for_complexity(metrics)
        logger.info(
            "Complexity %d vertices / %d triangles -> LOD levels %s",
            metrics.vertex_count,
            metrics.triangle_count,
            computed,
        )
        return computed

    def iter_variants(
        self,
        document: Any,
        levels: Optional[Sequence[float]] = None,
    ) -> Iterator[LODVariant]:
        """Yield variants one at a time so each can be written and released."""
        resolved = self.resolve_levels(document, levels)

        # The base is never simplified
        yield LODVariant(level=1.0, document=self.io.clone(document))

        simplify = self.engine.capabilities[StageKind.SIMPLIFY]
        for level in resolved[1:]:
            logger.info("Generating LOD level %s", level)
            variant = self.io.clone(document)
            simplify(
                variant,
                {
                    "ratio": level,
                    "error": self.base_error * (1 / level),
                    "min_points": self.min_points,
                },
            )
            yield LODVariant(level=level, document=variant)

    def generate(self, document: Any, levels: Optional[Sequence[float]] = None) -> list[LODVariant]:
        """Generate all LOD variants, base level first."""
        return list(self.iter_variants(document, levels))


def lod_filename(model_name: str, level: float, fmt: str = "glb") -> str:
    return f"{model_name}_lod_{level_label(level)}{FORMAT_SETTINGS[fmt].extension}"


def index_filename(model_name: str) -> str:
    return f"{model_name}_lod_config.json"


def save_lods(
    variants: Union[Sequence[LODVariant], Iterator[LODVariant]],
    io: DocumentIO,
    output_dir: Union[str, Path],
    model_name: str,
    fmt: str = "glb",
    overwrite: bool = True,
    threshold_for: Callable[[float], int] = distance_threshold,
) -> tuple[LODIndex, Path]:
    """Write each variant and the LOD index sidecar.

    Variants may be an iterator; each document is dropped once written.
    ``threshold_for`` maps a level to its switch distance.

    Returns:
        The index and the path of the sidecar file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    index = LODIndex(model=model_name)
    options = FORMAT_SETTINGS[fmt].write_options()

    for variant in variants:
        filename = lod_filename(model_name, variant.level, fmt)
        path = output_dir / filename

        if path.exists() and not overwrite:
            logger.info("Skipping existing LOD file: %s", path)
        else:
            io.write(path, variant.document, dict(options))
            logger.info("LOD %s saved: %s", variant.level, path)
        variant.document = None

        index.levels.append(
            LODIndexEntry(
                level=variant.level,
                path=filename,
                distance_threshold=threshold_for(variant.level),
            )
        )

    index_path = output_dir / index_filename(model_name)
    if index_path.exists() and not overwrite:
        logger.info("Skipping existing LOD index: %s", index_path)
    else:
        index_path.write_text(json.dumps(index.to_dict(), indent=2), encoding="utf-8")
        logger.info("LOD index written: %s", index_path)
    return index, index_path
