"""Stage kinds and stage descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from gltf_optimizer.errors import ConfigurationError


class StageKind(str, Enum):
    PALETTE = "palette"
    VERTEX_COLOR_SPACE = "vertex-color-space"
    RESAMPLE = "resample"
    PRUNE = "prune"
    DEDUP = "dedup"
    INSTANCE = "instance"
    FLATTEN = "flatten"
    JOIN = "join"
    PARTITION = "partition"
    WELD = "weld"
    SIMPLIFY = "simplify"
    REORDER = "reorder"
    SPARSIFY = "sparsify"
    DEQUANTIZE = "dequantize"
    COMPRESS = "compress"
    NORMALS = "normals"
    GENERATE_TANGENTS = "generate-tangents"
    BACKFACE_CULLING = "backface-culling"
    TEXTURE_COMPRESS = "texture-compress"

    @classmethod
    def parse(cls, value: Any) -> "StageKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("_", "-"))
        except ValueError:
            supported = ", ".join(kind.value for kind in cls)
            raise ConfigurationError(
                f"Unknown stage kind: {value!r}, supported: {supported}"
            ) from None


# Advisory execution order. Kinds on the same rank may appear in any order.
CANONICAL_ORDER: dict[StageKind, int] = {
    StageKind.PALETTE: 0,
    StageKind.VERTEX_COLOR_SPACE: 0,
    StageKind.RESAMPLE: 1,
    StageKind.PRUNE: 1,
    StageKind.DEDUP: 1,
    StageKind.INSTANCE: 1,
    StageKind.FLATTEN: 2,
    StageKind.JOIN: 2,
    StageKind.PARTITION: 2,
    StageKind.DEQUANTIZE: 2,
    StageKind.WELD: 3,
    StageKind.SIMPLIFY: 4,
    StageKind.REORDER: 5,
    StageKind.SPARSIFY: 5,
    StageKind.COMPRESS: 6,
    StageKind.NORMALS: 6,
    StageKind.GENERATE_TANGENTS: 7,
    StageKind.BACKFACE_CULLING: 7,
    StageKind.TEXTURE_COMPRESS: 8,
}

# Kinds allowed to run again after later-ranked stages (weld after reorder/simplify).
_REPEATABLE = {StageKind.WELD, StageKind.NORMALS}


@dataclass(frozen=True)
class StageDescriptor:
    """A named stage plus the parameters passed to its capability."""

    name: StageKind
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", StageKind.parse(self.name))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def describe(self) -> str:
        if not self.params:
            return self.name.value
        args = ", ".join(f"{key}={value!r}" for key, value in self.params.items())
        return f"{self.name.value}({args})"

    @classmethod
    def parse(cls, entry: Any) -> "StageDescriptor":
        """Build a descriptor from a config entry.

        Accepts ``"prune"``, ``{"name": "weld", "params": {...}}`` or
        ``{"weld": {...}}``.
        """
        if isinstance(entry, cls):
            return entry
        if isinstance(entry, str):
            return cls(StageKind.parse(entry))
        if isinstance(entry, Mapping):
            if "name" in entry:
                extra = set(entry) - {"name", "params"}
                if extra:
                    raise ConfigurationError(
                        f"Unexpected stage keys: {', '.join(sorted(extra))}"
                    )
                params = entry.get("params") or {}
                if not isinstance(params, Mapping):
                    raise ConfigurationError(f"Stage params must be a mapping: {params!r}")
                return cls(StageKind.parse(entry["name"]), params)
            if len(entry) == 1:
                ((name, params),) = entry.items()
                params = params or {}
                if not isinstance(params, Mapping):
                    raise ConfigurationError(f"Stage params must be a mapping: {params!r}")
                return cls(StageKind.parse(name), params)
        raise ConfigurationError(f"Invalid stage entry: {entry!r}")


def parse_stages(entries: Iterable[Any]) -> list[StageDescriptor]:
    """Parse a list of stage entries, failing on the first invalid one."""
    if isinstance(entries, (str, bytes)) or not isinstance(entries, Iterable):
        raise ConfigurationError("stages must be a list")
    return [StageDescriptor.parse(entry) for entry in entries]


def order_violations(stages: Sequence[StageDescriptor]) -> list[tuple[StageDescriptor, StageDescriptor]]:
    """Pairs (earlier, later) where ``later`` should have run before ``earlier``."""
    violations = []
    for i, later in enumerate(stages):
        if later.name in _REPEATABLE:
            continue
        for earlier in stages[:i]:
            if CANONICAL_ORDER[earlier.name] > CANONICAL_ORDER[later.name]:
                violations.append((earlier, later))
                break
    return violations


# (tolerance, normal tolerance) steps; the first weld runs before simplify.
DEFAULT_WELD_LADDER: tuple[tuple[float, float], ...] = (
    (0.001, 0.25),
    (0.00001, 0.1),
    (0.000001, 0.1),
)


def default_stages(
    weld_ladder: Sequence[tuple[float, float]] = DEFAULT_WELD_LADDER,
    simplify_ratio: float = 0.75,
    texture_format: str = "webp",
) -> list[StageDescriptor]:
    """Default optimization pipeline.

    Welds once before simplification and again with each tighter tolerance
    of ``weld_ladder`` afterwards, to merge vertices that become coincident.
    """
    if not weld_ladder:
        raise ConfigurationError("weld_ladder needs at least one step")

    first, *rest = weld_ladder
    stages = [
        StageDescriptor(StageKind.PRUNE),
        StageDescriptor(StageKind.DEDUP, {"property_types": ["mesh"]}),
        StageDescriptor(StageKind.WELD, {"tolerance": first[0], "tolerance_normal": first[1]}),
        StageDescriptor(
            StageKind.SIMPLIFY,
            {"ratio": simplify_ratio, "error": 0.001, "min_points": 100},
        ),
    ]
    for tolerance, tolerance_normal in rest:
        stages.append(
            StageDescriptor(
                StageKind.WELD,
                {"tolerance": tolerance, "tolerance_normal": tolerance_normal},
            )
        )
    stages.append(StageDescriptor(StageKind.NORMALS))
    stages.append(
        StageDescriptor(
            StageKind.TEXTURE_COMPRESS,
            {"target_format": texture_format, "resize": "strategy"},
        )
    )
    return stages
