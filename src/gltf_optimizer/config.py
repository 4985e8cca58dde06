"""Configuration for output layout, texture sizing and batch runs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from gltf_optimizer.errors import ConfigurationError


# =========================================================================
# Output
# =========================================================================

class OutputFormat(str, Enum):
    GLB = "glb"
    GLTF = "gltf"
    BOTH = "both"
    PRESERVE = "preserve"


class Naming(str, Enum):
    PRESERVE = "preserve"
    SUFFIX = "suffix"
    CUSTOM = "custom"


class DirectoryLayout(str, Enum):
    MIXED = "mixed"
    SEPARATE = "separate"


@dataclass(frozen=True)
class FormatSettings:
    """Per-format write settings for a single physical file format."""

    extension: str
    description: str
    binary: bool = False
    pretty: bool = False
    embed_images: bool = False

    def write_options(self) -> dict:
        if self.extension == ".gltf":
            return {"pretty": self.pretty, "embed_images": self.embed_images}
        return {"binary": self.binary}


FORMAT_SETTINGS: dict[str, FormatSettings] = {
    "glb": FormatSettings(
        extension=".glb",
        binary=True,
        description="Binary glTF - a single file, suited to production",
    ),
    "gltf": FormatSettings(
        extension=".gltf",
        pretty=True,
        embed_images=False,
        description="Text glTF - JSON plus side files, easy to debug and edit",
    ),
}


_OUTPUT_DOMAINS: dict[str, type[Enum]] = {
    "format": OutputFormat,
    "naming": Naming,
    "directory": DirectoryLayout,
}


@dataclass(frozen=True)
class OutputConfig:
    """Output format, naming and directory layout.

    Plain strings are accepted and converted to their enum; anything
    outside the domain raises ``ConfigurationError``.
    """

    format: OutputFormat = OutputFormat.PRESERVE
    naming: Naming = Naming.PRESERVE
    directory: DirectoryLayout = DirectoryLayout.MIXED
    overwrite: bool = True

    def __post_init__(self) -> None:
        validate_output_config(
            {
                "format": self.format,
                "naming": self.naming,
                "directory": self.directory,
                "overwrite": self.overwrite,
            }
        )
        for key, domain in _OUTPUT_DOMAINS.items():
            value = getattr(self, key)
            raw = value.value if isinstance(value, Enum) else value
            object.__setattr__(self, key, domain(raw))


def validate_output_config(user_config: Mapping[str, Any]) -> None:
    """Reject unknown keys and values outside their enumerated domain."""
    for key, value in user_config.items():
        if key == "overwrite":
            if not isinstance(value, bool):
                raise ConfigurationError(f"overwrite must be a boolean, got {value!r}")
            continue

        domain = _OUTPUT_DOMAINS.get(key)
        if domain is None:
            raise ConfigurationError(f"Unknown output option: {key!r}")

        allowed = [member.value for member in domain]
        raw = value.value if isinstance(value, Enum) else value
        if raw not in allowed:
            raise ConfigurationError(
                f"Unsupported output {key}: {value!r}, supported: {', '.join(allowed)}"
            )


DEFAULT_OUTPUT_CONFIG = OutputConfig()


def merge_output_config(
    user_config: Optional[Mapping[str, Any]] = None,
    base: OutputConfig = DEFAULT_OUTPUT_CONFIG,
) -> OutputConfig:
    """Validate a partial user config and overlay it on ``base``.

    Options set to ``None`` are treated as absent.
    """
    user_config = {k: v for k, v in (user_config or {}).items() if v is not None}
    validate_output_config(user_config)

    updates: dict[str, Any] = {}
    for key, value in user_config.items():
        domain = _OUTPUT_DOMAINS.get(key)
        updates[key] = domain(value) if domain else value
    return replace(base, **updates)


# =========================================================================
# Textures
# =========================================================================

class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class TextureStrategy:
    """Sizing policy bound to textures whose name contains a keyword."""

    name: str
    keywords: tuple[str, ...]
    max_size: int
    min_size: int
    round_up: bool = False
    priority: Priority = Priority.MEDIUM

    def matches(self, texture_name: str) -> bool:
        lowered = texture_name.lower()
        return any(keyword in lowered for keyword in self.keywords)


DEFAULT_STRATEGIES: tuple[TextureStrategy, ...] = (
    # Base color keeps the most detail and rounds up
    TextureStrategy(
        name="albedo",
        keywords=("albedo", "diffuse", "basecolor", "base_color", "color"),
        max_size=2048,
        min_size=256,
        round_up=True,
        priority=Priority.HIGH,
    ),
    TextureStrategy(
        name="normal",
        keywords=("normal", "normalmap", "normal_map", "bump"),
        max_size=1024,
        min_size=256,
    ),
    TextureStrategy(
        name="material",
        keywords=("roughness", "metallic", "metalness", "ao", "occlusion", "ambient_occlusion"),
        max_size=1024,
        min_size=128,
        priority=Priority.LOW,
    ),
    TextureStrategy(
        name="emissive",
        keywords=("emissive", "emission", "glow"),
        max_size=1024,
        min_size=256,
    ),
    TextureStrategy(
        name="alpha",
        keywords=("alpha", "opacity", "transparent"),
        max_size=1024,
        min_size=256,
    ),
)

DEFAULT_TEXTURE_STRATEGY = TextureStrategy(
    name="default",
    keywords=(),
    max_size=1024,
    min_size=256,
)


@dataclass(frozen=True)
class TextureSettings:
    """Global texture sizing settings."""

    max_size: int = 2048
    min_size: int = 128
    target_format: str = "webp"
    log_progress: bool = True
    # Collapse to a square of the smaller side
    preserve_aspect_ratio: bool = True
    # Textures smaller than this on both sides are left alone
    skip_resize_threshold: int = 128
    # Keep sizes that are already power-of-two, square and in range
    preserve_optimal_sizes: bool = True

    strategies: tuple[TextureStrategy, ...] = DEFAULT_STRATEGIES
    default_strategy: TextureStrategy = DEFAULT_TEXTURE_STRATEGY

    def validate(self) -> None:
        for strategy in (*self.strategies, self.default_strategy):
            if strategy.min_size <= 0 or strategy.max_size <= 0:
                raise ConfigurationError(f"Texture strategy {strategy.name}: sizes must be positive")
            if strategy.min_size > strategy.max_size:
                raise ConfigurationError(
                    f"Texture strategy {strategy.name}: min_size exceeds max_size"
                )
        if self.skip_resize_threshold < 0:
            raise ConfigurationError("skip_resize_threshold must not be negative")


DEFAULT_TEXTURE_SETTINGS = TextureSettings()


# =========================================================================
# Run configuration
# =========================================================================

@dataclass(frozen=True)
class RunConfig:
    """Everything a batch run needs besides the source and target dirs."""

    stages: tuple = ()
    output: OutputConfig = DEFAULT_OUTPUT_CONFIG
    generate_lod: bool = False
    lod_levels: Optional[tuple[float, ...]] = None
    workers: int = 1

    def validate(self) -> None:
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")


def load_run_config(path: Union[str, Path]) -> RunConfig:
    """Load a run configuration from a YAML (or JSON) file.

    Example:
        stages:
          - prune
          - weld: {tolerance: 0.001}
          - name: simplify
            params: {ratio: 0.75, error: 0.001}
        output: {format: both, naming: suffix}
        lod: {enabled: true, levels: [1.0, 0.5, 0.25]}
        workers: 2
    """
    from gltf_optimizer.lod import validate_levels
    from gltf_optimizer.stages import default_stages, parse_stages

    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read run config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid run config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Run config {path} must be a mapping")

    unknown = set(data) - {"stages", "output", "lod", "workers"}
    if unknown:
        raise ConfigurationError(f"Unknown run config section(s): {', '.join(sorted(unknown))}")

    stages = parse_stages(data["stages"]) if "stages" in data else default_stages()
    output = merge_output_config(data.get("output") or {})

    lod = data.get("lod") or {}
    if not isinstance(lod, dict):
        raise ConfigurationError("lod section must be a mapping")
    levels = lod.get("levels")
    if levels is not None:
        levels = tuple(validate_levels(levels))

    config = RunConfig(
        stages=tuple(stages),
        output=output,
        generate_lod=bool(lod.get("enabled", False)),
        lod_levels=levels,
        workers=int(data.get("workers", 1)),
    )
    config.validate()
    return config


# =========================================================================
# Service settings
# =========================================================================

@dataclass
class ServiceSettings:
    """Paths and queue names for the API server and queue worker."""

    upload_dir: Path = field(default_factory=lambda: Path("/tmp/gltfopt/uploads"))
    output_dir: Path = field(default_factory=lambda: Path("/tmp/gltfopt/outputs"))
    s3_bucket: Optional[str] = None
    queue_name: str = "gltfopt:jobs"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            upload_dir=Path(os.environ.get("GLTFOPT_UPLOAD_DIR", "/tmp/gltfopt/uploads")),
            output_dir=Path(os.environ.get("GLTFOPT_OUTPUT_DIR", "/tmp/gltfopt/outputs")),
            s3_bucket=os.environ.get("GLTFOPT_S3_BUCKET"),
            queue_name=os.environ.get("GLTFOPT_QUEUE_NAME", "gltfopt:jobs"),
        )
