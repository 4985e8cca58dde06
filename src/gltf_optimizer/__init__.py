"""glTF Optimizer - batch optimization and LOD generation for glTF assets."""

__version__ = "0.1.0"

from gltf_optimizer.batch import BatchRunner, run_batch
from gltf_optimizer.config import OutputConfig, merge_output_config
from gltf_optimizer.errors import (
    ConfigurationError,
    DocumentIOError,
    OptimizerError,
    PartialOutputError,
    StageError,
)
from gltf_optimizer.lod import LODGenerator
from gltf_optimizer.models import ComplexityMetrics, LODIndex, LODVariant, RunStats
from gltf_optimizer.output import resolve_outputs
from gltf_optimizer.pipeline import Pipeline
from gltf_optimizer.stages import StageDescriptor, StageKind, default_stages
from gltf_optimizer.textures import TextureStrategyResolver

__all__ = [
    "BatchRunner",
    "run_batch",
    "OutputConfig",
    "merge_output_config",
    "ConfigurationError",
    "DocumentIOError",
    "OptimizerError",
    "PartialOutputError",
    "StageError",
    "LODGenerator",
    "ComplexityMetrics",
    "LODIndex",
    "LODVariant",
    "RunStats",
    "resolve_outputs",
    "Pipeline",
    "StageDescriptor",
    "StageKind",
    "default_stages",
    "TextureStrategyResolver",
]
