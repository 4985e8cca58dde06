"""Output path resolution and multi-format writing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from gltf_optimizer.config import (
    FORMAT_SETTINGS,
    DirectoryLayout,
    Naming,
    OutputConfig,
    OutputFormat,
    merge_output_config,
)
from gltf_optimizer.engine import DocumentIO
from gltf_optimizer.errors import PartialOutputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputTarget:
    """One physical output file for one format."""

    path: Path
    format: str
    write_options: dict = field(default_factory=dict)
    skip: bool = False


@dataclass
class OutputReport:
    """What happened to each resolved target."""

    written: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialOutputError(self.written, self.failures)


def default_format(input_path: Union[str, Path]) -> str:
    """Format that keeps the input's container: glb for .glb, else gltf."""
    return "glb" if Path(input_path).suffix.lower() == ".glb" else "gltf"


def formats_for(input_path: Union[str, Path], output_format: OutputFormat) -> list[str]:
    if output_format == OutputFormat.GLB:
        return ["glb"]
    if output_format == OutputFormat.GLTF:
        return ["gltf"]
    if output_format == OutputFormat.BOTH:
        return ["glb", "gltf"]
    return [default_format(input_path)]


def output_filename(name: str, fmt: str, naming: Naming) -> str:
    extension = FORMAT_SETTINGS[fmt].extension
    if naming == Naming.SUFFIX:
        return f"{name}_{fmt}{extension}"
    if naming == Naming.CUSTOM:
        return f"{name}_optimized{extension}"
    return f"{name}{extension}"


def output_path(
    input_path: Union[str, Path],
    output_root: Union[str, Path],
    relative_dir: Union[str, Path],
    fmt: str,
    config: OutputConfig,
) -> Path:
    """Path for one format. ``relative_dir`` is the input's directory relative to the source root."""
    filename = output_filename(Path(input_path).stem, fmt, config.naming)
    root = Path(output_root)
    if config.directory == DirectoryLayout.SEPARATE:
        root = root / fmt
    return root / Path(relative_dir) / filename


def resolve_outputs(
    input_path: Union[str, Path],
    output_root: Union[str, Path],
    relative_dir: Union[str, Path],
    config: Union[OutputConfig, dict, None] = None,
) -> list[OutputTarget]:
    """Resolve every output target for an input file.

    ``config`` may be an OutputConfig or a partial mapping, which is
    validated before any path is resolved. Targets that already exist are
    marked ``skip`` unless ``overwrite`` is set.
    """
    if not isinstance(config, OutputConfig):
        config = merge_output_config(config)

    targets = []
    for fmt in formats_for(input_path, config.format):
        path = output_path(input_path, output_root, relative_dir, fmt, config)
        targets.append(
            OutputTarget(
                path=path,
                format=fmt,
                write_options=FORMAT_SETTINGS[fmt].write_options(),
                skip=path.exists() and not config.overwrite,
            )
        )
    return targets


def write_outputs(
    io: DocumentIO,
    document: Any,
    targets: list[OutputTarget],
) -> OutputReport:
    """Write ``document`` to every non-skipped target.

    A failure for one format is recorded and does not stop the others.
    """
    report = OutputReport()

    for target in targets:
        if target.skip:
            logger.info("Skipping existing file: %s", target.path)
            report.skipped.append(target.path)
            continue

        try:
            target.path.parent.mkdir(parents=True, exist_ok=True)
            io.write(target.path, document, dict(target.write_options))
        except Exception as e:
            logger.error("Failed to write %s: %s: %s", target.format.upper(), target.path, e)
            report.failures[target.format] = e
            continue

        report.written.append(target.path)
        logger.info("%s saved: %s (%s)", target.format.upper(), target.path, _size_label(target.path))

    return report


def write_model(
    io: DocumentIO,
    document: Any,
    input_path: Union[str, Path],
    output_root: Union[str, Path],
    relative_dir: Union[str, Path],
    config: Union[OutputConfig, dict, None] = None,
) -> OutputReport:
    """Resolve and write all configured formats for one document."""
    targets = resolve_outputs(input_path, output_root, relative_dir, config)
    return write_outputs(io, document, targets)


def _size_label(path: Path) -> str:
    size: Optional[int]
    try:
        size = path.stat().st_size
    except OSError:
        size = None
    return "unknown size" if size is None else f"{size / 1024:.2f} KB"
