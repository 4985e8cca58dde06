"""Batch processing of a source tree of scene files."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from gltf_optimizer.config import FORMAT_SETTINGS, OutputConfig, merge_output_config
from gltf_optimizer.engine import DocumentIO, TransformEngine
from gltf_optimizer.errors import ConfigurationError, PartialOutputError, StageError
from gltf_optimizer.lod import LODGenerator, save_lods, validate_levels
from gltf_optimizer.models import BatchResult, FileResult, RunStats
from gltf_optimizer.output import resolve_outputs, write_outputs
from gltf_optimizer.pipeline import Pipeline

logger = logging.getLogger(__name__)

SCENE_EXTENSIONS = (".glb", ".gltf")


def find_models(source_dir: Union[str, Path]) -> list[Path]:
    """All scene files under ``source_dir``, sorted for a stable run order."""
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    return sorted(
        path
        for path in source_dir.rglob("*")
        if path.is_file() and path.suffix.lower() in SCENE_EXTENSIONS
    )


class BatchRunner:
    """Optimize every scene file in a directory tree.

    A failure in one file is logged and counted; the remaining files are
    still processed.

    Example:
        runner = BatchRunner(io, engine, default_stages(), generate_lod=True)
        result = runner.run("models", "export")
        print(result.stats.processed, result.stats.failed)
    """

    def __init__(
        self,
        io: DocumentIO,
        engine: TransformEngine,
        stages: Iterable[Any],
        output_config: Union[OutputConfig, dict, None] = None,
        generate_lod: bool = False,
        lod_levels: Optional[Sequence[float]] = None,
        lod_format: str = "glb",
        workers: int = 1,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Initialize batch runner.

        Configuration is validated here, before any file is touched.

        Args:
            io: Document engine for reading and writing
            engine: Transform engine providing stage capabilities
            stages: Ordered pipeline stages
            output_config: Output layout (OutputConfig or partial mapping)
            generate_lod: Also write LOD variants and an index per file
            lod_levels: Explicit LOD levels (default: derived from complexity)
            lod_format: Format of LOD files ("glb" or "gltf")
            workers: Number of files processed concurrently
            cancel: Event checked between stages and between files
        """
        if workers < 1:
            raise ConfigurationError("workers must be at least 1")
        if lod_format not in FORMAT_SETTINGS:
            raise ConfigurationError(
                f"Unsupported LOD format: {lod_format!r}, supported: {', '.join(FORMAT_SETTINGS)}"
            )

        self.io = io
        self.engine = engine
        self.pipeline = Pipeline(engine)
        self.stages = self.pipeline.validate(stages)
        if not isinstance(output_config, OutputConfig):
            output_config = merge_output_config(output_config)
        self.output_config = output_config
        self.generate_lod = generate_lod
        self.lod_levels = validate_levels(lod_levels) if lod_levels is not None else None
        self.lod_format = lod_format
        self.lod_generator = LODGenerator(io, engine) if generate_lod else None
        self.workers = workers
        self.cancel = cancel

        self._lock = threading.Lock()

    def run(
        self,
        source_dir: Union[str, Path],
        target_dir: Union[str, Path],
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> BatchResult:
        """Process all scene files under ``source_dir`` into ``target_dir``.

        Args:
            source_dir: Root of the source tree
            target_dir: Root of the output tree
            on_progress: Optional callback (files_done, total_files)

        Returns:
            BatchResult with run statistics and per-file results
        """
        start_time = time.perf_counter()
        source_dir = Path(source_dir)
        target_dir = Path(target_dir)

        files = find_models(source_dir)
        logger.info("Found %d scene file(s) in %s", len(files), source_dir)

        stats = RunStats()
        result = BatchResult(stats=stats)

        def record(file_result: Optional[FileResult]) -> None:
            if file_result is None:
                return
            with self._lock:
                result.files.append(file_result)
                if file_result.success:
                    stats.processed += 1
                else:
                    stats.failed += 1
                if on_progress:
                    on_progress(stats.total, len(files))

        if self.workers == 1:
            for path in files:
                if self._cancelled():
                    break
                record(self.process_file(path, source_dir, target_dir))
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [
                    pool.submit(self.process_file, path, source_dir, target_dir)
                    for path in files
                ]
                for future in as_completed(futures):
                    record(future.result())

        stats.duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Batch finished: %d processed, %d failed in %.2f s",
            stats.processed,
            stats.failed,
            stats.duration_ms / 1000,
        )
        return result

    def process_file(
        self, path: Path, source_dir: Path, target_dir: Path
    ) -> Optional[FileResult]:
        """Optimize a single file. Never raises; failures go into the result.

        Returns None when the run was cancelled before the file started.
        """
        if self._cancelled():
            logger.info("Cancelled, skipping: %s", path)
            return None

        start_time = time.perf_counter()
        file_result = FileResult(success=False, source_path=path)
        logger.info("Processing: %s", path)

        try:
            relative_dir = path.parent.relative_to(source_dir)

            document = self.io.read(path)
            self.pipeline.run(document, self.stages, cancel=self.cancel)

            targets = resolve_outputs(path, target_dir, relative_dir, self.output_config)
            report = write_outputs(self.io, document, targets)
            file_result.output_paths = report.written
            file_result.skipped_paths = report.skipped
            report.raise_for_failures()

            if self.lod_generator is not None:
                variants = self.lod_generator.iter_variants(document, self.lod_levels)
                _, index_path = save_lods(
                    variants,
                    self.io,
                    targets[0].path.parent,
                    path.stem,
                    fmt=self.lod_format,
                    overwrite=self.output_config.overwrite,
                )
                file_result.lod_index_path = index_path

            document = None
            file_result.success = True
            logger.info("Done: %s", path)

        except StageError as e:
            file_result.error_message = str(e)
            file_result.failed_stage = e.stage.describe() if e.stage else None
            logger.error("Failed %s: %s", path, e)
        except PartialOutputError as e:
            file_result.error_message = str(e)
            logger.error("Failed %s: %s", path, e)
        except Exception as e:
            file_result.error_message = f"{type(e).__name__}: {e}"
            logger.error("Failed %s: %s", path, file_result.error_message)

        file_result.total_time_ms = (time.perf_counter() - start_time) * 1000
        return file_result

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


def run_batch(
    source_dir: Union[str, Path],
    target_dir: Union[str, Path],
    stages: Iterable[Any],
    output_config: Union[OutputConfig, dict, None] = None,
    generate_lod: bool = False,
    io: Optional[DocumentIO] = None,
    engine: Optional[TransformEngine] = None,
) -> RunStats:
    """Optimize a directory tree and return the run statistics.

    Convenience function that creates a BatchRunner with the trimesh engine
    unless ``io`` and ``engine`` are given.
    """
    if io is None or engine is None:
        from gltf_optimizer.document import TrimeshIO
        from gltf_optimizer.transforms import TrimeshEngine

        io = io or TrimeshIO()
        engine = engine or TrimeshEngine(io)

    runner = BatchRunner(
        io,
        engine,
        stages,
        output_config=output_config,
        generate_lod=generate_lod,
    )
    return runner.run(source_dir, target_dir).stats
