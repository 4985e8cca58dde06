"""CLI for gltf-optimizer."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress
from rich.table import Table

from gltf_optimizer.config import (
    FORMAT_SETTINGS,
    OutputConfig,
    RunConfig,
    load_run_config,
    merge_output_config,
)
from gltf_optimizer.errors import ConfigurationError, OptimizerError

app = typer.Typer(
    name="gltfopt",
    help="Batch glTF optimization with adaptive LOD generation",
    add_completion=False,
)
console = Console()

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _config_error(e: ConfigurationError) -> typer.Exit:
    console.print(f"[red]Configuration error:[/red] {e}")
    return typer.Exit(2)


def _parse_levels(levels: Optional[str]) -> Optional[list[float]]:
    if not levels:
        return None
    try:
        return [float(level.strip()) for level in levels.split(",") if level.strip()]
    except ValueError:
        raise ConfigurationError(f"Invalid --levels value: {levels!r}") from None


def _show_output_config(config: OutputConfig) -> None:
    table = Table(title="Output configuration", show_header=False)
    table.add_column("Option", style="cyan")
    table.add_column("Value")
    table.add_row("Format", config.format.value)
    table.add_row("Naming", config.naming.value)
    table.add_row("Directory", config.directory.value)
    table.add_row("Overwrite", "yes" if config.overwrite else "no")
    for fmt in ("glb", "gltf"):
        if config.format.value in (fmt, "both"):
            table.add_row(fmt.upper(), FORMAT_SETTINGS[fmt].description)
    console.print(table)


@app.command()
def optimize(
    source: Path = typer.Argument(..., help="Source directory with .glb/.gltf files"),
    target: Path = typer.Argument(..., help="Output directory"),
    lod: Optional[bool] = typer.Option(None, "--lod/--no-lod", help="Generate LOD variants"),
    levels: Optional[str] = typer.Option(
        None, "--levels", "-l",
        help="Comma-separated LOD levels (e.g., 1.0,0.5,0.25); default: from complexity",
    ),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f", help="Output format: glb, gltf, both, preserve",
    ),
    both: bool = typer.Option(False, "--both", "-b", help="Shortcut for --format both"),
    naming: Optional[str] = typer.Option(
        None, "--naming", "-n", help="File naming: preserve, suffix, custom",
    ),
    directory: Optional[str] = typer.Option(
        None, "--directory", "-d", help="Directory layout: mixed, separate",
    ),
    overwrite: Optional[bool] = typer.Option(
        None, "--overwrite/--no-overwrite", help="Overwrite existing output files",
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML run configuration (stages, output, lod)",
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Files processed in parallel"),
) -> None:
    """Optimize every glTF file in a directory tree."""
    from gltf_optimizer.batch import BatchRunner
    from gltf_optimizer.document import TrimeshIO
    from gltf_optimizer.stages import default_stages
    from gltf_optimizer.transforms import TrimeshEngine

    try:
        run_config = load_run_config(config_file) if config_file else RunConfig(stages=tuple(default_stages()))
        output_config = merge_output_config(
            {
                "format": "both" if both else output_format,
                "naming": naming,
                "directory": directory,
                "overwrite": overwrite,
            },
            base=run_config.output,
        )
        lod_levels = _parse_levels(levels) or run_config.lod_levels

        io = TrimeshIO()
        engine = TrimeshEngine(io)
        runner = BatchRunner(
            io,
            engine,
            run_config.stages,
            output_config=output_config,
            generate_lod=run_config.generate_lod if lod is None else lod,
            lod_levels=lod_levels,
            workers=workers if workers is not None else run_config.workers,
            cancel=threading.Event(),
        )
    except ConfigurationError as e:
        raise _config_error(e)

    if not source.is_dir():
        console.print(f"[red]Error:[/red] Directory not found: {source}")
        raise typer.Exit(1)

    _show_output_config(output_config)

    with Progress(console=console) as progress:
        task = progress.add_task("Optimizing...", total=None)

        def on_progress(current: int, total: int) -> None:
            progress.update(task, total=total, completed=current)

        try:
            result = runner.run(source, target, on_progress=on_progress)
        except KeyboardInterrupt:
            runner.cancel.set()
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(130)

    if result.failures:
        table = Table(title="Failed files")
        table.add_column("File", style="cyan")
        table.add_column("Stage")
        table.add_column("Error")
        for failure in result.failures:
            table.add_row(
                str(failure.source_path),
                failure.failed_stage or "-",
                failure.error_message or "",
            )
        console.print(table)

    stats = result.stats
    colour = "green" if stats.success else "red"
    console.print(
        f"[{colour}]Processed {stats.processed}, failed {stats.failed}[/{colour}] "
        f"in {stats.duration_ms / 1000:.2f} s"
    )
    if not stats.success:
        raise typer.Exit(1)


@app.command()
def analyze(
    source: Path = typer.Argument(..., help="Source .glb/.gltf file"),
) -> None:
    """Show mesh complexity and the LOD levels it would get."""
    from gltf_optimizer.document import TrimeshIO
    from gltf_optimizer.lod import distance_threshold, levels_for_complexity

    io = TrimeshIO()
    try:
        with console.status("Analyzing scene..."):
            document = io.read(source)
            metrics = io.query_complexity(document)
    except OptimizerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Analysis: {source.name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Vertices", f"{metrics.vertex_count:,}")
    table.add_row("Triangles", f"{metrics.triangle_count:,}")
    table.add_row("Geometries", str(len(document.scene.geometry)))
    table.add_row("Materials", str(len(io.list_materials(document))))
    console.print(table)

    console.print("\n[bold]Suggested LOD levels:[/bold]")
    for level in levels_for_complexity(metrics):
        console.print(f"  {level:.0%} (switch at distance {distance_threshold(level)})")


@app.command("lod")
def lod_chain(
    source: Path = typer.Argument(..., help="Source .glb/.gltf file"),
    levels: Optional[str] = typer.Option(
        None, "--levels", "-l", help="Comma-separated LOD levels (e.g., 1.0,0.5,0.25)",
    ),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o"),
    output_format: str = typer.Option("glb", "--format", "-f", help="LOD file format: glb or gltf"),
) -> None:
    """Generate LOD variants and an index for a single file."""
    from gltf_optimizer.document import TrimeshIO
    from gltf_optimizer.lod import LODGenerator, save_lods
    from gltf_optimizer.transforms import TrimeshEngine

    if output_format not in FORMAT_SETTINGS:
        raise _config_error(ConfigurationError(f"Unsupported LOD format: {output_format!r}"))

    io = TrimeshIO()
    try:
        level_list = _parse_levels(levels)
        generator = LODGenerator(io, TrimeshEngine(io))
        document = io.read(source)
        with console.status("Generating LODs..."):
            index, index_path = save_lods(
                generator.iter_variants(document, level_list),
                io,
                output_dir or source.parent,
                source.stem,
                fmt=output_format,
            )
    except ConfigurationError as e:
        raise _config_error(e)
    except OptimizerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="LOD Results")
    table.add_column("Level", style="cyan")
    table.add_column("Distance")
    table.add_column("Output")
    for entry in index.levels:
        table.add_row(f"{entry.level:.0%}", str(entry.distance_threshold), entry.path)
    console.print(table)
    console.print(f"Index: {index_path}")


def _iter_images(directory: Path):
    for path in sorted(directory.rglob("*")):
        if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
            yield path


@app.command()
def textures(
    directory: Path = typer.Argument(..., help="Directory of texture images"),
) -> None:
    """Report how the texture strategies would resize a set of images."""
    from PIL import Image

    from gltf_optimizer.textures import TextureStrategyResolver

    resolver = TextureStrategyResolver()
    entries = []
    for path in _iter_images(directory):
        with Image.open(path) as image:
            entries.append((path.name, image.width, image.height))

    if not entries:
        console.print(f"[yellow]No images found in {directory}[/yellow]")
        return

    report = resolver.analyze(entries)

    table = Table(title=f"Textures: {report.total}")
    table.add_column("Strategy", style="cyan")
    table.add_column("Count")
    for name, count in sorted(report.by_strategy.items()):
        table.add_row(name, str(count))
    console.print(table)

    sizes = Table(title="Target sizes")
    sizes.add_column("Size", style="cyan")
    sizes.add_column("Count")
    for bucket, count in sorted(report.size_buckets.items()):
        sizes.add_row(bucket, str(count))
    console.print(sizes)

    console.print(
        f"Average pixel reduction: {report.average_reduction:.1%}, "
        f"already optimal: {report.optimal_count}"
    )


@app.command("resize-images")
def resize_images(
    source: Path = typer.Argument(..., help="Directory of texture images"),
    target: Path = typer.Argument(..., help="Output directory"),
) -> None:
    """Resize texture images to their strategy's power-of-two size."""
    from PIL import Image

    from gltf_optimizer.textures import TextureStrategyResolver

    resolver = TextureStrategyResolver()
    failed = 0
    for path in _iter_images(source):
        destination = target / path.relative_to(source)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with Image.open(path) as image:
                size = resolver.size_for(path.name, image.width, image.height)
                resized = image.resize(size, Image.Resampling.LANCZOS) if size != image.size else image
                resized.save(destination)
        except OSError as e:
            failed += 1
            console.print(f"[red]✗[/red] {path}: {e}")
            continue
        console.print(f"[green]✓[/green] {path.name} -> {size[0]}x{size[1]}")

    if failed:
        raise typer.Exit(1)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h"),
    port: int = typer.Option(8000, "--port", "-p"),
) -> None:
    """Start the REST API server."""
    try:
        from gltf_optimizer.api import run_server
    except ImportError:
        console.print("[red]API dependencies not installed. Run: pip install gltf-optimizer[api][/red]")
        raise typer.Exit(1)
    console.print(f"[green]Starting API server at http://{host}:{port}[/green]")
    run_server(host=host, port=port)


@app.command("worker")
def worker(
    queue_url: str = typer.Option(..., "--queue", "-q", help="Redis URL or SQS queue"),
) -> None:
    """Start a background worker for processing jobs."""
    from gltf_optimizer.worker import run_worker

    console.print(f"[green]Starting worker, listening to {queue_url}[/green]")
    try:
        run_worker(queue_url)
    except ImportError as e:
        console.print(f"[red]{e}. Run: pip install gltf-optimizer[worker][/red]")
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
