import typer
from pathlib import Path
from typing import Optional

import uvicorn
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from vidconv.api.app import create_app
from vidconv.config.loader import load_config
from vidconv.config.models import AppConfig
from vidconv.config.overrides import CliOverrides, EnvOverrides
from vidconv.domain.errors import ProbeError
from vidconv.domain.events import ConversionFailed, ConversionProgress
from vidconv.domain.models import JobState
from vidconv.infrastructure.event_bus import EventBus
from vidconv.infrastructure.ffmpeg import FFmpegAdapter
from vidconv.infrastructure.ffprobe import FFprobeAdapter
from vidconv.infrastructure.logging import setup_logging
from vidconv.infrastructure.storage import DownloadsStore
from vidconv.pipeline.estimator import estimate_totals
from vidconv.pipeline.orchestrator import ConversionOrchestrator
from vidconv.pipeline.registry import JobRegistry

DEFAULT_CONFIG_PATH = Path("conf/vidconv.yaml")

app = typer.Typer(help="vidconv - upload, convert and track media conversions with ffmpeg")
console = Console()


def build_config(config_path: Optional[Path], overrides: CliOverrides) -> AppConfig:
    """Config file (explicit or default if present), then environment, then CLI flags."""
    if config_path is not None:
        config = load_config(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        config = load_config(DEFAULT_CONFIG_PATH)
    else:
        config = AppConfig()
    EnvOverrides.from_environ().apply(config)
    overrides.apply(config)
    return config


def _load_or_exit(config_path: Optional[Path], overrides: CliOverrides) -> AppConfig:
    try:
        return build_config(config_path, overrides)
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on"),
    downloads_dir: Optional[Path] = typer.Option(None, "--downloads-dir", help="Directory for uploads and outputs"),
    frontend_dir: Optional[Path] = typer.Option(None, "--frontend-dir", help="Built frontend assets to serve at /"),
    ffmpeg_path: Optional[str] = typer.Option(None, "--ffmpeg", help="ffmpeg executable"),
    ffprobe_path: Optional[str] = typer.Option(None, "--ffprobe", help="ffprobe executable"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Also write logs to this file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the HTTP + WebSocket conversion service."""
    overrides = CliOverrides(
        host=host,
        port=port,
        downloads_dir=str(downloads_dir) if downloads_dir else None,
        frontend_dir=str(frontend_dir) if frontend_dir else None,
        ffmpeg_path=ffmpeg_path,
        ffprobe_path=ffprobe_path,
        log_path=str(log_path) if log_path else None,
        debug=debug,
    )
    config = _load_or_exit(config_path, overrides)
    log_path_value = Path(config.logging.log_path) if config.logging.log_path else None
    setup_logging(debug=config.logging.debug, log_path=log_path_value)

    web_app = create_app(config)
    uvicorn.run(
        web_app,
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if config.logging.debug else "warning",
    )


@app.command()
def probe(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Media file to inspect"),
    ffprobe_path: str = typer.Option("ffprobe", "--ffprobe", help="ffprobe executable"),
):
    """Print container and stream metadata for a file."""
    try:
        metadata = FFprobeAdapter(ffprobe_path).probe(file)
    except ProbeError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    totals = estimate_totals(metadata)
    summary = Table(title=file.name, show_header=False)
    summary.add_row("Duration", f"{totals.duration_seconds:.3f}s" if totals.duration_seconds > 0 else "unknown")
    summary.add_row("Frames", f"{totals.total_frames:.0f}" if totals.total_frames > 0 else "unknown")
    summary.add_row("Size", metadata.format.size or "unknown")
    summary.add_row("Bit rate", metadata.format.bit_rate or "unknown")
    summary.add_row("Resolution", metadata.resolution or "-")
    summary.add_row("Codec", metadata.codec or "-")
    console.print(summary)

    streams = Table(title="Streams")
    for column in ("#", "codec", "size", "duration", "frames", "avg fps"):
        streams.add_column(column)
    for index, stream in enumerate(metadata.streams):
        streams.add_row(
            str(index),
            stream.codec_name,
            f"{stream.width}x{stream.height}" if stream.width or stream.height else "",
            stream.duration,
            stream.nb_frames,
            stream.avg_frame_rate,
        )
    console.print(streams)


@app.command()
def convert(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Media file to convert"),
    output_format: str = typer.Option(..., "--format", "-f", help="Output format / extension, e.g. mp4"),
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", help="Where to write the output"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert one local file, showing ffmpeg progress in the terminal."""
    config = _load_or_exit(config_path, CliOverrides(debug=debug))
    setup_logging(debug=config.logging.debug, log_path=Path(config.logging.log_path) if config.logging.log_path else None)

    storage = DownloadsStore(output_dir)
    storage.ensure()
    event_bus = EventBus()
    orchestrator = ConversionOrchestrator(
        event_bus=event_bus,
        ffprobe_adapter=FFprobeAdapter(config.conversion.ffprobe_path),
        ffmpeg_adapter=FFmpegAdapter(config.conversion.ffmpeg_path),
        registry=JobRegistry(),
        progress_step=config.conversion.progress_step,
        max_line_bytes=config.conversion.max_progress_line_bytes,
        download_prefix=str(storage.root),
    )
    request = storage.prepare_request(file, file.name, output_format)

    with Progress(TextColumn("{task.description}"), BarColumn(), TaskProgressColumn(), console=console) as bar:
        task_id = bar.add_task(file.name, total=100)
        event_bus.subscribe(ConversionProgress, lambda e: bar.update(task_id, completed=e.progress))
        event_bus.subscribe(ConversionFailed, lambda e: bar.console.print(f"[red]{e.error}[/red]"))
        result = orchestrator.convert(request)

    if result.state != JobState.SUCCEEDED:
        typer.secho(f"Error: {result.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    summary = result.summary
    typer.secho(f"Wrote {request.output_path}", fg=typer.colors.GREEN)
    console.print(
        f"{summary.duration:.2f}s  {summary.file_size} bytes  {summary.resolution or '-'}  {summary.codec or '-'}"
    )


if __name__ == "__main__":
    app()
