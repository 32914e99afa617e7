import typer
from datetime import datetime
from pathlib import Path
from typing import Optional, List

from pydantic import ValidationError
from cvc.config.loader import load_config
from cvc.config.models import AppConfig
from cvc.infrastructure.logging import setup_logging, default_log_path
from cvc.infrastructure.event_bus import EventBus
from cvc.infrastructure.file_scanner import FileScanner
from cvc.infrastructure.ffmpeg import FFmpegAdapter, TranscoderNotFoundError
from cvc.infrastructure.housekeeping import HousekeepingService
from cvc.pipeline.cancellation import CancellationContext
from cvc.pipeline.supervisor import ProcessSupervisor
from cvc.pipeline.orchestrator import Orchestrator
from cvc.pipeline.thread_budget import detect_cpu_count, resolve_threads_per_worker
from cvc.ui.reporter import ConsoleReporter

app = typer.Typer(help="CVC (Crawler Video Converter) - batch transcode a directory tree with ffmpeg")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _banner_lines(root_dir: Path, config: AppConfig, cpu_count: int, threads_per_worker: int) -> List[str]:
    general = config.general
    enc = config.encoder
    nice = str(general.nice_level) if general.nice_level is not None else "off"
    return [
        f"Crawler Video Converter - {enc.video_codec} (CRF {enc.crf}, preset {enc.preset})",
        f"Start: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Root: {root_dir}",
        f"Extensions: {', '.join(general.source_extensions)} -> {general.output_extension}",
        f"Output: <dir>/{general.converted_dir_name}/",
        f"CPU cores: {cpu_count}",
        f"Target CPU load: {general.target_cpu_percent}% (~{max(1, cpu_count * general.target_cpu_percent // 100)} cores)",
        f"Parallel conversions: {general.max_workers}",
        f"Threads per ffmpeg: {threads_per_worker}",
        f"Nice level: {nice}",
    ]


@app.command()
def convert(
    root_dir: Path = typer.Argument(..., help="Directory to scan recursively for source videos"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Override number of parallel conversions"),
    cpu_percent: Optional[int] = typer.Option(None, "--cpu-percent", min=1, max=100, help="Override target CPU load in percent"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Override ffmpeg threads per conversion"),
    nice: Optional[int] = typer.Option(None, "--nice", min=0, max=19, help="Override nice level of ffmpeg processes"),
    no_sweep: bool = typer.Option(False, "--no-sweep", help="Do not remove leftovers of interrupted runs at startup"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every matching video under ROOT_DIR into ROOT_DIR/**/converted/."""
    if not root_dir.exists():
        _fail(f"Directory does not exist: {root_dir}")
    if not root_dir.is_dir():
        _fail(f"Not a directory: {root_dir}")
    root_dir = root_dir.resolve()

    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError, ValidationError) as exc:
        _fail(str(exc))

    # Apply CLI overrides
    general = config.general
    if workers: general.max_workers = workers
    if cpu_percent: general.target_cpu_percent = cpu_percent
    if threads: general.threads_per_worker = threads
    if nice is not None: general.nice_level = nice
    if no_sweep: general.sweep_on_startup = False
    if log_path is not None: general.log_path = str(log_path)
    if debug: general.debug = True

    try:
        log_file = Path(general.log_path) if general.log_path else default_log_path(root_dir, general.converted_dir_name)
        logger = setup_logging(log_file, debug=general.debug)
        logger.info(f"CVC started: root={root_dir}")
        logger.info(
            f"Config: workers={general.max_workers}, cpu_percent={general.target_cpu_percent}, "
            f"threads={general.threads_per_worker}, nice={general.nice_level}, debug={general.debug}"
        )

        ffmpeg = FFmpegAdapter(encoder=config.encoder, nice_level=general.nice_level)
        try:
            ffmpeg.check_available()
        except TranscoderNotFoundError as exc:
            logger.error(f"Transcoder unavailable: {exc}")
            _fail(f"{exc}\nInstall ffmpeg: https://ffmpeg.org/download.html")

        cpu_count = detect_cpu_count()
        threads_per_worker = resolve_threads_per_worker(
            general.target_cpu_percent, general.max_workers,
            override=general.threads_per_worker, cpu_count=cpu_count,
        )

        bus = EventBus()
        reporter = ConsoleReporter(bus)
        reporter.print_banner(_banner_lines(root_dir, config, cpu_count, threads_per_worker))

        cancellation = CancellationContext()
        supervisor = ProcessSupervisor(
            cancellation,
            event_bus=bus,
            shutdown_grace_seconds=general.shutdown_grace_seconds,
            kill_settle_seconds=general.kill_settle_seconds,
        )
        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            file_scanner=FileScanner(general.source_extensions, general.converted_dir_name),
            ffmpeg_adapter=ffmpeg,
            supervisor=supervisor,
            housekeeper=HousekeepingService(general.converted_dir_name, general.marker_suffix, general.temp_suffix),
            threads_per_worker=threads_per_worker,
        )

        supervisor.install_signal_handlers()
        try:
            summary = orchestrator.run_directory(root_dir)
        finally:
            supervisor.restore_signal_handlers()

        if summary.interrupted:
            raise typer.Exit(code=summary.exit_code)

    except KeyboardInterrupt:
        # Interrupt outside the supervised section (before handlers were installed)
        typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        with open("error.log", "a") as f:
            import traceback
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
