import io
import pytest
from pathlib import Path
from rich.console import Console
from cvc.domain.events import (
    DiscoveryFinished, OutputCleanedUp, ProcessingFinished, ShutdownEscalated, ShutdownRequested,
    SweepFinished, TaskCanceled, TaskFailed, TaskSkipped, TaskStarted, TaskSucceeded,
)
from cvc.domain.models import RunSummary, SourceFile, TaskOutcome, TaskResult
from cvc.ui.reporter import ConsoleReporter, format_size


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def reporter(event_bus, output):
    console = Console(file=output, width=120, color_system=None, highlight=False)
    return ConsoleReporter(event_bus, console=console)


@pytest.fixture
def sf(tmp_path):
    return SourceFile.from_path(tmp_path / "clip.mov")


def result(source, outcome, **kwargs):
    return TaskResult(source=source, outcome=outcome, **kwargs)


def test_format_size():
    assert format_size(512) == "512.0B"
    assert format_size(2048) == "2.0KB"
    assert format_size(5 * 1024 ** 3) == "5.0GB"


def test_task_lines(reporter, event_bus, output, sf, tmp_path):
    out = tmp_path / "converted" / "clip.mkv"
    event_bus.publish(TaskStarted(source=sf, output_path=out, threads=2))
    event_bus.publish(TaskSucceeded(
        source=sf, result=result(sf, TaskOutcome.SUCCESS, output_path=out, duration_seconds=3.25)
    ))
    event_bus.publish(TaskSkipped(source=sf, result=result(sf, TaskOutcome.SKIPPED)))
    event_bus.publish(TaskFailed(
        source=sf, result=result(sf, TaskOutcome.FAILED), error_message="ffmpeg exited with code 1"
    ))

    text = output.getvalue()
    assert "[START] clip.mov (threads=2)" in text
    assert "[DONE] clip.mov -> clip.mkv in 3.2s" in text or "[DONE] clip.mov -> clip.mkv in 3.3s" in text
    assert "[SKIP] clip.mov (already exists)" in text
    assert "[ERROR] clip.mov: ffmpeg exited with code 1" in text


def test_unstarted_cancellations_are_announced(reporter, event_bus, output, sf):
    event_bus.publish(TaskCanceled(source=sf, result=result(sf, TaskOutcome.CANCELED), started=False))
    assert "[CANCEL] clip.mov (not started)" in output.getvalue()
    assert "stopped" not in output.getvalue()

    event_bus.publish(TaskCanceled(source=sf, result=result(sf, TaskOutcome.CANCELED), started=True))
    assert "[CANCEL] clip.mov stopped" in output.getvalue()


def test_every_canceled_file_gets_a_line(reporter, event_bus, output, tmp_path):
    names = ["a.MOV", "b.MOV", "c.MOV", "d.MOV", "e.mov"]
    for i, name in enumerate(names):
        source = SourceFile.from_path(tmp_path / name)
        event_bus.publish(TaskCanceled(
            source=source, result=result(source, TaskOutcome.CANCELED), started=i < 2
        ))

    lines = [l for l in output.getvalue().splitlines() if l.startswith("[CANCEL]")]
    assert len(lines) == len(names)


def test_cleanup_and_sweep_lines(reporter, event_bus, output, sf, tmp_path):
    event_bus.publish(OutputCleanedUp(source=sf, removed=[Path("clip.mkv.tmp"), Path("clip.mkv.incomplete")]))
    event_bus.publish(SweepFinished(directory=tmp_path, markers_removed=2, temp_files_removed=1))

    text = output.getvalue()
    assert "[CLEANUP] Removed incomplete output: clip.mkv.tmp, clip.mkv.incomplete" in text
    assert "[SWEEP] Removed 2 incomplete outputs and 1 temporary files (startup)" in text


def test_shutdown_lines(reporter, event_bus, output):
    event_bus.publish(ShutdownRequested(reason="SIGINT", active_processes=2))
    event_bus.publish(ShutdownEscalated(killed_pids=[1, 2], reason="grace period expired"))

    text = output.getvalue()
    assert "[SHUTDOWN] Received SIGINT, stopping 2 active conversions..." in text
    assert "[SHUTDOWN] Force-killed 2 processes (grace period expired)" in text


def test_discovery_messages(reporter, event_bus, output, tmp_path):
    event_bus.publish(DiscoveryFinished(directory=tmp_path, files_found=0))
    assert "No source files found" in output.getvalue()

    event_bus.publish(DiscoveryFinished(directory=tmp_path, files_found=7))
    assert "Found 7 files to process" in output.getvalue()


def test_summary_table(reporter, event_bus, output):
    summary = RunSummary(succeeded=3, skipped=1, failed=2, total=6)
    event_bus.publish(ProcessingFinished(summary=summary))

    text = output.getvalue()
    assert "Results" in text
    assert "Converted" in text
    assert "Skipped (already exists)" in text
    assert "Errors" in text
    assert "Canceled" not in text
    assert "interrupted" not in text


def test_summary_interrupted(reporter, output):
    reporter.print_summary(RunSummary(succeeded=1, canceled=2, total=3, interrupted=True))

    text = output.getvalue()
    assert "Canceled" in text
    assert "Processing interrupted by user" in text


def test_banner(reporter, output):
    reporter.print_banner(["Crawler Video Converter", "Root: /videos"])
    assert "Root: /videos" in output.getvalue()
