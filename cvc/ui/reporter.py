import threading
from typing import List, Optional
from rich.console import Console
from rich.table import Table
from rich.text import Text
from cvc.infrastructure.event_bus import EventBus
from cvc.domain.events import (
    DiscoveryFinished, SweepFinished,
    TaskStarted, TaskSucceeded, TaskSkipped, TaskFailed, TaskCanceled,
    OutputCleanedUp, ShutdownRequested, ShutdownEscalated, ProcessingFinished,
)
from cvc.domain.models import RunSummary

# Tag -> style for the one-line-per-task progress output
TAG_STYLES = {
    "START": "cyan",
    "SKIP": "dim",
    "DONE": "green",
    "ERROR": "red",
    "CANCEL": "yellow",
    "CLEANUP": "magenta",
    "SWEEP": "magenta",
    "SHUTDOWN": "bold yellow",
}


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


class ConsoleReporter:
    """Subscribes to EventBus and prints tagged progress lines and the final summary."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console(highlight=False)
        # Re-entrant: a signal handler on the main thread may publish mid-print
        self._lock = threading.RLock()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(SweepFinished, self.on_sweep_finished)
        self.bus.subscribe(TaskStarted, self.on_task_started)
        self.bus.subscribe(TaskSucceeded, self.on_task_succeeded)
        self.bus.subscribe(TaskSkipped, self.on_task_skipped)
        self.bus.subscribe(TaskFailed, self.on_task_failed)
        self.bus.subscribe(TaskCanceled, self.on_task_canceled)
        self.bus.subscribe(OutputCleanedUp, self.on_output_cleaned_up)
        self.bus.subscribe(ShutdownRequested, self.on_shutdown_requested)
        self.bus.subscribe(ShutdownEscalated, self.on_shutdown_escalated)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def line(self, tag: str, message: str):
        text = Text.assemble((f"[{tag}]", TAG_STYLES.get(tag, "")), " ", message)
        with self._lock:
            self.console.print(text)

    def print_banner(self, lines: List[str]):
        with self._lock:
            for entry in lines:
                self.console.print(Text(entry))
            self.console.print()

    def on_discovery_finished(self, event: DiscoveryFinished):
        with self._lock:
            if event.files_found == 0:
                self.console.print(Text("No source files found", style="yellow"))
            else:
                self.console.print(Text(f"Found {event.files_found} files to process"))
                self.console.print()

    def on_sweep_finished(self, event: SweepFinished):
        self.line(
            "SWEEP",
            f"Removed {event.markers_removed} incomplete outputs"
            + (f" and {event.temp_files_removed} temporary files" if event.temp_files_removed else "")
            + f" ({event.reason})",
        )

    def on_task_started(self, event: TaskStarted):
        self.line("START", f"{event.source.name} (threads={event.threads})")

    def on_task_succeeded(self, event: TaskSucceeded):
        output = event.result.output_path.name if event.result.output_path else "?"
        took = f" in {event.result.duration_seconds:.1f}s" if event.result.duration_seconds else ""
        self.line("DONE", f"{event.source.name} -> {output}{took}")

    def on_task_skipped(self, event: TaskSkipped):
        self.line("SKIP", f"{event.source.name} (already exists)")

    def on_task_failed(self, event: TaskFailed):
        self.line("ERROR", f"{event.source.name}: {event.error_message}")

    def on_task_canceled(self, event: TaskCanceled):
        if event.started:
            self.line("CANCEL", f"{event.source.name} stopped")
        else:
            self.line("CANCEL", f"{event.source.name} (not started)")

    def on_output_cleaned_up(self, event: OutputCleanedUp):
        self.line("CLEANUP", f"Removed incomplete output: {', '.join(p.name for p in event.removed)}")

    def on_shutdown_requested(self, event: ShutdownRequested):
        with self._lock:
            self.console.print()
        self.line(
            "SHUTDOWN",
            f"Received {event.reason}, stopping {event.active_processes} active conversions...",
        )

    def on_shutdown_escalated(self, event: ShutdownEscalated):
        self.line("SHUTDOWN", f"Force-killed {len(event.killed_pids)} processes ({event.reason})")

    def on_processing_finished(self, event: ProcessingFinished):
        self.print_summary(event.summary)

    def build_summary_table(self, summary: RunSummary) -> Table:
        table = Table(title="Results", show_header=False, title_justify="left")
        table.add_column("Outcome")
        table.add_column("Files", justify="right")
        table.add_row(Text("Converted", style="green"), str(summary.succeeded))
        table.add_row(Text("Skipped (already exists)", style="dim"), str(summary.skipped))
        if summary.canceled:
            table.add_row(Text("Canceled", style="yellow"), str(summary.canceled))
        table.add_row(Text("Errors", style="red"), str(summary.failed))
        table.add_row("Total", str(summary.total))
        return table

    def print_summary(self, summary: RunSummary):
        with self._lock:
            self.console.print()
            self.console.print(self.build_summary_table(summary))
            if summary.interrupted:
                self.console.print(Text("Processing interrupted by user", style="yellow"))
