"""Domain events for the conversion pipeline.

Events flow through the EventBus and decouple the pipeline (scheduler, tasks,
supervisor) from the console reporter. Task events are published from worker
threads, so subscribers must be thread-safe.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel
from .models import SourceFile, TaskResult, RunSummary


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class DiscoveryStarted(Event):
    """Emitted when the enumerator starts walking the root directory."""

    directory: Path


class DiscoveryFinished(Event):
    """Emitted after enumeration with the number of candidate files."""

    directory: Path
    files_found: int


class SweepFinished(Event):
    """Emitted after a marker sweep removed leftovers of an interrupted run."""

    directory: Path
    markers_removed: int
    temp_files_removed: int = 0
    reason: str = "startup"


class TaskEvent(Event):
    """Base class for events about a single source file."""

    source: SourceFile


class TaskStarted(TaskEvent):
    """Emitted right before the transcoder process is spawned."""

    output_path: Path
    threads: int


class TaskFinished(TaskEvent):
    """Base class for the four terminal task events."""

    result: TaskResult


class TaskSucceeded(TaskFinished):
    pass


class TaskSkipped(TaskFinished):
    """Emitted when a finished output already exists."""

    pass


class TaskFailed(TaskFinished):
    error_message: str


class TaskCanceled(TaskFinished):
    """Emitted when a task was stopped (or never started) due to cancellation."""

    started: bool = False


class OutputCleanedUp(TaskEvent):
    """Emitted when partial output and its marker were removed."""

    removed: List[Path]


class ShutdownRequested(Event):
    """Emitted once when an interrupt flips the cancellation context."""

    reason: str
    active_processes: int = 0


class ShutdownEscalated(Event):
    """Emitted when live processes had to be force-killed."""

    killed_pids: List[int]
    reason: str


class ProcessingFinished(Event):
    """Emitted after the pool drained; carries the aggregated counts."""

    summary: RunSummary
    message: Optional[str] = None
