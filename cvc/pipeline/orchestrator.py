"""Pipeline orchestrator: bounded worker pool over the enumerated source files.

Coordinates enumeration, startup housekeeping, the transcode tasks and the
shutdown drain. Uses the EventBus to report progress so the pipeline layer
never touches the console directly.

Key responsibilities:
- Sweep leftovers of interrupted runs before any file is processed
- Discover source files (FileScanner)
- Run at most `max_workers` TranscodeTasks at once; a task is submitted only
  after a slot is free and always releases it, whatever its outcome
- Convert unexpected task faults into FAILED outcomes
- Fail sources whose output name collides with an earlier source
- Aggregate outcome counters under a lock
- On cancellation, stop submitting, count unstarted files as CANCELED and let
  the supervisor drain the in-flight processes
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from cvc.config.models import AppConfig
from cvc.domain.events import (
    DiscoveryFinished, DiscoveryStarted, ProcessingFinished, SweepFinished, TaskCanceled, TaskFailed,
)
from cvc.domain.models import RunSummary, SourceFile, TaskOutcome, TaskResult
from cvc.infrastructure.event_bus import EventBus
from cvc.infrastructure.ffmpeg import FFmpegAdapter
from cvc.infrastructure.file_scanner import FileScanner
from cvc.infrastructure.housekeeping import HousekeepingService
from cvc.pipeline.cancellation import CancellationContext
from cvc.pipeline.supervisor import ProcessSupervisor
from cvc.pipeline.thread_budget import resolve_threads_per_worker
from cvc.pipeline.transcode_task import TranscodeTask, output_path_for


class Orchestrator:
    """Batch conversion scheduler.

    The slot counter lives on a Condition, like a counting semaphore whose
    waits are bounded so the submitting thread keeps noticing cancellation.

    Args:
        config: AppConfig with general and encoder settings.
        event_bus: EventBus for publishing task lifecycle events.
        file_scanner: FileScanner for discovering source files.
        ffmpeg_adapter: FFmpegAdapter used by every TranscodeTask.
        supervisor: ProcessSupervisor shared with every task.
        housekeeper: HousekeepingService for marker sweeps.
        threads_per_worker: Transcoder threads per task (derived when None).
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        ffmpeg_adapter: FFmpegAdapter,
        supervisor: ProcessSupervisor,
        housekeeper: Optional[HousekeepingService] = None,
        threads_per_worker: Optional[int] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.ffmpeg_adapter = ffmpeg_adapter
        self.supervisor = supervisor
        self.cancellation: CancellationContext = supervisor.cancellation
        self.housekeeper = housekeeper or HousekeepingService(
            converted_dir_name=config.general.converted_dir_name,
            marker_suffix=config.general.marker_suffix,
            temp_suffix=config.general.temp_suffix,
        )
        self.logger = logging.getLogger(__name__)

        general = config.general
        self.max_workers = general.max_workers
        self.threads_per_worker = threads_per_worker or resolve_threads_per_worker(
            general.target_cpu_percent, general.max_workers, override=general.threads_per_worker
        )

        # Slot control
        self._active_tasks = 0
        self._peak_active = 0
        self._slot_lock = threading.Condition()

        # Stats
        self._counts: Dict[TaskOutcome, int] = {outcome: 0 for outcome in TaskOutcome}
        self._stats_lock = threading.Lock()
        self.results: List[TaskResult] = []

    # -- housekeeping / discovery -------------------------------------------

    def sweep(self, root_dir: Path, reason: str = "startup") -> int:
        markers = self.housekeeper.sweep_incomplete(root_dir)
        temps = self.housekeeper.cleanup_temp_files(root_dir)
        self.logger.info(f"Sweep ({reason}): markers={markers} temp_files={temps}")
        if markers or temps:
            self.event_bus.publish(SweepFinished(
                directory=root_dir, markers_removed=markers, temp_files_removed=temps, reason=reason
            ))
        return markers

    def discover(self, root_dir: Path) -> List[SourceFile]:
        self.event_bus.publish(DiscoveryStarted(directory=root_dir))
        files = list(self.file_scanner.scan(root_dir))
        self.logger.info(f"Discovery finished: root={root_dir} found={len(files)}")
        self.event_bus.publish(DiscoveryFinished(directory=root_dir, files_found=len(files)))
        return files

    def run_directory(self, root_dir: Path) -> RunSummary:
        """Startup sweep, enumeration and processing of one root directory."""
        if self.config.general.sweep_on_startup:
            self.sweep(root_dir, reason="startup")
        if self.config.general.sweep_on_shutdown and self.supervisor.sweeper is None:
            self.supervisor.sweeper = lambda: self.sweep(root_dir, reason="shutdown")
        return self.run(self.discover(root_dir))

    # -- slots ----------------------------------------------------------------

    def _acquire_slot(self) -> bool:
        """Blocks until a slot is free. Returns False if cancellation came first."""
        with self._slot_lock:
            while self._active_tasks >= self.max_workers:
                if self.cancellation.is_canceled:
                    return False
                self._slot_lock.wait(timeout=self.config.general.poll_interval_seconds)
            if self.cancellation.is_canceled:
                return False
            self._active_tasks += 1
            self._peak_active = max(self._peak_active, self._active_tasks)
            return True

    def _release_slot(self):
        with self._slot_lock:
            self._active_tasks -= 1
            self._slot_lock.notify_all()

    @property
    def active_tasks(self) -> int:
        with self._slot_lock:
            return self._active_tasks

    # -- tasks ----------------------------------------------------------------

    def _record(self, result: TaskResult):
        with self._stats_lock:
            self._counts[result.outcome] += 1
            self.results.append(result)

    def create_task(self, source: SourceFile) -> TranscodeTask:
        return TranscodeTask(
            source=source,
            config=self.config.general,
            ffmpeg_adapter=self.ffmpeg_adapter,
            supervisor=self.supervisor,
            cancellation=self.cancellation,
            threads=self.threads_per_worker,
            event_bus=self.event_bus,
        )

    def _run_task(self, source: SourceFile) -> TaskResult:
        """Runs one task inside the fault boundary. Always releases its slot."""
        try:
            try:
                result = self.create_task(source).run()
            except Exception as e:
                self.logger.exception(f"Unexpected error processing {source.name}: {e}")
                err_msg = f"Unexpected error: {e}"
                result = TaskResult(source=source, outcome=TaskOutcome.FAILED, error_message=err_msg)
                self.event_bus.publish(TaskFailed(source=source, result=result, error_message=err_msg))
            self._record(result)
            return result
        finally:
            self._release_slot()
            self.supervisor.task_finished()

    def _cancel_unstarted(self, pending: Sequence[SourceFile]):
        for source in pending:
            result = TaskResult(source=source, outcome=TaskOutcome.CANCELED, error_message="Not started")
            self._record(result)
            self.event_bus.publish(TaskCanceled(source=source, result=result, started=False))
        if pending:
            self.logger.info(f"Canceled {len(pending)} files that were not started")

    def _reject_conflicts(self, files: Sequence[SourceFile]) -> List[SourceFile]:
        """Fails every source whose output path was already claimed by an earlier one.

        `clip.MOV` and `clip.mov` in one directory both map to `converted/clip.mkv`;
        only the first in enumeration order is converted. Returns the runnable files.
        """
        claimed: Dict[Path, SourceFile] = {}
        runnable = []
        for source in files:
            output_path = output_path_for(source, self.config.general)
            first = claimed.get(output_path)
            if first is None:
                claimed[output_path] = source
                runnable.append(source)
                continue
            err_msg = f"Conflicting output name: {output_path.name} is also produced by {first.name}"
            self.logger.warning(f"TASK_CONFLICT: {source.path} -> {output_path} (claimed by {first.path})")
            result = TaskResult(
                source=source, outcome=TaskOutcome.FAILED, output_path=output_path, error_message=err_msg
            )
            self._record(result)
            self.event_bus.publish(TaskFailed(source=source, result=result, error_message=err_msg))
        return runnable

    def _wait_in_flight(self, in_flight: Dict[concurrent.futures.Future, SourceFile]):
        drained = False
        while in_flight:
            done, _ = concurrent.futures.wait(
                set(in_flight),
                timeout=self.config.general.poll_interval_seconds,
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            for future in done:
                source = in_flight.pop(future)
                try:
                    future.result()
                except Exception as e:
                    # _run_task never raises; this guards against executor-level failures
                    self.logger.error(f"Future for {source.name} failed: {e}")
            if self.cancellation.is_canceled and not drained and in_flight:
                self.supervisor.drain()
                drained = True

    def run(self, files: Sequence[SourceFile]) -> RunSummary:
        start = time.monotonic()
        files = list(files)
        self.logger.info(
            f"Processing started: files={len(files)} workers={self.max_workers} "
            f"threads_per_worker={self.threads_per_worker}"
        )
        runnable = self._reject_conflicts(files)

        in_flight: Dict[concurrent.futures.Future, SourceFile] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="cvc-worker"
        ) as executor:
            for index, source in enumerate(runnable):
                if not self._acquire_slot():
                    self._cancel_unstarted(runnable[index:])
                    break
                self.supervisor.task_started()
                try:
                    future = executor.submit(self._run_task, source)
                except RuntimeError:
                    self._release_slot()
                    self.supervisor.task_finished()
                    raise
                in_flight[future] = source

            self._wait_in_flight(in_flight)

        if self.cancellation.is_canceled:
            # Covers cancellation after the last task finished
            self.supervisor.drain()

        summary = self.summary(total=len(files), elapsed=time.monotonic() - start)
        self.logger.info(
            f"Processing finished: success={summary.succeeded} skipped={summary.skipped} "
            f"failed={summary.failed} canceled={summary.canceled} interrupted={summary.interrupted} "
            f"peak_concurrency={summary.peak_concurrency}"
        )
        self.event_bus.publish(ProcessingFinished(summary=summary))
        return summary

    def summary(self, total: int, elapsed: float = 0.0) -> RunSummary:
        with self._stats_lock:
            counts = dict(self._counts)
        return RunSummary(
            succeeded=counts[TaskOutcome.SUCCESS],
            skipped=counts[TaskOutcome.SKIPPED],
            failed=counts[TaskOutcome.FAILED],
            canceled=counts[TaskOutcome.CANCELED],
            total=total,
            interrupted=self.cancellation.is_canceled,
            peak_concurrency=self._peak_active,
            elapsed_seconds=elapsed,
        )
