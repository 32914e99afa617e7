"""Per-file transcode state machine.

PENDING -> PREPARING -> RUNNING -> SUCCEEDED | FAILED | CANCELED, with SKIPPED
reachable from PREPARING when a finished output already exists.

On-disk protocol inside the converted directory, for output `clip.mkv`:
- `clip.mkv.incomplete` is written before ffmpeg starts and removed only
  after the output is verified and in place;
- ffmpeg writes `clip.mkv.tmp`, renamed to `clip.mkv` after a zero exit and
  a non-empty size check.
Every failure or cancellation path removes the marker, the temporary file and
the final path together, so (output present, marker absent) always means a
finished artifact.
"""

import logging
import os
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from cvc.config.models import GeneralConfig
from cvc.domain.events import (
    OutputCleanedUp, TaskCanceled, TaskFailed, TaskSkipped, TaskStarted, TaskSucceeded,
)
from cvc.domain.models import SourceFile, TaskResult, TaskState, outcome_for_state
from cvc.infrastructure.event_bus import EventBus
from cvc.infrastructure.ffmpeg import FFmpegAdapter
from cvc.infrastructure.housekeeping import HousekeepingService
from cvc.pipeline.cancellation import CancellationContext
from cvc.pipeline.supervisor import ProcessSupervisor


def output_path_for(source: SourceFile, config: GeneralConfig) -> Path:
    """Final output path: `<source dir>/<converted>/<stem><output extension>`."""
    return source.directory / config.converted_dir_name / (Path(source.name).stem + config.output_extension)


class TranscodeTask:
    """Converts one SourceFile; run() returns exactly one TaskResult."""

    def __init__(
        self,
        source: SourceFile,
        config: GeneralConfig,
        ffmpeg_adapter: FFmpegAdapter,
        supervisor: ProcessSupervisor,
        cancellation: CancellationContext,
        threads: int,
        event_bus: Optional[EventBus] = None,
    ):
        self.source = source
        self.config = config
        self.ffmpeg_adapter = ffmpeg_adapter
        self.supervisor = supervisor
        self.cancellation = cancellation
        self.threads = threads
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self.housekeeper = HousekeepingService(
            converted_dir_name=config.converted_dir_name,
            marker_suffix=config.marker_suffix,
            temp_suffix=config.temp_suffix,
        )

        self.state = TaskState.PENDING
        self.return_code: Optional[int] = None
        self._marker_written = False
        self._spawned = False
        self._start_time: Optional[float] = None

        self.converted_dir = source.directory / config.converted_dir_name
        self.output_path = output_path_for(source, config)
        self.marker_path = self.output_path.with_name(self.output_path.name + config.marker_suffix)
        self.temp_path = self.output_path.with_name(self.output_path.name + config.temp_suffix)

    def _transition(self, state: TaskState):
        self.logger.debug(f"TASK_STATE: {self.source.name} {self.state.value} -> {state.value}")
        self.state = state

    def _publish(self, event):
        if self.event_bus:
            self.event_bus.publish(event)

    def _finish(self, state: TaskState, error_message: Optional[str] = None) -> TaskResult:
        self._transition(state)
        elapsed = time.monotonic() - self._start_time if self._start_time is not None else None
        result = TaskResult(
            source=self.source,
            outcome=outcome_for_state(state),
            output_path=self.output_path,
            error_message=error_message,
            return_code=self.return_code,
            duration_seconds=elapsed,
        )
        self.logger.info(
            f"TASK_END: {self.source.name} status={result.outcome.value}"
            + (f" error={error_message}" if error_message and state == TaskState.FAILED else "")
            + (f" elapsed={elapsed:.2f}s" if elapsed is not None else "")
        )

        if state == TaskState.SUCCEEDED:
            self._publish(TaskSucceeded(source=self.source, result=result))
        elif state == TaskState.SKIPPED:
            self._publish(TaskSkipped(source=self.source, result=result))
        elif state == TaskState.FAILED:
            self._publish(TaskFailed(source=self.source, result=result, error_message=error_message or "Unknown error"))
        else:
            self._publish(TaskCanceled(source=self.source, result=result, started=self._spawned))
        return result

    def _cleanup(self) -> List[Path]:
        """Removes partial output and the marker together."""
        removed = self.housekeeper.clean_marker(self.marker_path)
        self._marker_written = self._marker_written and self.marker_path.exists()
        if removed:
            self.logger.info(f"TASK_CLEANUP: {self.source.name} removed={[p.name for p in removed]}")
            self._publish(OutputCleanedUp(source=self.source, removed=removed))
        return removed

    def _write_marker(self):
        self.marker_path.write_text(
            f"started={datetime.now().astimezone().isoformat(timespec='seconds')}\n"
            f"source={self.source.path}\n"
            f"pid={os.getpid()}\n"
        )
        self._marker_written = True

    def run(self) -> TaskResult:
        self._start_time = time.monotonic()
        try:
            return self._execute()
        except BaseException:
            # Leave no marker behind for the scheduler's fault boundary
            if self._marker_written:
                self._cleanup()
            raise

    def _execute(self) -> TaskResult:
        if self.cancellation.is_canceled:
            return self._finish(TaskState.CANCELED, "Canceled before start")

        self._transition(TaskState.PREPARING)
        try:
            self.converted_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._finish(TaskState.FAILED, f"Cannot create {self.converted_dir}: {e}")

        if self.output_path.exists():
            if not self.marker_path.exists():
                return self._finish(TaskState.SKIPPED, "Output already exists")
            self.logger.warning(f"TASK_STALE: {self.source.name} has a leftover marker, reconverting")
            self._cleanup()

        if self.cancellation.is_canceled:
            return self._finish(TaskState.CANCELED, "Canceled before start")

        try:
            self._write_marker()
        except OSError as e:
            self._cleanup()
            return self._finish(TaskState.FAILED, f"Cannot write marker {self.marker_path.name}: {e}")

        self._transition(TaskState.RUNNING)
        self._publish(TaskStarted(source=self.source, output_path=self.output_path, threads=self.threads))

        cmd = self.ffmpeg_adapter.build_command(self.source.path, self.temp_path, self.threads)
        try:
            process = self.ffmpeg_adapter.start(cmd)
        except (OSError, ValueError) as e:
            self._cleanup()
            return self._finish(TaskState.FAILED, f"Cannot start transcoder: {e}")

        self._spawned = True
        pid = self.supervisor.register(process)
        self.logger.info(f"TASK_START: {self.source.name} pid={pid} threads={self.threads}")
        try:
            self.return_code, canceled = self._wait(process)
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()
            self.supervisor.unregister(pid)

        if canceled:
            self._cleanup()
            return self._finish(TaskState.CANCELED, "Stopped by interrupt")

        if self.return_code != 0:
            self._cleanup()
            if self.cancellation.is_canceled:
                return self._finish(TaskState.CANCELED, "Stopped by interrupt")
            return self._finish(TaskState.FAILED, f"ffmpeg exited with code {self.return_code}")

        return self._finalize()

    def _wait(self, process: subprocess.Popen) -> Tuple[int, bool]:
        """Waits for exit or cancellation, whichever comes first. Returns (returncode, canceled)."""
        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if self.cancellation.is_canceled:
                return self._stop(process), True
            try:
                return process.wait(timeout=self.config.poll_interval_seconds), False
            except subprocess.TimeoutExpired:
                continue

    def _stop(self, process: subprocess.Popen) -> int:
        """Terminate, give it the grace period, then kill."""
        self.logger.info(f"TASK_STOP: {self.source.name} pid={process.pid} (terminate)")
        try:
            process.terminate()
        except OSError:
            pass
        try:
            return process.wait(timeout=self.config.task_grace_seconds)
        except subprocess.TimeoutExpired:
            self.logger.warning(
                f"TASK_KILL: {self.source.name} pid={process.pid} still running after "
                f"{self.config.task_grace_seconds:.1f}s"
            )
            process.kill()
            return process.wait()

    def _finalize(self) -> TaskResult:
        try:
            size = self.temp_path.stat().st_size
        except OSError:
            size = 0
        if size <= 0:
            self._cleanup()
            return self._finish(TaskState.FAILED, "Output file is empty or missing")

        try:
            os.replace(self.temp_path, self.output_path)
        except OSError as e:
            self._cleanup()
            return self._finish(TaskState.FAILED, f"Cannot move output into place: {e}")

        try:
            self.marker_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            # The next startup sweep discards the output
            return self._finish(TaskState.FAILED, f"Cannot remove marker {self.marker_path.name}: {e}")
        self._marker_written = False

        try:
            st = self.source.path.stat()
            os.utime(self.output_path, (st.st_atime, st.st_mtime))
        except OSError as e:
            self.logger.warning(f"TASK_MTIME: {self.source.name} could not copy timestamps: {e}")

        return self._finish(TaskState.SUCCEEDED)
