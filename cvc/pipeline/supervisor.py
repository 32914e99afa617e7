"""Process supervisor: registry of live transcoder processes and shutdown escalation.

Shutdown runs in two halves. `request_shutdown()` is cheap and signal-safe: it
flips the shared CancellationContext and sends terminate to every registered
process. `drain()` is the blocking half, called by the scheduler from the main
loop: it waits for outstanding tasks up to the grace timeout, kills whatever is
still registered, and sweeps leftover markers.

A second interrupt while the first is being handled kills all registered
processes immediately.
"""

import logging
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from cvc.domain.events import ShutdownRequested, ShutdownEscalated
from cvc.infrastructure.event_bus import EventBus
from cvc.pipeline.cancellation import CancellationContext


@dataclass
class ShutdownReport:
    reason: Optional[str]
    clean: bool
    killed_pids: List[int] = field(default_factory=list)
    markers_removed: int = 0
    elapsed_seconds: float = 0.0


class ProcessSupervisor:
    """Tracks live subprocesses by pid and tears them down on cancellation.

    Every registry operation takes `_registry_lock`; callers never assume the
    registry is quiescent. The lock is re-entrant because signal handlers run
    on the main thread and may interrupt it while it holds the lock.

    Args:
        cancellation: Shared context flipped on the first shutdown request.
        event_bus: Optional bus for ShutdownRequested / ShutdownEscalated.
        shutdown_grace_seconds: How long drain() waits for tasks before killing.
        kill_settle_seconds: Pause after a forced kill so tasks can observe it.
        sweeper: Callable run at the end of drain(); returns removed marker count.
    """

    def __init__(
        self,
        cancellation: CancellationContext,
        event_bus: Optional[EventBus] = None,
        shutdown_grace_seconds: float = 10.0,
        kill_settle_seconds: float = 1.0,
        sweeper: Optional[Callable[[], int]] = None,
    ):
        self.cancellation = cancellation
        self.event_bus = event_bus
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.kill_settle_seconds = kill_settle_seconds
        self.sweeper = sweeper
        self.logger = logging.getLogger(__name__)

        self._processes: Dict[int, subprocess.Popen] = {}
        self._registry_lock = threading.RLock()

        self._outstanding = 0
        self._tasks_cond = threading.Condition()

        self._shutdown_requests = 0
        self._drain_lock = threading.Lock()
        self._report: Optional[ShutdownReport] = None
        self._previous_handlers: Dict[int, object] = {}

    # -- registry -----------------------------------------------------------

    def register(self, process: subprocess.Popen) -> int:
        with self._registry_lock:
            self._processes[process.pid] = process
        self.logger.debug(f"PROCESS_REGISTER: pid={process.pid}")
        # Spawned after the terminate broadcast went out
        if self.cancellation.is_canceled:
            self._send(process, kill=False)
        return process.pid

    def unregister(self, pid: int) -> bool:
        with self._registry_lock:
            removed = self._processes.pop(pid, None) is not None
        if removed:
            self.logger.debug(f"PROCESS_UNREGISTER: pid={pid}")
        return removed

    def active_pids(self) -> List[int]:
        with self._registry_lock:
            return list(self._processes)

    @property
    def active_count(self) -> int:
        with self._registry_lock:
            return len(self._processes)

    def _send(self, process: subprocess.Popen, kill: bool) -> bool:
        if process.poll() is not None:
            return False
        try:
            if kill:
                process.kill()
            else:
                process.terminate()
            return True
        except OSError as e:
            # Exited between poll() and the signal
            self.logger.debug(f"PROCESS_SIGNAL_FAILED: pid={process.pid}: {e}")
            return False

    def _signal_all(self, kill: bool) -> List[int]:
        action = "KILL" if kill else "TERM"
        signaled = []
        with self._registry_lock:
            for pid, process in list(self._processes.items()):
                if self._send(process, kill):
                    signaled.append(pid)
                    self.logger.info(f"PROCESS_{action}: pid={pid}")
        return signaled

    def terminate_all(self) -> List[int]:
        return self._signal_all(kill=False)

    def kill_all(self) -> List[int]:
        return self._signal_all(kill=True)

    # -- outstanding task accounting ---------------------------------------

    def task_started(self):
        with self._tasks_cond:
            self._outstanding += 1

    def task_finished(self):
        with self._tasks_cond:
            self._outstanding = max(0, self._outstanding - 1)
            self._tasks_cond.notify_all()

    @property
    def outstanding_tasks(self) -> int:
        with self._tasks_cond:
            return self._outstanding

    def wait_for_tasks(self, timeout: Optional[float] = None) -> bool:
        """Blocks until no task is outstanding. Returns False on timeout."""
        with self._tasks_cond:
            return self._tasks_cond.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    # -- shutdown -----------------------------------------------------------

    def request_shutdown(self, reason: str = "interrupt") -> bool:
        """First call cancels and terminates everything; later calls force-kill.

        Returns True for the call that initiated the shutdown.
        """
        self._shutdown_requests += 1
        first = self.cancellation.cancel(reason)
        if not first and self._shutdown_requests > 1:
            killed = self.kill_all()
            self.logger.warning(f"SHUTDOWN_ESCALATED: repeated request ({reason}), killed={killed}")
            if killed and self.event_bus:
                self.event_bus.publish(ShutdownEscalated(killed_pids=killed, reason="repeated interrupt"))
            return False

        if first:
            self.logger.info(f"SHUTDOWN_REQUESTED: reason={reason} active={self.active_count}")
            if self.event_bus:
                self.event_bus.publish(ShutdownRequested(reason=reason, active_processes=self.active_count))
        self.terminate_all()
        return first

    def drain(self) -> ShutdownReport:
        """Waits for tasks (bounded), kills stragglers, sweeps markers. Runs once."""
        with self._drain_lock:
            if self._report is not None:
                return self._report

            if not self.cancellation.is_canceled:
                self.request_shutdown("drain")

            start = time.monotonic()
            self.logger.info(
                f"SHUTDOWN_WAIT: outstanding={self.outstanding_tasks} "
                f"grace={self.shutdown_grace_seconds:.1f}s"
            )
            clean = self.wait_for_tasks(timeout=self.shutdown_grace_seconds)
            killed: List[int] = []
            if not clean:
                killed = self.kill_all()
                self.logger.warning(f"SHUTDOWN_TIMEOUT: force-killed pids={killed}")
                if self.event_bus:
                    self.event_bus.publish(ShutdownEscalated(killed_pids=killed, reason="grace period expired"))
                time.sleep(self.kill_settle_seconds)

            markers = 0
            if self.sweeper is not None:
                try:
                    markers = self.sweeper()
                except Exception as e:
                    self.logger.error(f"SHUTDOWN_SWEEP_FAILED: {e}")

            self._report = ShutdownReport(
                reason=self.cancellation.reason,
                clean=clean,
                killed_pids=killed,
                markers_removed=markers,
                elapsed_seconds=time.monotonic() - start,
            )
            self.logger.info(
                f"SHUTDOWN_COMPLETE: clean={clean} killed={len(killed)} "
                f"markers_removed={markers} elapsed={self._report.elapsed_seconds:.2f}s"
            )
            return self._report

    # -- signals ------------------------------------------------------------

    def _handle_signal(self, signum, frame):
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self.request_shutdown(name)

    def install_signal_handlers(self, signals=None):
        """Routes SIGINT/SIGTERM to request_shutdown. Must be called from the main thread."""
        if signals is None:
            signals = [signal.SIGINT]
            if hasattr(signal, "SIGTERM"):
                signals.append(signal.SIGTERM)
        for sig in signals:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def restore_signal_handlers(self):
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()
