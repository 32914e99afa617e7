import threading
from typing import Optional


class CancellationContext:
    """One-way live -> canceled switch shared by the supervisor and every task."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.RLock()
        self._reason: Optional[str] = None

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "canceled") -> bool:
        """Flips to canceled. Returns True only for the call that made the transition."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until canceled or timeout; returns the canceled flag."""
        return self._event.wait(timeout)
