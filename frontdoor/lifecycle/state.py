"""Shutdown signalling and bookkeeping of connection worker threads."""

import threading
import time
from typing import Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger

LIFECYCLE_LOGGER = component_logger("lifecycle")
POLL_SECONDS = 0.1


class ServerLifecycle:
    """Knows whether the front door is draining and which workers are still busy.

    Draining is one-way: once started, the accept loop stops taking
    connections and workers answer any further request with 503.
    """

    def __init__(self, logger: Optional[CorrelationLoggerAdapter] = None) -> None:
        self._logger = logger or LIFECYCLE_LOGGER
        self._changed = threading.Condition()
        self._workers: set[threading.Thread] = set()
        self._drain_reason: Optional[str] = None

    def should_stop(self) -> bool:
        """Return True once the accept loop must stop taking connections."""
        return self.is_draining()

    def is_draining(self) -> bool:
        return self._drain_reason is not None

    @property
    def drain_reason(self) -> Optional[str]:
        return self._drain_reason

    def register_worker(self, thread: threading.Thread) -> None:
        with self._changed:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._changed:
            self._workers.discard(thread)
            self._changed.notify_all()

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._changed:
            return thread in self._workers

    def active_worker_count(self) -> int:
        with self._changed:
            return len(self._workers)

    def begin_draining(self, reason: str = "shutdown") -> None:
        """Enter draining mode; repeated calls keep the first reason."""
        with self._changed:
            if self._drain_reason is not None:
                return
            self._drain_reason = reason
            self._changed.notify_all()
        self._logger.info(
            "Beginning graceful shutdown",
            extra={"event": "draining_started", "reason": reason},
        )

    def wait_for_workers(self, timeout: float) -> bool:
        """Block until every worker has finished or ``timeout`` seconds pass."""
        deadline = time.monotonic() + timeout
        with self._changed:
            while True:
                self._workers = {w for w in self._workers if w.is_alive()}
                if not self._workers:
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._changed.wait(min(POLL_SECONDS, remaining))
            still_running = len(self._workers)
        self._logger.warning(
            "Shutdown grace period exceeded",
            extra={"event": "shutdown_timeout", "remaining": still_running},
        )
        return False
