"""Import status state machine and the progress channel observers read from.

The orchestrator is the only writer. Observers either poll
:attr:`ProgressChannel.snapshot` or :meth:`~ProgressChannel.subscribe` to be
called with every new :class:`ProgressSnapshot`. Updates are applied under
one lock and delivered outside it, in order, even when the pipeline runs on a
worker thread.

Within one run progress never moves backward; a lower value is clamped to the
current one. Only :meth:`ProgressChannel.reset` returns to 0.0 / ``IDLE``.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from .errors import InvalidTransition, StatementImportError
from .logging_setup import get_logger
from .models import ImportStatus

_logger = get_logger("statement_import.progress")

TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.IDLE: frozenset({ImportStatus.EXTRACTING}),
    ImportStatus.EXTRACTING: frozenset({ImportStatus.PARSING, ImportStatus.FAILED}),
    ImportStatus.PARSING: frozenset({ImportStatus.CHECKING_DUPLICATES, ImportStatus.FAILED}),
    ImportStatus.CHECKING_DUPLICATES: frozenset({ImportStatus.REVIEWING, ImportStatus.FAILED}),
    ImportStatus.REVIEWING: frozenset({ImportStatus.SAVING, ImportStatus.FAILED}),
    ImportStatus.SAVING: frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED}),
    ImportStatus.COMPLETED: frozenset(),
    ImportStatus.FAILED: frozenset(),
}

# Fraction of the run reached when each stage has finished.
STAGE_END: dict[ImportStatus, float] = {
    ImportStatus.EXTRACTING: 0.3,
    ImportStatus.PARSING: 0.7,
    ImportStatus.CHECKING_DUPLICATES: 0.9,
    ImportStatus.SAVING: 1.0,
}


def can_transition(current: ImportStatus, target: ImportStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    status: ImportStatus = ImportStatus.IDLE
    progress: float = 0.0
    message: str | None = None
    error: StatementImportError | None = None


type Subscriber = Callable[[ProgressSnapshot], None]


class ProgressChannel:
    """Thread-safe status/progress holder with ordered change notifications.

    State changes happen under the channel lock; subscribers are called after
    it is released, one snapshot at a time in publication order. A subscriber
    may therefore call back into the orchestrator (``cancel`` from a progress
    handler, say). Snapshots published while another thread is delivering are
    handed to that thread, so ``transition`` can return before its own
    snapshot reaches every subscriber.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._snapshot = ProgressSnapshot()
        self._subscribers: list[Subscriber] = []
        self._pending: deque[ProgressSnapshot] = deque()
        self._delivering = False
        self._held = 0

    @property
    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def status(self) -> ImportStatus:
        return self.snapshot.status

    @property
    def progress(self) -> float:
        return self.snapshot.progress

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Hold the channel lock across several reads and updates.

        Notifications queued inside the block go out once it exits.
        """

        try:
            with self._lock:
                self._held += 1
                try:
                    yield
                finally:
                    self._held -= 1
        finally:
            self._deliver()

    def transition(
        self,
        target: ImportStatus,
        *,
        progress: float | None = None,
        message: str | None = None,
    ) -> ProgressSnapshot:
        with self._lock:
            current = self._snapshot.status
            if not can_transition(current, target):
                raise InvalidTransition(current, target)
            _logger.debug("progress:transition from=%s to=%s", current.value, target.value)
            snapshot = self._publish(
                replace(
                    self._snapshot,
                    status=target,
                    progress=self._clamp(progress),
                    message=message,
                )
            )
        self._deliver()
        return snapshot

    def advance(self, progress: float, *, message: str | None = None) -> ProgressSnapshot:
        """Move progress forward within the current status."""

        with self._lock:
            snapshot = self._publish(
                replace(
                    self._snapshot,
                    progress=self._clamp(progress),
                    message=message if message is not None else self._snapshot.message,
                )
            )
        self._deliver()
        return snapshot

    def fail(self, error: StatementImportError) -> ProgressSnapshot:
        with self._lock:
            current = self._snapshot.status
            if not can_transition(current, ImportStatus.FAILED):
                raise InvalidTransition(current, ImportStatus.FAILED)
            _logger.warning("progress:failed from=%s code=%s", current.value, error.code)
            snapshot = self._publish(
                replace(
                    self._snapshot,
                    status=ImportStatus.FAILED,
                    message=error.message,
                    error=error,
                )
            )
        self._deliver()
        return snapshot

    def reset(self) -> ProgressSnapshot:
        with self._lock:
            snapshot = self._publish(ProgressSnapshot())
        self._deliver()
        return snapshot

    def _clamp(self, value: float | None) -> float:
        current = self._snapshot.progress
        if value is None:
            return current
        return max(current, min(1.0, max(0.0, value)))

    def _publish(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        self._snapshot = snapshot
        self._pending.append(snapshot)
        return snapshot

    def _deliver(self) -> None:
        # Only one thread delivers at a time; never called back under the lock.
        while True:
            with self._lock:
                if self._held or self._delivering or not self._pending:
                    return
                snapshot = self._pending.popleft()
                subscribers = list(self._subscribers)
                self._delivering = True
            try:
                for callback in subscribers:
                    try:
                        callback(snapshot)
                    except Exception:  # noqa: BLE001
                        _logger.exception(
                            "progress:subscriber_error status=%s", snapshot.status.value
                        )
            finally:
                with self._lock:
                    self._delivering = False


__all__ = [
    "STAGE_END",
    "TRANSITIONS",
    "ProgressChannel",
    "ProgressSnapshot",
    "can_transition",
]
