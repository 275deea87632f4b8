"""Run-scoped context: cancellation token and progress channel."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from purger.errors import CleanCancelled

log = logging.getLogger(__name__)


class CancelToken:
    """Cooperative, best-effort cancellation shared by all workers of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            log.info("Cancellation requested")
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CleanCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to *timeout* seconds, waking early on cancellation."""
        return self._event.wait(timeout)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One progress notification.

    ``kind`` is one of ``discovery``, ``size``, ``clean`` or ``error``;
    ``status`` is a short machine-readable word such as ``visited``,
    ``found``, ``done``, ``cleaning`` or ``failed``.
    """

    kind: str
    status: str
    path: Path | None = None
    message: str = ""
    done: int = 0
    total: int | None = None
    payload: Any = None


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Append-only event channel.

    Safe for concurrent producers. Events are kept in a queue for a single
    polling consumer (:meth:`drain`) and also delivered synchronously to
    subscribed callbacks, which run on the producing worker thread.
    """

    def __init__(self, *, keep_events: bool = True) -> None:
        self._events: queue.SimpleQueue[ProgressEvent] = queue.SimpleQueue()
        self._keep_events = keep_events
        self._subscribers: list[ProgressCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def emit(self, event: ProgressEvent) -> None:
        if self._keep_events:
            self._events.put(event)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                log.exception("Progress subscriber failed on %s/%s", event.kind, event.status)

    def drain(self) -> list[ProgressEvent]:
        """Return and remove every event queued so far."""
        events: list[ProgressEvent] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events


@dataclass
class RunContext:
    """Config-independent state handed to every component call of one run."""

    cancel: CancelToken = field(default_factory=CancelToken)
    progress: ProgressChannel = field(default_factory=ProgressChannel)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_cancelled

    def emit(self, kind: str, status: str, **kwargs: Any) -> None:
        self.progress.emit(ProgressEvent(kind=kind, status=status, **kwargs))
