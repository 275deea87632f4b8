"""Lazy, single-flight artifact size estimation."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable

from purger.core.context import RunContext
from purger.errors import SizeComputationError
from purger.models.config import default_workers
from purger.models.project import ProjectRecord, SizeState, SizeValue
from purger.utils import tree_size

log = logging.getLogger(__name__)

SizeFunction = Callable[[ProjectRecord], int]


def artifact_size(record: ProjectRecord) -> int:
    """Recursive byte size of the record's artifact directory."""
    if record.artifact_path is None:
        return 0
    return tree_size(record.artifact_path)


class SizeEstimator:
    """Resolves ``record.size`` on demand or in the background.

    At most one computation runs per record. Concurrent callers for the
    same record wait for the in-flight one. A failure only marks that
    record as ``ERROR``.
    """

    def __init__(self, workers: int | None = None, size_fn: SizeFunction = artifact_size) -> None:
        self._workers = workers or default_workers()
        self._size_fn = size_fn

    def peek(self, record: ProjectRecord) -> SizeValue:
        """Current state without triggering any work."""
        return record.size.value

    def ensure_size(self, record: ProjectRecord) -> SizeValue:
        """Return the record's final size, computing it if nobody has yet."""
        cell = record.size
        if not cell.claim():
            return cell.wait()

        try:
            size = self._size_fn(record)
        except (SizeComputationError, OSError) as e:
            log.warning("Cannot compute size of %s: %s", record.artifact_path, e)
            cell.fail(str(e))
        except Exception as e:
            log.exception("Unexpected error computing size of %s", record.artifact_path)
            cell.fail(str(e))
        else:
            log.debug("Size of %s: %d bytes", record.artifact_path, size)
            cell.resolve(size)
        return cell.value

    def submit(
        self,
        records: Iterable[ProjectRecord],
        context: RunContext | None = None,
    ) -> list[Future[SizeValue]]:
        """Compute sizes in a background pool.

        Returns one future per record. Cancellation is checked before each
        unit; a unit skipped this way leaves the record ``UNKNOWN`` and its
        future resolves to that state.
        """
        context = context or RunContext()
        pending = [r for r in records if r.size.value.state is SizeState.UNKNOWN]
        total = len(pending)
        counter = _Counter()
        executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="purger-size")

        def _unit(record: ProjectRecord) -> SizeValue:
            if context.cancelled:
                return record.size.value
            value = self.ensure_size(record)
            done = counter.increment()
            context.emit(
                "size",
                "done" if value.is_known else "failed",
                path=record.artifact_path,
                done=done,
                total=total,
                payload=value,
            )
            return value

        futures = [executor.submit(_unit, record) for record in pending]
        executor.shutdown(wait=False)
        return futures

    def resolve_all(self, records: Iterable[ProjectRecord], context: RunContext | None = None) -> None:
        """Compute every size and wait for the pool to finish."""
        for future in self.submit(records, context):
            future.result()


class _Counter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value
