"""Base cleaning strategy interface."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from purger.core.context import RunContext
from purger.errors import CleanTimeout
from purger.models.config import CleanConfig
from purger.models.project import ProjectRecord, SizeValue

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StrategyContext:
    """Everything a strategy needs for one record's attempt.

    ``known_bytes`` is the size resolved before the attempt, or None when it
    could not be computed.
    """

    config: CleanConfig
    run: RunContext
    deadline: float | None = None
    known_bytes: int | None = None

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unlimited."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def checkpoint(self) -> None:
        """Raise if the run was cancelled or the record's budget is spent."""
        self.run.cancel.raise_if_cancelled()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise CleanTimeout(self.config.timeout_seconds)


class CleanStrategy(ABC):
    """Base class for ways of removing an artifact directory.

    Every strategy must implement this interface to be selectable from
    a :class:`CleanConfig`.
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Unique identifier used on the command line, e.g. 'direct'."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name."""

    @property
    @abstractmethod
    def description(self) -> str:
        """What this strategy removes and how safe it is."""

    @property
    def unavailable_reason(self) -> str | None:
        """Why this strategy cannot run on this system, or None if supported."""
        return None

    def is_available(self) -> bool:
        return self.unavailable_reason is None

    def estimate(self, record: ProjectRecord, size: SizeValue) -> int:
        """Bytes a real :meth:`remove` would report, given the resolved *size*.

        Used by dry runs. The default reports the known size, and 0 when it
        could not be computed, which is what removal then reports as well.
        """
        return size.bytes if size.is_known and size.bytes is not None else 0

    @abstractmethod
    def remove(self, record: ProjectRecord, ctx: StrategyContext) -> int:
        """Remove the record's artifacts and return the bytes freed.

        Must call ``ctx.checkpoint()`` at its own safe points and raise a
        :class:`purger.errors.PurgerError` subclass on failure.
        """
