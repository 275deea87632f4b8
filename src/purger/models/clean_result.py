"""Cleaning outcome and batch report dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from purger.errors import PurgerError
from purger.models.project import ProjectRecord


class OutcomeKind(Enum):
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    CLEANED = "cleaned"
    FAILED = "failed"


@dataclass(slots=True)
class CleanOutcome:
    """Result of processing one record."""

    record: ProjectRecord
    kind: OutcomeKind
    bytes: int = 0
    reason: str = ""
    error: PurgerError | None = None
    duration: float = 0.0

    @classmethod
    def skipped(cls, record: ProjectRecord, reason: str) -> CleanOutcome:
        return cls(record, OutcomeKind.SKIPPED, reason=reason)

    @classmethod
    def dry_run(cls, record: ProjectRecord, estimated_bytes: int) -> CleanOutcome:
        return cls(record, OutcomeKind.DRY_RUN, bytes=estimated_bytes)

    @classmethod
    def cleaned(cls, record: ProjectRecord, bytes_freed: int) -> CleanOutcome:
        return cls(record, OutcomeKind.CLEANED, bytes=bytes_freed)

    @classmethod
    def failed(cls, record: ProjectRecord, error: PurgerError) -> CleanOutcome:
        return cls(record, OutcomeKind.FAILED, error=error, reason=str(error))

    @property
    def error_type(self) -> str:
        return type(self.error).__name__ if self.error is not None else ""


@dataclass(slots=True)
class BatchReport:
    """Every attempted record with its outcome."""

    outcomes: list[CleanOutcome] = field(default_factory=list)
    duration: float = 0.0

    def _of(self, kind: OutcomeKind) -> list[CleanOutcome]:
        return [o for o in self.outcomes if o.kind is kind]

    @property
    def cleaned(self) -> list[CleanOutcome]:
        return self._of(OutcomeKind.CLEANED)

    @property
    def failed(self) -> list[CleanOutcome]:
        return self._of(OutcomeKind.FAILED)

    @property
    def skipped(self) -> list[CleanOutcome]:
        return self._of(OutcomeKind.SKIPPED)

    @property
    def dry_run(self) -> list[CleanOutcome]:
        return self._of(OutcomeKind.DRY_RUN)

    @property
    def cleaned_count(self) -> int:
        return len(self.cleaned)

    @property
    def total_bytes_freed(self) -> int:
        return sum(o.bytes for o in self.cleaned)

    @property
    def total_bytes_estimated(self) -> int:
        return sum(o.bytes for o in self.dry_run)

    @property
    def has_failures(self) -> bool:
        return any(o.kind is OutcomeKind.FAILED for o in self.outcomes)

    def outcome_for(self, record: ProjectRecord) -> CleanOutcome | None:
        for outcome in self.outcomes:
            if outcome.record is record:
                return outcome
        return None
