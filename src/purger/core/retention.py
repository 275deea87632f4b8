"""Retention rules: decide which projects are kept and which may be cleaned."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from purger.core.sizing import SizeEstimator
from purger.models.config import MissingAgePolicy, ScanConfig
from purger.models.project import ProjectRecord
from purger.utils import bytes_to_human, is_relative_to, resolve_path

log = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class KeepReason(Enum):
    NO_ARTIFACTS = "no artifact directory"
    IGNORED_PATH = "under an ignored path"
    RECENTLY_BUILT = "built recently"
    UNKNOWN_AGE = "build age unknown"
    SMALL = "below size threshold"
    SIZE_UNKNOWN = "size could not be computed"


@dataclass(frozen=True, slots=True)
class Decision:
    keep: bool
    reason: KeepReason | None = None
    detail: str = ""

    @property
    def eligible(self) -> bool:
        return not self.keep


ELIGIBLE = Decision(keep=False)


def _keep(reason: KeepReason, detail: str = "") -> Decision:
    return Decision(keep=True, reason=reason, detail=detail)


class RetentionFilter:
    """Applies ``keep_days``, ``keep_size_bytes`` and ``ignore_paths``.

    The first rule that keeps a record wins. Only ``keep_size_bytes``
    needs the record's size; it is resolved synchronously through the
    estimator, and only for records that reach that check.
    """

    def __init__(
        self,
        config: ScanConfig,
        estimator: SizeEstimator | None = None,
        now: float | None = None,
    ) -> None:
        self.config = config
        self.estimator = estimator or SizeEstimator(workers=1)
        self._now = now
        self._ignore_paths = tuple(resolve_path(p) for p in config.ignore_paths)

    def decide(self, record: ProjectRecord) -> Decision:
        if not record.has_artifacts:
            return _keep(KeepReason.NO_ARTIFACTS)

        ignored = self._ignored_by(record.root_path)
        if ignored is not None:
            return _keep(KeepReason.IGNORED_PATH, str(ignored))

        if self.config.keep_days is not None:
            decision = self._check_age(record, self.config.keep_days)
            if decision.keep:
                return decision

        if self.config.keep_size_bytes is not None:
            decision = self._check_size(record, self.config.keep_size_bytes)
            if decision.keep:
                return decision

        return ELIGIBLE

    def partition(self, records: Iterable[ProjectRecord]) -> tuple[list[tuple[ProjectRecord, Decision]], list[ProjectRecord]]:
        """Split records into ``(kept, eligible)``; kept entries carry their decision."""
        kept: list[tuple[ProjectRecord, Decision]] = []
        eligible: list[ProjectRecord] = []
        for record in records:
            decision = self.decide(record)
            if decision.keep:
                log.debug("Keeping %s: %s %s", record.name, decision.reason.value, decision.detail)
                kept.append((record, decision))
            else:
                eligible.append(record)
        if kept:
            log.info("Retention rules kept %d projects, %d eligible for cleaning", len(kept), len(eligible))
        return kept, eligible

    def _ignored_by(self, root: Path) -> Path | None:
        if not self._ignore_paths:
            return None
        resolved = resolve_path(root)
        for ignored in self._ignore_paths:
            if is_relative_to(resolved, ignored):
                return ignored
        return None

    def _check_age(self, record: ProjectRecord, keep_days: int) -> Decision:
        if record.last_modified is None:
            if self.config.missing_age_policy is MissingAgePolicy.KEEP:
                return _keep(KeepReason.UNKNOWN_AGE)
            return ELIGIBLE

        now = self._now if self._now is not None else time.time()
        age = now - record.last_modified
        if age < keep_days * SECONDS_PER_DAY:
            return _keep(KeepReason.RECENTLY_BUILT, f"{age / SECONDS_PER_DAY:.1f} days ago")
        return ELIGIBLE

    def _check_size(self, record: ProjectRecord, threshold: int) -> Decision:
        value = self.estimator.ensure_size(record)
        if not value.is_known:
            return _keep(KeepReason.SIZE_UNKNOWN, value.error or "")
        if value.bytes < threshold:
            return _keep(KeepReason.SMALL, f"{bytes_to_human(value.bytes)} < {bytes_to_human(threshold)}")
        return ELIGIBLE


def decide(record: ProjectRecord, config: ScanConfig, estimator: SizeEstimator | None = None) -> Decision:
    """Keep-or-eligible decision for a single record."""
    return RetentionFilter(config, estimator).decide(record)
