"""Cleaning orchestration: safety checks, backups and strategy execution per record."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable

from purger.core.backup import backup_executables
from purger.core.context import RunContext
from purger.core.registry import StrategyRegistry, default_registry
from purger.core.sizing import SizeEstimator
from purger.errors import (
    CleanCancelled,
    CleanTimeout,
    PurgerError,
    StrategyFailure,
    UnsafeArtifactDirectory,
)
from purger.models.clean_result import BatchReport, CleanOutcome
from purger.models.config import CleanConfig
from purger.models.project import ProjectRecord
from purger.models.strategy import CleanStrategy, StrategyContext
from purger.utils import bytes_to_human, is_relative_to, resolve_path

log = logging.getLogger(__name__)


def check_artifact_directory(record: ProjectRecord) -> Path:
    """Return the artifact directory if it is safe to delete.

    Raises:
        UnsafeArtifactDirectory: If it is a symlink or resolves outside
            the project root.
    """
    artifact = record.artifact_path
    if artifact is None:
        raise UnsafeArtifactDirectory(record.root_path, "no artifact directory")
    if artifact.is_symlink():
        raise UnsafeArtifactDirectory(artifact, "is a symbolic link")
    resolved = resolve_path(artifact)
    root = resolve_path(record.root_path)
    if resolved == root or not is_relative_to(resolved, root):
        raise UnsafeArtifactDirectory(artifact, f"resolves outside project root {root}")
    return resolved


class CleaningEngine:
    """Runs a clean strategy over many records in parallel.

    One record's failure never aborts the batch: every error becomes a
    ``FAILED`` outcome. Only an unknown or unusable strategy is fatal,
    and that is reported before any record is touched.
    """

    def __init__(
        self,
        registry: StrategyRegistry | None = None,
        estimator: SizeEstimator | None = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.estimator = estimator or SizeEstimator()

    def resolve_strategy(self, config: CleanConfig) -> CleanStrategy:
        # A dry run only needs the id to be known
        strategy = self.registry.get(config.strategy)
        if strategy is None or not config.dry_run:
            strategy = self.registry.require(config.strategy)
        return strategy

    def clean(
        self,
        records: Iterable[ProjectRecord],
        config: CleanConfig,
        context: RunContext | None = None,
    ) -> BatchReport:
        """Clean every record and return their outcomes in input order.

        Raises:
            ConfigurationError: If the strategy is unknown or, outside a
                dry run, unavailable.
        """
        context = context or RunContext()
        records = list(records)
        strategy = self.resolve_strategy(config)
        total = len(records)
        log.info(
            "%s %d projects with '%s' (%d workers)",
            "Previewing" if config.dry_run else "Cleaning",
            total,
            strategy.id,
            config.parallelism,
        )

        start = time.monotonic()
        lock = threading.Lock()
        done = 0

        def _unit(record: ProjectRecord) -> CleanOutcome:
            nonlocal done
            outcome = self._clean_one(record, strategy, config, context)
            with lock:
                done += 1
                finished = done
            context.emit(
                "clean",
                outcome.kind.value,
                path=record.root_path,
                message=outcome.reason,
                done=finished,
                total=total,
                payload=outcome,
            )
            return outcome

        workers = max(1, min(config.parallelism, total or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="purger-clean") as executor:
            outcomes = list(executor.map(_unit, records))

        report = BatchReport(outcomes=outcomes, duration=time.monotonic() - start)
        log.info(
            "Clean finished: %d cleaned, %d failed, %d skipped, %s freed",
            report.cleaned_count,
            len(report.failed),
            len(report.skipped),
            bytes_to_human(report.total_bytes_freed),
        )
        return report

    def preview(
        self,
        records: Iterable[ProjectRecord],
        config: CleanConfig,
        context: RunContext | None = None,
    ) -> BatchReport:
        """Report what :meth:`clean` would free, without touching anything."""
        return self.clean(records, dataclasses.replace(config, dry_run=True), context)

    def _clean_one(
        self,
        record: ProjectRecord,
        strategy: CleanStrategy,
        config: CleanConfig,
        context: RunContext,
    ) -> CleanOutcome:
        if context.cancelled:
            return CleanOutcome.skipped(record, "cancelled")
        if not record.artifacts_exist():
            return CleanOutcome.skipped(record, "no artifact directory")

        if config.dry_run:
            value = self.estimator.ensure_size(record)
            return CleanOutcome.dry_run(record, strategy.estimate(record, value))

        start = time.monotonic()
        try:
            check_artifact_directory(record)
            value = self.estimator.ensure_size(record)
            deadline = start + config.timeout if config.timeout is not None else None
            ctx = StrategyContext(
                config=config,
                run=context,
                deadline=deadline,
                known_bytes=value.bytes if value.is_known else None,
            )
            context.emit("clean", "cleaning", path=record.root_path)

            if config.keep_executable:
                ctx.checkpoint()
                backup_executables(record, config.executable_backup_dir, context.cancel)

            freed = strategy.remove(record, ctx)
        except CleanCancelled as e:
            log.info("Clean of %s cancelled", record.root_path)
            outcome = CleanOutcome.failed(record, e)
        except CleanTimeout as e:
            log.warning("Clean of %s timed out: %s", record.root_path, e)
            outcome = CleanOutcome.failed(record, e)
        except PurgerError as e:
            log.warning("Failed to clean %s: %s", record.root_path, e)
            outcome = CleanOutcome.failed(record, e)
        except Exception as e:
            log.exception("Unexpected error cleaning %s", record.root_path)
            outcome = CleanOutcome.failed(record, StrategyFailure(f"Unexpected error: {e}"))
        else:
            log.info("Cleaned %s: %s freed", record.root_path, bytes_to_human(freed))
            outcome = CleanOutcome.cleaned(record, freed)
        outcome.duration = time.monotonic() - start
        return outcome


def clean(
    records: Iterable[ProjectRecord],
    config: CleanConfig,
    context: RunContext | None = None,
) -> BatchReport:
    """Clean *records* with the built-in strategies."""
    return CleaningEngine().clean(records, config, context)
