"""Strategy that delegates cleaning to ``cargo clean``."""

from __future__ import annotations

import logging

from purger.core.process import command_available, run_command
from purger.errors import SizeComputationError, StrategyFailure
from purger.models.project import ProjectRecord
from purger.models.strategy import CleanStrategy, StrategyContext
from purger.utils import tree_size

log = logging.getLogger(__name__)

# Trailing stderr kept on failures
_STDERR_TAIL = 2000


class ManagerCleanStrategy(CleanStrategy):
    """Runs the build tool's own clean command in the project root."""

    id = "manager"
    name = "cargo clean"
    description = "Run 'cargo clean' in each project; the build tool decides what to remove"
    command: tuple[str, ...] = ("cargo", "clean")

    @property
    def unavailable_reason(self) -> str | None:
        if not command_available(self.command[0]):
            return f"'{self.command[0]}' not found on PATH"
        return None

    def remove(self, record: ProjectRecord, ctx: StrategyContext) -> int:
        ctx.checkpoint()
        before = ctx.known_bytes
        if before is None:
            before = _measure(record)

        result = run_command(
            self.command,
            cwd=record.root_path,
            deadline=ctx.deadline,
            timeout_seconds=ctx.config.timeout_seconds,
            cancel=ctx.run.cancel,
        )
        if not result.ok:
            stderr = result.stderr.strip()[-_STDERR_TAIL:]
            raise StrategyFailure(
                f"{' '.join(self.command)} exited with code {result.returncode}"
                + (f": {stderr.splitlines()[-1]}" if stderr else ""),
                returncode=result.returncode,
                stderr=stderr,
            )

        after = _measure(record) if record.artifacts_exist() else 0
        freed = max(before - after, 0)
        log.info("%s: '%s' freed %d bytes", record.name, " ".join(self.command), freed)
        return freed


def _measure(record: ProjectRecord) -> int:
    if record.artifact_path is None:
        return 0
    try:
        return tree_size(record.artifact_path)
    except (SizeComputationError, OSError) as e:
        log.warning("Cannot measure %s: %s", record.artifact_path, e)
        return 0
