"""CLI interface for Purger."""

from __future__ import annotations

import contextlib
import json
import logging
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import click

from purger.core.cleaner import CleaningEngine
from purger.core.context import ProgressChannel, RunContext
from purger.core.discovery import DiscoveryStats, ProjectDiscovery, sort_by_size, with_artifacts
from purger.core.registry import default_registry
from purger.core.retention import Decision, RetentionFilter
from purger.core.sizing import SizeEstimator
from purger.errors import ConfigurationError
from purger.models.clean_result import BatchReport, CleanOutcome, OutcomeKind
from purger.models.config import CleanConfig, ScanConfig, default_workers
from purger.models.project import ProjectRecord
from purger.settings import KNOWN_KEYS, Settings, parse_value
from purger.utils import bytes_to_human, format_elapsed, parse_duration, parse_size, resolve_path

log = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _setup_logging(verbosity: int, debug: bool = False) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2 or debug:
        level = logging.DEBUG
    fmt = "%(levelname)s: %(message)s"
    if debug:
        fmt = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt)


def _run_context() -> RunContext:
    # Nobody drains the queue in the CLI
    return RunContext(progress=ProgressChannel(keep_events=False))


def _fail(message: str) -> None:
    click.echo(f"{click.style('Error:', fg='red', bold=True)} {message}", err=True)
    sys.exit(EXIT_FAILURE)


@contextlib.contextmanager
def _cancel_on_interrupt(context: RunContext) -> Iterator[None]:
    """Turn Ctrl+C into a cancellation request for the duration of a run."""

    def _handler(signum, frame) -> None:
        if context.cancelled:
            # Second Ctrl+C: stop waiting for workers
            raise KeyboardInterrupt
        click.echo("\nCancelling... (press Ctrl+C again to abort)", err=True)
        context.cancel.cancel()

    installed = True
    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Only the main thread may install handlers
        installed = False
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, previous)


# ── shared scan options ───────────────────────────────────────────────────

_SCAN_OPTIONS = [
    click.argument("path", type=click.Path(path_type=Path), default=".", required=False),
    click.option("--max-depth", type=click.IntRange(min=0), default=None, help="Maximum directory depth to search"),
    click.option("--keep-days", type=click.IntRange(min=0), default=None, help="Keep projects built within N days"),
    click.option("--keep-size", default=None, help="Keep projects smaller than SIZE (e.g. 100MB, 1GiB)"),
    click.option("--ignore", "ignore", multiple=True, type=click.Path(path_type=Path), help="Skip this path (repeatable)"),
    click.option("--follow-symlinks", is_flag=True, help="Follow symbolic links to directories"),
    click.option("--include-hidden", is_flag=True, help="Also search hidden directories"),
    click.option("--no-gitignore", is_flag=True, help="Do not honour .gitignore/.ignore files"),
    click.option("--no-parallel", is_flag=True, help="Use a single worker for walking, sizing and cleaning"),
    click.option("--target-only", is_flag=True, help="Only list projects that have a target directory"),
    click.option("--sort-by-size", is_flag=True, help="Sort projects by artifact size, largest first"),
    click.option("--json", "as_json", is_flag=True, help="Output as JSON"),
]


def scan_options(func):
    for option in reversed(_SCAN_OPTIONS):
        func = option(func)
    return func


@dataclass
class ScanOutcome:
    """Everything a scan produced, for display and for cleaning."""

    config: ScanConfig
    records: list[ProjectRecord]
    kept: list[tuple[ProjectRecord, Decision]] = field(default_factory=list)
    eligible: list[ProjectRecord] = field(default_factory=list)
    stats: DiscoveryStats = field(default_factory=DiscoveryStats)

    def decision_for(self, record: ProjectRecord) -> Decision | None:
        for kept, decision in self.kept:
            if kept is record:
                return decision
        return None


def _build_scan_config(settings: Settings, opts: dict[str, Any]) -> ScanConfig:
    max_depth = opts["max_depth"]
    if max_depth is None:
        max_depth = settings.get("scan.max_depth")
    keep_size = parse_size(opts["keep_size"]) if opts["keep_size"] else None
    ignore = [Path(p) for p in settings.get("scan.ignore", [])] + list(opts["ignore"])
    return ScanConfig(
        root=resolve_path(opts["path"].expanduser()),
        max_depth=max_depth,
        follow_symlinks=opts["follow_symlinks"],
        respect_ignore_rules=not opts["no_gitignore"],
        skip_hidden=not opts["include_hidden"],
        ignore_paths=tuple(p.expanduser() for p in ignore),
        keep_days=opts["keep_days"],
        keep_size_bytes=keep_size,
        workers=1 if opts["no_parallel"] else default_workers(),
    )


def _run_scan(
    config: ScanConfig,
    context: RunContext,
    estimator: SizeEstimator,
    *,
    target_only: bool,
    sort: bool,
) -> ScanOutcome:
    discovery = ProjectDiscovery(config, context)
    records = list(discovery.discover())
    if target_only:
        records = with_artifacts(records)

    estimator.resolve_all(with_artifacts(records), context)

    kept, eligible = RetentionFilter(config, estimator).partition(records)
    if sort:
        records = sort_by_size(records)
        eligible = sort_by_size(eligible)
    return ScanOutcome(config, records, kept, eligible, discovery.stats)


def _record_to_dict(record: ProjectRecord, decision: Decision | None = None) -> dict[str, Any]:
    value = record.size.value
    data: dict[str, Any] = {
        "name": record.name,
        "path": str(record.root_path),
        "manifest": str(record.manifest_path),
        "target": str(record.artifact_path) if record.artifact_path else None,
        "size_bytes": record.size_bytes,
        "size_state": value.state.value,
        "workspace_root": record.is_workspace_root,
        "workspace_member": record.is_workspace_member,
        "members": [str(p) for p in record.member_paths],
        "last_modified": record.last_modified,
    }
    if value.error:
        data["size_error"] = value.error
    if record.manifest_error:
        data["manifest_error"] = record.manifest_error
    if decision is not None:
        data["kept"] = decision.reason.value if decision.reason else True
    return data


def _format_size(record: ProjectRecord) -> str:
    value = record.size.value
    if value.is_known:
        return bytes_to_human(value.bytes)
    if value.error:
        return "size error"
    return "?"


def _echo_record(record: ProjectRecord, base: Path, decision: Decision | None) -> None:
    rel = record.relative_path(base)
    label = f"{record.name} ({rel})" if str(rel) not in (".", record.name) else record.name
    tags = ""
    if record.is_workspace_root:
        tags += click.style(f" [workspace, {len(record.member_paths)} members]", fg="blue")
    if record.manifest_error:
        tags += click.style(" [unreadable Cargo.toml]", fg="yellow")

    if not record.has_artifacts:
        click.echo(f"  {click.style('·', fg='bright_black')} {label:45s} — no target{tags}")
        return
    size = _format_size(record)
    if decision is not None:
        reason = decision.reason.value if decision.reason else "kept"
        detail = f", {decision.detail}" if decision.detail else ""
        click.echo(
            f"  {click.style('·', fg='bright_black')} {label:45s} — {size} "
            f"{click.style(f'[kept: {reason}{detail}]', fg='bright_black')}{tags}"
        )
        return
    click.echo(f"  {click.style('✓', fg='green')} {label:45s} — {click.style(size, fg='green', bold=True)}{tags}")


def _echo_scan_summary(outcome: ScanOutcome) -> None:
    for record in outcome.records:
        _echo_record(record, outcome.config.root, outcome.decision_for(record))

    reclaimable = sum(r.size_bytes or 0 for r in outcome.eligible)
    stats = outcome.stats
    click.echo(
        f"\n{len(outcome.records)} projects in {stats.directories_visited:,} directories "
        f"({format_elapsed(stats.duration)}), {len(outcome.eligible)} eligible for cleaning"
    )
    if stats.errors:
        click.echo(click.style(f"{len(stats.errors)} directories could not be read", fg="yellow"))
    click.echo(f"Total reclaimable: {click.style(bytes_to_human(reclaimable), fg='green', bold=True)}\n")


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option("--debug", is_flag=True, help="Debug logging with timestamps and thread names")
@click.version_option(package_name="purger")
def main(verbose: int, debug: bool) -> None:
    """Purger — find and remove Rust build artifacts."""
    _setup_logging(verbose, debug)


# ── scan ─────────────────────────────────────────────────────────────────

@main.command()
@scan_options
def scan(**opts: Any) -> None:
    """Find Cargo projects and report their target sizes (never deletes)."""
    settings = Settings.instance()
    as_json = opts["as_json"]
    try:
        config = _build_scan_config(settings, opts)
        context = _run_context()
        if not as_json:
            click.echo(f"\n{click.style('🔍', bold=True)} Scanning {config.root}...\n")
        with _cancel_on_interrupt(context):
            outcome = _run_scan(
                config,
                context,
                SizeEstimator(config.workers),
                target_only=opts["target_only"],
                sort=opts["sort_by_size"],
            )
    except ConfigurationError as e:
        _fail(str(e))
        return

    if as_json:
        data = {
            "root": str(config.root),
            "cancelled": context.cancelled,
            "directories_visited": outcome.stats.directories_visited,
            "errors": [str(e) for e in outcome.stats.errors],
            "projects": [_record_to_dict(r, outcome.decision_for(r)) for r in outcome.records],
        }
        click.echo(json.dumps(data, indent=2))
    else:
        _echo_scan_summary(outcome)

    if context.cancelled:
        sys.exit(EXIT_INTERRUPTED)


# ── clean ────────────────────────────────────────────────────────────────

def _build_clean_config(settings: Settings, opts: dict[str, Any]) -> CleanConfig:
    timeout = opts["timeout"]
    timeout_seconds = parse_duration(timeout) if timeout is not None else float(settings.get("clean.timeout") or 0)
    jobs = 1 if opts["no_parallel"] else opts["jobs"] or settings.get("clean.jobs") or default_workers()
    backup_dir = opts["executable_backup_dir"] or settings.get("clean.executable_backup_dir")
    return CleanConfig(
        strategy=opts["strategy"] or settings.get("clean.strategy"),
        dry_run=opts["dry_run"],
        parallelism=jobs,
        timeout_seconds=timeout_seconds,
        keep_executable=opts["keep_executable"] or bool(settings.get("clean.keep_executable")),
        executable_backup_dir=Path(backup_dir).expanduser() if backup_dir else None,
        fast_delete=opts["fast_delete"] or bool(settings.get("clean.fast_delete")),
    )


def _outcome_to_dict(outcome: CleanOutcome) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": outcome.record.name,
        "path": str(outcome.record.root_path),
        "status": outcome.kind.value,
        "bytes": outcome.bytes,
        "duration": round(outcome.duration, 3),
    }
    if outcome.reason:
        data["reason"] = outcome.reason
    if outcome.error is not None:
        data["error_type"] = outcome.error_type
    return data


def _echo_outcome(outcome: CleanOutcome, base: Path) -> None:
    rel = outcome.record.relative_path(base)
    label = f"{outcome.record.name} ({rel})" if str(rel) not in (".", outcome.record.name) else outcome.record.name
    match outcome.kind:
        case OutcomeKind.CLEANED:
            size = click.style(bytes_to_human(outcome.bytes), fg="green", bold=True)
            click.echo(f"  {click.style('✓', fg='green')} {label:45s} — freed {size}")
        case OutcomeKind.DRY_RUN:
            click.echo(f"  {click.style('·', fg='cyan')} {label:45s} — would free {bytes_to_human(outcome.bytes)}")
        case OutcomeKind.SKIPPED:
            click.echo(f"  {click.style('·', fg='bright_black')} {label:45s} — skipped ({outcome.reason})")
        case OutcomeKind.FAILED:
            click.echo(f"  {click.style('✗', fg='red')} {label:45s} — {outcome.error_type}: {outcome.reason}")


def _echo_report(report: BatchReport, base: Path, dry_run: bool) -> None:
    for outcome in report.outcomes:
        _echo_outcome(outcome, base)
    if dry_run:
        total = click.style(bytes_to_human(report.total_bytes_estimated), fg="green", bold=True)
        click.echo(f"\nWould free: {total}")
        click.echo("(dry run — no files were deleted)\n")
        return
    total = click.style(bytes_to_human(report.total_bytes_freed), fg="green", bold=True)
    click.echo(f"\nTotal freed: {total} from {report.cleaned_count} projects in {format_elapsed(report.duration)}")
    if report.has_failures:
        click.echo(click.style(f"{len(report.failed)} projects failed", fg="red"))
    click.echo()


@main.command()
@scan_options
@click.option("--strategy", type=click.Choice(["manager", "direct"]), default=None, help="How to remove artifacts")
@click.option("--dry-run", is_flag=True, help="Show what would be cleaned without doing it")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--keep-executable", is_flag=True, help="Back up built executables before cleaning")
@click.option(
    "--executable-backup-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where to back up executables (default: <project>/executables)",
)
@click.option("--timeout", default=None, help="Per-project time limit, e.g. 30, 30s, 5m (0 = none)")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=None, help="Projects cleaned in parallel")
@click.option("--fast-delete", is_flag=True, help="Use the OS native recursive delete where available")
def clean(**opts: Any) -> None:
    """Find Cargo projects and remove their build artifacts."""
    settings = Settings.instance()
    as_json = opts["as_json"]
    context = _run_context()
    try:
        scan_config = _build_scan_config(settings, opts)
        clean_config = _build_clean_config(settings, opts)
        estimator = SizeEstimator(scan_config.workers)
        engine = CleaningEngine(default_registry(), estimator)
        # Fail on an unusable strategy before scanning
        engine.resolve_strategy(clean_config)

        if not as_json:
            click.echo(f"\n{click.style('🔍', bold=True)} Scanning {scan_config.root}...\n")
        with _cancel_on_interrupt(context):
            outcome = _run_scan(
                scan_config,
                context,
                estimator,
                target_only=True,
                sort=opts["sort_by_size"],
            )
    except ConfigurationError as e:
        _fail(str(e))
        return

    if context.cancelled:
        if not as_json:
            click.echo("Cancelled.")
        sys.exit(EXIT_INTERRUPTED)

    if not outcome.eligible:
        if as_json:
            click.echo(json.dumps({"status": "nothing_to_clean", "results": []}))
        else:
            if outcome.records:
                _echo_scan_summary(outcome)
            click.echo("Nothing to clean.")
        return

    if not as_json:
        _echo_scan_summary(outcome)

    if not clean_config.dry_run and not opts["yes"] and not as_json:
        total = sum(r.size_bytes or 0 for r in outcome.eligible)
        if not click.confirm(
            f"Clean {len(outcome.eligible)} projects ({bytes_to_human(total)}) with '{clean_config.strategy}'?",
            default=False,
        ):
            click.echo("Aborted.")
            return

    if not as_json and not clean_config.dry_run:
        click.echo(f"\n{click.style('🧹', bold=True)} Cleaning...\n")

    with _cancel_on_interrupt(context):
        try:
            report = engine.clean(outcome.eligible, clean_config, context)
        except ConfigurationError as e:
            _fail(str(e))
            return

    if as_json:
        status = "dry_run" if clean_config.dry_run else "cleaned"
        data = {
            "status": "cancelled" if context.cancelled else status,
            "total_bytes": report.total_bytes_estimated if clean_config.dry_run else report.total_bytes_freed,
            "duration": round(report.duration, 3),
            "results": [_outcome_to_dict(o) for o in report.outcomes],
        }
        click.echo(json.dumps(data, indent=2))
    else:
        _echo_report(report, scan_config.root, clean_config.dry_run)

    if context.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    if report.has_failures:
        sys.exit(EXIT_FAILURE)


# ── strategies ───────────────────────────────────────────────────────────

@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def strategies(as_json: bool) -> None:
    """List cleaning strategies and whether they can run here."""
    registry = default_registry()
    if as_json:
        data = [
            {
                "id": s.id,
                "name": s.name,
                "description": s.description,
                "available": s.is_available(),
                "unavailable_reason": s.unavailable_reason,
            }
            for s in registry
        ]
        click.echo(json.dumps(data, indent=2))
        return

    for strategy in registry:
        reason = strategy.unavailable_reason
        status = click.style("available", fg="green") if reason is None else click.style(f"not available: {reason}", fg="bright_black")
        click.echo(f"  {click.style(strategy.id, fg='cyan', bold=True):20s} {strategy.name:18s} {status}")
        click.echo(f"    {strategy.description}")


# ── config ───────────────────────────────────────────────────────────────

@main.group()
def config() -> None:
    """Show or change persistent settings."""


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_show(as_json: bool) -> None:
    """Print the effective settings."""
    settings = Settings.instance()
    data = settings.as_dict()
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    click.echo(f"# {settings.path}")
    for key in KNOWN_KEYS:
        click.echo(f"{key} = {json.dumps(settings.get(key))}")


@config.command("set")
@click.argument("key", type=click.Choice(KNOWN_KEYS))
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Store a setting, e.g. `purger config set clean.strategy direct`."""
    try:
        parsed = parse_value(key, value)
        if key == "clean.strategy" and parsed not in default_registry():
            raise ConfigurationError(f"Unknown clean strategy '{parsed}'")
    except ConfigurationError as e:
        _fail(str(e))
        return
    Settings.instance().set(key, parsed)
    click.echo(f"{key} = {json.dumps(parsed)}")
