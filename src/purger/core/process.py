"""External command execution with a deadline and cooperative cancellation."""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from purger.core.context import CancelToken
from purger.errors import CleanCancelled, CleanTimeout, StrategyFailure

log = logging.getLogger(__name__)

# How often the child is polled for exit, cancellation and deadline (seconds).
_POLL_INTERVAL = 0.08

# Time a terminated child gets to exit before it is killed (seconds).
_TERMINATE_GRACE = 2.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def command_available(name: str) -> bool:
    """Check if *name* can be found on PATH."""
    return shutil.which(name) is not None


def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    deadline: float | None = None,
    timeout_seconds: float = 0,
    cancel: CancelToken | None = None,
    on_tick: Callable[[float], None] | None = None,
) -> CommandResult:
    """Run *argv* to completion, honouring a deadline and a cancel token.

    Cancellation and deadline expiry terminate the child (then kill it
    after a grace period). Stopping a child mid-way does not undo what it
    already did.

    Args:
        argv: Command and arguments.
        cwd: Working directory for the child.
        deadline: ``time.monotonic()`` value after which the child is stopped.
        timeout_seconds: Budget reported in the :class:`CleanTimeout` error.
        cancel: Token polled while the child runs.
        on_tick: Called with the elapsed seconds on every poll.

    Returns:
        The finished command's exit status and captured output.

    Raises:
        StrategyFailure: If the command cannot be started.
        CleanTimeout: If the deadline passed before the child exited.
        CleanCancelled: If cancellation was requested before it exited.
    """
    argv = tuple(argv)
    log.debug("Running %s (cwd=%s)", " ".join(argv), cwd)
    try:
        proc = subprocess.Popen(
            argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise StrategyFailure(f"Failed to start {argv[0]}: {e}") from e

    start = time.monotonic()
    while True:
        if cancel is not None and cancel.is_cancelled:
            _stop(proc)
            raise CleanCancelled()

        wait = _POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _stop(proc)
                raise CleanTimeout(timeout_seconds)
            wait = min(wait, remaining)

        try:
            stdout, stderr = proc.communicate(timeout=wait)
            break
        except subprocess.TimeoutExpired:
            if on_tick:
                on_tick(time.monotonic() - start)

    elapsed = time.monotonic() - start
    log.debug("%s exited with %d after %.2fs", argv[0], proc.returncode, elapsed)
    return CommandResult(argv, proc.returncode, stdout or "", stderr or "", elapsed)


def _stop(proc: subprocess.Popen) -> None:
    """Ask the child to exit, then kill it if it does not."""
    log.info("Terminating %s (pid %d)", proc.args[0], proc.pid)
    proc.terminate()
    try:
        proc.communicate(timeout=_TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        log.warning("Killing %s (pid %d) after %.0fs grace period", proc.args[0], proc.pid, _TERMINATE_GRACE)
        proc.kill()
        proc.communicate()
