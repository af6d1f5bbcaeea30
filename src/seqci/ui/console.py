"""Console output formatting utilities for seqci."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from ..env import mask
from ..model import RunResult, RunStatus


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._secrets: frozenset = frozenset()

    def register_secrets(self, secrets: Iterable[str]) -> None:
        """
        Values that must never appear in output.

        Registered values stay masked for the life of the console; use
        `masking()` to scope them to a single run.
        """
        self._secrets = self._secrets | frozenset(s for s in secrets if s)

    @contextmanager
    def masking(self, secrets: Iterable[str]) -> Iterator[None]:
        """Mask `secrets` until the block exits, then restore the previous set."""
        previous = self._secrets
        self.register_secrets(secrets)
        try:
            yield
        finally:
            self._secrets = previous

    def _out(self, text: str, *, err: bool = False) -> None:
        print(mask(text, self._secrets), file=sys.stderr if err else sys.stdout)

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        job: str,
        step_count: int,
        event: str | None = None,
        runs_on: str | None = None,
    ) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Pipeline: {pipeline}")
        self._out(f"Workflow: {workflow}")
        self._out(f"Job: {job}")
        if runs_on:
            self._out(f"Runs on: {runs_on} (running locally)")
        if event:
            self._out(f"Event: {event}")
        self._out(f"Steps: {step_count}")
        self._out("")

    def print_trigger_skipped(self, event: str, accepted: list[str]) -> None:
        self._out(f"SKIPPED: event '{event}' does not trigger this pipeline")
        self._out(f"Accepted events: {', '.join(accepted) or '(none)'}")

    def print_step(self, index: int, name: str, note: str | None = None) -> None:
        """Print step start message."""
        self._out(f"\nSTEP {index}: {name}")
        if note:
            self._out(f"  # {note}")

    def print_step_success(self, duration: float) -> None:
        self._out(f"STATUS: success ({duration:.1f}s)")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """Print step failure message."""
        self._out(f"STEP FAILED: {name}")
        if exit_code is not None:
            self._out(f"Exit code: {exit_code}")
        if hint:
            self._out(f"Hint: {hint}")
        if self.debug:
            self._out(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            self._out(f"Error: {error_line}")

    def print_cancelled(self, next_step: str) -> None:
        self._out(f"\nCANCELLED before step: {next_step}")

    def print_results(self, result: RunResult, step_names: list[str]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for outcome in result.outcomes:
            status_display = "SUCCESS" if outcome.ok else f"FAILED (exit={outcome.exit_status})"
            self._out(f"  {outcome.step_name}: {status_display} [{outcome.duration:.1f}s]")
        for name in step_names[len(result.outcomes):]:
            self._out(f"  {name}: NOT RUN")
        if result.status is RunStatus.SUCCESS:
            self._out("RUN: SUCCESS")
        elif result.status is RunStatus.CANCELLED:
            self._out("RUN: CANCELLED")
        else:
            self._out(f"RUN: FAILED at step {result.failed_at}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._out(f"\nERROR: {title}", err=True)
        self._out(f"{message}", err=True)
        if details:
            for detail in details:
                self._out(f"  {detail}", err=True)
        if suggestion:
            self._out(f"\n{suggestion}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
