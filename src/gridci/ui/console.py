"""Console output formatting utilities for gridci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import EventDescriptor, RunDecision, RunReport


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job and per-step lines, failures
                   included (the results table and errors still print)
        """
        self.debug = debug
        self.quiet = quiet
        # jobs print from worker threads; keep each message's lines together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def _progress(self, *lines: str) -> None:
        if not self.quiet:
            self._emit(*lines)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        event: "EventDescriptor",
        decision: "RunDecision",
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Event: {event.kind.value}",
            f"Trigger: {decision.reason}",
            f"Jobs: {job_count}",
            "",
        )

    def print_not_triggered(self, pipeline: str, decision: "RunDecision") -> None:
        self._emit(f"\nNOT TRIGGERED: {pipeline}", f"Reason: {decision.reason}")

    def print_job_start(self, platform: str) -> None:
        self._progress(f"[{platform}] JOB STARTED")

    def print_step(self, platform: str, name: str) -> None:
        self._progress(f"[{platform}] STEP: {name}")

    def print_step_skipped(self, platform: str, name: str) -> None:
        self._progress(f"[{platform}] STEP SKIPPED: {name}")

    def print_cache(self, platform: str, hit: bool, key: str) -> None:
        self._progress(f"[{platform}] CACHE: {'hit' if hit else 'miss'} ({_short(key)})")

    def print_cache_saved(self, platform: str, key: str) -> None:
        self._progress(f"[{platform}] CACHE: saved ({_short(key)})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: "<platform>/<step>"
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._progress(*lines)

    def print_plan_job(self, platform: str, steps: list[str]) -> None:
        self._emit(f"  {platform}: {' -> '.join(steps)}")

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in report.jobs:
            lines.append(f"  {job.platform}: {job.status.value.upper()} ({job.duration:.1f}s)")
            for r in job.results:
                if r.skipped:
                    mark = "skipped"
                elif r.cache_key is not None:
                    mark = "cache hit" if r.cache_hit else "cache miss"
                else:
                    mark = f"exit {r.exit_code}"
                lines.append(f"    - {r.step}: {mark}")
        lines.append(f"OVERALL: {report.status.value.upper()}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print structured error message."""
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(exc)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


def _short(key: str) -> str:
    return key[:40] + "..." if len(key) > 40 else key


# Global console instance (will be initialized by CLI)
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
