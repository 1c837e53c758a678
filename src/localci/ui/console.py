"""Console output formatting utilities for localci."""

from __future__ import annotations

import sys
import threading
from typing import IO, Optional


class Console:
    """
    Centralized console output formatting.

    Jobs run on worker threads, so every line goes out whole under a lock;
    lines from different jobs interleave but never tear.
    """

    def __init__(
        self,
        debug: bool = False,
        stream: Optional[IO[str]] = None,
        err_stream: Optional[IO[str]] = None,
        log_file: Optional[IO[str]] = None,
    ):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to stdout at write time)
            err_stream: Where errors go (defaults to stderr at write time)
            log_file: Optional extra sink that receives every line
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        self._log_file = log_file
        self._lock = threading.Lock()

    def _emit(self, text: str, *, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in text.split("\n"):
                print(line, file=stream)
                if self._log_file is not None:
                    print(line, file=self._log_file)
            stream.flush()
            if self._log_file is not None:
                self._log_file.flush()

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n" + "-" * len(title))

    def print_run_started(self, event: str, workflow: str, job_count: int) -> None:
        """Print run start information."""
        self._emit(f"\nRUN STARTED\nEvent: {event}\nWorkflow: {workflow}\nJobs: {job_count}\n")

    def print_state(self, state: str) -> None:
        self.print_debug(f"pipeline state: {state}")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._emit(f"  ✓ {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        self._emit(f"  ⏭ {name} (skipped: {reason})")

    def print_job_start(self, name: str, workspace: str) -> None:
        """Print job start message."""
        self._emit(f"[{name}] JOB STARTED (workspace {workspace})")

    def print_step(self, job: str, index: int, name: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] ▶ step {index}: {name}")

    def print_step_output(self, job: str, step: str, line: str) -> None:
        """One line of a step's stdout/stderr, tagged with its job and step."""
        self._emit(f"[{job}/{step}] {line}")

    def print_job_finished(self, name: str, status: str, duration: float) -> None:
        self._emit(f"[{name}] JOB {status.upper()} ({duration:.1f}s)")

    def print_failure(
        self,
        job: str,
        step: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        kind: str = "STEP FAILED",
    ) -> None:
        """
        Print failure message.

        Args:
            job: Job name
            step: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            kind: Heading, e.g. "STEP FAILED" or "LAUNCH ERROR"
        """
        lines = [f"[{job}] {kind}: {step}"]
        if exit_code is not None:
            lines.append(f"[{job}] Exit code: {exit_code}")
        if hint:
            lines.append(f"[{job}] Hint: {hint}")
        if self.debug:
            lines.append(f"[{job}] Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"[{job}] Error: {error_line}")
        self._emit("\n".join(lines), err=kind != "STEP FAILED")

    def print_results(self, results) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        if not results:
            lines.append("  (no jobs matched)")
        for r in results:
            where = ""
            if r.failed_step_index is not None:
                where = f" at step {r.failed_step_index}"
            code = f" exit={r.exit_code}" if r.exit_code is not None else ""
            lines.append(f"  {r.job_name}: {r.status.value.upper()}{where}{code}")
        self._emit("\n".join(lines))

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
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


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
