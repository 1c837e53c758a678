# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Mapping, Optional, Sequence

from .actions import get_action
from .cancel import CancelToken
from .errors import CancellationError, StepFailure, StepLaunchError
from .model import RunStatus, Step, StepKind
from .ui.console import Console, get_console

# how often a blocked step checks for cancellation (seconds)
POLL_INTERVAL = 0.05
# time between SIGTERM and SIGKILL when tearing a step down (seconds)
KILL_GRACE = 2.0

# shell exit codes that mean "could not run", not "ran and failed".
# The shell reports them the same way when a command inside the step exits
# 126/127 on its own (e.g. a later line of a multi-line run), so such a
# step is also reported as a launch error.
LAUNCH_EXIT_CODES = {
    126: "command found but not executable",
    127: "command not found",
}

TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "pre-commit": "Install pre-commit (e.g., pip install pre-commit).",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


@dataclass(frozen=True)
class StepsOutcome:
    status: RunStatus
    failed_index: Optional[int] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class StepContext:
    """Everything one step needs to run; handed to built-in actions too."""
    job_name: str
    step: Step
    workspace: Path
    repo_root: Path
    env: Mapping[str, str]
    console: Console
    cancel: Optional[CancelToken] = None

    def resolve_cwd(self, working_directory: str | None) -> Path:
        cwd = (self.workspace / (working_directory or ".")).resolve()
        if not cwd.is_dir():
            raise StepLaunchError(self.job_name, self.step.name, f"cwd not found: {cwd}")
        return cwd

    def shell(self, command: str, working_directory: str | None = None) -> int:
        """
        Run `command` through the shell, streaming its output line by line.
        Returns the exit code; raises StepLaunchError / CancellationError.
        """
        cwd = self.resolve_cwd(working_directory)
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                cwd=str(cwd),
                env=dict(self.env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,  # own process group, so teardown reaches children
            )
        except OSError as e:
            raise StepLaunchError(self.job_name, self.step.name, str(e), cmd=command) from e

        pump = threading.Thread(
            target=self._pump,
            args=(proc.stdout,),
            name=f"localci-{self.job_name}-output",
            daemon=True,
        )
        pump.start()

        try:
            code = self._wait(proc)
        finally:
            if proc.poll() is None:
                _terminate(proc)
            pump.join(timeout=KILL_GRACE)

        if code in LAUNCH_EXIT_CODES:
            tool = command.split()[0] if command.split() else command
            raise StepLaunchError(
                self.job_name,
                self.step.name,
                LAUNCH_EXIT_CODES[code],
                exit_code=code,
                cmd=command,
                hint=TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."),
            )
        return code

    def _wait(self, proc: subprocess.Popen) -> int:
        while True:
            try:
                return proc.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                if self.cancel is not None and self.cancel.cancelled:
                    _terminate(proc)
                    raise CancellationError(self.job_name, self.step.name, self.cancel.reason or "cancelled")

    def _pump(self, stream: IO[str]) -> None:
        with stream:
            for line in stream:
                self.console.print_step_output(self.job_name, self.step.name, line.rstrip("\r\n"))


def _terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the step's process group, SIGKILL it if it lingers."""
    def _signal(sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            pass

    _signal(signal.SIGTERM)
    try:
        proc.wait(timeout=KILL_GRACE)
    except subprocess.TimeoutExpired:
        _signal(getattr(signal, "SIGKILL", signal.SIGTERM))
        proc.wait()


def _dispatch(ctx: StepContext) -> int:
    step = ctx.step
    if step.kind is StepKind.SHELL:
        return ctx.shell(step.command, step.working_directory)

    action = get_action(step.action or "")
    if action is None:
        raise StepLaunchError(ctx.job_name, step.name, f"unknown action {step.action!r}")
    return action(ctx)


def run_steps(
    steps: Sequence[Step],
    env: Mapping[str, str],
    *,
    workspace: str | Path | None = None,
    repo_root: str | Path = ".",
    job_name: str = "",
    console: Console | None = None,
    cancel: CancelToken | None = None,
) -> StepsOutcome:
    """
    Run `steps` in order with environment `env`, stopping at the first
    step that does not exit 0. Steps after that one never start.
    """
    console = console or get_console()
    workspace_p = Path(workspace) if workspace is not None else Path.cwd()
    repo_root_p = Path(repo_root)

    for index, step in enumerate(steps):
        console.print_step(job_name, index, step.name)
        ctx = StepContext(
            job_name=job_name,
            step=step,
            workspace=workspace_p,
            repo_root=repo_root_p,
            env=env,
            console=console,
            cancel=cancel,
        )
        try:
            if cancel is not None and cancel.cancelled:
                raise CancellationError(job_name, step.name, cancel.reason or "cancelled")
            code = _dispatch(ctx)
        except CancellationError as e:
            console.print_failure(job_name, step.name, str(e), kind="CANCELLED")
            return StepsOutcome(RunStatus.ERROR, index, None, e.message)
        except StepLaunchError as e:
            console.print_failure(
                job_name,
                step.name,
                str(e),
                exit_code=e.exit_code,
                hint=e.details.get("hint"),
                kind="LAUNCH ERROR",
            )
            return StepsOutcome(RunStatus.ERROR, index, e.exit_code, e.message)

        if code != 0:
            failure = StepFailure(job=job_name, step=step.name, cmd=step.command, exit_code=code)
            console.print_failure(job_name, step.name, str(failure), exit_code=code)
            return StepsOutcome(RunStatus.FAILURE, index, code, failure.message)

    return StepsOutcome(RunStatus.SUCCESS, None, 0, None)
