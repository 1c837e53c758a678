# runner.py
from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .cancel import CancelToken
from .executor import run_steps
from .model import Job, RunResult, RunStatus
from .ui.console import Console, get_console

# Process-wide base environment: snapshotted once, never mutated.
BASE_ENV: Mapping[str, str] = MappingProxyType(dict(os.environ))


def merge_env(base: Mapping[str, str], *layers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Later layers win. Returns a fresh dict; inputs are left untouched."""
    env = dict(base)
    for layer in layers:
        env.update(layer or {})
    return env


def job_env(job: Job, workspace: Path, base_env: Mapping[str, str]) -> Dict[str, str]:
    runner_env = {
        "CI": "true",
        "LOCALCI": "true",
        "LOCALCI_JOB": job.name,
        "LOCALCI_WORKSPACE": str(workspace),
    }
    # job env takes precedence over everything the runner provides
    return merge_env(base_env, runner_env, job.env)


def run_job(
    job: Job,
    *,
    base_env: Mapping[str, str] | None = None,
    repo_root: str | Path = ".",
    console: Console | None = None,
    cancel: CancelToken | None = None,
) -> RunResult:
    """
    Run one job in its own scratch workspace and report a single result.

    The workspace exists only for the duration of the call and is removed
    on every exit path. Per-job faults never escape: they come back as an
    ERROR result.
    """
    console = console or get_console()
    base = BASE_ENV if base_env is None else base_env
    started = time.monotonic()

    try:
        with tempfile.TemporaryDirectory(prefix=f"localci-{_safe(job.name)}-") as tmp:
            workspace = Path(tmp)
            console.print_job_start(job.name, tmp)
            outcome = run_steps(
                job.steps,
                job_env(job, workspace, base),
                workspace=workspace,
                repo_root=Path(repo_root),
                job_name=job.name,
                console=console,
                cancel=cancel,
            )
        result = RunResult(
            job_name=job.name,
            status=outcome.status,
            failed_step_index=outcome.failed_index,
            exit_code=outcome.exit_code,
            reason=outcome.reason,
            duration=time.monotonic() - started,
        )
    except Exception as e:
        console.print_exception(e)
        result = RunResult(
            job_name=job.name,
            status=RunStatus.ERROR,
            reason=f"{type(e).__name__}: {e}",
            duration=time.monotonic() - started,
        )

    console.print_job_finished(job.name, result.status.value, result.duration)
    return result


def _safe(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)
