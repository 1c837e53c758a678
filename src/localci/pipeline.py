# pipeline.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from .cancel import CancelToken, SupersessionRegistry
from .model import Event, Job, Pipeline, PipelineOutcome, RuleSpec, RunResult, RunStatus
from .runner import BASE_ENV, merge_env, run_job
from .trigger import matches_any
from .ui.console import Console, get_console


class RunState(str, Enum):
    PENDING = "pending"
    MATCHING = "matching"
    NO_MATCH = "no_match"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"


def event_env(event: Event) -> Dict[str, str]:
    """The event, as seen by every step of the run."""
    env = {
        "LOCALCI_EVENT": event.kind.value,
        "LOCALCI_BRANCH": event.branch,
    }
    for key, value in event.metadata.items():
        env[f"LOCALCI_META_{_env_key(key)}"] = value
    return env


def _env_key(key: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in key).upper()


def select_jobs(
    event: Event,
    rules: Mapping[str, RuleSpec],
    jobs: Mapping[str, Job],
    *,
    console: Console | None = None,
    print_plan: bool = False,
) -> List[Job]:
    """Jobs whose trigger rule matches `event`, in declared order."""
    selected: List[Job] = []
    for name, j in jobs.items():
        rule = rules.get(name)
        if matches_any(event, rule):
            selected.append(j)
            if print_plan and console is not None:
                console.print_plan_job(name, f"matched {event.kind.value} on {event.branch}")
        elif print_plan and console is not None:
            why = "no trigger rule" if rule is None else f"no rule for {event.kind.value} on {event.branch}"
            console.print_plan_job_skipped(name, why)
    return selected


def run(
    event: Event,
    rules: Mapping[str, RuleSpec],
    jobs: Mapping[str, Job],
    *,
    base_env: Mapping[str, str] | None = None,
    repo_root: str | Path = ".",
    max_workers: int | None = None,
    console: Console | None = None,
    cancel: CancelToken | None = None,
    print_plan: bool = True,
) -> PipelineOutcome:
    """
    Run every job matched by `event` concurrently and aggregate the results.

    A failing job never cancels its siblings: every matched job runs to
    completion (or until `cancel` fires) and reports. The outcome fails
    iff any job did not succeed; when nothing matches it is an empty
    success.
    """
    console = console or get_console()
    cancel = cancel if cancel is not None else CancelToken()
    state = RunState.PENDING
    console.print_state(state.value)

    state = RunState.MATCHING
    console.print_state(state.value)
    matched = select_jobs(event, rules, jobs, console=console, print_plan=print_plan)
    if not matched:
        state = RunState.NO_MATCH
        console.print_state(state.value)
        return PipelineOutcome(overall_status=RunStatus.SUCCESS, results=())

    state = RunState.RUNNING
    console.print_state(state.value)
    workers = max_workers or len(matched)
    # shared read-only by every job of this run
    run_env = MappingProxyType(merge_env(BASE_ENV if base_env is None else base_env, event_env(event)))

    results: Dict[str, RunResult] = {}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="localci-job") as pool:
        futures = {
            pool.submit(
                run_job,
                j,
                base_env=run_env,
                repo_root=repo_root,
                console=console,
                cancel=cancel,
            ): j.name
            for j in matched
        }

        state = RunState.AGGREGATING
        console.print_state(state.value)
        try:
            done, _ = wait(futures)
        except BaseException:
            # e.g. KeyboardInterrupt: stop the jobs before the pool joins them
            cancel.cancel("interrupted")
            raise
        for fut in done:
            results[futures[fut]] = fut.result()

    state = RunState.COMPLETED
    console.print_state(state.value)
    return PipelineOutcome.from_results(results[j.name] for j in matched)


class Orchestrator:
    """
    Runs a loaded pipeline for incoming events.

    A new run on a branch supersedes (cancels) the run still in flight for
    that same branch.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        *,
        base_env: Mapping[str, str] | None = None,
        repo_root: str | Path = ".",
        max_workers: int | None = None,
        console: Console | None = None,
    ):
        self.pipeline = pipeline
        self.base_env = base_env
        self.repo_root = repo_root
        self.max_workers = max_workers
        self.console = console
        self._in_flight = SupersessionRegistry()

    def plan(self, event: Event) -> List[Job]:
        return select_jobs(event, self.pipeline.rules, self.pipeline.jobs)

    def run(self, event: Event, cancel: Optional[CancelToken] = None) -> PipelineOutcome:
        token = self._in_flight.begin(event.branch, parent=cancel)
        try:
            return run(
                event,
                self.pipeline.rules,
                self.pipeline.jobs,
                base_env=self.base_env,
                repo_root=self.repo_root,
                max_workers=self.max_workers,
                console=self.console,
                cancel=token,
            )
        finally:
            self._in_flight.end(event.branch, token)
