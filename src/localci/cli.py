# cli.py
from __future__ import annotations

import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import click

from localci.cancel import CancelToken
from localci.errors import ConfigError
from localci.git_facts.git import describe_checkout
from localci.loader import DEFAULT_WORKFLOW, load_pipeline
from localci.model import FAULT_EXIT_CODE, Event, EventKind, Pipeline, TriggerRule
from localci.pipeline import Orchestrator, select_jobs
from localci.ui.console import Console, get_console, set_console

CONFIG_EXIT_CODE = 2
INTERRUPTED_EXIT_CODE = 130


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files under `root`.

    Returns:
        List of Path objects for workflow files
    """
    default_workflow = root / DEFAULT_WORKFLOW
    if default_workflow.exists():
        return [default_workflow]

    workflow_files = sorted(root.glob("*_workflow.py"))
    if workflow_files:
        return workflow_files

    gh_dir = root / ".github" / "workflows"
    return sorted([*gh_dir.glob("*.yml"), *gh_dir.glob("*.yaml")])


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        ConfigError: If no workflow, or more than one, can be found
    """
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix == "":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            raise ConfigError(f"Could not find workflow file: {workflow_arg}")
        return workflow_path

    workflow_files = find_workflow_files()
    if not workflow_files:
        raise ConfigError(
            "No workflow file found",
            looked_for=f"{DEFAULT_WORKFLOW}, *_workflow.py, .github/workflows/*.yml",
        )
    if len(workflow_files) > 1:
        raise ConfigError(
            "Multiple workflow files found; pass --workflow",
            found=", ".join(str(f) for f in workflow_files),
        )
    return workflow_files[0]


def _load(workflow: str | None) -> tuple[Path, Pipeline]:
    console = get_console()
    try:
        path = discover_workflow(workflow)
        return path, load_pipeline(path)
    except ConfigError as e:
        console.print_error(
            "Invalid pipeline definition",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()] or None,
            suggestion=f"Fix the workflow or point at another one:\n  localci run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(CONFIG_EXIT_CODE)


def _parse_meta(pairs: tuple[str, ...]) -> dict[str, str]:
    meta: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--meta")
        meta[key] = value
    return meta


def _build_event(kind: str, branch: Optional[str], meta: tuple[str, ...], repo_root: str) -> Event:
    facts = describe_checkout(repo_root)
    metadata = {k: v for k, v in facts.items() if k != "branch"}
    metadata.update(_parse_meta(meta))
    return Event(
        kind=EventKind(kind),
        branch=branch or facts.get("branch") or "main",
        metadata=metadata,
    )


def _describe_rule(rule) -> str:
    rules = [rule] if isinstance(rule, TriggerRule) else list(rule or ())
    if not rules:
        return "never"
    parts = []
    for r in rules:
        kinds = ",".join(sorted(k.value for k in r.event_kinds))
        branches = ",".join(r.branch_filters) or "*"
        parts.append(f"{kinds}[{branches}]")
    return " | ".join(parts)


def event_options(fn):
    fn = click.option("--meta", multiple=True, metavar="KEY=VALUE", help="Extra event metadata")(fn)
    fn = click.option("--branch", default=None, help="Branch name (defaults to the current git branch)")(fn)
    fn = click.option(
        "--event",
        "event_kind",
        type=click.Choice([k.value for k in EventKind]),
        default=EventKind.PUSH.value,
        show_default=True,
        help="Kind of event to simulate",
    )(fn)
    fn = click.option(
        "--workflow",
        default=None,
        help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
    )(fn)
    return fn


@click.group(context_settings={"auto_envvar_prefix": "LOCALCI"})
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """localci: run CI pipelines locally, jobs in parallel."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def cancel_on_signal(token: CancelToken):
    """
    Signal handler that cancels `token`.

    It runs on the main thread between bytecodes, possibly while that
    thread holds the console lock, so it must not print.
    """
    def _handler(signum, frame):
        token.cancel(f"interrupted by signal {signum}")
    return _handler


@cli.command()
@event_options
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Max parallel jobs (defaults to one per matched job)")
@click.option("--repo-root", default=".", show_default=True, help="Repository checked out by the checkout action")
@click.option("--log-file", type=click.File("a", encoding="utf-8"), default=None, help="Also append every log line here")
@click.pass_context
def run(ctx, workflow, event_kind, branch, meta, workers, repo_root, log_file):
    """Run the jobs a simulated event triggers."""
    if log_file is not None:
        set_console(Console(debug=ctx.obj.get("debug", False), log_file=log_file))
    console = get_console()

    workflow_path, pipeline = _load(workflow)
    event = _build_event(event_kind, branch, meta, repo_root)

    console.print_run_started(
        event=f"{event.kind.value} on {event.branch}",
        workflow=workflow_path.name,
        job_count=len(pipeline.jobs),
    )

    token = CancelToken()
    handler = cancel_on_signal(token)

    previous = {}
    if threading.current_thread() is threading.main_thread():
        previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        orchestrator = Orchestrator(
            pipeline,
            repo_root=repo_root,
            max_workers=workers,
            console=console,
        )
        outcome = orchestrator.run(event, cancel=token)
    except Exception as e:
        console.print_exception(e)
        sys.exit(FAULT_EXIT_CODE)
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)

    if token.cancelled:
        console.print_info(f"\n{token.reason}, jobs were cancelled")
    console.print_results(outcome.results)
    if token.cancelled:
        sys.exit(INTERRUPTED_EXIT_CODE)
    sys.exit(outcome.exit_code())


@cli.command()
@event_options
def plan(workflow, event_kind, branch, meta):
    """Show which jobs an event would run, without running them."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)
    event = _build_event(event_kind, branch, meta, ".")

    console.print_header(f"PLAN for {event.kind.value} on {event.branch} ({workflow_path.name})")
    matched = select_jobs(event, pipeline.rules, pipeline.jobs, console=console, print_plan=True)
    console.print_info(f"\n{len(matched)} of {len(pipeline.jobs)} job(s) would run")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
def validate(workflow):
    """Load and validate a workflow, then list its jobs."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)

    console.print_header(f"{workflow_path} is valid")
    for name, j in pipeline.jobs.items():
        console.print_info(f"{name}  (on: {_describe_rule(pipeline.rules.get(name))})")
        for i, step in enumerate(j.steps):
            what = f"uses {step.command}" if step.is_builtin else (step.command.splitlines() or [""])[0]
            console.print_info(f"  {i}. {step.name}: {what}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
