# src/localci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .actions import resolve_action
from .errors import ConfigError
from .model import EventKind, Job, Pipeline, RuleSpec, Step, StepKind, TriggerRule


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, command=cmd, working_directory=cwd)


def uses(ref: str, name: str | None = None, *, cwd: str | None = None, **params: str) -> Step:
    """
    Create a built-in action step.

        uses("actions/checkout@v4")
        uses("pre-commit/action@v3.0.1", extra_args="--all-files")
    """
    action = resolve_action(ref)
    if action is None:
        raise ConfigError(f"unknown action {ref!r}", step=name or ref)
    return Step(
        name=name or ref,
        command=ref,
        working_directory=cwd,
        kind=StepKind.BUILTIN,
        action=action,
        params=params,
    )


# ---------------------------------------------------------------------
# Trigger helpers
# ---------------------------------------------------------------------

def on(*kinds: Union[str, EventKind], branches: Union[str, Iterable[str], None] = None) -> TriggerRule:
    """on("push", "pull_request", branches=["main"]) or on("push", branches="main")"""
    if not kinds:
        raise ConfigError("a trigger needs at least one event kind")
    try:
        return TriggerRule(event_kinds=frozenset(kinds), branch_filters=branches or ())
    except ValueError as e:
        raise ConfigError(str(e), known_kinds=[k.value for k in EventKind]) from e


def on_push(*branches: str) -> TriggerRule:
    return on(EventKind.PUSH, branches=branches)


def on_pull_request(*branches: str) -> TriggerRule:
    return on(EventKind.PULL_REQUEST, branches=branches)


def on_manual() -> TriggerRule:
    return on(EventKind.MANUAL)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ConfigError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.working_directory is not None else replace(s, working_directory=cwd) for s in steps_final]

    return Job(name=name, steps=tuple(steps_final), env=env or {})


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    triggers: Union[RuleSpec, Sequence[TriggerRule], None] = None,
    rules: Optional[Mapping[str, RuleSpec]] = None,
    source: str | None = None,
) -> Pipeline:
    """
    Pipeline definition helper.

    `triggers` applies to every job; `rules` overrides it per job name.

        from localci import wf, job, sh, uses, on_push, on_pull_request

        def pipeline():
            return wf(
                job("build", uses("actions/checkout@v4"), sh("Build", "cargo build")),
                triggers=(on_push("main"), on_pull_request()),
            )
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError.for_source(source, f"Duplicate job names found: {dupes}")

    if isinstance(triggers, TriggerRule):
        shared: Optional[RuleSpec] = triggers
    elif triggers is not None:
        shared = tuple(triggers)
    else:
        shared = None

    all_rules: Dict[str, RuleSpec] = {}
    if shared is not None:
        all_rules.update({n: shared for n in names})
    all_rules.update(dict(rules or {}))

    return Pipeline(jobs={j.name: j for j in jobs}, rules=all_rules, source=source)
