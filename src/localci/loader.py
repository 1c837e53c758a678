# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .actions import resolve_action
from .errors import ConfigError
from .model import EventKind, Job, Pipeline, Step, StepKind, TriggerRule

DEFAULT_WORKFLOW = "localci_workflow.py"

# workflow-file event names -> our event kinds
_EVENT_NAMES = {
    "push": EventKind.PUSH,
    "pull_request": EventKind.PULL_REQUEST,
    "workflow_dispatch": EventKind.MANUAL,
    "manual": EventKind.MANUAL,
}


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline definition from a workflow file.

    `.py` files must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    `.yml` / `.yaml` files use a GitHub-Actions-shaped subset (on, env, jobs).

    Raises ConfigError on any problem; nothing has run at that point.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix in (".yml", ".yaml"):
        return load_yaml(wf_path.read_text(encoding="utf-8"), source=str(wf_path))
    raise ConfigError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")


# ----------------------------------------------------------------------
# Python workflows
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> Pipeline:
    module_name = f"localci_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
        if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
            pipeline = globals_dict["pipeline"]()
        else:
            pipeline = globals_dict.get("PIPELINE")
    except ConfigError as e:
        e.details.setdefault("file", str(wf_path))
        raise
    except Exception as e:
        raise ConfigError(f"{type(e).__name__}: {e}", file=str(wf_path)) from e

    if not isinstance(pipeline, Pipeline):
        raise ConfigError(
            "Workflow must return/define a Pipeline. "
            "Define pipeline() -> Pipeline or PIPELINE = wf(job(...), ...).",
            file=str(wf_path),
        )
    return pipeline


# ----------------------------------------------------------------------
# YAML workflows
# ----------------------------------------------------------------------

def load_yaml(text: str, source: Optional[str] = None) -> Pipeline:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError.for_source(source, f"invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError.for_source(source, "workflow must be a mapping")

    # YAML 1.1 reads a bare `on:` key as boolean True
    triggers_raw = data.get("on", data.get(True))
    rules = _parse_triggers(triggers_raw, source)

    workflow_env = _parse_env(data.get("env"), "env", source)

    jobs_raw = data.get("jobs")
    if not isinstance(jobs_raw, dict) or not jobs_raw:
        raise ConfigError.for_source(source, "workflow must define a non-empty 'jobs' mapping")

    jobs: Dict[str, Job] = {}
    for job_id, job_def in jobs_raw.items():
        job_id = str(job_id)
        jobs[job_id] = _parse_job(job_id, job_def, workflow_env, source)

    return Pipeline(jobs=jobs, rules={name: rules for name in jobs}, source=source)


def _parse_triggers(raw: Any, source: Optional[str]) -> Tuple[TriggerRule, ...]:
    if raw is None:
        raise ConfigError.for_source(source, "workflow has no 'on' triggers")

    if isinstance(raw, str):
        entries: Dict[str, Any] = {raw: None}
    elif isinstance(raw, list):
        entries = {str(name): None for name in raw}
    elif isinstance(raw, dict):
        entries = {str(k): v for k, v in raw.items()}
    else:
        raise ConfigError.for_source(source, f"'on' must be a string, list or mapping, got {type(raw).__name__}")

    rules: List[TriggerRule] = []
    for name, spec in entries.items():
        kind = _EVENT_NAMES.get(name)
        if kind is None:
            raise ConfigError.for_source(
                source, f"unsupported trigger event {name!r}", supported=sorted(_EVENT_NAMES)
            )
        branches: List[str] = []
        if spec is not None:
            if not isinstance(spec, dict):
                raise ConfigError.for_source(source, f"trigger {name!r} must be a mapping")
            raw_branches = spec.get("branches", [])
            if isinstance(raw_branches, str):
                raw_branches = [raw_branches]
            if not isinstance(raw_branches, list):
                raise ConfigError.for_source(source, f"trigger {name!r}: 'branches' must be a list")
            branches = [str(b) for b in raw_branches]
        rules.append(TriggerRule(event_kinds=frozenset({kind}), branch_filters=tuple(branches)))
    return tuple(rules)


def _parse_env(raw: Any, where: str, source: Optional[str]) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError.for_source(source, f"{where} must be a mapping")
    return {str(k): _scalar(v) for k, v in raw.items()}


def _scalar(v: Any) -> str:
    # YAML `true` -> "true", not "True"
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _parse_job(job_id: str, job_def: Any, workflow_env: Dict[str, str], source: Optional[str]) -> Job:
    if not isinstance(job_def, dict):
        raise ConfigError.for_source(source, f"job {job_id!r} must be a mapping")

    env = dict(workflow_env)
    env.update(_parse_env(job_def.get("env"), f"jobs.{job_id}.env", source))

    default_cwd: Optional[str] = None
    defaults = job_def.get("defaults")
    if isinstance(defaults, dict) and isinstance(defaults.get("run"), dict):
        default_cwd = defaults["run"].get("working-directory")

    steps_raw = job_def.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise ConfigError.for_source(source, f"job {job_id!r} must have a non-empty 'steps' list")

    steps = [_parse_step(job_id, i, s, default_cwd, source) for i, s in enumerate(steps_raw)]
    return Job(name=job_id, steps=tuple(steps), env=env)


def _parse_step(job_id: str, index: int, raw: Any, default_cwd: Optional[str], source: Optional[str]) -> Step:
    if not isinstance(raw, dict):
        raise ConfigError.for_source(source, f"jobs.{job_id}.steps[{index}] must be a mapping")

    run_cmd = raw.get("run")
    ref = raw.get("uses")
    if (run_cmd is None) == (ref is None):
        raise ConfigError.for_source(
            source, f"jobs.{job_id}.steps[{index}] needs exactly one of 'run' or 'uses'"
        )

    cwd = raw.get("working-directory")
    if run_cmd is not None:
        return Step(
            name=str(raw.get("name") or f"step-{index}"),
            command=str(run_cmd).strip(),
            working_directory=cwd if cwd is not None else default_cwd,
        )

    action = resolve_action(str(ref))
    if action is None:
        raise ConfigError.for_source(source, f"jobs.{job_id}.steps[{index}]: unknown action {ref!r}")
    params = raw.get("with") or {}
    if not isinstance(params, dict):
        raise ConfigError.for_source(source, f"jobs.{job_id}.steps[{index}]: 'with' must be a mapping")
    return Step(
        name=str(raw.get("name") or ref),
        command=str(ref),
        working_directory=cwd,
        kind=StepKind.BUILTIN,
        action=action,
        params={str(k): _scalar(v) for k, v in params.items()},
    )
