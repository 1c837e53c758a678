# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union

from .errors import ConfigError


def _frozen_map(value: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    # force values to str for env compatibility, then freeze
    return MappingProxyType({str(k): str(v) for k, v in (value or {}).items()})


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"


class StepKind(str, Enum):
    SHELL = "shell"
    BUILTIN = "builtin"


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    """Something that happened in source control (or a manual kick)."""
    kind: EventKind
    branch: str
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))
        object.__setattr__(self, "metadata", _frozen_map(self.metadata))


@dataclass(frozen=True)
class TriggerRule:
    """
    Which events activate a job.

    An empty `branch_filters` matches every branch.
    """
    event_kinds: frozenset = frozenset()
    branch_filters: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        kinds = self.event_kinds
        branches = self.branch_filters
        # a bare string is one value, not a sequence of characters
        if isinstance(kinds, str):
            kinds = (kinds,)
        if isinstance(branches, str):
            branches = (branches,)
        object.__setattr__(self, "event_kinds", frozenset(EventKind(k) for k in kinds))
        object.__setattr__(self, "branch_filters", tuple(branches))


@dataclass(frozen=True)
class Step:
    """
    A single step inside a job.

    Tagged by `kind`:
      - SHELL:   `command` is handed to the shell
      - BUILTIN: `action` names a registered action, `params` are its inputs;
                 `command` keeps the declared reference for display
    """
    name: str
    command: str
    working_directory: str | None = None
    kind: StepKind = StepKind.SHELL
    action: str | None = None
    params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", StepKind(self.kind))
        object.__setattr__(self, "params", _frozen_map(self.params))
        if self.kind is StepKind.BUILTIN and not self.action:
            raise ValueError(f"builtin step {self.name!r} has no action")

    @property
    def is_builtin(self) -> bool:
        return self.kind is StepKind.BUILTIN


@dataclass(frozen=True)
class Job:
    """A CI job: an ordered list of steps plus its environment."""
    name: str
    steps: Tuple[Step, ...]
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "env", _frozen_map(self.env))


@dataclass(frozen=True)
class RunResult:
    job_name: str
    status: RunStatus
    failed_step_index: Optional[int] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS


FAULT_EXIT_CODE = 1


@dataclass(frozen=True)
class PipelineOutcome:
    overall_status: RunStatus
    results: Tuple[RunResult, ...] = ()

    @classmethod
    def from_results(cls, results) -> PipelineOutcome:
        results = tuple(results)
        failed = any(r.status is not RunStatus.SUCCESS for r in results)
        return cls(
            overall_status=RunStatus.FAILURE if failed else RunStatus.SUCCESS,
            results=results,
        )

    @property
    def ok(self) -> bool:
        return self.overall_status is RunStatus.SUCCESS

    def exit_code(self) -> int:
        """
        Process exit code for this outcome:
          0 on success, else the first failing job's own exit code
          when it has one, else FAULT_EXIT_CODE.
        """
        if self.ok:
            return 0
        for r in self.results:
            if r.ok:
                continue
            if r.exit_code is not None and r.exit_code > 0:
                return r.exit_code
            return FAULT_EXIT_CODE
        return FAULT_EXIT_CODE


RuleSpec = Union[TriggerRule, Tuple[TriggerRule, ...]]


@dataclass(frozen=True)
class Pipeline:
    """
    A loaded pipeline definition. Read-only once built; shared by
    reference with every job runner.
    """
    jobs: Mapping[str, Job]
    rules: Mapping[str, RuleSpec]
    source: str | None = None

    def __post_init__(self) -> None:
        jobs: Dict[str, Job] = dict(self.jobs)
        for name, j in jobs.items():
            if name != j.name:
                raise ConfigError.for_source(self.source, f"job key {name!r} does not match job name {j.name!r}")
            if not j.steps:
                raise ConfigError.for_source(self.source, f"job {name!r} has no steps")

        rules: Dict[str, RuleSpec] = {}
        for name, rule in self.rules.items():
            if name not in jobs:
                raise ConfigError.for_source(
                    self.source,
                    f"trigger rule for unknown job {name!r}",
                    known_jobs=sorted(jobs),
                )
            rules[name] = rule if isinstance(rule, TriggerRule) else tuple(rule)

        object.__setattr__(self, "jobs", MappingProxyType(jobs))
        object.__setattr__(self, "rules", MappingProxyType(rules))
