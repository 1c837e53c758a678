# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-job result reasons
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Malformed or missing pipeline definition. Fatal: no job runs."""

    def __init__(self, message: str, **details) -> None:
        super().__init__(kind="config_error", job="", step=None, message=message, details=details)

    @classmethod
    def for_source(cls, source: Optional[str], message: str, **details) -> ConfigError:
        if source:
            details = {"file": source, **details}
        return cls(message, **details)


class StepFailure(CIError):
    """The command ran and exited non-zero."""

    def __init__(self, job: str, step: str, cmd: str, exit_code: int) -> None:
        super().__init__(
            kind="step_failure",
            job=job,
            step=step,
            message=f"exited with {exit_code}",
            details={"cmd": cmd},
        )
        self.exit_code = exit_code


class StepLaunchError(CIError):
    """The command could not be started at all."""

    def __init__(self, job: str, step: str, message: str, exit_code: int | None = None, **details) -> None:
        super().__init__(kind="launch_error", job=job, step=step, message=message, details=details)
        self.exit_code = exit_code


class CancellationError(CIError):
    """An in-flight job was cancelled from outside."""

    def __init__(self, job: str, step: str | None, reason: str = "cancelled") -> None:
        super().__init__(kind="cancelled", job=job, step=step, message=reason)
