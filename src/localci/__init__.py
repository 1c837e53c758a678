from .dsl import job, sh, uses, on, on_push, on_pull_request, on_manual, wf
from .loader import load_pipeline
from .model import Event, EventKind, Job, Pipeline, PipelineOutcome, RunResult, RunStatus, Step, StepKind, TriggerRule
from .pipeline import Orchestrator, run
from .runner import run_job
from .executor import run_steps
from .trigger import matches

__all__ = [
    "job", "sh", "uses", "on", "on_push", "on_pull_request", "on_manual", "wf",
    "load_pipeline",
    "Event", "EventKind", "Job", "Pipeline", "PipelineOutcome", "RunResult", "RunStatus", "Step", "StepKind", "TriggerRule",
    "Orchestrator", "run", "run_job", "run_steps", "matches",
]
