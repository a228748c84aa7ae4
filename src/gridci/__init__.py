from .cache import FileCacheStore, MemoryCacheStore, compute_key
from .errors import CollaboratorUnavailable, ConfigurationError, StepFailure
from .events import event_from_payload, manual_event, pull_request_event, push_event
from .executor import ExecutionEnvironment, ShellCommandRunner, run_job
from .matrix import MatrixAxis, expand
from .model import (
    EventDescriptor,
    EventKind,
    Job,
    JobStatus,
    RunDecision,
    RunReport,
    RunStatus,
    Step,
    StepKind,
    StepResult,
    TriggerRule,
)
from .pipeline import Pipeline, load_pipeline, per_job_workspace, run_pipeline
from .scheduler import run_all
from .trigger import evaluate

__all__ = [
    "FileCacheStore", "MemoryCacheStore", "compute_key",
    "CollaboratorUnavailable", "ConfigurationError", "StepFailure",
    "event_from_payload", "manual_event", "pull_request_event", "push_event",
    "ExecutionEnvironment", "ShellCommandRunner", "run_job",
    "MatrixAxis", "expand",
    "EventDescriptor", "EventKind", "Job", "JobStatus", "RunDecision", "RunReport",
    "RunStatus", "Step", "StepKind", "StepResult", "TriggerRule",
    "Pipeline", "load_pipeline", "per_job_workspace", "run_pipeline",
    "run_all",
    "evaluate",
]
