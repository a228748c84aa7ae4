# pipeline.py
from __future__ import annotations

import json
import logging
import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .cache import CacheStore
from .errors import ConfigurationError
from .executor import CommandRunner, ExecutionEnvironment, ShellCommandRunner, validate_steps
from .matrix import MatrixAxis, expand
from .model import EventDescriptor, EventKind, Job, RunDecision, RunReport, Step, StepKind, TriggerRule
from .scheduler import run_all
from .trigger import evaluate, index_rules

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """A pipeline template: triggers, one matrix axis, an ordered step list and a shared env."""
    name: str
    triggers: List[TriggerRule]
    axis: MatrixAxis
    steps: List[Step]
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ConfigurationError("pipeline name must not be empty")
        index_rules(self.triggers)
        validate_steps(self.steps)

    @property
    def platforms(self) -> List[str]:
        return list(self.axis.values)


# ----------------------------------------------------------------------
# Document schema (YAML / JSON)
# ----------------------------------------------------------------------

class PushTriggerDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")
    paths: List[str] = Field(min_length=1)


class PullRequestTriggerDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")
    branches: List[str] = Field(min_length=1)


class TriggersDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")
    manual: bool = False
    push: Optional[PushTriggerDoc] = None
    pull_request: Optional[PullRequestTriggerDoc] = None


class StepDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    kind: StepKind = StepKind.GENERIC
    run: Optional[str] = None
    cwd: Optional[str] = None
    key_inputs: List[str] = Field(default_factory=list)
    key_files: List[str] = Field(default_factory=list)
    paths: List[str] = Field(default_factory=list)


class PipelineDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    triggers: TriggersDoc = Field(default_factory=TriggersDoc)
    env: Dict[str, Any] = Field(default_factory=dict)
    matrix: Dict[str, List[str]]
    steps: List[StepDoc] = Field(min_length=1)

    @field_validator("env")
    @classmethod
    def _stringify_env(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        out = {}
        for k, val in v.items():
            out[k] = str(val).lower() if isinstance(val, bool) else str(val)
        return out

    @field_validator("matrix")
    @classmethod
    def _single_axis(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        if len(v) != 1:
            raise ValueError(f"matrix must declare exactly one axis, got {sorted(v)}")
        return v


def pipeline_from_doc(doc: PipelineDoc) -> Pipeline:
    triggers: List[TriggerRule] = []
    if doc.triggers.manual:
        triggers.append(TriggerRule(kind=EventKind.MANUAL))
    if doc.triggers.push is not None:
        triggers.append(TriggerRule(kind=EventKind.PUSH, path_prefixes=tuple(doc.triggers.push.paths)))
    if doc.triggers.pull_request is not None:
        triggers.append(TriggerRule(kind=EventKind.PULL_REQUEST, branches=frozenset(doc.triggers.pull_request.branches)))

    ((axis_key, axis_values),) = doc.matrix.items()
    steps = [
        Step(
            name=s.name,
            kind=s.kind,
            run=s.run,
            cwd=s.cwd,
            cache_key_inputs=tuple(s.key_inputs),
            cache_key_files=tuple(s.key_files),
            cache_paths=tuple(s.paths),
        )
        for s in doc.steps
    ]
    return Pipeline(
        name=doc.name,
        triggers=triggers,
        axis=MatrixAxis(axis_key, axis_values),
        steps=steps,
        env=dict(doc.env),
    )


def pipeline_from_dict(data: Any) -> Pipeline:
    if not isinstance(data, dict):
        raise ConfigurationError("pipeline document must be a mapping")
    try:
        doc = PipelineDoc.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            "invalid pipeline document",
            {"errors": "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())},
        ) from e
    return pipeline_from_doc(doc)


# ----------------------------------------------------------------------
# Loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a file.

    - .yml / .yaml / .json: a declarative document (see PipelineDoc)
    - .py: must define either
        pipeline() -> Pipeline
        PIPELINE = Pipeline(...)
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")

    if p.suffix in (".yml", ".yaml"):
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError("pipeline file is not valid YAML", {"file": p.name, "error": e}) from e
        return pipeline_from_dict(data)

    if p.suffix == ".json":
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError("pipeline file is not valid JSON", {"file": p.name, "error": e}) from e
        return pipeline_from_dict(data)

    if p.suffix == ".py":
        globals_dict = runpy.run_path(str(p), run_name=f"gridci_pipeline_{p.stem}")
        if callable(globals_dict.get("pipeline")):
            result = globals_dict["pipeline"]()
        else:
            result = globals_dict.get("PIPELINE")
        if not isinstance(result, Pipeline):
            raise ConfigurationError(
                "Pipeline file must return/define a Pipeline. "
                "Define pipeline() -> Pipeline or PIPELINE = Pipeline(...).",
                {"file": p.name},
            )
        return result

    raise ConfigurationError(f"unsupported pipeline file type: {p.suffix}", {"file": p.name})


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

WorkspaceFactory = Callable[[Job, Path], Path]
StartCallback = Callable[[RunDecision, List[Job]], None]

JOB_WORKSPACES_DIR = ".gridci/work"


def per_job_workspace(job: Job, repo_root: Path) -> Path:
    """`<repo_root>/.gridci/work/<platform>`, created on demand. Use as `workspace_for`."""
    ws = repo_root / JOB_WORKSPACES_DIR / job.platform
    ws.mkdir(parents=True, exist_ok=True)
    return ws


def run_pipeline(
    pipeline: Pipeline,
    event: EventDescriptor,
    *,
    runner: Optional[CommandRunner] = None,
    store: Optional[CacheStore] = None,
    repo_root: str | Path = ".",
    max_concurrency: Optional[int] = None,
    on_start: Optional[StartCallback] = None,
    workspace_for: Optional[WorkspaceFactory] = None,
) -> Tuple[RunDecision, Optional[RunReport]]:
    """
    Evaluate the trigger, expand the matrix and run every job.

    Returns the decision and the report; the report is None when the event
    does not trigger a run (no jobs are expanded in that case).
    `on_start(decision, jobs)` is called once the jobs exist, before any runs.

    By default every job works directly in `repo_root`: jobs running at the
    same time build into and cache from the same directories. Pass
    `workspace_for=per_job_workspace` (or any `(job, repo_root) -> Path`)
    to give each job its own directory; the job's checkout step is then
    responsible for populating it.
    """
    decision = evaluate(event, pipeline.triggers)
    if not decision.run:
        logger.info("pipeline %s not triggered: %s", pipeline.name, decision.reason)
        return decision, None

    jobs = expand(pipeline.axis)
    if on_start is not None:
        on_start(decision, jobs)

    root = Path(repo_root).resolve()
    command_runner = runner or ShellCommandRunner()

    def env_factory(job: Job) -> ExecutionEnvironment:
        job_root = root if workspace_for is None else Path(workspace_for(job, root)).resolve()
        return ExecutionEnvironment(
            platform=job.platform,
            runner=command_runner,
            store=store,
            repo_root=job_root,
            env=dict(pipeline.env),
            scope=pipeline.name,
        )

    report = run_all(jobs, pipeline.steps, max_concurrency, env_factory=env_factory)
    return decision, report
