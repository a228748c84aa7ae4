# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .errors import IllegalTransition, StepFailure


class EventKind(str, Enum):
    MANUAL = "manual"
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class StepKind(str, Enum):
    CHECKOUT = "checkout"
    CACHE_RESTORE = "cacheRestore"
    BUILD = "build"
    TEST = "test"
    GENERIC = "generic"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ---------------------------------------------------------------------
# Triggering
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EventDescriptor:
    """
    The occurrence that may start a run.

    `changed_paths` is only meaningful for push events and `target_branch`
    only for pull requests. Missing values are left as None so the trigger
    evaluator can tell "not provided" apart from "empty".
    """
    kind: EventKind
    changed_paths: Optional[FrozenSet[str]] = None
    target_branch: Optional[str] = None


@dataclass(frozen=True)
class TriggerRule:
    """One rule per event kind. Push uses path prefixes, pull_request uses branches."""
    kind: EventKind
    path_prefixes: Tuple[str, ...] = ()
    branches: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class RunDecision:
    run: bool
    reason: str


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """
    A single unit of work inside a job.

    Steps are declared once per pipeline and shared read-only by every job
    of a run, so they stay frozen.

    cache_key_inputs:
        for cacheRestore steps, literal content hashes, in canonical order.
    cache_key_files:
        file patterns hashed against the workspace at run time; their
        hashes follow cache_key_inputs in the key.
    cache_paths:
        workspace-relative directories/files packed into the cache blob
        after a miss and unpacked back on a hit.
    """
    name: str
    kind: StepKind = StepKind.GENERIC
    run: str | None = None
    cwd: str | None = None
    cache_key_inputs: Tuple[str, ...] = ()
    cache_key_files: Tuple[str, ...] = ()
    cache_paths: Tuple[str, ...] = ()


@dataclass
class StepResult:
    step: str
    exit_code: int = 0
    skipped: bool = False
    cache_hit: bool = False
    cache_key: str | None = None
    error: str | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.skipped and self.exit_code == 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "step": self.step,
            "exit_code": self.exit_code,
            "skipped": self.skipped,
            "cache_hit": self.cache_hit,
            "cache_key": self.cache_key,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}


@dataclass(frozen=True)
class CachePut:
    """A cache save scheduled by a cacheRestore miss, flushed when the job succeeds."""
    key: str
    step: str
    paths: Tuple[str, ...]


@dataclass
class Job:
    """One platform-bound instance of the step pipeline."""
    platform: str
    status: JobStatus = JobStatus.PENDING
    results: List[StepResult] = field(default_factory=list)
    pending_puts: List[CachePut] = field(default_factory=list)
    duration: float = 0.0

    @property
    def finished(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    def failed_step(self) -> Optional[StepResult]:
        for r in self.results:
            if not r.skipped and r.exit_code != 0:
                return r
        return None

    def transition(self, new: JobStatus) -> None:
        if new not in _ALLOWED_TRANSITIONS[self.status]:
            raise IllegalTransition(
                f"job '{self.platform}' cannot move from {self.status.value} to {new.value}"
            )
        self.status = new

    def to_dict(self) -> Dict[str, object]:
        return {
            "platform": self.platform,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "steps": [r.to_dict() for r in self.results],
        }


@dataclass
class RunReport:
    """Aggregate of every job in one triggered execution, in matrix order."""
    jobs: List[Job] = field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        if all(j.status == JobStatus.SUCCEEDED for j in self.jobs):
            return RunStatus.SUCCEEDED
        return RunStatus.FAILED

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def failed_jobs(self) -> List[Job]:
        return [j for j in self.jobs if j.status != JobStatus.SUCCEEDED]

    def raise_for_status(self) -> None:
        """Raise StepFailure for the first failed step of the first failed job, in matrix order."""
        for j in self.failed_jobs():
            r = j.failed_step()
            if r is not None:
                raise StepFailure(job=j.platform, step=r.step, exit_code=r.exit_code)
            # crashed before any step recorded a failure
            raise StepFailure(job=j.platform, step="<job>", exit_code=-1)

    def job(self, platform: str) -> Job:
        for j in self.jobs:
            if j.platform == platform:
                return j
        raise KeyError(platform)

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "jobs": [j.to_dict() for j in self.jobs],
        }
