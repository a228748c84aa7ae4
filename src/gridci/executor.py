# executor.py
from __future__ import annotations

import logging
import os
import subprocess
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .cache import CacheStore, compute_key, hash_inputs, pack_paths, unpack_blob
from .errors import CollaboratorUnavailable, ConfigurationError
from .model import CachePut, Job, JobStatus, Step, StepKind, StepResult
from .ui.console import get_console

logger = logging.getLogger(__name__)

# exit code recorded when the command runner itself could not be reached
UNAVAILABLE_EXIT_CODE = 127

COMMAND_KINDS = (StepKind.BUILD, StepKind.TEST, StepKind.GENERIC)


# ----------------------------------------------------------------------
# Collaborators
# ----------------------------------------------------------------------

class CommandRunner(Protocol):
    def execute(self, step: Step, env: "ExecutionEnvironment") -> int: ...


@dataclass
class ShellCommandRunner:
    """
    Runs step commands through the system shell inside the workspace.

    Output is captured; the tail is logged when a command fails so the
    report stays readable when several platforms run at once.
    """
    capture_output: bool = True
    timeout: Optional[float] = None
    output_tail: int = 4000

    def execute(self, step: Step, env: "ExecutionEnvironment") -> int:
        if step.run is None:
            # checkout without a command: the workspace already holds the source
            return 0

        cwd = (env.repo_root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise CollaboratorUnavailable("command runner", f"cwd not found: {cwd}")

        try:
            proc = subprocess.run(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=env.process_env(),
                text=True,
                capture_output=self.capture_output,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("[%s] step '%s' timed out after %ss", env.platform, step.name, self.timeout)
            return 124
        except OSError as e:
            raise CollaboratorUnavailable("command runner", str(e)) from e

        if proc.returncode != 0 and self.capture_output:
            tail = ((proc.stdout or "") + (proc.stderr or ""))[-self.output_tail:]
            logger.warning("[%s] step '%s' exited %s\n%s", env.platform, step.name, proc.returncode, tail)
        return proc.returncode


@dataclass
class ExecutionEnvironment:
    """
    Everything one job needs from the outside world.

    One instance per job: executors never share an environment.
    """
    platform: str
    runner: CommandRunner
    store: Optional[CacheStore] = None
    repo_root: Path = field(default_factory=lambda: Path(".").resolve())
    env: Dict[str, str] = field(default_factory=dict)
    scope: str = "gridci"

    def process_env(self) -> Dict[str, str]:
        merged = os.environ.copy()
        merged.update(self.env)
        merged["GRIDCI_PLATFORM"] = self.platform
        return merged

    def cache_scope(self, step: Step) -> str:
        return f"{self.scope}-{self.platform}-{step.name}"


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate_steps(steps: Sequence[Step]) -> None:
    if not steps:
        raise ConfigurationError("pipeline must declare at least one step")
    names = [s.name for s in steps]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError("step names must be unique", {"duplicates": dupes})
    for s in steps:
        if s.kind in COMMAND_KINDS and not (s.run or "").strip():
            raise ConfigurationError(f"step '{s.name}' ({s.kind.value}) has no command")
        if s.kind != StepKind.CACHE_RESTORE and (s.cache_key_inputs or s.cache_key_files or s.cache_paths):
            raise ConfigurationError(f"step '{s.name}' declares cache settings but is not a cacheRestore step")


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def resolve_cache_key(step: Step, env: ExecutionEnvironment) -> str:
    inputs: List[str] = list(step.cache_key_inputs)
    if step.cache_key_files:
        inputs.extend(hash_inputs(env.repo_root, step.cache_key_files))
    return compute_key(inputs, env.cache_scope(step))


def _restore_cache(job: Job, step: Step, env: ExecutionEnvironment) -> StepResult:
    key = resolve_cache_key(step, env)
    result = StepResult(step=step.name, cache_key=key)

    blob: Optional[bytes] = None
    if env.store is None:
        result.error = "no cache store configured"
    else:
        try:
            blob = env.store.get(key)
        except (CollaboratorUnavailable, OSError) as e:
            # an unreachable store degrades to a miss, never a failure
            logger.warning("[%s] cache store unavailable, treating as miss: %s", job.platform, e)
            result.error = str(e)

    if blob is not None and step.cache_paths:
        try:
            unpack_blob(blob, env.repo_root)
        except (tarfile.TarError, EOFError, OSError) as e:
            logger.warning("[%s] cache blob %s could not be restored: %s", job.platform, key, e)
            result.error = f"restore failed: {e}"
            blob = None

    result.cache_hit = blob is not None
    if not result.cache_hit:
        job.pending_puts.append(CachePut(key=key, step=step.name, paths=tuple(step.cache_paths)))
    return result


def _run_command(job: Job, step: Step, env: ExecutionEnvironment) -> StepResult:
    result = StepResult(step=step.name)
    try:
        result.exit_code = int(env.runner.execute(step, env))
    except (CollaboratorUnavailable, OSError) as e:
        result.exit_code = UNAVAILABLE_EXIT_CODE
        result.error = str(e)
    return result


def _flush_cache_puts(job: Job, env: ExecutionEnvironment) -> None:
    if env.store is None:
        return
    console = get_console()
    for put in job.pending_puts:
        try:
            blob = pack_paths(env.repo_root, put.paths)
            env.store.put(put.key, blob)
            console.print_cache_saved(job.platform, put.key)
        except (CollaboratorUnavailable, OSError) as e:
            logger.warning("[%s] cache save for %s failed: %s", job.platform, put.key, e)


def run_job(job: Job, steps: Sequence[Step], env: ExecutionEnvironment) -> None:
    """
    Run `steps` in order for one job, mutating the job in place.

    The first non-zero exit fails the job; every later step is recorded as
    skipped and never reaches the command runner.
    """
    console = get_console()
    job.transition(JobStatus.RUNNING)
    console.print_job_start(job.platform)
    started = time.monotonic()

    failed = False
    for step in steps:
        if failed:
            job.results.append(StepResult(step=step.name, skipped=True))
            console.print_step_skipped(job.platform, step.name)
            continue

        console.print_step(job.platform, step.name)
        t0 = time.monotonic()
        if step.kind == StepKind.CACHE_RESTORE:
            result = _restore_cache(job, step, env)
            console.print_cache(job.platform, result.cache_hit, result.cache_key or "")
        else:
            result = _run_command(job, step, env)
        result.duration = time.monotonic() - t0
        job.results.append(result)

        if result.exit_code != 0:
            failed = True
            console.print_failure(
                f"{job.platform}/{step.name}",
                result.error or "command failed",
                exit_code=result.exit_code,
            )

    if failed:
        job.transition(JobStatus.FAILED)
    else:
        _flush_cache_puts(job, env)
        job.transition(JobStatus.SUCCEEDED)
    job.duration = time.monotonic() - started
    logger.info("[%s] job %s in %.1fs", job.platform, job.status.value, job.duration)


