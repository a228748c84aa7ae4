# scheduler.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ConfigurationError
from .executor import ExecutionEnvironment, run_job, validate_steps
from .model import Job, JobStatus, RunReport, Step, StepResult

logger = logging.getLogger(__name__)

EnvFactory = Callable[[Job], ExecutionEnvironment]


def _run_isolated(job: Job, steps: Sequence[Step], env: ExecutionEnvironment) -> Job:
    try:
        run_job(job, steps, env)
    except Exception as e:
        # Unexpected errors stay inside the job so every other platform
        # still runs to completion.
        logger.exception("[%s] job crashed", job.platform)
        remaining = list(steps)[len(job.results):]
        if remaining:
            job.results.append(StepResult(step=remaining[0].name, exit_code=-1, error=f"{type(e).__name__}: {e}"))
            job.results.extend(StepResult(step=s.name, skipped=True) for s in remaining[1:])
        if job.status == JobStatus.PENDING:
            job.transition(JobStatus.RUNNING)
        if job.status == JobStatus.RUNNING:
            job.transition(JobStatus.FAILED)
    return job


def run_all(
    jobs: Sequence[Job],
    steps: Sequence[Step],
    max_concurrency: Optional[int] = None,
    *,
    env_factory: EnvFactory,
) -> RunReport:
    """
    Run every job to completion with at most `max_concurrency` in flight.

    - Jobs are submitted in declaration order; a queued job starts as soon
      as a worker frees up.
    - A failing job never cancels the others.
    - The report lists jobs in declaration order regardless of finish order.
    """
    jobs = list(jobs)
    validate_steps(steps)

    if not jobs:
        return RunReport(jobs=[])

    for j in jobs:
        if j.status != JobStatus.PENDING:
            raise ConfigurationError("jobs must be pending before a run", {"job": j.platform, "status": j.status.value})

    if max_concurrency is None:
        max_concurrency = len(jobs)
    if max_concurrency < 1:
        raise ConfigurationError("max_concurrency must be at least 1", {"max_concurrency": max_concurrency})

    # environments are built up front so a broken factory fails the run before any job starts
    envs = [env_factory(j) for j in jobs]

    finished: Dict[int, Job] = {}
    with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="gridci-job") as pool:
        futures: Dict[Future[Job], int] = {
            pool.submit(_run_isolated, job, steps, env): idx
            for idx, (job, env) in enumerate(zip(jobs, envs))
        }
        for fut in as_completed(futures):
            idx = futures[fut]
            job = fut.result()
            finished[idx] = job
            logger.debug("[%s] finished: %s", job.platform, job.status.value)

    ordered: List[Job] = [finished[i] for i in range(len(jobs))]
    report = RunReport(jobs=ordered)
    logger.info("run %s (%d/%d jobs succeeded)", report.status.value,
                len(ordered) - len(report.failed_jobs()), len(ordered))
    return report
