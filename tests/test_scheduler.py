"""Unit tests for the job scheduler."""

from __future__ import annotations

import pytest

from gridci.cache import MemoryCacheStore
from gridci.errors import ConfigurationError, StepFailure
from gridci.executor import ExecutionEnvironment
from gridci.matrix import expand
from gridci.model import JobStatus, RunStatus
from gridci.scheduler import run_all

from conftest import FakeRunner


def _factory(runner, store, root):
    def make(job):
        return ExecutionEnvironment(platform=job.platform, runner=runner, store=store, repo_root=root, scope="rust")
    return make


def test_one_platform_fails_others_run_to_completion(platforms, rust_steps, store, workspace) -> None:
    runner = FakeRunner(exit_codes={("windows", "Build"): 1})

    report = run_all_jobs(platforms, rust_steps, runner, store, workspace)

    assert [j.platform for j in report.jobs] == platforms
    assert report.job("linux").status == JobStatus.SUCCEEDED
    assert report.job("windows").status == JobStatus.FAILED
    assert report.job("macos").status == JobStatus.SUCCEEDED
    assert report.status == RunStatus.FAILED

    windows = report.job("windows")
    assert windows.results[3].skipped is True
    assert ("windows", "Run tests") not in runner.calls
    assert len(runner.calls_for("linux")) == 3
    assert len(runner.calls_for("macos")) == 3


def test_all_jobs_succeeding_gives_succeeded_run(platforms, rust_steps, store, workspace) -> None:
    report = run_all_jobs(platforms, rust_steps, FakeRunner(), store, workspace)
    assert report.succeeded
    report.raise_for_status()


def test_raise_for_status_names_failed_step(platforms, rust_steps, store, workspace) -> None:
    runner = FakeRunner(exit_codes={("macos", "Run tests"): 101})
    report = run_all_jobs(platforms, rust_steps, runner, store, workspace)

    with pytest.raises(StepFailure) as exc:
        report.raise_for_status()
    assert exc.value.job == "macos"
    assert exc.value.step == "Run tests"
    assert exc.value.exit_code == 101


def test_concurrency_is_bounded(platforms, rust_steps, store, workspace) -> None:
    runner = FakeRunner(delay=0.02)

    run_all_jobs(platforms, rust_steps, runner, store, workspace, max_concurrency=1)

    assert runner.max_running == 1
    # with one slot, jobs start strictly in declaration order
    first_seen = []
    for platform, _ in runner.calls:
        if platform not in first_seen:
            first_seen.append(platform)
    assert first_seen == platforms


def test_default_concurrency_never_exceeds_job_count(platforms, rust_steps, store, workspace) -> None:
    runner = FakeRunner(delay=0.02)
    run_all_jobs(platforms, rust_steps, runner, store, workspace)
    assert 1 <= runner.max_running <= len(platforms)


def test_crashing_job_is_contained(platforms, rust_steps, store, workspace) -> None:
    runner = FakeRunner(crash={("linux", "Build")})

    report = run_all_jobs(platforms, rust_steps, runner, store, workspace)

    linux = report.job("linux")
    assert linux.status == JobStatus.FAILED
    assert linux.results[2].exit_code == -1
    assert "runner bug" in linux.results[2].error
    assert linux.results[3].skipped
    assert report.job("windows").status == JobStatus.SUCCEEDED


def test_same_inputs_same_failure_points(platforms, rust_steps, workspace) -> None:
    codes = {("windows", "Build"): 1}
    a = run_all_jobs(platforms, rust_steps, FakeRunner(exit_codes=codes), MemoryCacheStore(), workspace)
    b = run_all_jobs(platforms, rust_steps, FakeRunner(exit_codes=codes), MemoryCacheStore(), workspace)

    def shape(report):
        return [(j.platform, j.status, [(r.step, r.exit_code, r.skipped, r.cache_hit) for r in j.results]) for j in report.jobs]

    assert shape(a) == shape(b)


def test_invalid_concurrency_rejected(platforms, rust_steps, store, workspace) -> None:
    with pytest.raises(ConfigurationError):
        run_all_jobs(platforms, rust_steps, FakeRunner(), store, workspace, max_concurrency=0)


def test_no_jobs_gives_empty_report(rust_steps, store, workspace) -> None:
    report = run_all([], rust_steps, env_factory=_factory(FakeRunner(), store, workspace))
    assert report.jobs == []


def run_all_jobs(platforms, steps, runner, store, root, max_concurrency=None):
    return run_all(expand(platforms), steps, max_concurrency, env_factory=_factory(runner, store, root))
