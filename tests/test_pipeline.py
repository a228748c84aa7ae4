"""Tests for pipeline templates: loading and end-to-end runs."""

from __future__ import annotations

import json
from pathlib import Path
from textwrap import dedent

import pytest

from gridci.dsl import PipelineBuilder, build, cache_restore, checkout, make_pipeline, on_push, test
from gridci.errors import ConfigurationError
from gridci.events import pull_request_event, push_event
from gridci.model import JobStatus, RunStatus, StepKind
from gridci.pipeline import JOB_WORKSPACES_DIR, load_pipeline, per_job_workspace, pipeline_from_dict, run_pipeline

from conftest import FakeRunner

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"

RUST_YAML = dedent(
    """
    name: rust
    triggers:
      manual: true
      push:
        paths: ["src/**", ".github/workflows/**", "Cargo.toml"]
      pull_request:
        branches: [main]
    env:
      CARGO_TERM_COLOR: always
      RUST_BACKTRACE: 1
    matrix:
      platform: [linux, windows, macos]
    steps:
      - name: Checkout
        kind: checkout
      - name: Restore cache
        kind: cacheRestore
        key_files: [Cargo.lock]
        paths: [target]
      - name: Build
        kind: build
        run: cargo build
      - name: Run tests
        kind: test
        run: cargo test
    """
)


@pytest.fixture
def rust_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "gridci.yml"
    path.write_text(RUST_YAML, encoding="utf-8")
    return path


def test_load_yaml_pipeline(rust_yaml: Path) -> None:
    p = load_pipeline(rust_yaml)

    assert p.name == "rust"
    assert p.platforms == ["linux", "windows", "macos"]
    assert [s.kind for s in p.steps] == [StepKind.CHECKOUT, StepKind.CACHE_RESTORE, StepKind.BUILD, StepKind.TEST]
    assert p.steps[1].cache_paths == ("target",)
    assert p.env == {"CARGO_TERM_COLOR": "always", "RUST_BACKTRACE": "1"}
    assert len(p.triggers) == 3


def test_load_json_pipeline(tmp_path: Path) -> None:
    path = tmp_path / "gridci.json"
    path.write_text(json.dumps({
        "name": "tiny",
        "triggers": {"manual": True},
        "matrix": {"platform": ["linux"]},
        "steps": [{"name": "hello", "run": "echo hi"}],
    }), encoding="utf-8")

    p = load_pipeline(path)
    assert p.steps[0].kind == StepKind.GENERIC


def test_example_files_describe_the_same_pipeline() -> None:
    from_yaml = load_pipeline(EXAMPLES / "gridci.yml")
    from_py = load_pipeline(EXAMPLES / "rust_pipeline.py")

    assert from_yaml.steps == from_py.steps
    assert from_yaml.platforms == from_py.platforms
    assert set(from_yaml.triggers) == set(from_py.triggers)
    assert from_yaml.env == from_py.env


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.update(matrix={"platform": []}),
        lambda d: d.update(matrix={"platform": ["linux"], "arch": ["x64"]}),
        lambda d: d.update(steps=[]),
        lambda d: d.update(steps=[{"name": "Build", "kind": "build"}]),
        lambda d: d.update(steps=[{"name": "x", "kind": "deploy", "run": "x"}]),
        lambda d: d.update(triggers={"push": {"paths": []}}),
        lambda d: d.update(unknown=True),
    ],
)
def test_invalid_documents_are_configuration_errors(mutate) -> None:
    import yaml

    data = yaml.safe_load(RUST_YAML)
    mutate(data)
    with pytest.raises(ConfigurationError):
        pipeline_from_dict(data)


def test_python_file_must_define_a_pipeline(tmp_path: Path) -> None:
    path = tmp_path / "bad_pipeline.py"
    path.write_text("PIPELINE = 42\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_pipeline(path)


def test_unsupported_suffix(tmp_path: Path) -> None:
    path = tmp_path / "gridci.toml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_pipeline(path)


def test_push_scenario_windows_build_fails(rust_yaml: Path, store, workspace) -> None:
    pipeline = load_pipeline(rust_yaml)
    runner = FakeRunner(exit_codes={("windows", "Build"): 1})

    decision, report = run_pipeline(
        pipeline, push_event(["src/lib.rs"]), runner=runner, store=store, repo_root=workspace
    )

    assert decision.run is True
    assert report is not None
    assert [j.platform for j in report.jobs] == ["linux", "windows", "macos"]
    assert all(len(j.results) == 4 for j in report.jobs)
    assert report.job("linux").status == JobStatus.SUCCEEDED
    assert report.job("windows").status == JobStatus.FAILED
    assert report.job("windows").results[3].skipped is True
    assert report.job("macos").status == JobStatus.SUCCEEDED
    assert report.status == RunStatus.FAILED


def test_pull_request_to_other_branch_does_not_run(rust_yaml: Path, store) -> None:
    pipeline = load_pipeline(rust_yaml)
    runner = FakeRunner()
    started = []

    decision, report = run_pipeline(
        pipeline,
        pull_request_event("feature-x"),
        runner=runner,
        store=store,
        on_start=lambda d, jobs: started.append(jobs),
    )

    assert decision.run is False
    assert report is None
    assert started == []
    assert runner.calls == []


def test_pipeline_env_reaches_the_runner(store, workspace) -> None:
    seen = {}

    class EnvRecorder:
        def execute(self, step, env):
            seen[env.platform] = env.process_env()["CARGO_TERM_COLOR"]
            return 0

    p = make_pipeline("rust", build("cargo build"), triggers=[on_push("src/")],
                      platforms=["linux", "macos"], env={"CARGO_TERM_COLOR": "always"})
    run_pipeline(p, push_event(["src/a.rs"]), runner=EnvRecorder(), store=store, repo_root=workspace)

    assert seen == {"linux": "always", "macos": "always"}


def test_builder_produces_equivalent_pipeline() -> None:
    built = (
        PipelineBuilder("rust")
        .on_push("src/**")
        .platforms("linux", "windows")
        .step(checkout())
        .step(cache_restore(key_files=["Cargo.lock"], paths=["target"]))
        .step(build("cargo build"))
        .step(test("cargo test"))
        .with_env(CARGO_TERM_COLOR="always")
        .build()
    )
    functional = make_pipeline(
        "rust",
        checkout(),
        cache_restore(key_files=["Cargo.lock"], paths=["target"]),
        build("cargo build"),
        test("cargo test"),
        triggers=[on_push("src/**")],
        platforms=["linux", "windows"],
        env={"CARGO_TERM_COLOR": "always"},
    )
    assert built.steps == functional.steps
    assert built.platforms == functional.platforms
    assert built.env == functional.env


class _RootRecorder:
    def __init__(self) -> None:
        self.roots = {}

    def execute(self, step, env):
        self.roots[env.platform] = env.repo_root
        return 0


def test_jobs_share_repo_root_by_default(store, workspace) -> None:
    recorder = _RootRecorder()
    p = make_pipeline("rust", build("cargo build"), triggers=[on_push("src/")], platforms=["linux", "macos"])

    run_pipeline(p, push_event(["src/a.rs"]), runner=recorder, store=store, repo_root=workspace)

    assert recorder.roots == {"linux": workspace.resolve(), "macos": workspace.resolve()}


def test_per_job_workspaces_are_separate(store, workspace) -> None:
    recorder = _RootRecorder()
    p = make_pipeline("rust", build("cargo build"), triggers=[on_push("src/")], platforms=["linux", "macos"])

    _, report = run_pipeline(
        p, push_event(["src/a.rs"]), runner=recorder, store=store, repo_root=workspace,
        workspace_for=per_job_workspace,
    )

    assert report.succeeded
    for platform in ("linux", "macos"):
        expected = (workspace / JOB_WORKSPACES_DIR / platform).resolve()
        assert recorder.roots[platform] == expected
        assert expected.is_dir()
