# src/gridci/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .matrix import MatrixAxis
from .model import EventKind, Step, StepKind, TriggerRule
from .pipeline import Pipeline


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a generic shell step."""
    return Step(name=name, kind=StepKind.GENERIC, run=cmd, cwd=cwd)


def checkout(name: str = "Checkout", cmd: str | None = None) -> Step:
    """Checkout step. Without a command the workspace is assumed to hold the source already."""
    return Step(name=name, kind=StepKind.CHECKOUT, run=cmd)


def cache_restore(
    name: str = "Restore cache",
    *,
    key_files: Iterable[str] = (),
    key_inputs: Iterable[str] = (),
    paths: Iterable[str] = (),
) -> Step:
    return Step(
        name=name,
        kind=StepKind.CACHE_RESTORE,
        cache_key_inputs=tuple(key_inputs),
        cache_key_files=tuple(key_files),
        cache_paths=tuple(paths),
    )


def build(cmd: str, name: str = "Build", *, cwd: str | None = None) -> Step:
    return Step(name=name, kind=StepKind.BUILD, run=cmd, cwd=cwd)


def test(cmd: str, name: str = "Run tests", *, cwd: str | None = None) -> Step:
    return Step(name=name, kind=StepKind.TEST, run=cmd, cwd=cwd)


# keep pytest from collecting the helper when a test module imports it
test.__test__ = False  # type: ignore[attr-defined]


# ---------------------------------------------------------------------
# Trigger helpers
# ---------------------------------------------------------------------

def on_manual() -> TriggerRule:
    return TriggerRule(kind=EventKind.MANUAL)


def on_push(*paths: str) -> TriggerRule:
    return TriggerRule(kind=EventKind.PUSH, path_prefixes=tuple(paths))


def on_pull_request(*branches: str) -> TriggerRule:
    return TriggerRule(kind=EventKind.PULL_REQUEST, branches=frozenset(branches))


def matrix(key: str, values: Iterable[Any]) -> MatrixAxis:
    return MatrixAxis(key, values)


# ---------------------------------------------------------------------
# Functional pipeline helper
# ---------------------------------------------------------------------

def make_pipeline(
    name: str,
    *steps: Step,
    triggers: Optional[List[TriggerRule]] = None,
    platforms: Optional[Iterable[str]] = None,
    axis: Optional[MatrixAxis] = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Users can write, in a workflow file:

        from gridci.dsl import make_pipeline, checkout, cache_restore, build, test, on_push

        def pipeline():
            return make_pipeline(
                "rust",
                checkout(),
                cache_restore(key_files=["Cargo.lock"], paths=["target"]),
                build("cargo build"),
                test("cargo test"),
                triggers=[on_push("src/**")],
                platforms=["linux", "windows", "macos"],
            )
    """
    if axis is None:
        if platforms is None:
            raise ValueError(f"make_pipeline({name!r}) needs platforms or axis")
        axis = MatrixAxis("platform", platforms)
    return Pipeline(
        name=name,
        triggers=list(triggers or []),
        axis=axis,
        steps=list(steps),
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class PipelineBuilder:
    def __init__(self, name: str):
        self.name = name
        self._triggers: list[TriggerRule] = []
        self._axis: Optional[MatrixAxis] = None
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}

    def on_manual(self):
        self._triggers.append(on_manual())
        return self

    def on_push(self, *paths: str):
        self._triggers.append(on_push(*paths))
        return self

    def on_pull_request(self, *branches: str):
        self._triggers.append(on_pull_request(*branches))
        return self

    def matrix(self, key: str, *values: str):
        self._axis = MatrixAxis(key, values)
        return self

    def platforms(self, *values: str):
        return self.matrix("platform", *values)

    def step(self, step: Step):
        self._steps.append(step)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        return self.step(sh(name, run, cwd=cwd))

    def with_env(self, **env):
        # force values to str for stable hashing + env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Pipeline:
        if self._axis is None:
            raise ValueError(f"Pipeline '{self.name}' has no matrix")
        return Pipeline(
            name=self.name,
            triggers=self._triggers,
            axis=self._axis,
            steps=self._steps,
            env=self._env,
        )
