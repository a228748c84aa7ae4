"""Test configuration and fixtures."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from gridci.cache import MemoryCacheStore
from gridci.dsl import build, cache_restore, checkout, test
from gridci.errors import CollaboratorUnavailable
from gridci.executor import ExecutionEnvironment
from gridci.model import Step
from gridci.ui.console import Console, set_console


class FakeRunner:
    """Command runner that records calls and returns scripted exit codes per (platform, step)."""

    def __init__(self, exit_codes=None, unavailable=(), crash=(), delay: float = 0.0):
        self.exit_codes = dict(exit_codes or {})
        self.unavailable = set(unavailable)
        self.crash = set(crash)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def execute(self, step: Step, env: ExecutionEnvironment) -> int:
        key = (env.platform, step.name)
        with self._lock:
            self.calls.append(key)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                time.sleep(self.delay)
            if key in self.unavailable:
                raise CollaboratorUnavailable("command runner", "agent offline")
            if key in self.crash:
                raise RuntimeError("runner bug")
            return self.exit_codes.get(key, 0)
        finally:
            with self._lock:
                self.running -= 1

    def calls_for(self, platform: str) -> list[str]:
        return [name for p, name in self.calls if p == platform]


class DownStore:
    """Cache store that is never reachable."""

    def __init__(self) -> None:
        self.puts = 0

    def get(self, key: str):
        raise CollaboratorUnavailable("cache store", "connection refused")

    def put(self, key: str, blob: bytes) -> None:
        self.puts += 1
        raise CollaboratorUnavailable("cache store", "connection refused")


@pytest.fixture(autouse=True)
def quiet_console():
    """Keep job progress out of test output."""
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture
def platforms() -> list[str]:
    return ["linux", "windows", "macos"]


@pytest.fixture
def rust_steps() -> list[Step]:
    return [
        checkout(),
        cache_restore(key_files=["Cargo.lock"], paths=["target"]),
        build("cargo build"),
        test("cargo test"),
    ]


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "Cargo.lock").write_text("# lock v1\n", encoding="utf-8")
    return ws
