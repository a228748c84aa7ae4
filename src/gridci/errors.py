# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class ConfigurationError(Exception):
    """
    Malformed pipeline template or event descriptor.

    Always fatal: raised before any job starts, never inside a job.
    """
    message: str
    details: Dict[str, object] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [self.message]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    """A step exited non-zero. Recorded per job; raised only on request (RunReport.raise_for_status)."""
    job: str
    step: str
    exit_code: int
    cmd: str = ""

    def __str__(self) -> str:
        msg = f"[{self.job}] step '{self.step}' failed (exit={self.exit_code})"
        return f"{msg}: {self.cmd}" if self.cmd else msg


@dataclass
class CollaboratorUnavailable(Exception):
    """The command runner or the cache store could not be reached."""
    collaborator: str
    message: str

    def __str__(self) -> str:
        return f"{self.collaborator} unavailable: {self.message}"


class IllegalTransition(RuntimeError):
    """A job was moved between states in an order the lifecycle forbids."""
