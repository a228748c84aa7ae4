# git.py
# Small, focused wrapper around the Git CLI.
# Everything that needs repository facts (changed files, current branch)
# goes through here instead of calling subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    A non-zero git exit raises CalledProcessError; callers decide whether
    that is fatal.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """Current branch name, or "HEAD" when detached."""
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if there are modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """Files changed between two refs, relative to the repository root."""
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd))


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """Commit where HEAD diverged from `with_ref`."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def working_tree_changes(cwd: Optional[str | Path] = None) -> List[str]:
    """Unstaged, staged and untracked files, de-duplicated and sorted."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd=cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd=cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd=cwd)))
    return sorted(files)


def tracked_files(cwd: Optional[str | Path] = None) -> List[str]:
    return _lines(_git(["ls-files"], cwd=cwd))
