# events.py
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from . import git
from .errors import ConfigurationError
from .model import EventDescriptor, EventKind

logger = logging.getLogger(__name__)


def manual_event() -> EventDescriptor:
    return EventDescriptor(kind=EventKind.MANUAL)


def push_event(paths: Iterable[str]) -> EventDescriptor:
    return EventDescriptor(
        kind=EventKind.PUSH,
        changed_paths=frozenset(p.replace("\\", "/") for p in paths),
    )


def pull_request_event(target_branch: str) -> EventDescriptor:
    return EventDescriptor(kind=EventKind.PULL_REQUEST, target_branch=target_branch)


def parse_kind(kind: str) -> EventKind:
    try:
        return EventKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in EventKind)
        raise ConfigurationError(f"unknown event kind {kind!r} (expected one of: {allowed})") from None


def event_from_payload(payload: Mapping[str, Any]) -> EventDescriptor:
    """
    Build an event from a webhook-like mapping:
        {"kind": "push", "changedPaths": [...]}
        {"kind": "pull_request", "targetBranch": "main"}

    snake_case keys (changed_paths / target_branch) are accepted as well.
    """
    if "kind" not in payload:
        raise ConfigurationError("event payload is missing 'kind'")
    kind = parse_kind(str(payload["kind"]))

    paths = payload.get("changedPaths", payload.get("changed_paths"))
    branch = payload.get("targetBranch", payload.get("target_branch"))

    if kind == EventKind.PUSH:
        if paths is None:
            raise ConfigurationError("push event is missing changed paths")
        if isinstance(paths, str) or not isinstance(paths, Iterable):
            raise ConfigurationError("changedPaths must be a list of strings")
        return push_event(str(p) for p in paths)
    if kind == EventKind.PULL_REQUEST:
        if not branch:
            raise ConfigurationError("pull_request event is missing target branch")
        return pull_request_event(str(branch))
    return manual_event()


def push_event_from_git(compare_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> EventDescriptor:
    """
    A push event whose changed paths come from git:

      - dirty working tree: staged, unstaged and untracked files
      - clean: diff between merge-base(compare_ref) and HEAD, falling back
        to HEAD~1, then to every tracked file (first commit)
    """
    try:
        if git.is_dirty(cwd=cwd):
            changed = git.working_tree_changes(cwd=cwd)
        else:
            try:
                base = git.merge_base(compare_ref, cwd=cwd)
            except subprocess.CalledProcessError:
                logger.debug("no merge-base with %s, diffing against HEAD~1", compare_ref)
                base = "HEAD~1"
            try:
                changed = git.changed_files(base, "HEAD", cwd=cwd)
            except subprocess.CalledProcessError:
                changed = git.tracked_files(cwd=cwd)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise ConfigurationError("could not read changed files from git", {"error": e}) from e

    logger.debug("git reports %d changed path(s)", len(changed))
    return push_event(changed)
