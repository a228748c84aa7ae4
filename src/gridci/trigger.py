# trigger.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .errors import ConfigurationError
from .model import EventDescriptor, EventKind, RunDecision, TriggerRule

logger = logging.getLogger(__name__)


def normalize_prefix(prefix: str) -> str:
    """
    Reduce a path filter to the literal prefix it stands for.

    Workflow files commonly write `src/**`; only the part before the
    trailing wildcards is used, no glob expansion happens.
    """
    p = prefix.strip().replace("\\", "/")
    while p.endswith("*"):
        p = p[:-1]
    if p.startswith("./"):
        p = p[2:]
    return p


def index_rules(rules: Iterable[TriggerRule]) -> Dict[EventKind, TriggerRule]:
    by_kind: Dict[EventKind, TriggerRule] = {}
    for rule in rules:
        if rule.kind in by_kind:
            raise ConfigurationError(
                "duplicate trigger rule",
                {"kind": rule.kind.value},
            )
        if rule.kind == EventKind.PUSH and not rule.path_prefixes:
            raise ConfigurationError("push trigger needs at least one path prefix")
        if rule.kind == EventKind.PULL_REQUEST and not rule.branches:
            raise ConfigurationError("pull_request trigger needs at least one branch")
        by_kind[rule.kind] = rule
    return by_kind


def _matching_paths(paths: Iterable[str], prefixes: Iterable[str]) -> List[str]:
    literal = [normalize_prefix(p) for p in prefixes]
    return sorted(path for path in paths if any(path.startswith(pre) for pre in literal))


def evaluate(event: EventDescriptor, rules: Iterable[TriggerRule]) -> RunDecision:
    """Decide whether `event` starts a run under `rules`. Pure; raises only on malformed input."""
    by_kind = index_rules(rules)

    if event.kind == EventKind.PUSH and event.changed_paths is None:
        raise ConfigurationError("push event is missing changed paths")
    if event.kind == EventKind.PULL_REQUEST and not event.target_branch:
        raise ConfigurationError("pull_request event is missing target branch")

    rule = by_kind.get(event.kind)
    if rule is None:
        decision = RunDecision(False, f"no trigger configured for {event.kind.value}")
    elif event.kind == EventKind.MANUAL:
        decision = RunDecision(True, "manual dispatch")
    elif event.kind == EventKind.PUSH:
        hits = _matching_paths(event.changed_paths or (), rule.path_prefixes)
        if hits:
            decision = RunDecision(True, f"push touched {hits[0]}" + (f" (+{len(hits) - 1} more)" if len(hits) > 1 else ""))
        else:
            decision = RunDecision(False, f"no changed path under {sorted(rule.path_prefixes)}")
    else:
        if event.target_branch in rule.branches:
            decision = RunDecision(True, f"pull request targets {event.target_branch}")
        else:
            decision = RunDecision(False, f"branch {event.target_branch!r} not in {sorted(rule.branches)}")

    logger.debug("trigger %s -> run=%s (%s)", event.kind.value, decision.run, decision.reason)
    return decision
