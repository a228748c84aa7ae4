# cache.py
from __future__ import annotations

import hashlib
import io
import logging
import re
import tarfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# cache_key = "<scope>-" + sha256(input_hash_1 \0 input_hash_2 \0 ...)
#
# Inputs are taken in the order given and never sorted; callers pass
# them in declaration order.
#
# The store itself is an external collaborator: anything with
#   get(key) -> bytes | None
#   put(key, blob) -> None
# Blobs are tar.gz archives of the step's declared cache_paths.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".gridci/cache"
DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".gridci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def compute_key(inputs: Sequence[str], scope: str) -> str:
    """Deterministic cache key for an ordered sequence of content hashes within a scope."""
    digest = _sha256_str("\0".join(inputs))
    return f"{scope}-{digest}"


# ---------------------------------------------------------------------
# Input hashing
# ---------------------------------------------------------------------

def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _files_for_pattern(repo_root: Path, pattern: str) -> List[Path]:
    p = repo_root / pattern
    if p.is_file():
        return [p]
    if p.is_dir():
        return list(_iter_files_under(p))
    out: List[Path] = []
    for m in sorted(repo_root.glob(pattern)):
        if m.is_file():
            out.append(m)
        elif m.is_dir():
            out.extend(_iter_files_under(m))
    return out


def hash_inputs(
    repo_root: str | Path,
    patterns: Sequence[str],
    *,
    excludes: Optional[List[str]] = None,
) -> List[str]:
    """
    Turn file patterns into an ordered list of content hashes.

    Supports:
      - file path: "Cargo.lock"
      - dir path:  "src/"
      - glob:      "**/Cargo.toml"

    Patterns keep their declaration order; files inside one pattern are
    sorted by relative path. Each hash covers the relative path as well as
    the content, so renaming a file changes the key. A pattern matching
    nothing still contributes a marker so that creating the file later
    changes the key too.
    """
    root = Path(repo_root).resolve()
    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])

    hashes: List[str] = []
    seen: set[str] = set()
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        files = _files_for_pattern(root, pat)
        if not files:
            hashes.append(_sha256_str(f"missing:{pat}"))
            continue
        for f in files:
            rel = _relpath(f, root)
            if rel in seen or _matches_any_glob(rel, exclude_globs):
                continue
            seen.add(rel)
            hashes.append(_sha256_str(f"{rel}:{hash_file_contents(f)}"))
    return hashes


# ---------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------

class CacheStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, blob: bytes) -> None: ...


class MemoryCacheStore:
    """In-process store, shared safely between job threads."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(key)

    def put(self, key: str, blob: bytes) -> None:
        with self._lock:
            self._blobs[key] = blob

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._blobs)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
# "<scope>-<sha256 hex>.tar.gz"; the scope is everything before the digest
_ARTIFACT_NAME = re.compile(r"^(?P<scope>.+)-[0-9a-f]{64}\.tar\.gz$")


def _artifact_scope(path: Path) -> str:
    m = _ARTIFACT_NAME.match(path.name)
    return m.group("scope") if m else path.name


class FileCacheStore:
    """
    File-based cache store:
      root/
        <key>.tar.gz

    The root directory is created on the first put, so an unusable cache
    location shows up as CollaboratorUnavailable from get/put (a forced
    miss in the executor) rather than at construction time.

    Writes go to a tmp file and are renamed into place, so concurrent
    writers of an identical key leave one complete artifact behind.
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{_UNSAFE_CHARS.sub('_', key)}.tar.gz"

    def get(self, key: str) -> Optional[bytes]:
        art = self.artifact_path(key)
        if not art.exists():
            return None
        try:
            return art.read_bytes()
        except OSError as e:
            raise CollaboratorUnavailable("cache store", str(e)) from e

    def put(self, key: str, blob: bytes) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CollaboratorUnavailable("cache store", f"cannot create {self.root}: {e}") from e

        art = self.artifact_path(key)
        tmp = art.with_name(f"{art.name}.{threading.get_ident()}.tmp")
        try:
            tmp.write_bytes(blob)
            tmp.replace(art)
        except OSError as e:
            raise CollaboratorUnavailable("cache store", str(e)) from e
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def prune(self, keep: int = 5) -> List[Path]:
        """
        Keep only the newest N artifacts per cache scope
        (`<pipeline>-<platform>-<step>`), so one run never evicts
        another platform's or step's artifact.
        Uses file mtime as "newest". Returns the removed paths.
        """
        if not self.root.is_dir():
            return []

        by_scope: Dict[str, List[Path]] = {}
        for p in self.root.glob("*.tar.gz"):
            by_scope.setdefault(_artifact_scope(p), []).append(p)

        removed: List[Path] = []
        for scope in sorted(by_scope):
            tars = sorted(by_scope[scope], key=lambda p: p.stat().st_mtime, reverse=True)
            for p in tars[keep:]:
                p.unlink(missing_ok=True)
                removed.append(p)
        return removed


# ---------------------------------------------------------------------
# Blob packing
# ---------------------------------------------------------------------

def pack_paths(
    repo_root: str | Path,
    paths: Sequence[str],
    *,
    excludes: Optional[List[str]] = None,
) -> bytes:
    """Pack workspace-relative files/dirs into a tar.gz blob, skipping excluded paths."""
    root = Path(repo_root).resolve()
    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for entry in paths:
            src = (root / entry).resolve()
            if not src.is_relative_to(root):
                logger.warning("cache path %s is outside the workspace, not cached", entry)
                continue
            if not src.exists():
                continue
            files = [src] if src.is_file() else list(_iter_files_under(src))
            for f in files:
                rel = _relpath(f, root)
                if _matches_any_glob(rel, exclude_globs):
                    continue
                tar.add(str(f), arcname=rel, recursive=False)
    return buf.getvalue()


def unpack_blob(blob: bytes, repo_root: str | Path) -> int:
    """Extract a blob produced by pack_paths into the workspace. Returns the member count."""
    root = Path(repo_root).resolve()
    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        members = tar.getmembers()
        tar.extractall(path=str(root), filter="data")
    return len(members)
