# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .cache import DEFAULT_CACHE_DIR
from .errors import ConfigurationError


def _int_or_none(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", {name: raw}) from None


@dataclass(frozen=True)
class Settings:
    """Runtime knobs read from GRIDCI_* environment variables. CLI flags override them."""
    cache_dir: str = DEFAULT_CACHE_DIR
    cache_keep: int = 5
    max_concurrency: Optional[int] = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        keep = _int_or_none("GRIDCI_CACHE_KEEP", env.get("GRIDCI_CACHE_KEEP"))
        return cls(
            cache_dir=env.get("GRIDCI_CACHE_DIR", DEFAULT_CACHE_DIR),
            cache_keep=5 if keep is None else keep,
            max_concurrency=_int_or_none("GRIDCI_MAX_CONCURRENCY", env.get("GRIDCI_MAX_CONCURRENCY")),
            log_level=env.get("GRIDCI_LOG_LEVEL", "WARNING").upper(),
        )
