# matrix.py
from __future__ import annotations

from typing import Any, Iterable, List

from .errors import ConfigurationError
from .model import Job


class MatrixAxis:
    """
    An ordered axis of variation, e.g. the target platform.

    Example:
        MatrixAxis("platform", ["linux", "windows", "macos"])
    """

    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = [str(v) for v in values]

        if not self.values:
            raise ConfigurationError("matrix axis must not be empty", {"axis": key})

        dupes = sorted({v for v in self.values if self.values.count(v) > 1})
        if dupes:
            raise ConfigurationError("matrix axis values must be unique", {"axis": key, "duplicates": dupes})

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self):
        return iter(self.values)

    def __repr__(self) -> str:
        return f"MatrixAxis({self.key!r}, {self.values!r})"


def expand(axis: MatrixAxis | Iterable[Any]) -> List[Job]:
    """One pending job per axis value, in declaration order."""
    if not isinstance(axis, MatrixAxis):
        axis = MatrixAxis("platform", axis)
    return [Job(platform=value) for value in axis.values]
