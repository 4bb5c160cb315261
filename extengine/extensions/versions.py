# extengine/extensions/versions.py
from __future__ import annotations

import re
from collections.abc import Iterable
from functools import total_ordering
from typing import Any

__all__ = [
    "DEFAULT_VERSION",
    "VERSION_RE",
    "TMP_MARKER",
    "ExtensionVersion",
    "normalizeVersion",
    "chooseLatestVersionDir",
    "versionDirName",
    "versionOfDir",
]

DEFAULT_VERSION = "1.0.0"
VERSION_RE = re.compile(r"^\d+(\.\d+)*$")
VERSION_DIR_SUFFIX = "_0"
TMP_MARKER = ".tmp."  # "<v>_0.tmp.<ts>" while a copy is in flight



def normalizeVersion(version: Any) -> str:
    """Returns the version as-is when it is dot-separated numbers, else "1.0.0"."""
    if isinstance(version, str) and VERSION_RE.match(version):
        return version
    return DEFAULT_VERSION



@total_ordering
class ExtensionVersion:
    """
    Chrome-style numeric version. Compares by the numeric tuple with missing
    parts treated as zero, so "1.2" == "1.2.0". Non-numeric parts count as 0.
    """
    __slots__ = ("raw", "parts")

    def __init__(self, raw: str) -> None:
        self.raw = raw
        parts: list[int] = []
        for chunk in str(raw).split("."):
            parts.append(int(chunk) if chunk.isdigit() else 0)
        while len(parts) > 1 and parts[-1] == 0:
            parts.pop()
        self.parts = tuple(parts)

    def _key(self, width: int) -> tuple[int, ...]:
        return self.parts + (0,) * (width - len(self.parts))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtensionVersion):
            return NotImplemented
        width = max(len(self.parts), len(other.parts))
        return self._key(width) == other._key(width)

    def __lt__(self, other: ExtensionVersion) -> bool:
        if not isinstance(other, ExtensionVersion):
            return NotImplemented
        width = max(len(self.parts), len(other.parts))
        return self._key(width) < other._key(width)

    def __hash__(self) -> int:
        return hash(self.parts)

    def __repr__(self) -> str:
        return f"ExtensionVersion({self.raw!r})"

    def __str__(self) -> str:
        return self.raw



def versionDirName(version: str) -> str:
    return f"{version}{VERSION_DIR_SUFFIX}"



def versionOfDir(dirName: str) -> str:
    """"1.2.3_0" -> "1.2.3"."""
    return dirName.split("_")[0]



def chooseLatestVersionDir(names: Iterable[str]) -> str | None:
    """Picks the directory whose `<version>_N` prefix is the highest version."""
    best: str | None = None
    bestVersion: ExtensionVersion | None = None
    for name in names:
        if not name or name.startswith(".") or TMP_MARKER in name:
            continue
        candidate = ExtensionVersion(versionOfDir(name))
        if bestVersion is None or candidate > bestVersion:
            best, bestVersion = name, candidate
    return best
