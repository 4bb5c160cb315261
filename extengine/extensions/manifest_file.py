# extengine/extensions/manifest_file.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Any

import json5

__all__ = ["MANIFEST_FILE_NAME", "PREFERRED_MANIFEST_ALTS", "ManifestFile", "findExtensionManifest", "locateManifestRoot"]

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "manifest.json"

PREFERRED_MANIFEST_ALTS: tuple[str, ...] = (
    "manifest.json",
    "manifest.chromium.json",
    "manifest.chrome.json",
    "manifest.chrome-mv3.json",
    "manifest.mv3.json",
    "manifest.v3.json",
    "manifest.firefox.json",
)



@dataclass(slots=True, frozen=True)
class ManifestFile:
    path: Path
    content: str
    data: Any

    @property
    def isAlternate(self) -> bool:
        return self.path.name != MANIFEST_FILE_NAME



def findExtensionManifest(dirPath: str | PathLike[str]) -> ManifestFile | None:
    """
    Returns the first parseable manifest in `dirPath`, trying the canonical
    name and then build-tool alternates. Unparseable candidates are skipped.
    """
    root = Path(dirPath)
    for name in PREFERRED_MANIFEST_ALTS:
        candidate = root / name
        try:
            content = candidate.read_text(encoding="utf-8-sig")
        except FileNotFoundError:
            continue
        except (OSError, UnicodeDecodeError) as err:
            logger.debug("Cannot read %s: %s", name, err)
            continue
        try:
            data = json5.loads(content)
        except ValueError as err:
            logger.warning("Ignoring %s with invalid JSON: %s", name, err)
            continue

        if name == "manifest.firefox.json":
            logger.warning("Using manifest.firefox.json. Extension may be incompatible with Chromium.")
        return ManifestFile(path=candidate, content=content, data=data)
    return None



def locateManifestRoot(extractDir: str | PathLike[str]) -> Path | None:
    """
    Finds the extension root inside an extracted archive: the directory itself
    or its single top-level subdirectory. `__MACOSX` and dotfiles are ignored.
    """
    root = Path(extractDir)
    if findExtensionManifest(root) is not None:
        return root

    try:
        entries = [entry for entry in root.iterdir() if entry.name != "__MACOSX" and not entry.name.startswith(".")]
    except OSError:
        return None
    dirs = [entry for entry in entries if entry.is_dir() and not entry.is_symlink()]
    files = [entry for entry in entries if not entry.is_dir()]
    if len(dirs) == 1 and not files and findExtensionManifest(dirs[0]) is not None:
        return dirs[0]
    return None
