# extengine/core/fsutils.py
from __future__ import annotations

import logging
import os
import shutil
from os import PathLike
from pathlib import Path

from extengine.core.errors import ErrorCode, FilesystemError
from extengine.core.ids import randomHex
from extengine.core.time import nowMs

logger = logging.getLogger(__name__)

__all__ = [
    "STAGING_DIR_NAME",
    "UPLOADS_DIR_NAME",
    "ensureDir",
    "atomicReplaceDir",
    "copyTree",
    "removeTree",
    "isInside",
    "makeStagingDir",
]

STAGING_DIR_NAME = "_staging"
UPLOADS_DIR_NAME = "_uploads"



def ensureDir(path: str | PathLike[str]) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target



def atomicReplaceDir(src: str | PathLike[str], dst: str | PathLike[str]) -> None:
    """
    Moves `src` over `dst`. An existing `dst` is removed first.
    Both are expected on the same filesystem so the final rename is atomic.
    """
    srcPath = Path(src)
    dstPath = Path(dst)
    if not srcPath.exists():
        raise FilesystemError(ErrorCode.INSTALL_FAILED, "Source directory does not exist")

    ensureDir(dstPath.parent)
    if dstPath.exists() or dstPath.is_symlink():
        removeTree(dstPath)
        if dstPath.exists():
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Could not replace existing directory {dstPath.name}")
    try:
        os.replace(srcPath, dstPath)
    except OSError as err:
        raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Failed to move directory into place: {err.strerror or err}") from err



def copyTree(src: str | PathLike[str], dst: str | PathLike[str]) -> int:
    """
    Recursively copies `src` into `dst` without following symlinks.
    Symlinks (files or directories) are skipped. Returns the number of files copied.
    """
    srcPath = Path(src)
    dstPath = Path(dst)
    ensureDir(dstPath)
    copied = 0

    with os.scandir(srcPath) as entries:
        for entry in entries:
            target = dstPath / entry.name
            if entry.is_symlink():
                logger.debug("Skipping symlink '%s' while copying", entry.name)
                continue
            if entry.is_dir(follow_symlinks=False):
                copied += copyTree(entry.path, target)
            elif entry.is_file(follow_symlinks=False):
                shutil.copy2(entry.path, target, follow_symlinks=False)
                copied += 1
    return copied



def removeTree(path: str | PathLike[str]) -> bool:
    """Best-effort removal of a file, symlink or directory tree. Returns True if gone afterwards."""
    target = Path(path)
    try:
        if target.is_symlink() or target.is_file():
            target.unlink(missing_ok=True)
        elif target.is_dir():
            shutil.rmtree(target)
    except OSError as err:
        logger.warning("Failed to remove '%s': %s", target.name, err.strerror or err)
    return not (target.exists() or target.is_symlink())



def isInside(root: str | PathLike[str], target: str | PathLike[str]) -> bool:
    """True when `target` resolves to `root` or somewhere below it."""
    rootResolved = Path(root).resolve(strict=False)
    targetResolved = Path(target).resolve(strict=False)
    return targetResolved == rootResolved or targetResolved.is_relative_to(rootResolved)



def makeStagingDir(base: str | PathLike[str], prefix: str) -> Path:
    """Creates and returns `<base>/_staging/<prefix>-<ms>-<8 hex>`."""
    stagingRoot = ensureDir(Path(base) / STAGING_DIR_NAME)
    stagingDir = stagingRoot / f"{prefix}-{nowMs()}-{randomHex(4)}"
    stagingDir.mkdir(parents=False, exist_ok=False)
    return stagingDir
