# extengine/core/paths.py
from __future__ import annotations

import logging
import os
import re
import stat
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from extengine.core.errors import ErrorCode, InputError

logger = logging.getLogger(__name__)

__all__ = [
    "MAX_PATH_LENGTH",
    "DEFAULT_ALLOWED_FILE_EXTENSIONS",
    "DEFAULT_ALLOWED_USER_DIRS",
    "validateInstallSource",
    "allowedRoots",
]

MAX_PATH_LENGTH = 4096
DEFAULT_ALLOWED_FILE_EXTENSIONS: tuple[str, ...] = (".zip", ".crx", ".crx3")
DEFAULT_ALLOWED_USER_DIRS: tuple[str, ...] = ("Downloads", "Desktop", "Documents")

_SEGMENT_SPLIT_RE = re.compile(r"[\\/]+")



def allowedRoots(home: str | os.PathLike[str] | None = None, userDirs: Iterable[str] | None = None) -> list[Path]:
    """Resolved user directories that may hold unpacked extensions."""
    homeDir = Path(home) if home is not None else Path.home()
    roots: list[Path] = []
    for name in (userDirs if userDirs is not None else DEFAULT_ALLOWED_USER_DIRS):
        roots.append(Path(os.path.realpath(homeDir / name)))
    return roots



def validateInstallSource(
    path: Any,
    *,
    allowDirectories: bool = True,
    allowFiles: bool = True,
    allowedFileExtensions: Iterable[str] = DEFAULT_ALLOWED_FILE_EXTENSIONS,
    home: str | os.PathLike[str] | None = None,
    allowedUserDirs: Iterable[str] | None = None,
) -> Path:
    """
    Checks a user-supplied install source and returns its real path.

    Rules, in order:
      1. non-empty string, at most 4096 chars, no `~` prefix, no raw `..` segment
      2. the path has to exist (lstat)
      3. directories and files are allowed per flags
      4. files need one of `allowedFileExtensions`
      5. symlinks are resolved
      6. files picked explicitly by the user are accepted anywhere;
         directories must live under the allowed user directories

    Raises InputError with E_INVALID_PATH or E_PATH_TRAVERSAL.
    """
    if not isinstance(path, str) or not path:
        raise InputError(ErrorCode.INVALID_PATH, "Path must be a non-empty string")
    if len(path) > MAX_PATH_LENGTH:
        raise InputError(ErrorCode.INVALID_PATH, "Path too long")
    if path.startswith("~"):
        raise InputError(ErrorCode.PATH_TRAVERSAL, "Path traversal detected")
    if ".." in _SEGMENT_SPLIT_RE.split(path):
        raise InputError(ErrorCode.PATH_TRAVERSAL, "Path traversal detected")

    absolute = os.path.abspath(os.path.normpath(path))
    try:
        info = os.lstat(absolute)
    except OSError as err:
        raise InputError(ErrorCode.INVALID_PATH, "Path does not exist") from err

    # A symlink is judged by what it points to
    if stat.S_ISLNK(info.st_mode):
        try:
            info = os.stat(absolute)
        except OSError as err:
            raise InputError(ErrorCode.INVALID_PATH, "Path does not exist") from err

    isDir = stat.S_ISDIR(info.st_mode)
    isFile = stat.S_ISREG(info.st_mode)

    if isDir and not allowDirectories:
        raise InputError(ErrorCode.INVALID_PATH, "Directories not allowed")
    if isFile and not allowFiles:
        raise InputError(ErrorCode.INVALID_PATH, "Files not allowed for install")
    if not isDir and not isFile:
        raise InputError(ErrorCode.INVALID_PATH, "Unsupported file type")

    if isFile:
        suffix = Path(absolute).suffix.lower()
        allowed = {ext.lower() for ext in allowedFileExtensions}
        if suffix not in allowed:
            raise InputError(ErrorCode.INVALID_PATH, "Unsupported file type")

    real = Path(os.path.realpath(absolute))

    if isFile:
        return real

    for root in allowedRoots(home, allowedUserDirs):
        if real == root or real.is_relative_to(root):
            return real

    logger.warning("Rejected install source outside allowed directories")
    raise InputError(ErrorCode.PATH_TRAVERSAL, "Source path not in allowed directories")
