# extengine/extensions/installers/__init__.py
from __future__ import annotations

from os import PathLike
from pathlib import Path

from extengine.core.errors import ErrorCode, InputError
from extengine.extensions.context import EngineContext
from .archive import ArchiveInstaller, classifyArchive
from .base import Installer, StagedExtension, findMissingFiles
from .directory import DirectoryInstaller

__all__ = [
    "Installer",
    "StagedExtension",
    "DirectoryInstaller",
    "ArchiveInstaller",
    "classifyArchive",
    "findMissingFiles",
    "installerFor",
    "prepare",
]



def installerFor(ctx: EngineContext, source: str | PathLike[str]) -> Installer:
    """Directory sources go to the directory installer, files to the archive installer."""
    path = Path(source)
    if path.is_dir():
        return DirectoryInstaller(ctx)
    if path.is_file():
        return ArchiveInstaller(ctx)
    raise InputError(ErrorCode.INVALID_PATH, "Path does not exist")



def prepare(ctx: EngineContext, source: str | PathLike[str]) -> tuple[Installer, StagedExtension]:
    """Stages `source` with the matching installer; commit or discard through the returned installer."""
    installer = installerFor(ctx, source)
    return installer, installer.stage(source)
