# extengine/archive/zip.py
from __future__ import annotations

import io
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path

from extengine.core.errors import ArchiveError, ErrorCode

logger = logging.getLogger(__name__)

__all__ = ["SkippedEntry", "ExtractionResult", "extractZipBuffer", "extractZipFile", "checkEntryName"]

_SUPPORTED_METHODS = {zipfile.ZIP_STORED: "STORED", zipfile.ZIP_DEFLATED: "DEFLATE"}
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_CHUNK = 64 * 1024



@dataclass(slots=True, frozen=True)
class SkippedEntry:
    name: str
    reason: str



@dataclass(slots=True)
class ExtractionResult:
    extracted: list[str] = field(default_factory=list)
    skipped: list[SkippedEntry] = field(default_factory=list)
    totalBytes: int = 0



def checkEntryName(name: str) -> str | None:
    """Returns why an entry name is unsafe, or None when it is fine."""
    if not name:
        return "empty name"
    if "\x00" in name:
        return "NUL byte in name"
    if name.startswith("/") or name.startswith("\\"):
        return "absolute path"
    if _DRIVE_RE.match(name):
        return "drive letter"
    if "\\" in name:
        return "backslash in name"
    if ".." in name.split("/"):
        return "parent directory segment"
    return None



def extractZipFile(
    path: str | PathLike[str],
    dest: str | PathLike[str],
    *,
    maxEntries: int | None = None,
    maxTotalBytes: int | None = None,
) -> ExtractionResult:
    try:
        data = Path(path).read_bytes()
    except OSError as err:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Cannot read ZIP file: {err.strerror or err}") from err
    return extractZipBuffer(data, dest, maxEntries=maxEntries, maxTotalBytes=maxTotalBytes)



def extractZipBuffer(
    buf: bytes,
    dest: str | PathLike[str],
    *,
    maxEntries: int | None = None,
    maxTotalBytes: int | None = None,
) -> ExtractionResult:
    """
    Extracts a ZIP held in memory into `dest`.

    Entries come from the central directory. Unsafe names and unsupported
    compression methods are skipped (and reported), everything else is
    extracted. A malformed archive raises ArchiveError. `maxEntries` and
    `maxTotalBytes` bound the work for oversized or hostile archives.
    """
    destRoot = Path(dest)
    destRoot.mkdir(parents=True, exist_ok=True)
    destResolved = destRoot.resolve()
    result = ExtractionResult()

    try:
        archive = zipfile.ZipFile(io.BytesIO(buf))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as err:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Invalid ZIP archive: {err}") from err

    with archive:
        entries = archive.infolist()
        if maxEntries is not None and len(entries) > maxEntries:
            raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Archive has too many entries ({len(entries)} > {maxEntries})")
        declaredTotal = sum(info.file_size for info in entries)
        if maxTotalBytes is not None and declaredTotal > maxTotalBytes:
            raise ArchiveError(ErrorCode.INSTALL_FAILED, "Archive content exceeds size limit")

        for info in entries:
            name = info.orig_filename
            reason = checkEntryName(name)
            target: Path | None = None
            if reason is None:
                target = (destRoot / name).resolve()
                if target != destResolved and not target.is_relative_to(destResolved):
                    reason = "resolves outside destination"
            if reason is None and info.compress_type not in _SUPPORTED_METHODS:
                reason = f"unsupported compression method {info.compress_type}"
            if reason is None and info.flag_bits & 0x1:
                reason = "encrypted entry"

            if reason is not None or target is None:
                logger.warning("Skipping ZIP entry '%s': %s", name.replace("\x00", "\\0"), reason)
                result.skipped.append(SkippedEntry(name=name, reason=reason or "invalid"))
                continue

            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            written = _copyEntry(archive, info, target, maxTotalBytes, result.totalBytes)
            result.totalBytes += written
            result.extracted.append(name)

    return result



def _copyEntry(
    archive: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    target: Path,
    maxTotalBytes: int | None,
    alreadyWritten: int,
) -> int:
    written = 0
    try:
        with archive.open(info, "r") as src, open(target, "wb") as out:
            while True:
                chunk = src.read(_CHUNK)
                if not chunk:
                    break
                written += len(chunk)
                # Headers can understate sizes; count what is actually inflated
                if maxTotalBytes is not None and alreadyWritten + written > maxTotalBytes:
                    raise ArchiveError(ErrorCode.INSTALL_FAILED, "Archive content exceeds size limit")
                out.write(chunk)
    except (zipfile.BadZipFile, zlib.error, EOFError) as err:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Corrupt ZIP entry '{info.filename}': {err}") from err
    except OSError as err:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Cannot write '{info.filename}': {err.strerror or err}") from err
    return written
