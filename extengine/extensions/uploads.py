# extengine/extensions/uploads.py
from __future__ import annotations

import logging
import re
from os import PathLike
from pathlib import Path, PurePath

from extengine.core.errors import ErrorCode, FilesystemError, InputError
from extengine.core.fsutils import ensureDir, isInside, removeTree
from extengine.core.ids import uuidv7
from extengine.extensions.context import EngineContext

__all__ = ["UPLOAD_SUFFIXES", "DEFAULT_MAX_UPLOAD_BYTES", "safeUploadName", "UploadService"]

logger = logging.getLogger(__name__)

UPLOAD_SUFFIXES: tuple[str, ...] = (".zip", ".crx", ".crx3")
DEFAULT_MAX_UPLOAD_BYTES = 60 * 1024 * 1024
_MAX_NAME_LENGTH = 100
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")



def safeUploadName(name: str) -> str:
    """Basename with anything outside `[A-Za-z0-9._-]` replaced by `_`, capped in length."""
    base = PurePath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS_RE.sub("_", base).strip("._") or "upload"
    if len(cleaned) > _MAX_NAME_LENGTH:
        suffix = PurePath(cleaned).suffix
        cleaned = cleaned[: _MAX_NAME_LENGTH - len(suffix)] + suffix
    return cleaned



class UploadService:
    """Writes uploaded archives into `<base>/_uploads/` so the archive installer can pick them up."""

    def __init__(self, ctx: EngineContext, maxBytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
        self.ctx = ctx
        self.maxBytes = maxBytes

    def save(self, name: str, data: bytes | bytearray | memoryview) -> Path:
        if not isinstance(name, str) or not name.strip():
            raise InputError(ErrorCode.INVALID_PATH, "Upload name must be a non-empty string")
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise InputError(ErrorCode.INVALID_PATH, "Upload data must be bytes")

        safeName = safeUploadName(name)
        suffix = PurePath(safeName).suffix.lower()
        if suffix not in UPLOAD_SUFFIXES:
            raise InputError(ErrorCode.INVALID_PATH, "Unsupported file type; expected .zip, .crx or .crx3")

        size = len(data)
        if size > self.maxBytes:
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Upload too large ({size} bytes, limit {self.maxBytes})")

        uploadsDir = ensureDir(self.ctx.paths.uploadsDir)
        target = uploadsDir / f"{uuidv7()}-{safeName}"
        try:
            target.write_bytes(bytes(data))
        except OSError as err:
            removeTree(target)
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Failed to save upload: {err.strerror or err}") from err

        logger.info("Saved upload %s (%d bytes)", target.name, size)
        return target

    def discard(self, path: str | PathLike[str]) -> None:
        """Removes a saved upload; paths outside the uploads dir are left alone."""
        target = Path(path)
        if isInside(self.ctx.paths.uploadsDir, target) and target != self.ctx.paths.uploadsDir:
            removeTree(target)
