# extengine/core/hashing.py
from __future__ import annotations

import hashlib
from os import PathLike

__all__ = ["sha256Hex", "shortPathHash"]



def sha256Hex(data: str | bytes) -> str:
    """SHA-256 hex digest of a string (UTF-8) or raw bytes."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()



def shortPathHash(path: str | PathLike[str]) -> str:
    """First 16 hex chars of the path digest; used instead of full paths in logs."""
    return sha256Hex(str(path))[:16]
