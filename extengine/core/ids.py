# extengine/core/ids.py
from __future__ import annotations

import secrets

import uuid6

__all__ = ["uuidv7", "randomHex"]



def uuidv7(*, prefix: str = "") -> str:
    """Returns a UUIDv7 string (time-ordered), optionally prefixed."""
    return prefix + str(uuid6.uuid7())



def randomHex(nbytes: int = 4) -> str:
    """Returns `2 * nbytes` lowercase hex characters from a CSPRNG."""
    return secrets.token_hex(nbytes)
