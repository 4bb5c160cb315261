# extengine/core/jsonutils.py
from __future__ import annotations

import base64
import json
import logging
import os
from collections.abc import Mapping, Iterable
from dataclasses import is_dataclass, asdict
from datetime import date, datetime
from enum import Enum
from os import PathLike
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from extengine.core.ids import randomHex

logger = logging.getLogger(__name__)

__all__ = ["safeJsonDumps", "tryJSONify", "readJsonSafe", "writeJsonAtomic"]



# ------------------------------------------------
#                JSON serialization
# ------------------------------------------------

def safeJsonDumps(obj: Any) -> str:
    """
    Serializes an object to a compact JSON string.
    Uses deterministic separators (",", ":") and disallows NaN/infinity.
    UTF-8 characters are kept as-is, which matches JavaScript's JSON.stringify
    for plain objects of strings.
    If direct JSON encoding fails, falls back to tryJSONify and retries.
    """
    payload: Any
    if isinstance(obj, BaseModel):
        payload = obj.model_dump(mode="json", by_alias=True)
    else:
        payload = obj

    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError):
        safePayload = tryJSONify(payload, _maxDepth=None)
        return json.dumps(safePayload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))



def tryJSONify(obj: Any, *, _seen: set[int] | None = None, _depth: int = 0, _maxDepth: int | None = 10) -> Any:
    """
    Attempts to make any object JSON-serializable.

    Rules:
      • Basic scalars (None, bool, int, float, str) are preserved.
      • Exceptions → {"type", "message"}.
      • bytes/bytearray/memoryview → base64 {"__b64__":"..."}.
      • date/datetime → ISO8601 string.
      • pydantic models → model_dump(by_alias=True).
      • Path → string path.
      • sets/tuples/iterables → list.
      • Mappings → dict with str keys.
      • fallback → repr(obj)
    """
    if _seen is None:
        _seen = set()

    oid = id(obj)
    if oid in _seen:
        return f"<circular_ref {type(obj).__name__}>"
    if isinstance(_maxDepth, int) and _depth > _maxDepth:
        return f"<max_depth_exceeded {type(obj).__name__}>"

    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    # Only ancestors count as cycles; shared siblings are serialized twice
    _seen.add(oid)
    try:
        return _jsonifyInner(obj, _seen, _depth, _maxDepth)
    finally:
        _seen.discard(oid)



def _jsonifyInner(obj: Any, _seen: set[int], _depth: int, _maxDepth: int | None) -> Any:
    def _next(value: Any) -> Any:
        return tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)

    if isinstance(obj, BaseException):
        return {"type": type(obj).__name__, "message": str(obj)}
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"__b64__": base64.b64encode(bytes(obj)).decode("ascii")}
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return _next(obj.value)
    if isinstance(obj, BaseModel):
        return _next(obj.model_dump(mode="json", by_alias=True))
    if is_dataclass(obj) and not isinstance(obj, type):
        return _next(asdict(obj))
    if isinstance(obj, PathLike):
        return os.fspath(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return [_next(value) for value in obj]
    if isinstance(obj, Mapping):
        return {str(key): _next(value) for key, value in obj.items()}
    if isinstance(obj, Iterable):
        return [_next(value) for value in obj]

    # Last-ditch representation (avoid raising during logging)
    return repr(obj)



# ------------------------------------------------
#                 File helpers
# ------------------------------------------------

def readJsonSafe(filePath: str | Path, fallback: Any = None) -> Any:
    """
    Reads and parses a JSON file, returning `fallback` on any read or parse error.
    Handles a leading BOM and empty or whitespace-only files.
    """
    try:
        data = Path(filePath).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return fallback

    if data.startswith("\ufeff"):
        data = data[1:]
    if not data.strip():
        return fallback

    try:
        return json.loads(data)
    except json.JSONDecodeError as err:
        logger.warning("Invalid JSON in %s (%s); using fallback", Path(filePath).name, err)
        return fallback



def writeJsonAtomic(filePath: str | Path, data: Any) -> None:
    """
    Writes JSON to `<file>.<rand>.tmp` in the target directory, then renames it
    over the target. The temp file is removed if anything fails.
    """
    target = Path(filePath)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmpPath = target.with_name(f"{target.name}.{randomHex(4)}.tmp")

    try:
        text = json.dumps(tryJSONify(data, _maxDepth=None), ensure_ascii=False, indent=2)
        with tmpPath.open("w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmpPath, target)
    except BaseException:
        try:
            tmpPath.unlink(missing_ok=True)
        except OSError:
            logger.debug("Could not remove temp file %s", tmpPath.name)
        raise
