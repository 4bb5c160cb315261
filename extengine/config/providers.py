# extengine/config/providers.py
from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import json5

from extengine.core.dictpath import deleteByPath, getByPath, setByPath

logger = logging.getLogger(__name__)

__all__ = ["ConfigProvider", "OverrideProvider", "DefaultsProvider", "FileProvider"]



class ConfigProvider(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def toDict(self) -> dict[str, Any]: ...



# ----------------------------------------------
#          OverrideProvider (in-memory)
# ----------------------------------------------

class OverrideProvider:
    """
    Volatile, writable, topmost override layer (never saved to disk).
    Setting a key to None removes it.
    """
    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            deleteByPath(self._data, key)
            return
        setByPath(self._data, key, copy.deepcopy(value))

    def toDict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)



# ----------------------------------------------
#       Read-only shipped defaults
# ----------------------------------------------

class DefaultsProvider:
    """
    Read-only provider for shipped default configuration.
    """
    def __init__(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise TypeError(f"{type(self).__name__}: 'data' must be a Mapping, not '{type(data).__name__}'")
        self.data = data

    def get(self, key: str) -> Any | None:
        return getByPath(self.data, key, None)

    def set(self, key: str, value: Any) -> None:
        raise RuntimeError(f"{type(self).__name__}: is read-only")

    def toDict(self) -> dict[str, Any]:
        # Always return a deep copy to prevent accidental mutation
        return copy.deepcopy(dict(self.data))



# ----------------------------------------------
#        File-backed provider JSON/JSON5
# ----------------------------------------------

class FileProvider:
    """
    Read-only configuration layer loaded from a .json or .json5 file.

    Behavior:
        • Missing file → empty dict
        • Parse error → logs warning and uses empty dict
        • Non-object JSON → raises TypeError
    """
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        self._data = {}
        if not self.path.exists():
            logger.debug("%s: '%s' is missing, starting as empty dict", type(self).__name__, self.path.name)
            return
        if not self.path.is_file():
            raise IsADirectoryError(f"{type(self).__name__}: '{self.path}' exists but is not a file")

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as err:
            logger.error("%s: failed to read '%s': %s", type(self).__name__, self.path.name, err)
            return

        try:
            parsed = json5.loads(text)
        except ValueError as err:
            logger.warning("%s: parse failed for '%s': %s", type(self).__name__, self.path.name, err)
            parsed = {}

        if parsed is None:
            parsed = {}
        if not isinstance(parsed, Mapping):
            raise TypeError(f"{type(self).__name__}: file content must be a JSON object, not '{type(parsed).__name__}'")
        self._data = dict(parsed)

    def reload(self) -> None:
        self._load()

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def set(self, key: str, value: Any) -> None:
        raise RuntimeError(f"{type(self).__name__}({self.path.name}) is read-only")

    def toDict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)
