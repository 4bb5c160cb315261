# extengine/core/dictpath.py
from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import Any

__all__ = ["getByPath", "setByPath", "deleteByPath"]



def _splitPath(path: str) -> list[str]:
    """
    Splits a dotted path. Backslash escapes the next character, so
    `a\\.b.c` addresses key "a.b" then "c".
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Path must be a non-empty string")
    parts: list[str] = []
    curr: list[str] = []
    esc = False
    for ch in path:
        if esc:
            curr.append(ch)
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == ".":
            parts.append("".join(curr))
            curr = []
        else:
            curr.append(ch)
    if esc:
        raise ValueError("Path ends with a dangling escape (trailing backslash)")
    parts.append("".join(curr))
    if any(part == "" for part in parts):
        raise ValueError(f"Path '{path}' contains empty segment(s)")
    return parts



def getByPath(data: Any, path: str, default: Any = None) -> Any:
    """Returns the value at a dotted path inside nested mappings, or `default`."""
    node = data
    for part in _splitPath(path):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node



def setByPath(data: MutableMapping[str, Any], path: str, value: Any) -> None:
    """Sets a value at a dotted path, creating intermediate dicts."""
    parts = _splitPath(path)
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, MutableMapping):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value



def deleteByPath(data: MutableMapping[str, Any], path: str) -> bool:
    """
    Deletes the value at a dotted path. Parents left empty are pruned.
    Returns True if something was removed.
    """
    parts = _splitPath(path)
    chain: list[MutableMapping[str, Any]] = [data]
    node: Any = data
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, MutableMapping) else None
        if not isinstance(node, MutableMapping):
            return False
        chain.append(node)
    if parts[-1] not in node:
        return False
    del node[parts[-1]]

    for depth in range(len(chain) - 1, 0, -1):
        if chain[depth]:
            break
        del chain[depth - 1][parts[depth - 1]]
    return True
