# extengine/core/config_stack.py
from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Literal, cast

__all__ = ["MergeStrategy", "mergeWithStrategy", "mergeLayers"]



MergeStrategy = Literal["deep", "replace", "append", "prepend", "uniqueAppend"]
_LIST_STRATEGIES: tuple[str, ...] = ("replace", "append", "prepend", "uniqueAppend")



def mergeWithStrategy(left: Any, right: Any) -> Any:
    """
    Deep merge with an optional per-object directive:
      - dicts: if right has "__merge": "replace", right replaces left entirely
        (minus the directive); otherwise keys merge recursively
      - lists: replaced by default; a sibling key "<key>__merge" set to
        "append" | "prepend" | "uniqueAppend" changes that
      - scalars: right replaces left
    Inputs are never mutated.
    """
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        strategy = right.get("__merge", "deep")
        if strategy not in ("deep", "replace"):
            raise ValueError(f'Invalid merge strategy "{strategy}" for object')
        if strategy == "replace":
            return {key: copy.deepcopy(value) for key, value in right.items() if key != "__merge"}

        out: dict[str, Any] = {key: copy.deepcopy(value) for key, value in left.items()}
        for key, rightValue in right.items():
            if key == "__merge" or key.endswith("__merge"):
                continue
            leftValue = out.get(key)
            listStrategy = right.get(f"{key}__merge")
            if listStrategy is not None and isinstance(rightValue, list):
                if listStrategy not in _LIST_STRATEGIES:
                    raise ValueError(f'Invalid list merge strategy "{listStrategy}" for key "{key}"')
                out[key] = _mergeLists(leftValue, rightValue, cast(MergeStrategy, listStrategy))
            elif isinstance(leftValue, Mapping) and isinstance(rightValue, Mapping):
                out[key] = mergeWithStrategy(leftValue, rightValue)
            else:
                out[key] = copy.deepcopy(rightValue)
        return out

    if isinstance(left, list) and isinstance(right, list):
        return list(right) # Default: replace (avoid aliasing)
    return copy.deepcopy(right)



def mergeLayers(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merges layers bottom to top. None layers are skipped."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged = mergeWithStrategy(merged, layer)
    return merged



def _mergeLists(left: Any, right: list[Any], strategy: MergeStrategy) -> list[Any]:
    left = list(left or [])
    right = list(right)
    if strategy == "replace":
        return right
    if strategy == "append":
        return left + right
    if strategy == "prepend":
        return right + left
    # uniqueAppend
    out = list(left)
    for item in right:
        if item not in out:
            out.append(item)
    return out
