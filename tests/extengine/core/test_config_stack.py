# tests/extengine/core/test_config_stack.py
from __future__ import annotations

import pytest

from extengine.core.config_stack import mergeLayers, mergeWithStrategy


# -------- mergeWithStrategy (dict) --------

def test_merge_replace_dict():
    left = {"a": 1, "b": {"x": 1, "y": 2}}
    right = {"__merge": "replace", "b": {"z": 3}, "c": 9}
    out = mergeWithStrategy(left, right)
    # whole object replaced (minus control key)
    assert out == {"b": {"z": 3}, "c": 9}


def test_merge_deep_default():
    left = {"a": 1, "b": {"x": 1, "y": 2}}
    right = {"b": {"y": 5, "z": 9}, "c": 7}
    out = mergeWithStrategy(left, right)
    assert out == {"a": 1, "b": {"x": 1, "y": 5, "z": 9}, "c": 7}


def test_merge_doesNotMutateInputs():
    left = {"files": {"blockedExtensions": [".exe"]}}
    right = {"files": {"maxFileSizeBlock": 10}}
    mergeWithStrategy(left, right)
    assert left == {"files": {"blockedExtensions": [".exe"]}}
    assert right == {"files": {"maxFileSizeBlock": 10}}


def test_merge_invalidObjectStrategy_raises():
    with pytest.raises(ValueError):
        mergeWithStrategy({"a": 1}, {"__merge": "sideways"})


# -------- mergeWithStrategy (lists) --------

def test_list_replace_default_when_both_lists():
    assert mergeWithStrategy([1, 2], [3, 4]) == [3, 4]


def test_policyArrays_replaceByDefault():
    left = {"permissions": {"blocked": ["debugger", "nativeMessaging"]}}
    right = {"permissions": {"blocked": ["proxy"]}}
    assert mergeWithStrategy(left, right) == {"permissions": {"blocked": ["proxy"]}}


def test_list_side_channel_append_prepend_unique():
    left = {"items": [1, 2, 3]}
    out = mergeWithStrategy(left, {"items": [3, 4], "items__merge": "append"})
    assert out["items"] == [1, 2, 3, 3, 4]

    out = mergeWithStrategy(left, {"items": [0], "items__merge": "prepend"})
    assert out["items"] == [0, 1, 2, 3]

    out = mergeWithStrategy(left, {"items": [2, 99], "items__merge": "uniqueAppend"})
    assert out["items"] == [1, 2, 3, 99]


def test_list_side_channel_key_does_not_leak_into_output():
    out = mergeWithStrategy({"items": [1]}, {"items": [2], "items__merge": "append"})
    assert "items__merge" not in out
    assert out["items"] == [1, 2]


# -------- mergeLayers --------

def test_mergeLayers_bottomToTop_skipsNone():
    out = mergeLayers({"a": 1, "b": {"c": 1}}, None, {"b": {"c": 2}}, {})
    assert out == {"a": 1, "b": {"c": 2}}
