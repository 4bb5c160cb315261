# tests/extengine/validation/test_policy.py
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from extengine.validation.policy import DEFAULT_POLICY, ExtensionPolicy, loadPolicy, mergePolicy


def test_defaultPolicy_values():
    policy = ExtensionPolicy.default()
    assert policy.manifest.requireMV3 is True
    assert policy.manifest.maxNameLength == 75
    assert policy.files.maxFileSizeBlock == 60 * 1024 * 1024
    assert "nativeMessaging" in policy.permissions.blocked
    assert "<all_urls>" in policy.permissions.dangerous
    assert policy.behavior.onWarn == "allow"
    assert policy.behavior.strictForLocalZips is False


def test_mergePolicy_deepMergesAndArraysReplace():
    policy = mergePolicy({
        "manifest": {"maxNameLength": 40},
        "permissions": {"blocked": ["tabs"]},
    })
    assert policy.manifest.maxNameLength == 40
    assert policy.manifest.requireMV3 is True
    assert policy.permissions.blocked == ["tabs"]
    assert policy.permissions.dangerous == DEFAULT_POLICY["permissions"]["dangerous"]


def test_mergePolicy_rejectsBadValues():
    with pytest.raises(ValidationError):
        mergePolicy({"behavior": {"onWarn": "maybe"}})


def test_loadPolicy_missingFileGivesDefaults(tmp_path: Path):
    assert loadPolicy(tmp_path) == ExtensionPolicy.default()


def test_loadPolicy_readsJson5Overrides(tmp_path: Path):
    (tmp_path / "policy.json").write_text(
        "{ // local overrides\n behavior: { onDangerousPermission: 'confirm' }, }\n",
        encoding="utf-8",
    )
    policy = loadPolicy(tmp_path)
    assert policy.behavior.onDangerousPermission == "confirm"
    assert policy.behavior.onWarn == "allow"


@pytest.mark.parametrize("content", ["{ not json", "[1, 2]", '{"files": {"maxFileSizeBlock": -1}}'])
def test_loadPolicy_invalidFileFallsBackToDefaults(tmp_path: Path, content: str):
    (tmp_path / "policy.json").write_text(content, encoding="utf-8")
    assert loadPolicy(tmp_path) == ExtensionPolicy.default()
