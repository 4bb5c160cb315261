# tests/extengine/validation/test_validator.py
from __future__ import annotations

from pathlib import Path

import pytest

from extengine.validation.policy import mergePolicy
from extengine.validation.validator import ManifestValidator, ValidationOutcome, riskLevelFor
from tests.extengine.helpers import manifest, writeExtensionDir


def _smallLimits(**behavior) -> ManifestValidator:
    return ManifestValidator(mergePolicy({
        "files": {"maxFileSizeWarn": 10, "maxFileSizeBlock": 20},
        "behavior": behavior,
    }))


def test_validManifest_allows(tmp_path: Path):
    root = writeExtensionDir(tmp_path / "ext", manifest(), {"bg.js": "//", "icon.png": "png"})
    report = ManifestValidator().validateExtension(root, manifest())
    assert report.outcome == ValidationOutcome.ALLOW
    assert report.errors == [] and report.warnings == []
    assert report.fileCount == 3


def test_manifestV2_isDenied():
    report = ManifestValidator().validateManifestOnly(manifest(manifest_version=2))
    assert report.outcome == ValidationOutcome.DENY
    assert any("Only Manifest V3 is supported" in err for err in report.errors)


def test_missingFieldsAndBadVersion():
    report = ManifestValidator().validate({"manifest_version": 3, "version": "1.x"})
    assert "Required field missing: name" in report.errors
    assert "Version must be dot-separated numbers (e.g., 1.0.0)" in report.errors


def test_nameLength_isLimited():
    validator = ManifestValidator()
    assert validator.validate(manifest(name="n" * 75)).isValid
    assert "Name must be 75 characters or less" in validator.validate(manifest(name="n" * 76)).errors


def test_nonObjectManifest():
    assert ManifestValidator().validate(["nope"]).errors == ["Manifest must be a valid JSON object"]


def test_structuralErrors_areReported():
    report = ManifestValidator().validate(manifest(permissions="tabs"))
    assert not report.isValid


def test_blockedPermission_denies():
    report = ManifestValidator().validateManifestOnly(manifest(permissions=["storage", "nativeMessaging"]))
    assert report.outcome == ValidationOutcome.DENY
    assert "Blocked permission: nativeMessaging" in report.errors
    assert report.riskLevel == "critical"


def test_dangerousPermission_warns():
    report = ManifestValidator().validateManifestOnly(manifest(permissions=["webRequest"]))
    assert report.outcome == ValidationOutcome.WARN
    assert report.warnings == ["Dangerous permission: webRequest"]
    assert report.requiresConfirmation is False


def test_dangerousPermission_inConfirmModeRequiresConfirmation():
    validator = ManifestValidator(mergePolicy({"behavior": {"onDangerousPermission": "confirm"}}))
    report = validator.validateManifestOnly(manifest(permissions=["<all_urls>"]))
    assert report.outcome == ValidationOutcome.WARN
    assert report.requiresConfirmation is True


def test_onWarnDeny_turnsWarningsIntoDenial():
    validator = ManifestValidator(mergePolicy({"behavior": {"onWarn": "deny"}}))
    assert validator.validateManifestOnly(manifest(permissions=["webRequest"])).outcome == ValidationOutcome.DENY


def test_hostPermissions_addRisk():
    report = ManifestValidator().validate(manifest(host_permissions=["<all_urls>", "http://localhost/*", "https://example.org/*"]))
    assert report.hostRisk == 25 + 10 + 2
    assert report.riskScore == report.hostRisk
    assert len(report.warnings) == 2


def test_cspRejectsEvalAndRemoteScripts():
    report = ManifestValidator().validate(manifest(content_security_policy={
        "extension_pages": "script-src 'self' 'unsafe-eval' https://cdn.example.org",
    }))
    assert len(report.errors) == 2


@pytest.mark.parametrize(
    "size, outcome",
    [(10, ValidationOutcome.ALLOW), (11, ValidationOutcome.WARN), (20, ValidationOutcome.WARN), (21, ValidationOutcome.DENY)],
)
def test_fileSizeThresholds_areStrict(tmp_path: Path, size: int, outcome: ValidationOutcome):
    data = manifest()
    root = writeExtensionDir(tmp_path / "ext", data, {"data.js": b"x" * size})
    # manifest.json alone is larger than these thresholds
    (root / "manifest.json").unlink()
    report = _smallLimits().validateExtension(root, data)
    assert report.outcome == outcome


def test_fileTypes(tmp_path: Path):
    root = writeExtensionDir(tmp_path / "ext", manifest(), {
        "tool.exe": "MZ",
        "notes.xyz": "?",
        "LICENSE": "MIT",
        ".git/config": "ignored",
        "node_modules/pkg/index.js": "ignored",
    })
    report = ManifestValidator().validateFiles(root)
    assert report.errors == ["Blocked file type: tool.exe"]
    assert report.warnings == ["Unknown file type: notes.xyz"]
    assert report.fileCount == 4


def test_fileCountLimits(tmp_path: Path):
    root = writeExtensionDir(tmp_path / "ext", manifest(), {f"f{i}.js": "" for i in range(4)})
    validator = ManifestValidator(mergePolicy({"files": {"maxTotalFilesWarn": 3, "maxTotalFilesBlock": 4}}))
    report = validator.validateFiles(root)
    assert any(err.startswith("Too many files") for err in report.errors)
    assert any(warning.startswith("High file count") for warning in report.warnings)


def test_strictLocalZips_denyWarnings(tmp_path: Path):
    root = writeExtensionDir(tmp_path / "ext", manifest(), {"notes.xyz": "?"})
    validator = ManifestValidator(mergePolicy({"behavior": {"strictForLocalZips": True}}))
    assert validator.validateExtension(root, manifest(), local=False).outcome == ValidationOutcome.WARN
    assert validator.validateExtension(root, manifest(), local=True).outcome == ValidationOutcome.DENY


def test_sourceUrl_isChecked(tmp_path: Path):
    root = writeExtensionDir(tmp_path / "ext", manifest())
    validator = ManifestValidator()
    good = validator.validateExtension(root, manifest(), sourceUrl="https://chrome.google.com/webstore/detail/" + "b" * 32)
    assert good.storeId == "b" * 32
    bad = validator.validateExtension(root, manifest(), sourceUrl="https://example.org/x")
    assert bad.outcome == ValidationOutcome.DENY
    assert "Invalid Chrome Web Store URL format" in bad.errors


def test_riskLevels():
    assert [riskLevelFor(s) for s in (0, 15, 30, 50)] == ["low", "medium", "high", "critical"]
