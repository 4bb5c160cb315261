# extengine/validation/validator.py
from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from enum import Enum
from os import PathLike
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from extengine.validation.policy import ExtensionPolicy
from extengine.validation.schema import checkManifestStructure
from extengine.validation.webstore_url import parseWebStoreUrl

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationOutcome",
    "ManifestReport",
    "FileReport",
    "ValidationReport",
    "ManifestValidator",
    "riskLevelFor",
    "SAFE_PERMISSIONS",
    "MEDIUM_PERMISSIONS",
]

REQUIRED_FIELDS = ("manifest_version", "name", "version")
VERSION_RE = re.compile(r"^\d+(\.\d+)*$")

# Known permissions that are not listed by the policy
SAFE_PERMISSIONS = frozenset({
    "storage", "alarms", "notifications", "idle", "power",
    "system.cpu", "system.memory", "system.storage",
    "unlimitedStorage", "i18n", "offscreen", "sidePanel",
})
MEDIUM_PERMISSIONS = frozenset({
    "activeTab", "tabs", "bookmarks", "history", "contextMenus", "cookies", "downloads", "webNavigation",
    "scripting", "declarativeNetRequest", "declarativeNetRequestWithHostAccess", "declarativeNetRequestFeedback",
})

BROAD_HOST_PATTERNS = frozenset({"<all_urls>", "*://*/*", "http://*/*", "https://*/*", "file:///*"})
LOCAL_HOST_MARKERS = ("localhost", "127.0.0.1", "0.0.0.0", "*.local")
WILDCARD_HOST_MARKERS = ("*://*/", "*.*")

_DANGEROUS_PREFIX = "Dangerous permission"



class ValidationOutcome(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"



def riskLevelFor(score: int) -> str:
    if score >= 50:
        return "critical"
    if score >= 30:
        return "high"
    if score >= 15:
        return "medium"
    return "low"



class _Report(BaseModel):
    model_config = ConfigDict(extra="forbid")

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def isValid(self) -> bool:
        return not self.errors



class ManifestReport(_Report):
    riskScore: int = 0
    permissionRisk: int = 0
    hostRisk: int = 0
    dangerousPermissions: list[str] = Field(default_factory=list)
    blockedPermissions: list[str] = Field(default_factory=list)

    @property
    def riskLevel(self) -> str:
        return riskLevelFor(self.riskScore)



class FileReport(_Report):
    fileCount: int = 0
    totalBytes: int = 0



class ValidationReport(_Report):
    outcome: ValidationOutcome = ValidationOutcome.ALLOW
    requiresConfirmation: bool = False
    riskScore: int = 0
    riskLevel: str = "low"
    fileCount: int = 0
    totalBytes: int = 0
    storeId: str | None = None



class ManifestValidator:
    """
    Validates extension manifests and unpacked trees against an ExtensionPolicy.

    `validate` looks at the manifest only, `validateFiles` walks a directory,
    and `validateExtension` combines both (plus an optional store URL) into a
    tri-state allow / warn / deny outcome.
    """

    def __init__(self, policy: ExtensionPolicy | None = None) -> None:
        self.policy = policy or ExtensionPolicy.default()

    # ----- Manifest -----

    def validate(self, manifest: Any) -> ManifestReport:
        report = ManifestReport()
        if not isinstance(manifest, Mapping):
            report.errors.append("Manifest must be a valid JSON object")
            return report

        for fieldName in REQUIRED_FIELDS:
            if fieldName not in manifest:
                report.errors.append(f"Required field missing: {fieldName}")

        if self.policy.manifest.requireMV3 and manifest.get("manifest_version") != 3:
            report.errors.append("Only Manifest V3 is supported (manifest_version: 3)")

        report.errors.extend(checkManifestStructure(manifest))

        if "name" in manifest:
            name = manifest.get("name")
            maxLen = self.policy.manifest.maxNameLength
            if not isinstance(name, str) or not name.strip():
                report.errors.append("Name must be a non-empty string")
            elif len(name) > maxLen:
                report.errors.append(f"Name must be {maxLen} characters or less")

        if "version" in manifest:
            version = manifest.get("version")
            if not isinstance(version, str) or not VERSION_RE.match(version):
                report.errors.append("Version must be dot-separated numbers (e.g., 1.0.0)")

        self._checkPermissions(manifest.get("permissions"), report)
        self._checkHostPermissions(manifest.get("host_permissions"), report)
        report.riskScore = report.permissionRisk + report.hostRisk

        self._checkCsp(manifest.get("content_security_policy"), report)

        background = manifest.get("background")
        if isinstance(background, Mapping) and not background.get("service_worker"):
            report.warnings.append("Background scripts should use service_worker in Manifest V3")

        logger.debug(
            "Manifest validation %s for '%s' (risk %d)",
            "passed" if report.isValid else "failed",
            manifest.get("name") if isinstance(manifest.get("name"), str) else "unknown",
            report.riskScore,
        )
        return report

    def _checkPermissions(self, permissions: Any, report: ManifestReport) -> None:
        if not isinstance(permissions, list):
            return # Missing is fine; wrong types are reported by the structural schema
        blocked = set(self.policy.permissions.blocked)
        dangerous = set(self.policy.permissions.dangerous)
        confirmMode = self.policy.behavior.onDangerousPermission == "confirm"

        for permission in permissions:
            if not isinstance(permission, str):
                continue
            if permission in blocked:
                report.errors.append(f"Blocked permission: {permission}")
                report.blockedPermissions.append(permission)
                report.permissionRisk += 60
            elif permission in dangerous:
                if confirmMode:
                    report.warnings.append(f"{_DANGEROUS_PREFIX} (confirmation may be required): {permission}")
                else:
                    report.warnings.append(f"{_DANGEROUS_PREFIX}: {permission}")
                report.dangerousPermissions.append(permission)
                report.permissionRisk += 25
            elif permission in SAFE_PERMISSIONS:
                continue
            elif permission in MEDIUM_PERMISSIONS:
                report.permissionRisk += 5
            else:
                report.warnings.append(f"Unknown or unclassified permission: {permission}")
                report.permissionRisk += 10

    def _checkHostPermissions(self, hostPermissions: Any, report: ManifestReport) -> None:
        if not isinstance(hostPermissions, list):
            return
        for pattern in hostPermissions:
            if not isinstance(pattern, str):
                continue
            if pattern in BROAD_HOST_PATTERNS:
                report.warnings.append(f"High-risk host permission: {pattern} - Broad access pattern - can access any website")
                report.hostRisk += 25
            elif any(marker in pattern for marker in LOCAL_HOST_MARKERS):
                report.warnings.append(f"Medium-risk host permission: {pattern} - Local/internal network access")
                report.hostRisk += 10
            elif any(marker in pattern for marker in WILDCARD_HOST_MARKERS):
                report.warnings.append(f"Medium-risk host permission: {pattern} - Broad wildcard pattern")
                report.hostRisk += 8
            else:
                report.hostRisk += 2

    def _checkCsp(self, csp: Any, report: ManifestReport) -> None:
        if csp is None:
            return
        if isinstance(csp, str):
            report.warnings.append("Legacy string content_security_policy is not supported in Manifest V3")
            return
        if not isinstance(csp, Mapping):
            return
        pages = csp.get("extension_pages")
        if not isinstance(pages, str):
            return
        if "unsafe-eval" in pages:
            report.errors.append("content_security_policy.extension_pages must not allow 'unsafe-eval'")
        for directive in pages.split(";"):
            tokens = directive.split()
            if not tokens or not tokens[0].lower().startswith("script-src"):
                continue
            for source in tokens[1:]:
                if source.lower().startswith(("http:", "https:")):
                    report.errors.append(f"content_security_policy.extension_pages must not allow remote scripts: {source}")

    # ----- Files -----

    def validateFiles(self, root: str | PathLike[str]) -> FileReport:
        """
        Walks an unpacked extension, skipping dot-directories and node_modules.
        Sizes strictly above a threshold trigger it; equal sizes do not.
        """
        rules = self.policy.files
        allowedExts = {ext.lower() for ext in rules.allowedExtensions}
        blockedExts = {ext.lower() for ext in rules.blockedExtensions}
        allowedBases = {base.lower() for base in rules.allowBasenames}
        rootPath = Path(root)
        report = FileReport()
        countWarned = False

        for dirPath, dirNames, fileNames in os.walk(rootPath):
            dirNames[:] = sorted(name for name in dirNames if not name.startswith(".") and name != "node_modules")
            for fileName in sorted(fileNames):
                fullPath = Path(dirPath) / fileName
                relPosix = fullPath.relative_to(rootPath).as_posix()
                report.fileCount += 1

                if report.fileCount > rules.maxTotalFilesBlock:
                    report.errors.append(f"Too many files in extension (max: {rules.maxTotalFilesBlock})")
                    return self._finishTotals(report)
                if report.fileCount > rules.maxTotalFilesWarn and not countWarned:
                    report.warnings.append(f"High file count: {report.fileCount} (warn at {rules.maxTotalFilesWarn})")
                    countWarned = True

                suffix = Path(fileName).suffix.lower()
                base = (fileName[: -len(suffix)] if suffix else fileName).lower()
                if suffix in blockedExts:
                    report.errors.append(f"Blocked file type: {relPosix}")
                elif any(pattern in relPosix for pattern in rules.blockedPatterns):
                    report.errors.append(f"Blocked file pattern: {relPosix}")
                elif rules.warnUnknownExtensions and suffix not in allowedExts and base not in allowedBases:
                    report.warnings.append(f"Unknown file type: {relPosix}")

                try:
                    size = fullPath.lstat().st_size
                except OSError as err:
                    report.errors.append(f"Cannot read file: {relPosix} ({err.strerror or err})")
                    continue
                report.totalBytes += size
                if size > rules.maxFileSizeBlock:
                    report.errors.append(f"File too large: {relPosix} ({size} bytes, max: {rules.maxFileSizeBlock})")
                elif size > rules.maxFileSizeWarn:
                    report.warnings.append(f"Large file: {relPosix} ({size} bytes)")

        return self._finishTotals(report)

    def _finishTotals(self, report: FileReport) -> FileReport:
        rules = self.policy.files
        if report.totalBytes > rules.maxTotalBytesBlock:
            report.errors.append(f"Extension too large: {report.totalBytes} bytes (max: {rules.maxTotalBytesBlock})")
        elif report.totalBytes > rules.maxTotalBytesWarn:
            report.warnings.append(f"Large extension size: {report.totalBytes} bytes (warn at {rules.maxTotalBytesWarn})")
        return report

    # ----- Combined -----

    def validateManifestOnly(self, manifest: Any) -> ValidationReport:
        return self.decide(self.validate(manifest))

    def validateExtension(
        self,
        root: str | PathLike[str],
        manifest: Any,
        *,
        sourceUrl: str | None = None,
        local: bool = False,
    ) -> ValidationReport:
        manifestReport = self.validate(manifest)
        fileReport = self.validateFiles(root)
        storeId: str | None = None
        urlError: str | None = None
        if sourceUrl:
            storeId = parseWebStoreUrl(sourceUrl)
            if storeId is None:
                urlError = "Invalid Chrome Web Store URL format"
        report = self.decide(manifestReport, fileReport, urlError=urlError, local=local)
        report.storeId = storeId
        logger.info(
            "Validation for '%s': outcome=%s risk=%d files=%d",
            manifest.get("name") if isinstance(manifest, Mapping) else "unknown",
            report.outcome.value,
            report.riskScore,
            report.fileCount,
        )
        return report

    def decide(
        self,
        manifestReport: ManifestReport,
        fileReport: FileReport | None = None,
        *,
        urlError: str | None = None,
        local: bool = False,
    ) -> ValidationReport:
        """
        deny  - any error, or warnings when onWarn is "deny", or warnings on a
                local archive under strictForLocalZips
        warn  - warnings only; requiresConfirmation when a dangerous permission
                is present and onDangerousPermission is "confirm"
        allow - nothing to report
        """
        errors = list(manifestReport.errors)
        warnings = list(manifestReport.warnings)
        if fileReport is not None:
            errors.extend(fileReport.errors)
            warnings.extend(fileReport.warnings)
        if urlError:
            errors.append(urlError)

        behavior = self.policy.behavior
        requiresConfirmation = False
        if errors:
            outcome = ValidationOutcome.DENY
        elif warnings and behavior.onWarn == "deny":
            outcome = ValidationOutcome.DENY
        elif warnings and behavior.strictForLocalZips and local:
            outcome = ValidationOutcome.DENY
        elif warnings:
            outcome = ValidationOutcome.WARN
            requiresConfirmation = behavior.onDangerousPermission == "confirm" and bool(manifestReport.dangerousPermissions)
        else:
            outcome = ValidationOutcome.ALLOW

        return ValidationReport(
            errors=errors,
            warnings=warnings,
            outcome=outcome,
            requiresConfirmation=requiresConfirmation,
            riskScore=manifestReport.riskScore,
            riskLevel=manifestReport.riskLevel,
            fileCount=fileReport.fileCount if fileReport is not None else 0,
            totalBytes=fileReport.totalBytes if fileReport is not None else 0,
        )
