# extengine/validation/policy.py
from __future__ import annotations

import logging
from os import PathLike
from pathlib import Path
from typing import Any, Literal

import json5
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from extengine.core.config_stack import mergeWithStrategy

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_POLICY",
    "POLICY_FILE_NAME",
    "ManifestPolicy",
    "FilePolicy",
    "PermissionPolicy",
    "BehaviorPolicy",
    "ExtensionPolicy",
    "loadPolicy",
    "mergePolicy",
]

POLICY_FILE_NAME = "policy.json"

MiB = 1024 * 1024

DEFAULT_POLICY: dict[str, Any] = {
    "manifest": {
        "requireMV3": True,
        "maxNameLength": 75,
    },
    "files": {
        "allowedExtensions": [
            ".js", ".mjs", ".json", ".html", ".css", ".map",
            ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".avif", ".bmp",
            ".woff", ".woff2", ".ttf", ".otf", ".eot", ".ico",
            ".md", ".txt", ".license", ".licence", ".wasm",
        ],
        "blockedExtensions": [
            ".exe", ".dll", ".dylib", ".so", ".bat", ".cmd", ".ps1", ".vbs", ".jar", ".pkg", ".dmg", ".bin", ".msi",
        ],
        # Plain substrings matched against the POSIX relative path
        "blockedPatterns": ["node_modules/.bin/"],
        "allowBasenames": ["license", "licence", "copying", "notice", "readme", "changes", "changelog", "authors"],
        "warnUnknownExtensions": True,
        "maxFileSizeWarn": 20 * MiB,
        "maxFileSizeBlock": 60 * MiB,
        "maxTotalFilesWarn": 10000,
        "maxTotalFilesBlock": 50000,
        "maxTotalBytesWarn": 200 * MiB,
        "maxTotalBytesBlock": 750 * MiB,
    },
    "permissions": {
        "blocked": ["nativeMessaging", "debugger", "desktopCapture", "fileSystem", "fileSystemProvider"],
        "dangerous": ["<all_urls>", "webRequest", "webRequestBlocking", "proxy", "privacy", "enterprise.platformKeys"],
    },
    "behavior": {
        "onWarn": "allow",
        "onDangerousPermission": "warn",
        "onBlocked": "deny",
        "strictForLocalZips": False,
    },
}



class _PolicySection(BaseModel):
    # Unknown keys are ignored so newer policy files still load
    model_config = ConfigDict(extra="ignore", frozen=True)



class ManifestPolicy(_PolicySection):
    requireMV3: bool = True
    maxNameLength: int = Field(default=75, ge=1)



class FilePolicy(_PolicySection):
    allowedExtensions: list[str] = Field(default_factory=list)
    blockedExtensions: list[str] = Field(default_factory=list)
    blockedPatterns: list[str] = Field(default_factory=list)
    allowBasenames: list[str] = Field(default_factory=list)
    warnUnknownExtensions: bool = True
    maxFileSizeWarn: int = Field(default=20 * MiB, ge=0)
    maxFileSizeBlock: int = Field(default=60 * MiB, ge=0)
    maxTotalFilesWarn: int = Field(default=10000, ge=0)
    maxTotalFilesBlock: int = Field(default=50000, ge=0)
    maxTotalBytesWarn: int = Field(default=200 * MiB, ge=0)
    maxTotalBytesBlock: int = Field(default=750 * MiB, ge=0)



class PermissionPolicy(_PolicySection):
    blocked: list[str] = Field(default_factory=list)
    dangerous: list[str] = Field(default_factory=list)



class BehaviorPolicy(_PolicySection):
    onWarn: Literal["allow", "deny"] = "allow"
    onDangerousPermission: Literal["warn", "confirm"] = "warn"
    onBlocked: Literal["deny"] = "deny"
    strictForLocalZips: bool = False



class ExtensionPolicy(_PolicySection):
    """Install-time rules for manifests, files and permissions."""
    manifest: ManifestPolicy = Field(default_factory=ManifestPolicy)
    files: FilePolicy = Field(default_factory=FilePolicy)
    permissions: PermissionPolicy = Field(default_factory=PermissionPolicy)
    behavior: BehaviorPolicy = Field(default_factory=BehaviorPolicy)

    @classmethod
    def default(cls) -> "ExtensionPolicy":
        return cls.model_validate(DEFAULT_POLICY)



def mergePolicy(overrides: dict[str, Any] | None = None) -> ExtensionPolicy:
    """
    Deep-merges `overrides` over DEFAULT_POLICY (arrays replace) and validates the result.
    Raises pydantic.ValidationError for invalid values.
    """
    # Lists replace by default, which is what policy overrides want
    merged = mergeWithStrategy(DEFAULT_POLICY, dict(overrides or {}))
    return ExtensionPolicy.model_validate(merged)



def loadPolicy(base: str | PathLike[str]) -> ExtensionPolicy:
    """
    Reads `<base>/policy.json` (JSON5 tolerated) over the defaults.
    A missing file yields the defaults; an unreadable or invalid one does too, with a warning.
    """
    policyPath = Path(base) / POLICY_FILE_NAME
    if not policyPath.is_file():
        return ExtensionPolicy.default()

    try:
        raw = json5.loads(policyPath.read_text(encoding="utf-8"))
    except (OSError, ValueError) as err:
        logger.warning("Could not read %s (%s); using default policy", POLICY_FILE_NAME, err)
        return ExtensionPolicy.default()

    if not isinstance(raw, dict):
        logger.warning("%s must contain a JSON object; using default policy", POLICY_FILE_NAME)
        return ExtensionPolicy.default()

    try:
        policy = mergePolicy(raw)
    except ValidationError as err:
        logger.warning("Invalid %s (%d problems); using default policy", POLICY_FILE_NAME, err.error_count())
        return ExtensionPolicy.default()

    logger.info("Loaded extension policy overrides from %s", POLICY_FILE_NAME)
    return policy
