# extengine/extensions/installers/base.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any

from extengine.core.errors import ErrorCode, FilesystemError
from extengine.core.fsutils import atomicReplaceDir, copyTree, ensureDir, makeStagingDir, removeTree
from extengine.core.time import nowIso
from extengine.extensions.context import EngineContext
from extengine.extensions.icons import iconUrl, pickIconSize
from extengine.extensions.locales import resolveManifestStrings
from extengine.extensions.manifest_file import MANIFEST_FILE_NAME
from extengine.extensions.models import ExtensionRecord, ExtensionSource
from extengine.extensions.versions import versionDirName
from extengine.validation.validator import ValidationOutcome, ValidationReport

__all__ = ["StagedExtension", "Installer", "findMissingFiles", "writeCanonicalManifest"]

logger = logging.getLogger(__name__)



@dataclass(slots=True)
class StagedExtension:
    """An extension unpacked under `_staging/` and validated, not yet owned by any id root."""
    stagingDir: Path
    contentDir: Path
    manifest: dict[str, Any]
    provisionalId: str
    version: str
    source: ExtensionSource
    validation: ValidationReport
    publicKey: str | None = None
    sourceName: str = ""
    extraWarnings: list[str] = field(default_factory=list)

    @property
    def denied(self) -> bool:
        return self.validation.outcome == ValidationOutcome.DENY

    @property
    def name(self) -> str:
        name = self.manifest.get("name")
        return name if isinstance(name, str) else ""



def writeCanonicalManifest(targetDir: str | PathLike[str], manifest: Mapping[str, Any]) -> None:
    Path(targetDir, MANIFEST_FILE_NAME).write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")



def _asStrings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []



def findMissingFiles(root: str | PathLike[str], manifest: Mapping[str, Any]) -> list[str]:
    """
    Relative paths referenced by the manifest that are missing under `root`:
    icons, the service worker, content-script js/css, and toolbar popups.
    """
    rootPath = Path(root)
    referenced: list[str] = []

    icons = manifest.get("icons")
    if isinstance(icons, Mapping):
        referenced.extend(_asStrings(list(icons.values())))

    background = manifest.get("background")
    if isinstance(background, Mapping):
        referenced.extend(_asStrings(background.get("service_worker")))

    contentScripts = manifest.get("content_scripts")
    if isinstance(contentScripts, list):
        for entry in contentScripts:
            if isinstance(entry, Mapping):
                referenced.extend(_asStrings(entry.get("js")))
                referenced.extend(_asStrings(entry.get("css")))

    for actionKey in ("action", "browser_action"):
        action = manifest.get(actionKey)
        if isinstance(action, Mapping):
            referenced.extend(_asStrings(action.get("default_popup")))

    missing: list[str] = []
    for rel in referenced:
        rel = rel.strip()
        if not rel or rel in missing:
            continue
        if not (rootPath / rel.lstrip("/")).exists():
            missing.append(rel)
    return missing



class Installer:
    """
    Two-phase installer.

    `stage()` unpacks and validates a source under `<base>/_staging/` without
    touching any id root. `commit()` moves the staged tree into
    `<base>/<id>/<version>_0` and builds the record. `discard()` drops the
    staging directory. Staging is removed on every failure path.
    """
    source: ExtensionSource = "unpacked"

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    # ----- Phase 1 -----

    def stage(self, sourcePath: str | PathLike[str]) -> StagedExtension:
        raise NotImplementedError

    def newStagingDir(self, prefix: str) -> Path:
        try:
            return makeStagingDir(self.ctx.paths.base, prefix)
        except OSError as err:
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Cannot create staging directory: {err.strerror or err}") from err

    def discard(self, staged: StagedExtension) -> None:
        if staged.stagingDir.exists():
            removeTree(staged.stagingDir)

    # ----- Phase 2 -----

    def placeIntoTarget(self, staged: StagedExtension, target: Path) -> None:
        """Default placement: copy into `_staging/pkg-*`, then atomic replace."""
        packageDir = self.newStagingDir("pkg")
        try:
            copyTree(staged.contentDir, packageDir)
            atomicReplaceDir(packageDir, target)
        except BaseException:
            removeTree(packageDir)
            raise

    def commit(self, staged: StagedExtension, *, extId: str | None = None) -> ExtensionRecord:
        """
        Moves the staged tree to `<base>/<id>/<version>_0` and returns the new
        record. `extId` overrides the provisional id (preinstalled entries).
        """
        finalId = extId or staged.provisionalId
        target = self.ctx.paths.extensionRoot(finalId) / versionDirName(staged.version)
        try:
            ensureDir(target.parent)
            self.placeIntoTarget(staged, target)
        except OSError as err:
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Failed to install extension files: {err.strerror or err}") from err
        finally:
            self.discard(staged)

        record = self.buildRecord(staged, finalId, target)
        logger.info("Installed '%s' %s as %s (%s)", record.label, record.version, finalId, record.source)
        return record

    def buildRecord(self, staged: StagedExtension, extId: str, target: Path) -> ExtensionRecord:
        manifest = staged.manifest
        displayName, displayDescription = resolveManifestStrings(target, manifest, self.ctx.appLocale, "en")

        warnings = list(staged.validation.warnings) + list(staged.extraWarnings)
        missing = findMissingFiles(target, manifest)
        if missing:
            logger.warning("'%s' references %d missing file(s)", staged.name or extId, len(missing))
            warnings.extend(f"Missing file: {rel}" for rel in missing[: self.ctx.maxMissingFileWarnings])

        iconSize = pickIconSize(manifest.get("icons"))
        permissions = manifest.get("permissions")
        description = manifest.get("description")
        return ExtensionRecord(
            id=extId,
            name=staged.name,
            version=staged.version,
            description=description if isinstance(description, str) else "",
            displayName=displayName or staged.name,
            displayDescription=displayDescription,
            manifest=dict(manifest),
            installedPath=str(target),
            source=staged.source,
            enabled=True,
            iconPath=iconUrl(extId, iconSize, staged.version, self.ctx.iconScheme) if iconSize else None,
            warnings=warnings,
            riskScore=staged.validation.riskScore,
            installDate=nowIso(),
            permissions=[item for item in permissions if isinstance(item, str)] if isinstance(permissions, list) else [],
            publicKey=staged.publicKey,
        )
