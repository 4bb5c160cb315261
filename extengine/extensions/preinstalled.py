# extengine/extensions/preinstalled.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import json5
from pydantic import BaseModel, ConfigDict, ValidationError

from extengine.core.errors import ExtensionError
from extengine.core.fsutils import isInside, removeTree
from extengine.extensions.context import EngineContext
from extengine.extensions.ids import deriveId
from extengine.extensions.installers import DirectoryInstaller
from extengine.extensions.manifest_file import findExtensionManifest
from extengine.extensions.registry import ExtensionRegistry
from extengine.extensions.versions import normalizeVersion

__all__ = [
    "PREINSTALLED_FILE_NAME",
    "PreinstalledEntry",
    "PreinstalledReport",
    "readPreinstalledList",
    "installBundledPreinstalled",
]

logger = logging.getLogger(__name__)

PREINSTALLED_FILE_NAME = "preinstalled.json"



class PreinstalledEntry(BaseModel):
    """One line of `preinstalled.json`. `dir` is relative to the bundled directory."""
    model_config = ConfigDict(extra="ignore")

    dir: str
    id: str | None = None
    enabled: bool = True
    privileged: bool = False



@dataclass(slots=True)
class PreinstalledReport:
    imported: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)



def readPreinstalledList(bundledDir: Path | None) -> list[PreinstalledEntry]:
    """Parses `<bundledDir>/preinstalled.json`. A missing or broken file means no bundled extensions."""
    if bundledDir is None:
        return []
    listPath = bundledDir / PREINSTALLED_FILE_NAME
    try:
        data = json5.loads(listPath.read_text(encoding="utf-8-sig"))
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, ValueError) as err:
        logger.warning("Ignoring unreadable %s: %s", PREINSTALLED_FILE_NAME, err)
        return []

    raw = data.get("extensions") if isinstance(data, Mapping) else None
    if not isinstance(raw, list):
        logger.warning("%s has no 'extensions' list", PREINSTALLED_FILE_NAME)
        return []

    entries: list[PreinstalledEntry] = []
    for item in raw:
        try:
            entries.append(PreinstalledEntry.model_validate(item))
        except ValidationError as err:
            logger.warning("Skipping invalid preinstalled entry: %d error(s)", err.error_count())
    return entries



def _resolveEntry(bundledDir: Path, entry: PreinstalledEntry) -> tuple[Path, str, str] | None:
    """(source dir, id, version) for an entry, or None when it cannot be used."""
    srcDir = (bundledDir / entry.dir).resolve()
    if not isInside(bundledDir, srcDir) or not srcDir.is_dir():
        logger.warning("Preinstalled entry '%s' is not a directory inside the bundle", entry.dir)
        return None
    found = findExtensionManifest(srcDir)
    if found is None or not isinstance(found.data, Mapping):
        logger.warning("Preinstalled entry '%s' has no usable manifest", entry.dir)
        return None
    manifest = dict(found.data)
    manifest["version"] = normalizeVersion(manifest.get("version"))
    return srcDir, entry.id or deriveId(manifest), manifest["version"]



def installBundledPreinstalled(ctx: EngineContext, registry: ExtensionRegistry) -> PreinstalledReport:
    """
    Syncs preinstalled records with the bundled list:
      - preinstalled records no longer listed are removed along with their files
      - listed entries that are missing (or shipped at a different version) are
        imported through the directory installer; the user-dir allowlist does
        not apply to the bundle
    Imported records are system records: isSystem, not removable, source "preinstalled".
    Does not persist; the caller writes the registry.
    """
    report = PreinstalledReport()
    bundledDir = ctx.paths.bundledDir
    entries = readPreinstalledList(bundledDir)

    resolved: list[tuple[PreinstalledEntry, Path, str, str]] = []
    if bundledDir is not None:
        for entry in entries:
            info = _resolveEntry(bundledDir, entry)
            if info is not None:
                resolved.append((entry, *info))
    listedIds = {extId for _entry, _src, extId, _version in resolved}

    for record in registry.all():
        if record.source == "preinstalled" and record.id not in listedIds:
            logger.info("Removing preinstalled extension no longer bundled: %s (%s)", record.label, record.id)
            removeTree(ctx.paths.extensionRoot(record.id))
            registry.remove(record.id)
            report.pruned.append(record.id)

    installer = DirectoryInstaller(ctx)
    for entry, srcDir, extId, version in resolved:
        existing = registry.get(extId)
        if existing is not None and existing.source == "preinstalled" and existing.version == version:
            existing.isSystem = True
            existing.removable = False
            existing.privileged = entry.privileged
            continue

        try:
            staged = installer.stage(srcDir)
            record = installer.commit(staged, extId=extId)
        except ExtensionError as err:
            logger.error("Failed to import preinstalled extension '%s': %s", entry.dir, err)
            report.failed.append(extId)
            continue

        record.source = "preinstalled"
        record.isSystem = True
        record.removable = False
        record.privileged = entry.privileged
        record.enabled = entry.enabled if existing is None else existing.enabled
        if existing is not None and existing.installedPath != record.installedPath:
            removeTree(existing.installedPath)
        registry.replace(record)
        report.imported.append(extId)
        logger.info("Imported preinstalled extension '%s' %s as %s", record.label, record.version, extId)

    return report
