# extengine/extensions/registry.py
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from extengine.core.errors import ErrorCode, InputError, StateError
from extengine.core.fsutils import isInside, removeTree
from extengine.core.jsonutils import readJsonSafe, writeJsonAtomic
from extengine.extensions.context import EngineContext
from extengine.extensions.icons import REFRESH_ICON_SIZES, iconUrl, isLegacyIconPath, pickIconSize
from extengine.extensions.locales import resolveManifestStrings
from extengine.extensions.models import ExtensionRecord

__all__ = ["RemovedEntry", "CleanupReport", "ExtensionRegistry", "isPreferredDuplicate"]

logger = logging.getLogger(__name__)



class RemovedEntry(BaseModel):
    id: str
    name: str = ""
    reason: str = "Directory not found"



class CleanupReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    initialCount: int = 0
    finalCount: int = 0
    removedCount: int = 0
    removedExtensions: list[RemovedEntry] = Field(default_factory=list)

    @property
    def initial(self) -> int:
        return self.initialCount

    @property
    def final(self) -> int:
        return self.finalCount

    @property
    def removed(self) -> list[RemovedEntry]:
        return self.removedExtensions



def isPreferredDuplicate(record: ExtensionRecord) -> bool:
    return record.isSystem or record.source == "preinstalled"



class ExtensionRegistry:
    """
    In-memory view of `<base>/extensions.json`, keyed by record id.

    Insertion order is kept so the file stays stable across writes. The
    registry never touches the host; callers decide when to persist.
    """

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self._records: dict[str, ExtensionRecord] = {}

    # ----- Persistence -----

    def load(self) -> list[ExtensionRecord]:
        """
        Reads the registry file and repairs it:
          - drops unparseable records and records whose installedPath is gone
            or outside the base dir
          - fills missing display strings
          - upgrades legacy file:// and chrome-extension:// icon paths
          - dedupes by hostId, keeping system/preinstalled records
        Writes the file back when anything changed.
        """
        raw = readJsonSafe(self.ctx.paths.registryFile, {"extensions": []})
        entries = raw.get("extensions") if isinstance(raw, Mapping) else None
        if not isinstance(entries, list):
            entries = []
        self._records.clear()
        changed = False

        for entry in entries:
            record = self._parseEntry(entry)
            if record is None:
                changed = True
                continue
            if not self._hasValidInstallPath(record):
                logger.info("Removing stale registry entry for '%s' (%s) - directory not found", record.name, record.id)
                changed = True
                continue
            if record.id in self._records:
                logger.warning("Dropping duplicate registry entry for id %s", record.id)
                changed = True
                continue
            changed |= self._repairDisplayStrings(record)
            changed |= self._upgradeLegacyIcon(record)
            self._records[record.id] = record

        changed |= self._dedupeByHostId()
        logger.info("Loaded %d extensions from registry", len(self._records))
        if changed:
            self.write()
        return self.all()

    def write(self) -> None:
        writeJsonAtomic(self.ctx.paths.registryFile, {"extensions": [record.toJson() for record in self._records.values()]})

    def _parseEntry(self, entry: Any) -> ExtensionRecord | None:
        if not isinstance(entry, Mapping):
            logger.warning("Dropping registry entry that is not an object")
            return None
        data = dict(entry)
        # Files written before hostId existed carry the runtime id as electronId
        if "hostId" not in data and isinstance(data.get("electronId"), str):
            data["hostId"] = data.pop("electronId")
        try:
            return ExtensionRecord.model_validate(data)
        except ValidationError as err:
            logger.warning("Dropping unparseable registry entry %s: %d error(s)", data.get("id", "?"), err.error_count())
            return None

    def _hasValidInstallPath(self, record: ExtensionRecord) -> bool:
        path = Path(record.installedPath)
        return path.is_dir() and isInside(self.ctx.paths.base, path) and path.resolve() != self.ctx.paths.base

    def _repairDisplayStrings(self, record: ExtensionRecord) -> bool:
        if record.displayName and record.displayDescription is not None:
            return False
        name, description = resolveManifestStrings(record.installedPath, record.manifest, self.ctx.appLocale, "en")
        record.displayName = record.displayName or name or record.name
        if record.displayDescription is None:
            record.displayDescription = description
        return True

    def _upgradeLegacyIcon(self, record: ExtensionRecord) -> bool:
        if not isLegacyIconPath(record.iconPath):
            return False
        size = pickIconSize(record.manifest.get("icons"), REFRESH_ICON_SIZES)
        if size is None:
            return False
        record.iconPath = iconUrl(record.id, size, record.version, self.ctx.iconScheme)
        return True

    def _dedupeByHostId(self) -> bool:
        winners: dict[str, ExtensionRecord] = {}
        losers: list[ExtensionRecord] = []
        for record in self._records.values():
            if not record.hostId:
                continue
            existing = winners.get(record.hostId)
            if existing is None:
                winners[record.hostId] = record
            elif isPreferredDuplicate(record) and not isPreferredDuplicate(existing):
                winners[record.hostId] = record
                losers.append(existing)
            else:
                losers.append(record)

        for loser in losers:
            self._records.pop(loser.id, None)
            removeTree(self.ctx.paths.extensionRoot(loser.id))
        if losers:
            logger.info("Removed %d duplicate extension entr%s by hostId (kept system/preinstalled)", len(losers), "y" if len(losers) == 1 else "ies")
        return bool(losers)

    # ----- Queries -----

    def get(self, extId: str) -> ExtensionRecord | None:
        return self._records.get(extId)

    def require(self, extId: str) -> ExtensionRecord:
        record = self._records.get(extId)
        if record is None:
            raise InputError(ErrorCode.INVALID_ID, f"Extension {extId} not found")
        return record

    def all(self) -> list[ExtensionRecord]:
        return list(self._records.values())

    def contains(self, extId: str) -> bool:
        return extId in self._records

    def findByHostId(self, hostId: str) -> ExtensionRecord | None:
        if not hostId:
            return None
        for record in self._records.values():
            if record.hostId == hostId:
                return record
        return None

    def findByProvisionalId(self, provisionalId: str) -> ExtensionRecord | None:
        """The record installed under `provisionalId`, also after it was re-keyed."""
        record = self._records.get(provisionalId)
        if record is not None:
            return record
        for record in self._records.values():
            if record.provisionalId == provisionalId:
                return record
        return None

    def __iter__(self) -> Iterator[ExtensionRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    # ----- Mutations -----

    def add(self, record: ExtensionRecord) -> None:
        if record.id in self._records:
            raise StateError(ErrorCode.ALREADY_EXISTS, f"Extension {record.id} is already installed")
        self._records[record.id] = record

    def replace(self, record: ExtensionRecord, *, previousId: str | None = None) -> None:
        """Stores `record`; with `previousId` the old key is dropped (id reconciliation)."""
        if previousId is not None and previousId != record.id:
            self._records.pop(previousId, None)
        self._records[record.id] = record

    def remove(self, extId: str) -> ExtensionRecord | None:
        return self._records.pop(extId, None)

    def validateAndClean(self) -> CleanupReport:
        """Drops records whose installedPath no longer exists and persists when anything was removed."""
        report = CleanupReport(initialCount=len(self._records))
        for record in list(self._records.values()):
            if Path(record.installedPath).exists():
                continue
            logger.info("Removing stale entry: %s (%s)", record.name, record.id)
            report.removedExtensions.append(RemovedEntry(id=record.id, name=record.name))
            del self._records[record.id]
        report.finalCount = len(self._records)
        report.removedCount = len(report.removedExtensions)
        if report.removedExtensions:
            self.write()
        return report
