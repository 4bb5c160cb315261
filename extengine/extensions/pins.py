# extengine/extensions/pins.py
from __future__ import annotations

import logging
from collections.abc import Mapping

from extengine.core.errors import ErrorCode, InputError, StateError
from extengine.core.jsonutils import readJsonSafe, writeJsonAtomic
from extengine.extensions.context import EngineContext
from extengine.extensions.models import ExtensionRecord, hasToolbarAction
from extengine.extensions.registry import ExtensionRegistry

__all__ = ["PinService", "isPinEligible"]

logger = logging.getLogger(__name__)



def isPinEligible(record: ExtensionRecord | None) -> bool:
    return record is not None and record.enabled and hasToolbarAction(record.manifest)



class PinService:
    """Ordered toolbar pin list stored in `<base>/pinned.json`."""

    def __init__(self, ctx: EngineContext, registry: ExtensionRegistry) -> None:
        self.ctx = ctx
        self.registry = registry

    @property
    def capacity(self) -> int:
        return self.ctx.pinCapacity

    def _read(self) -> list[str]:
        data = readJsonSafe(self.ctx.paths.pinnedFile, {"pinnedExtensions": []})
        pinned = data.get("pinnedExtensions") if isinstance(data, Mapping) else None
        if not isinstance(pinned, list):
            return []
        out: list[str] = []
        for extId in pinned:
            if isinstance(extId, str) and extId not in out:
                out.append(extId)
        return out

    def _write(self, pinned: list[str]) -> None:
        writeJsonAtomic(self.ctx.paths.pinnedFile, {"pinnedExtensions": pinned})

    def getPinned(self) -> list[str]:
        """Pinned ids that are still installed, enabled and have a toolbar action."""
        return [extId for extId in self._read() if isPinEligible(self.registry.get(extId))][: self.capacity]

    def pin(self, extId: str) -> bool:
        record = self.registry.get(extId)
        if record is None:
            raise InputError(ErrorCode.INVALID_ID, f"Extension {extId} not found")
        if not record.enabled:
            raise StateError(ErrorCode.INVALID_STATE, "Cannot pin a disabled extension")
        if not hasToolbarAction(record.manifest):
            raise StateError(ErrorCode.INVALID_STATE, "Extension has no toolbar action")

        pinned = self.getPinned()
        if extId in pinned:
            return True
        if len(pinned) >= self.capacity:
            raise StateError(ErrorCode.PIN_LIMIT, f"Maximum {self.capacity} extensions can be pinned")
        pinned.append(extId)
        self._write(pinned)
        logger.debug("Pinned %s (%d/%d)", extId, len(pinned), self.capacity)
        return True

    def unpin(self, extId: str) -> bool:
        pinned = self._read()
        if extId not in pinned:
            return False
        pinned.remove(extId)
        self._write(pinned)
        return True

    def removeIfPresent(self, extId: str) -> None:
        if self.unpin(extId):
            logger.debug("Removed %s from pinned extensions", extId)

    def prune(self) -> list[str]:
        """Drops ids that are no longer eligible and persists the result when it changed."""
        stored = self._read()
        kept = self.getPinned()
        if kept != stored:
            self._write(kept)
            logger.info("Pruned %d pinned extension(s)", len(stored) - len(kept))
        return kept

    def autoPin(self, extId: str) -> bool:
        """Pins when eligible and a slot is free. Never raises for ineligible ids."""
        if not isPinEligible(self.registry.get(extId)):
            return False
        pinned = self.getPinned()
        if extId in pinned:
            return True
        if len(pinned) >= self.capacity:
            return False
        pinned.append(extId)
        self._write(pinned)
        return True
