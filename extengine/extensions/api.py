# extengine/extensions/api.py
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from extengine.app.globals import configBool
from extengine.core.errors import ErrorCode, ExtensionError, InputError, errorCodeOf
from extengine.core.hashing import shortPathHash
from extengine.core.paths import DEFAULT_ALLOWED_USER_DIRS, validateInstallSource
from extengine.extensions.actions import AnchorRect, BrowserActionService
from extengine.extensions.coordinator import LifecycleCoordinator
from extengine.extensions.host import BrowserWindow
from extengine.extensions.icons import iconUrl, normalizeIconRequestSize
from extengine.extensions.popups import PopupTracker
from extengine.extensions.ratelimit import InstallRateLimiter
from extengine.extensions.tabs import TabRegistry
from extengine.extensions.uploads import UploadService

__all__ = ["ExtensionsApi", "describeSourcePath"]

logger = logging.getLogger(__name__)

Envelope = dict[str, Any]

_INSTALL_EMPTY: Envelope = {"extension": None, "warnings": []}
_UPDATE_EMPTY: Envelope = {"updated": [], "skipped": [], "errors": []}



def describeSourcePath(path: Any) -> str:
    """Log-safe form of a user path: basename plus a short hash, unless full paths are enabled."""
    if not isinstance(path, str) or not path:
        return "<invalid>"
    if configBool("debug.logFullPaths", False) or os.environ.get("DEBUG_EXT") == "1":
        return path
    return f"{Path(path).name} [{shortPathHash(os.path.realpath(path))}]"



def _requireId(extId: Any) -> str:
    if not isinstance(extId, str) or not extId.strip():
        raise InputError(ErrorCode.INVALID_ID, "Extension id must be a non-empty string")
    return extId



class ExtensionsApi:
    """
    Caller-facing surface. Every method returns a plain dict:
      success -> {"success": True, ...payload}
      failure -> {"success": False, "code": "E_...", "error": "...", ...emptyPayload}
    Nothing raises out of here.
    """

    def __init__(
        self,
        coordinator: LifecycleCoordinator,
        actions: BrowserActionService,
        popups: PopupTracker,
        tabs: TabRegistry,
        uploads: UploadService,
        limiter: InstallRateLimiter,
        *,
        allowedUserDirs: Iterable[str] = DEFAULT_ALLOWED_USER_DIRS,
        home: str | os.PathLike[str] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.actions = actions
        self.popups = popups
        self.tabs = tabs
        self.uploads = uploads
        self.limiter = limiter
        self.allowedUserDirs = tuple(allowedUserDirs)
        self.home = home

    async def _envelope(self, action: str, fn: Callable[[], Awaitable[Envelope]], empty: Envelope | None = None) -> Envelope:
        try:
            payload = await fn()
        except ExtensionError as err:
            logger.warning("extensions.%s failed [%s]: %s", action, err.code.value, err.message)
            return {"success": False, **(empty or {}), **err.toDict()}
        except Exception as err:
            logger.exception("extensions.%s crashed", action)
            return {"success": False, **(empty or {}), "code": errorCodeOf(err), "error": str(err) or type(err).__name__}
        return {"success": True, **payload}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def list(self) -> Envelope:
        async def _run() -> Envelope:
            return {"extensions": [record.toJson() for record in await self.coordinator.list()]}
        return await self._envelope("list", _run, {"extensions": []})

    async def install(self, senderId: Any, sourcePath: Any) -> Envelope:
        async def _run() -> Envelope:
            self.limiter.check(senderId)
            logger.info("Install requested for %s", describeSourcePath(sourcePath))
            realPath = validateInstallSource(sourcePath, home=self.home, allowedUserDirs=self.allowedUserDirs)
            result = await self.coordinator.install(realPath)
            return result.toDict()
        return await self._envelope("install", _run, _INSTALL_EMPTY)

    async def installFromStore(self, urlOrId: Any) -> Envelope:
        async def _run() -> Envelope:
            if not isinstance(urlOrId, str) or not urlOrId.strip():
                raise InputError(ErrorCode.INVALID_URL, "URL or extension id must be a non-empty string")
            result = await self.coordinator.installFromStore(urlOrId.strip())
            return result.toDict()
        return await self._envelope("installFromStore", _run, _INSTALL_EMPTY)

    async def toggle(self, extId: Any, enabled: Any) -> Envelope:
        async def _run() -> Envelope:
            if not isinstance(enabled, bool):
                raise InputError(ErrorCode.INVALID_ID, "enabled must be a boolean")
            record = await self.coordinator.toggle(_requireId(extId), enabled)
            return {"extension": record.toJson()}
        return await self._envelope("toggle", _run, {"extension": None})

    async def uninstall(self, extId: Any) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.uninstall(_requireId(extId))
            return {}
        return await self._envelope("uninstall", _run)

    async def updateAll(self) -> Envelope:
        async def _run() -> Envelope:
            return (await self.coordinator.update()).toDict()
        return await self._envelope("updateAll", _run, _UPDATE_EMPTY)

    async def getInfo(self, extId: Any) -> Envelope:
        async def _run() -> Envelope:
            record = await self.coordinator.getInfo(_requireId(extId))
            return {"extension": record.toJson()}
        return await self._envelope("getInfo", _run, {"extension": None})

    async def getIconUrl(self, extId: Any, size: Any = None) -> Envelope:
        async def _run() -> Envelope:
            record = await self.coordinator.getInfo(_requireId(extId))
            scheme = self.coordinator.ctx.iconScheme
            return {"iconUrl": iconUrl(record.id, normalizeIconRequestSize(size), record.version, scheme)}
        return await self._envelope("getIconUrl", _run, {"iconUrl": None})

    async def validateAndCleanRegistry(self) -> Envelope:
        async def _run() -> Envelope:
            report = await self.coordinator.validateAndCleanRegistry()
            return {
                "initial": report.initial,
                "final": report.final,
                "removed": [entry.model_dump() for entry in report.removed],
            }
        return await self._envelope("validateAndCleanRegistry", _run, {"initial": 0, "final": 0, "removed": []})

    async def status(self) -> Envelope:
        async def _run() -> Envelope:
            return self.coordinator.status()
        return await self._envelope("status", _run)

    # ------------------------------------------------------------------ #
    # Pins
    # ------------------------------------------------------------------ #

    async def getPinned(self) -> Envelope:
        async def _run() -> Envelope:
            return {"pinned": await self.coordinator.getPinned()}
        return await self._envelope("getPinned", _run, {"pinned": []})

    async def pin(self, extId: Any) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.pin(_requireId(extId))
            return {"pinned": await self.coordinator.getPinned()}
        return await self._envelope("pin", _run, {"pinned": []})

    async def unpin(self, extId: Any) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.unpin(_requireId(extId))
            return {"pinned": await self.coordinator.getPinned()}
        return await self._envelope("unpin", _run, {"pinned": []})

    # ------------------------------------------------------------------ #
    # Toolbar, popups, tabs
    # ------------------------------------------------------------------ #

    async def listBrowserActions(self, window: BrowserWindow | None = None) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.initialize()
            return {"actions": self.actions.list(window)}
        return await self._envelope("listBrowserActions", _run, {"actions": []})

    async def clickBrowserAction(self, extId: Any, window: BrowserWindow | None = None) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.initialize()
            return (await self.actions.click(_requireId(extId), window)).toDict()
        return await self._envelope("clickBrowserAction", _run, {"dispatched": False, "method": None})

    async def openBrowserActionPopup(self, extId: Any, window: BrowserWindow, anchorRect: Any = None) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.initialize()
            result = await self.actions.openPopup(_requireId(extId), window, AnchorRect.fromPayload(anchorRect))
            return result.toDict()
        return await self._envelope("openBrowserActionPopup", _run, {"opened": False, "url": None})

    async def closeAllPopups(self, force: bool = False) -> Envelope:
        async def _run() -> Envelope:
            return {"closed": self.popups.closeAll(force=bool(force))}
        return await self._envelope("closeAllPopups", _run, {"closed": 0})

    async def registerTab(self, hostWcId: Any, tabWcId: Any) -> Envelope:
        async def _run() -> Envelope:
            self.tabs.registerTab(hostWcId, tabWcId)
            return {}
        return await self._envelope("registerTab", _run)

    async def unregisterTab(self, tabWcId: Any) -> Envelope:
        async def _run() -> Envelope:
            return {"removed": self.tabs.unregisterTab(tabWcId)}
        return await self._envelope("unregisterTab", _run, {"removed": False})

    # ------------------------------------------------------------------ #
    # Uploads
    # ------------------------------------------------------------------ #

    async def saveUpload(self, name: Any, data: Any) -> Envelope:
        async def _run() -> Envelope:
            await self.coordinator.initialize()
            return {"path": str(self.uploads.save(name, data))}
        return await self._envelope("saveUpload", _run, {"path": None})

    async def installUpload(self, senderId: Any, name: Any, data: Any) -> Envelope:
        """Saves an uploaded archive, installs it and removes the upload either way."""
        async def _run() -> Envelope:
            self.limiter.check(senderId)
            # initialize() sweeps _uploads
            await self.coordinator.initialize()
            saved = self.uploads.save(name, data)
            try:
                result = await self.coordinator.install(saved)
            finally:
                self.uploads.discard(saved)
            return result.toDict()
        return await self._envelope("installUpload", _run, _INSTALL_EMPTY)
