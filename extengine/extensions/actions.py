# extengine/extensions/actions.py
from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from extengine.core.errors import ErrorCode, InputError, StateError
from extengine.extensions.context import EngineContext
from extengine.extensions.host import (
    UNSUPPORTED,
    Activate,
    ActiveTab,
    BrowserWindow,
    Click,
    HostCommandRunner,
    OpenPopup,
    PopupHandle,
    PopupSpec,
    PopupWindowFactory,
    Rect,
    SetActiveTab,
    Trigger,
    WindowOpenDecision,
)
from extengine.extensions.icons import iconUrl, pickIconSize
from extengine.extensions.models import ExtensionRecord, hasToolbarAction
from extengine.extensions.popups import PopupTracker
from extengine.extensions.registry import ExtensionRegistry
from extengine.extensions.tabs import TabRegistry

__all__ = [
    "DEFAULT_BADGE_COLOR",
    "POPUP_FALLBACK_CANDIDATES",
    "EXTERNAL_URL_RE",
    "AnchorRect",
    "ClickResult",
    "PopupResult",
    "resolvePopupPath",
    "BrowserActionService",
]

logger = logging.getLogger(__name__)

DEFAULT_BADGE_COLOR = "#666"
POPUP_FALLBACK_CANDIDATES: tuple[str, ...] = (
    "popup.html",
    "popup/index.html",
    "ui/popup.html",
    "dist/popup.html",
    "build/popup.html",
)
POPUP_SEARCH_DEPTH = 2
EXTERNAL_URL_RE = re.compile(r"^(https?:|ipfs:|ipns:|hyper:|web3:)", re.IGNORECASE)

_ANCHOR_DEFAULTS: dict[str, float] = {
    "x": 100, "y": 40, "width": 20, "height": 20,
    "left": 100, "top": 40, "right": 120, "bottom": 60,
}



@dataclass(slots=True, frozen=True)
class AnchorRect:
    """Toolbar button rectangle, relative to the main window's content."""
    x: float = 100
    y: float = 40
    width: float = 20
    height: float = 20
    left: float = 100
    top: float = 40
    right: float = 120
    bottom: float = 60

    @classmethod
    def fromPayload(cls, payload: Any) -> "AnchorRect":
        """Each field falls back to its default unless it is a finite number."""
        data = payload if isinstance(payload, dict) else {}
        values: dict[str, float] = {}
        for key, default in _ANCHOR_DEFAULTS.items():
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                value = default
            values[key] = value
        return cls(**values)



@dataclass(slots=True, frozen=True)
class ClickResult:
    dispatched: bool
    method: str | None = None

    def toDict(self) -> dict[str, Any]:
        return {"dispatched": self.dispatched, "method": self.method}



@dataclass(slots=True, frozen=True)
class PopupResult:
    opened: bool
    url: str | None = None
    click: ClickResult | None = None

    def toDict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"opened": self.opened, "url": self.url}
        if self.click is not None:
            out["click"] = self.click.toDict()
        return out



def _actionOf(manifest: dict[str, Any]) -> dict[str, Any]:
    for key in ("action", "browser_action"):
        value = manifest.get(key)
        if isinstance(value, dict):
            return value
    return {}



def _searchByName(root: Path, fileName: str, depth: int) -> Path | None:
    """Breadth-first filename search below `root`, skipping dot directories."""
    level = [root]
    for _ in range(depth + 1):
        nextLevel: list[Path] = []
        for directory in level:
            try:
                entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
            except OSError:
                continue
            for entry in entries:
                if entry.is_file(follow_symlinks=False) and entry.name == fileName:
                    return Path(entry.path)
                if entry.is_dir(follow_symlinks=False) and not entry.name.startswith("."):
                    nextLevel.append(Path(entry.path))
        level = nextLevel
    return None



def resolvePopupPath(root: str | os.PathLike[str], declared: str) -> str | None:
    """
    Finds the popup page inside an installed extension and returns its path
    relative to the root in URL form. Tries the declared path, the usual
    locations, then a shallow search by file name.
    """
    rootPath = Path(root)
    cleaned = declared.strip().lstrip("/")
    candidates = [cleaned] if cleaned else []
    candidates.extend(name for name in POPUP_FALLBACK_CANDIDATES if name not in candidates)

    for candidate in candidates:
        parts = PurePosixPath(candidate).parts
        if ".." in parts:
            continue
        if (rootPath / Path(*parts)).is_file():
            return PurePosixPath(*parts).as_posix()

    fileName = PurePosixPath(cleaned).name if cleaned else "popup.html"
    found = _searchByName(rootPath, fileName, POPUP_SEARCH_DEPTH)
    if found is None:
        return None
    return found.relative_to(rootPath).as_posix()



class BrowserActionService:
    """Toolbar rows, clicks and popup windows for extensions with an action."""

    def __init__(
        self,
        ctx: EngineContext,
        registry: ExtensionRegistry,
        runner: HostCommandRunner,
        popups: PopupTracker,
        tabs: TabRegistry,
        *,
        popupFactory: PopupWindowFactory | None = None,
        popupWidth: int = 400,
        popupHeight: int = 600,
        anchorOffsetY: int = 38,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.runner = runner
        self.popups = popups
        self.tabs = tabs
        self.popupFactory = popupFactory
        self.popupWidth = popupWidth
        self.popupHeight = popupHeight
        self.anchorOffsetY = anchorOffsetY

    # ------------------------------------------------------------------ #
    # Rows
    # ------------------------------------------------------------------ #

    def list(self, window: BrowserWindow | None = None) -> list[dict[str, Any]]:
        """Rows for enabled extensions with a toolbar action, host state applied."""
        state = self.runner.actionState()
        rows: list[dict[str, Any]] = []
        for record in sorted(self.registry.all(), key=lambda item: item.label.casefold()):
            if not record.enabled or not hasToolbarAction(record.manifest):
                continue
            action = _actionOf(record.manifest)
            title = action.get("default_title")
            popup = action.get("default_popup")
            row: dict[str, Any] = {
                "id": record.id,
                "hostId": record.hostId,
                "name": record.label,
                "title": title if isinstance(title, str) and title else record.label,
                "icon": self._actionIcon(record, action),
                "popup": popup if isinstance(popup, str) and popup else None,
                "badgeText": "",
                "badgeBackgroundColor": DEFAULT_BADGE_COLOR,
                "enabled": record.enabled,
                "hasAction": True,
            }
            override = state.effective(record.hostId or record.id) if state is not None else None
            if override is not None:
                if override.text is not None:
                    row["badgeText"] = override.text
                if override.color:
                    row["badgeBackgroundColor"] = override.color
                if override.title:
                    row["title"] = override.title
                if override.popup is not None:
                    row["popup"] = override.popup or None
            rows.append(row)
        return rows

    def _actionIcon(self, record: ExtensionRecord, action: dict[str, Any]) -> str | None:
        size = pickIconSize(action.get("default_icon"))
        if size:
            return iconUrl(record.id, size, record.version, self.ctx.iconScheme)
        return record.iconPath

    def _requireActionRecord(self, extId: str) -> ExtensionRecord:
        record = self.registry.get(extId) if isinstance(extId, str) else None
        if record is None or not record.enabled:
            raise InputError(ErrorCode.INVALID_ID, f"Extension {extId} not found or disabled")
        if not hasToolbarAction(record.manifest):
            raise StateError(ErrorCode.INVALID_STATE, "Extension has no toolbar action")
        return record

    # ------------------------------------------------------------------ #
    # Click
    # ------------------------------------------------------------------ #

    async def _activeTab(self, window: BrowserWindow | None) -> ActiveTab | None:
        if window is None or window.isDestroyed():
            return None
        try:
            tab = await window.queryActiveTab()
        except Exception as err:
            logger.debug("Active tab query failed: %s", err)
            return None
        if tab is not None:
            hostWcId = window.webContentsId
            try:
                self.tabs.registerTab(hostWcId, tab.webContentsId)
            except InputError as err:
                logger.debug("Active tab not registered: %s", err)
        return tab

    async def click(self, extId: str, window: BrowserWindow | None = None) -> ClickResult:
        """
        Dispatches a toolbar click through the first host command that works:
        activate, openPopup (browserAction, then action), click, trigger.
        """
        record = self._requireActionRecord(extId)
        hostId = record.hostId or record.id
        tab = await self._activeTab(window)

        try:
            await self.runner.run(SetActiveTab(tab=tab))
        except Exception as err:
            logger.debug("setActiveTab failed: %s", err)

        windowId = window.windowId if window is not None else None
        outcome = await self.runner.runFirst([
            Activate(extId=hostId, tab=tab),
            OpenPopup(extId=hostId, windowId=windowId, api="browserAction"),
            OpenPopup(extId=hostId, windowId=windowId, api="action"),
            Click(extId=hostId, tab=tab),
            Trigger(extId=hostId, tab=tab),
        ])
        if outcome is UNSUPPORTED:
            logger.warning("No host command could dispatch the click for '%s'", record.label)
            return ClickResult(dispatched=False)

        command, _result = outcome
        method = type(command).__name__.lower()
        if isinstance(command, OpenPopup):
            method = f"openPopup.{command.api}"
        logger.debug("Click for '%s' dispatched via %s", record.label, method)
        return ClickResult(dispatched=True, method=method)

    # ------------------------------------------------------------------ #
    # Popup
    # ------------------------------------------------------------------ #

    async def openPopup(self, extId: str, window: BrowserWindow, anchor: AnchorRect | dict[str, Any] | None = None) -> PopupResult:
        """Opens the action popup anchored under the toolbar button; without a popup page it clicks instead."""
        record = self._requireActionRecord(extId)
        anchorRect = anchor if isinstance(anchor, AnchorRect) else AnchorRect.fromPayload(anchor)

        declared = _actionOf(record.manifest).get("default_popup")
        if not isinstance(declared, str) or not declared.strip() or self.popupFactory is None:
            return PopupResult(opened=False, click=await self.click(extId, window))

        relative = resolvePopupPath(record.installedPath, declared)
        if relative is None:
            logger.warning("Popup page '%s' not found for '%s'", declared, record.label)
            return PopupResult(opened=False, click=await self.click(extId, window))

        url = f"chrome-extension://{record.hostId or record.id}/{relative}"
        bounds = self._popupBounds(window.getBounds(), anchorRect)
        spec = PopupSpec(
            url=url,
            bounds=bounds,
            parentWindowId=window.windowId,
            boundsOverride=lambda requested: Rect(bounds.x, bounds.y, requested.width, requested.height),
            windowOpenHandler=lambda target: self._windowOpenDecision(window, target),
        )

        handle: PopupHandle = self.popupFactory.createPopup(spec)
        await self._activeTab(window)
        try:
            await handle.loadUrl(url)
            handle.showInactive()
        except Exception:
            handle.close()
            raise
        self.popups.register(handle)
        logger.info("Opened popup for '%s'", record.label)
        return PopupResult(opened=True, url=url)

    def _popupBounds(self, main: Rect, anchor: AnchorRect) -> Rect:
        x = main.x + anchor.x - self.popupWidth + anchor.width
        y = main.y + anchor.y + self.anchorOffsetY
        return Rect(int(round(x)), int(round(y)), self.popupWidth, self.popupHeight)

    def _windowOpenDecision(self, window: BrowserWindow, url: str) -> WindowOpenDecision:
        if isinstance(url, str) and EXTERNAL_URL_RE.match(url):
            try:
                window.openTab(url)
            except Exception as err:
                logger.warning("Could not open popup link in a tab: %s", err)
            return "deny"
        return "allow"
