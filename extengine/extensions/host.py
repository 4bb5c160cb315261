# extengine/extensions/host.py
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol

from extengine.core.errors import ErrorCode, HostError

__all__ = [
    "HostCapability",
    "ActiveTab",
    "Rect",
    "ActionTabState",
    "ActionState",
    "SetActiveTab",
    "Activate",
    "OpenPopup",
    "Click",
    "Trigger",
    "Load",
    "Remove",
    "HostCommand",
    "LoadedExtension",
    "Unsupported",
    "UNSUPPORTED",
    "HostExtensions",
    "HostCommandRunner",
    "BrowserWindow",
    "PopupSpec",
    "PopupHandle",
    "PopupWindowFactory",
    "WindowOpenDecision",
]

logger = logging.getLogger(__name__)



class HostCapability(str, Enum):
    """What the embedding browser's extension runtime can do. Declared, never probed."""
    SET_ACTIVE_TAB = "setActiveTab"
    ACTIVATE = "activate"
    OPEN_POPUP_BROWSER_ACTION = "openPopup.browserAction"
    OPEN_POPUP_ACTION = "openPopup.action"
    CLICK = "click"
    TRIGGER = "trigger"
    LOAD = "load"
    REMOVE = "remove"
    ACTION_STATE = "actionState"



# ------------------------------------------------------------------ #
# Value types
# ------------------------------------------------------------------ #

@dataclass(slots=True, frozen=True)
class ActiveTab:
    """Answer of the window's "which tab is active" command."""
    tabId: int
    webContentsId: int
    url: str = ""

    @classmethod
    def fromPayload(cls, payload: Any) -> "ActiveTab | None":
        """Parses `{tabId, webContentsId, url}`; anything malformed means no active tab."""
        if not isinstance(payload, dict):
            return None
        tabId = payload.get("tabId")
        wcId = payload.get("webContentsId")
        if isinstance(tabId, bool) or isinstance(wcId, bool):
            return None
        if not isinstance(tabId, int) or not isinstance(wcId, int) or wcId <= 0:
            return None
        url = payload.get("url")
        return cls(tabId=tabId, webContentsId=wcId, url=url if isinstance(url, str) else "")



@dataclass(slots=True, frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int



@dataclass(slots=True, frozen=True)
class ActionTabState:
    text: str | None = None
    color: str | None = None
    title: str | None = None
    popup: str | None = None



@dataclass(slots=True, frozen=True)
class ActionState:
    """Per-extension toolbar state reported by the host, keyed by host id."""
    activeTabId: int | None = None
    actions: dict[str, ActionTabState] = field(default_factory=dict)
    tabs: dict[str, dict[int, ActionTabState]] = field(default_factory=dict)

    def effective(self, hostId: str | None) -> ActionTabState | None:
        """The active tab's override merged over the extension-wide state."""
        if not hostId or hostId not in self.actions:
            return None
        base = self.actions[hostId]
        perTab = self.tabs.get(hostId, {}).get(self.activeTabId) if self.activeTabId is not None else None
        if perTab is None:
            return base
        return ActionTabState(
            text=perTab.text if perTab.text is not None else base.text,
            color=perTab.color if perTab.color is not None else base.color,
            title=perTab.title if perTab.title is not None else base.title,
            popup=perTab.popup if perTab.popup is not None else base.popup,
        )



# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

@dataclass(slots=True, frozen=True)
class SetActiveTab:
    tab: ActiveTab | None



@dataclass(slots=True, frozen=True)
class Activate:
    extId: str
    tab: ActiveTab | None



@dataclass(slots=True, frozen=True)
class OpenPopup:
    extId: str
    windowId: int | None
    api: Literal["browserAction", "action"] = "browserAction"



@dataclass(slots=True, frozen=True)
class Click:
    extId: str
    tab: ActiveTab | None



@dataclass(slots=True, frozen=True)
class Trigger:
    extId: str
    tab: ActiveTab | None



@dataclass(slots=True, frozen=True)
class Load:
    path: str
    allowFileAccess: bool = False



@dataclass(slots=True, frozen=True)
class Remove:
    hostId: str



HostCommand = SetActiveTab | Activate | OpenPopup | Click | Trigger | Load | Remove



@dataclass(slots=True, frozen=True)
class LoadedExtension:
    id: str
    name: str
    version: str
    path: str
    manifest: dict[str, Any] = field(default_factory=dict)



class Unsupported:
    """Returned when the host does not declare the capability a command needs."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSUPPORTED"

    def __bool__(self) -> bool:
        return False



UNSUPPORTED = Unsupported()



# ------------------------------------------------------------------ #
# Host interface
# ------------------------------------------------------------------ #

class HostExtensions:
    """
    Adapter over the browser's extension runtime.

    Subclasses declare `capabilities` and implement the matching handlers.
    The engine only calls handlers whose capability is declared.
    """
    capabilities: frozenset[HostCapability] = frozenset()

    async def setActiveTab(self, command: SetActiveTab) -> None:
        raise NotImplementedError

    async def activate(self, command: Activate) -> None:
        raise NotImplementedError

    async def openPopup(self, command: OpenPopup) -> None:
        raise NotImplementedError

    async def click(self, command: Click) -> None:
        raise NotImplementedError

    async def trigger(self, command: Trigger) -> None:
        raise NotImplementedError

    async def load(self, command: Load) -> LoadedExtension:
        raise NotImplementedError

    async def remove(self, command: Remove) -> None:
        raise NotImplementedError

    def getActionState(self) -> ActionState | None:
        raise NotImplementedError



def _capabilityFor(command: HostCommand) -> HostCapability:
    if isinstance(command, SetActiveTab):
        return HostCapability.SET_ACTIVE_TAB
    if isinstance(command, Activate):
        return HostCapability.ACTIVATE
    if isinstance(command, OpenPopup):
        return HostCapability.OPEN_POPUP_ACTION if command.api == "action" else HostCapability.OPEN_POPUP_BROWSER_ACTION
    if isinstance(command, Click):
        return HostCapability.CLICK
    if isinstance(command, Trigger):
        return HostCapability.TRIGGER
    if isinstance(command, Load):
        return HostCapability.LOAD
    if isinstance(command, Remove):
        return HostCapability.REMOVE
    raise TypeError(f"Unknown host command {type(command).__name__}")



class HostCommandRunner:
    """Dispatches typed commands to a HostExtensions adapter according to its declared capabilities."""

    def __init__(self, host: HostExtensions) -> None:
        self.host = host

    def supports(self, capability: HostCapability) -> bool:
        return capability in self.host.capabilities

    async def run(self, command: HostCommand) -> Any:
        capability = _capabilityFor(command)
        if not self.supports(capability):
            return UNSUPPORTED

        if isinstance(command, SetActiveTab):
            return await self.host.setActiveTab(command)
        if isinstance(command, Activate):
            return await self.host.activate(command)
        if isinstance(command, OpenPopup):
            return await self.host.openPopup(command)
        if isinstance(command, Click):
            return await self.host.click(command)
        if isinstance(command, Trigger):
            return await self.host.trigger(command)
        if isinstance(command, Load):
            return await self._load(command)
        return await self._remove(command)

    async def runFirst(self, commands: Iterable[HostCommand]) -> tuple[HostCommand, Any] | Unsupported:
        """
        Tries commands in order and returns `(command, result)` for the first
        one that is supported and succeeds. Failures are logged and skipped.
        """
        for command in commands:
            try:
                result = await self.run(command)
            except Exception as err:
                logger.warning("Host command %s failed: %s", type(command).__name__, err)
                continue
            if result is UNSUPPORTED:
                continue
            return command, result
        return UNSUPPORTED

    async def _load(self, command: Load) -> LoadedExtension:
        try:
            return await self.host.load(command)
        except HostError:
            raise
        except Exception as err:
            raise HostError(ErrorCode.LOAD_FAILED, f"Failed to load extension: {err}") from err

    async def _remove(self, command: Remove) -> None:
        try:
            await self.host.remove(command)
        except HostError:
            raise
        except Exception as err:
            raise HostError(ErrorCode.REMOVE_FAILED, f"Failed to remove extension: {err}") from err

    # ----- Convenience -----

    async def load(self, path: str, *, allowFileAccess: bool = False) -> LoadedExtension:
        result = await self.run(Load(path=path, allowFileAccess=allowFileAccess))
        if result is UNSUPPORTED:
            raise HostError(ErrorCode.NOT_AVAILABLE, "Extension host cannot load extensions")
        return result

    async def remove(self, hostId: str) -> None:
        result = await self.run(Remove(hostId=hostId))
        if result is UNSUPPORTED:
            raise HostError(ErrorCode.NOT_AVAILABLE, "Extension host cannot remove extensions")

    def actionState(self) -> ActionState | None:
        if not self.supports(HostCapability.ACTION_STATE):
            return None
        try:
            return self.host.getActionState()
        except Exception as err:
            logger.debug("Host action state unavailable: %s", err)
            return None



# ------------------------------------------------------------------ #
# Window-side protocols
# ------------------------------------------------------------------ #

class BrowserWindow(Protocol):
    windowId: int
    webContentsId: int

    def getBounds(self) -> Rect: ...

    async def queryActiveTab(self) -> ActiveTab | None: ...

    def openTab(self, url: str) -> None: ...

    def isDestroyed(self) -> bool: ...



WindowOpenDecision = Literal["allow", "deny"]



@dataclass(slots=True, frozen=True)
class PopupSpec:
    url: str
    bounds: Rect
    parentWindowId: int | None
    boundsOverride: Callable[[Rect], Rect]                  # applied to every setBounds request
    windowOpenHandler: Callable[[str], WindowOpenDecision]  # child window.open() policy



class PopupHandle(Protocol):
    async def loadUrl(self, url: str) -> None: ...

    def showInactive(self) -> None: ...

    def close(self) -> None: ...

    def isDestroyed(self) -> bool: ...

    def setBounds(self, rect: Rect) -> None: ...

    def onClosed(self, callback: Callable[[], None]) -> None: ...



class PopupWindowFactory(Protocol):
    def createPopup(self, spec: PopupSpec) -> PopupHandle: ...
