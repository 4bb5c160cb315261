# extengine/extensions/tabs.py
from __future__ import annotations

import logging
from typing import Any

from extengine.core.errors import ErrorCode, InputError

__all__ = ["TabRegistry"]

logger = logging.getLogger(__name__)



def _checkWcId(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InputError(ErrorCode.INVALID_ID, f"Invalid {label} webContents id")
    return value



class TabRegistry:
    """Which tab webContents belong to which host window webContents."""

    def __init__(self) -> None:
        self._hostByTab: dict[int, int] = {}

    def registerTab(self, hostWcId: Any, tabWcId: Any) -> None:
        host = _checkWcId(hostWcId, "host")
        tab = _checkWcId(tabWcId, "tab")
        previous = self._hostByTab.get(tab)
        self._hostByTab[tab] = host
        if previous is not None and previous != host:
            logger.debug("Tab %d moved from window %d to %d", tab, previous, host)

    def unregisterTab(self, tabWcId: Any) -> bool:
        tab = _checkWcId(tabWcId, "tab")
        return self._hostByTab.pop(tab, None) is not None

    def tabsFor(self, hostWcId: Any) -> list[int]:
        host = _checkWcId(hostWcId, "host")
        return [tab for tab, owner in self._hostByTab.items() if owner == host]

    def hostFor(self, tabWcId: Any) -> int | None:
        return self._hostByTab.get(_checkWcId(tabWcId, "tab"))

    def __len__(self) -> int:
        return len(self._hostByTab)
