# extengine/extensions/popups.py
from __future__ import annotations

import logging
from collections.abc import Callable

from extengine.core.time import nowMonotonicMs
from extengine.extensions.host import PopupHandle

__all__ = ["PopupTracker"]

logger = logging.getLogger(__name__)



class PopupTracker:
    """
    Tracks open extension popups for auto-close on tab switch.

    A popup is "stabilizing" for `stabilizationMs` after it was registered.
    Non-forced closes leave stabilizing popups alone so OAuth redirects and
    focus shuffles right after opening do not kill them.
    """

    def __init__(self, stabilizationMs: int = 2000, clock: Callable[[], int] = nowMonotonicMs) -> None:
        self.stabilizationMs = stabilizationMs
        self._clock = clock
        self._created: dict[int, tuple[PopupHandle, int]] = {}

    def register(self, handle: PopupHandle) -> None:
        if handle.isDestroyed():
            return
        key = id(handle)
        self._created[key] = (handle, self._clock())
        handle.onClosed(lambda: self._created.pop(key, None))
        logger.debug("Registered popup for stabilization tracking")

    def isStabilizing(self, handle: PopupHandle) -> bool:
        entry = self._created.get(id(handle))
        if entry is None or handle.isDestroyed():
            return False
        return (self._clock() - entry[1]) < self.stabilizationMs

    def activeCount(self) -> int:
        return sum(1 for handle, _ in self._created.values() if not handle.isDestroyed())

    def closeAll(self, force: bool = False) -> int:
        """Closes tracked popups, sparing stabilizing ones unless `force`. Returns how many were closed."""
        closed = 0
        spared = 0
        for key, (handle, _createdMs) in list(self._created.items()):
            if handle.isDestroyed():
                self._created.pop(key, None)
                continue
            if not force and self.isStabilizing(handle):
                spared += 1
                continue
            try:
                handle.close()
            except Exception as err:
                logger.warning("Error closing popup: %s", err)
                continue
            self._created.pop(key, None)
            closed += 1
        if spared:
            logger.debug("%d popup(s) stabilizing, left open", spared)
        if closed:
            logger.info("Closed %d active popup(s)", closed)
        return closed

    def onTabActivated(self, hostWindowId: int | None = None) -> int:
        return self.closeAll(force=False)
