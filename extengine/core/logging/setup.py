# extengine/core/logging/setup.py
from __future__ import annotations

import logging
import logging.handlers

from extengine.app.globals import config, configBool
from .formatters import DevFormatter, JsonFormatter, RedactingFormatter
from .filters import RecurringSuppressFilter

__all__ = ["configureLogging"]



def configureLogging(*, logFile: str | None = None, console: bool = True) -> None:
    """
    Initiate the global logging configuration.

    Dev (debug.devModeEnabled):
      - Console pretty logs (DEBUG)
      - JSON file log (DEBUG)

    Prod:
      - Console INFO
      - JSON file logs INFO with rotation
      - Home directory and token scrubbing always active
      - Optional recurring suppression (toggle)
    """
    devMode = configBool("debug.devModeEnabled", False)
    rootLevel = logging.DEBUG if devMode else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    devFmt = RedactingFormatter(DevFormatter())
    jsonFmt = RedactingFormatter(JsonFormatter())

    handlers: list[logging.Handler] = []
    if console:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(rootLevel)
        consoleHandler.setFormatter(devFmt)
        handlers.append(consoleHandler)

    fileHandler = logging.handlers.RotatingFileHandler(
        logFile or str(config("logging.file", "extengine.log")),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    fileHandler.setLevel(rootLevel)
    fileHandler.setFormatter(jsonFmt)
    handlers.append(fileHandler)

    # Optional recurring suppression (disabled by default)
    if configBool("debug.suppressRecurringMessages.enabled", False):
        levelName = str(config("debug.suppressRecurringMessages.summaryLevel", "INFO")).upper()
        summaryLevel = logging.getLevelName(levelName)
        if not isinstance(summaryLevel, int):
            summaryLevel = logging.INFO

        suppressFilter = RecurringSuppressFilter(
            windowSeconds=int(config("debug.suppressRecurringMessages.windowSeconds", 60)),
            maxPerWindow=int(config("debug.suppressRecurringMessages.maxPerWindow", 5)),
            summaryLevel=summaryLevel,
        )
        for handler in handlers:
            handler.addFilter(suppressFilter)

    for handler in handlers:
        root.addHandler(handler)
