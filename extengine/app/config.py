# extengine/app/config.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from extengine.app.context import PROCESS_REGISTRY
from extengine.config.store import ConfigStore

logger = logging.getLogger(__name__)

__all__ = ["initConfig", "getGlobalConfig", "resetConfig"]



def initConfig(
    *,
    baseDir: str | Path | None = None,
    configFile: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
    force: bool = False,
) -> ConfigStore:
    """
    Initialize the config subsystem (idempotent unless `force`).
    The store is registered as `config.service`.
    """
    existing = PROCESS_REGISTRY.get("config.service")
    if existing is not None and not force:
        return existing
    store = ConfigStore.bootstrap(baseDir=baseDir, configFile=configFile, overrides=overrides)
    PROCESS_REGISTRY.register("config.service", store, overwrite=True)
    logger.info("Config initialized")
    return store



def getGlobalConfig() -> ConfigStore:
    """Returns the process-wide ConfigStore, creating a defaults-only one if needed."""
    store = PROCESS_REGISTRY.get("config.service")
    if store is None:
        store = initConfig()
    return store



def resetConfig() -> None:
    PROCESS_REGISTRY.unregister("config.service")
