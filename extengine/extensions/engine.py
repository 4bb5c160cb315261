# extengine/extensions/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from os import PathLike

from extengine.app.context import PROCESS_REGISTRY
from extengine.app.globals import config
from extengine.core.fsutils import ensureDir
from extengine.extensions.actions import BrowserActionService
from extengine.extensions.api import ExtensionsApi
from extengine.extensions.context import EngineContext, EnginePaths
from extengine.extensions.coordinator import LifecycleCoordinator
from extengine.extensions.host import HostExtensions, PopupWindowFactory
from extengine.extensions.popups import PopupTracker
from extengine.extensions.ratelimit import InstallRateLimiter
from extengine.extensions.store import StoreAdapter, StoreClient
from extengine.extensions.tabs import TabRegistry
from extengine.extensions.uploads import UploadService
from extengine.validation.policy import loadPolicy

__all__ = ["Engine", "buildEngine"]

logger = logging.getLogger(__name__)



@dataclass(slots=True, frozen=True)
class Engine:
    ctx: EngineContext
    coordinator: LifecycleCoordinator
    actions: BrowserActionService
    popups: PopupTracker
    tabs: TabRegistry
    uploads: UploadService
    api: ExtensionsApi



def buildEngine(
    base: str | PathLike[str],
    *,
    host: HostExtensions,
    store: StoreClient | None = None,
    popupFactory: PopupWindowFactory | None = None,
    bundledDir: str | PathLike[str] | None = None,
    appLocale: str | None = None,
    register: bool = True,
) -> Engine:
    """
    Wires the engine services for one extensions directory.

    Tunables come from the `extensions.*` config section and the policy from
    `<base>/policy.json`. The bundle is registered as `engine` in the process
    registry unless `register` is False. Call `coordinator.initialize()` (or
    any coordinator operation) to load the registry.
    """
    paths = EnginePaths.forBase(base, bundledDir)
    ensureDir(paths.base)

    ctx = EngineContext(
        paths=paths,
        policy=loadPolicy(paths.base),
        appLocale=appLocale or str(config("extensions.appLocale", "en")),
        iconScheme=str(config("extensions.iconScheme", "peersky")),
        pinCapacity=int(config("extensions.pinCapacity", 6)),
        maxMissingFileWarnings=int(config("extensions.maxMissingFileWarnings", 20)),
    )

    popups = PopupTracker(stabilizationMs=int(config("extensions.popup.stabilizationMs", 2000)))
    tabs = TabRegistry()
    coordinator = LifecycleCoordinator(ctx, host=host, store=StoreAdapter(store), popups=popups)
    actions = BrowserActionService(
        ctx,
        coordinator.registry,
        coordinator.runner,
        popups,
        tabs,
        popupFactory=popupFactory,
        popupWidth=int(config("extensions.popup.width", 400)),
        popupHeight=int(config("extensions.popup.height", 600)),
        anchorOffsetY=int(config("extensions.popup.anchorOffsetY", 38)),
    )
    uploads = UploadService(ctx, maxBytes=int(config("extensions.uploads.maxBytes", 60 * 1024 * 1024)))
    limiter = InstallRateLimiter(
        limit=int(config("extensions.install.rateLimit", 5)),
        windowMs=int(config("extensions.install.rateWindowMs", 60_000)),
    )
    api = ExtensionsApi(
        coordinator,
        actions,
        popups,
        tabs,
        uploads,
        limiter,
        allowedUserDirs=config("extensions.sanitizer.allowedUserDirs", ["Downloads", "Desktop", "Documents"]),
    )

    engine = Engine(
        ctx=ctx,
        coordinator=coordinator,
        actions=actions,
        popups=popups,
        tabs=tabs,
        uploads=uploads,
        api=api,
    )
    if register:
        PROCESS_REGISTRY.register("engine", engine, overwrite=True)
    logger.info("Extension engine wired for %s (store %s)", paths.base.name, "on" if coordinator.store.available else "off")
    return engine
