# extengine/app/globals.py
from __future__ import annotations

from typing import Any, cast, TYPE_CHECKING

from extengine.app.context import PROCESS_REGISTRY
from extengine.core.dictpath import getByPath
from extengine.core.errors import EngineNotReadyError
from extengine.core.tracing import getTracer as _getCoreTracer, getTraceHub as _getCoreTraceHub

if TYPE_CHECKING:
    from extengine.config.store import ConfigStore
    from extengine.core.tracing import Tracer, TraceHub
    from extengine.extensions.engine import Engine

__all__ = ["getEngine", "getConfigStore", "getTracer", "getTraceHub", "config", "configBool"]



def getEngine() -> Engine:
    engine = PROCESS_REGISTRY.get("engine")
    if engine is None:
        raise EngineNotReadyError(
            "Engine is None.\n"
            "Somebody clicked the puzzle-piece icon and nothing answered.\n"
            "Call buildEngine() before touching extensions."
        )
    return cast("Engine", engine)



def getConfigStore() -> ConfigStore:
    from extengine.app.config import getGlobalConfig
    return getGlobalConfig()



def getTracer() -> Tracer:
    """
    Global access point for the Tracer singleton.

    Prefer using this instead of importing extengine.core.tracing directly,
    so future changes to tracer wiring stay localized.
    """
    tracer = PROCESS_REGISTRY.get("tracer")
    if tracer is not None:
        return cast("Tracer", tracer)
    return cast("Tracer", _getCoreTracer())



def getTraceHub() -> TraceHub:
    return cast("TraceHub", _getCoreTraceHub())



def config(path: str, default: Any = None) -> Any:
    """
    Read a dotted path from the merged configuration.
    Returns `default` when the path is not found.

    Example:
      value = config("extensions.popup.width")   # returns 400
      value = config("non.existing.path", 300)   # returns 300
    """
    snap = getConfigStore().snapshot()
    val = getByPath(snap, path)
    return default if val is None else val



def configBool(path: str, default: bool = False) -> bool:
    """
    Read a boolean from the merged configuration.
    """
    val = config(path, None)
    if isinstance(val, bool):
        return val
    if val is None:
        return default
    return bool(val)
