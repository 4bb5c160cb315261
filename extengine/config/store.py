# extengine/config/store.py
from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import fastjsonschema

from extengine.core.config_stack import mergeLayers
from .defaults import CONFIG_SCHEMA, DEFAULT_CONFIG
from .providers import ConfigProvider, DefaultsProvider, FileProvider, OverrideProvider

logger = logging.getLogger(__name__)

__all__ = ["ConfigStore", "ChangeListener", "CONFIG_FILE_NAME"]

CONFIG_FILE_NAME = "extengine.json5"

ChangeListener = Callable[[str, Any, Any], None]



class ConfigStore:
    """
    Layered config store:
      - read: first-hit from the topmost provider down
      - write: only to the runtime override layer
      - validate: on set(), validate the *effective* merged document and roll back on failure
    """

    def __init__(
        self,
        *,
        providers: list[ConfigProvider],
        runtime: OverrideProvider,
        validator: Callable[[Any], Any] | None = None,
    ) -> None:
        self._providers = list(providers)
        self._runtime = runtime
        self._validator = validator
        self._listeners: list[ChangeListener] = []

    @classmethod
    def bootstrap(
        cls,
        *,
        baseDir: str | Path | None = None,
        configFile: str | Path | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> "ConfigStore":
        """
        Builds the default stack: shipped defaults, optional JSON5 file, runtime overrides.
        The file is `configFile` when given, else `<baseDir>/extengine.json5`.
        """
        providers: list[ConfigProvider] = [DefaultsProvider(DEFAULT_CONFIG)]
        filePath = Path(configFile) if configFile else (Path(baseDir) / CONFIG_FILE_NAME if baseDir else None)
        if filePath is not None:
            providers.append(FileProvider(filePath))
        runtime = OverrideProvider(overrides)
        store = cls(providers=providers, runtime=runtime, validator=fastjsonschema.compile(CONFIG_SCHEMA))
        store.validate()
        return store

    # ----- Reads -----

    def _layers(self) -> list[ConfigProvider]:
        return [*self._providers, self._runtime]

    def get(self, key: str) -> Any | None:
        for provider in reversed(self._layers()): # Topmost first precedence
            value = provider.get(key)
            if value is not None:
                return value
        return None

    def snapshot(self) -> dict[str, Any]:
        """Deep merge of all layers, bottom to top."""
        return mergeLayers(*(provider.toDict() for provider in self._layers()))

    def validate(self) -> None:
        if self._validator is None:
            return
        try:
            self._validator(self.snapshot())
        except fastjsonschema.JsonSchemaException as err:
            raise ValueError(f"Invalid configuration: {err.message}") from err

    # ----- Writes -----

    def set(self, key: str, value: Any) -> None:
        oldValue = self.get(key)
        previousRuntime = self._runtime.get(key)
        self._runtime.set(key, value)
        try:
            self.validate()
        except ValueError:
            self._runtime.set(key, previousRuntime)
            raise

        newValue = self.get(key)
        if oldValue != newValue:
            for fn in list(self._listeners):
                try:
                    fn(key, oldValue, newValue)
                except Exception:
                    logger.exception("Config listener failed for '%s'", key)

    def subscribe(self, fn: ChangeListener) -> Callable[[], None]:
        self._listeners.append(fn)
        def _unsub() -> None:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass
        return _unsub
