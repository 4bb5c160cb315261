# extengine/extensions/context.py
from __future__ import annotations

from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path

from extengine.core.fsutils import STAGING_DIR_NAME, UPLOADS_DIR_NAME
from extengine.core.mutex import KeyedMutex, ScopedLocks
from extengine.validation.policy import POLICY_FILE_NAME, ExtensionPolicy
from extengine.validation.validator import ManifestValidator

__all__ = ["REGISTRY_FILE_NAME", "PINNED_FILE_NAME", "EnginePaths", "EngineContext"]

REGISTRY_FILE_NAME = "extensions.json"
PINNED_FILE_NAME = "pinned.json"



@dataclass(slots=True, frozen=True)
class EnginePaths:
    base: Path
    registryFile: Path
    pinnedFile: Path
    policyFile: Path
    stagingDir: Path
    uploadsDir: Path
    bundledDir: Path | None = None

    @classmethod
    def forBase(cls, base: str | PathLike[str], bundledDir: str | PathLike[str] | None = None) -> "EnginePaths":
        root = Path(base).resolve()
        return cls(
            base=root,
            registryFile=root / REGISTRY_FILE_NAME,
            pinnedFile=root / PINNED_FILE_NAME,
            policyFile=root / POLICY_FILE_NAME,
            stagingDir=root / STAGING_DIR_NAME,
            uploadsDir=root / UPLOADS_DIR_NAME,
            bundledDir=Path(bundledDir).resolve() if bundledDir is not None else None,
        )

    def extensionRoot(self, extId: str) -> Path:
        return self.base / extId



def _newLocks() -> ScopedLocks:
    return ScopedLocks(KeyedMutex())



@dataclass(slots=True, frozen=True)
class EngineContext:
    """
    Narrow value handed to every engine service.

    Services read paths, policy and locks from here and never hold a
    reference back to the coordinator.
    """
    paths: EnginePaths
    policy: ExtensionPolicy = field(default_factory=ExtensionPolicy.default)
    locks: ScopedLocks = field(default_factory=_newLocks)
    appLocale: str = "en"
    iconScheme: str = "peersky"
    pinCapacity: int = 6
    maxMissingFileWarnings: int = 20

    @property
    def mutex(self) -> KeyedMutex:
        return self.locks.mutex

    def validator(self) -> ManifestValidator:
        return ManifestValidator(self.policy)
