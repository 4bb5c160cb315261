# extengine/extensions/models.py
from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from extengine.core.time import nowIso

__all__ = [
    "ExtensionSource",
    "ExtensionState",
    "UpdateInfo",
    "ExtensionRecord",
    "LifecycleListener",
    "hasToolbarAction",
]

ExtensionSource = Literal["unpacked", "file-zip", "file-crx", "webstore", "preinstalled"]



class ExtensionState(str, Enum):
    NONE = "none"
    STAGED = "staged"
    INSTALLED = "installed" # on disk, disabled
    LOADED = "loaded"       # enabled and bound to the host
    REMOVED = "removed"



class UpdateInfo(BaseModel):
    """Outcome of the last store update check."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    lastChecked: int | None = None  # epoch ms
    lastResult: str | None = None



class ExtensionRecord(BaseModel):
    """
    Durable descriptor of one installed extension, as stored in extensions.json.

    Unknown keys from the registry file are kept so a load/write round-trip
    does not lose data written by newer versions.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        validate_assignment=True,
    )

    id: str
    name: str
    version: str
    description: str = ""
    displayName: str | None = None
    displayDescription: str | None = None
    manifest: dict[str, Any] = Field(default_factory=dict)
    installedPath: str
    source: ExtensionSource
    enabled: bool = True
    hostId: str | None = None       # id assigned by the host runtime while loaded
    provisionalId: str | None = None  # manifest-derived id, kept after re-keying to the host id
    iconPath: str | None = None
    isSystem: bool = False
    removable: bool = True
    privileged: bool = False        # preinstalled entries allowed file:// access
    warnings: list[str] = Field(default_factory=list)
    riskScore: int = 0
    installDate: str = Field(default_factory=nowIso)
    update: UpdateInfo | None = None
    permissions: list[str] = Field(default_factory=list)
    webStoreUrl: str | None = None
    publicKey: str | None = None    # base64 DER, CRX v2/v3 only

    @property
    def label(self) -> str:
        return self.displayName or self.name

    @property
    def state(self) -> ExtensionState:
        if self.enabled and self.hostId:
            return ExtensionState.LOADED
        return ExtensionState.INSTALLED

    @property
    def isProtected(self) -> bool:
        return self.isSystem or not self.removable

    def toJson(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)



def hasToolbarAction(manifest: Any) -> bool:
    """True when the manifest declares `action` or `browser_action`."""
    if not isinstance(manifest, dict):
        return False
    return isinstance(manifest.get("action"), dict) or isinstance(manifest.get("browser_action"), dict)



class LifecycleListener:
    """
    Observer for lifecycle transitions. All hooks are no-ops; subclass and
    override the ones you need. Hooks may be sync or async.
    """

    def onStaged(self, extId: str, manifest: dict[str, Any]) -> Any:
        pass

    def onInstalled(self, record: ExtensionRecord) -> Any:
        pass

    def onLoaded(self, record: ExtensionRecord) -> Any:
        pass

    def onUnloaded(self, record: ExtensionRecord) -> Any:
        pass

    def onRemoved(self, record: ExtensionRecord) -> Any:
        pass

    def onUpdated(self, record: ExtensionRecord, fromVersion: str, toVersion: str) -> Any:
        pass
