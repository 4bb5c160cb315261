# tests/extengine/helpers.py
from __future__ import annotations

import io
import json
import shutil
import struct
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from extengine.extensions.context import EngineContext, EnginePaths
from extengine.extensions.host import (
    ActionState,
    Activate,
    ActiveTab,
    Click,
    HostCapability,
    HostExtensions,
    Load,
    LoadedExtension,
    OpenPopup,
    PopupSpec,
    Rect,
    Remove,
    SetActiveTab,
    Trigger,
)
from extengine.extensions.store import StoreInstallResult

STORE_ID_A = "a" * 32
STORE_ID_B = "abcdefghijklmnopabcdefghijklmnop"


# ----------------------------
# Manifests & files
# ----------------------------

def manifest(name: str = "Demo", version: str = "1.0.0", **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"manifest_version": 3, "name": name, "version": version}
    data.update(extra)
    return data


def actionManifest(name: str, version: str = "1.0.0", **extra: Any) -> dict[str, Any]:
    return manifest(name, version, action={"default_title": name}, **extra)


def writeExtensionDir(root: Path, data: dict[str, Any], files: dict[str, bytes | str] | None = None) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "manifest.json").write_text(json.dumps(data), encoding="utf-8")
    for rel, content in (files or {}).items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        target.write_bytes(content)
    return root


def makeZip(entries: dict[str, bytes | str], *, compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression) as zf:
        for name, content in entries.items():
            info = zipfile.ZipInfo(name)
            info.compress_type = compression
            zf.writestr(info, content)
    return buf.getvalue()


def makeCrx3(zipBytes: bytes, *, headerLen: int = 200, publicKey: bytes | None = None) -> bytes:
    """`Cr24 | 3 | headerLen | header | zip`, header optionally holding sha256_with_rsa[0].public_key."""
    header = b""
    if publicKey is not None:
        inner = b"\x0a" + _varint(len(publicKey)) + publicKey
        header = b"\x12" + _varint(len(inner)) + inner
    header = header.ljust(headerLen, b"\x00") if len(header) < headerLen else header
    return b"Cr24" + struct.pack("<II", 3, len(header)) + header + zipBytes


def makeCrx2(zipBytes: bytes, *, publicKey: bytes = b"KEY", signature: bytes = b"SIG") -> bytes:
    return b"Cr24" + struct.pack("<III", 2, len(publicKey), len(signature)) + publicKey + signature + zipBytes


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def makeContext(base: Path, *, bundledDir: Path | None = None, **kwargs: Any) -> EngineContext:
    return EngineContext(paths=EnginePaths.forBase(base, bundledDir), **kwargs)


# ----------------------------
# Host fake
# ----------------------------

ALL_CAPABILITIES = frozenset(HostCapability)


class FakeHost(HostExtensions):
    """
    Records every command. By default the host id of a loaded extension is the
    name of its id root (`<base>/<id>/<v>_0` -> `<id>`), so no re-keying happens.
    """

    def __init__(
        self,
        capabilities: frozenset[HostCapability] = ALL_CAPABILITIES,
        *,
        idFor: Callable[[str], str] | None = None,
    ) -> None:
        self.capabilities = frozenset(capabilities)
        self.idFor = idFor or (lambda path: Path(path).parent.name)
        self.loaded: dict[str, str] = {}
        self.calls: list[Any] = []
        self.failLoad = False
        self.failRemove = False
        self.failing: set[type] = set()
        self.actionState: ActionState | None = None

    def _record(self, command: Any) -> None:
        self.calls.append(command)
        if type(command) in self.failing:
            raise RuntimeError(f"{type(command).__name__} failed")

    def commandsOf(self, kind: type) -> list[Any]:
        return [call for call in self.calls if isinstance(call, kind)]

    async def setActiveTab(self, command: SetActiveTab) -> None:
        self._record(command)

    async def activate(self, command: Activate) -> None:
        self._record(command)

    async def openPopup(self, command: OpenPopup) -> None:
        self._record(command)

    async def click(self, command: Click) -> None:
        self._record(command)

    async def trigger(self, command: Trigger) -> None:
        self._record(command)

    async def load(self, command: Load) -> LoadedExtension:
        self._record(command)
        if self.failLoad:
            raise RuntimeError("host refused to load")
        hostId = self.idFor(command.path)
        data = json.loads((Path(command.path) / "manifest.json").read_text(encoding="utf-8"))
        self.loaded[hostId] = command.path
        return LoadedExtension(id=hostId, name=data.get("name", ""), version=data.get("version", ""), path=command.path, manifest=data)

    async def remove(self, command: Remove) -> None:
        self._record(command)
        if self.failRemove:
            raise RuntimeError("host refused to remove")
        self.loaded.pop(command.hostId, None)

    def getActionState(self) -> ActionState | None:
        return self.actionState


# ----------------------------
# Store fake
# ----------------------------

class FakeStoreClient:
    """Writes `<base>/<id>/<version>_0/manifest.json` the way a real store client unpacks CRXs."""

    def __init__(self, base: Path) -> None:
        self.base = base
        self.catalog: dict[str, dict[str, Any]] = {}
        self.pendingUpdates: dict[str, dict[str, Any]] = {}
        self.uninstalled: list[str] = []
        self.failInstall = False
        self.failUpdate = False

    def publish(self, extId: str, data: dict[str, Any]) -> None:
        self.catalog[extId] = data

    def writeVersion(self, extId: str, data: dict[str, Any]) -> Path:
        target = self.base / extId / f"{data['version']}_0"
        target.mkdir(parents=True, exist_ok=True)
        (target / "manifest.json").write_text(json.dumps(data), encoding="utf-8")
        return target

    async def installById(self, extId: str) -> StoreInstallResult:
        if self.failInstall or extId not in self.catalog:
            raise RuntimeError("download failed")
        data = self.catalog[extId]
        target = self.writeVersion(extId, data)
        return StoreInstallResult(id=extId, name=data["name"], version=data["version"], path=str(target), manifest=data)

    async def updateAll(self) -> dict[str, Any]:
        if self.failUpdate:
            raise RuntimeError("update server unreachable")
        for extId, data in self.pendingUpdates.items():
            self.writeVersion(extId, data)
        updated = list(self.pendingUpdates)
        self.pendingUpdates.clear()
        return {"updated": updated}

    async def uninstallById(self, extId: str) -> None:
        self.uninstalled.append(extId)
        shutil.rmtree(self.base / extId, ignore_errors=True)


# ----------------------------
# Window & popup fakes
# ----------------------------

class FakePopup:
    def __init__(self, spec: PopupSpec) -> None:
        self.spec = spec
        self.loadedUrl: str | None = None
        self.shown = False
        self.closed = False
        self._callbacks: list[Callable[[], None]] = []
        self.bounds = spec.bounds

    async def loadUrl(self, url: str) -> None:
        self.loadedUrl = url

    def showInactive(self) -> None:
        self.shown = True

    def close(self) -> None:
        self.closed = True
        for callback in self._callbacks:
            callback()

    def isDestroyed(self) -> bool:
        return self.closed

    def setBounds(self, rect: Rect) -> None:
        self.bounds = self.spec.boundsOverride(rect)

    def onClosed(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)


class FakePopupFactory:
    def __init__(self) -> None:
        self.created: list[FakePopup] = []

    def createPopup(self, spec: PopupSpec) -> FakePopup:
        popup = FakePopup(spec)
        self.created.append(popup)
        return popup


class FakeWindow:
    def __init__(self, windowId: int = 1, *, webContentsId: int = 10, bounds: Rect | None = None, activeTab: ActiveTab | None = None) -> None:
        self.windowId = windowId
        self.webContentsId = webContentsId
        self.bounds = bounds or Rect(200, 100, 1280, 800)
        self.activeTab = activeTab if activeTab is not None else ActiveTab(tabId=7, webContentsId=42, url="https://example.org/")
        self.openedTabs: list[str] = []
        self.destroyed = False

    def getBounds(self) -> Rect:
        return self.bounds

    async def queryActiveTab(self) -> ActiveTab | None:
        return self.activeTab

    def openTab(self, url: str) -> None:
        self.openedTabs.append(url)

    def isDestroyed(self) -> bool:
        return self.destroyed
