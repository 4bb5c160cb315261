# tests/extengine/extensions/test_store_lifecycle.py
from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from extengine.core.errors import ErrorCode, InputError, StateError, StoreError, ValidationFailedError
from extengine.extensions.coordinator import LifecycleCoordinator
from extengine.extensions.host import Load, Remove
from extengine.extensions.models import LifecycleListener
from extengine.extensions.store import StoreAdapter
from tests.extengine.helpers import (
    STORE_ID_A,
    STORE_ID_B,
    FakeHost,
    FakeStoreClient,
    makeContext,
    manifest,
    writeExtensionDir,
)


def _setup(tmp_path: Path, *, withStore: bool = True) -> tuple[LifecycleCoordinator, FakeHost, FakeStoreClient]:
    ctx = makeContext(tmp_path / "base")
    client = FakeStoreClient(ctx.paths.base)
    host = FakeHost()
    coordinator = LifecycleCoordinator(ctx, host=host, store=StoreAdapter(client if withStore else None))
    return coordinator, host, client


class _UpdateRecorder(LifecycleListener):
    def __init__(self) -> None:
        self.updates: list[tuple[str, str, str]] = []

    def onUpdated(self, record, fromVersion, toVersion):
        self.updates.append((record.id, fromVersion, toVersion))


# ----------------------------
# Store install
# ----------------------------

@pytest.mark.asyncio
async def test_installFromStore_buildsWebstoreRecord(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0", icons={"16": "i16.png", "128": "i128.png"}, permissions=["storage"]))

    result = await coordinator.installFromStore(f"https://chromewebstore.google.com/detail/store-ext/{STORE_ID_A}")
    record = result.extension

    assert record.id == STORE_ID_A
    assert record.source == "webstore"
    assert record.installedPath == str(coordinator.ctx.paths.base / STORE_ID_A / "1.0.0_0")
    assert record.iconPath == f"peersky://extension-icon/{STORE_ID_A}/16?v=1.0.0"
    assert record.webStoreUrl == f"https://chrome.google.com/webstore/detail/{STORE_ID_A}"
    assert record.update is not None and record.update.lastResult == "installed"
    assert record.permissions == ["storage"]
    assert record.hostId == STORE_ID_A
    assert len(host.commandsOf(Load)) == 1


@pytest.mark.asyncio
async def test_installFromStore_rejectsDuplicatesAndBadInput(tmp_path: Path):
    coordinator, _host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext"))
    await coordinator.installFromStore(STORE_ID_A)

    with pytest.raises(StateError) as excInfo:
        await coordinator.installFromStore(STORE_ID_A.upper())
    assert excInfo.value.code == ErrorCode.ALREADY_EXISTS

    with pytest.raises(InputError) as excInfo:
        await coordinator.installFromStore("https://evil.example.com/detail/x")
    assert excInfo.value.code == ErrorCode.INVALID_URL


@pytest.mark.asyncio
async def test_installFromStore_withoutStore(tmp_path: Path):
    coordinator, _host, _client = _setup(tmp_path, withStore=False)
    with pytest.raises(StoreError) as excInfo:
        await coordinator.installFromStore(STORE_ID_A)
    assert excInfo.value.code == ErrorCode.NOT_AVAILABLE


@pytest.mark.asyncio
async def test_installFromStore_downloadFailure(tmp_path: Path):
    coordinator, _host, _client = _setup(tmp_path)
    with pytest.raises(StoreError) as excInfo:
        await coordinator.installFromStore(STORE_ID_B)
    assert excInfo.value.code == ErrorCode.FETCH_FAILED
    assert coordinator.registry.all() == []


@pytest.mark.asyncio
async def test_installFromStore_deniedIsRolledBack(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Sneaky", permissions=["debugger"]))

    with pytest.raises(ValidationFailedError, match="Blocked permission: debugger"):
        await coordinator.installFromStore(STORE_ID_A)
    assert client.uninstalled == [STORE_ID_A]
    assert not coordinator.ctx.paths.extensionRoot(STORE_ID_A).exists()
    assert coordinator.registry.all() == []
    assert host.commandsOf(Load) == []


@pytest.mark.asyncio
async def test_uninstallWebstore_tellsTheStore(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext"))
    await coordinator.installFromStore(STORE_ID_A)

    await coordinator.uninstall(STORE_ID_A)
    assert client.uninstalled == [STORE_ID_A]
    assert host.commandsOf(Remove) == [Remove(STORE_ID_A)]
    assert not coordinator.ctx.paths.extensionRoot(STORE_ID_A).exists()


# ----------------------------
# Update sweep
# ----------------------------

@pytest.mark.asyncio
async def test_update_bindsNewestVersionAndReloads(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    recorder = _UpdateRecorder()
    coordinator.addListener(recorder)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)
    local = (await coordinator.install(writeExtensionDir(tmp_path / "local", manifest("Local")))).extension

    client.pendingUpdates[STORE_ID_A] = manifest("Store Ext", "1.1.0", icons={"32": "i32.png"})
    summary = await coordinator.update()

    record = coordinator.registry.require(STORE_ID_A)
    assert summary.updated == [{"id": STORE_ID_A, "name": "Store Ext", "from": "1.0.0", "to": "1.1.0"}]
    assert summary.skipped == [{"id": local.id, "reason": "skipped-preinstalled"}]
    assert summary.errors == []
    assert record.version == "1.1.0"
    assert record.installedPath == str(coordinator.ctx.paths.base / STORE_ID_A / "1.1.0_0")
    assert record.iconPath == f"peersky://extension-icon/{STORE_ID_A}/32?v=1.1.0"
    assert record.update is not None and record.update.lastResult == "updated"
    assert host.loaded[STORE_ID_A] == record.installedPath
    assert Remove(STORE_ID_A) in host.commandsOf(Remove)
    assert recorder.updates == [(STORE_ID_A, "1.0.0", "1.1.0")]


@pytest.mark.asyncio
async def test_update_withoutNewVersionIsAlreadyLatest(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)

    summary = await coordinator.update()
    assert summary.updated == []
    assert summary.skipped == [{"id": STORE_ID_A, "reason": "already-latest"}]
    assert len(host.commandsOf(Load)) == 1


@pytest.mark.asyncio
async def test_update_disabledRecordIsRebasedWithoutLoading(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)
    await coordinator.toggle(STORE_ID_A, False)

    client.pendingUpdates[STORE_ID_A] = manifest("Store Ext", "2.0.0")
    summary = await coordinator.update()
    assert [entry["to"] for entry in summary.updated] == ["2.0.0"]
    assert coordinator.registry.require(STORE_ID_A).installedPath.endswith("2.0.0_0")
    assert len(host.commandsOf(Load)) == 1


@pytest.mark.asyncio
async def test_update_reloadFailureIsReported(tmp_path: Path):
    coordinator, host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)

    client.pendingUpdates[STORE_ID_A] = manifest("Store Ext", "1.0.1")
    host.failLoad = True
    summary = await coordinator.update()

    assert summary.updated == []
    assert summary.errors == [{
        "id": STORE_ID_A,
        "code": "E_LOAD_FAILED",
        "message": "Reload failed for Store Ext",
        "cause": "Failed to load extension: host refused to load",
    }]
    record = coordinator.registry.require(STORE_ID_A)
    assert record.hostId is None
    assert record.installedPath.endswith("1.0.1_0")


@pytest.mark.asyncio
async def test_update_missingDirectoriesAreSkipped(tmp_path: Path):
    coordinator, _host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)
    root = coordinator.ctx.paths.extensionRoot(STORE_ID_A)
    shutil.rmtree(root / "1.0.0_0")

    summary = await coordinator.update()
    assert summary.skipped == [{"id": STORE_ID_A, "reason": "no-installation-dir"}]

    (root / ".cache").mkdir()
    (root / "2.0.0_0.tmp.99").mkdir()
    summary = await coordinator.update()
    assert summary.skipped == [{"id": STORE_ID_A, "reason": "no-version-dir"}]


@pytest.mark.asyncio
async def test_update_invalidManifestIsAnError(tmp_path: Path):
    coordinator, _host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.0.0"))
    await coordinator.installFromStore(STORE_ID_A)
    broken = coordinator.ctx.paths.extensionRoot(STORE_ID_A) / "3.0.0_0"
    broken.mkdir()
    (broken / "manifest.json").write_text("{oops", encoding="utf-8")

    summary = await coordinator.update()
    assert summary.errors == [{"id": STORE_ID_A, "message": "Invalid manifest in 3.0.0_0"}]
    assert coordinator.registry.require(STORE_ID_A).version == "1.0.0"


@pytest.mark.asyncio
async def test_update_storeProblems(tmp_path: Path):
    coordinator, _host, _client = _setup(tmp_path, withStore=False)
    with pytest.raises(StoreError) as excInfo:
        await coordinator.update()
    assert excInfo.value.code == ErrorCode.NOT_AVAILABLE

    coordinator, _host, client = _setup(tmp_path / "other")
    client.failUpdate = True
    with pytest.raises(StoreError) as excInfo:
        await coordinator.update()
    assert excInfo.value.code == ErrorCode.UPDATE_FAILED


def _dirs(root: Path) -> list[str]:
    return sorted(p.name for p in root.iterdir())


@pytest.mark.asyncio
async def test_update_installedPathAlwaysPointsAtNewestDir(tmp_path: Path):
    coordinator, _host, client = _setup(tmp_path)
    client.publish(STORE_ID_A, manifest("Store Ext", "1.9.0"))
    await coordinator.installFromStore(STORE_ID_A)

    for version in ("1.10.0", "1.10.2", "2.0"):
        client.pendingUpdates[STORE_ID_A] = manifest("Store Ext", version)
        await coordinator.update()
        record = coordinator.registry.require(STORE_ID_A)
        assert record.installedPath == str(coordinator.ctx.paths.extensionRoot(STORE_ID_A) / f"{version}_0")
        assert record.version == version
    assert _dirs(coordinator.ctx.paths.extensionRoot(STORE_ID_A)) == ["1.10.0_0", "1.10.2_0", "1.9.0_0", "2.0_0"]
