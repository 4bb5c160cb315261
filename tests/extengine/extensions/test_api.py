# tests/extengine/extensions/test_api.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from extengine.core.hashing import shortPathHash
from extengine.extensions.api import describeSourcePath
from extengine.extensions.engine import Engine, buildEngine
from extengine.extensions.ratelimit import InstallRateLimiter
from tests.extengine.helpers import FakeHost, actionManifest, makeZip, manifest, writeExtensionDir


def _engine(tmp_path: Path) -> Engine:
    engine = buildEngine(tmp_path / "base", host=FakeHost(), register=False)
    engine.api.home = tmp_path / "home"
    return engine


def _zip(tmp_path: Path, data: dict[str, Any], fileName: str = "ext.zip") -> Path:
    archive = tmp_path / fileName
    archive.write_bytes(makeZip({"manifest.json": json.dumps(data)}))
    return archive


def test_describeSourcePath(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("DEBUG_EXT", raising=False)
    target = tmp_path / "secret" / "ext.zip"
    assert describeSourcePath(None) == "<invalid>"
    assert describeSourcePath(str(target)) == f"ext.zip [{shortPathHash(str(target.resolve()))}]"
    monkeypatch.setenv("DEBUG_EXT", "1")
    assert describeSourcePath(str(target)) == str(target)


@pytest.mark.asyncio
async def test_install_listAndInfo(tmp_path: Path):
    api = _engine(tmp_path).api
    result = await api.install("win-1", str(_zip(tmp_path, manifest("Demo", "1.2.3"))))

    assert result["success"] is True
    assert result["outcome"] == "allow"
    ext = result["extension"]
    assert (ext["name"], ext["version"], ext["source"]) == ("Demo", "1.2.3", "file-zip")

    listed = await api.list()
    assert [item["id"] for item in listed["extensions"]] == [ext["id"]]

    info = await api.getInfo(ext["id"])
    assert info["extension"]["installedPath"] == ext["installedPath"]

    icon = await api.getIconUrl(ext["id"], "999")
    assert icon == {"success": True, "iconUrl": f"peersky://extension-icon/{ext['id']}/64?v=1.2.3"}


@pytest.mark.asyncio
async def test_failures_areEnvelopedWithEmptyPayload(tmp_path: Path):
    api = _engine(tmp_path).api

    assert await api.getInfo("nope") == {
        "success": False,
        "extension": None,
        "code": "E_INVALID_ID",
        "error": "Extension nope not found",
    }
    traversal = await api.install("win-1", "../../etc")
    assert traversal["success"] is False
    assert traversal["code"] == "E_PATH_TRAVERSAL"
    assert traversal["extension"] is None
    assert traversal["warnings"] == []

    updated = await api.updateAll()
    assert updated["code"] == "E_NOT_AVAILABLE"
    assert (updated["updated"], updated["skipped"], updated["errors"]) == ([], [], [])


@pytest.mark.asyncio
async def test_unexpectedErrors_becomeUnknown(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    engine = _engine(tmp_path)

    async def _boom() -> list[Any]:
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.coordinator, "list", _boom)
    assert await engine.api.list() == {"success": False, "extensions": [], "code": "E_UNKNOWN", "error": "boom"}


@pytest.mark.asyncio
async def test_install_directoriesMustLiveInUserDirs(tmp_path: Path):
    api = _engine(tmp_path).api
    outside = writeExtensionDir(tmp_path / "elsewhere" / "ext", manifest("Outside"))
    inside = writeExtensionDir(tmp_path / "home" / "Downloads" / "ext", manifest("Inside"))

    rejected = await api.install("win-1", str(outside))
    assert rejected["code"] == "E_PATH_TRAVERSAL"
    assert rejected["error"] == "Source path not in allowed directories"

    accepted = await api.install("win-1", str(inside))
    assert accepted["success"] is True
    assert accepted["extension"]["source"] == "unpacked"


@pytest.mark.asyncio
async def test_install_isRateLimitedPerSender(tmp_path: Path):
    api = _engine(tmp_path).api
    api.limiter = InstallRateLimiter(limit=2, windowMs=1000, clock=lambda: 0)

    for _ in range(2):
        assert (await api.install("win-1", "missing.zip"))["code"] == "E_INVALID_PATH"
    limited = await api.install("win-1", "missing.zip")
    assert limited["code"] == "E_RATE_LIMIT"
    assert limited["retryAfterMs"] == 1000
    assert (await api.install("win-2", "missing.zip"))["code"] == "E_INVALID_PATH"


@pytest.mark.asyncio
async def test_argumentChecks(tmp_path: Path):
    api = _engine(tmp_path).api

    notBool = await api.toggle("abc", "yes")
    assert (notBool["code"], notBool["error"]) == ("E_INVALID_ID", "enabled must be a boolean")
    assert (await api.toggle(None, True))["error"] == "Extension id must be a non-empty string"
    assert (await api.uninstall("  "))["code"] == "E_INVALID_ID"
    assert (await api.installFromStore(""))["code"] == "E_INVALID_URL"
    assert (await api.installFromStore("a" * 32))["code"] == "E_NOT_AVAILABLE"
    assert (await api.registerTab("x", 5))["success"] is False


@pytest.mark.asyncio
async def test_installUpload_removesTheUpload(tmp_path: Path):
    engine = _engine(tmp_path)
    data = makeZip({"manifest.json": json.dumps(manifest("Uploaded"))})

    result = await engine.api.installUpload("win-1", "C:\\Users\\me\\Uploaded Ext.zip", data)
    assert result["success"] is True
    assert result["extension"]["name"] == "Uploaded"
    assert list(engine.ctx.paths.uploadsDir.iterdir()) == []

    rejected = await engine.api.installUpload("win-1", "tool.exe", b"MZ")
    assert rejected["code"] == "E_INVALID_PATH"
    assert rejected["extension"] is None


@pytest.mark.asyncio
async def test_pinEnvelopes(tmp_path: Path):
    api = _engine(tmp_path).api
    withAction = (await api.install("win-1", str(_zip(tmp_path, actionManifest("Act"), "act.zip"))))["extension"]
    plain = (await api.install("win-1", str(_zip(tmp_path, manifest("Plain"), "plain.zip"))))["extension"]

    assert await api.getPinned() == {"success": True, "pinned": [withAction["id"]]}
    assert await api.unpin(withAction["id"]) == {"success": True, "pinned": []}
    assert await api.pin(withAction["id"]) == {"success": True, "pinned": [withAction["id"]]}

    refused = await api.pin(plain["id"])
    assert refused["code"] == "E_INVALID_STATE"
    assert refused["pinned"] == []


@pytest.mark.asyncio
async def test_toggleUninstallAndStatus(tmp_path: Path):
    api = _engine(tmp_path).api
    ext = (await api.install("win-1", str(_zip(tmp_path, manifest("Demo")))))["extension"]

    toggled = await api.toggle(ext["id"], False)
    assert toggled["extension"]["enabled"] is False

    status = await api.status()
    assert status["success"] is True
    assert (status["extensionCount"], status["enabledCount"]) == (1, 0)

    assert await api.uninstall(ext["id"]) == {"success": True}
    assert (await api.list())["extensions"] == []
    assert await api.closeAllPopups() == {"success": True, "closed": 0}
    assert await api.unregisterTab(99) == {"success": True, "removed": False}
