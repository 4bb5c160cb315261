# tests/extengine/extensions/test_services.py
from __future__ import annotations

from pathlib import Path

import pytest

from extengine.core.errors import ErrorCode, FilesystemError, InputError, RateLimitError
from extengine.extensions.host import PopupSpec, Rect
from extengine.extensions.popups import PopupTracker
from extengine.extensions.ratelimit import InstallRateLimiter
from extengine.extensions.tabs import TabRegistry
from extengine.extensions.uploads import UploadService, safeUploadName
from tests.extengine.helpers import FakePopup, makeContext


def _popup() -> FakePopup:
    return FakePopup(PopupSpec(
        url="chrome-extension://x/popup.html",
        bounds=Rect(0, 0, 400, 600),
        parentWindowId=1,
        boundsOverride=lambda rect: rect,
        windowOpenHandler=lambda url: "allow",
    ))


def test_popupTracker_sparesStabilizingPopups():
    now = [0]
    tracker = PopupTracker(stabilizationMs=2000, clock=lambda: now[0])
    fresh = _popup()
    tracker.register(fresh)

    now[0] = 1999
    assert tracker.isStabilizing(fresh)
    assert tracker.onTabActivated(1) == 0
    assert not fresh.closed

    now[0] = 2000
    assert tracker.closeAll() == 1
    assert fresh.closed
    assert tracker.activeCount() == 0


def test_popupTracker_forceClosesEverything():
    tracker = PopupTracker(clock=lambda: 0)
    popups = [_popup(), _popup()]
    for popup in popups:
        tracker.register(popup)
    popups[0].close()  # closed by the user; untracked through onClosed
    assert tracker.activeCount() == 1
    assert tracker.closeAll(force=True) == 1


def test_popupTracker_ignoresDestroyedHandles():
    tracker = PopupTracker()
    popup = _popup()
    popup.closed = True
    tracker.register(popup)
    assert tracker.activeCount() == 0


def test_tabRegistry():
    tabs = TabRegistry()
    tabs.registerTab(10, 42)
    tabs.registerTab(10, 43)
    tabs.registerTab(11, 43)
    assert tabs.tabsFor(10) == [42]
    assert tabs.hostFor(43) == 11
    assert tabs.unregisterTab(42) is True
    assert tabs.unregisterTab(42) is False
    assert len(tabs) == 1


@pytest.mark.parametrize("bad", [0, -1, True, "10", None, 1.5])
def test_tabRegistry_rejectsBadIds(bad):
    with pytest.raises(InputError) as excInfo:
        TabRegistry().registerTab(bad, 1)
    assert excInfo.value.code == ErrorCode.INVALID_ID


def test_rateLimiter_slidingWindow():
    now = [0]
    limiter = InstallRateLimiter(limit=2, windowMs=1000, clock=lambda: now[0])
    limiter.check("a")
    limiter.check("a")
    limiter.check("b")
    now[0] = 400
    with pytest.raises(RateLimitError) as excInfo:
        limiter.check("a")
    assert excInfo.value.extra == {"retryAfterMs": 600}
    now[0] = 1000
    limiter.check("a")
    limiter.reset()
    limiter.check("a")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("ext.zip", "ext.zip"),
        ("../../etc/evil.crx", "evil.crx"),
        ("C:\\Users\\me\\my ext (1).zip", "my_ext_1_.zip"),
        ("...", "upload"),
    ],
)
def test_safeUploadName(name: str, expected: str):
    assert safeUploadName(name) == expected


def test_safeUploadName_capsLengthKeepingSuffix():
    cleaned = safeUploadName("a" * 300 + ".zip")
    assert len(cleaned) == 100
    assert cleaned.endswith(".zip")


def test_uploadService_saveAndDiscard(tmp_path: Path):
    ctx = makeContext(tmp_path)
    uploads = UploadService(ctx, maxBytes=10)
    saved = uploads.save("my ext.zip", b"PK")
    assert saved.parent == ctx.paths.uploadsDir
    assert saved.name.endswith("-my_ext.zip")
    assert saved.read_bytes() == b"PK"

    outsider = tmp_path / "keep.zip"
    outsider.write_bytes(b"x")
    uploads.discard(outsider)
    assert outsider.exists()
    uploads.discard(saved)
    assert not saved.exists()


def test_uploadService_rejects(tmp_path: Path):
    uploads = UploadService(makeContext(tmp_path), maxBytes=10)
    with pytest.raises(InputError, match="Unsupported file type"):
        uploads.save("ext.exe", b"MZ")
    with pytest.raises(InputError):
        uploads.save("", b"PK")
    with pytest.raises(InputError):
        uploads.save("ext.zip", "not bytes")
    with pytest.raises(FilesystemError, match="Upload too large"):
        uploads.save("ext.zip", b"x" * 11)
