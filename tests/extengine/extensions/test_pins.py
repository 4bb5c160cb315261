# tests/extengine/extensions/test_pins.py
from __future__ import annotations

import json
from pathlib import Path

import pytest

from extengine.core.errors import ErrorCode, InputError, StateError
from extengine.extensions.models import ExtensionRecord
from extengine.extensions.pins import PinService
from extengine.extensions.registry import ExtensionRegistry
from tests.extengine.helpers import actionManifest, makeContext, manifest


def _setup(tmp_path: Path, count: int, capacity: int = 6) -> tuple[PinService, ExtensionRegistry]:
    ctx = makeContext(tmp_path, pinCapacity=capacity)
    registry = ExtensionRegistry(ctx)
    for idx in range(count):
        registry.add(ExtensionRecord(
            id=f"ext{idx}",
            name=f"Ext {idx}",
            version="1.0.0",
            manifest=actionManifest(f"Ext {idx}"),
            installedPath=str(tmp_path / f"ext{idx}"),
            source="unpacked",
        ))
    return PinService(ctx, registry), registry


def test_pin_capacityIsEnforced(tmp_path: Path):
    pins, _registry = _setup(tmp_path, 7)
    for idx in range(6):
        assert pins.pin(f"ext{idx}") is True
    with pytest.raises(StateError) as excInfo:
        pins.pin("ext6")
    assert excInfo.value.code == ErrorCode.PIN_LIMIT
    assert pins.getPinned() == [f"ext{idx}" for idx in range(6)]
    assert pins.pin("ext0") is True  # already pinned


def test_pin_requiresEligibleRecord(tmp_path: Path):
    pins, registry = _setup(tmp_path, 1)
    registry.add(ExtensionRecord(id="plain", name="Plain", version="1", manifest=manifest("Plain"), installedPath="x", source="unpacked"))
    registry.get("ext0").enabled = False

    with pytest.raises(InputError):
        pins.pin("nope")
    with pytest.raises(StateError, match="disabled"):
        pins.pin("ext0")
    with pytest.raises(StateError, match="no toolbar action"):
        pins.pin("plain")


def test_unpinAndPersistence(tmp_path: Path):
    pins, _registry = _setup(tmp_path, 2)
    pins.pin("ext0")
    pins.pin("ext1")
    assert pins.unpin("ext0") is True
    assert pins.unpin("ext0") is False
    stored = json.loads((tmp_path / "pinned.json").read_text(encoding="utf-8"))
    assert stored == {"pinnedExtensions": ["ext1"]}


def test_getPinnedFiltersIneligibleAndPrunePersists(tmp_path: Path):
    pins, registry = _setup(tmp_path, 2)
    (tmp_path / "pinned.json").write_text(json.dumps({"pinnedExtensions": ["ext0", "gone", "ext0", 5, "ext1"]}), encoding="utf-8")
    registry.get("ext1").enabled = False

    assert pins.getPinned() == ["ext0"]
    assert pins.prune() == ["ext0"]
    assert json.loads((tmp_path / "pinned.json").read_text(encoding="utf-8")) == {"pinnedExtensions": ["ext0"]}


def test_autoPin_neverRaises(tmp_path: Path):
    pins, _registry = _setup(tmp_path, 3, capacity=2)
    assert pins.autoPin("ext0") is True
    assert pins.autoPin("ext1") is True
    assert pins.autoPin("ext2") is False
    assert pins.autoPin("missing") is False
    assert pins.getPinned() == ["ext0", "ext1"]
