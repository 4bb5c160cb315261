# tests/extengine/extensions/test_manifest_file.py
from __future__ import annotations

from pathlib import Path

from extengine.extensions.manifest_file import findExtensionManifest, locateManifestRoot


def test_findExtensionManifest_prefersCanonicalName(tmp_path: Path):
    (tmp_path / "manifest.json").write_text('{"name": "A"}', encoding="utf-8")
    (tmp_path / "manifest.mv3.json").write_text('{"name": "B"}', encoding="utf-8")
    found = findExtensionManifest(tmp_path)
    assert found is not None
    assert found.data == {"name": "A"}
    assert not found.isAlternate


def test_findExtensionManifest_skipsBrokenAndUsesAlternates(tmp_path: Path):
    (tmp_path / "manifest.json").write_text("{broken", encoding="utf-8")
    (tmp_path / "manifest.chrome.json").write_text("{name: 'C', // json5\n}", encoding="utf-8")
    found = findExtensionManifest(tmp_path)
    assert found is not None
    assert found.path.name == "manifest.chrome.json"
    assert found.data == {"name": "C"}
    assert found.isAlternate


def test_findExtensionManifest_none(tmp_path: Path):
    assert findExtensionManifest(tmp_path) is None


def test_locateManifestRoot(tmp_path: Path):
    nested = tmp_path / "extract"
    (nested / "my-ext").mkdir(parents=True)
    (nested / "__MACOSX").mkdir()
    (nested / "my-ext" / "manifest.json").write_text("{}", encoding="utf-8")
    assert locateManifestRoot(nested) == nested / "my-ext"

    (nested / "stray.txt").write_text("x", encoding="utf-8")
    assert locateManifestRoot(nested) is None

    flat = tmp_path / "flat"
    flat.mkdir()
    (flat / "manifest.json").write_text("{}", encoding="utf-8")
    assert locateManifestRoot(flat) == flat
