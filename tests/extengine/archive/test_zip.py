# tests/extengine/archive/test_zip.py
from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from extengine.archive.zip import checkEntryName, extractZipBuffer, extractZipFile
from extengine.core.errors import ArchiveError
from tests.extengine.helpers import makeZip


def _allFiles(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def test_extractsStoredAndDeflatedEntries(tmp_path: Path):
    for compression in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
        dest = tmp_path / f"out-{compression}"
        result = extractZipBuffer(makeZip({"manifest.json": "{}", "js/bg.js": "x" * 100}, compression=compression), dest)
        assert sorted(result.extracted) == ["js/bg.js", "manifest.json"]
        assert result.totalBytes == 102
        assert _allFiles(dest) == ["js/bg.js", "manifest.json"]


def test_traversalEntry_isSkipped_othersExtracted(tmp_path: Path):
    buf = makeZip({"../foo": "evil", "manifest.json": "{}", "icon.png": "png"})
    dest = tmp_path / "dest"
    result = extractZipBuffer(buf, dest)

    assert [entry.name for entry in result.skipped] == ["../foo"]
    assert result.skipped[0].reason == "parent directory segment"
    assert sorted(result.extracted) == ["icon.png", "manifest.json"]
    assert not (tmp_path / "foo").exists()


def test_extractionNeverWritesOutsideTarget(tmp_path: Path):
    buf = makeZip({
        "/abs.txt": "a",
        "C:/drive.txt": "b",
        "a/../../escape.txt": "c",
        "ok/inner.txt": "d",
    })
    dest = tmp_path / "dest"
    result = extractZipBuffer(buf, dest)
    assert len(result.skipped) == 3
    written = [p for p in tmp_path.rglob("*") if p.is_file()]
    assert all(p.resolve().is_relative_to(dest.resolve()) for p in written)
    assert _allFiles(dest) == ["ok/inner.txt"]


@pytest.mark.parametrize(
    "name, reason",
    [
        ("", "empty name"),
        ("a\\b.txt", "backslash in name"),
        ("/etc/passwd", "absolute path"),
        ("D:evil", "drive letter"),
        ("x/../y", "parent directory segment"),
        ("fine/name.js", None),
    ],
)
def test_checkEntryName(name: str, reason: str | None):
    assert checkEntryName(name) == reason


def test_unsupportedCompression_isSkipped(tmp_path: Path):
    buf = bytearray(makeZip({"manifest.json": "{}"}, compression=zipfile.ZIP_STORED))
    # Compression method lives at offset 8 of the local header and 10 of the central header
    local = buf.find(b"PK\x03\x04")
    central = buf.find(b"PK\x01\x02")
    buf[local + 8:local + 10] = (99).to_bytes(2, "little")
    buf[central + 10:central + 12] = (99).to_bytes(2, "little")
    result = extractZipBuffer(bytes(buf), tmp_path / "dest")
    assert result.extracted == []
    assert result.skipped[0].reason == "unsupported compression method 99"


def test_invalidArchive_raises(tmp_path: Path):
    with pytest.raises(ArchiveError, match="Invalid ZIP archive"):
        extractZipBuffer(b"not a zip at all", tmp_path / "dest")


def test_limits_areEnforced(tmp_path: Path):
    buf = makeZip({f"f{i}.js": "x" for i in range(5)})
    with pytest.raises(ArchiveError, match="too many entries"):
        extractZipBuffer(buf, tmp_path / "a", maxEntries=4)
    with pytest.raises(ArchiveError, match="exceeds size limit"):
        extractZipBuffer(makeZip({"big.js": "x" * 1000}), tmp_path / "b", maxTotalBytes=999)


def test_extractZipFile_readsFromDisk(tmp_path: Path):
    archive = tmp_path / "ext.zip"
    archive.write_bytes(makeZip({"manifest.json": "{}"}))
    assert extractZipFile(archive, tmp_path / "dest").extracted == ["manifest.json"]
