# extengine/extensions/installers/archive.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from os import PathLike
from pathlib import Path

from extengine.archive.crx import isCrxFile, parseCrxBuffer
from extengine.archive.zip import ExtractionResult, extractZipBuffer, extractZipFile
from extengine.core.errors import ErrorCode, FilesystemError, InputError, ValidationFailedError
from extengine.core.fsutils import removeTree
from extengine.extensions.ids import deriveId
from extengine.extensions.installers.base import Installer, StagedExtension, writeCanonicalManifest
from extengine.extensions.manifest_file import findExtensionManifest, locateManifestRoot
from extengine.extensions.models import ExtensionSource
from extengine.extensions.versions import normalizeVersion

__all__ = ["ArchiveInstaller", "classifyArchive", "ZIP_SUFFIXES", "CRX_SUFFIXES"]

logger = logging.getLogger(__name__)

ZIP_SUFFIXES = (".zip",)
CRX_SUFFIXES = (".crx", ".crx3")



def classifyArchive(path: str | PathLike[str]) -> ExtensionSource:
    """"file-zip" or "file-crx" by suffix, falling back to the CRX magic bytes."""
    lower = str(path).lower()
    if lower.endswith(ZIP_SUFFIXES):
        return "file-zip"
    if lower.endswith(CRX_SUFFIXES) or isCrxFile(path):
        return "file-crx"
    raise InputError(ErrorCode.INVALID_PATH, "Unsupported archive type; expected .zip or .crx")



class ArchiveInstaller(Installer):
    """Installs ZIP and CRX (v2/v3) archives."""
    source = "file-zip"

    def stage(self, sourcePath: str | PathLike[str]) -> StagedExtension:
        archivePath = Path(sourcePath)
        sourceType = classifyArchive(archivePath)
        stagingDir = self.newStagingDir("arc")
        try:
            return self._stageInto(archivePath, sourceType, stagingDir)
        except BaseException:
            removeTree(stagingDir)
            raise

    def _extract(self, archivePath: Path, sourceType: ExtensionSource, stagingDir: Path) -> tuple[ExtractionResult, str | None]:
        rules = self.ctx.policy.files
        caps = {"maxEntries": rules.maxTotalFilesBlock, "maxTotalBytes": rules.maxTotalBytesBlock}
        if sourceType == "file-zip":
            return extractZipFile(archivePath, stagingDir, **caps), None

        try:
            buf = archivePath.read_bytes()
        except OSError as err:
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Cannot read archive: {err.strerror or err}") from err
        crx = parseCrxBuffer(buf)
        logger.debug("CRX v%d with %d byte payload", crx.version, len(crx.zipBuffer))
        return extractZipBuffer(crx.zipBuffer, stagingDir, **caps), crx.publicKeyBase64

    def _stageInto(self, archivePath: Path, sourceType: ExtensionSource, stagingDir: Path) -> StagedExtension:
        result, publicKey = self._extract(archivePath, sourceType, stagingDir)
        extraWarnings = [f"Skipped archive entry: {entry.name} ({entry.reason})" for entry in result.skipped]

        contentDir = locateManifestRoot(stagingDir)
        found = findExtensionManifest(contentDir) if contentDir is not None else None
        if contentDir is None or found is None:
            raise ValidationFailedError("No manifest.json found in archive")
        if not isinstance(found.data, Mapping):
            raise ValidationFailedError("Manifest must be a valid JSON object")

        manifest = dict(found.data)
        originalVersion = manifest.get("version")
        version = normalizeVersion(originalVersion)
        manifest["version"] = version
        if found.isAlternate or originalVersion != version:
            writeCanonicalManifest(contentDir, manifest)

        validator = self.ctx.validator()
        report = validator.validateExtension(contentDir, manifest, local=True)
        provisionalId = deriveId(manifest)
        logger.info(
            "Staged %s '%s' %s (%d files, outcome=%s)",
            sourceType, manifest.get("name"), version, report.fileCount, report.outcome.value,
        )
        return StagedExtension(
            stagingDir=stagingDir,
            contentDir=contentDir,
            manifest=manifest,
            provisionalId=provisionalId,
            version=version,
            source=sourceType,
            validation=report,
            publicKey=publicKey,
            sourceName=archivePath.name,
            extraWarnings=extraWarnings,
        )
