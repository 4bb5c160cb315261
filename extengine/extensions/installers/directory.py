# extengine/extensions/installers/directory.py
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from os import PathLike
from pathlib import Path

from extengine.core.errors import ErrorCode, FilesystemError, ValidationFailedError
from extengine.core.fsutils import atomicReplaceDir, copyTree, removeTree
from extengine.core.time import nowMs
from extengine.extensions.ids import deriveId
from extengine.extensions.installers.base import Installer, StagedExtension, writeCanonicalManifest
from extengine.extensions.manifest_file import findExtensionManifest
from extengine.extensions.versions import TMP_MARKER, normalizeVersion
from extengine.validation.validator import ValidationOutcome

__all__ = ["DirectoryInstaller"]

logger = logging.getLogger(__name__)



class DirectoryInstaller(Installer):
    """Installs an unpacked extension directory by copying it into the engine's base dir."""
    source = "unpacked"

    def stage(self, sourcePath: str | PathLike[str]) -> StagedExtension:
        srcDir = Path(sourcePath)
        found = findExtensionManifest(srcDir)
        if found is None:
            raise ValidationFailedError("No valid manifest.json (or supported alternative) found in extension directory")
        if not isinstance(found.data, Mapping):
            raise ValidationFailedError("Manifest must be a valid JSON object")

        manifest = dict(found.data)
        originalVersion = manifest.get("version")
        version = normalizeVersion(originalVersion)
        manifest["version"] = version

        validator = self.ctx.validator()
        manifestReport = validator.validate(manifest)
        decision = validator.decide(manifestReport)
        if decision.outcome == ValidationOutcome.DENY:
            logger.warning("Rejected unpacked extension '%s': %s", srcDir.name, "; ".join(decision.errors or decision.warnings))
            raise ValidationFailedError("; ".join(decision.errors or decision.warnings), report=decision)

        provisionalId = deriveId(manifest)
        stagingDir = self.newStagingDir("dir")
        try:
            copyTree(srcDir, stagingDir)
            if found.isAlternate or originalVersion != version:
                writeCanonicalManifest(stagingDir, manifest)
            report = validator.decide(manifestReport, validator.validateFiles(stagingDir))
        except OSError as err:
            removeTree(stagingDir)
            raise FilesystemError(ErrorCode.INSTALL_FAILED, f"Failed to copy extension directory: {err.strerror or err}") from err
        except BaseException:
            removeTree(stagingDir)
            raise

        return StagedExtension(
            stagingDir=stagingDir,
            contentDir=stagingDir,
            manifest=manifest,
            provisionalId=provisionalId,
            version=version,
            source="unpacked",
            validation=report,
            sourceName=srcDir.name,
        )

    def placeIntoTarget(self, staged: StagedExtension, target: Path) -> None:
        """Moves the staged copy next to the target as `<v>_0.tmp.<ms>`, then renames it in."""
        tmpTarget = target.with_name(f"{target.name}{TMP_MARKER}{nowMs()}")
        try:
            os.replace(staged.contentDir, tmpTarget)
            atomicReplaceDir(tmpTarget, target)
        except BaseException:
            removeTree(tmpTarget)
            raise
