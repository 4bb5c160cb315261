# extengine/extensions/coordinator.py
from __future__ import annotations

import contextlib
import inspect
import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any

from extengine.app.globals import getTracer
from extengine.core.errors import (
    ErrorCode,
    ExtensionError,
    HostError,
    StateError,
    StoreError,
    ValidationFailedError,
)
from extengine.core.fsutils import atomicReplaceDir, ensureDir, isInside, removeTree
from extengine.core.jsonutils import readJsonSafe
from extengine.core.logging import clearLogContext, getLogContext, setLogContext
from extengine.core.time import nowIso, nowMs
from extengine.extensions.context import EngineContext
from extengine.extensions.host import HostCommandRunner, HostExtensions, LoadedExtension
from extengine.extensions.icons import REFRESH_ICON_SIZES, iconUrl, pickIconSize, pickSmallestIconSize
from extengine.extensions.installers import Installer, StagedExtension, prepare
from extengine.extensions.locales import resolveManifestStrings
from extengine.extensions.manifest_file import MANIFEST_FILE_NAME
from extengine.extensions.models import ExtensionRecord, LifecycleListener, UpdateInfo
from extengine.extensions.pins import PinService
from extengine.extensions.popups import PopupTracker
from extengine.extensions.preinstalled import PreinstalledReport, installBundledPreinstalled
from extengine.extensions.registry import CleanupReport, ExtensionRegistry, isPreferredDuplicate
from extengine.extensions.store import StoreAdapter
from extengine.extensions.versions import TMP_MARKER, chooseLatestVersionDir, versionOfDir
from extengine.validation.validator import ValidationOutcome
from extengine.validation.webstore_url import buildWebStoreUrl

__all__ = ["InstallResult", "UpdateSummary", "LifecycleCoordinator"]

logger = logging.getLogger(__name__)

_INIT_LOCK_KEY = "global:init"



@dataclass(slots=True)
class InstallResult:
    extension: ExtensionRecord
    warnings: list[str] = field(default_factory=list)
    outcome: ValidationOutcome = ValidationOutcome.ALLOW
    requiresConfirmation: bool = False
    loadError: str | None = None

    def toDict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "extension": self.extension.toJson(),
            "warnings": list(self.warnings),
            "outcome": self.outcome.value,
            "requiresConfirmation": self.requiresConfirmation,
        }
        if self.loadError:
            out["loadError"] = self.loadError
            out["loadErrorCode"] = ErrorCode.LOAD_FAILED.value
        return out



@dataclass(slots=True)
class UpdateSummary:
    updated: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def toDict(self) -> dict[str, Any]:
        return {"updated": list(self.updated), "skipped": list(self.skipped), "errors": list(self.errors)}



class LifecycleCoordinator:
    """
    Owns the extension lifecycle: install, store install, toggle, uninstall,
    update sweep, pins, and host binding.

    Every mutator runs under the matching scoped lock:
      - install(src)          install:<src> then extension:<id>
      - installFromStore(x)   global:install then extension:<id>
      - toggle/uninstall/pin  extension:<id>
      - update()              global:update, each record under extension:<id>
    Reads (list, status, getInfo) take no lock.
    """

    def __init__(
        self,
        ctx: EngineContext,
        *,
        host: HostExtensions,
        store: StoreAdapter | None = None,
        popups: PopupTracker | None = None,
    ) -> None:
        self.ctx = ctx
        self.locks = ctx.locks
        self.registry = ExtensionRegistry(ctx)
        self.pins = PinService(ctx, self.registry)
        self.runner = HostCommandRunner(host)
        self.store = store or StoreAdapter()
        self.popups = popups or PopupTracker()
        self._listeners: list[LifecycleListener] = []
        self._initialized = False

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #

    def addListener(self, listener: LifecycleListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def removeListener(self, listener: LifecycleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, hook: str, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                result = getattr(listener, hook)(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Lifecycle listener %s.%s failed", type(listener).__name__, hook)

    @contextlib.contextmanager
    def _operation(self, name: str, **attrs: Any) -> Iterator[None]:
        """Log context + trace span around one public operation."""
        previous = getLogContext()
        setLogContext(operation=name, **attrs)
        tracer = getTracer()
        try:
            span = tracer.startSpan(f"extensions.{name}", attrs={"operation": name, **attrs}, tags=["extensions", name])
        except Exception:
            span = None

        try:
            yield
        except BaseException as err:
            if span is not None:
                try:
                    tracer.endSpan(
                        span,
                        status="error",
                        level="warning",
                        errorType=type(err).__name__,
                        errorMessage=str(err),
                        attrs={"code": err.code.value} if isinstance(err, ExtensionError) else None,
                    )
                except Exception:
                    pass
            raise
        else:
            if span is not None:
                try:
                    tracer.endSpan(span, status="ok")
                except Exception:
                    pass
        finally:
            clearLogContext()
            if previous:
                setLogContext(**previous)

    def _allowFileAccess(self, record: ExtensionRecord) -> bool:
        return record.source == "preinstalled" and record.privileged

    async def _loadIntoHost(self, record: ExtensionRecord, path: str | None = None) -> LoadedExtension:
        loaded = await self.runner.load(path or record.installedPath, allowFileAccess=self._allowFileAccess(record))
        logger.info("Extension loaded: %s (%s)", record.label, loaded.id)
        return loaded

    async def _removeFromHostQuietly(self, hostId: str | None, label: str) -> None:
        if not hostId:
            return
        try:
            await self.runner.remove(hostId)
        except HostError as err:
            logger.warning("Failed to unload '%s' from host: %s", label, err)

    # ------------------------------------------------------------------ #
    # Startup / shutdown
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """Loads the registry and binds enabled extensions to the host. Safe to call repeatedly."""
        if self._initialized:
            return
        await self.locks.mutex.run(_INIT_LOCK_KEY, self._initializeLocked)

    async def _initializeLocked(self) -> None:
        if self._initialized:
            return
        with self._operation("initialize"):
            ensureDir(self.ctx.paths.base)
            self.registry.load()
            await self.installBundledPreinstalled()

            for record in self.registry.all():
                if not record.enabled:
                    record.hostId = None
                    continue
                try:
                    loaded = await self._loadIntoHost(record)
                except HostError as err:
                    logger.error("Failed to load extension '%s': %s", record.label, err)
                    record.hostId = None
                    continue
                record.hostId = loaded.id
                await self._notify("onLoaded", record)

            self.pins.prune()
            self._sweepTemporaryDirs()
            self.registry.write()
            self._initialized = True
            logger.info("Extension engine initialized with %d extension(s)", len(self.registry))

    async def installBundledPreinstalled(self) -> PreinstalledReport:
        report = installBundledPreinstalled(self.ctx, self.registry)
        for extId in report.pruned:
            self.pins.removeIfPresent(extId)
        if report.imported or report.pruned:
            self.registry.write()
        return report

    def _sweepTemporaryDirs(self) -> None:
        """Nothing is in flight at startup, so every staging/upload leftover is stale."""
        paths = self.ctx.paths
        for leftoverRoot in (paths.stagingDir, paths.uploadsDir):
            if not leftoverRoot.is_dir():
                continue
            for entry in leftoverRoot.iterdir():
                removeTree(entry)

        for record in self.registry.all():
            root = paths.extensionRoot(record.id)
            if not root.is_dir():
                continue
            for entry in root.iterdir():
                if TMP_MARKER in entry.name:
                    logger.debug("Removing leftover temp dir for %s", record.id)
                    removeTree(entry)

    async def shutdown(self) -> None:
        """Persists, unloads everything from the host and force-closes popups."""
        with self._operation("shutdown"):
            self.registry.write()
            for record in self.registry.all():
                await self._removeFromHostQuietly(record.hostId, record.label)
            self.popups.closeAll(force=True)
            self._initialized = False

    # ------------------------------------------------------------------ #
    # Install
    # ------------------------------------------------------------------ #

    async def install(self, sourcePath: str | PathLike[str]) -> InstallResult:
        """
        Installs an unpacked directory or a ZIP/CRX archive. The caller is
        expected to have sanitized the path.
        """
        await self.initialize()
        source = str(sourcePath)
        with self._operation("install", source=Path(source).name):
            return await self.locks.source(source, lambda: self._installFromSource(source))

    async def _installFromSource(self, source: str) -> InstallResult:
        installer, staged = prepare(self.ctx, source)
        try:
            await self._notify("onStaged", staged.provisionalId, staged.manifest)
            setLogContext(extensionId=staged.provisionalId)
            return await self.locks.extension(staged.provisionalId, lambda: self._commitStaged(installer, staged))
        finally:
            installer.discard(staged)

    async def _commitStaged(self, installer: Installer, staged: StagedExtension) -> InstallResult:
        existing = self.registry.findByProvisionalId(staged.provisionalId)
        if existing is not None:
            raise StateError(ErrorCode.ALREADY_EXISTS, f"Extension {existing.id} is already installed")
        if staged.denied:
            report = staged.validation
            raise ValidationFailedError("; ".join(report.errors or report.warnings), report=report)

        record = installer.commit(staged)
        self.registry.add(record)
        self.registry.write()
        await self._notify("onInstalled", record)

        loadError: str | None = None
        if record.enabled:
            try:
                loaded = await self._loadIntoHost(record)
            except HostError as err:
                logger.error("Installed '%s' but the host failed to load it: %s", record.label, err)
                loadError = err.message
            else:
                record, loadError = await self._adoptHostId(record, loaded)
                self.registry.write()
                if record.hostId:
                    await self._notify("onLoaded", record)

        self.pins.autoPin(record.id)
        return InstallResult(
            extension=record,
            warnings=list(record.warnings),
            outcome=staged.validation.outcome,
            requiresConfirmation=staged.validation.requiresConfirmation,
            loadError=loadError,
        )

    async def _adoptHostId(self, record: ExtensionRecord, loaded: LoadedExtension) -> tuple[ExtensionRecord, str | None]:
        """
        Reconciles the provisional id with the id the host assigned.

        A host id that already belongs to another record rolls the install back
        with E_ALREADY_EXISTS. Otherwise the files move to `<base>/<hostId>/`,
        the extension is reloaded from there and the record is re-keyed.
        """
        hostId = loaded.id
        if not hostId or hostId == record.id:
            record.hostId = hostId or None
            return record, None

        conflict = self.registry.get(hostId) or self.registry.findByHostId(hostId)
        if conflict is not None and conflict.id != record.id:
            if conflict.hostId != hostId:
                await self._removeFromHostQuietly(hostId, record.label)
            removeTree(self.ctx.paths.extensionRoot(record.id))
            self.registry.remove(record.id)
            self.registry.write()
            if conflict.enabled and conflict.hostId:
                # Same host id means our load displaced the existing copy
                try:
                    await self._loadIntoHost(conflict)
                except HostError as err:
                    logger.error("Could not restore '%s' after rollback: %s", conflict.label, err)
                    conflict.hostId = None
                    self.registry.write()
            if isPreferredDuplicate(conflict):
                message = f"Extension conflicts with system extension {conflict.label}"
            else:
                message = f"Extension {hostId} is already installed"
            raise StateError(ErrorCode.ALREADY_EXISTS, message)

        return await self.locks.extension(hostId, lambda: self._moveToHostId(record, hostId))

    async def _moveToHostId(self, record: ExtensionRecord, hostId: str) -> tuple[ExtensionRecord, str | None]:
        oldRoot = self.ctx.paths.extensionRoot(record.id)
        oldPath = Path(record.installedPath)
        newPath = self.ctx.paths.extensionRoot(hostId) / oldPath.name

        await self._removeFromHostQuietly(hostId, record.label)
        atomicReplaceDir(oldPath, newPath)
        iconSize = pickIconSize(record.manifest.get("icons"))
        moved = record.model_copy(update={
            "id": hostId,
            "installedPath": str(newPath),
            "iconPath": iconUrl(hostId, iconSize, record.version, self.ctx.iconScheme) if iconSize else record.iconPath,
            "hostId": None,
            "provisionalId": record.provisionalId or record.id,
        })
        self.registry.replace(moved, previousId=record.id)
        with contextlib.suppress(OSError):
            oldRoot.rmdir()
        logger.info("Re-keyed %s to host id %s", record.id, hostId)

        try:
            reloaded = await self._loadIntoHost(moved)
        except HostError as err:
            logger.error("Reload of '%s' after re-keying failed: %s", moved.label, err)
            return moved, err.message
        moved.hostId = reloaded.id
        return moved, None

    async def installFromStore(self, urlOrId: Any) -> InstallResult:
        await self.initialize()
        extId = self.store.parse(urlOrId)
        with self._operation("installFromStore", extensionId=extId):
            return await self.locks.install(lambda: self._installFromStoreGlobal(extId))

    async def _installFromStoreGlobal(self, extId: str) -> InstallResult:
        if self.registry.contains(extId):
            raise StateError(ErrorCode.ALREADY_EXISTS, f"Extension {extId} is already installed")
        if not self.store.available:
            raise StoreError(ErrorCode.NOT_AVAILABLE, "Chrome Web Store support not available - check startup logs for initialization errors")
        return await self.locks.extension(extId, lambda: self._installFromStoreLocked(extId))

    async def _installFromStoreLocked(self, extId: str) -> InstallResult:
        if self.registry.contains(extId):
            raise StateError(ErrorCode.ALREADY_EXISTS, f"Extension {extId} is already installed")
        result = await self.store.installById(extId)

        installedPath = Path(result.path)
        if not installedPath.is_dir() or not isInside(self.ctx.paths.base, installedPath):
            await self._rollbackStoreInstall(extId, None)
            raise StoreError(ErrorCode.INSTALL_FAILED, "Store installed the extension outside the extensions directory")

        manifest = dict(result.manifest) if isinstance(result.manifest, Mapping) and result.manifest else readJsonSafe(installedPath / MANIFEST_FILE_NAME, {})
        if not isinstance(manifest, dict):
            manifest = {}
        webStoreUrl = buildWebStoreUrl(extId)
        report = self.ctx.validator().validateExtension(installedPath, manifest, sourceUrl=webStoreUrl)
        if report.outcome == ValidationOutcome.DENY:
            await self._rollbackStoreInstall(extId, installedPath)
            raise ValidationFailedError("; ".join(report.errors or report.warnings), report=report)

        displayName, displayDescription = resolveManifestStrings(installedPath, manifest, self.ctx.appLocale, "en")
        version = result.version or str(manifest.get("version") or "")
        iconSize = pickSmallestIconSize(manifest.get("icons"))
        permissions = manifest.get("permissions")
        description = manifest.get("description")
        record = ExtensionRecord(
            id=extId,
            name=result.name or str(manifest.get("name") or extId),
            version=version,
            description=description if isinstance(description, str) else "",
            displayName=displayName or result.name,
            displayDescription=displayDescription,
            manifest=manifest,
            installedPath=str(installedPath),
            source="webstore",
            enabled=True,
            hostId=result.hostId,
            iconPath=iconUrl(extId, iconSize, version, self.ctx.iconScheme) if iconSize else None,
            warnings=list(report.warnings),
            riskScore=report.riskScore,
            installDate=nowIso(),
            update=UpdateInfo(lastChecked=nowMs(), lastResult="installed"),
            permissions=[item for item in permissions if isinstance(item, str)] if isinstance(permissions, list) else [],
            webStoreUrl=webStoreUrl,
        )
        self.registry.add(record)
        self.registry.write()
        await self._notify("onInstalled", record)

        loadError: str | None = None
        if record.hostId is None:
            try:
                loaded = await self._loadIntoHost(record)
            except HostError as err:
                loadError = err.message
            else:
                record.hostId = loaded.id
                self.registry.write()
        if record.hostId:
            await self._notify("onLoaded", record)

        self.pins.autoPin(record.id)
        logger.info("Installed '%s' %s from Chrome Web Store", record.label, record.version)
        return InstallResult(
            extension=record,
            warnings=list(record.warnings),
            outcome=report.outcome,
            requiresConfirmation=report.requiresConfirmation,
            loadError=loadError,
        )

    async def _rollbackStoreInstall(self, extId: str, installedPath: Path | None) -> None:
        try:
            await self.store.uninstallById(extId)
        except ExtensionError as err:
            logger.warning("Store rollback for %s failed: %s", extId, err)
        if installedPath is not None and isInside(self.ctx.paths.base, installedPath):
            removeTree(self.ctx.paths.extensionRoot(extId))

    # ------------------------------------------------------------------ #
    # Toggle / uninstall
    # ------------------------------------------------------------------ #

    async def toggle(self, extId: str, enabled: bool) -> ExtensionRecord:
        await self.initialize()
        with self._operation("toggle", extensionId=extId):
            return await self.locks.extension(extId, lambda: self._toggleLocked(extId, enabled))

    async def _toggleLocked(self, extId: str, enabled: bool) -> ExtensionRecord:
        record = self.registry.require(extId)
        if enabled:
            if not (record.enabled and record.hostId):
                try:
                    loaded = await self._loadIntoHost(record)
                except HostError as err:
                    raise HostError(ErrorCode.LOAD_FAILED, "Failed to load extension", extra={"cause": err.message}) from err
                record.hostId = loaded.id
                record.enabled = True
                await self._notify("onLoaded", record)
        else:
            if record.hostId:
                try:
                    await self.runner.remove(record.hostId)
                except HostError as err:
                    raise HostError(ErrorCode.REMOVE_FAILED, "Failed to remove extension", extra={"cause": err.message}) from err
            record.hostId = None
            record.enabled = False
            self.pins.removeIfPresent(extId)
            await self._notify("onUnloaded", record)

        self.registry.write()
        logger.info("Extension '%s' %s", record.label, "enabled" if enabled else "disabled")
        return record

    async def uninstall(self, extId: str) -> bool:
        await self.initialize()
        with self._operation("uninstall", extensionId=extId):
            return await self.locks.extension(extId, lambda: self._uninstallLocked(extId))

    async def _uninstallLocked(self, extId: str) -> bool:
        record = self.registry.require(extId)
        if record.isProtected:
            raise StateError(ErrorCode.INVALID_STATE, f"Cannot uninstall system extension {record.label}")

        await self._removeFromHostQuietly(record.hostId, record.label)
        if record.source == "webstore" and self.store.available:
            try:
                await self.store.uninstallById(extId)
            except ExtensionError as err:
                logger.warning("Store uninstall of %s failed: %s", extId, err)

        removeTree(self.ctx.paths.extensionRoot(extId))
        self.registry.remove(extId)
        self.pins.removeIfPresent(extId)
        self.registry.write()
        await self._notify("onRemoved", record)
        logger.info("Extension uninstalled: %s (%s)", record.label, extId)
        return True

    # ------------------------------------------------------------------ #
    # Update sweep
    # ------------------------------------------------------------------ #

    async def update(self) -> UpdateSummary:
        await self.initialize()
        with self._operation("update"):
            return await self.locks.update(self._updateLocked)

    async def _updateLocked(self) -> UpdateSummary:
        if not self.store.available:
            raise StoreError(ErrorCode.NOT_AVAILABLE, "Chrome Web Store support not available")

        beforeVersions = {record.id: record.version for record in self.registry.all() if record.source == "webstore"}
        await self.store.updateAll()

        summary = UpdateSummary()
        for record in self.registry.all():
            if record.source != "webstore":
                summary.skipped.append({"id": record.id, "reason": "skipped-preinstalled"})
                continue

            async def _reconcile(current: ExtensionRecord = record) -> None:
                await self._reconcileLatestVersion(current, beforeVersions.get(current.id, current.version), summary)

            await self.locks.extension(record.id, _reconcile)

        self.registry.write()
        logger.info(
            "Update sweep: %d updated, %d skipped, %d error(s)",
            len(summary.updated), len(summary.skipped), len(summary.errors),
        )
        return summary

    async def _reconcileLatestVersion(self, record: ExtensionRecord, fromVersion: str, summary: UpdateSummary) -> None:
        """Binds a webstore record to its newest `<version>_0` directory after the store updated the files."""
        root = self.ctx.paths.extensionRoot(record.id)
        checkedMs = nowMs()

        def _skip(reason: str) -> None:
            summary.skipped.append({"id": record.id, "reason": reason})
            record.update = UpdateInfo(lastChecked=checkedMs, lastResult=reason)

        try:
            names = [entry.name for entry in os.scandir(root) if entry.is_dir(follow_symlinks=False)]
        except OSError:
            names = []
        if not names:
            _skip("no-installation-dir")
            return
        latest = chooseLatestVersionDir(names)
        if latest is None:
            _skip("no-version-dir")
            return

        latestPath = root / latest
        manifest = readJsonSafe(latestPath / MANIFEST_FILE_NAME, None)
        if not isinstance(manifest, dict):
            summary.errors.append({"id": record.id, "message": f"Invalid manifest in {latest}"})
            record.update = UpdateInfo(lastChecked=checkedMs, lastResult="error")
            return

        manifestVersion = manifest.get("version")
        toVersion = manifestVersion if isinstance(manifestVersion, str) and manifestVersion else versionOfDir(latest)
        iconSize = pickIconSize(manifest.get("icons"), REFRESH_ICON_SIZES)
        permissions = manifest.get("permissions")

        record.installedPath = str(latestPath)
        record.version = toVersion
        record.manifest = manifest
        if iconSize:
            record.iconPath = iconUrl(record.id, iconSize, toVersion, self.ctx.iconScheme)
        if isinstance(permissions, list):
            record.permissions = [item for item in permissions if isinstance(item, str)]

        if toVersion == fromVersion:
            _skip("already-latest")
            return

        if record.enabled:
            await self._removeFromHostQuietly(record.hostId, record.label)
            try:
                loaded = await self._loadIntoHost(record)
            except HostError as err:
                record.hostId = None
                summary.errors.append({
                    "id": record.id,
                    "code": ErrorCode.LOAD_FAILED.value,
                    "message": f"Reload failed for {record.name}",
                    "cause": err.message,
                })
                record.update = UpdateInfo(lastChecked=checkedMs, lastResult="error")
                return
            record.hostId = loaded.id

        summary.updated.append({"id": record.id, "name": record.label, "from": fromVersion, "to": toVersion})
        record.update = UpdateInfo(lastChecked=checkedMs, lastResult="updated")
        await self._notify("onUpdated", record, fromVersion, toVersion)
        logger.info("Updated '%s' %s -> %s", record.label, fromVersion, toVersion)

    # ------------------------------------------------------------------ #
    # Reads, pins, maintenance
    # ------------------------------------------------------------------ #

    async def list(self) -> list[ExtensionRecord]:
        await self.initialize()
        return sorted(self.registry.all(), key=lambda record: record.label.casefold())

    async def getInfo(self, extId: str) -> ExtensionRecord:
        await self.initialize()
        return self.registry.require(extId)

    def status(self) -> dict[str, Any]:
        records = self.registry.all()
        return {
            "initialized": self._initialized,
            "extensionCount": len(records),
            "enabledCount": sum(1 for record in records if record.enabled),
            "pinnedCount": len(self.pins.getPinned()),
            "activeLocks": self.locks.mutex.activeCount(),
        }

    async def validateAndCleanRegistry(self) -> CleanupReport:
        await self.initialize()
        with self._operation("validateAndClean"):
            report = await self.locks.install(self._validateAndCleanLocked)
        return report

    async def _validateAndCleanLocked(self) -> CleanupReport:
        report = self.registry.validateAndClean()
        for entry in report.removedExtensions:
            self.pins.removeIfPresent(entry.id)
        return report

    async def getPinned(self) -> list[str]:
        await self.initialize()
        return self.pins.getPinned()

    async def pin(self, extId: str) -> bool:
        await self.initialize()

        async def _pin() -> bool:
            return self.pins.pin(extId)

        return await self.locks.extension(extId, _pin)

    async def unpin(self, extId: str) -> bool:
        await self.initialize()

        async def _unpin() -> bool:
            return self.pins.unpin(extId)

        return await self.locks.extension(extId, _unpin)
