# extengine/extensions/store.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from extengine.core.errors import ErrorCode, ExtensionError, InputError, StoreError
from extengine.validation.webstore_url import isValidExtensionId, parseWebStoreUrl

__all__ = ["StoreInstallResult", "StoreClient", "StoreAdapter"]

logger = logging.getLogger(__name__)



@dataclass(slots=True, frozen=True)
class StoreInstallResult:
    id: str
    name: str
    version: str
    path: str
    manifest: dict[str, Any] = field(default_factory=dict)
    hostId: str | None = None



class StoreClient(Protocol):
    """Opaque client of a remote extension catalog. Downloads and unpacks into `<base>/<id>/<v>_0`."""

    async def installById(self, extId: str) -> StoreInstallResult: ...

    async def updateAll(self) -> Any: ...

    async def uninstallById(self, extId: str) -> Any: ...



class StoreAdapter:
    """Validates ids and normalizes StoreClient failures into StoreError codes."""

    def __init__(self, client: StoreClient | None = None) -> None:
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    def _requireClient(self) -> StoreClient:
        if self.client is None:
            raise StoreError(ErrorCode.NOT_AVAILABLE, "Chrome Web Store support not available - check startup logs for initialization errors")
        return self.client

    @staticmethod
    def parse(urlOrId: Any) -> str:
        extId = parseWebStoreUrl(urlOrId)
        if extId is None:
            raise InputError(ErrorCode.INVALID_URL, "Invalid Chrome Web Store URL or extension ID format")
        return extId

    async def installById(self, extId: str) -> StoreInstallResult:
        if not isValidExtensionId(extId):
            raise InputError(ErrorCode.INVALID_ID, "Invalid extension ID format")
        client = self._requireClient()
        try:
            result = await client.installById(extId.lower())
        except ExtensionError:
            raise
        except Exception as err:
            logger.warning("Store install of %s failed: %s", extId, err)
            raise StoreError(ErrorCode.FETCH_FAILED, f"Failed to install from Chrome Web Store: {err}") from err

        if not isinstance(result, StoreInstallResult) or not result.path:
            raise StoreError(ErrorCode.INSTALL_FAILED, "Chrome Web Store returned an incomplete install result")
        if not isValidExtensionId(result.id):
            raise InputError(ErrorCode.INVALID_ID, f"Store returned an invalid extension id: {result.id!r}")
        return result

    async def updateAll(self) -> Any:
        client = self._requireClient()
        try:
            return await client.updateAll()
        except ExtensionError:
            raise
        except Exception as err:
            raise StoreError(ErrorCode.UPDATE_FAILED, f"Chrome Web Store update failed: {err}") from err

    async def uninstallById(self, extId: str) -> None:
        client = self._requireClient()
        try:
            await client.uninstallById(extId)
        except ExtensionError:
            raise
        except Exception as err:
            raise StoreError(ErrorCode.REMOVE_FAILED, f"Chrome Web Store uninstall failed: {err}") from err
