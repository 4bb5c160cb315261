# extengine/extensions/ids.py
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from extengine.core.hashing import sha256Hex
from extengine.core.jsonutils import safeJsonDumps
from extengine.validation.webstore_url import isValidExtensionId

__all__ = ["ID_FIELDS", "deriveId", "isWebStoreId", "isDerivedId"]

logger = logging.getLogger(__name__)

# Order matters: it is part of the hashed payload
ID_FIELDS: tuple[str, ...] = ("name", "version", "description", "author", "homepage_url")

_DERIVED_ID_RE = re.compile(r"^[0-9a-f]{32}$")



def deriveId(manifest: Mapping[str, Any] | None) -> str:
    """
    Deterministic 32-char hex id for locally installed extensions.

    sha256 over compact JSON of the identifying manifest fields. Non-string
    values count as "". Two archives with the same identity fields map to the
    same id, which is how duplicates are detected.
    """
    source = manifest if isinstance(manifest, Mapping) else {}
    payload = {key: (source.get(key) if isinstance(source.get(key), str) else "") for key in ID_FIELDS}
    extId = sha256Hex(safeJsonDumps(payload))[:32]
    if payload["name"]:
        logger.debug("Derived id %s for '%s'", extId, payload["name"])
    return extId



def isWebStoreId(extId: Any) -> bool:
    return isValidExtensionId(extId)



def isDerivedId(extId: Any) -> bool:
    return isinstance(extId, str) and bool(_DERIVED_ID_RE.match(extId))
