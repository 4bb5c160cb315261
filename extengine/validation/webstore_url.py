# extengine/validation/webstore_url.py
from __future__ import annotations

import logging
import re
from urllib.parse import parse_qsl, urlsplit

from extengine.core.errors import ErrorCode, InputError

logger = logging.getLogger(__name__)

__all__ = [
    "WEBSTORE_ID_RE",
    "ALLOWED_DOMAINS",
    "BLOCKED_DOMAINS",
    "parseWebStoreUrl",
    "isValidExtensionId",
    "isBlockedHost",
    "buildWebStoreUrl",
]

WEBSTORE_ID_RE = re.compile(r"^[a-p]{32}$", re.IGNORECASE)

_CANONICAL_URL_RE = re.compile(
    r"^https?://(?:chrome\.google\.com/webstore/detail|chromewebstore\.google\.com/detail)/[^/]+/([a-p]{32})(?:\b|/)?",
    re.IGNORECASE,
)
_ANY_ID_RE = re.compile(r"[a-p]{32}", re.IGNORECASE)
_LOOKS_LIKE_URL_RE = re.compile(r"^\w+://")

ALLOWED_DOMAINS: frozenset[str] = frozenset({"chrome.google.com", "chromewebstore.google.com"})

# Extra guard behind the allowlist: lookalike store domains
BLOCKED_DOMAINS: frozenset[str] = frozenset({
    "chrome-store.com",
    "chrome-webstore.com",
    "google-chrome.com",
    "chromium-store.com",
    "fake-chrome-store.com",
    "malicious-extensions.com",
})

_SUSPICIOUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"bit\.ly|tinyurl|t\.co", re.IGNORECASE),       # URL shorteners
    re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}"), # IPv4 literals
    re.compile(r"localhost|127\.0\.0\.1|0\.0\.0\.0", re.IGNORECASE),
    re.compile(r"\.tk$|\.ml$|\.ga$|\.cf$", re.IGNORECASE),
)



def isValidExtensionId(extId: object) -> bool:
    return isinstance(extId, str) and WEBSTORE_ID_RE.match(extId) is not None



def isBlockedHost(host: str, blocked: frozenset[str] = BLOCKED_DOMAINS) -> bool:
    """True if the host or any parent domain is in `blocked`."""
    labels = (host or "").lower().split(".")
    return any(".".join(labels[idx:]) in blocked for idx in range(len(labels)))



def parseWebStoreUrl(value: object) -> str | None:
    """
    Returns the lowercase extension id from a Chrome Web Store URL or a bare id.
    Returns None for anything unsafe or unrecognized.

    URLs must be https on an allowed store host. The id is taken from the
    canonical detail URL, then path segments from the right, then query
    values, then any id-shaped run in the URL.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    trimmed = value.strip()

    if any(pattern.search(trimmed) for pattern in _SUSPICIOUS_PATTERNS):
        logger.warning("Blocked suspicious store URL pattern")
        return None

    if not _LOOKS_LIKE_URL_RE.match(trimmed):
        return trimmed.lower() if WEBSTORE_ID_RE.match(trimmed) else None

    try:
        parts = urlsplit(trimmed)
        host = (parts.hostname or "").lower()
    except ValueError:
        logger.warning("Invalid store URL format")
        return None

    if host not in ALLOWED_DOMAINS:
        logger.warning("Store domain not in allowlist: %s", host)
        return None
    if isBlockedHost(host):
        logger.warning("Blocked store domain: %s", host)
        return None
    if parts.scheme.lower() != "https":
        logger.warning("Non-HTTPS store URL rejected")
        return None

    match = _CANONICAL_URL_RE.match(trimmed)
    if match:
        return match.group(1).lower()

    for segment in reversed([seg for seg in parts.path.split("/") if seg]):
        if WEBSTORE_ID_RE.match(segment):
            return segment.lower()

    for _key, queryValue in parse_qsl(parts.query, keep_blank_values=False):
        if WEBSTORE_ID_RE.match(queryValue):
            return queryValue.lower()

    anyMatch = _ANY_ID_RE.search(trimmed)
    return anyMatch.group(0).lower() if anyMatch else None



def buildWebStoreUrl(extId: str) -> str:
    if not isValidExtensionId(extId):
        raise InputError(ErrorCode.INVALID_ID, "Invalid extension ID format")
    return f"https://chrome.google.com/webstore/detail/{extId.lower()}"
