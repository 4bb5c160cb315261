# extengine/extensions/icons.py
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote

__all__ = [
    "ICON_SIZES",
    "REFRESH_ICON_SIZES",
    "DEFAULT_ICON_REQUEST_SIZE",
    "iconUrl",
    "pickIconSize",
    "pickSmallestIconSize",
    "normalizeIconRequestSize",
    "isLegacyIconPath",
]

ICON_SIZES: tuple[int, ...] = (128, 64, 48, 32, 16)
# Sizes tried when refreshing an icon after an update or a legacy upgrade
REFRESH_ICON_SIZES: tuple[int, ...] = (64, 48, 32, 16)
DEFAULT_ICON_REQUEST_SIZE = 64

_LEGACY_PREFIXES = ("file://", "chrome-extension://")



def iconUrl(extId: str, size: int, version: str | None = None, scheme: str = "peersky") -> str:
    """`<scheme>://extension-icon/<id>/<size>?v=<version>`; `?v=` busts renderer caches."""
    url = f"{scheme}://extension-icon/{extId}/{size}"
    if version:
        url += f"?v={quote(str(version), safe='')}"
    return url



def _declaredSizes(icons: Any) -> set[int]:
    if not isinstance(icons, Mapping):
        return set()
    out: set[int] = set()
    for key, value in icons.items():
        if not isinstance(value, str) or not value:
            continue
        try:
            out.add(int(key))
        except (TypeError, ValueError):
            continue
    return out



def pickIconSize(icons: Any, sizes: Iterable[int] = ICON_SIZES) -> int | None:
    """Largest size from `sizes` that the manifest declares, or None."""
    declared = _declaredSizes(icons)
    for size in sorted(sizes, reverse=True):
        if size in declared:
            return size
    return None



def pickSmallestIconSize(icons: Any) -> int | None:
    """Smallest numeric key in the manifest's icons map."""
    declared = _declaredSizes(icons)
    return min(declared) if declared else None



def normalizeIconRequestSize(size: Any) -> int:
    try:
        value = int(size)
    except (TypeError, ValueError):
        return DEFAULT_ICON_REQUEST_SIZE
    return value if value in ICON_SIZES else DEFAULT_ICON_REQUEST_SIZE



def isLegacyIconPath(iconPath: Any) -> bool:
    return isinstance(iconPath, str) and iconPath.startswith(_LEGACY_PREFIXES)
