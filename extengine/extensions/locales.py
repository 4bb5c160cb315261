# extengine/extensions/locales.py
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from os import PathLike
from pathlib import Path
from typing import Any

import json5

__all__ = ["buildLocaleCandidates", "loadLocaleMessages", "resolveMessage", "resolveManifestStrings"]

logger = logging.getLogger(__name__)

_MSG_RE = re.compile(r"^__MSG_([A-Za-z0-9_@]+)__$", re.IGNORECASE)



def buildLocaleCandidates(appLocale: str | None, defaultLocale: str | None) -> list[str]:
    """
    Locale directories to try, best first:
    app locale ("pt-BR" -> "pt_BR"), its base language, default_locale, "en".
    """
    def norm(value: str | None) -> str:
        return str(value or "").strip().replace("-", "_", 1)

    appLc = norm(appLocale)
    base = re.split(r"[-_]", appLc)[0] if appLc else ""
    out: list[str] = []
    for candidate in (appLc, base, norm(defaultLocale), "en"):
        if candidate and candidate not in out:
            out.append(candidate)
    return out



def loadLocaleMessages(root: str | PathLike[str], candidates: list[str]) -> dict[str, Any] | None:
    """Returns the first readable `_locales/<loc>/messages.json`, keys lowercased."""
    for loc in candidates:
        messagesPath = Path(root) / "_locales" / loc / "messages.json"
        try:
            raw = messagesPath.read_text(encoding="utf-8-sig")
            data = json5.loads(raw)
        except FileNotFoundError:
            continue
        except (OSError, UnicodeDecodeError, ValueError) as err:
            logger.debug("Unreadable messages for locale '%s': %s", loc, err)
            continue
        if isinstance(data, Mapping):
            return {str(key).lower(): value for key, value in data.items()}
    return None



def resolveMessage(value: Any, messages: Mapping[str, Any] | None) -> str:
    """Replaces a whole-string `__MSG_key__` placeholder; unknown keys keep the raw value."""
    if not isinstance(value, str) or not value:
        return value if isinstance(value, str) else ""
    match = _MSG_RE.match(value)
    if not match or not messages:
        return value
    entry = messages.get(match.group(1).lower())
    if not isinstance(entry, Mapping):
        return value
    text = entry.get("message") or entry.get("value")
    return text if isinstance(text, str) and text else value



def resolveManifestStrings(
    root: str | PathLike[str],
    manifest: Mapping[str, Any],
    appLocale: str | None = "en",
    fallback: str = "en",
) -> tuple[str, str]:
    """Returns the localized (name, description) for display."""
    defaultLocale = str(manifest.get("default_locale") or "").strip() or fallback or "en"
    messages = loadLocaleMessages(root, buildLocaleCandidates(appLocale, defaultLocale))
    return (
        resolveMessage(manifest.get("name"), messages),
        resolveMessage(manifest.get("description"), messages),
    )
