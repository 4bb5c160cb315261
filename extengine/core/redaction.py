# extengine/core/redaction.py
from __future__ import annotations

import re
from pathlib import Path

__all__ = ["redactText", "redactHome"]



# Precompiled sensitive-data regex patterns
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Bearer or Authorization headers
    (re.compile(r"(?iu)(Bearer\s+)[A-Za-z0-9._\-]+"), r"\1***"),
    (re.compile(r"(?iu)(Authorization\s*[:=]\s*)[A-Za-z0-9._\-]+"), r"\1***"),

    # Password-like fields in JSON or logs
    (re.compile(r'(?iu)("password"\s*:\s*")[^"]+(")'), r"\1***\2"),

    # API key or token-style key/value pairs
    (re.compile(r'(?iu)("api[_\-]?key"\s*:\s*")[^"]+(")'), r"\1***\2"),
    (re.compile(r'(?iu)("token"\s*:\s*")[^"]+(")'), r"\1***\2"),
    (re.compile(r'(?iu)(token=)[^&\s"]+'), r"\1***"),

    # CRX public keys are not secrets but are long and noisy
    (re.compile(r'("(?:key|publicKey)"\s*:\s*")[A-Za-z0-9+/=]{64,}(")'), r"\1<key>\2"),
]



def redactHome(text: str, home: str | None = None) -> str:
    """Replaces the user's home directory prefix with `~`."""
    if not text:
        return text
    homeDir = home if home is not None else str(Path.home())
    if not homeDir or homeDir in ("/", "\\"):
        return text
    return text.replace(homeDir, "~")



def redactText(text: str) -> str:
    """Return sanitized text with sensitive substrings replaced by ***."""
    if not text:
        return text
    out = text
    for pattern, repl in _SENSITIVE_PATTERNS:
        try:
            out = pattern.sub(repl, out)
        except re.error:
            continue # Never crash logging on regex errors
    return redactHome(out)
