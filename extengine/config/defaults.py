# extengine/config/defaults.py
from __future__ import annotations

from typing import Any

__all__ = ["DEFAULT_CONFIG", "CONFIG_SCHEMA"]



DEFAULT_CONFIG: dict[str, Any] = {
    "debug": {
        "devModeEnabled": False,
        "logFullPaths": False,
        "suppressRecurringMessages": {
            "enabled": False,
            "windowSeconds": 60,
            "maxPerWindow": 5,
            "summaryLevel": "INFO",
        },
    },
    "logging": {
        "file": "extengine.log",
    },
    "extensions": {
        "appLocale": "en",
        "iconScheme": "peersky",
        "pinCapacity": 6,
        "maxMissingFileWarnings": 20,
        "popup": {
            "stabilizationMs": 2000,
            "width": 400,
            "height": 600,
            "anchorOffsetY": 38,
        },
        "install": {
            "rateLimit": 5,
            "rateWindowMs": 60000,
        },
        "uploads": {
            "maxBytes": 60 * 1024 * 1024,
        },
        "sanitizer": {
            "allowedUserDirs": ["Downloads", "Desktop", "Documents"],
        },
    },
}



def _posInt() -> dict[str, Any]:
    return {"type": "integer", "minimum": 1}

# Structural checks only; unknown keys are tolerated
CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "debug": {
            "type": "object",
            "properties": {
                "devModeEnabled": {"type": "boolean"},
                "logFullPaths": {"type": "boolean"},
                "suppressRecurringMessages": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "windowSeconds": _posInt(),
                        "maxPerWindow": _posInt(),
                        "summaryLevel": {"type": "string"},
                    },
                },
            },
        },
        "logging": {
            "type": "object",
            "properties": {"file": {"type": "string", "minLength": 1}},
        },
        "extensions": {
            "type": "object",
            "properties": {
                "appLocale": {"type": "string", "minLength": 1},
                "iconScheme": {"type": "string", "pattern": "^[a-z][a-z0-9+.-]*$"},
                "pinCapacity": _posInt(),
                "maxMissingFileWarnings": {"type": "integer", "minimum": 0},
                "popup": {
                    "type": "object",
                    "properties": {
                        "stabilizationMs": {"type": "integer", "minimum": 0},
                        "width": _posInt(),
                        "height": _posInt(),
                        "anchorOffsetY": {"type": "integer"},
                    },
                },
                "install": {
                    "type": "object",
                    "properties": {
                        "rateLimit": _posInt(),
                        "rateWindowMs": _posInt(),
                    },
                },
                "uploads": {
                    "type": "object",
                    "properties": {"maxBytes": _posInt()},
                },
                "sanitizer": {
                    "type": "object",
                    "properties": {
                        "allowedUserDirs": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    },
                },
            },
        },
    },
}
