# extengine/validation/schema.py
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import fastjsonschema

__all__ = ["MANIFEST_FIELD_SCHEMAS", "checkManifestStructure"]



_STRING_ARRAY: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

_ACTION: dict[str, Any] = {
    "type": "object",
    "properties": {
        "default_popup": {"type": "string"},
        "default_title": {"type": "string"},
        "default_icon": {
            "anyOf": [
                {"type": "string"},
                {"type": "object", "additionalProperties": {"type": "string"}},
            ],
        },
    },
}

# One schema per top-level manifest key, so every broken key is reported
MANIFEST_FIELD_SCHEMAS: dict[str, dict[str, Any]] = {
    "permissions": _STRING_ARRAY,
    "host_permissions": _STRING_ARRAY,
    "optional_permissions": _STRING_ARRAY,
    "background": {
        "type": "object",
        "properties": {
            "service_worker": {"type": "string"},
            "type": {"enum": ["module", "classic"]},
            "scripts": _STRING_ARRAY,
        },
    },
    "content_scripts": {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "matches": _STRING_ARRAY,
                "exclude_matches": _STRING_ARRAY,
                "js": _STRING_ARRAY,
                "css": _STRING_ARRAY,
                "run_at": {"enum": ["document_start", "document_end", "document_idle"]},
                "all_frames": {"type": "boolean"},
            },
        },
    },
    "action": _ACTION,
    "browser_action": _ACTION,
    "content_security_policy": {
        "anyOf": [
            {
                "type": "object",
                "properties": {
                    "extension_pages": {"type": "string"},
                    "sandbox": {"type": "string"},
                },
            },
            {"type": "string"},
        ],
    },
    "icons": {"type": "object", "additionalProperties": {"type": "string"}},
    "default_locale": {"type": "string"},
}

_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    key: fastjsonschema.compile(schema) for key, schema in MANIFEST_FIELD_SCHEMAS.items()
}



def checkManifestStructure(manifest: Mapping[str, Any]) -> list[str]:
    """Returns readable structural errors for the known manifest keys that are present."""
    errors: list[str] = []
    for key, validator in _VALIDATORS.items():
        if key not in manifest:
            continue
        try:
            validator(manifest[key])
        except fastjsonschema.JsonSchemaValueException as err:
            where = key + err.name[len("data"):] if err.name.startswith("data") else key
            detail = err.message[len(err.name):].strip() if err.message.startswith(err.name) else err.message
            errors.append(f"Invalid manifest field {where}: {detail}")
    return errors
