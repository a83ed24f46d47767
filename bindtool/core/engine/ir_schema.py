"""IRドキュメントのJSON Schema（Draft 7）

Loaderが意味解析の前に構造検証として使用する。
型式（type expression）は文字列またはマッピングで、詳細な検証はLoader側で行う。
"""

from __future__ import annotations

from typing import Any

_TYPE_EXPR: dict[str, Any] = {"type": ["string", "object"]}

_ATTRS: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "backend": {"type": "string"},
            "features": {"type": "array", "items": {"type": "string"}},
            "enabled": {"type": "boolean"},
        },
        "required": ["enabled"],
        "additionalProperties": False,
    },
}

_PARAM: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "type": _TYPE_EXPR,
        "docs": {"type": "string"},
    },
    "required": ["name", "type"],
    "additionalProperties": False,
}

_METHOD: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "self": {"type": ["string", "object"]},
        "params": {"type": "array", "items": _PARAM},
        "returns": {"type": ["string", "object", "null"]},
        "attrs": _ATTRS,
        "docs": {"type": "string"},
        "abi_name": {"type": "string", "minLength": 1},
        "lifetime_edges": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["name"],
    "additionalProperties": False,
}

_VARIANT: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "value": {"type": "integer"},
        "docs": {"type": "string"},
    },
    "required": ["name"],
    "additionalProperties": False,
}

_TYPEDEF: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "kind": {"enum": ["opaque", "struct", "enum", "primitive"]},
        "docs": {"type": "string"},
        "attrs": _ATTRS,
        "methods": {"type": "array", "items": _METHOD},
        "fields": {"type": "array", "items": _PARAM},
        "variants": {"type": "array", "items": _VARIANT},
        "primitive": {"type": "string"},
    },
    "required": ["id", "kind"],
    "additionalProperties": False,
}

IR_DOCUMENT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "version": {"type": ["string", "number"]},
        "meta": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "description": {"type": "string"},
            },
        },
        "types": {"type": "array", "items": _TYPEDEF},
    },
    "required": ["types"],
}
