"""
Key case conversion for JSON payloads.
"""

from __future__ import annotations

import re
from typing import Any, Literal

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

Direction = Literal["snake_to_camel", "camel_to_snake"]


def snake_to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camel_to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def convert_keys(value: Any, direction: Direction) -> Any:
    """Recursively convert dict keys in nested dicts and lists."""
    convert = snake_to_camel if direction == "snake_to_camel" else camel_to_snake
    if isinstance(value, dict):
        return {
            (convert(k) if isinstance(k, str) else k): convert_keys(v, direction)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [convert_keys(item, direction) for item in value]
    return value
