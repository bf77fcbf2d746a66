"""
JSON conversion between the camelCase wire format and snake_case Python.

Outgoing: frozen domain dataclasses become camelCase dicts (enums by value,
datetimes as ISO-8601, tuples as lists).  Incoming: camelCase request keys
become snake_case so the domain ``from_payload`` parsers can check them.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_json(value: Any) -> Any:
    """Recursively convert a domain value to JSON-ready camelCase data."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            to_camel(f.name): to_json(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {to_camel(str(k)): to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_json(v) for v in value)
    return value


def from_json(payload: Any) -> Any:
    """Recursively snake_case the keys of a decoded request body."""
    if isinstance(payload, Mapping):
        return {to_snake(str(k)): from_json(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [from_json(v) for v in payload]
    return payload
