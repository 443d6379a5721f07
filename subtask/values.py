"""
Plain Values — One Shape for Every Payload.

Payloads arrive from model tool calls, host adapters and configuration in
whatever shape the caller had at hand: dicts, pydantic models, dataclasses,
tuples, generators. Before anything is templated or validated it is folded
into a single canonical tree made only of

    str | int | float | bool | None | list | dict[str, ...]

so downstream code never has to dispatch on concrete container types.
"""

from __future__ import annotations

import dataclasses
import datetime
import decimal
import enum
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

PlainValue = Any  # str | int | float | bool | None | list[PlainValue] | dict[str, PlainValue]

_SCALARS = (str, int, float, bool, type(None))


def to_plain(value: Any) -> PlainValue:
    """Normalize *value* into the canonical tree."""
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, enum.Enum):
        return to_plain(value.value)
    if isinstance(value, BaseModel):
        return to_plain(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field.name: to_plain(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, Mapping):
        return {str(key): to_plain(item) for key, item in value.items()}
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, Iterable):
        return [to_plain(item) for item in value]
    if hasattr(value, "__dict__"):
        public = {
            name: attr
            for name, attr in vars(value).items()
            if not name.startswith("_")
        }
        if public:
            return {name: to_plain(attr) for name, attr in public.items()}
    return str(value)


def is_sequence(value: Any) -> bool:
    """True for list-like values (strings and mappings excluded)."""
    if isinstance(value, (str, bytes, bytearray, Mapping, BaseModel)):
        return False
    return isinstance(value, Iterable)
