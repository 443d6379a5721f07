"""
Parameter Descriptors — Declarative Shapes for Tool Payloads.

A ParameterDescriptor describes one field a tool accepts: its kind, whether
it is required, and (for objects and arrays) the shape of what it contains.
The same descriptors drive three things:

  - the JSON schema advertised to the model for the delegation tool and the
    per-child return tools
  - validation of whatever the model actually sends back
  - the narrow normalization we allow on the way in (numeric and boolean
    strings for number and bool fields, nothing else)

Validation is pure: it never raises for bad data, it reports.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from subtask.errors import ConfigurationError
from subtask.values import is_sequence, to_plain

ParameterKind = Literal["string", "number", "bool", "object", "array"]

_JSON_TYPES: dict[str, str] = {
    "string": "string",
    "number": "number",
    "bool": "boolean",
    "object": "object",
    "array": "array",
}


class ParameterDescriptor(BaseModel):
    """Schema for one tool parameter (or one array element)."""

    name: str = ""
    kind: ParameterKind = "string"
    description: str = ""
    required: bool = True
    fields: list[ParameterDescriptor] = Field(default_factory=list)
    element: Optional[ParameterDescriptor] = None

    @model_validator(mode="after")
    def check_shape(self) -> "ParameterDescriptor":
        if self.kind == "array" and self.element is None:
            raise ValueError(f"Array parameter '{self.name}' requires an element descriptor")
        duplicates = duplicate_names(self.fields)
        if duplicates:
            raise ValueError(
                f"Parameter '{self.name}' declares duplicate fields: {', '.join(duplicates)}"
            )
        return self

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": _JSON_TYPES[self.kind]}
        if self.description:
            schema["description"] = self.description
        if self.kind == "object" and self.fields:
            schema.update(parameters_schema(self.fields))
        if self.kind == "array" and self.element is not None:
            schema["items"] = self.element.to_json_schema()
        return schema


ParameterDescriptor.model_rebuild()


@dataclass
class PayloadValidation:
    """Result of checking a whole tool payload against its descriptors."""

    values: dict[str, Any] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    type_errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.type_errors

    def summary(self) -> str:
        parts = []
        if self.missing:
            parts.append(f"Missing required parameters: {', '.join(self.missing)}")
        if self.type_errors:
            parts.append(f"Type validation errors: {'; '.join(self.type_errors)}")
        return " AND ".join(parts)


def duplicate_names(descriptors: Iterable[ParameterDescriptor]) -> list[str]:
    counts = Counter(d.name for d in descriptors)
    return sorted(name for name, count in counts.items() if count > 1)


def ensure_unique_names(descriptors: Iterable[ParameterDescriptor], owner: str) -> None:
    """Raise ConfigurationError if two sibling descriptors share a name."""
    duplicates = duplicate_names(descriptors)
    if duplicates:
        raise ConfigurationError(
            f"Duplicate parameter names in {owner}: {', '.join(duplicates)}"
        )


def parameters_schema(descriptors: Iterable[ParameterDescriptor]) -> dict[str, Any]:
    """Build an object schema (properties + required) from sibling descriptors."""
    descriptors = list(descriptors)
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {d.name: d.to_json_schema() for d in descriptors},
    }
    required = [d.name for d in descriptors if d.required]
    if required:
        schema["required"] = required
    return schema


def validate(value: Any, descriptor: ParameterDescriptor) -> list[str]:
    """Check *value* against *descriptor*. An empty list means it is valid."""
    errors: list[str] = []
    path = descriptor.name or "value"
    if value is None:
        if descriptor.required:
            errors.append(f"Missing required parameter '{path}'")
        return errors
    _check(value, descriptor, path, errors)
    return errors


def validate_payload(
    payload: Mapping[str, Any],
    descriptors: Iterable[ParameterDescriptor],
) -> PayloadValidation:
    """Validate a tool payload, keeping declared fields only.

    Unknown keys are dropped without comment. A required field counts as
    missing when it is absent or explicitly null.
    """
    result = PayloadValidation()
    for descriptor in descriptors:
        raw = payload.get(descriptor.name)
        if raw is None:
            if descriptor.required:
                result.missing.append(descriptor.name)
            elif descriptor.name in payload:
                result.values[descriptor.name] = None
            continue
        result.values[descriptor.name] = _check(
            raw, descriptor, descriptor.name, result.type_errors
        )
    return result


def _describe(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if is_sequence(value):
        return "array"
    return type(value).__name__


def _parse_number(text: str) -> Optional[int | float]:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _check(value: Any, descriptor: ParameterDescriptor, path: str, errors: list[str]) -> Any:
    """Validate and normalize one present value, appending problems to *errors*."""
    kind = descriptor.kind

    if kind == "string":
        if isinstance(value, str):
            return value

    elif kind == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            number = _parse_number(value)
            if number is not None:
                return number

    elif kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"

    elif kind == "object":
        if isinstance(value, Mapping):
            if not descriptor.fields:
                return to_plain(value)
            normalized: dict[str, Any] = {}
            for child in descriptor.fields:
                child_path = f"{path}.{child.name}"
                raw = value.get(child.name)
                if raw is None:
                    if child.required:
                        errors.append(f"Missing required field '{child_path}'")
                    elif child.name in value:
                        normalized[child.name] = None
                    continue
                normalized[child.name] = _check(raw, child, child_path, errors)
            return normalized

    elif kind == "array":
        if is_sequence(value):
            element = descriptor.element
            items = list(value)
            if element is None:
                return to_plain(items)
            checked = []
            for index, item in enumerate(items):
                item_path = f"{path}[{index}]"
                if item is None:
                    if element.required:
                        errors.append(f"Missing required element '{item_path}'")
                    checked.append(None)
                    continue
                checked.append(_check(item, element, item_path, errors))
            return checked

    errors.append(f"'{path}' expected {kind} but got {_describe(value)}")
    return value
