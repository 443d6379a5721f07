"""
Work-Item Resolver — Splitting One Request into Many.

Given a fan-out policy and the payload the parent model sent, produce the
ordered list of work items, one per child session:

  disabled         one item carrying the whole payload
  parameter_based  one item per top-level payload key (minus exclusions)
  list_based       one item per element of the named array parameter
  external_list    one item per configured string; the payload is ignored

An empty list is a perfectly good answer: zero items, zero child sessions.

Every item's template context holds the payload keys at top level plus
``_payload`` (the full payload), ``_item`` (index, name, value) and
``_config`` (the tool configuration).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

import structlog

from subtask.config import DEFAULT_EXCLUDED_PARAMETERS, FanOutConfig, SubtaskConfig
from subtask.errors import ConfigurationError
from subtask.orchestration.models import WorkItem
from subtask.values import to_plain

logger = structlog.get_logger(__name__)

EXTERNAL_ITEM_NAME = "external_list"


def resolve(
    fan_out: FanOutConfig,
    payload: Mapping[str, Any],
    config: Optional[SubtaskConfig] = None,
) -> list[WorkItem]:
    """Turn *payload* into work items according to *fan_out*."""
    plain: dict[str, Any] = to_plain(dict(payload))
    mode = fan_out.mode

    if mode == "disabled":
        pairs: list[tuple[Optional[str], Any]] = [(None, plain)]
    elif mode == "parameter_based":
        pairs = [
            (key, value)
            for key, value in plain.items()
            if not fan_out.is_excluded(key) and key.lower() not in DEFAULT_EXCLUDED_PARAMETERS
        ]
    elif mode == "list_based":
        name = fan_out.list_parameter_name or ""
        if name not in plain:
            raise ConfigurationError(f"List parameter '{name}' is missing from the request")
        values = plain[name]
        if not isinstance(values, list):
            raise ConfigurationError(
                f"List parameter '{name}' must be an array, got {type(values).__name__}"
            )
        pairs = [(name, value) for value in values]
    elif mode == "external_list":
        pairs = [(EXTERNAL_ITEM_NAME, value) for value in fan_out.external_items or []]
    else:
        raise ConfigurationError(f"Unknown fan-out mode: {mode}")

    config_view = config.template_view() if config is not None else {}
    items = [
        WorkItem(
            index=index,
            name=name,
            value=value,
            context=_build_context(plain, index, name, value, config_view),
        )
        for index, (name, value) in enumerate(pairs)
    ]
    logger.debug("subtask.workitems.resolved", mode=mode, count=len(items))
    return items


def _build_context(
    payload: dict[str, Any],
    index: int,
    name: Optional[str],
    value: Any,
    config_view: dict[str, Any],
) -> dict[str, Any]:
    context = dict(payload)
    context["_payload"] = payload
    context["_item"] = {"index": index, "name": name, "value": value}
    context["_config"] = config_view
    return context
