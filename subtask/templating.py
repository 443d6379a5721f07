"""
Templating — Turning Work Items into Words.

Prompts and urging messages are templates rendered against a work item's
context. The engine only depends on the small TemplateRenderer interface;
JinjaTemplateRenderer is the default implementation.

Contexts are built from the canonical value tree (see subtask.values), so
dotted access should reach into nested mappings no matter how deep. Jinja's
own attribute lookup prefers Python attributes over keys, which would make
``payload.items`` resolve to ``dict.items``; the environment used here
prefers mapping keys instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import jinja2
import structlog

from subtask.errors import TemplateRenderError

logger = structlog.get_logger(__name__)


class TemplateRenderer(ABC):
    """Render a template string against a context mapping."""

    @abstractmethod
    def render(self, template: str, context: Mapping[str, Any]) -> str:
        """Return the rendered text or raise TemplateRenderError."""


class _KeyFirstEnvironment(jinja2.Environment):
    """Jinja environment whose dotted lookup tries mapping keys first."""

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except (KeyError, TypeError):
                pass
        return super().getattr(obj, attribute)


class JinjaTemplateRenderer(TemplateRenderer):
    """Default renderer backed by Jinja2.

    Missing members render as empty text rather than failing, so an optional
    parameter the model left out does not break the prompt. Syntax errors
    and unbalanced ``{{``/``}}`` markers raise TemplateRenderError.
    """

    def __init__(self, filters: Mapping[str, Any] | None = None):
        self._env = _KeyFirstEnvironment(
            undefined=jinja2.ChainableUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        if filters:
            self._env.filters.update(filters)
        self._cache: dict[str, jinja2.Template] = {}

    def render(self, template: str, context: Mapping[str, Any]) -> str:
        if template.count("{{") != template.count("}}"):
            raise TemplateRenderError("Template has unbalanced '{{' and '}}' markers")
        compiled = self._cache.get(template)
        if compiled is None:
            try:
                compiled = self._env.from_string(template)
            except jinja2.TemplateSyntaxError as exc:
                raise TemplateRenderError(
                    f"Template syntax error on line {exc.lineno}: {exc.message}"
                ) from exc
            self._cache[template] = compiled
        try:
            return compiled.render(dict(context))
        except Exception as exc:
            logger.warning("templating.render_failed", error=str(exc))
            raise TemplateRenderError(f"Template rendering failed: {exc}") from exc
