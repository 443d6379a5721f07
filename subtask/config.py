# subtask/config.py
"""
Configuration for the delegation engine.

Two layers:

  SubtaskSettings  environment-driven defaults (SUBTASK_* variables, or a .env
                   file at the project root), validated with pydantic-settings
  SubtaskConfig    the full description of one delegation tool: its name,
                   parameters, return tools, templates and fan-out policy

SubtaskConfig is owned by the host application and treated as read-only while
a delegation runs. Shape problems are rejected by pydantic when the model is
built; cross-field problems are checked by ``SubtaskConfig.check()`` at the
start of every invocation, before any child session exists.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

from subtask.descriptors import ParameterDescriptor, ensure_unique_names
from subtask.errors import ConfigurationError

# Resolve .env relative to the project root (one level above the subtask/
# package) so settings load the same way from any working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

FanOutMode = Literal["disabled", "parameter_based", "list_based", "external_list"]
JoinStrategy = Literal["wait_for_all", "first_wins", "stream"]
DanglingBehavior = Literal["urge", "report_error", "fail"]

# Keys a host adapter may inject into a payload that are never work items.
DEFAULT_EXCLUDED_PARAMETERS = frozenset(
    {"session", "parent_session", "host_session", "cancellation_token"}
)

DEFAULT_FUNCTION_DESCRIPTION = (
    "Delegate a self-contained subtask to a separate assistant session and "
    "wait for its result."
)
DEFAULT_RETURN_TOOL_DESCRIPTION = "Report back with the result after completion"
DEFAULT_ERROR_TOOL_DESCRIPTION = "Report an error or issue encountered during task execution"
DEFAULT_PROMPT_MESSAGE = (
    "Complete the following task. When you are done, call the "
    "`{{ _config.return_tool_name }}` tool with your result.\n\n{{ _item.value | tojson }}"
)
DEFAULT_URGING_MESSAGE = (
    "You have not reported a result yet. Call the `{{ _config.return_tool_name }}` "
    "tool now with your final result, or `{{ _config.error_tool_name }}` if you "
    "cannot complete the task."
)
DEFAULT_ERROR_MESSAGE = "The subtask session ended without reporting a result."

_JOIN_STRATEGIES = {"wait_for_all", "first_wins", "stream"}
_LOG_FORMATS = {"console", "json"}


def _default_error_parameters() -> list[ParameterDescriptor]:
    return [
        ParameterDescriptor(
            name="error_message",
            description="Description of the error or issue encountered",
        ),
        ParameterDescriptor(
            name="error_type",
            description="Short category for the error",
            required=False,
        ),
    ]


class SubtaskSettings(BaseSettings):
    """Environment defaults for delegation tools."""

    max_recursion_level: int = Field(1, alias="SUBTASK_MAX_RECURSION_LEVEL")
    child_timeout: float = Field(1800.0, alias="SUBTASK_CHILD_TIMEOUT")
    max_concurrency: int = Field(0, alias="SUBTASK_MAX_CONCURRENCY")  # 0 = cpu count
    join_strategy: str = Field("wait_for_all", alias="SUBTASK_JOIN_STRATEGY")
    log_level: str = Field("WARNING", alias="SUBTASK_LOG_LEVEL")
    log_format: str = Field("console", alias="SUBTASK_LOG_FORMAT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SubtaskSettings":
        self.child_timeout = max(1.0, float(self.child_timeout))
        self.max_concurrency = max(0, int(self.max_concurrency))
        self.join_strategy = self.join_strategy.strip().lower()
        if self.join_strategy not in _JOIN_STRATEGIES:
            self.join_strategy = "wait_for_all"
        self.log_level = self.log_level.strip().upper() or "WARNING"
        self.log_format = self.log_format.strip().lower()
        if self.log_format not in _LOG_FORMATS:
            self.log_format = "console"
        return self


class ErrorReportingConfig(BaseModel):
    """How a child reports that it could not finish."""

    tool_description: str = DEFAULT_ERROR_TOOL_DESCRIPTION
    parameters: list[ParameterDescriptor] = Field(default_factory=_default_error_parameters)
    # Optional template for the failure text handed to the parent. Context:
    # function_name, session_id, timestamp, error_message, error_tool_name and
    # every field the child reported.
    parent_message: str = ""


class FanOutConfig(BaseModel):
    """How one request is split into work items and joined back."""

    mode: FanOutMode = "disabled"
    list_parameter_name: Optional[str] = None
    external_items: Optional[list[str]] = None
    excluded_parameters: list[str] = Field(default_factory=list)
    join_strategy: JoinStrategy = "wait_for_all"
    max_concurrency: Optional[int] = None  # None or 0 = os.cpu_count()
    child_timeout: float = 1800.0

    @model_validator(mode="after")
    def check_mode(self) -> "FanOutConfig":
        if self.mode == "list_based" and not (self.list_parameter_name or "").strip():
            raise ValueError("list_based fan-out requires list_parameter_name")
        if self.mode == "external_list" and self.external_items is None:
            raise ValueError("external_list fan-out requires external_items")
        if self.child_timeout <= 0:
            raise ValueError("child_timeout must be positive")
        if self.max_concurrency is not None and self.max_concurrency < 0:
            raise ValueError("max_concurrency cannot be negative")
        return self

    def is_excluded(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered == excluded.lower() for excluded in self.excluded_parameters)


class SubtaskConfig(BaseModel):
    """Everything needed to expose and run one delegation tool."""

    function_name: str = "create_subtask"
    function_description: str = DEFAULT_FUNCTION_DESCRIPTION
    max_recursion_level: int = 1  # negative disables the guard
    input_parameters: list[ParameterDescriptor] = Field(default_factory=list)
    return_parameters: list[ParameterDescriptor] = Field(default_factory=list)
    return_tool_name: str = "set_result"
    return_tool_description: str = DEFAULT_RETURN_TOOL_DESCRIPTION
    error_tool_name: str = "report_error"
    error_reporting: ErrorReportingConfig = Field(default_factory=ErrorReportingConfig)
    prompt_message: str = DEFAULT_PROMPT_MESSAGE
    urging_message: str = DEFAULT_URGING_MESSAGE
    dangling_behavior: DanglingBehavior = "urge"
    error_message: str = DEFAULT_ERROR_MESSAGE
    fan_out: FanOutConfig = Field(default_factory=FanOutConfig)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[SubtaskSettings] = None,
        **overrides: Any,
    ) -> "SubtaskConfig":
        """Build a config whose limits default to the environment settings."""
        settings = settings or SubtaskSettings()
        fan_out = overrides.pop("fan_out", None) or FanOutConfig(
            join_strategy=settings.join_strategy,
            max_concurrency=settings.max_concurrency or None,
            child_timeout=settings.child_timeout,
        )
        values: dict[str, Any] = {
            "max_recursion_level": settings.max_recursion_level,
            "fan_out": fan_out,
        }
        values.update(overrides)
        return cls(**values)

    def check(self) -> None:
        """Cross-field checks run before every invocation.

        Raises ConfigurationError; nothing has been started when it does.
        """
        if self.dangling_behavior == "urge" and not self.urging_message.strip():
            raise ConfigurationError(
                "urging_message is empty; set a reminder template or choose "
                "another dangling_behavior"
            )
        if not self.prompt_message.strip():
            raise ConfigurationError("prompt_message cannot be empty")
        if not self.function_name.strip():
            raise ConfigurationError("function_name cannot be empty")
        if not self.return_tool_name.strip() or not self.error_tool_name.strip():
            raise ConfigurationError("return and error tool names cannot be empty")
        if self.return_tool_name.lower() == self.error_tool_name.lower():
            raise ConfigurationError(
                f"Error tool name '{self.error_tool_name}' conflicts with the "
                f"return tool name '{self.return_tool_name}'"
            )

        ensure_unique_names(self.input_parameters, f"{self.function_name} input")
        ensure_unique_names(self.return_parameters, self.return_tool_name)
        ensure_unique_names(self.error_reporting.parameters, self.error_tool_name)

        fan_out = self.fan_out
        if fan_out.mode == "list_based":
            name = fan_out.list_parameter_name or ""
            if fan_out.is_excluded(name):
                raise ConfigurationError(
                    f"List parameter '{name}' is listed in excluded_parameters"
                )
            if self.input_parameters:
                declared = next((p for p in self.input_parameters if p.name == name), None)
                if declared is None:
                    raise ConfigurationError(
                        f"List parameter '{name}' is not a declared input parameter"
                    )
                if declared.kind != "array":
                    raise ConfigurationError(
                        f"List parameter '{name}' must be declared as an array, "
                        f"not {declared.kind}"
                    )

    def template_view(self) -> dict[str, Any]:
        """The ``_config`` object exposed to prompt templates."""
        return self.model_dump(mode="json")
