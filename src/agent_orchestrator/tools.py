"""Per-tool argument validators and a validating tool executor."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

TOOL_STATUS_SUCCESS = "success"
TOOL_STATUS_VALIDATION_ERROR = "validation_error"
TOOL_STATUS_EXECUTION_ERROR = "execution_error"


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating one tool call's arguments."""

    ok: bool
    parsed: Any = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: ValidationResult | Mapping[str, Any]) -> ValidationResult:
        """Accept validator output as a result object or an `{ok, parsed|errors}` mapping."""

        if isinstance(value, ValidationResult):
            return value
        if isinstance(value, Mapping) and "ok" in value:
            if value["ok"]:
                return cls(ok=True, parsed=value.get("parsed"))
            return cls(ok=False, errors=[str(item) for item in value.get("errors", [])])
        raise TypeError(f"Validator returned unsupported value: {value!r}")


ToolValidator = Callable[[Any], ValidationResult | Mapping[str, Any]]


class ToolValidatorRegistry:
    """Name -> validator mapping; tools without a validator pass unchanged."""

    def __init__(self) -> None:
        self._validators: dict[str, ToolValidator] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._validators

    def register(self, name: str, validator: ToolValidator) -> None:
        """Register `validator` for `name`, replacing any previous one."""

        self._validators[name] = validator

    def unregister(self, name: str) -> None:
        self._validators.pop(name, None)

    def clear(self) -> None:
        self._validators.clear()

    def validate(self, name: str, args: Any) -> ValidationResult:
        """Run the registered validator; exceptions it raises propagate."""

        validator = self._validators.get(name)
        if validator is None:
            return ValidationResult(ok=True, parsed=args)
        return ValidationResult.coerce(validator(args))


default_registry = ToolValidatorRegistry()


def register_tool_validator(name: str, validator: ToolValidator) -> None:
    """Register a validator in the process-wide registry."""

    default_registry.register(name, validator)


def validate_tool_args(name: str, args: Any) -> ValidationResult:
    """Validate against the process-wide registry."""

    return default_registry.validate(name, args)


@dataclass(slots=True)
class ToolExecutionResult:
    """Structured tool execution outcome."""

    status: str
    output: Any = None
    error_code: str | None = None
    error_message: str | None = None
    details: Any = None


ToolFunction = Callable[[Any], Any]


class ToolExecutor:
    """Validates arguments, then runs the named tool with an optional timeout."""

    def __init__(
        self,
        tools: Mapping[str, ToolFunction],
        *,
        registry: ToolValidatorRegistry | None = None,
    ) -> None:
        self.tools = dict(tools)
        self.registry = registry or default_registry

    async def execute(
        self,
        name: str,
        args: Any,
        *,
        timeout_seconds: float | None = None,
    ) -> ToolExecutionResult:
        validation = self.registry.validate(name, args)
        if not validation.ok:
            return ToolExecutionResult(
                status=TOOL_STATUS_VALIDATION_ERROR,
                error_code="invalid_arguments",
                error_message="validation failed",
                details=list(validation.errors),
            )

        tool = self.tools.get(name)
        if tool is None:
            return ToolExecutionResult(
                status=TOOL_STATUS_EXECUTION_ERROR,
                error_code="tool_not_found",
                error_message=f"tool not found: {name}",
            )

        try:
            output = await asyncio.wait_for(_invoke(tool, validation.parsed), timeout_seconds)
        except TimeoutError:
            return ToolExecutionResult(
                status=TOOL_STATUS_EXECUTION_ERROR,
                error_code="timeout",
                error_message=f"tool {name} timed out after {timeout_seconds}s",
            )
        except Exception as error:  # noqa: BLE001
            return ToolExecutionResult(
                status=TOOL_STATUS_EXECUTION_ERROR,
                error_code="tool_error",
                error_message=str(error) or type(error).__name__,
                details={"exception": type(error).__name__},
            )
        return ToolExecutionResult(status=TOOL_STATUS_SUCCESS, output=output)


async def _invoke(tool: ToolFunction, args: Any) -> Any:
    result = tool(args)
    if inspect.isawaitable(result):
        return await result
    return result
