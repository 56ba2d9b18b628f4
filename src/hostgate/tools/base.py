"""
Base classes for the tool interface.

This module defines the core abstractions for tools in hostgate:
- Tool: Abstract base class that all tools must implement
- ToolContext: Runtime context passed to tools during execution
- ToolOutput: Standardized result format from tool execution

Design Principles:
    - Tools receive validated arguments - the gateway calls validate_args()
      and runs the policy gate before execute()
    - Tools return ToolOutput - never raise exceptions for expected failures
    - Gated tools declare which target kind they touch and how to extract
      the target from their arguments
    - Tools are registered by name - the registry handles lookup
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from hostgate.errors import GatewayError
from hostgate.schema import GatewaySettings, TargetKind


@dataclass(frozen=True)
class ToolOutput:
    """
    Standardized output from tool execution.

    Attributes:
        success: Whether the tool executed successfully
        data: The output data from the tool (type varies by tool)
        error: Error message if success is False
        error_type: Taxonomy discriminant if success is False
        error_code: Numeric error code if success is False
        suggestion: Optional hint for resolving the failure
        retryable: Whether the same call may succeed later
        metadata: Additional metadata about the execution
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_type: str | None = None
    error_code: int | None = None
    suggestion: str | None = None
    retryable: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any, **metadata: Any) -> "ToolOutput":
        """Create a successful output."""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_type: str = "validation_failed",
        **metadata: Any,
    ) -> "ToolOutput":
        """Create a failed output."""
        return cls(success=False, error=error, error_type=error_type, metadata=metadata)

    @classmethod
    def from_error(cls, exc: GatewayError) -> "ToolOutput":
        """Create a failed output from a GatewayError."""
        return cls(
            success=False,
            error=exc.message,
            error_type=exc.error_type,
            error_code=exc.code,
            suggestion=exc.suggestion,
            retryable=exc.retryable,
            metadata=dict(exc.context),
        )


@dataclass
class ToolContext:
    """
    Runtime context passed to tools during execution.

    Attributes:
        call_id: Unique identifier for the current call
        settings: The gateway settings (limits, timeouts)
        working_dir: The working directory for relative paths
        metadata: Additional context-specific metadata
    """

    call_id: str
    settings: GatewaySettings = field(default_factory=GatewaySettings)
    working_dir: str = "."
    metadata: dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """
    Abstract base class for all hostgate tools.

    Subclasses must implement:
    - name property: Returns the tool's unique identifier
    - execute(): Performs the tool's action

    Gated tools also override ``gate_kind`` and ``gate_target()`` so the
    gateway can classify the target before execute() runs.

    Example:
        class EchoTool(Tool):
            @property
            def name(self) -> str:
                return "echo"

            def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
                return ToolOutput.ok(args.get("message", ""))
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        The unique identifier for this tool.

        Tool names follow the convention: namespace.action
        Examples: "proxy.fetch", "net.exec", "file.serve"
        """
        ...

    @property
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        return f"Tool: {self.name}"

    @property
    def gate_kind(self) -> TargetKind | None:
        """Target kind checked by the policy gate, or None if ungated."""
        return None

    def gate_target(self, args: dict[str, Any]) -> str | None:
        """Raw target (URL, command) to classify. Called after validate_args()."""
        return None

    @abstractmethod
    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """
        Execute the tool with the given arguments.

        This method is called after the policy gate and rate limiter have
        admitted the call.

        Note:
            - Do NOT raise exceptions for expected failures
            - Use ToolOutput.fail() or ToolOutput.from_error()
        """
        ...

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Validate the arguments for this tool.

        Returns:
            List of validation error messages (empty if valid)
        """
        return []

    def __repr__(self) -> str:
        return f"<Tool: {self.name}>"


def check_timeout_arg(args: dict[str, Any], errors: list[str]) -> None:
    """Shared check for the optional ``timeout_ms`` argument."""
    if "timeout_ms" in args:
        value = args["timeout_ms"]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append("'timeout_ms' must be an integer number of milliseconds")
        elif value <= 0:
            errors.append("'timeout_ms' must be positive")


def check_string_map(args: dict[str, Any], key: str, errors: list[str]) -> None:
    """Shared check for optional ``dict[str, str]`` arguments."""
    if key not in args:
        return
    value = args[key]
    if not isinstance(value, dict):
        errors.append(f"'{key}' must be a dictionary")
        return
    for k, v in value.items():
        if not isinstance(k, str) or not isinstance(v, str):
            errors.append(f"'{key}' keys and values must be strings")
            break
