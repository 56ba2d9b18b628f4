"""
Exception hierarchy for hostgate.

All hostgate exceptions inherit from GatewayError, allowing callers to catch
every gateway failure with a single except clause and turn it into a
structured result.

Exception Categories:
    - PolicyBlockedError: Target matches a hard-coded or user blocklist
    - ApprovalDeniedError: An "always" approval collided with the blocklist
    - RateLimitedError: Admission denied by the sliding-window limiter
    - ValidationFailedError: Malformed input or dangerous argument pattern
    - ResourceNotFoundError / ResourceTooLargeError: File or id problems
    - ExternalProcessFailureError: Missing binary, timeout, crashed subprocess
    - PersistenceError: Policy file could not be written

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors carry a stable ``error_type`` discriminant
    - All errors include context (identifier, path, etc.) where applicable
    - Errors are designed to be both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_BLOCKED = 1001
ERROR_POLICY_PATH_BLOCKED = 1002
ERROR_APPROVAL_DENIED = 1101
ERROR_RATE_LIMITED = 1201

# Validation errors: 2xxx
ERROR_VALIDATION_FAILED = 2001
ERROR_DANGEROUS_ARGUMENT = 2002
ERROR_TOOL_NOT_FOUND = 2003

# Resource errors: 3xxx
ERROR_RESOURCE_NOT_FOUND = 3001
ERROR_RESOURCE_TOO_LARGE = 3002

# External process errors: 4xxx
ERROR_EXTERNAL_PROCESS = 4001
ERROR_PROCESS_TIMEOUT = 4002
ERROR_TUNNEL_UNAVAILABLE = 4003

# Persistence errors: 5xxx
ERROR_PERSISTENCE = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GatewayError(Exception):
    """
    Base exception for all hostgate errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    error_type: ClassVar[str] = "gateway_error"
    retryable: ClassVar[bool] = False

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PolicyBlockedError(GatewayError):
    """
    Raised when a target matches a blocklist pattern.

    Terminal: the same request will be blocked again. Blocklist entries from
    the built-in baseline cannot be removed by the user.

    Attributes:
        kind: "domain", "command" or "path"
        identifier: The normalized identifier that was blocked
        pattern: The blocklist pattern that matched, if known
    """

    error_type: ClassVar[str] = "policy_blocked"

    kind: str = ""
    identifier: str = ""
    pattern: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            label = self.kind.capitalize() or "Target"
            self.message = (
                f'{label} "{self.identifier}" is in the security blocklist '
                "and cannot be used"
            )
        if self.code == 0:
            self.code = ERROR_POLICY_BLOCKED
        self.context.update({
            "kind": self.kind,
            "identifier": self.identifier,
            "pattern": self.pattern,
        })


@dataclass
class PathBlockedError(PolicyBlockedError):
    """Raised when a file path is on the sensitive-path blocklist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.kind:
            self.kind = "path"
        if not self.message:
            self.message = "Access denied: this file path is blocked for security reasons"
        if self.code == 0:
            self.code = ERROR_POLICY_PATH_BLOCKED
        super().__post_init__()


@dataclass
class ApprovalDeniedError(GatewayError):
    """
    Raised when an "always" approval cannot be persisted because the
    identifier matches a blocklist pattern at write time.
    """

    error_type: ClassVar[str] = "approval_denied"

    kind: str = ""
    identifier: str = ""
    pattern: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            label = self.kind.capitalize() or "Target"
            self.message = (
                f'{label} "{self.identifier}" is in the security blocklist '
                "and cannot be added to allowlist"
            )
        if self.code == 0:
            self.code = ERROR_APPROVAL_DENIED
        self.context.update({
            "kind": self.kind,
            "identifier": self.identifier,
            "pattern": self.pattern,
        })


@dataclass
class RateLimitedError(GatewayError):
    """Raised when the rate limiter denies admission. Retry after the delay."""

    error_type: ClassVar[str] = "rate_limited"
    retryable: ClassVar[bool] = True

    identifier: str = ""
    retry_after_ms: int = 0
    max_requests: int = 0
    window_ms: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Rate limit exceeded for {self.identifier}: "
                f"{self.max_requests} requests per {self.window_ms}ms"
            )
        if self.code == 0:
            self.code = ERROR_RATE_LIMITED
        if not self.suggestion:
            self.suggestion = f"Retry after {self.retry_after_ms}ms"
        self.context.update({
            "identifier": self.identifier,
            "retry_after_ms": self.retry_after_ms,
            "max_requests": self.max_requests,
            "window_ms": self.window_ms,
        })


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class ValidationFailedError(GatewayError):
    """Raised when request input is malformed or unsafe."""

    error_type: ClassVar[str] = "validation_failed"

    tool: str = ""
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            joined = "; ".join(self.errors) or "invalid input"
            prefix = f"Invalid arguments for {self.tool}" if self.tool else "Invalid arguments"
            self.message = f"{prefix}: {joined}"
        if self.code == 0:
            self.code = ERROR_VALIDATION_FAILED
        self.context.update({
            "tool": self.tool,
            "errors": self.errors,
        })


@dataclass
class DangerousArgumentError(ValidationFailedError):
    """Raised when a command or argument contains a shell operator."""

    pattern: str = ""
    position: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = "Command" if self.position is None else f"Argument {self.position + 1}"
            self.message = (
                f'{where} contains dangerous shell operator "{self.pattern}". '
                "Shell operators are not allowed for security reasons."
            )
        if self.code == 0:
            self.code = ERROR_DANGEROUS_ARGUMENT
        super().__post_init__()
        self.context.update({
            "pattern": self.pattern,
            "position": self.position,
        })


@dataclass
class ToolNotFoundError(ValidationFailedError):
    """Raised when a tool is not registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool not found: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check tool name spelling or register the tool"
        super().__post_init__()


# =============================================================================
# Resource Errors
# =============================================================================


@dataclass
class ResourceNotFoundError(GatewayError):
    """Raised when a file or registration id is absent or expired."""

    error_type: ClassVar[str] = "resource_not_found"

    resource: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Not found: {self.resource}"
        if self.code == 0:
            self.code = ERROR_RESOURCE_NOT_FOUND
        self.context["resource"] = self.resource


@dataclass
class ResourceTooLargeError(GatewayError):
    """Raised when a size ceiling is exceeded."""

    error_type: ClassVar[str] = "resource_too_large"

    resource: str = ""
    actual_size: int = 0
    max_size: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Too large: {self.resource} is {self.actual_size} bytes "
                f"(max: {self.max_size})"
            )
        if self.code == 0:
            self.code = ERROR_RESOURCE_TOO_LARGE
        self.context.update({
            "resource": self.resource,
            "actual_size": self.actual_size,
            "max_size": self.max_size,
        })


# =============================================================================
# External Process Errors
# =============================================================================


@dataclass
class ExternalProcessFailureError(GatewayError):
    """
    Raised when a subprocess cannot be started, crashes, or times out.

    Attributes:
        command: The executable involved
        output: Captured output for diagnostics (truncated)
        exit_code: Exit code if the process exited
    """

    error_type: ClassVar[str] = "external_process_failure"

    command: str = ""
    output: str = ""
    exit_code: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Process {self.command} failed"
            if self.exit_code is not None:
                self.message += f" with exit code {self.exit_code}"
        if self.code == 0:
            self.code = ERROR_EXTERNAL_PROCESS
        self.context.update({
            "command": self.command,
            "output": self.output[:500],
            "exit_code": self.exit_code,
        })


@dataclass
class ProcessTimeoutError(ExternalProcessFailureError):
    """Raised when a subprocess or fetch exceeds its timeout."""

    retryable: ClassVar[bool] = True

    timeout_ms: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.command or 'Operation'} timed out after {self.timeout_ms}ms"
        if self.code == 0:
            self.code = ERROR_PROCESS_TIMEOUT
        super().__post_init__()
        self.context["timeout_ms"] = self.timeout_ms


@dataclass
class TunnelUnavailableError(ExternalProcessFailureError):
    """Raised when the tunneling binary is not installed."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.command} is not installed"
        if self.code == 0:
            self.code = ERROR_TUNNEL_UNAVAILABLE
        if not self.suggestion:
            self.suggestion = (
                "Install with: brew install cloudflared (macOS) or download from "
                "https://developers.cloudflare.com/cloudflare-one/connections/"
                "connect-apps/install-and-setup/installation/"
            )
        super().__post_init__()


# =============================================================================
# Persistence Errors
# =============================================================================


@dataclass
class PersistenceError(GatewayError):
    """Raised when the policy file cannot be written."""

    error_type: ClassVar[str] = "persistence_failure"

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to write {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PERSISTENCE
        if not self.suggestion:
            self.suggestion = "Check that the configuration directory is writable"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })
