"""
Gateway for hostgate.

The Gateway is the main orchestration layer. Every capability call goes
through Gateway.call(), which coordinates:
- Tool registry: Finds the tool by name
- Policy engine: Classifies the target and applies approval tokens
- Rate limiter: Admits the call per target
- Tools: Execute the actual operation

Call Flow:
    1. Look up the tool (ToolNotFoundError)
    2. Validate arguments (ValidationFailedError)
    3. For gated tools:
        a. Classify the target; BLOCKED raises PolicyBlockedError
        b. NEEDS_APPROVAL without a token returns a needs_approval result
        c. "always" persists the approval
        d. Admit through the rate limiter (RateLimitedError)
    4. Execute the tool
    5. Convert the ToolOutput or GatewayError into a GateResult

Design Principles:
    - Nothing raises out of call(): every outcome is a GateResult
    - No automatic retries; retryable errors say so
    - No module globals: every collaborator is an injected instance
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Callable

from hostgate.errors import GatewayError, RateLimitedError, ValidationFailedError
from hostgate.exposure.service import FileExposure
from hostgate.policy import PolicyEngine, PolicyStore, approval_instructions, parse_approval
from hostgate.ratelimit import RateLimiter
from hostgate.schema import (
    GateResult,
    GateStatus,
    GatewaySettings,
    PolicyConfig,
    PolicyDecision,
    TargetKind,
)
from hostgate.tools import (
    FileCleanupTool,
    FileReadTool,
    FileServeTool,
    FileStatusTool,
    NetworkExecTool,
    ProxyFetchTool,
    ToolContext,
    ToolOutput,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = {
    TargetKind.DOMAIN: "fetch",
    TargetKind.COMMAND: "exec",
}


class Gateway:
    """
    Main entry point for hostgate.

    Usage:
        with Gateway(load_settings("hostgate.yaml")) as gateway:
            result = gateway.call("proxy.fetch", {"url": "https://api.github.com"})
            if result.status == GateStatus.NEEDS_APPROVAL:
                result = gateway.call(
                    "proxy.fetch", {"url": "https://api.github.com", "approve": "once"}
                )

    Attributes:
        settings: Gateway settings
        store: Persistent policy lists
        engine: Policy evaluator
        limiter: Sliding-window rate limiter
        exposure: File exposure pipeline
        registry: Tools available to call()
    """

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        store: PolicyStore | None = None,
        registry: ToolRegistry | None = None,
        clock: Callable[[], int] | None = None,
        exposure: FileExposure | None = None,
        working_dir: str | Path = ".",
    ) -> None:
        """
        Initialize the gateway.

        Args:
            settings: Gateway settings (defaults if omitted)
            store: Policy store (defaults to one at settings.policy_path)
            registry: Tool registry (defaults to the built-in tools)
            clock: Millisecond clock for the rate limiter
            exposure: File exposure pipeline (built from settings if omitted)
            working_dir: Working directory for relative paths
        """
        self.settings = settings or GatewaySettings()
        self.store = store or PolicyStore(self.settings.policy_path)
        self.engine = PolicyEngine(self.store)
        self.limiter = RateLimiter(
            clock=clock,
            sweep_interval=self.settings.rate_limits.sweep_interval_seconds,
        )
        self.exposure = exposure or FileExposure(self.settings.file_server, self.settings.tunnel)
        self.registry = registry or self._default_registry()
        self.working_dir = str(Path(working_dir).resolve())

    def _default_registry(self) -> ToolRegistry:
        return ToolRegistry([
            ProxyFetchTool(),
            NetworkExecTool(),
            FileReadTool(),
            FileServeTool(self.exposure),
            FileStatusTool(self.exposure),
            FileCleanupTool(self.exposure),
        ])

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start background sweeps."""
        self.limiter.start()
        self.exposure.start()
        logger.debug("Gateway started")

    def shutdown(self) -> None:
        """Stop the tunnel, the file server and background sweeps."""
        self.exposure.shutdown()
        self.limiter.shutdown()
        logger.debug("Gateway stopped")

    def __enter__(self) -> "Gateway":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Capability calls
    # -------------------------------------------------------------------------

    def call(self, tool_name: str, args: dict[str, Any] | None = None) -> GateResult:
        """
        Run a capability through the gate.

        Args:
            tool_name: Registered tool name, e.g. "proxy.fetch"
            args: Tool arguments; gated tools also accept "approve"
                ("once" or "always")

        Returns:
            GateResult tagged success, needs_approval or error
        """
        args = dict(args or {})
        approve = args.pop("approve", None)
        identifier: str | None = None

        try:
            tool = self.registry.get(tool_name)
            token = parse_approval(approve)

            errors = tool.validate_args(args)
            if errors:
                raise ValidationFailedError(tool=tool_name, errors=errors)

            kind = tool.gate_kind
            if kind is not None:
                decision = self.engine.authorize(kind, tool.gate_target(args), token)
                identifier = decision.identifier
                if not decision.proceeds:
                    return GateResult(
                        status=GateStatus.NEEDS_APPROVAL,
                        tool=tool_name,
                        identifier=identifier,
                        message=approval_instructions(decision, tool_name),
                    )
                self._admit(kind, identifier)

        except GatewayError as e:
            return self._error_result(tool_name, e, identifier)

        context = ToolContext(
            call_id=str(uuid.uuid4()),
            settings=self.settings,
            working_dir=self.working_dir,
        )
        try:
            output = tool.execute(args, context)
        except GatewayError as e:
            return self._error_result(tool_name, e, identifier)
        except Exception as e:
            logger.exception("Tool %s raised unexpectedly", tool_name)
            output = ToolOutput.fail(
                f"Tool execution failed: {e}", error_type="external_process_failure"
            )

        return self._output_result(tool_name, output, identifier)

    def _admit(self, kind: TargetKind, identifier: str) -> None:
        limit = (
            self.settings.rate_limits.fetch
            if kind == TargetKind.DOMAIN
            else self.settings.rate_limits.exec
        )
        key = f"{RATE_LIMIT_PREFIX[kind]}:{identifier}"
        decision = self.limiter.admit(key, limit.max_requests, limit.window_ms)
        if not decision.allowed:
            raise RateLimitedError(
                identifier=key,
                retry_after_ms=decision.retry_after_ms or 0,
                max_requests=limit.max_requests,
                window_ms=limit.window_ms,
            )

    def _error_result(
        self, tool_name: str, error: GatewayError, identifier: str | None
    ) -> GateResult:
        logger.info("%s failed: %s", tool_name, error.message)
        return GateResult(
            status=GateStatus.ERROR,
            tool=tool_name,
            identifier=error.context.get("identifier") or identifier,
            message=error.message,
            error_type=error.error_type,
            error_code=error.code,
            retryable=error.retryable,
            suggestion=error.suggestion,
            retry_after_ms=getattr(error, "retry_after_ms", None),
        )

    def _output_result(
        self, tool_name: str, output: ToolOutput, identifier: str | None
    ) -> GateResult:
        if output.success:
            return GateResult(
                status=GateStatus.SUCCESS,
                tool=tool_name,
                identifier=identifier,
                data=output.data,
            )
        return GateResult(
            status=GateStatus.ERROR,
            tool=tool_name,
            identifier=identifier,
            message=output.error,
            error_type=output.error_type,
            error_code=output.error_code,
            retryable=output.retryable,
            suggestion=output.suggestion,
        )

    # -------------------------------------------------------------------------
    # Policy administration
    # -------------------------------------------------------------------------

    def classify(self, kind: TargetKind, target: str) -> PolicyDecision:
        """Classify a target without invoking anything."""
        return self.engine.classify(kind, target)

    def allow(self, kind: TargetKind, target: str) -> bool:
        """Add a target to the allowlist. Returns False if already present."""
        return self.engine.allow(kind, target)

    def revoke(self, kind: TargetKind, target: str) -> bool:
        """Remove a target from the allowlist. Returns False if absent."""
        return self.engine.revoke(kind, target)

    def policy(self) -> PolicyConfig:
        """Current allow/block lists."""
        return self.store.get()

    def reset_policy(self) -> PolicyConfig:
        """Reset allow/block lists to defaults."""
        return self.store.reset()

    def list_tools(self) -> list[str]:
        return self.registry.list_tools()
