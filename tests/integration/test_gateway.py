"""
Integration tests for the Gateway.

Tests cover:
- The approval workflow: needs_approval, once, always, revoke
- Blocklist enforcement before anything runs
- Validation errors, unknown tools and bad approval values
- Rate limiting with retry_after_ms
- Ungated file tools and unexpected tool failures
"""

import os
import sys
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from hostgate.errors import ApprovalDeniedError
from hostgate.gateway import Gateway
from hostgate.schema import (
    ApprovalStatus,
    GateStatus,
    GatewaySettings,
    RateLimit,
    RateLimitSettings,
    TargetKind,
)
from hostgate.tools import ProxyFetchTool, Tool, ToolContext, ToolOutput

PYTHON = sys.executable
PYTHON_ID = os.path.basename(PYTHON).lower()


def py_call(code: str = "print('ok')", **extra: Any) -> dict[str, Any]:
    return {"command": PYTHON, "args": ["-c", code], **extra}


@pytest.fixture
def gateway(settings: GatewaySettings, clock, temp_dir: Path) -> Generator[Gateway, None, None]:
    gw = Gateway(settings, clock=clock, working_dir=temp_dir)
    yield gw
    gw.shutdown()


class TestApprovalWorkflow:
    """needs_approval -> once -> always -> ALLOWED -> revoke."""

    def test_unknown_command_needs_approval(self, gateway: Gateway) -> None:
        result = gateway.call("net.exec", py_call())

        assert result.status == GateStatus.NEEDS_APPROVAL
        assert result.identifier == PYTHON_ID
        assert f'"{PYTHON_ID}" is not in your allowlist' in result.message
        assert 'approve: "once"' in result.message
        assert result.data is None

    def test_once_runs_without_persisting(self, gateway: Gateway) -> None:
        result = gateway.call("net.exec", py_call(approve="once"))

        assert result.status == GateStatus.SUCCESS
        assert result.data["stdout"].strip() == "ok"
        assert gateway.classify(TargetKind.COMMAND, PYTHON).status == (
            ApprovalStatus.NEEDS_APPROVAL
        )

    def test_always_persists(self, gateway: Gateway, settings: GatewaySettings) -> None:
        result = gateway.call("net.exec", py_call(approve="always"))

        assert result.ok
        assert gateway.classify(TargetKind.COMMAND, PYTHON).status == ApprovalStatus.ALLOWED
        assert gateway.call("net.exec", py_call()).ok

        # A fresh gateway reads the persisted allowlist
        fresh = Gateway(settings)
        assert fresh.classify(TargetKind.COMMAND, PYTHON).status == ApprovalStatus.ALLOWED

    def test_revoke_returns_to_needs_approval(self, gateway: Gateway) -> None:
        gateway.call("net.exec", py_call(approve="always"))

        assert gateway.revoke(TargetKind.COMMAND, PYTHON) is True
        assert gateway.call("net.exec", py_call()).status == GateStatus.NEEDS_APPROVAL

    def test_invalid_approval_value(self, gateway: Gateway) -> None:
        result = gateway.call("net.exec", py_call(approve="maybe"))

        assert result.status == GateStatus.ERROR
        assert result.error_type == "validation_failed"


class TestBlocking:
    """Blocked targets never run."""

    @pytest.mark.parametrize("approve", [None, "once", "always"])
    def test_blocked_command(self, gateway: Gateway, approve: str | None) -> None:
        args: dict[str, Any] = {"command": "rm", "args": ["-rf", "/tmp/nothing"]}
        if approve:
            args["approve"] = approve

        result = gateway.call("net.exec", args)

        assert result.status == GateStatus.ERROR
        assert result.error_type == "policy_blocked"
        assert result.identifier == "rm"
        assert result.retryable is False
        assert gateway.policy().allowed_commands == []

    def test_blocked_domain(self, gateway: Gateway) -> None:
        result = gateway.call(
            "proxy.fetch", {"url": "http://169.254.169.254/latest/meta-data", "approve": "once"}
        )

        assert result.status == GateStatus.ERROR
        assert result.error_type == "policy_blocked"
        assert result.identifier == "169.254.169.254"

    @pytest.mark.parametrize(
        "url",
        [
            "http://127.1:8080/",
            "http://2130706433:8080/",
            "http://0x7f.0.0.1:8080/",
            "http://[0:0:0:0:0:0:0:1]:8080/",
            "http://localhost.:8080/",
        ],
    )
    def test_loopback_spellings_blocked(self, gateway: Gateway, url: str) -> None:
        result = gateway.call("proxy.fetch", {"url": url, "approve": "once"})

        assert result.status == GateStatus.ERROR
        assert result.error_type == "policy_blocked"
        assert result.identifier in {"127.0.0.1", "::1", "localhost"}

    def test_dangerous_arguments_rejected_before_approval(self, gateway: Gateway) -> None:
        result = gateway.call(
            "net.exec", {"command": "echo", "args": ["a", "b; rm -rf /"], "approve": "once"}
        )

        assert result.status == GateStatus.ERROR
        assert result.error_type == "validation_failed"
        assert '";"' in result.message

    def test_allow_blocked_raises(self, gateway: Gateway) -> None:
        with pytest.raises(ApprovalDeniedError):
            gateway.allow(TargetKind.DOMAIN, "localhost")


class TestValidation:
    """Structural errors come back as results."""

    def test_unknown_tool(self, gateway: Gateway) -> None:
        result = gateway.call("nope.tool", {})

        assert result.status == GateStatus.ERROR
        assert result.error_type == "validation_failed"
        assert "nope.tool" in result.message

    def test_missing_arguments(self, gateway: Gateway) -> None:
        result = gateway.call("proxy.fetch", {})

        assert result.status == GateStatus.ERROR
        assert result.error_type == "validation_failed"
        assert "url" in result.message

    def test_list_tools(self, gateway: Gateway) -> None:
        assert gateway.list_tools() == [
            "file.cleanup",
            "file.read",
            "file.serve",
            "file.status",
            "net.exec",
            "proxy.fetch",
        ]


class TestRateLimiting:
    """Sliding-window admission per target."""

    @pytest.fixture
    def limited(self, settings: GatewaySettings, clock, temp_dir: Path) -> Gateway:
        limited_settings = settings.model_copy(
            update={
                "rate_limits": RateLimitSettings(
                    exec=RateLimit(max_requests=2, window_ms=1000),
                )
            }
        )
        return Gateway(limited_settings, clock=clock, working_dir=temp_dir)

    def test_limit_and_retry_after(self, limited: Gateway, clock) -> None:
        limited.allow(TargetKind.COMMAND, PYTHON)

        assert limited.call("net.exec", py_call()).ok
        clock.advance(300)
        assert limited.call("net.exec", py_call()).ok

        result = limited.call("net.exec", py_call())
        assert result.status == GateStatus.ERROR
        assert result.error_type == "rate_limited"
        assert result.retryable is True
        assert result.retry_after_ms == 700
        assert result.identifier == f"exec:{PYTHON_ID}"

        clock.advance(700)
        assert limited.call("net.exec", py_call()).ok

    def test_needs_approval_does_not_consume(self, limited: Gateway) -> None:
        for _ in range(5):
            assert limited.call("net.exec", py_call()).status == GateStatus.NEEDS_APPROVAL

        assert limited.call("net.exec", py_call(approve="once")).ok


class TestFetchThroughGateway:
    """proxy.fetch end to end with a mock transport."""

    def test_allowed_fetch(self, gateway: Gateway) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="hello")

        gateway.registry.register(ProxyFetchTool(transport=httpx.MockTransport(handler)))
        gateway.allow(TargetKind.DOMAIN, "*.example.com")

        result = gateway.call("proxy.fetch", {"url": "https://api.example.com/x"})

        assert result.ok
        assert result.identifier == "api.example.com"
        assert result.data["body"] == "hello"


class TestFileTools:
    """Ungated file tools through the gateway."""

    def test_read(self, gateway: Gateway, temp_dir: Path) -> None:
        (temp_dir / "out.txt").write_text("subtitle")

        result = gateway.call("file.read", {"path": "out.txt"})

        assert result.ok
        assert result.data["content"] == "subtitle"

    def test_read_blocked(self, gateway: Gateway) -> None:
        result = gateway.call("file.read", {"path": "~/.ssh/id_rsa"})

        assert result.status == GateStatus.ERROR
        assert result.error_type == "policy_blocked"

    def test_serve_status_cleanup(self, gateway: Gateway, temp_dir: Path) -> None:
        path = temp_dir / "render.mp4"
        path.write_bytes(b"\x00" * 64)

        served = gateway.call("file.serve", {"path": str(path), "expiry_minutes": 5})
        assert served.ok
        file_id = served.data["file_id"]
        assert served.data["url"] is None
        assert served.data["local_url"].endswith(f"{file_id}.mp4")

        status = gateway.call("file.status", {})
        assert status.data["files_served"] == 1
        assert status.data["server_running"] is True

        cleaned = gateway.call("file.cleanup", {"file_id": file_id})
        assert cleaned.data == {"removed": 1}

        missing = gateway.call("file.cleanup", {"file_id": file_id})
        assert missing.error_type == "resource_not_found"

    def test_cleanup_requires_target(self, gateway: Gateway) -> None:
        result = gateway.call("file.cleanup", {})

        assert result.error_type == "validation_failed"


class TestUnexpectedFailures:
    """A tool that raises is turned into an error result."""

    def test_exception_becomes_error(self, gateway: Gateway) -> None:
        class Exploding(Tool):
            @property
            def name(self) -> str:
                return "test.explode"

            def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
                raise RuntimeError("kaboom")

        gateway.registry.register(Exploding())

        result = gateway.call("test.explode", {})

        assert result.status == GateStatus.ERROR
        assert result.error_type == "external_process_failure"
        assert "kaboom" in result.message


class TestLifecycle:
    """start/shutdown and context manager."""

    def test_context_manager(self, settings: GatewaySettings) -> None:
        with Gateway(settings) as gw:
            assert gw.limiter._sweeper.is_running
        assert not gw.limiter._sweeper.is_running
