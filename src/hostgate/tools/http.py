"""
HTTP tools for hostgate.

This module provides the outbound fetch capability:
- proxy.fetch: Make an HTTP request on behalf of a sandboxed caller

Security Note:
    Policy enforcement happens BEFORE this tool executes. By the time
    execute() is called, the URL's domain has been classified against the
    domain blocklist/allowlist and admitted by the rate limiter.

    This tool still enforces:
    - No redirects: a redirect target would bypass the domain gate, so the
      3xx response is returned to the caller as-is
    - Hop-by-hop header stripping: callers cannot set Host, Connection or
      Transfer-Encoding
    - Response size limits: stop reading once the limit is exceeded
    - Timeout enforcement, capped by settings
"""

import base64
from typing import Any
from urllib.parse import urlparse

import httpx

from hostgate.errors import (
    ExternalProcessFailureError,
    ProcessTimeoutError,
    ResourceTooLargeError,
)
from hostgate.schema import TargetKind
from hostgate.tools.base import (
    Tool,
    ToolContext,
    ToolOutput,
    check_string_map,
    check_timeout_arg,
)

VALID_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

# Headers the caller may not set
STRIPPED_HEADERS = frozenset({"host", "connection", "transfer-encoding"})


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Drop hop-by-hop headers the caller must not control."""
    return {k: v for k, v in headers.items() if k.lower() not in STRIPPED_HEADERS}


def decode_body(raw: bytes) -> tuple[str, str]:
    """Return (body, encoding): UTF-8 text if possible, base64 otherwise."""
    try:
        return raw.decode("utf-8"), "utf8"
    except UnicodeDecodeError:
        return base64.b64encode(raw).decode("ascii"), "base64"


class ProxyFetchTool(Tool):
    """
    Make HTTP requests.

    Arguments:
        url (str): The URL to fetch (required)
        method (str): HTTP method, default "GET"
        headers (dict): Optional request headers
        body (str): Optional request body
        timeout_ms (int): Request timeout in milliseconds

    Returns:
        On success: Dict with status_code, headers, body, encoding and url
        On failure: Error describing what went wrong

    Example:
        args = {"url": "https://api.github.com/users/octocat"}
        output = tool.execute(args, context)
        if output.success:
            data = output.data["body"]

    Args:
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self._transport = transport

    @property
    def name(self) -> str:
        return "proxy.fetch"

    @property
    def description(self) -> str:
        return "Make an HTTP request to an approved domain"

    @property
    def gate_kind(self) -> TargetKind:
        return TargetKind.DOMAIN

    def gate_target(self, args: dict[str, Any]) -> str:
        return args["url"]

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """Validate proxy.fetch arguments."""
        errors = []

        if "url" not in args:
            errors.append("'url' is required")
        elif not isinstance(args["url"], str):
            errors.append("'url' must be a string")
        elif not args["url"].strip():
            errors.append("'url' cannot be empty")
        else:
            try:
                parsed = urlparse(args["url"])
                if not parsed.scheme:
                    errors.append("'url' must have a scheme (http:// or https://)")
                elif parsed.scheme not in ("http", "https"):
                    errors.append("'url' scheme must be http or https")
                if not parsed.hostname:
                    errors.append("'url' must have a host")
            except ValueError as e:
                errors.append(f"'url' is invalid: {e}")

        if "method" in args:
            method = args["method"]
            if not isinstance(method, str) or method.upper() not in VALID_METHODS:
                errors.append(f"'method' must be one of {', '.join(VALID_METHODS)}")

        check_string_map(args, "headers", errors)

        if "body" in args and args["body"] is not None and not isinstance(args["body"], str):
            errors.append("'body' must be a string")

        check_timeout_arg(args, errors)
        return errors

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """
        Execute an HTTP request.

        Args:
            args: Must contain 'url'
            context: Runtime context with fetch limits

        Returns:
            ToolOutput with response data or error
        """
        errors = self.validate_args(args)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}")

        limits = context.settings.fetch
        url = args["url"]
        method = args.get("method", "GET").upper()
        headers = sanitize_headers(args.get("headers") or {})
        body = args.get("body")
        timeout_ms = min(int(args.get("timeout_ms", limits.default_timeout_ms)), limits.max_timeout_ms)
        max_bytes = limits.max_response_bytes

        try:
            with httpx.Client(
                timeout=timeout_ms / 1000,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                with client.stream(
                    method,
                    url,
                    headers=headers,
                    content=body.encode("utf-8") if body is not None else None,
                ) as response:
                    content_length = response.headers.get("content-length")
                    if content_length and content_length.isdigit():
                        if int(content_length) > max_bytes:
                            return ToolOutput.from_error(
                                ResourceTooLargeError(
                                    resource=url,
                                    actual_size=int(content_length),
                                    max_size=max_bytes,
                                )
                            )

                    chunks = []
                    total = 0
                    for chunk in response.iter_bytes(chunk_size=8192):
                        total += len(chunk)
                        if total > max_bytes:
                            return ToolOutput.from_error(
                                ResourceTooLargeError(
                                    message=(
                                        f"Response exceeded size limit: more than "
                                        f"{max_bytes} bytes"
                                    ),
                                    resource=url,
                                    actual_size=total,
                                    max_size=max_bytes,
                                )
                            )
                        chunks.append(chunk)

                    raw = b"".join(chunks)
                    text, encoding = decode_body(raw)

                    return ToolOutput.ok(
                        {
                            "status_code": response.status_code,
                            "headers": dict(response.headers),
                            "body": text,
                            "encoding": encoding,
                            "url": str(response.url),
                        },
                        url=url,
                        method=method,
                        status_code=response.status_code,
                        body_size=len(raw),
                    )

        except httpx.TimeoutException:
            return ToolOutput.from_error(
                ProcessTimeoutError(
                    message=f"Request timed out after {timeout_ms}ms",
                    command=self.name,
                    timeout_ms=timeout_ms,
                )
            )
        except httpx.HTTPError as e:
            return ToolOutput.from_error(
                ExternalProcessFailureError(
                    message=f"Request failed: {e}",
                    command=self.name,
                    output=type(e).__name__,
                )
            )
