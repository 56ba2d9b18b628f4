"""
File exposure tools for hostgate.

- file.serve: Register a file and return a public (tunnel) and local URL
- file.status: Server, tunnel and registry status
- file.cleanup: Remove one served file, or all of them

These tools are not domain/command gated; file.serve applies the
sensitive-path blocklist through the FileRegistry.
"""

from typing import Any

from hostgate.errors import GatewayError
from hostgate.exposure.service import FileExposure
from hostgate.tools.base import Tool, ToolContext, ToolOutput


class FileServeTool(Tool):
    """
    Expose a host file over HTTP.

    Arguments:
        path (str): Path to the file (required)
        filename (str): Name shown in Content-Disposition
        expiry_minutes (number): Lifetime of the URL, default from settings
        content_type (str): Override MIME type detection

    Returns:
        On success: Dict with url, local_url, file_id, expires_at, warning
    """

    def __init__(self, exposure: FileExposure) -> None:
        self.exposure = exposure

    @property
    def name(self) -> str:
        return "file.serve"

    @property
    def description(self) -> str:
        return "Register a file for HTTP serving and return a public URL"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """Validate file.serve arguments."""
        errors = []

        if "path" not in args:
            errors.append("'path' is required")
        elif not isinstance(args["path"], str) or not args["path"].strip():
            errors.append("'path' must be a non-empty string")

        for key in ("filename", "content_type"):
            if key in args and args[key] is not None and not isinstance(args[key], str):
                errors.append(f"'{key}' must be a string")

        if "expiry_minutes" in args and args["expiry_minutes"] is not None:
            value = args["expiry_minutes"]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append("'expiry_minutes' must be a number")
            elif value <= 0:
                errors.append("'expiry_minutes' must be positive")

        return errors

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        errors = self.validate_args(args)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}")

        try:
            result = self.exposure.serve(
                args["path"],
                filename=args.get("filename"),
                expiry_minutes=args.get("expiry_minutes"),
                content_type=args.get("content_type"),
            )
        except GatewayError as e:
            return ToolOutput.from_error(e)
        return ToolOutput.ok(result, file_id=result["file_id"])


class FileStatusTool(Tool):
    """Report file server, tunnel and registry status."""

    def __init__(self, exposure: FileExposure) -> None:
        self.exposure = exposure

    @property
    def name(self) -> str:
        return "file.status"

    @property
    def description(self) -> str:
        return "Check the status of the file server and tunnel"

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        return ToolOutput.ok(self.exposure.status())


class FileCleanupTool(Tool):
    """
    Remove served files.

    Arguments:
        file_id (str): Id of one file to remove
        all (bool): Remove every served file
    """

    def __init__(self, exposure: FileExposure) -> None:
        self.exposure = exposure

    @property
    def name(self) -> str:
        return "file.cleanup"

    @property
    def description(self) -> str:
        return "Remove served files by id, or all of them"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """Validate file.cleanup arguments."""
        errors = []
        if "file_id" in args and args["file_id"] is not None and not isinstance(args["file_id"], str):
            errors.append("'file_id' must be a string")
        if "all" in args and not isinstance(args["all"], bool):
            errors.append("'all' must be a boolean")
        if not args.get("file_id") and not args.get("all"):
            errors.append("Must specify either file_id or all: true")
        return errors

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        errors = self.validate_args(args)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}")

        try:
            removed = self.exposure.cleanup(
                file_id=args.get("file_id"), remove_all=bool(args.get("all"))
            )
        except GatewayError as e:
            return ToolOutput.from_error(e)
        return ToolOutput.ok({"removed": removed})
