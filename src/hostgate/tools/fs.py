"""
Filesystem tools for hostgate.

This module provides:
- file.read: Read a file from the host (for example a subtitle file written
  by a net.exec call)

Security Note:
    file.read is not domain/command gated. Instead every path is checked
    against the sensitive-path blocklist (credentials, keys, /proc, ...)
    in both its normalized and symlink-resolved forms.

    These tools also handle:
    - File not found errors
    - Permission errors
    - Encoding errors
    - Size limit enforcement
"""

import base64
import logging
from pathlib import Path
from typing import Any

from hostgate.errors import PathBlockedError, ResourceNotFoundError, ResourceTooLargeError
from hostgate.security import ensure_path_allowed
from hostgate.tools.base import Tool, ToolContext, ToolOutput

logger = logging.getLogger(__name__)

ENCODINGS = ("utf8", "base64")


class FileReadTool(Tool):
    """
    Read file contents.

    Arguments:
        path (str): Path to the file to read (required)
        encoding (str): "utf8" (default) or "base64" for binary files
        max_size (int): Size ceiling in bytes, at most the configured limit

    Returns:
        On success: Dict with path, content, size and encoding
        On failure: Error message describing what went wrong

    Example:
        args = {"path": "/tmp/video.en.vtt"}
        output = tool.execute(args, context)
        if output.success:
            content = output.data["content"]
    """

    @property
    def name(self) -> str:
        return "file.read"

    @property
    def description(self) -> str:
        return "Read a file from the host filesystem; sensitive paths are blocked"

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """Validate file.read arguments."""
        errors = []

        if "path" not in args:
            errors.append("'path' is required")
        elif not isinstance(args["path"], str):
            errors.append("'path' must be a string")
        elif not args["path"].strip():
            errors.append("'path' cannot be empty")

        if "encoding" in args and args["encoding"] not in ENCODINGS:
            errors.append("'encoding' must be 'utf8' or 'base64'")

        if "max_size" in args:
            value = args["max_size"]
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append("'max_size' must be an integer")
            elif value <= 0:
                errors.append("'max_size' must be positive")

        return errors

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """
        Read a file and return its contents.

        Args:
            args: Must contain 'path', optionally 'encoding' and 'max_size'
            context: Runtime context with working directory and read limits

        Returns:
            ToolOutput with file contents or error
        """
        errors = self.validate_args(args)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}")

        path_str = args["path"]
        encoding = args.get("encoding", "utf8")
        ceiling = context.settings.file_read.max_size_bytes
        max_size = min(args.get("max_size", ceiling), ceiling)

        path = Path(path_str).expanduser()
        if not path.is_absolute():
            path = Path(context.working_dir) / path

        try:
            ensure_path_allowed(path)
        except PathBlockedError as e:
            logger.warning("BLOCKED: attempt to read sensitive file %s", path_str)
            return ToolOutput.from_error(e)

        try:
            stat = path.stat()
        except FileNotFoundError:
            return ToolOutput.from_error(ResourceNotFoundError(resource=path_str))
        except PermissionError:
            return ToolOutput.fail(f"Permission denied: {path_str}", path=str(path))
        except OSError as e:
            return ToolOutput.fail(f"Error reading {path_str}: {e}", path=str(path))

        if not path.is_file():
            return ToolOutput.fail(f"Path is not a file: {path_str}", path=str(path))

        if stat.st_size > max_size:
            return ToolOutput.from_error(
                ResourceTooLargeError(
                    resource=path_str, actual_size=stat.st_size, max_size=max_size
                )
            )

        try:
            raw = path.read_bytes()
        except PermissionError:
            return ToolOutput.fail(f"Permission denied: {path_str}", path=str(path))
        except OSError as e:
            return ToolOutput.fail(f"Error reading {path_str}: {e}", path=str(path))

        if encoding == "base64":
            content = base64.b64encode(raw).decode("ascii")
        else:
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                return ToolOutput.fail(
                    f"Encoding error reading {path_str}: {e}. Try encoding='base64'.",
                    path=str(path),
                )

        logger.info("Read %d bytes from %s", len(raw), path_str)
        return ToolOutput.ok(
            {
                "path": str(path),
                "content": content,
                "size": len(raw),
                "encoding": encoding,
            },
            path=str(path),
            size=len(raw),
        )
