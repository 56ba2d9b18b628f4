"""
Command execution tool for hostgate.

This module provides:
- net.exec: Run an approved CLI tool (curl, yt-dlp, gh, ...) on the host

Security Note:
    Policy enforcement happens BEFORE this tool executes. By the time
    execute() is called, the command basename has been classified against
    the command blocklist/allowlist and admitted by the rate limiter.

    CRITICAL SECURITY MEASURES:
    - Commands are passed as an argv list (NO shell=True)
    - Command and arguments are checked for shell operators, both in
      validate_args() and again in execute()
    - Timeout enforcement: SIGTERM, then SIGKILL after a grace period
    - Output size limits per stream to prevent memory exhaustion
"""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import IO, Any

from hostgate.errors import (
    DangerousArgumentError,
    ExternalProcessFailureError,
    ProcessTimeoutError,
)
from hostgate.schema import TargetKind
from hostgate.security import validate_command_arguments
from hostgate.tools.base import (
    Tool,
    ToolContext,
    ToolOutput,
    check_string_map,
    check_timeout_arg,
)

logger = logging.getLogger(__name__)

PIPE_DRAIN_SECONDS = 5.0


class _StreamCollector(threading.Thread):
    """Drain a pipe, keeping at most ``limit`` bytes and counting the rest."""

    def __init__(self, stream: IO[bytes], limit: int) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.total = 0
        self._chunks: list[bytes] = []
        self._kept = 0

    def run(self) -> None:
        with self.stream:
            for chunk in iter(lambda: self.stream.read1(65536), b""):
                self.total += len(chunk)
                room = self.limit - self._kept
                if room > 0:
                    piece = chunk[:room]
                    self._chunks.append(piece)
                    self._kept += len(piece)

    def text(self) -> str:
        data = b"".join(self._chunks).decode("utf-8", errors="replace")
        if self.total > self.limit:
            data += (
                f"\n\n[Output truncated: {self.total} bytes exceeded "
                f"{self.limit} byte limit]"
            )
        return data


class NetworkExecTool(Tool):
    """
    Execute a command without a shell.

    Arguments:
        command (str): Executable name or path (required)
        args (list): Arguments, each passed as one argv element
        cwd (str): Working directory (optional)
        env (dict): Environment variables merged over the current ones
        timeout_ms (int): Timeout in milliseconds

    Returns:
        On success: Dict with exit_code, stdout and stderr. A non-zero exit
        code is still a success; the caller decides what it means.
        On failure: Error describing what went wrong

    Example:
        args = {"command": "yt-dlp", "args": ["--version"]}
        output = tool.execute(args, context)
        if output.success:
            print(output.data["stdout"])

    Why args must be a list:
        ["echo", "hello; rm -rf /"] passes "hello; rm -rf /" as a single
        argument. It is refused anyway by the shell-operator check.
    """

    @property
    def name(self) -> str:
        return "net.exec"

    @property
    def description(self) -> str:
        return "Run an approved CLI command with arguments as a list"

    @property
    def gate_kind(self) -> TargetKind:
        return TargetKind.COMMAND

    def gate_target(self, args: dict[str, Any]) -> str:
        return args["command"]

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Validate net.exec arguments.

        Raises:
            DangerousArgumentError: If the command or an argument contains a
                shell operator
        """
        errors = []

        command = args.get("command")
        if "command" not in args:
            errors.append("'command' is required")
        elif not isinstance(command, str):
            errors.append("'command' must be a string")
        elif not command.strip():
            errors.append("'command' cannot be empty")

        argv = args.get("args", [])
        if not isinstance(argv, list):
            errors.append("'args' must be a list of strings")
        else:
            for i, element in enumerate(argv):
                if not isinstance(element, str):
                    errors.append(f"'args[{i}]' must be a string, got {type(element).__name__}")
                    break

        if "cwd" in args:
            if not isinstance(args["cwd"], str):
                errors.append("'cwd' must be a string")
            elif not args["cwd"].strip():
                errors.append("'cwd' cannot be empty")

        check_string_map(args, "env", errors)
        check_timeout_arg(args, errors)

        if not errors:
            validate_command_arguments(command, argv)
        return errors

    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """
        Execute a command.

        Args:
            args: Must contain 'command'
            context: Runtime context with exec limits and working directory

        Returns:
            ToolOutput with exit code and captured output, or error
        """
        try:
            errors = self.validate_args(args)
        except DangerousArgumentError as e:
            return ToolOutput.from_error(e)
        if errors:
            return ToolOutput.fail(f"Invalid arguments: {'; '.join(errors)}")

        limits = context.settings.exec
        command = args["command"].strip()
        argv = [command, *args.get("args", [])]
        timeout_ms = min(int(args.get("timeout_ms", limits.default_timeout_ms)), limits.max_timeout_ms)

        cwd_path = Path(args.get("cwd", context.working_dir)).expanduser()
        if not cwd_path.is_absolute():
            cwd_path = Path(context.working_dir) / cwd_path
        if not cwd_path.is_dir():
            return ToolOutput.fail(
                f"Working directory does not exist: {cwd_path}",
                cwd=str(cwd_path),
            )

        env = os.environ.copy()
        env.update(args.get("env") or {})

        logger.info("Executing %s with %d args", command, len(argv) - 1)
        try:
            # Never use shell=True
            process = subprocess.Popen(
                argv,
                cwd=str(cwd_path),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
            )
        except FileNotFoundError:
            return ToolOutput.from_error(
                ExternalProcessFailureError(
                    message=f"Executable not found: {command}", command=command
                )
            )
        except PermissionError:
            return ToolOutput.from_error(
                ExternalProcessFailureError(
                    message=f"Permission denied executing: {command}", command=command
                )
            )
        except OSError as e:
            return ToolOutput.from_error(
                ExternalProcessFailureError(
                    message=f"Failed to start {command}: {e}", command=command
                )
            )

        stdout = _StreamCollector(process.stdout, limits.max_output_bytes)
        stderr = _StreamCollector(process.stderr, limits.max_output_bytes)
        stdout.start()
        stderr.start()

        timed_out = False
        try:
            exit_code = process.wait(timeout=timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning("%s timed out after %dms, terminating", command, timeout_ms)
            process.terminate()
            try:
                exit_code = process.wait(timeout=limits.kill_grace_seconds)
            except subprocess.TimeoutExpired:
                process.kill()
                exit_code = process.wait()

        # A grandchild may keep the pipes open after the process exits
        stdout.join(timeout=PIPE_DRAIN_SECONDS)
        stderr.join(timeout=PIPE_DRAIN_SECONDS)

        if timed_out:
            return ToolOutput.from_error(
                ProcessTimeoutError(
                    command=command,
                    output=stderr.text(),
                    exit_code=exit_code,
                    timeout_ms=timeout_ms,
                )
            )

        return ToolOutput.ok(
            {
                "exit_code": exit_code,
                "stdout": stdout.text(),
                "stderr": stderr.text(),
            },
            command=command,
            cwd=str(cwd_path),
            stdout_size=stdout.total,
            stderr_size=stderr.total,
        )
