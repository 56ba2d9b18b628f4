"""
Input safety checks shared by the tools.

- Argument validation: reject shell metacharacters in commands and arguments
- Sensitive paths: refuse to read or expose credentials and system files

Security Note:
    The exec primitive never goes through a shell, so these operators
    would be passed literally. They are refused anyway because an argument
    containing them almost always indicates an injection attempt, and the
    refusal message tells the caller exactly why.
"""

import os
import re
from pathlib import Path

from hostgate.errors import DangerousArgumentError, PathBlockedError

# Order matters: multi-character operators are checked before their prefixes
DANGEROUS_PATTERNS: tuple[str, ...] = (
    "&&",
    "||",
    "$(",
    "${",
    ";",
    "|",
    ">",
    "<",
    "`",
)

BLOCKED_FILE_PATHS: tuple[re.Pattern[str], ...] = (
    # System credentials
    re.compile(r"^/etc/shadow$"),
    re.compile(r"^/etc/passwd$"),
    re.compile(r"^/etc/sudoers"),
    re.compile(r"^/etc/ssh/"),
    # User credentials
    re.compile(r"/\.ssh/"),
    re.compile(r"/\.aws/"),
    re.compile(r"/\.gnupg/"),
    re.compile(r"/\.config/gcloud/"),
    re.compile(r"/\.kube/config$"),
    re.compile(r"/\.npmrc$"),
    re.compile(r"/\.netrc$"),
    re.compile(r"/\.env$"),
    re.compile(r"/\.env\."),
    # Key and token files
    re.compile(r"/credentials\.json$"),
    re.compile(r"/service[_-]?account.*\.json$", re.IGNORECASE),
    re.compile(r"/token\.json$"),
    # Pseudo filesystems
    re.compile(r"^/proc/"),
    re.compile(r"^/sys/"),
    re.compile(r"^/dev/"),
)


def find_dangerous_pattern(value: str) -> str | None:
    """Return the first shell operator found in ``value``, or None."""
    for pattern in DANGEROUS_PATTERNS:
        if pattern in value:
            return pattern
    return None


def validate_command_arguments(command: str, args: list[str]) -> None:
    """
    Check a command and its arguments for shell operators.

    Raises:
        DangerousArgumentError: On the first offending command or argument
    """
    pattern = find_dangerous_pattern(command)
    if pattern is not None:
        raise DangerousArgumentError(tool="net.exec", pattern=pattern, position=None)

    for i, arg in enumerate(args):
        pattern = find_dangerous_pattern(arg)
        if pattern is not None:
            raise DangerousArgumentError(tool="net.exec", pattern=pattern, position=i)


def _candidate_paths(path: Path | str) -> list[str]:
    raw = os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))
    candidates = [raw]
    try:
        resolved = str(Path(raw).resolve())
    except (OSError, RuntimeError):
        # Symlink loop or unreadable component; the literal path still counts
        return candidates
    if resolved != raw:
        candidates.append(resolved)
    return candidates


def is_blocked_path(path: Path | str) -> bool:
    """
    Check whether ``path`` points at a sensitive file.

    Both the normalized path and its symlink-resolved form are tested, so a
    link into ``~/.ssh`` is caught.
    """
    for candidate in _candidate_paths(path):
        posix = candidate.replace("\\", "/")
        if any(p.search(posix) for p in BLOCKED_FILE_PATHS):
            return True
    return False


def ensure_path_allowed(path: Path | str) -> None:
    """
    Raise if ``path`` is on the sensitive-path blocklist.

    Raises:
        PathBlockedError: If the path is blocked
    """
    if is_blocked_path(path):
        raise PathBlockedError(identifier=str(path))
