"""
Schema definitions for hostgate.

This module defines the Pydantic models used throughout hostgate:
- PolicyConfig: The persisted allow/block lists
- GatewaySettings: Runtime settings (rate limits, file server, tunnel)
- PolicyDecision: The result of classifying a target
- RateDecision: The result of a rate-limit admission
- FileRegistration: A file exposed through the local server
- GateResult: The tagged result returned for every capability call

Design Decisions:
    - Settings are immutable (frozen=True) and reject unknown keys
    - PolicyConfig serializes with camelCase aliases so the on-disk JSON
      stays compatible with existing config files
    - Settings are loaded from YAML; the policy file is JSON
"""

import os
import tempfile
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class TargetKind(str, Enum):
    """What kind of identifier a policy list holds."""

    DOMAIN = "domain"
    COMMAND = "command"


class ApprovalStatus(str, Enum):
    """Classification of a target against the allow/block lists."""

    BLOCKED = "BLOCKED"
    ALLOWED = "ALLOWED"
    NEEDS_APPROVAL = "NEEDS_APPROVAL"


class ApprovalToken(str, Enum):
    """Caller-supplied approval for a NEEDS_APPROVAL target."""

    ONCE = "once"
    ALWAYS = "always"


class GateStatus(str, Enum):
    """Status tag of a GateResult."""

    SUCCESS = "success"
    NEEDS_APPROVAL = "needs_approval"
    ERROR = "error"


class TunnelState(str, Enum):
    """Lifecycle state of the ingress tunnel."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


# =============================================================================
# Policy Models
# =============================================================================


def _unique(values: list[str]) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    return list(dict.fromkeys(values))


class PolicyConfig(BaseModel):
    """
    Persisted allow/block lists.

    Blocklists always include the built-in baseline (enforced by the
    PolicyStore on load). Allowlists are fully user-controlled.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    allowed_domains: list[str] = Field(default_factory=list, alias="allowedDomains")
    blocked_domains: list[str] = Field(default_factory=list, alias="blockedDomains")
    allowed_commands: list[str] = Field(default_factory=list, alias="allowedCommands")
    blocked_commands: list[str] = Field(default_factory=list, alias="blockedCommands")

    @field_validator(
        "allowed_domains", "blocked_domains", "allowed_commands", "blocked_commands"
    )
    @classmethod
    def dedupe(cls, v: list[str]) -> list[str]:
        """Drop duplicate entries."""
        return _unique(v)

    def allowed(self, kind: TargetKind) -> list[str]:
        """Allowlist for a target kind."""
        return self.allowed_domains if kind == TargetKind.DOMAIN else self.allowed_commands

    def blocked(self, kind: TargetKind) -> list[str]:
        """Blocklist for a target kind."""
        return self.blocked_domains if kind == TargetKind.DOMAIN else self.blocked_commands

    def with_allowed(self, kind: TargetKind, entries: list[str]) -> "PolicyConfig":
        """Return a copy with the allowlist for ``kind`` replaced."""
        key = "allowed_domains" if kind == TargetKind.DOMAIN else "allowed_commands"
        return self.model_copy(update={key: _unique(entries)})

    def to_json_dict(self) -> dict[str, list[str]]:
        """Serialize with the on-disk camelCase keys."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Settings Models
# =============================================================================


class RateLimit(BaseModel):
    """Sliding-window limit for one capability."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_requests: int = Field(default=100, gt=0)
    window_ms: int = Field(default=60_000, gt=0)


class RateLimitSettings(BaseModel):
    """Rate limits per gated capability."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fetch: RateLimit = Field(default_factory=RateLimit)
    exec: RateLimit = Field(default_factory=RateLimit)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)


class FetchSettings(BaseModel):
    """Settings for proxy.fetch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_response_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    default_timeout_ms: int = Field(default=30_000, gt=0)
    max_timeout_ms: int = Field(default=300_000, gt=0)


class ExecSettings(BaseModel):
    """Settings for net.exec."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_timeout_ms: int = Field(default=60_000, gt=0)
    max_timeout_ms: int = Field(default=600_000, gt=0)
    max_output_bytes: int = Field(default=1024 * 1024, gt=0)
    kill_grace_seconds: float = Field(default=5.0, ge=0)


class FileReadSettings(BaseModel):
    """Settings for file.read."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_size_bytes: int = Field(default=5 * 1024 * 1024, gt=0)


def _default_serve_directory() -> Path:
    return Path(tempfile.gettempdir()) / "hostgate-files"


class FileServerSettings(BaseModel):
    """Settings for the file exposure pipeline."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=0, le=65535)
    max_port_attempts: int = Field(default=20, gt=0)
    serve_directory: Path = Field(default_factory=_default_serve_directory)
    max_file_size: int = Field(default=100 * 1024 * 1024, gt=0)
    default_expiry_minutes: float = Field(default=60, gt=0)
    allowed_extensions: list[str] = Field(
        default_factory=lambda: [
            "png", "jpg", "jpeg", "gif", "webp", "svg",
            "mp4", "webm", "mp3", "wav",
            "pdf", "json", "txt",
        ],
        description="Extensions (without dot) that may be served; empty allows any",
    )
    sweep_interval_seconds: float = Field(default=300.0, gt=0)

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lower-case and strip leading dots."""
        return _unique([ext.lower().lstrip(".") for ext in v])


class TunnelSettings(BaseModel):
    """Settings for the cloudflared ingress tunnel."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    binary: str = "cloudflared"
    startup_timeout_seconds: float = Field(default=30.0, gt=0)
    stop_grace_seconds: float = Field(default=5.0, ge=0)
    max_restarts: int = Field(default=3, ge=0)


def default_policy_path() -> Path:
    """Well-known per-user location of the persisted policy file."""
    override = os.environ.get("HOSTGATE_POLICY_PATH")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "hostgate" / "config.json"


class GatewaySettings(BaseModel):
    """
    Complete gateway settings.

    Attributes:
        policy_path: Location of the persisted allow/block lists
        rate_limits: Sliding-window limits per capability
        fetch: proxy.fetch limits
        exec: net.exec limits
        file_read: file.read limits
        file_server: Exposure pipeline settings
        tunnel: Ingress tunnel settings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_path: Path = Field(default_factory=default_policy_path)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    exec: ExecSettings = Field(default_factory=ExecSettings)
    file_read: FileReadSettings = Field(default_factory=FileReadSettings)
    file_server: FileServerSettings = Field(default_factory=FileServerSettings)
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)

    @field_validator("policy_path")
    @classmethod
    def expand_policy_path(cls, v: Path) -> Path:
        """Expand ``~`` in the policy path."""
        return v.expanduser()


# =============================================================================
# Runtime Models
# =============================================================================


class PolicyDecision(BaseModel):
    """
    Result of classifying a target against the policy lists.

    Attributes:
        status: BLOCKED, ALLOWED or NEEDS_APPROVAL
        kind: Domain or command
        identifier: The normalized identifier that was classified
        reason: Human-readable explanation of the decision
        rule_matched: The pattern that caused this decision, if any
        approval: The approval token that let a NEEDS_APPROVAL target through
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: ApprovalStatus
    kind: TargetKind
    identifier: str
    reason: str
    rule_matched: str | None = None
    approval: ApprovalToken | None = None

    @property
    def proceeds(self) -> bool:
        """Whether the capability may be invoked."""
        return self.status == ApprovalStatus.ALLOWED or self.approval is not None

    @classmethod
    def blocked(cls, kind: TargetKind, identifier: str, rule: str) -> "PolicyDecision":
        """Create a BLOCKED decision."""
        return cls(
            status=ApprovalStatus.BLOCKED,
            kind=kind,
            identifier=identifier,
            reason=f"Matches security blocklist pattern: {rule}",
            rule_matched=rule,
        )

    @classmethod
    def allowed(cls, kind: TargetKind, identifier: str, rule: str) -> "PolicyDecision":
        """Create an ALLOWED decision."""
        return cls(
            status=ApprovalStatus.ALLOWED,
            kind=kind,
            identifier=identifier,
            reason=f"Matches allowlist pattern: {rule}",
            rule_matched=rule,
        )

    @classmethod
    def needs_approval(cls, kind: TargetKind, identifier: str) -> "PolicyDecision":
        """Create a NEEDS_APPROVAL decision."""
        return cls(
            status=ApprovalStatus.NEEDS_APPROVAL,
            kind=kind,
            identifier=identifier,
            reason=f"{kind.value.capitalize()} is not in the allowlist",
        )


class RateDecision(BaseModel):
    """Result of a rate-limit admission."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool
    remaining: int = Field(ge=0)
    retry_after_ms: int | None = Field(default=None, ge=0)


class FileRegistration(BaseModel):
    """
    A file exposed through the local exposure server.

    The registry owns ``served_path`` (an isolated copy) and deletes it;
    ``original_path`` is never touched.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    original_path: Path
    served_path: Path
    filename: str
    content_type: str
    size_bytes: int = Field(ge=0)
    created_at: datetime
    expires_at: datetime

    @property
    def extension(self) -> str:
        """Extension of the served copy, including the dot."""
        return self.served_path.suffix

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the registration is logically gone."""
        return (now or datetime.now(UTC)) >= self.expires_at


class GateResult(BaseModel):
    """
    Tagged result of a capability call.

    - ``success``: ``data`` holds the capability payload
    - ``needs_approval``: ``identifier`` and ``message`` tell the caller how
      to retry with an approval token
    - ``error``: ``error_type`` is the taxonomy discriminant; rate-limited
      errors carry ``retry_after_ms``
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: GateStatus
    tool: str
    identifier: str | None = None
    message: str | None = None
    data: Any = None
    error_type: str | None = None
    error_code: int | None = None
    retryable: bool | None = None
    suggestion: str | None = None
    retry_after_ms: int | None = None

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.status == GateStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output, dropping unset fields."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_settings(path: Path | str) -> GatewaySettings:
    """
    Load gateway settings from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated GatewaySettings object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return GatewaySettings.model_validate(data or {})


def load_settings_from_string(content: str) -> GatewaySettings:
    """Load gateway settings from a YAML string."""
    data = yaml.safe_load(content)
    return GatewaySettings.model_validate(data or {})
