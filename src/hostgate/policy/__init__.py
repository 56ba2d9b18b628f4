"""Policy: allow/block lists, matching, and approval decisions."""

from hostgate.policy.defaults import DEFAULT_BLOCKED_COMMANDS, DEFAULT_BLOCKED_DOMAINS
from hostgate.policy.engine import PolicyEngine, approval_instructions, parse_approval
from hostgate.policy.matching import (
    canonicalize_host,
    first_match,
    matches_any,
    matches_pattern,
    normalize_command,
    normalize_domain,
)
from hostgate.policy.store import PolicyStore, create_default_config, normalize_identifier

__all__ = [
    "DEFAULT_BLOCKED_COMMANDS",
    "DEFAULT_BLOCKED_DOMAINS",
    "PolicyEngine",
    "PolicyStore",
    "approval_instructions",
    "canonicalize_host",
    "create_default_config",
    "first_match",
    "matches_any",
    "matches_pattern",
    "normalize_command",
    "normalize_domain",
    "normalize_identifier",
    "parse_approval",
]
