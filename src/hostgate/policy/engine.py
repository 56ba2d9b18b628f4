"""
Policy Engine for hostgate.

The Policy Engine is the security boundary of hostgate. Every gated
capability call (outbound fetch, command execution) passes through it
before anything touches the network or spawns a process.

Design Principles:
    - Blocklist always wins: a blocked identifier is never reachable, even
      when it also appears in the allowlist
    - Approval-by-default: anything not allowlisted needs an explicit
      "once" or "always" token from the caller
    - Predictable: Same inputs always produce same decisions
    - Auditable: All decisions include clear reasons and the matched rule

How it works:
    1. Normalize the raw target (URL -> host, invocation -> basename)
    2. Match against the blocklist, then the allowlist
    3. Return a PolicyDecision (BLOCKED / ALLOWED / NEEDS_APPROVAL)
    4. authorize() turns a decision plus approval token into "proceed",
       "ask the caller" or an exception

Security Note:
    This module is security-critical. Normalization is text-only; no DNS
    resolution happens here, so a public name that resolves to a private
    address is not caught by the domain blocklist.
"""

import logging

from hostgate.errors import PolicyBlockedError, ValidationFailedError
from hostgate.policy.matching import first_match
from hostgate.policy.store import PolicyStore, normalize_identifier
from hostgate.schema import ApprovalStatus, ApprovalToken, PolicyDecision, TargetKind

logger = logging.getLogger(__name__)


def parse_approval(value: object) -> ApprovalToken | None:
    """
    Convert a caller-supplied approval value into an ApprovalToken.

    Raises:
        ValidationFailedError: If the value is not None, "once" or "always"
    """
    if value is None or isinstance(value, ApprovalToken):
        return value
    if isinstance(value, str):
        try:
            return ApprovalToken(value.strip().lower())
        except ValueError:
            pass
    raise ValidationFailedError(
        errors=[f'approve must be "once" or "always", got {value!r}'],
    )


def approval_instructions(decision: PolicyDecision, tool_name: str) -> str:
    """Message telling the caller how to approve a NEEDS_APPROVAL target."""
    label = decision.kind.value.capitalize()
    return (
        f'{label} "{decision.identifier}" is not in your allowlist. '
        f'To proceed, call {tool_name} again with approve: "once" for this '
        f'execution only, or approve: "always" to remember this {decision.kind.value}.'
    )


class PolicyEngine:
    """
    Central policy evaluator for hostgate.

    Usage:
        engine = PolicyEngine(PolicyStore())
        decision = engine.authorize(TargetKind.DOMAIN, url, approve)
        if decision.proceeds:
            # invoke the capability
        else:
            # ask the caller for approval

    Attributes:
        store: The PolicyStore holding allow/block lists
    """

    def __init__(self, store: PolicyStore) -> None:
        self.store = store

    def classify(self, kind: TargetKind, raw: str) -> PolicyDecision:
        """
        Classify a raw target against the current lists.

        Args:
            kind: Domain or command
            raw: URL, host or command invocation as supplied by the caller

        Returns:
            PolicyDecision carrying the normalized identifier
        """
        identifier = normalize_identifier(kind, raw)
        config = self.store.get()

        blocked_by = first_match(identifier, config.blocked(kind))
        if blocked_by is not None:
            logger.info("BLOCKED %s %s (pattern %s)", kind.value, identifier, blocked_by)
            return PolicyDecision.blocked(kind, identifier, blocked_by)

        allowed_by = first_match(identifier, config.allowed(kind))
        if allowed_by is not None:
            logger.info("ALLOWED %s %s (pattern %s)", kind.value, identifier, allowed_by)
            return PolicyDecision.allowed(kind, identifier, allowed_by)

        logger.info("NEEDS_APPROVAL %s %s", kind.value, identifier)
        return PolicyDecision.needs_approval(kind, identifier)

    def authorize(
        self,
        kind: TargetKind,
        raw: str,
        approve: ApprovalToken | str | None = None,
    ) -> PolicyDecision:
        """
        Classify a target and apply the caller's approval token.

        Returns:
            The decision. ``decision.proceeds`` is True when the capability
            may run; a NEEDS_APPROVAL decision without a token means the
            caller must be asked.

        Raises:
            PolicyBlockedError: If the target is blocked
            ApprovalDeniedError: If "always" collides with the blocklist
            ValidationFailedError: If ``approve`` is not a known token
            PersistenceError: If "always" cannot be saved
        """
        token = parse_approval(approve)
        decision = self.classify(kind, raw)

        if decision.status == ApprovalStatus.BLOCKED:
            raise PolicyBlockedError(
                kind=kind.value,
                identifier=decision.identifier,
                pattern=decision.rule_matched,
            )

        if decision.status == ApprovalStatus.ALLOWED or token is None:
            return decision

        if token == ApprovalToken.ALWAYS:
            # add_allowed re-checks the blocklist under the store lock
            self.store.add_allowed(kind, decision.identifier)
            logger.info("Approved always: %s %s", kind.value, decision.identifier)
        else:
            logger.info("Approved once: %s %s", kind.value, decision.identifier)

        return decision.model_copy(update={"approval": token})

    def allow(self, kind: TargetKind, raw: str) -> bool:
        """Add a target to the allowlist. Returns False if already present."""
        return self.store.add_allowed(kind, raw)

    def revoke(self, kind: TargetKind, raw: str) -> bool:
        """Remove a target from the allowlist. Returns False if absent."""
        return self.store.remove_allowed(kind, raw)
