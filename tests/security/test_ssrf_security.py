"""
Security tests for the built-in domain and command blocklists.

The baseline blocklists cover loopback, link-local, cloud metadata and
private ranges, plus destructive and privilege-escalating commands. They
must win even when the same identifier has been written into the
allowlist by hand.
"""

import json
from pathlib import Path

import pytest

from hostgate.errors import ApprovalDeniedError, PolicyBlockedError
from hostgate.policy import PolicyEngine, PolicyStore
from hostgate.schema import ApprovalStatus, TargetKind


@pytest.fixture
def tampered_engine(temp_dir: Path) -> PolicyEngine:
    """Engine whose policy file allowlists blocked targets by hand."""
    path = temp_dir / "tampered.json"
    path.write_text(
        json.dumps({
            "allowedDomains": ["127.0.0.1", "10.5.3.2", "localhost", "*"],
            "blockedDomains": [],
            "allowedCommands": ["rm", "sudo", "*"],
            "blockedCommands": [],
        })
    )
    return PolicyEngine(PolicyStore(path))


class TestDomainBlocklist:
    """SSRF targets are blocked."""

    @pytest.mark.parametrize(
        "url",
        [
            "http://127.0.0.1/",
            "http://localhost:8080/admin",
            "http://LOCALHOST/",
            "http://[::1]/",
            "http://169.254.169.254/latest/meta-data/",
            "http://169.254.1.1/",
            "http://10.5.3.2/",
            "http://172.16.0.5/",
            "http://172.31.255.255/",
            "http://192.168.1.1/",
            "http://[fe80::1]/",
            "http://[fd00::1]/",
            "http://[::ffff:127.0.0.1]/",
            "http://127.1/",
            "http://127.0.0.2/",
            "http://2130706433/",
            "http://0x7f.0.0.1/",
            "http://017700000001/",
            "http://localhost./",
            "http://[0:0:0:0:0:0:0:1]/",
            "http://0.0.0.0:8080/",
            "http://0xa9.0xfe.0xa9.0xfe/latest/meta-data/",
            "http://167772161/",
            "127.1",
            "localhost.",
        ],
    )
    def test_blocked_even_when_allowlisted(
        self, tampered_engine: PolicyEngine, url: str
    ) -> None:
        decision = tampered_engine.classify(TargetKind.DOMAIN, url)

        assert decision.status == ApprovalStatus.BLOCKED

    @pytest.mark.parametrize(
        "url",
        ["http://172.160.0.5/", "http://172.15.0.1/", "http://11.0.0.1/", "https://example.com"],
    )
    def test_public_addresses_not_blocked(self, store: PolicyStore, url: str) -> None:
        decision = PolicyEngine(store).classify(TargetKind.DOMAIN, url)

        assert decision.status != ApprovalStatus.BLOCKED

    def test_approval_cannot_unblock(self, store: PolicyStore) -> None:
        engine = PolicyEngine(store)

        with pytest.raises(PolicyBlockedError):
            engine.authorize(TargetKind.DOMAIN, "http://127.0.0.1/", "always")

        assert store.get().allowed_domains == []

    def test_allow_rejects_blocked(self, store: PolicyStore) -> None:
        with pytest.raises(ApprovalDeniedError):
            PolicyEngine(store).allow(TargetKind.DOMAIN, "http://10.0.0.1/")


class TestCommandBlocklist:
    """Destructive commands are blocked."""

    @pytest.mark.parametrize(
        "command",
        ["rm", "/bin/rm", "sudo", "SUDO", "bash", "/usr/bin/sh", "nc", "kill", "dd", "chmod"],
    )
    def test_blocked_even_when_allowlisted(
        self, tampered_engine: PolicyEngine, command: str
    ) -> None:
        decision = tampered_engine.classify(TargetKind.COMMAND, command)

        assert decision.status == ApprovalStatus.BLOCKED

    def test_wildcard_allowlist_still_allows_others(
        self, tampered_engine: PolicyEngine
    ) -> None:
        decision = tampered_engine.classify(TargetKind.COMMAND, "yt-dlp")

        assert decision.status == ApprovalStatus.ALLOWED

    @pytest.mark.parametrize("command", ["rm", "sudo"])
    def test_approval_cannot_unblock(self, store: PolicyStore, command: str) -> None:
        with pytest.raises(PolicyBlockedError):
            PolicyEngine(store).authorize(TargetKind.COMMAND, command, "once")
