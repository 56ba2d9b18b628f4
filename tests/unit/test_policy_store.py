"""
Unit tests for the PolicyStore.

Tests cover:
- First load creates the file with defaults
- Baseline blocklists are merged back in on load
- Corrupt files fall back to in-memory defaults
- Allowlist add/remove with normalization and blocklist re-check
- Atomic writes and PersistenceError on write failure
- Read paths falling back to defaults when the file cannot be created
- Concurrent allowlist additions
"""

import json
import threading
from pathlib import Path

import pytest

from hostgate.errors import ApprovalDeniedError, PersistenceError
from hostgate.policy import (
    DEFAULT_BLOCKED_COMMANDS,
    DEFAULT_BLOCKED_DOMAINS,
    PolicyEngine,
    PolicyStore,
    create_default_config,
)
from hostgate.schema import ApprovalStatus, PolicyConfig, TargetKind


class TestLoad:
    """Tests for loading the policy file."""

    def test_missing_file_is_created_with_defaults(self, temp_dir: Path) -> None:
        path = temp_dir / "nested" / "config.json"
        store = PolicyStore(path)

        config = store.load()

        assert path.exists()
        assert config.allowed_domains == []
        assert config.allowed_commands == []
        assert list(DEFAULT_BLOCKED_DOMAINS) == config.blocked_domains
        on_disk = json.loads(path.read_text())
        assert set(on_disk) == {
            "allowedDomains",
            "blockedDomains",
            "allowedCommands",
            "blockedCommands",
        }

    def test_baseline_blocklist_cannot_be_removed_by_editing(self, temp_dir: Path) -> None:
        path = temp_dir / "config.json"
        path.write_text(
            json.dumps({
                "allowedDomains": ["api.github.com"],
                "blockedDomains": ["evil.example"],
                "allowedCommands": [],
                "blockedCommands": [],
            })
        )

        config = PolicyStore(path).load()

        assert config.allowed_domains == ["api.github.com"]
        assert "evil.example" in config.blocked_domains
        for entry in DEFAULT_BLOCKED_DOMAINS:
            assert entry in config.blocked_domains
        for entry in DEFAULT_BLOCKED_COMMANDS:
            assert entry in config.blocked_commands

    def test_duplicates_are_dropped(self, temp_dir: Path) -> None:
        path = temp_dir / "config.json"
        path.write_text(json.dumps({"blockedDomains": ["localhost"]}))

        config = PolicyStore(path).load()

        assert config.blocked_domains.count("localhost") == 1

    def test_corrupt_file_uses_defaults(self, temp_dir: Path) -> None:
        path = temp_dir / "config.json"
        path.write_text("{not json")

        config = PolicyStore(path).load()

        assert config == create_default_config()
        # The corrupt file is left for the user to inspect
        assert path.read_text() == "{not json"

    def test_non_object_file_uses_defaults(self, temp_dir: Path) -> None:
        path = temp_dir / "config.json"
        path.write_text("[1, 2, 3]")

        assert PolicyStore(path).load() == create_default_config()

    def test_get_caches(self, store: PolicyStore) -> None:
        first = store.get()
        store.path.write_text(json.dumps({"allowedDomains": ["changed.example"]}))

        assert store.get() is first

        store.clear_cache()
        assert store.get().allowed_domains == ["changed.example"]

    def test_uses_env_path_by_default(self, isolated_policy_path: Path) -> None:
        assert PolicyStore().path == isolated_policy_path


class TestAllowlist:
    """Tests for allowlist mutation."""

    def test_add_normalizes_and_persists(self, store: PolicyStore) -> None:
        added = store.add_allowed(TargetKind.DOMAIN, "https://API.GitHub.com/users")

        assert added is True
        assert store.get().allowed_domains == ["api.github.com"]
        on_disk = json.loads(store.path.read_text())
        assert on_disk["allowedDomains"] == ["api.github.com"]

    def test_add_command_uses_basename(self, store: PolicyStore) -> None:
        store.add_allowed(TargetKind.COMMAND, "/usr/local/bin/yt-dlp")

        assert store.get().allowed_commands == ["yt-dlp"]

    def test_add_existing_returns_false(self, store: PolicyStore) -> None:
        store.add_allowed(TargetKind.DOMAIN, "example.com")

        assert store.add_allowed(TargetKind.DOMAIN, "EXAMPLE.com") is False
        assert store.get().allowed_domains == ["example.com"]

    def test_add_blocked_raises(self, store: PolicyStore) -> None:
        with pytest.raises(ApprovalDeniedError) as exc_info:
            store.add_allowed(TargetKind.DOMAIN, "http://192.168.1.1/admin")

        assert exc_info.value.identifier == "192.168.1.1"
        assert exc_info.value.pattern == "192.168.*"
        assert store.get().allowed_domains == []

    def test_add_blocked_command_raises(self, store: PolicyStore) -> None:
        with pytest.raises(ApprovalDeniedError):
            store.add_allowed(TargetKind.COMMAND, "/usr/bin/sudo")

    def test_add_empty_raises(self, store: PolicyStore) -> None:
        with pytest.raises(ValueError):
            store.add_allowed(TargetKind.COMMAND, "   ")

    def test_remove(self, store: PolicyStore) -> None:
        store.add_allowed(TargetKind.DOMAIN, "example.com")

        assert store.remove_allowed(TargetKind.DOMAIN, "https://example.com/x") is True
        assert store.get().allowed_domains == []
        assert store.remove_allowed(TargetKind.DOMAIN, "example.com") is False

    def test_reset_clears_allowlists(self, store: PolicyStore) -> None:
        store.add_allowed(TargetKind.DOMAIN, "example.com")
        store.add_allowed(TargetKind.COMMAND, "gh")

        config = store.reset()

        assert config.allowed_domains == []
        assert config.allowed_commands == []
        assert PolicyStore(store.path).load().allowed_domains == []


class TestPersistence:
    """Tests for atomic writes."""

    def test_no_temp_files_left_behind(self, store: PolicyStore) -> None:
        store.add_allowed(TargetKind.DOMAIN, "example.com")
        store.add_allowed(TargetKind.DOMAIN, "example.org")

        leftovers = [p for p in store.path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_write_failure_raises_persistence_error(self, temp_dir: Path) -> None:
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("")
        store = PolicyStore(blocker / "config.json")

        with pytest.raises(PersistenceError) as exc_info:
            store.save(PolicyConfig())

        assert exc_info.value.error_type == "persistence_failure"
        assert str(blocker / "config.json") in exc_info.value.path

    def test_save_updates_cache(self, store: PolicyStore) -> None:
        config = PolicyConfig(allowed_domains=["example.com"])
        store.save(config)

        assert store.get() is config

    def test_uncreatable_file_falls_back_to_defaults(
        self, store: PolicyStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def failing_write(config: PolicyConfig) -> None:
            raise PersistenceError(path=str(store.path), underlying_error="read-only")

        monkeypatch.setattr(store, "_write", failing_write)

        assert store.get() == create_default_config()
        assert PolicyEngine(store).classify(TargetKind.DOMAIN, "example.com").status == (
            ApprovalStatus.NEEDS_APPROVAL
        )
        # Mutations still report the failure
        with pytest.raises(PersistenceError):
            store.add_allowed(TargetKind.DOMAIN, "example.com")
        assert store.get().allowed_domains == []

    @pytest.mark.skipif(not Path("/proc/self").exists(), reason="needs procfs")
    def test_unwritable_directory_falls_back_to_defaults(self) -> None:
        store = PolicyStore("/proc/hostgate-test/config.json")
        engine = PolicyEngine(store)

        first = engine.classify(TargetKind.DOMAIN, "https://example.com")
        second = engine.classify(TargetKind.DOMAIN, "https://example.com")

        assert first.status == ApprovalStatus.NEEDS_APPROVAL
        assert second.status == ApprovalStatus.NEEDS_APPROVAL
        assert engine.classify(TargetKind.DOMAIN, "127.0.0.1").status == ApprovalStatus.BLOCKED


class TestConcurrency:
    """Concurrent mutations must not lose updates."""

    def test_concurrent_adds_all_persist(self, store: PolicyStore) -> None:
        domains = [f"host{i}.example.com" for i in range(20)]
        barrier = threading.Barrier(len(domains))
        errors: list[Exception] = []

        def add(domain: str) -> None:
            barrier.wait()
            try:
                store.add_allowed(TargetKind.DOMAIN, domain)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add, args=(d,)) for d in domains]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(store.get().allowed_domains) == sorted(domains)
        on_disk = json.loads(store.path.read_text())
        assert sorted(on_disk["allowedDomains"]) == sorted(domains)
        assert sorted(PolicyStore(store.path).load().allowed_domains) == sorted(domains)

    def test_concurrent_always_approvals(self, store: PolicyStore) -> None:
        engine = PolicyEngine(store)
        commands = [f"tool-{i}" for i in range(10)]
        barrier = threading.Barrier(len(commands))

        def approve(command: str) -> None:
            barrier.wait()
            engine.authorize(TargetKind.COMMAND, command, "always")

        threads = [threading.Thread(target=approve, args=(c,)) for c in commands]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        fresh = PolicyEngine(PolicyStore(store.path))
        for command in commands:
            assert fresh.classify(TargetKind.COMMAND, command).status == ApprovalStatus.ALLOWED
