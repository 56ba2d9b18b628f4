"""
Persistent allow/block lists.

The PolicyStore owns the JSON policy file and its in-memory cache.

Rules:
    - Blocklists on load are the union of the file and the built-in baseline,
      so a baseline entry can never be removed by editing the file
    - Allowlists are fully user-controlled and persisted
    - Every mutation is a transaction: take the write lock, reload the
      cached config, mutate, write atomically (temp file + os.replace),
      then publish the new cache
    - A read failure (corrupt JSON, permissions) falls back to in-memory
      defaults; a write failure raises PersistenceError to the caller
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from hostgate.errors import ApprovalDeniedError, PersistenceError
from hostgate.policy.defaults import DEFAULT_BLOCKED_COMMANDS, DEFAULT_BLOCKED_DOMAINS
from hostgate.policy.matching import first_match, normalize_command, normalize_domain
from hostgate.schema import PolicyConfig, TargetKind, default_policy_path

logger = logging.getLogger(__name__)


def create_default_config() -> PolicyConfig:
    """Fresh config with empty allowlists and the baseline blocklists."""
    return PolicyConfig(
        blocked_domains=list(DEFAULT_BLOCKED_DOMAINS),
        blocked_commands=list(DEFAULT_BLOCKED_COMMANDS),
    )


def normalize_identifier(kind: TargetKind, raw: str) -> str:
    """Normalize ``raw`` according to its target kind."""
    if kind == TargetKind.DOMAIN:
        return normalize_domain(raw)
    return normalize_command(raw)


class PolicyStore:
    """
    Durable, thread-safe holder of the PolicyConfig.

    Usage:
        store = PolicyStore(Path("~/.config/hostgate/config.json"))
        config = store.get()
        store.add_allowed(TargetKind.DOMAIN, "https://api.github.com/x")

    Attributes:
        path: Location of the JSON policy file
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else default_policy_path()
        self._config: PolicyConfig | None = None
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Loading and saving
    # -------------------------------------------------------------------------

    def load(self) -> PolicyConfig:
        """
        Load the config from disk, creating it with defaults if absent.

        Returns:
            The loaded (or default) PolicyConfig
        """
        with self._lock:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                if not isinstance(raw, dict):
                    raise ValueError("policy file must contain a JSON object")
                file_config = PolicyConfig.model_validate(raw)
            except FileNotFoundError:
                logger.info("No policy file at %s, creating with defaults", self.path)
                config = create_default_config()
                self._config = config
                try:
                    self._write(config)
                except PersistenceError as e:
                    # Reads never fail; only mutations surface write errors
                    logger.warning(
                        "Could not create policy file %s (%s); using in-memory defaults",
                        self.path,
                        e.underlying_error,
                    )
                return config
            except (OSError, ValueError) as e:
                # ValueError covers JSONDecodeError and pydantic ValidationError
                logger.warning(
                    "Could not read policy file %s (%s); using in-memory defaults",
                    self.path,
                    e,
                )
                self._config = create_default_config()
                return self._config

            self._config = PolicyConfig(
                allowed_domains=file_config.allowed_domains,
                blocked_domains=[*DEFAULT_BLOCKED_DOMAINS, *file_config.blocked_domains],
                allowed_commands=file_config.allowed_commands,
                blocked_commands=[*DEFAULT_BLOCKED_COMMANDS, *file_config.blocked_commands],
            )
            logger.debug("Loaded policy from %s", self.path)
            return self._config

    def get(self) -> PolicyConfig:
        """Return the cached config, loading it on first access."""
        with self._lock:
            if self._config is None:
                return self.load()
            return self._config

    def save(self, config: PolicyConfig) -> None:
        """
        Persist ``config`` and make it the cached config.

        Raises:
            PersistenceError: If the file cannot be written
        """
        with self._lock:
            self._write(config)
            self._config = config

    def reset(self) -> PolicyConfig:
        """Reset to defaults and persist."""
        with self._lock:
            config = create_default_config()
            self.save(config)
            logger.info("Policy reset to defaults")
            return config

    def clear_cache(self) -> None:
        """Forget the cached config so the next access reloads from disk."""
        with self._lock:
            self._config = None

    def _write(self, config: PolicyConfig) -> None:
        data = json.dumps(config.to_json_dict(), indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(path=str(self.path), underlying_error=str(e)) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.debug("Saved policy to %s", self.path)

    # -------------------------------------------------------------------------
    # Allowlist mutation
    # -------------------------------------------------------------------------

    def add_allowed(self, kind: TargetKind, raw: str) -> bool:
        """
        Add a normalized identifier to the allowlist for ``kind``.

        The blocklist is re-checked under the write lock, so an identifier that
        collides with a blocklist entry is refused even if it looked fine when
        it was classified.

        Returns:
            True if the entry was added, False if it was already present

        Raises:
            ApprovalDeniedError: If the identifier matches a blocklist pattern
            PersistenceError: If the policy file cannot be written
        """
        identifier = normalize_identifier(kind, raw)
        if not identifier:
            raise ValueError(f"Empty {kind.value} identifier")

        with self._lock:
            config = self.get()
            pattern = first_match(identifier, config.blocked(kind))
            if pattern is not None:
                logger.warning(
                    "Cannot add blocked %s to allowlist: %s", kind.value, identifier
                )
                raise ApprovalDeniedError(
                    kind=kind.value, identifier=identifier, pattern=pattern
                )

            current = config.allowed(kind)
            if identifier in current:
                logger.debug("%s already in allowlist: %s", kind.value, identifier)
                return False

            self.save(config.with_allowed(kind, [*current, identifier]))
            logger.info("Added %s to allowlist: %s", kind.value, identifier)
            return True

    def remove_allowed(self, kind: TargetKind, raw: str) -> bool:
        """
        Remove a normalized identifier from the allowlist for ``kind``.

        Returns:
            True if the entry was removed, False if it was not present
        """
        identifier = normalize_identifier(kind, raw)
        with self._lock:
            config = self.get()
            current = config.allowed(kind)
            if identifier not in current:
                return False

            self.save(config.with_allowed(kind, [e for e in current if e != identifier]))
            logger.info("Removed %s from allowlist: %s", kind.value, identifier)
            return True
