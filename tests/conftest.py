"""
Pytest configuration and fixtures for hostgate tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

from hostgate.policy import PolicyStore
from hostgate.schema import FileServerSettings, GatewaySettings, TunnelSettings


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeDateTimeClock:
    """Manually advanced aware-datetime clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def isolated_policy_path(
    temp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Path:
    """Keep every test away from the real per-user policy file."""
    path = temp_dir / "config" / "hostgate.json"
    monkeypatch.setenv("HOSTGATE_POLICY_PATH", str(path))
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def datetime_clock() -> FakeDateTimeClock:
    return FakeDateTimeClock()


@pytest.fixture
def store(isolated_policy_path: Path) -> PolicyStore:
    """Policy store backed by a file in the temp dir."""
    return PolicyStore(isolated_policy_path)


@pytest.fixture
def settings(temp_dir: Path, isolated_policy_path: Path) -> GatewaySettings:
    """Gateway settings with every path inside the temp dir and no tunnel."""
    return GatewaySettings(
        policy_path=isolated_policy_path,
        file_server=FileServerSettings(
            port=0,
            serve_directory=temp_dir / "served",
        ),
        tunnel=TunnelSettings(enabled=False),
    )
