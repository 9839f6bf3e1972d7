"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from mc_gateway.config import GatewayConfig
from mc_gateway.liveness import LivenessSnapshot, Target


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SnapshotSource:
    """Stand-in for LivenessMonitor.current_snapshot."""

    def __init__(self) -> None:
        self.snapshot = LivenessSnapshot(active=False, data={}, observed_at=0.0)

    def __call__(self) -> LivenessSnapshot:
        return self.snapshot

    def set(self, active: bool, online: int | None = None, **extra) -> None:
        data = dict(self.snapshot.data)
        if online is not None:
            data["players"] = {"max": 20, "online": online}
        data.update(extra)
        self.snapshot = LivenessSnapshot(active=active, data=data, observed_at=0.0)


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def snapshots() -> SnapshotSource:
    """Controllable liveness snapshot source."""
    return SnapshotSource()


@pytest.fixture
def sample_target() -> Target:
    """A backend address nothing listens on."""
    return Target(host="127.0.0.1", port=1)


@pytest.fixture
def sample_status() -> dict:
    """Status payload as a real backend would return it."""
    return {
        "version": {"name": "1.20.4", "protocol": 765},
        "players": {"max": 20, "online": 3},
        "description": {"text": "A Minecraft Server"},
        "favicon": "data:image/png;base64,AAAA",
    }


@pytest.fixture
def sample_gateway_config() -> GatewayConfig:
    """Create a sample gateway configuration."""
    return GatewayConfig(
        listen_port=25565,
        target={"host": "localhost", "port": 25566},
        commands={"start": "echo start", "shutdown": "echo stop"},
    )


@pytest.fixture
def minimal_config_yaml(tmp_path):
    """Create a minimal YAML config file."""
    config_file = tmp_path / "gateway.yaml"
    config_file.write_text(
        """
target: "localhost:25566"
"""
    )
    return config_file


@pytest.fixture
def full_config_yaml(tmp_path):
    """Create a comprehensive YAML config file."""
    config_file = tmp_path / "gateway.yaml"
    config_file.write_text(
        """
listen_host: "127.0.0.1"
listen_port: 25570
log_level: DEBUG
health_port: 8080
idle_timeout: 600

target:
  host: "${MC_TARGET_HOST}"
  port: 25566

commands:
  start: "docker start minecraft"
  shutdown: "docker stop minecraft"
  cwd: "~/servers"
"""
    )
    return config_file
