"""
Configuration management for MC Gateway.

Supports YAML configuration files with environment variable expansion
and validation via Pydantic.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from mc_gateway.liveness import Target


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports both ${VAR} and $VAR syntax.
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    pattern = r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)"
    return re.sub(pattern, replacer, value)


class TargetConfig(BaseModel):
    """Address of the backend Minecraft server."""

    host: str | None = Field(default=None, description="Backend host")
    port: int | None = Field(default=None, ge=1, le=65535, description="Backend port")

    @field_validator("host", mode="before")
    @classmethod
    def expand_env(cls, v: str | None) -> str | None:
        """Expand environment variables in the host."""
        if v is None:
            return None
        return expand_env_vars(str(v))


class CommandsConfig(BaseModel):
    """Shell commands run by the gateway.

    ``start`` and ``shutdown`` react to lifecycle signals, ``get_host`` and
    ``get_port`` are run once at startup to discover the target address.
    """

    start: str | None = Field(default=None, description="Command that starts the backend")
    shutdown: str | None = Field(default=None, description="Command that stops the backend")
    get_host: str | None = Field(default=None, description="Command printing the backend host")
    get_port: str | None = Field(default=None, description="Command printing the backend port")
    cwd: str | None = Field(default=None, description="Working directory for commands")

    @field_validator("start", "shutdown", "get_host", "get_port", "cwd", mode="before")
    @classmethod
    def expand_env(cls, v: str | None) -> str | None:
        """Expand environment variables in string fields."""
        if v is None:
            return None
        return expand_env_vars(str(v))

    def get(self, name: str) -> str | None:
        """Return the command string configured under *name*, if any."""
        if name not in ("start", "shutdown", "get_host", "get_port"):
            return None
        value: str | None = getattr(self, name)
        return value


class GatewayConfig(BaseModel):
    """Configuration for the MC Gateway."""

    # Listener settings
    listen_host: str = Field(default="0.0.0.0", description="Host to bind to")
    listen_port: int = Field(default=25565, ge=1, le=65535, description="Port to listen on")

    # Backend
    target: TargetConfig = Field(default_factory=TargetConfig, description="Backend address")
    commands: CommandsConfig = Field(
        default_factory=CommandsConfig, description="Start/stop and discovery commands"
    )

    # Operational settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging verbosity"
    )
    health_port: int | None = Field(
        default=None, ge=1, le=65535, description="Port for the /health endpoint"
    )

    # Timing (seconds)
    probe_interval: float = Field(default=5.0, gt=0, description="Seconds between probes")
    probe_timeout: float = Field(default=5.0, gt=0, description="Probe timeout")
    tick_interval: float = Field(default=1.0, gt=0, description="State evaluation period")
    idle_timeout: float = Field(default=300.0, ge=0, description="Empty time before stopping")
    start_timeout: float = Field(default=300.0, gt=0, description="Give up starting after")
    stop_timeout: float = Field(default=300.0, gt=0, description="Retry stopping after")
    connect_timeout: float = Field(default=5.0, gt=0, description="Backend connect timeout")

    @classmethod
    def from_yaml(cls, path: str | Path) -> GatewayConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Validated GatewayConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If configuration is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open() as f:
            raw_config = yaml.safe_load(f)

        return cls.from_dict(raw_config or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayConfig:
        """Create configuration from a dictionary.

        Accepts ``target`` either as a mapping or as a ``"host:port"`` string.
        """
        settings = dict(data)

        target = settings.get("target")
        if isinstance(target, str):
            host, _, port = target.rpartition(":")
            if not host:
                host, port = port, "25565"
            settings["target"] = {"host": host, "port": port}

        return cls(**settings)

    def require_target(self) -> Target:
        """Return the configured target.

        Raises:
            ValueError: If host or port is not configured
        """
        if not self.target.host or not self.target.port:
            raise ValueError(
                f"No target server specified: {self.target.host}:{self.target.port}"
            )
        return Target(host=self.target.host, port=self.target.port)
