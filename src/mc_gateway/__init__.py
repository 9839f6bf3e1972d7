"""
MC Gateway - Idle-aware gateway for on-demand Minecraft servers
===============================================================

Sits on the public port in front of a Minecraft server that is expensive to
keep running. While the backend is down it answers server list pings itself,
asks for the backend to be started when a player tries to join, and asks for
it to be stopped once nobody has been online for a while. When the backend is
up, client connections are spliced straight through to it.

Features:
    - Liveness polling of the backend with bounded probe latency
    - Synthetic status responses while the backend is starting/stopping/down
    - Start on login attempt, stop on idle timeout
    - Raw TCP splicing once the backend is live
    - Shell command hooks for start/shutdown and target discovery
    - Health aggregation: single /health endpoint

Example:
    >>> from mc_gateway import Gateway, GatewayConfig
    >>> config = GatewayConfig.from_yaml("gateway.yaml")
    >>> gateway = Gateway.from_config(config)
    >>> await gateway.run()

Or via CLI:
    $ mc-gateway --config gateway.yaml --port 25565
"""

from mc_gateway.config import GatewayConfig
from mc_gateway.gateway import Gateway
from mc_gateway.liveness import LivenessMonitor, LivenessSnapshot, Target
from mc_gateway.state import GatewayState, GatewayStateMachine, LifecycleEvent
from mc_gateway.version import __version__

__all__ = [
    "Gateway",
    "GatewayConfig",
    "GatewayState",
    "GatewayStateMachine",
    "LifecycleEvent",
    "LivenessMonitor",
    "LivenessSnapshot",
    "Target",
    "__version__",
]
