"""
Backend liveness monitoring.

Polls the backend with a status query on a fixed cadence and keeps the most
recent outcome as an immutable snapshot. Probe errors never escape this
module; they only turn the snapshot inactive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from mcstatus import JavaServer

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 5.0
CHECK_TIMEOUT = 5.0

StatusPayload = dict[str, Any]
Probe = Callable[["Target", float], Awaitable[StatusPayload]]


@dataclass(frozen=True)
class Target:
    """Backend network address."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class LivenessSnapshot:
    """Outcome of the most recent probe.

    ``data`` holds the last *successful* status payload, so it survives
    failed probes and can still be served while the backend is unreachable.
    """

    active: bool
    data: StatusPayload = field(default_factory=dict)
    observed_at: float = 0.0

    @property
    def players_online(self) -> int:
        """Online player count from the cached payload (0 if absent)."""
        return online_players(self.data)


def online_players(payload: StatusPayload) -> int:
    """Read ``players.online`` from a status payload."""
    players = payload.get("players") if isinstance(payload, dict) else None
    if not isinstance(players, dict):
        return 0
    online = players.get("online")
    return online if isinstance(online, int) else 0


async def probe_status(target: Target, timeout: float) -> StatusPayload:
    """Query the target's status and return the raw status JSON."""
    server = JavaServer(target.host, target.port, timeout=timeout)
    status = await server.async_status()
    return dict(status.raw)


class LivenessMonitor:
    """Periodically probes a single backend target.

    Example:
        >>> monitor = LivenessMonitor()
        >>> monitor.start(Target("localhost", 25565))
        >>> monitor.current_snapshot().active
        False
    """

    def __init__(
        self,
        probe: Probe = probe_status,
        *,
        interval: float = CHECK_INTERVAL,
        timeout: float = CHECK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self.interval = interval
        self.timeout = timeout
        self._clock = clock
        self._snapshot = LivenessSnapshot(active=False, data={}, observed_at=clock())
        self._target: Target | None = None
        self._task: asyncio.Task[None] | None = None
        # Probes abandoned after a timeout, kept referenced until they settle
        self._abandoned: set[asyncio.Task[StatusPayload]] = set()

    @property
    def target(self) -> Target | None:
        """Target being probed, once started."""
        return self._target

    def current_snapshot(self) -> LivenessSnapshot:
        """Return the latest snapshot."""
        return self._snapshot

    def start(self, target: Target) -> None:
        """Begin the probe cycle against *target*."""
        if self._task is not None:
            raise RuntimeError("LivenessMonitor already started")
        self._target = target
        self._task = asyncio.create_task(self._run())
        logger.info(f"Monitoring backend {target}")

    def close(self) -> None:
        """Cancel future probes. The last snapshot stays readable."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def check(self) -> LivenessSnapshot:
        """Run a single probe cycle and publish its outcome."""
        assert self._target is not None
        probe = asyncio.ensure_future(self._probe(self._target, self.timeout))
        try:
            done, _ = await asyncio.wait({probe}, timeout=self.timeout)
        except asyncio.CancelledError:
            # close() does not cancel an in-flight probe
            self._abandon(probe)
            raise

        if not done:
            logger.error(f"Target ping timed out after {self.timeout:.0f}s")
            self._abandon(probe)
            active, data = False, self._snapshot.data
        elif probe.cancelled():
            logger.debug("Target is not alive: ping was cancelled")
            active, data = False, self._snapshot.data
        elif probe.exception() is not None:
            logger.debug(f"Target is not alive: {probe.exception()!r}")
            active, data = False, self._snapshot.data
        else:
            logger.debug("Target is alive")
            active, data = True, probe.result()

        self._snapshot = LivenessSnapshot(active=active, data=data, observed_at=self._clock())
        return self._snapshot

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Liveness check failed")
            await asyncio.sleep(self.interval)

    def _abandon(self, probe: asyncio.Task[StatusPayload]) -> None:
        self._abandoned.add(probe)
        probe.add_done_callback(self._discard_abandoned)

    def _discard_abandoned(self, probe: asyncio.Task[StatusPayload]) -> None:
        self._abandoned.discard(probe)
        if not probe.cancelled() and probe.exception() is not None:
            logger.debug(f"Abandoned probe finished with {probe.exception()!r}")
