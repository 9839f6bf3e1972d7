"""
Gateway lifecycle state machine.

Consumes liveness snapshots, login attempts and player counts to decide
whether the backend should be running, and emits ``start``/``stop``
lifecycle events for whoever actually runs the backend.

States:
    unknown  -> initial, before the first evaluation
    active   -> backend answers probes
    inactive -> backend does not answer probes
    starting -> start requested, waiting for the backend to come up
    stopping -> stop requested, waiting for the backend to go down
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from mc_gateway.liveness import LivenessSnapshot

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5 * 60.0
START_TIMEOUT = 5 * 60.0
STOP_TIMEOUT = 5 * 60.0
TICK_INTERVAL = 1.0

LOGIN_MESSAGE = "Starting the server. Please reconnect once it's up"


class GatewayState(str, Enum):
    """Externally observable lifecycle of the backend."""

    UNKNOWN = "unknown"
    ACTIVE = "active"
    INACTIVE = "inactive"
    STARTING = "starting"
    STOPPING = "stopping"


class LifecycleEvent(str, Enum):
    """Signals emitted for the command layer."""

    START = "start"
    STOP = "stop"


@dataclass(frozen=True)
class StateRecord:
    """Current state and when it was entered."""

    state: GatewayState
    entered_at: float


@dataclass(frozen=True)
class PlayerActivity:
    """Last observed player count and when it last changed."""

    count: int
    changed_at: float


Listener = Callable[[LifecycleEvent], None]


class GatewayStateMachine:
    """Owns the gateway state; :meth:`set_state` is the only mutation path.

    Args:
        snapshot: Callable returning the current liveness snapshot
        tick_interval: Seconds between evaluations in :meth:`run`
        start_timeout: Abort a start that has not completed after this long
        stop_timeout: Re-issue a stop that has not completed after this long
        idle_timeout: Stop the backend after this long with nobody online
        clock: Monotonic time source
    """

    def __init__(
        self,
        snapshot: Callable[[], LivenessSnapshot],
        *,
        tick_interval: float = TICK_INTERVAL,
        start_timeout: float = START_TIMEOUT,
        stop_timeout: float = STOP_TIMEOUT,
        idle_timeout: float = SHUTDOWN_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._snapshot = snapshot
        self.tick_interval = tick_interval
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.idle_timeout = idle_timeout
        self._clock = clock

        now = clock()
        self._record = StateRecord(GatewayState.UNKNOWN, now)
        self._players = PlayerActivity(count=0, changed_at=now)
        self._listeners: list[Listener] = []

    @property
    def state(self) -> GatewayState:
        """Current state."""
        return self._record.state

    @property
    def record(self) -> StateRecord:
        """Current state together with its entry time."""
        return self._record

    @property
    def players(self) -> PlayerActivity:
        """Tracked player activity."""
        return self._players

    def seconds_in_state(self) -> float:
        """Seconds since the current state was entered."""
        return self._clock() - self._record.entered_at

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for lifecycle events.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_state(self, state: GatewayState, force: bool = False) -> None:
        """Transition to *state*.

        A transition into the current state is ignored unless *force* is set,
        so lifecycle events fire once per entry rather than once per tick.
        """
        if self._record.state == state and not force:
            return

        logger.debug(f"Setting state to {state.value}")
        self._record = StateRecord(state, self._clock())

        if state == GatewayState.STARTING:
            logger.info("Starting")
            self._emit(LifecycleEvent.START)
        elif state == GatewayState.STOPPING:
            logger.info("Stopping")
            self._emit(LifecycleEvent.STOP)

    def handle_login(self) -> str:
        """React to a login attempt that could not be proxied.

        Returns:
            Disconnect message for the client
        """
        if self.state != GatewayState.ACTIVE:
            self.set_state(GatewayState.STARTING)
        return LOGIN_MESSAGE

    def tick(self) -> None:
        """Run one evaluation of the transition rules."""
        now = self._clock()
        held = now - self._record.entered_at

        # Keep starting/stopping from hanging forever
        if self.state == GatewayState.STOPPING and held >= self.stop_timeout:
            logger.error("Stopping timed out. Retrying")
            self.set_state(GatewayState.STOPPING, force=True)
        elif self.state == GatewayState.STARTING and held >= self.start_timeout:
            logger.error("Starting timed out. Aborting")
            self.set_state(GatewayState.INACTIVE)

        snapshot = self._snapshot()
        if snapshot.active and self.state != GatewayState.STOPPING:
            self.set_state(GatewayState.ACTIVE)
        elif not snapshot.active and self.state != GatewayState.STARTING:
            self.set_state(GatewayState.INACTIVE)

        if self.state == GatewayState.ACTIVE:
            self._check_idle(snapshot.players_online, now)

    def _check_idle(self, online: int, now: float) -> None:
        if online != self._players.count:
            logger.debug(f"Player count changed ({self._players.count} -> {online})")
            self._players = PlayerActivity(count=online, changed_at=now)

        since = max(self._players.changed_at, self._record.entered_at)
        if self._players.count == 0 and now - since >= self.idle_timeout:
            logger.info("Stopping server due to being empty")
            self.set_state(GatewayState.STOPPING)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Lifecycle listener failed on {event.value}")

    async def run(self) -> None:
        """Evaluate every ``tick_interval`` seconds until cancelled."""
        while True:
            self.tick()
            await asyncio.sleep(self.tick_interval)
