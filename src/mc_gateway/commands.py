"""
External command execution.

Turns lifecycle events into shell commands (``start`` / ``shutdown``) and
resolves the backend address through optional discovery commands. The
gateway never waits for these commands: liveness probes are the only
feedback on whether they worked.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mc_gateway.liveness import Target
from mc_gateway.state import LifecycleEvent

if TYPE_CHECKING:
    from mc_gateway.config import CommandsConfig
    from mc_gateway.state import GatewayStateMachine

logger = logging.getLogger(__name__)

EVENT_COMMANDS = {
    LifecycleEvent.START: "start",
    LifecycleEvent.STOP: "shutdown",
}


class CommandError(Exception):
    """A configured command is missing or exited unsuccessfully."""


class CommandRunner:
    """Runs the configured shell commands."""

    def __init__(self, commands: CommandsConfig) -> None:
        self.commands = commands
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self, name: str) -> str:
        """Execute the command with the given name.

        Returns:
            The command's stdout, stripped

        Raises:
            CommandError: If the command is not configured or fails
        """
        command = self.commands.get(name)
        if not command:
            raise CommandError(f"Unknown command {name}")

        logger.info(f"Executing command {name}: {command}")
        cwd = Path(self.commands.cwd).expanduser() if self.commands.cwd else None
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            raise CommandError(
                f"Command {name} failed (exit {proc.returncode}):\n"
                f"{stderr.decode(errors='replace')}"
            )

        result = stdout.decode(errors="replace").strip()
        logger.info(f"Command {name} finished:\n{result}")
        return result

    def attach(self, state_machine: GatewayStateMachine) -> None:
        """Run start/shutdown commands on the machine's lifecycle events."""
        state_machine.subscribe(self.on_event)

    def on_event(self, event: LifecycleEvent) -> None:
        """Schedule the command bound to *event* in the background."""
        task = asyncio.create_task(self._run_logged(EVENT_COMMANDS[event]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every scheduled command to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def resolve_target(self, target: Target | None) -> Target | None:
        """Override *target* with the output of ``get_host``/``get_port``.

        Raises:
            CommandError: If a discovery command fails
            ValueError: If ``get_port`` does not print a port number
        """
        host = target.host if target else None
        port = target.port if target else None

        if self.commands.get_host:
            host = await self.run("get_host")
        if self.commands.get_port:
            port = int(await self.run("get_port"))

        if not host or not port:
            return None
        return Target(host=host, port=port)

    async def _run_logged(self, name: str) -> None:
        try:
            await self.run(name)
        except CommandError as e:
            logger.error(str(e))
        except OSError as e:
            logger.error(f"Command {name} could not be executed: {e}")
