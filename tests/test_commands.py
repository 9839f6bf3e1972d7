"""Tests for the command layer."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from mc_gateway.commands import CommandError, CommandRunner
from mc_gateway.config import CommandsConfig
from mc_gateway.liveness import Target
from mc_gateway.state import GatewayState, GatewayStateMachine, LifecycleEvent


class TestCommandRunnerRun:
    """Tests for executing commands."""

    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        """Test stdout is returned stripped."""
        runner = CommandRunner(CommandsConfig(get_host="echo '  mc.internal  '"))
        assert await runner.run("get_host") == "mc.internal"

    @pytest.mark.asyncio
    async def test_unknown_command(self):
        """Test unconfigured commands raise."""
        runner = CommandRunner(CommandsConfig())
        with pytest.raises(CommandError, match="Unknown command start"):
            await runner.run("start")

    @pytest.mark.asyncio
    async def test_failure_raises_with_stderr(self):
        """Test a non-zero exit raises with stderr attached."""
        runner = CommandRunner(CommandsConfig(start="echo nope >&2; exit 3"))
        with pytest.raises(CommandError) as exc_info:
            await runner.run("start")
        assert "exit 3" in str(exc_info.value)
        assert "nope" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path):
        """Test the configured working directory is used."""
        runner = CommandRunner(CommandsConfig(start="pwd", cwd=str(tmp_path)))
        assert await runner.run("start") == str(tmp_path.resolve())


class TestCommandRunnerEvents:
    """Tests for lifecycle event handling."""

    @pytest.mark.asyncio
    async def test_attach_maps_events(self, snapshots):
        """Test starting/stopping run the start/shutdown commands."""
        runner = CommandRunner(CommandsConfig(start="true", shutdown="true"))
        machine = GatewayStateMachine(snapshots)
        runner.attach(machine)

        with patch.object(runner, "run", AsyncMock(return_value="")) as mock_run:
            machine.set_state(GatewayState.STARTING)
            machine.set_state(GatewayState.STOPPING)
            await runner.wait_idle()

        assert [c.args[0] for c in mock_run.await_args_list] == ["start", "shutdown"]

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        """Test a failing command does not propagate."""
        runner = CommandRunner(CommandsConfig(shutdown="exit 1"))
        with caplog.at_level("ERROR"):
            runner.on_event(LifecycleEvent.STOP)
            await runner.wait_idle()
        assert "Command shutdown failed" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_command_is_logged(self, caplog):
        """Test an unconfigured command is reported, not raised."""
        runner = CommandRunner(CommandsConfig())
        with caplog.at_level("ERROR"):
            runner.on_event(LifecycleEvent.START)
            await runner.wait_idle()
        assert "Unknown command start" in caplog.text


class TestResolveTarget:
    """Tests for target discovery."""

    @pytest.mark.asyncio
    async def test_no_discovery_keeps_target(self):
        """Test the configured target is kept without discovery commands."""
        runner = CommandRunner(CommandsConfig())
        target = Target("localhost", 25566)
        assert await runner.resolve_target(target) == target

    @pytest.mark.asyncio
    async def test_discovery_overrides(self):
        """Test discovery commands override host and port."""
        runner = CommandRunner(CommandsConfig(get_host="echo 10.1.2.3", get_port="echo 25570"))
        result = await runner.resolve_target(Target("localhost", 25566))
        assert result == Target("10.1.2.3", 25570)

    @pytest.mark.asyncio
    async def test_partial_discovery(self):
        """Test discovering only the host keeps the configured port."""
        runner = CommandRunner(CommandsConfig(get_host="echo mc.internal"))
        result = await runner.resolve_target(Target("localhost", 25566))
        assert result == Target("mc.internal", 25566)

    @pytest.mark.asyncio
    async def test_nothing_configured(self):
        """Test None when neither config nor discovery yields a target."""
        runner = CommandRunner(CommandsConfig())
        assert await runner.resolve_target(None) is None

    @pytest.mark.asyncio
    async def test_bad_port_output(self):
        """Test non-numeric port output is rejected."""
        runner = CommandRunner(CommandsConfig(get_port="echo not-a-port"))
        with pytest.raises(ValueError):
            await runner.resolve_target(Target("localhost", 25566))
