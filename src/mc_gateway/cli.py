"""
Command-line interface for MC Gateway.

Usage:
    mc-gateway --config gateway.yaml --port 25565
    mc-gateway --help
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from mc_gateway.commands import CommandError, CommandRunner
from mc_gateway.config import GatewayConfig
from mc_gateway.gateway import Gateway
from mc_gateway.version import __version__

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "MC_GATEWAY_LOG_LEVEL"


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    level = os.environ.get(LOG_LEVEL_ENV, level)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler()],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="mc-gateway",
        description="Idle-aware gateway that starts and stops a Minecraft server on demand",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with config file
  mc-gateway --config gateway.yaml

  # Override the target
  mc-gateway --config gateway.yaml --target-host 10.0.0.5 --target-port 25565

  # Enable debug logging
  mc-gateway --config gateway.yaml --log-level DEBUG

Configuration file format (YAML):
  listen_port: 25565
  target:
    host: localhost
    port: 25566
  commands:
    start: "systemctl start minecraft"
    shutdown: "systemctl stop minecraft"
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Path to YAML configuration file",
    )

    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: 25565)",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: 0.0.0.0)",
    )

    parser.add_argument(
        "--target-host",
        type=str,
        default=None,
        help="Backend host",
    )

    parser.add_argument(
        "--target-port",
        type=int,
        default=None,
        help="Backend port",
    )

    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Serve /health on this port",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def apply_overrides(config: GatewayConfig, args: argparse.Namespace) -> GatewayConfig:
    """Apply command-line overrides on top of *config*."""
    if args.port is not None:
        config = config.model_copy(update={"listen_port": args.port})
    if args.host is not None:
        config = config.model_copy(update={"listen_host": args.host})
    if args.health_port is not None:
        config = config.model_copy(update={"health_port": args.health_port})
    if args.log_level is not None:
        config = config.model_copy(update={"log_level": args.log_level})
    if args.target_host is not None or args.target_port is not None:
        target = config.target.model_copy(
            update={
                k: v
                for k, v in (("host", args.target_host), ("port", args.target_port))
                if v is not None
            }
        )
        config = config.model_copy(update={"target": target})
    return config


async def serve(config: GatewayConfig) -> int:
    """Resolve the target, wire the command layer and run the gateway."""
    runner = CommandRunner(config.commands)
    try:
        target = await runner.resolve_target(
            config.require_target() if config.target.host and config.target.port else None
        )
    except (CommandError, ValueError) as e:
        logger.error(f"Could not resolve target: {e}")
        return 1

    if target is None:
        logger.error(f"No target server specified: {config.target.host}:{config.target.port}")
        return 1

    gateway = Gateway.from_config(config, target)
    runner.attach(gateway.state_machine)
    try:
        await gateway.run()
    except OSError as e:
        logger.error(f"Could not start gateway: {e}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        if args.config:
            config = GatewayConfig.from_yaml(args.config)
        else:
            config = GatewayConfig()
        config = apply_overrides(config, args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error: Invalid configuration:\n{e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level)

    if not config.commands.start or not config.commands.shutdown:
        print("Warning: start/shutdown commands not configured", file=sys.stderr)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(serve(config))

    def signal_handler(_sig: int, _frame: object) -> None:
        print("\nShutting down...")
        loop.call_soon_threadsafe(main_task.cancel)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return loop.run_until_complete(main_task)
    except (KeyboardInterrupt, asyncio.CancelledError):
        return 0
    finally:
        loop.close()


if __name__ == "__main__":
    sys.exit(main())
