#!/usr/bin/env python3
"""
Tellus Monitor - console front end

Connects to the broker described in a YAML configuration file and prints a
line for every session snapshot until interrupted.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from tellus.mqtt.components import ConfigurationManager, ConfigurationError
from tellus.mqtt.runner import SessionRunner
from tellus.utils import format_snapshot, setup_logging


def resolve_config_path(config_path: str) -> str:
    """Look for a relative config path next to this script, then in the working directory."""
    if os.path.isabs(config_path):
        return config_path

    script_dir = os.path.dirname(__file__)
    possible_paths = [
        os.path.join(script_dir, 'config', config_path),
        config_path
    ]
    for path in possible_paths:
        if os.path.exists(path):
            return path

    raise ConfigurationError(
        f"Configuration file '{config_path}' not found in any of these locations: {possible_paths}"
    )


async def monitor(config_manager: ConfigurationManager):
    """Run a session until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    async with SessionRunner.from_config(config_manager) as runner:
        runner.publisher.subscribe(lambda snapshot: print(format_snapshot(snapshot), flush=True))
        runner.publisher.connect(config_manager.get_connection_config(), config_manager.get_topic_set())
        await stop.wait()
        logging.info("Shutting down monitor")


def main():
    """
    Main entry point for the Tellus monitor.

    Command line arguments:
        --config: Path to YAML configuration file (default: mqtt_conf_local.yaml)
        --log-level: Logging level (default: INFO)

    Example usage:
        tellus-monitor
        tellus-monitor --config=mqtt_conf_local.yaml --log-level=DEBUG
    """
    parser = argparse.ArgumentParser(description='Tellus spectroscopy monitor')
    parser.add_argument(
        '--config',
        type=str,
        default='mqtt_conf_local.yaml',
        help='Path to YAML configuration file (default: mqtt_conf_local.yaml)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default='INFO',
        help='Set the logging level (default: INFO)'
    )

    args = parser.parse_args()

    setup_logging(getattr(logging, args.log_level))

    try:
        config_manager = ConfigurationManager(resolve_config_path(args.config))
        logging.info("Starting Tellus monitor", extra=config_manager.get_config_summary())
        asyncio.run(monitor(config_manager))
    except ConfigurationError as e:
        logging.critical("Configuration error: %s", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Received keyboard interrupt, shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
