"""
Main entry point for the Smart Home Raspberry Pi agent.

This module is responsible for:
- Reading the device connection string (environment, then command line).
- Loading the YAML configuration.
- Building the DeviceAgent (outputs, sensor, handlers) and connecting it.
- Running until the operator presses ENTER or sends SIGINT/SIGTERM.
- Releasing every resource before exiting.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import threading

from typing import List, Optional

from gpiozero.exc import GPIOZeroError

from pi_smart_home.config_loader import DEFAULT_CONFIG_PATH, load_config
from pi_smart_home.errors import SmartHomeError
from pi_smart_home.server.agent import DeviceAgent

CONNECTION_STRING_ENV = "SMART_HOME_DEVICE_CONN_STRING"


class ConsoleFormatter(logging.Formatter):
    """Colours whole lines: green for INFO, red for ERROR and above."""
    COLORS = {
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{message}{self.RESET}" if color else message


def setup_logging(level: int = logging.INFO):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    fmt = '%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    handler = logging.StreamHandler()
    if handler.stream.isatty():
        handler.setFormatter(ConsoleFormatter(fmt))
    else:
        handler.setFormatter(logging.Formatter(fmt))
    logging.basicConfig(level=level, handlers=[handler])

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Smart Home Raspberry Pi agent")
    parser.add_argument(
        "connection_string",
        nargs="?",
        help=f"Broker connection string, used when {CONNECTION_STRING_ENV} is not set",
    )
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def resolve_connection_string(args: argparse.Namespace) -> Optional[str]:
    # The environment wins; the argument is only a fallback.
    value = os.environ.get(CONNECTION_STRING_ENV)
    if not value:
        value = args.connection_string
    return value or None


async def wait_for_operator(loop: asyncio.AbstractEventLoop):
    """Completes when the operator presses ENTER or a termination signal arrives."""
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform / outside the main thread
            pass

    # stdin.readline blocks, so it runs in a daemon thread that must not keep the process alive
    def read_operator_input():
        sys.stdin.readline()
        try:
            loop.call_soon_threadsafe(stop.set)
        except RuntimeError:
            # Loop already closed
            pass

    threading.Thread(target=read_operator_input, name="OperatorInput", daemon=True).start()
    stop_task = asyncio.ensure_future(stop.wait())
    try:
        await stop_task
    finally:
        stop_task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


async def main_application_runner(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info("Starting Smart Home agent...")

    connection_string = resolve_connection_string(args)
    if not connection_string:
        logger.error(f"No connection string. Set {CONNECTION_STRING_ENV} or pass it as an argument.")
        return 1

    try:
        config = load_config(args.config)
        agent = DeviceAgent.from_connection_string(connection_string, config)
    except (SmartHomeError, GPIOZeroError, OSError) as e:
        logger.error(f"Failed to create the device agent: {e}")
        return 1

    try:
        await agent.start()
    except SmartHomeError as e:
        logger.error(f"Failed to connect: {e}")
        await agent.close()
        return 1

    print("Press ENTER to exit...")
    loop = asyncio.get_running_loop()
    operator_task = asyncio.ensure_future(wait_for_operator(loop))
    transport_task = agent.transport.task
    try:
        await asyncio.wait({operator_task, transport_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        operator_task.cancel()

    exit_code = 0
    if transport_task.done() and not transport_task.cancelled() and transport_task.exception() is not None:
        logger.error("The agent stopped because of an unhandled fault.", exc_info=transport_task.exception())
        exit_code = 1

    await agent.close()
    print("Done.")
    return exit_code


def run():
    try:
        sys.exit(asyncio.run(main_application_runner()))
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        sys.exit(0)


if __name__ == "__main__":
    run()
