"""
Main entry point for the Voltronic MQTT Bridge.

This script orchestrates the application lifecycle:
- Loads and validates the JSON configuration (fatal on error).
- Sets up logging.
- Starts the MQTT service, which announces the bridge's availability.
- Starts one independent poll thread per enabled inverter.
- Periodically restarts poll threads that died unexpectedly.
- Handles graceful shutdown on SIGINT/SIGTERM signals.
"""

import argparse
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import signal
from typing import Callable, List, Optional

from core.app_state import AppState
from core.config_loader import GlobalConfig, load_configuration
from core.constants import (
    APP_NAME,
    CONFIG_PATH_ENV_VAR,
    CORE_LOGGER_NAME,
    DEFAULT_CONFIG_PATH,
    HEALTH_CHECK_INTERVAL,
)
from core.exceptions import ConfigurationError
from core.supervisor import DeviceSupervisor
from services.mqtt_service import MqttService

# Application version
__version__ = "1.0.0"


def setup_logging(config: GlobalConfig):
    """
    Sets up logging to console and, if configured, a rotating file.

    Args:
        config: The loaded global configuration.
    """
    effective_log_level = getattr(logging, config.log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective_log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter('%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.log_file:
        file_handler = RotatingFileHandler(
            config.log_file, maxBytes=5*1024*1024, backupCount=3, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logging.info(f"Logging to file: {config.log_file}")

    logging.info(f"Logging level set to {config.log_level}.")


def graceful_exit(app_state: AppState) -> Callable[[int, object], None]:
    """
    Creates a signal handler that triggers a coordinated shutdown.

    Args:
        app_state: The global application state.

    Returns:
        A signal handler function.
    """
    def handler(signum, frame):
        if not app_state.running:
            return
        logger = logging.getLogger(CORE_LOGGER_NAME)
        logger.warning(f"Shutdown signal ({signal.Signals(signum).name}) received. Cleaning up...")
        app_state.running = False
        app_state.main_threads_stop_event.set()
    return handler


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_NAME}: polls Voltronic inverters and publishes to MQTT.")
    parser.add_argument(
        "--config",
        default=os.environ.get(CONFIG_PATH_ENV_VAR, DEFAULT_CONFIG_PATH),
        help=f"Path to the JSON options file (default: ${CONFIG_PATH_ENV_VAR} or {DEFAULT_CONFIG_PATH})",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Runs the bridge until a shutdown signal arrives.

    Returns:
        0 on a clean stop, 1 if startup failed.
    """
    args = parse_args(argv)
    app_state = AppState(version=__version__)

    # --- 1. Configuration ---
    try:
        load_configuration(args.config, app_state)
    except ConfigurationError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    setup_logging(app_state.global_config)
    logger = logging.getLogger(CORE_LOGGER_NAME)
    logger.info(f"--- Starting {APP_NAME} v{__version__} ---")

    # --- 2. Services and poll threads ---
    mqtt_service = MqttService(app_state.global_config)
    supervisor = DeviceSupervisor(app_state, mqtt_service)

    signal.signal(signal.SIGINT, graceful_exit(app_state))  # Handle Ctrl-C
    signal.signal(signal.SIGTERM, graceful_exit(app_state)) # Handle docker stop

    try:
        mqtt_service.start()
        supervisor.start()
        logger.info("All poll threads started. Main loop is running.")

        # --- 3. Stay resident, restarting any poll thread that died ---
        while not app_state.main_threads_stop_event.wait(timeout=HEALTH_CHECK_INTERVAL):
            supervisor.restart_dead_threads()
            if not mqtt_service.is_connected:
                logger.warning(f"MQTT broker not connected (state: {mqtt_service.last_state or 'Connecting'}).")
    finally:
        logger.warning("=== SHUTDOWN IN PROGRESS ===")
        app_state.running = False
        supervisor.stop()
        mqtt_service.stop()
        logger.info(f"--- {APP_NAME} v{__version__} Finished ---")
    return 0


if __name__ == "__main__":
    sys.exit(main())
