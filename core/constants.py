"""
Centralized constants for the Voltronic bridge.

This module defines constants used throughout the application to avoid magic
strings and provide a single source of truth for configuration defaults.
"""

# Application Details
APP_NAME = "Voltronic MQTT Bridge"
DEFAULT_CONFIG_PATH = "/data/options.json"
CONFIG_PATH_ENV_VAR = "VOLTRONIC_CONFIG"

# Logger Names
CORE_LOGGER_NAME = "VoltronicBridgeCore"

# Thread Names
DEVICE_POLL_THREAD_NAME_PREFIX = "DevicePoll"

# MQTT Defaults
DEFAULT_MQTT_HOST = "core-mosquitto"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_CLIENT_ID = "voltronic-bridge"
DEFAULT_MQTT_KEEPALIVE = 60
DEFAULT_MQTT_RECONNECT_PERIOD = 2  # seconds
DEFAULT_TOPIC_PREFIX = "voltronic"

# Default Timeouts and Intervals (seconds)
DEFAULT_POLL_INTERVAL = 5
DEFAULT_RESPONSE_TIMEOUT = 3
DEFAULT_RECONNECT_BACKOFF = 3
HEALTH_CHECK_INTERVAL = 30
THREAD_JOIN_TIMEOUT = 2.0

# Device Defaults
DEFAULT_BAUD_RATE = 2400
MAX_DEVICES = 3

# Logging
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
