# core/config_loader.py
import json
import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type

from core.app_state import AppState
from core.constants import (
    DEFAULT_BAUD_RATE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_RECONNECT_PERIOD,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECONNECT_BACKOFF,
    DEFAULT_RESPONSE_TIMEOUT,
    DEFAULT_TOPIC_PREFIX,
    LOG_LEVELS,
    MAX_DEVICES,
)
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceConfig:
    """One configured inverter. Owned by exactly one poll thread."""
    name: str
    port: str
    baudrate: int = DEFAULT_BAUD_RATE
    enabled: bool = False


@dataclass(frozen=True)
class GlobalConfig:
    """Settings shared read-only by every poll thread and the MQTT service."""
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_topic_prefix: str = DEFAULT_TOPIC_PREFIX
    mqtt_client_id: str = DEFAULT_MQTT_CLIENT_ID
    mqtt_keepalive_s: int = DEFAULT_MQTT_KEEPALIVE
    mqtt_reconnect_period_s: float = DEFAULT_MQTT_RECONNECT_PERIOD
    poll_interval_s: float = DEFAULT_POLL_INTERVAL
    connect_timeout_s: float = DEFAULT_RESPONSE_TIMEOUT
    backoff_s: float = DEFAULT_RECONNECT_BACKOFF
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = None


def normalize_topic_prefix(prefix: Optional[str]) -> str:
    """Strips trailing slashes; an empty prefix falls back to the default."""
    return (prefix or DEFAULT_TOPIC_PREFIX).rstrip("/") or DEFAULT_TOPIC_PREFIX


def read_config_document(config_path: str) -> Dict[str, Any]:
    """
    Reads and parses the JSON configuration document.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid JSON
                            or not a JSON object.
    """
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Config file not found: {config_path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read config file {config_path}: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object.")
    logger.info(f"Successfully read configuration from {config_path}")
    return document


def parse_configuration(document: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Tuple[GlobalConfig, List[DeviceConfig]]:
    """
    Builds the typed configuration from a parsed options document.

    Global settings may be overridden by environment variables named after
    the key in upper case (e.g. `MQTT_HOST`). The precedence is:
    1. Environment variable
    2. Value from the options document
    3. Default value specified in the code

    Only the first MAX_DEVICES inverter entries are read; extras are ignored.

    Args:
        document: The parsed JSON document.
        environ: Environment mapping, defaults to `os.environ`.

    Returns:
        A tuple of (GlobalConfig, list of DeviceConfig).

    Raises:
        ConfigurationError: If a value cannot be converted to its type or the
                            inverter list is malformed.
    """
    environ = os.environ if environ is None else environ
    errors: List[str] = []

    def get_config_value(var_name: str, return_type: Type = str, default: Any = None) -> Any:
        """
        Retrieves and converts a global setting with environment variable override support.

        Values that cannot be converted are recorded as errors instead of
        silently falling back to the default.
        """
        env_value = environ.get(var_name.upper())
        value = env_value if env_value is not None else document.get(var_name)
        if value is None or value == "":
            return default

        if isinstance(value, str):
            value = value.strip().strip("'\"")

        try:
            if return_type == bool:
                if isinstance(value, bool):
                    return value
                return str(value).lower() in ['true', '1', 'yes', 'on']
            if return_type == int and isinstance(value, float) and not value.is_integer():
                raise ValueError("not an integer")
            return return_type(value)
        except (ValueError, TypeError):
            errors.append(f"'{var_name}' must be of type {return_type.__name__} (got {value!r}).")
            return default

    global_config = GlobalConfig(
        mqtt_host=get_config_value("mqtt_host", str, DEFAULT_MQTT_HOST),
        mqtt_port=get_config_value("mqtt_port", int, DEFAULT_MQTT_PORT),
        mqtt_username=get_config_value("mqtt_username", str, None),
        mqtt_password=get_config_value("mqtt_password", str, None),
        mqtt_topic_prefix=normalize_topic_prefix(get_config_value("mqtt_topic_prefix", str, DEFAULT_TOPIC_PREFIX)),
        mqtt_client_id=get_config_value("mqtt_client_id", str, DEFAULT_MQTT_CLIENT_ID),
        mqtt_keepalive_s=get_config_value("mqtt_keepalive_s", int, DEFAULT_MQTT_KEEPALIVE),
        mqtt_reconnect_period_s=get_config_value("mqtt_reconnect_period_s", float, DEFAULT_MQTT_RECONNECT_PERIOD),
        poll_interval_s=get_config_value("poll_interval_s", float, DEFAULT_POLL_INTERVAL),
        connect_timeout_s=get_config_value("connect_timeout_s", float, DEFAULT_RESPONSE_TIMEOUT),
        backoff_s=get_config_value("backoff_s", float, DEFAULT_RECONNECT_BACKOFF),
        log_level=get_config_value("log_level", str, DEFAULT_LOG_LEVEL).upper(),
        log_file=get_config_value("log_file", str, None),
    )

    devices: List[DeviceConfig] = []
    raw_inverters = document.get("inverters", [])
    if raw_inverters is None:
        raw_inverters = []
    if not isinstance(raw_inverters, list):
        errors.append("'inverters' must be a list.")
        raw_inverters = []
    if len(raw_inverters) > MAX_DEVICES:
        logger.warning(f"{len(raw_inverters)} inverters configured; only the first {MAX_DEVICES} are used.")

    for index, entry in enumerate(raw_inverters[:MAX_DEVICES]):
        if not isinstance(entry, dict):
            errors.append(f"inverters[{index}] must be an object.")
            continue
        baudrate = entry.get("baudrate")
        try:
            baudrate = DEFAULT_BAUD_RATE if baudrate in (None, "") else int(baudrate)
        except (ValueError, TypeError):
            errors.append(f"inverters[{index}].baudrate must be an integer (got {baudrate!r}).")
            continue
        enabled = entry.get("enabled", False)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() in ['true', '1', 'yes', 'on']
        devices.append(DeviceConfig(
            name=str(entry.get("name") or "").strip() or f"inv{index + 1}",
            port=str(entry.get("port") or "").strip(),
            baudrate=baudrate,
            enabled=bool(enabled),
        ))

    if errors:
        raise ConfigurationError("Configuration Errors: " + "; ".join(errors))
    return global_config, devices


def validate_config(global_config: GlobalConfig, devices: List[DeviceConfig]):
    """
    Validates value ranges after the configuration has been parsed.

    All problems are collected and reported together.

    Raises:
        ConfigurationError: If any setting is out of range.
    """
    errors = []
    for field_name in ("poll_interval_s", "connect_timeout_s", "backoff_s", "mqtt_reconnect_period_s"):
        if not math.isfinite(getattr(global_config, field_name)):
            errors.append(f"{field_name} must be a finite number.")
    if global_config.poll_interval_s < 1:
        errors.append("poll_interval_s must be >= 1.")
    if global_config.connect_timeout_s < 1:
        errors.append("connect_timeout_s must be >= 1.")
    if global_config.backoff_s < 0:
        errors.append("backoff_s must be >= 0.")
    if not 1 <= global_config.mqtt_port <= 65535:
        errors.append("mqtt_port must be between 1 and 65535.")
    if global_config.mqtt_keepalive_s < 1:
        errors.append("mqtt_keepalive_s must be >= 1.")
    if global_config.mqtt_reconnect_period_s <= 0:
        errors.append("mqtt_reconnect_period_s must be > 0.")
    if global_config.log_level not in LOG_LEVELS:
        errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}.")

    seen = set()
    for device in devices:
        if not device.name:
            errors.append("Inverter names must not be empty.")
        if device.baudrate <= 0:
            errors.append(f"Inverter '{device.name}': baudrate must be > 0.")
        if "/" in device.name or "+" in device.name or "#" in device.name:
            errors.append(f"Inverter '{device.name}': name must not contain '/', '+' or '#'.")
        if device.name in seen:
            errors.append(f"Inverter name '{device.name}' is used more than once.")
        seen.add(device.name)

    if errors:
        raise ConfigurationError("Configuration Errors: " + "; ".join(errors))
    logger.info("Configuration validated successfully.")


def load_configuration(config_path: str, app_state: AppState):
    """
    Loads, parses and validates the configuration, populating the AppState object.

    Args:
        config_path (str): Path to the JSON options file.
        app_state (AppState): The application state object to populate.

    Raises:
        ConfigurationError: On any missing, malformed or out-of-range setting.
    """
    document = read_config_document(config_path)
    global_config, devices = parse_configuration(document)
    validate_config(global_config, devices)
    app_state.global_config = global_config
    app_state.devices = devices
    logger.info(f"Configuration loading complete: {len(devices)} inverter(s) configured.")
