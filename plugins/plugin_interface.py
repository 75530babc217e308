# plugins/plugin_interface.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING
import logging # Use standard logging

if TYPE_CHECKING:
    from core.config_loader import DeviceConfig, GlobalConfig


# --- Telemetry Record Keys ---
class TelemetryKeys:
    """
    Keys of the telemetry record published on `<prefix>/<device>/state`.

    Decoded QPIGS / QMOD fields are merged into the same flat record; their
    keys are defined next to the field tables in the protocol constants module.
    """
    TIMESTAMP = "timestamp"
    INVERTER = "inverter"
    PORT = "port"
    OK = "ok"
    RAW = "raw"

    # === QMOD ===
    MODE_CODE = "mode_code"
    MODE = "mode"

    # === LAST ERROR RECORD ===
    ERROR = "error"


class DevicePlugin(ABC):
    """
    Abstract Base Class for device plugins.

    A plugin owns the link to exactly one device and knows how to talk to it.
    The poll loop drives it through `connect`, `read_dynamic_data` and
    `disconnect` and never touches the link directly.
    """
    def __init__(self, device: 'DeviceConfig', global_config: 'GlobalConfig', main_logger: Optional[logging.Logger] = None):
        """
        'device' is the immutable configuration of the device this plugin serves.
        'global_config' carries the shared timeouts and intervals.
        """
        self.device = device
        self.global_config = global_config
        self.logger = main_logger or logging.getLogger(__name__)
        self._is_connected_flag: bool = False # Common flag, managed by plugin's connect/disconnect
        self.last_error_message: Optional[str] = None

    @property
    def instance_name(self) -> str:
        return self.device.name

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the unique type name of this plugin (e.g., 'voltronic_rs232')."""
        pass

    @property
    @abstractmethod
    def pretty_name(self) -> str:
        """Return a human-friendly name for the plugin type."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the device. Returns True if connected."""
        return self._is_connected_flag

    @abstractmethod
    def connect(self) -> bool:
        """
        Establish connection to the device.
        MUST set self._is_connected_flag = True on success.
        Returns True on success; on failure returns False and sets last_error_message.
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """
        Disconnect from the device. Safe to call when not connected.
        MUST set self._is_connected_flag = False.
        """
        pass

    @abstractmethod
    def read_dynamic_data(self) -> Dict[str, Any]:
        """
        Run one poll cycle against the device and return its telemetry record.

        Partial failures (a command timing out) are reported inside the record.
        Failures that leave the link unusable are raised.
        """
        pass
