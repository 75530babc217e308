# plugins/inverter/voltronic_rs232_plugin.py
"""
Voltronic RS232 Inverter Plugin

This plugin communicates with Voltronic Power (Axpert, MPP Solar, EASUN and
other rebranded) hybrid inverters using their ASCII PI protocol over a serial
link.

Every poll cycle issues two queries in a fixed order on the same link:
- QPIGS: general status (grid, AC output, battery, PV input)
- QMOD:  device mode

Both replies are decoded into one flat telemetry record. A command that times
out only leaves its own fields out of the record; a write failure means the
link is gone and is raised so the poll loop can reconnect.

Example Configuration (options.json):
    "inverters": [
        {"name": "inv1", "port": "/dev/ttyUSB0", "baudrate": 2400, "enabled": true}
    ]
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

import serial

if TYPE_CHECKING:
    from core.config_loader import DeviceConfig, GlobalConfig

from core.exceptions import WriteError
from plugins.plugin_interface import DevicePlugin, TelemetryKeys
from utils.helpers import to_float, to_int, utc_timestamp
from .voltronic_protocol import ResponseResult, query
from .voltronic_rs232_plugin_constants import (
    MODE_PLACEHOLDER,
    POLL_COMMANDS,
    PV_POWER_ESTIMATE_KEY,
    QMOD_COMMAND,
    QMOD_MODE_CODES,
    QPIGS_COMMAND,
    QPIGS_FIELDS,
    RAW_FIELDS_KEY,
    SERIAL_READ_SLICE_S,
)


def decode_qpigs(tokens: Sequence[str]) -> Dict[str, Any]:
    """
    Decode the whitespace separated fields of a QPIGS reply.

    Fields are mapped by position. A field is only present when its token
    exists and parses to a finite number; nothing is filled in for missing or
    malformed tokens. When both PV voltage and current are known an estimated
    PV power is derived from them.

    Args:
        tokens: The reply split on whitespace.

    Returns:
        Dictionary of decoded fields plus the original token list under
        "raw_fields". Empty for an empty token list.
    """
    if not tokens:
        return {}

    data: Dict[str, Any] = {RAW_FIELDS_KEY: list(tokens)}
    for index, (key, field_type) in enumerate(QPIGS_FIELDS):
        if index >= len(tokens):
            break
        value = to_float(tokens[index]) if field_type is float else to_int(tokens[index])
        if value is not None:
            data[key] = value

    pv_v = data.get("pv_input_v")
    pv_a = data.get("pv_input_a")
    if pv_v is not None and pv_a is not None:
        data[PV_POWER_ESTIMATE_KEY] = round(pv_v * pv_a, 1)
    return data


def decode_qmod(text: Optional[str]) -> Dict[str, str]:
    """
    Decode a QMOD reply into its mode code and label.

    Unknown codes are passed through as their own label. An empty reply uses
    the "?" placeholder.
    """
    code = (text or "").strip()[:1] or MODE_PLACEHOLDER
    return {
        TelemetryKeys.MODE_CODE: code,
        TelemetryKeys.MODE: QMOD_MODE_CODES.get(code, code),
    }


def build_telemetry(device: 'DeviceConfig', qpigs: ResponseResult, qmod: ResponseResult,
                    timestamp: Optional[str] = None) -> Dict[str, Any]:
    """
    Assemble the telemetry record of one poll cycle.

    The record always carries both raw replies (None for a failed command).
    Decoded fields come only from this cycle's successful, non-empty replies.
    """
    record: Dict[str, Any] = {
        TelemetryKeys.TIMESTAMP: timestamp or utc_timestamp(),
        TelemetryKeys.INVERTER: device.name,
        TelemetryKeys.PORT: device.port,
        TelemetryKeys.OK: bool(qpigs.ok and qmod.ok),
        TelemetryKeys.RAW: {
            QPIGS_COMMAND: qpigs.value if qpigs.ok else None,
            QMOD_COMMAND: qmod.value if qmod.ok else None,
        },
    }
    if qpigs.ok and qpigs.value:
        record.update(decode_qpigs(qpigs.value.split()))
    if qmod.ok and qmod.value:
        record.update(decode_qmod(qmod.value))
    return record


class VoltronicRs232Plugin(DevicePlugin):
    """
    Voltronic RS232 Inverter Plugin using the ASCII PI protocol.

    Owns one serial link, opened 8N1 with exclusive access. All exchanges on
    the link go through `query`, which holds a lock so that at most one
    request is in flight; replies carry no tag and are matched by order.
    """

    def __init__(self, device: 'DeviceConfig', global_config: 'GlobalConfig', main_logger: Optional[logging.Logger] = None):
        super().__init__(device, global_config, main_logger)
        self.serial_client: Optional[serial.Serial] = None
        self._link_lock = threading.Lock()
        self.response_timeout = float(global_config.connect_timeout_s)

    @property
    def name(self) -> str:
        """Return the technical name of the plugin."""
        return "voltronic_rs232"

    @property
    def pretty_name(self) -> str:
        """Return a user-friendly name for the plugin."""
        return "Voltronic Inverter"

    def connect(self) -> bool:
        """
        Open the serial link to the inverter.

        Returns:
            True if the port was opened, False otherwise (see last_error_message).
        """
        if self._is_connected_flag and self.serial_client and self.serial_client.is_open:
            return True

        self.disconnect()
        self.last_error_message = None
        try:
            self.serial_client = serial.Serial(
                port=self.device.port,
                baudrate=self.device.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=SERIAL_READ_SLICE_S,
                write_timeout=self.response_timeout,
                exclusive=True,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self.serial_client = None
            self.last_error_message = f"Failed to open serial port {self.device.port}: {e}"
            self.logger.error(f"Voltronic Plugin '{self.instance_name}': {self.last_error_message}")
            return False

        self._is_connected_flag = True
        self.logger.info(f"Voltronic Plugin '{self.instance_name}': Connected on {self.device.port} @ {self.device.baudrate} baud")
        return True

    def disconnect(self) -> None:
        """
        Close the serial link. Errors while closing are logged and ignored.
        This method is safe to call multiple times.
        """
        try:
            if self.serial_client and self.serial_client.is_open:
                self.serial_client.close()
                self.logger.debug(f"Voltronic Plugin '{self.instance_name}': Serial connection closed")
        except Exception as e:
            self.logger.warning(f"Voltronic Plugin '{self.instance_name}': Error closing serial connection: {e}")
        self.serial_client = None
        self._is_connected_flag = False

    def query(self, command: str) -> ResponseResult:
        """
        Send one command and wait for its reply under the link lock.

        Raises:
            WriteError: If the plugin is not connected.
        """
        with self._link_lock:
            if not self.serial_client:
                raise WriteError(f"Not connected to {self.device.port}")
            return query(self.serial_client, command, self.response_timeout)

    def read_dynamic_data(self) -> Dict[str, Any]:
        """
        Run one poll cycle: QPIGS then QMOD, decoded into a telemetry record.

        Raises:
            WriteError: If writing either command failed. The link is closed
                        before the error is raised.
        """
        results: List[ResponseResult] = []
        for command in POLL_COMMANDS:
            result = self.query(command)
            if isinstance(result.error, WriteError):
                self.last_error_message = str(result.error)
                self.disconnect()
                raise result.error
            if not result.ok:
                self.logger.warning(f"Voltronic Plugin '{self.instance_name}': {command} failed: {result.error}")
            results.append(result)

        qpigs, qmod = results
        return build_telemetry(self.device, qpigs, qmod)
