# plugins/inverter/voltronic_rs232_plugin_constants.py
"""
Constants and field definitions for Voltronic-style inverters using the PI RS232 protocol.

This module contains the framing constants, the positional field map of the
QPIGS general status reply and the QMOD device mode codes.

Protocol Overview:
The PI protocol is a plain ASCII request/response exchange:
    Request:  [ASCII command][CRC16/XMODEM, big-endian][CR]
    Response: ([space separated fields][CRC16][CR]

Replies carry no request identifier, so they are matched to requests purely
by arrival order. Only one exchange may be in flight per link.

Supported Commands:
- QPIGS: General status parameters (voltages, powers, battery, PV input)
- QMOD:  Device mode (single letter)
"""

from typing import Dict, List, Tuple

# Framing constants
TERMINATOR = b"\r"              # Carriage return closes both requests and replies
TERMINATOR_BYTE = 0x0D
RESPONSE_START = "("            # Replies are conventionally opened with '('

CRC16_XMODEM_POLY = 0x1021
CRC16_XMODEM_INIT = 0x0000

# Query commands, issued in this order every poll cycle
QPIGS_COMMAND = "QPIGS"
QMOD_COMMAND = "QMOD"
POLL_COMMANDS = (QPIGS_COMMAND, QMOD_COMMAND)

# Serial read granularity; bounds how long a single read() may block so the
# response timeout is honoured closely.
SERIAL_READ_SLICE_S = 0.1

# QPIGS reply fields by position: (key, type)
# Fields beyond the last index are only kept in "raw_fields".
QPIGS_FIELDS: List[Tuple[str, type]] = [
    ("grid_v", float),                # 0  Grid voltage (V)
    ("grid_hz", float),               # 1  Grid frequency (Hz)
    ("ac_out_v", float),              # 2  AC output voltage (V)
    ("ac_out_hz", float),             # 3  AC output frequency (Hz)
    ("apparent_power_va", int),       # 4  AC output apparent power (VA)
    ("active_power_w", int),          # 5  AC output active power (W)
    ("load_pct", int),                # 6  Output load percent (%)
    ("bus_v", int),                   # 7  DC bus voltage (V)
    ("battery_v", float),             # 8  Battery voltage (V)
    ("battery_charge_a", int),        # 9  Battery charging current (A)
    ("battery_capacity_pct", int),    # 10 Battery capacity (%)
    ("heatsink_c", int),              # 11 Inverter heat sink temperature (C)
    ("pv_input_a", int),              # 12 PV input current (A)
    ("pv_input_v", float),            # 13 PV input voltage (V)
]

PV_POWER_ESTIMATE_KEY = "pv_w_est"
RAW_FIELDS_KEY = "raw_fields"

# QMOD device mode codes
QMOD_MODE_CODES: Dict[str, str] = {
    "P": "PowerOn",        # Power on mode
    "S": "Standby",        # Standby mode
    "L": "Line",           # Line (grid) mode
    "B": "Battery",        # Battery mode
    "F": "Fault",          # Fault mode
    "H": "PowerSaving",    # Power saving mode
}
MODE_PLACEHOLDER = "?"
