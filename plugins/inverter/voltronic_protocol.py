# plugins/inverter/voltronic_protocol.py
"""
Wire-level helpers for the Voltronic PI RS232 protocol.

This module is transport-agnostic: every function works against any object
exposing the small subset of the `serial.Serial` API it needs
(`reset_input_buffer`, `write`, `flush`, `read`, `in_waiting`), which keeps it
testable without hardware.

Contents:
- CRC16/XMODEM checksum used to sign request frames
- Command framing (command + CRC + CR)
- Incremental response reader with timeout handling
- A single request/response exchange (`query`)
"""

import time
import struct
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import serial

from core.exceptions import ResponseTimeoutError, WriteError
from .voltronic_rs232_plugin_constants import (
    CRC16_XMODEM_INIT,
    CRC16_XMODEM_POLY,
    RESPONSE_START,
    TERMINATOR,
    TERMINATOR_BYTE,
)

logger = logging.getLogger(__name__)


def crc16_xmodem(data: bytes) -> int:
    """
    Calculate the CRC16/XMODEM checksum of a byte payload.

    Polynomial 0x1021, initial value 0x0000, MSB first, no reflection and
    no final XOR.

    Args:
        data: The bytes to checksum.

    Returns:
        The 16-bit checksum as an integer.
    """
    crc = CRC16_XMODEM_INIT
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) & 0xFFFF) ^ CRC16_XMODEM_POLY
            else:
                crc = (crc << 1) & 0xFFFF
    return crc & 0xFFFF


def build_command(command: str) -> bytes:
    """
    Build a request frame: ASCII command, big-endian CRC16/XMODEM, carriage return.

    The command text must not contain the terminator; it is sent as-is.
    """
    payload = command.encode("ascii")
    return payload + struct.pack(">H", crc16_xmodem(payload)) + TERMINATOR


def parse_response(raw: bytes) -> str:
    """
    Turn a terminated reply into its text payload.

    Strips surrounding whitespace, one leading '(' and every carriage return.
    Non-ASCII bytes (the reply CRC often is) are dropped.
    """
    text = raw.decode("ascii", errors="ignore").strip()
    if text.startswith(RESPONSE_START):
        text = text[1:]
    return text.replace("\r", "").strip()


@dataclass(frozen=True)
class ResponseResult:
    """Outcome of one request/response exchange. Failures never carry a value."""
    ok: bool
    value: Optional[str] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: str) -> "ResponseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Optional[Exception] = None) -> "ResponseResult":
        return cls(ok=False, value=None, error=error)


class ResponseReader:
    """
    Accumulates inbound bytes until the first carriage return.

    Bytes can be fed in arbitrary chunks. Once a terminator has been seen the
    reader is complete and ignores any further input; everything after the
    first terminator is discarded.
    """

    def __init__(self):
        self._buffer = bytearray()
        self._result: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> Optional[str]:
        return self._result

    def feed(self, chunk: bytes) -> Optional[str]:
        """
        Adds a chunk of received bytes.

        Returns:
            The parsed payload once the terminator has arrived, otherwise None.
        """
        if self.complete:
            return self._result
        if chunk:
            self._buffer.extend(chunk)
        cut = self._buffer.find(TERMINATOR_BYTE)
        if cut != -1:
            self._result = parse_response(bytes(self._buffer[:cut + 1]))
        return self._result


def read_response(link: Any, timeout: float, clock: Callable[[], float] = time.monotonic) -> ResponseResult:
    """
    Reads one terminated reply from the link, giving up after `timeout` seconds.

    The link's own read timeout should be short (see SERIAL_READ_SLICE_S) so
    that each `read()` returns promptly and the deadline is checked often.

    Args:
        link: A `serial.Serial`-like object.
        timeout: Response timeout in seconds.
        clock: Monotonic clock, injectable for tests.

    Returns:
        A successful ResponseResult with the parsed payload, or a failure
        carrying a ResponseTimeoutError. A timed-out read is abandoned.
    """
    reader = ResponseReader()
    deadline = clock() + timeout
    while clock() < deadline:
        chunk = link.read(link.in_waiting or 1)
        if reader.feed(chunk) is not None:
            return ResponseResult.success(reader.result)
    return ResponseResult.failure(ResponseTimeoutError(f"No response within {timeout}s"))


def query(link: Any, command: str, timeout: float) -> ResponseResult:
    """
    Performs one command/response exchange on an open link.

    Residual input is discarded before the frame is written so that a stale
    reply cannot be mistaken for the answer to this command. Errors while
    writing produce a failure result carrying a WriteError; no retries here.

    Args:
        link: An open `serial.Serial`-like object owned by the caller.
        command: The ASCII command, e.g. "QPIGS".
        timeout: Response timeout in seconds.
    """
    frame = build_command(command)
    try:
        link.reset_input_buffer()
        link.write(frame)
        link.flush()
    except (serial.SerialException, OSError) as e:
        logger.debug(f"Write of {command} failed: {e}")
        return ResponseResult.failure(WriteError(f"Failed to write {command}: {e}"))

    result = read_response(link, timeout)
    if not result.ok:
        logger.debug(f"{command}: no response within {timeout}s")
    return result
