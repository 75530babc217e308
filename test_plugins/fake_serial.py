#!/usr/bin/env python3
"""
In-memory stand-in for a `serial.Serial` link used by the test suites.

The fake answers each written command frame with a scripted reply and can
hand the reply back in small chunks to exercise incremental reads.
"""

from typing import Dict, List, Optional

import serial


class FakeSerialLink:
    """Scripted serial link: replies are keyed by the command text of the frame."""

    def __init__(self, replies: Optional[Dict[str, bytes]] = None, chunk_size: Optional[int] = None):
        self.replies = dict(replies or {})
        self.chunk_size = chunk_size
        self.written: List[bytes] = []
        self.reset_count = 0
        self.flush_count = 0
        self.is_open = True
        self.fail_write = False
        self._pending = bytearray()

    def inject(self, data: bytes):
        """Simulates unsolicited bytes arriving on the line."""
        self._pending.extend(data)

    @property
    def in_waiting(self) -> int:
        if self.chunk_size:
            return min(len(self._pending), self.chunk_size)
        return len(self._pending)

    def reset_input_buffer(self):
        self.reset_count += 1
        self._pending.clear()

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise serial.SerialException("device reports readiness to read but returned no data")
        self.written.append(bytes(data))
        command = bytes(data[:-3]).decode("ascii")
        reply = self.replies.get(command)
        if reply:
            self._pending.extend(reply)
        return len(data)

    def flush(self):
        self.flush_count += 1

    def read(self, size: int = 1) -> bytes:
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk

    def close(self):
        self.is_open = False
