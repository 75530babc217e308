#!/usr/bin/env python3
"""
Scripted DevicePlugin used to drive the poll loop and supervisor in tests.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from plugins.plugin_interface import DevicePlugin


class FakeDevicePlugin(DevicePlugin):
    """
    Plugin whose connect outcome and poll behaviour are set by the test.

    `read_error` may be an exception instance raised by every poll cycle, or
    None for a successful cycle.
    """

    def __init__(self, device, global_config, main_logger=None):
        super().__init__(device, global_config, main_logger)
        self.connect_ok = True
        self.read_error: Optional[Exception] = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.read_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def pretty_name(self) -> str:
        return "Fake Inverter"

    def connect(self) -> bool:
        self.connect_calls += 1
        if not self.connect_ok:
            self.last_error_message = f"Failed to open serial port {self.device.port}"
            return False
        self._is_connected_flag = True
        return True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._is_connected_flag = False

    def read_dynamic_data(self) -> Dict[str, Any]:
        self.read_calls += 1
        if self.read_error is not None:
            raise self.read_error
        return {"inverter": self.device.name, "port": self.device.port, "ok": True}


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Polls `predicate` until it is true or `timeout` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def stop_and_join(stop_event: threading.Event, thread: threading.Thread, timeout: float = 2.0):
    stop_event.set()
    thread.join(timeout=timeout)
