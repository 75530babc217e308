#!/usr/bin/env python3
"""
Test suite for the per-device poll loop.

Covers:
- Connect, announce 'online' and publish one state record per cycle
- Link open failures turned into 'offline' + last_error and retried
- Broken links during polling
- Publish failures never ending the loop
- Immediate shutdown through the stop event

Usage:
    python test_plugins/test_device_poller.py
"""

import sys
import os
import threading
import unittest
from unittest.mock import Mock, call

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.app_state import AppState
from core.config_loader import DeviceConfig, GlobalConfig
from core.device_poller import poll_device_thread
from core.exceptions import LinkOpenError, PublishError, WriteError
from test_plugins.fake_plugin import FakeDevicePlugin, stop_and_join, wait_for


class TestPollDeviceThread(unittest.TestCase):

    def setUp(self):
        self.app_state = AppState(version="test")
        self.app_state.global_config = GlobalConfig(poll_interval_s=0.01, backoff_s=0.01)
        self.device = DeviceConfig(name="inv1", port="/dev/ttyUSB0", enabled=True)
        self.plugin = FakeDevicePlugin(self.device, self.app_state.global_config)
        self.mqtt_service = Mock()
        self.stop_event = threading.Event()
        self.thread = None

    def tearDown(self):
        if self.thread is not None:
            stop_and_join(self.stop_event, self.thread)

    def _start(self):
        self.thread = threading.Thread(
            target=poll_device_thread,
            args=(self.device, self.app_state, self.mqtt_service, self.plugin, self.stop_event),
            daemon=True,
        )
        self.thread.start()

    def test_publishes_online_then_state(self):
        self._start()
        self.assertTrue(wait_for(lambda: self.mqtt_service.publish_state.call_count >= 3))
        stop_and_join(self.stop_event, self.thread)

        self.assertFalse(self.thread.is_alive())
        self.assertEqual(self.mqtt_service.publish_device_availability.call_args_list[0], call("inv1", online=True))
        name, record = self.mqtt_service.publish_state.call_args[0]
        self.assertEqual(name, "inv1")
        self.assertTrue(record["ok"])
        self.assertEqual(self.plugin.connect_calls, 1)
        self.mqtt_service.publish_last_error.assert_not_called()
        self.assertGreaterEqual(self.plugin.disconnect_calls, 1)

    def test_link_open_failure_signals_and_retries(self):
        self.plugin.connect_ok = False
        self._start()
        self.assertTrue(wait_for(lambda: self.plugin.connect_calls >= 3))
        stop_and_join(self.stop_event, self.thread)

        self.mqtt_service.publish_state.assert_not_called()
        self.mqtt_service.publish_device_availability.assert_any_call("inv1", online=False)
        name, error = self.mqtt_service.publish_last_error.call_args[0]
        self.assertEqual(name, "inv1")
        self.assertIsInstance(error, LinkOpenError)
        self.assertIn("/dev/ttyUSB0", str(error))
        self.assertIn("timestamp", self.mqtt_service.publish_last_error.call_args.kwargs)

    def test_broken_link_reconnects(self):
        self.plugin.read_error = WriteError("Failed to write QPIGS")
        self._start()
        self.assertTrue(wait_for(lambda: self.plugin.connect_calls >= 2))
        stop_and_join(self.stop_event, self.thread)

        self.mqtt_service.publish_device_availability.assert_any_call("inv1", online=True)
        self.mqtt_service.publish_device_availability.assert_any_call("inv1", online=False)
        self.assertIsInstance(self.mqtt_service.publish_last_error.call_args[0][1], WriteError)
        self.assertGreaterEqual(self.plugin.disconnect_calls, 2)

    def test_publish_failures_do_not_end_the_loop(self):
        self.mqtt_service.publish_device_availability.side_effect = PublishError("client not started")
        self.mqtt_service.publish_last_error.side_effect = PublishError("client not started")
        self._start()
        self.assertTrue(wait_for(lambda: self.plugin.connect_calls >= 3))
        self.assertTrue(self.thread.is_alive())
        stop_and_join(self.stop_event, self.thread)
        self.assertFalse(self.thread.is_alive())

    def test_stop_event_already_set(self):
        self.stop_event.set()
        self._start()
        self.thread.join(timeout=1.0)

        self.assertFalse(self.thread.is_alive())
        self.assertEqual(self.plugin.connect_calls, 0)
        self.assertEqual(self.plugin.disconnect_calls, 1)

    def test_application_shutdown_ends_loop(self):
        self.app_state.running = False
        self._start()
        self.thread.join(timeout=1.0)
        self.assertFalse(self.thread.is_alive())
        self.assertEqual(self.plugin.connect_calls, 0)

    def test_stop_interrupts_long_poll_interval(self):
        self.app_state.global_config = GlobalConfig(poll_interval_s=60, backoff_s=60)
        self._start()
        self.assertTrue(wait_for(lambda: self.mqtt_service.publish_state.call_count == 1))
        stop_and_join(self.stop_event, self.thread, timeout=1.0)
        self.assertFalse(self.thread.is_alive())


if __name__ == "__main__":
    unittest.main(verbosity=2)
