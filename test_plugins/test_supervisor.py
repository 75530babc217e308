#!/usr/bin/env python3
"""
Test suite for the device supervisor.

Covers:
- Device selection (enabled, with a port, at most three)
- One named poll thread per device
- Failure isolation between devices
- Restarting threads that died unexpectedly
- Coordinated shutdown

Usage:
    python test_plugins/test_supervisor.py
"""

import sys
import os
import threading
import unittest
from unittest.mock import Mock

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.app_state import AppState
from core.config_loader import DeviceConfig, GlobalConfig
from core.supervisor import DeviceSupervisor
from test_plugins.fake_plugin import FakeDevicePlugin, wait_for


def published_names(mock_method) -> list:
    return [c.args[0] for c in mock_method.call_args_list]


class TestSelectDevices(unittest.TestCase):

    def test_skips_disabled_and_portless_devices(self):
        devices = [
            DeviceConfig(name="inv1", port="/dev/ttyUSB0", enabled=True),
            DeviceConfig(name="inv2", port="/dev/ttyUSB1", enabled=False),
            DeviceConfig(name="inv3", port="", enabled=True),
        ]
        self.assertEqual([d.name for d in DeviceSupervisor.select_devices(devices)], ["inv1"])

    def test_at_most_three_devices(self):
        devices = [DeviceConfig(name=f"inv{i}", port=f"/dev/ttyUSB{i}", enabled=True) for i in range(1, 6)]
        selected = DeviceSupervisor.select_devices(devices)
        self.assertEqual([d.name for d in selected], ["inv1", "inv2", "inv3"])


class TestDeviceSupervisor(unittest.TestCase):

    def setUp(self):
        self.app_state = AppState(version="test")
        self.app_state.global_config = GlobalConfig(poll_interval_s=0.01, backoff_s=0.01)
        self.mqtt_service = Mock()
        self.plugins = {}
        self.supervisor = DeviceSupervisor(self.app_state, self.mqtt_service, plugin_factory=self._make_plugin)

    def tearDown(self):
        self.app_state.running = False
        self.supervisor.stop(timeout=2.0)

    def _make_plugin(self, device, global_config, main_logger=None):
        plugin = FakeDevicePlugin(device, global_config, main_logger)
        plugin.connect_ok = device.name != "broken"
        self.plugins[device.name] = plugin
        return plugin

    def _devices(self, *names):
        return [DeviceConfig(name=name, port=f"/dev/ttyUSB{i}", enabled=True) for i, name in enumerate(names)]

    def test_start_registers_named_threads(self):
        self.app_state.devices = self._devices("inv1", "inv2")
        self.assertEqual(self.supervisor.start(), ["inv1", "inv2"])

        threads = self.app_state.device_polling_threads
        self.assertEqual(threads["inv1"].name, "DevicePoll_inv1")
        self.assertTrue(threads["inv2"].daemon)
        self.assertEqual(self.supervisor.status(), {"inv1": True, "inv2": True})
        self.assertIs(self.app_state.active_device_plugins["inv1"], self.plugins["inv1"])

    def test_each_plugin_gets_its_own_logger(self):
        self.app_state.devices = self._devices("inv1", "inv2")
        self.supervisor.start()

        self.assertEqual(self.plugins["inv1"].logger.name, "DevicePoll_inv1")
        self.assertEqual(self.plugins["inv2"].logger.name, "DevicePoll_inv2")

    def test_nothing_to_start(self):
        self.app_state.devices = [DeviceConfig(name="inv1", port="/dev/ttyUSB0", enabled=False)]
        self.assertEqual(self.supervisor.start(), [])
        self.assertEqual(self.supervisor.status(), {})

    def test_failing_device_does_not_affect_others(self):
        self.app_state.devices = self._devices("good1", "broken", "good2")
        self.supervisor.start()

        def healthy_devices_published():
            names = published_names(self.mqtt_service.publish_state)
            return names.count("good1") >= 3 and names.count("good2") >= 3

        self.assertTrue(wait_for(healthy_devices_published))
        self.assertTrue(wait_for(lambda: self.plugins["broken"].connect_calls >= 2))

        self.assertNotIn("broken", published_names(self.mqtt_service.publish_state))
        self.assertIn("broken", published_names(self.mqtt_service.publish_last_error))
        self.assertNotIn("good1", published_names(self.mqtt_service.publish_last_error))
        self.assertNotIn("good2", published_names(self.mqtt_service.publish_last_error))
        self.assertEqual(self.supervisor.status(), {"good1": True, "broken": True, "good2": True})

    def test_restart_dead_thread_reuses_plugin(self):
        device = self._devices("inv1")[0]
        self.app_state.devices = [device]
        plugin = self._make_plugin(device, self.app_state.global_config)

        dead_thread = threading.Thread(target=lambda: None)
        dead_thread.start()
        dead_thread.join()
        self.app_state.device_polling_threads["inv1"] = dead_thread
        self.app_state.device_stop_events["inv1"] = threading.Event()
        self.app_state.active_device_plugins["inv1"] = plugin

        self.assertEqual(self.supervisor.restart_dead_threads(), ["inv1"])
        self.assertEqual(self.app_state.device_restart_counts["inv1"], 1)
        self.assertIsNot(self.app_state.device_polling_threads["inv1"], dead_thread)
        self.assertIs(self.app_state.active_device_plugins["inv1"], plugin)
        self.assertTrue(wait_for(lambda: plugin.connect_calls >= 1))

    def test_restart_skips_healthy_and_stopped_threads(self):
        self.app_state.devices = self._devices("inv1")
        self.supervisor.start()
        self.assertEqual(self.supervisor.restart_dead_threads(), [])

        self.supervisor.stop(timeout=2.0)
        self.assertEqual(self.supervisor.restart_dead_threads(), [])
        self.assertEqual(self.app_state.device_restart_counts, {})

    def test_stop_ends_all_threads(self):
        self.app_state.devices = self._devices("inv1", "broken")
        self.supervisor.start()
        self.assertTrue(wait_for(lambda: self.mqtt_service.publish_state.called))

        self.supervisor.stop(timeout=2.0)

        self.assertEqual(self.supervisor.status(), {"inv1": False, "broken": False})
        self.assertTrue(all(event.is_set() for event in self.app_state.device_stop_events.values()))
        self.assertGreaterEqual(self.plugins["inv1"].disconnect_calls, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
