#!/usr/bin/env python3
"""
Test suite for the application entry point.

Covers:
- Exit status 1 with a message on stderr for fatal configuration errors
- Exit status 0 and orderly shutdown on a clean stop
- The health check loop restarting threads and reporting the broker state

Usage:
    python test_plugins/test_main.py
"""

import sys
import os
import io
import json
import shutil
import tempfile
import unittest
from unittest.mock import patch

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import main


class TestMain(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, "options.json")
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump({"inverters": [{"name": "inv1", "port": "/dev/ttyUSB0", "enabled": True}]}, f)

        self.env_patcher = patch.dict(os.environ, {}, clear=True)
        self.env_patcher.start()
        self.addCleanup(self.env_patcher.stop)
        for target in ("main.setup_logging", "main.signal.signal"):
            patcher = patch(target)
            patcher.start()
            self.addCleanup(patcher.stop)

        mqtt_patcher = patch("main.MqttService")
        self.mock_mqtt_cls = mqtt_patcher.start()
        self.addCleanup(mqtt_patcher.stop)
        supervisor_patcher = patch("main.DeviceSupervisor")
        self.mock_supervisor_cls = supervisor_patcher.start()
        self.addCleanup(supervisor_patcher.stop)

        self.mqtt_service = self.mock_mqtt_cls.return_value
        self.supervisor = self.mock_supervisor_cls.return_value

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _app_state(self):
        return self.mock_supervisor_cls.call_args.args[0]

    def test_missing_config_exits_with_1(self):
        missing = os.path.join(self.temp_dir, "missing.json")
        with patch("sys.stderr", new_callable=io.StringIO) as stderr:
            self.assertEqual(main.main(["--config", missing]), 1)
        self.assertIn("Fatal:", stderr.getvalue())
        self.assertIn(missing, stderr.getvalue())
        self.mock_mqtt_cls.assert_not_called()
        self.mock_supervisor_cls.assert_not_called()

    def test_invalid_config_exits_with_1(self):
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump({"poll_interval_s": 0}, f)
        with patch("sys.stderr", new_callable=io.StringIO) as stderr:
            self.assertEqual(main.main(["--config", self.config_path]), 1)
        self.assertIn("poll_interval_s", stderr.getvalue())

    def test_clean_stop_exits_with_0(self):
        self.supervisor.start.side_effect = lambda: self._app_state().main_threads_stop_event.set()

        self.assertEqual(main.main(["--config", self.config_path]), 0)

        self.mqtt_service.start.assert_called_once()
        self.supervisor.start.assert_called_once()
        self.supervisor.stop.assert_called_once()
        self.mqtt_service.stop.assert_called_once()
        self.assertFalse(self._app_state().running)
        self.assertEqual([d.name for d in self._app_state().devices], ["inv1"])

    def test_health_check_restarts_threads_and_reports_broker(self):
        self.mqtt_service.is_connected = False
        self.mqtt_service.last_state = "Connection Error"
        self.supervisor.restart_dead_threads.side_effect = lambda: self._app_state().main_threads_stop_event.set()

        with patch("main.HEALTH_CHECK_INTERVAL", 0.01):
            with self.assertLogs("VoltronicBridgeCore", level="WARNING") as logs:
                self.assertEqual(main.main(["--config", self.config_path]), 0)

        self.supervisor.restart_dead_threads.assert_called_once()
        self.assertTrue(any("Connection Error" in line for line in logs.output))

    def test_shutdown_runs_after_startup_failure(self):
        self.supervisor.start.side_effect = RuntimeError("can't start new thread")

        with self.assertRaises(RuntimeError):
            main.main(["--config", self.config_path])

        self.supervisor.stop.assert_called_once()
        self.mqtt_service.stop.assert_called_once()


if __name__ == "__main__":
    unittest.main(verbosity=2)
