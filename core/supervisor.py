# core/supervisor.py
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

from core.app_state import AppState
from core.config_loader import DeviceConfig, GlobalConfig
from core.constants import DEVICE_POLL_THREAD_NAME_PREFIX, MAX_DEVICES, THREAD_JOIN_TIMEOUT
from core.device_poller import poll_device_thread
from plugins.inverter.voltronic_rs232_plugin import VoltronicRs232Plugin
from plugins.plugin_interface import DevicePlugin
from services.mqtt_service import MqttService

logger = logging.getLogger(__name__)

PluginFactory = Callable[[DeviceConfig, GlobalConfig, logging.Logger], DevicePlugin]


class DeviceSupervisor:
    """
    Starts and tracks one poll thread per enabled inverter.

    Every thread is registered by device name in the AppState together with
    its stop event and plugin, so the set of running loops can be inspected,
    restarted and shut down. Threads share nothing but the read-only
    configuration and the MQTT service.
    """
    def __init__(self, app_state: AppState, mqtt_service: MqttService,
                 plugin_factory: PluginFactory = VoltronicRs232Plugin):
        self.app_state = app_state
        self.mqtt_service = mqtt_service
        self.plugin_factory = plugin_factory

    @staticmethod
    def select_devices(devices: Sequence[DeviceConfig]) -> List[DeviceConfig]:
        """
        Returns the devices that get a poll thread.

        At most MAX_DEVICES entries are considered; of those, only enabled
        devices with a serial port are kept.
        """
        if len(devices) > MAX_DEVICES:
            logger.warning(f"Ignoring {len(devices) - MAX_DEVICES} inverter(s) beyond the first {MAX_DEVICES}.")
        selected = []
        for device in devices[:MAX_DEVICES]:
            if not device.enabled:
                logger.info(f"Inverter '{device.name}' is disabled. Skipping.")
            elif not device.port:
                logger.warning(f"Inverter '{device.name}' has no port configured. Skipping.")
            else:
                selected.append(device)
        return selected

    def start(self) -> List[str]:
        """
        Creates and starts a poll thread for every selected device.

        Returns:
            The names of the devices whose threads were started.
        """
        started = []
        for device in self.select_devices(self.app_state.devices):
            self._start_device(device)
            started.append(device.name)
        if not started:
            logger.warning("No enabled inverters configured. Nothing to poll.")
        return started

    def _start_device(self, device: DeviceConfig, plugin: Optional[DevicePlugin] = None):
        if plugin is None:
            device_logger = logging.getLogger(f"{DEVICE_POLL_THREAD_NAME_PREFIX}_{device.name}")
            plugin = self.plugin_factory(device, self.app_state.global_config, device_logger)
        stop_event = threading.Event()
        thread = threading.Thread(
            target=poll_device_thread,
            args=(device, self.app_state, self.mqtt_service, plugin, stop_event),
            name=f"{DEVICE_POLL_THREAD_NAME_PREFIX}_{device.name}",
            daemon=True,
        )
        with self.app_state.device_registry_lock:
            self.app_state.active_device_plugins[device.name] = plugin
            self.app_state.device_stop_events[device.name] = stop_event
            self.app_state.device_polling_threads[device.name] = thread
        thread.start()
        logger.info(f"Started poll thread '{thread.name}' for {device.port}.")

    def status(self) -> Dict[str, bool]:
        """Returns whether each registered poll thread is alive."""
        with self.app_state.device_registry_lock:
            return {name: thread.is_alive() for name, thread in self.app_state.device_polling_threads.items()}

    def restart_dead_threads(self) -> List[str]:
        """
        Restarts poll threads that died although they were not asked to stop.

        The poll loop catches every error itself, so this only triggers on
        truly unexpected failures. The device keeps its plugin instance.

        Returns:
            The names of the restarted devices.
        """
        if not self.app_state.running:
            return []
        restarted = []
        devices = {device.name: device for device in self.app_state.devices}
        with self.app_state.device_registry_lock:
            for name, thread in list(self.app_state.device_polling_threads.items()):
                stop_event = self.app_state.device_stop_events.get(name)
                if thread.is_alive() or (stop_event and stop_event.is_set()) or name not in devices:
                    continue
                count = self.app_state.device_restart_counts.get(name, 0) + 1
                self.app_state.device_restart_counts[name] = count
                logger.error(f"Poll thread for '{name}' died unexpectedly. Restarting (restart #{count}).")
                self._start_device(devices[name], self.app_state.active_device_plugins.get(name))
                restarted.append(name)
        return restarted

    def stop(self, timeout: float = THREAD_JOIN_TIMEOUT):
        """
        Signals every poll thread to stop and waits for them to finish.
        """
        with self.app_state.device_registry_lock:
            threads = dict(self.app_state.device_polling_threads)
            for name, event in self.app_state.device_stop_events.items():
                logger.info(f"Stopping poll thread: {name}")
                event.set()

        for name, thread in threads.items():
            if thread.is_alive():
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"Thread {thread.name} did not stop gracefully")
                else:
                    logger.info(f"Thread {thread.name} stopped successfully")
