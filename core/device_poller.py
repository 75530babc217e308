# core/device_poller.py
import logging
import threading
from typing import Optional

from core.app_state import AppState
from core.config_loader import DeviceConfig
from core.constants import DEVICE_POLL_THREAD_NAME_PREFIX
from core.exceptions import LinkOpenError
from plugins.plugin_interface import DevicePlugin
from services.mqtt_service import MqttService
from utils.helpers import describe_error, utc_timestamp


def _signal_failure(device: DeviceConfig, mqtt_service: MqttService, error: BaseException, thread_logger: logging.Logger):
    """
    Publishes 'offline' availability and the last error for a device.

    Best-effort: a failure to publish is logged and otherwise ignored so that
    the poll loop always reaches its backoff and retries.
    """
    try:
        mqtt_service.publish_device_availability(device.name, online=False)
        mqtt_service.publish_last_error(device.name, error, timestamp=utc_timestamp())
    except Exception as e:
        thread_logger.debug(f"Could not publish failure status: {e}")


def poll_device_thread(device: DeviceConfig, app_state: AppState, mqtt_service: MqttService,
                       plugin: DevicePlugin, stop_event: Optional[threading.Event] = None):
    """
    Dedicated polling thread for one inverter.

    Runs the device's connection state machine until its stop event is set:

    - **Connecting:** opens the link through the plugin. On success the
      retained device availability is set to 'online'.
    - **Polling:** repeatedly reads one telemetry record (QPIGS + QMOD),
      publishes it to the device's state topic and waits the poll interval.
    - **Disconnected:** any exception (link open failure, broken link, publish
      failure) is logged and turned into a retained 'offline' availability plus
      a retained last-error record. The link is closed, the thread waits the
      fixed backoff and starts connecting again.

    Errors never leave this function, so one failing device cannot affect the
    others. All waits use the stop event so shutdown is immediate.
    """
    thread_logger = logging.getLogger(f"{DEVICE_POLL_THREAD_NAME_PREFIX}_{device.name}")
    thread_logger.info("Thread started.")

    config = app_state.global_config
    stop_event = stop_event or app_state.device_stop_events.get(device.name)
    if stop_event is None:
        thread_logger.error("Could not find its stop_event in AppState. Thread exiting.")
        return

    while app_state.running and not stop_event.is_set():
        try:
            if not plugin.connect():
                raise LinkOpenError(plugin.last_error_message or f"Could not open {device.port}")
            thread_logger.info(f"Connected to {device.port}.")
            mqtt_service.publish_device_availability(device.name, online=True)

            while app_state.running and not stop_event.is_set():
                record = plugin.read_dynamic_data()
                mqtt_service.publish_state(device.name, record)
                thread_logger.debug(f"Published state (ok={record.get('ok')}).")
                stop_event.wait(timeout=config.poll_interval_s)

        except Exception as e:
            thread_logger.error(f"{describe_error(e)}. Retrying in {config.backoff_s}s.")
            if not isinstance(e, LinkOpenError):
                thread_logger.debug("Poll loop failure details:", exc_info=True)
            _signal_failure(device, mqtt_service, e, thread_logger)
            try:
                plugin.disconnect()
            except Exception as close_error:
                thread_logger.warning(f"Error closing link: {close_error}")
            stop_event.wait(timeout=config.backoff_s)

    thread_logger.info("Stop event received, disconnecting plugin...")
    try:
        plugin.disconnect()
    except Exception as e:
        thread_logger.error(f"Error during self-disconnect: {e}")
