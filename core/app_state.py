# core/app_state.py
import threading
from typing import Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from core.config_loader import DeviceConfig, GlobalConfig
    from plugins.plugin_interface import DevicePlugin


class AppState:
    """
    Centralized application state.

    Holds the loaded configuration and the registry of per-device poll
    threads, their stop events and plugin instances. Configuration is
    read-only once loaded; the registries are only mutated by the supervisor
    under `device_registry_lock`.
    """
    def __init__(self, version: str):
        # Version and Lifecycle
        self.version = version
        self.running = True
        self.main_threads_stop_event = threading.Event()

        # Configuration (will be populated by config_loader)
        self.global_config: Optional['GlobalConfig'] = None
        self.devices: List['DeviceConfig'] = []

        # Device Polling State
        self.active_device_plugins: Dict[str, 'DevicePlugin'] = {}
        self.device_polling_threads: Dict[str, threading.Thread] = {}
        self.device_stop_events: Dict[str, threading.Event] = {}
        self.device_restart_counts: Dict[str, int] = {}

        # Locks
        self.device_registry_lock = threading.RLock()
