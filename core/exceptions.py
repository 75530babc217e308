# core/exceptions.py
"""
Error taxonomy for the Voltronic bridge.

Only `ConfigurationError` is fatal to the process. Every other error is raised
inside a device's poll thread and is turned into availability / last-error
signalling at the poll loop boundary.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(BridgeError):
    """The configuration document is missing, unreadable or invalid."""


class LinkOpenError(BridgeError):
    """The serial link to an inverter could not be opened."""


class WriteError(BridgeError):
    """A command frame could not be written to the serial link."""


class ResponseTimeoutError(BridgeError):
    """No terminated response arrived before the response timeout."""


class PublishError(BridgeError):
    """The MQTT client rejected a publish call."""
