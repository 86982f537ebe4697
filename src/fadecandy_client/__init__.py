"""Client for the Fadecandy server (fcserver) WebSocket API."""

from .config import DEFAULT_TIMEOUT, Config
from .connection import Connection
from .devices import LEDS_PER_DEVICE, LEDS_PER_STRIP, Device
from .errors import (
    DeviceCommandError,
    FadecandyError,
    ProtocolError,
    RequestTimeoutError,
    ServerConnectionError,
)
from .mapping import (
    LedDescriptor,
    MappingCompiler,
    MappingEntry,
    OpaqueMappingEntry,
    device_descriptors,
    fleet_descriptors,
    led_descriptor,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "Connection",
    "DEFAULT_TIMEOUT",
    "Device",
    "DeviceCommandError",
    "FadecandyError",
    "LEDS_PER_DEVICE",
    "LEDS_PER_STRIP",
    "LedDescriptor",
    "MappingCompiler",
    "MappingEntry",
    "OpaqueMappingEntry",
    "ProtocolError",
    "RequestTimeoutError",
    "ServerConnectionError",
    "device_descriptors",
    "fleet_descriptors",
    "led_descriptor",
]
