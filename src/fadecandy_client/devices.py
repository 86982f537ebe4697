"""Fadecandy device model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ProtocolError

LEDS_PER_DEVICE = 512
LEDS_PER_STRIP = 64
DEVICE_TYPE = "fadecandy"


@dataclass(frozen=True)
class Device:
    """A Fadecandy controller attached to fcserver."""

    serial: str
    type: str = DEVICE_TYPE
    version: Optional[str] = None
    timestamp: Optional[int] = None

    def as_wire(self) -> Dict[str, Any]:
        """Return the identifier fcserver uses to address this device."""

        return {"type": self.type, "serial": self.serial}

    def as_dict(self) -> Dict[str, Any]:
        return {
            "serial": self.serial,
            "type": self.type,
            "version": self.version,
            "timestamp": self.timestamp,
        }


DeviceRef = Union[Device, str]


def serial_of(device: DeviceRef) -> str:
    return device.serial if isinstance(device, Device) else str(device)


def _parse_device(entry: Any) -> Device:
    if not isinstance(entry, Mapping):
        raise ProtocolError(f"Device entry is not an object: {entry!r}")
    serial = entry.get("serial")
    if not isinstance(serial, str) or not serial:
        raise ProtocolError(f"Device entry has no serial: {entry!r}")
    version = entry.get("version")
    timestamp = entry.get("timestamp")
    return Device(
        serial=serial,
        type=str(entry.get("type") or DEVICE_TYPE),
        version=str(version) if version is not None else None,
        timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else None,
    )


def parse_device_list(reply: Mapping[str, Any]) -> List[Device]:
    """Parse a `list_connected_devices` reply, sorted by serial."""

    entries = reply.get("devices")
    if not isinstance(entries, Iterable) or isinstance(entries, (str, bytes, Mapping)):
        raise ProtocolError("list_connected_devices reply has no device list")
    devices = [_parse_device(entry) for entry in entries]
    return sorted(devices, key=lambda device: device.serial)
