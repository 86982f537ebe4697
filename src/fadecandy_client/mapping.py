"""Compile device LED addresses into an fcserver pixel map.

Pixels are registered one at a time in the order they should appear in
the flat OPC output space. Each registration either extends the most
recent run of its device or starts a new one, so a device wired in order
collapses into a single ``[channel, first_output, first_device, count]``
entry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .config import DEFAULT_GAMMA, DEFAULT_LISTEN, DEFAULT_WHITEPOINT
from .devices import DEVICE_TYPE, LEDS_PER_DEVICE, LEDS_PER_STRIP, DeviceRef, serial_of
from .logging import get_logger
from .metrics import set_mapped_pixels

OPC_CHANNEL = 0


@dataclass
class MappingEntry:
    """A run where output and device indices advance together."""

    first_output_index: int
    first_device_index: int
    run_length: int = 1
    opc_channel: int = OPC_CHANNEL

    def extends_with(self, output_index: int, device_index: int) -> bool:
        return (
            self.first_output_index + self.run_length == output_index
            and self.first_device_index + self.run_length == device_index
        )

    def as_list(self) -> List[int]:
        return [self.opc_channel, self.first_output_index, self.first_device_index, self.run_length]


@dataclass
class OpaqueMappingEntry:
    """A map row in a shape other than the plain four-integer run.

    fcserver also accepts rows such as ``[channel, first_output,
    first_device, count, "grb"]``. They are kept as loaded and never
    extended.
    """

    row: List[Any]

    def extends_with(self, output_index: int, device_index: int) -> bool:
        return False

    def as_list(self) -> List[Any]:
        return list(self.row)

    @property
    def end_output_index(self) -> Optional[int]:
        if len(self.row) < 4:
            return None
        try:
            return int(self.row[1]) + int(self.row[3])
        except (TypeError, ValueError):
            return None


AnyMappingEntry = Union[MappingEntry, OpaqueMappingEntry]


@dataclass
class DeviceMap:
    """Ordered mapping entries for one device."""

    serial: str
    entries: List[AnyMappingEntry] = field(default_factory=list)
    type: str = DEVICE_TYPE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "serial": self.serial,
            "map": [entry.as_list() for entry in self.entries],
        }


@dataclass(frozen=True)
class LedDescriptor:
    """Human-oriented location of one LED."""

    device: str
    index: int
    strip_index: int
    strip_position: int
    label: str


class MappingCompiler:
    """Incrementally builds run-length pixel maps for a set of devices."""

    def __init__(self) -> None:
        self.logger = get_logger("fadecandy.mapping")
        self._devices: Dict[str, DeviceMap] = {}
        self.next_output_index = 0

    @property
    def pixel_count(self) -> int:
        return self.next_output_index

    @property
    def devices(self) -> List[DeviceMap]:
        return list(self._devices.values())

    def ensure_device(self, serial: str) -> DeviceMap:
        """Find or create the map for `serial`."""

        device_map = self._devices.get(serial)
        if device_map is None:
            device_map = DeviceMap(serial=serial)
            self._devices[serial] = device_map
            self.logger.debug("Added device to mapping", extra={"serial": serial})
        return device_map

    def register_pixel(self, serial: str, device_index: int) -> int:
        """Append one device pixel to the output space and return its output index.

        Only the latest entry of the device is considered for extension, so
        pixels must be registered in the desired output order.
        """

        if not 0 <= device_index < LEDS_PER_DEVICE:
            raise ValueError(
                f"device_index must be between 0 and {LEDS_PER_DEVICE - 1}; got {device_index}."
            )
        entries = self.ensure_device(serial).entries
        output_index = self.next_output_index
        self.next_output_index += 1

        last = entries[-1] if entries else None
        if last is not None and last.extends_with(output_index, device_index):
            last.run_length += 1
        else:
            entries.append(MappingEntry(first_output_index=output_index, first_device_index=device_index))
        set_mapped_pixels(self.next_output_index)
        return output_index

    def register_device(self, serial: str, count: int = LEDS_PER_DEVICE) -> List[int]:
        """Register device indices ``0..count-1`` in order."""

        if not 0 <= count <= LEDS_PER_DEVICE:
            raise ValueError(f"count must be between 0 and {LEDS_PER_DEVICE}; got {count}.")
        return [self.register_pixel(serial, index) for index in range(count)]

    def to_config(
        self,
        listen: Tuple[str, int] = DEFAULT_LISTEN,
        verbose: bool = True,
        gamma: float = DEFAULT_GAMMA,
        whitepoint: Sequence[float] = DEFAULT_WHITEPOINT,
    ) -> Dict[str, Any]:
        """Render the compiled fcserver configuration."""

        return {
            "listen": [listen[0], listen[1]],
            "verbose": verbose,
            "color": {"gamma": gamma, "whitepoint": list(whitepoint)},
            "devices": [device_map.as_dict() for device_map in self._devices.values()],
        }

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MappingCompiler":
        """Rebuild a compiler from a compiled configuration.

        Rows other than four integers are preserved as opaque entries.
        Anything that is not a list of rows raises `ValueError`.
        """

        compiler = cls()
        nodes = config.get("devices", [])
        if not isinstance(nodes, list):
            raise ValueError(f"devices must be a list; got {nodes!r}")
        for node in nodes:
            if not isinstance(node, Mapping):
                raise ValueError(f"Unsupported device entry: {node!r}")
            if node.get("type", DEVICE_TYPE) != DEVICE_TYPE or "serial" not in node:
                continue
            serial = str(node["serial"])
            rows = node.get("map", [])
            if not isinstance(rows, list):
                raise ValueError(f"map for {serial} must be a list; got {rows!r}")
            device_map = compiler.ensure_device(serial)
            for row in rows:
                if not isinstance(row, list):
                    raise ValueError(f"Unsupported map entry for {serial}: {row!r}")
                entry = _entry_from_row(row)
                device_map.entries.append(entry)
                end = (
                    entry.end_output_index
                    if isinstance(entry, OpaqueMappingEntry)
                    else entry.first_output_index + entry.run_length
                )
                if end is not None:
                    compiler.next_output_index = max(compiler.next_output_index, end)
        return compiler


def _entry_from_row(row: List[Any]) -> AnyMappingEntry:
    if len(row) == 4 and all(isinstance(value, int) and not isinstance(value, bool) for value in row):
        channel, first_output, first_device, run_length = row
        return MappingEntry(
            first_output_index=first_output,
            first_device_index=first_device,
            run_length=run_length,
            opc_channel=channel,
        )
    return OpaqueMappingEntry(row=list(row))


def write_config(path: Path, config: Mapping[str, Any]) -> None:
    """Write a compiled configuration as JSON."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(config, f, indent=4)
        f.write("\n")
    get_logger("fadecandy.mapping").info(
        "Wrote fcserver configuration",
        extra={"path": str(path), "devices": len(config.get("devices", ()))},
    )


def led_descriptor(serial: str, index: int) -> LedDescriptor:
    return LedDescriptor(
        device=serial,
        index=index,
        strip_index=index // LEDS_PER_STRIP,
        strip_position=index % LEDS_PER_STRIP,
        label=f"{serial}-{index:03d}",
    )


def device_descriptors(serial: str) -> List[LedDescriptor]:
    return [led_descriptor(serial, index) for index in range(LEDS_PER_DEVICE)]


def fleet_descriptors(devices: Iterable[DeviceRef]) -> List[LedDescriptor]:
    """Describe every potential LED across `devices`, in list order."""

    results: List[LedDescriptor] = []
    for device in devices:
        results.extend(device_descriptors(serial_of(device)))
    return results


def read_config(path: Path) -> Optional[Dict[str, Any]]:
    """Load a compiled configuration, or ``None`` when the file is absent."""

    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as f:
        parsed = json.load(f)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return parsed
