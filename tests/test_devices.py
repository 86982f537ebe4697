import pytest

from fadecandy_client.devices import Device, parse_device_list, serial_of
from fadecandy_client.errors import ProtocolError


def test_parse_device_list_sorts_by_serial() -> None:
    reply = {
        "sequence": 1,
        "devices": [
            {"type": "fadecandy", "serial": "B1", "version": "1.07", "timestamp": 1427419357},
            {"type": "fadecandy", "serial": "A2"},
        ],
    }
    devices = parse_device_list(reply)

    assert [device.serial for device in devices] == ["A2", "B1"]
    assert devices[1] == Device(serial="B1", version="1.07", timestamp=1427419357)


def test_sorting_is_plain_string_ordering() -> None:
    reply = {"devices": [{"serial": "b"}, {"serial": "B"}, {"serial": "10"}, {"serial": "9"}]}
    assert [device.serial for device in parse_device_list(reply)] == ["10", "9", "B", "b"]


@pytest.mark.parametrize(
    "reply",
    [
        {},
        {"devices": "A2"},
        {"devices": {"serial": "A2"}},
        {"devices": [{"type": "fadecandy"}]},
        {"devices": ["A2"]},
    ],
)
def test_parse_device_list_rejects_malformed_replies(reply: dict) -> None:
    with pytest.raises(ProtocolError):
        parse_device_list(reply)


def test_device_wire_form_and_serial_lookup() -> None:
    device = Device(serial="A2", version="1.07")
    assert device.as_wire() == {"type": "fadecandy", "serial": "A2"}
    assert serial_of(device) == "A2"
    assert serial_of("B1") == "B1"
