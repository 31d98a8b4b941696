"""HidTransport over a stand-in hidapi device, and Channel framing."""

import pytest

from joycon_ir import transport as transport_module
from joycon_ir.errors import DeviceNotFoundError, TransportError
from joycon_ir.protocol import PRODUCT_ID, REPLY_SIZE, VENDOR_ID
from joycon_ir.transport import Channel, HidTransport


class StubHidDevice:
    def __init__(self, reads=(), fail_open=False):
        self.writes = []
        self.reads = list(reads)
        self.fail_open = fail_open
        self.opened = None
        self.closed = False

    def open_path(self, path):
        if self.fail_open:
            raise OSError("open failed")
        self.opened = path

    def write(self, data):
        self.writes.append(bytes(data))
        return len(data)

    def read(self, size, timeout_ms):
        return self.reads.pop(0)[:size] if self.reads else []

    def close(self):
        self.closed = True


@pytest.fixture
def hid_device(monkeypatch):
    device = StubHidDevice(reads=[[0x21, 0x00, 0x8E]])
    monkeypatch.setattr(transport_module.hid, "enumerate", lambda vid, pid: [
        {"path": b"/dev/hidraw3", "manufacturer_string": "Nintendo",
         "product_string": "Joy-Con (R)", "serial_number": "98b6e9123456"},
    ])
    monkeypatch.setattr(transport_module.hid, "device", lambda: device)
    return device


def test_open_first_match(hid_device):
    port = HidTransport.open(VENDOR_ID, PRODUCT_ID)
    assert port.is_open
    assert hid_device.opened == b"/dev/hidraw3"


def test_open_without_device(monkeypatch):
    monkeypatch.setattr(transport_module.hid, "enumerate", lambda vid, pid: [])
    with pytest.raises(DeviceNotFoundError, match="0x057E"):
        HidTransport.open()


def test_open_failure(monkeypatch):
    monkeypatch.setattr(transport_module.hid, "enumerate",
                        lambda vid, pid: [{"path": b"/dev/hidraw0"}])
    monkeypatch.setattr(transport_module.hid, "device", lambda: StubHidDevice(fail_open=True))
    with pytest.raises(TransportError):
        HidTransport.open()


def test_write_prepends_report_id(hid_device):
    port = HidTransport.open()
    written = port.write(b"\x05\x06", 0x11)
    assert hid_device.writes == [b"\x11\x05\x06"]
    assert written == 3


def test_read_returns_bytes(hid_device):
    port = HidTransport.open()
    assert port.read(49, 64) == b"\x21\x00\x8E"
    assert port.read(49, 64) == b""


def test_closed_port_rejects_io(hid_device):
    port = HidTransport.open()
    port.close()
    assert hid_device.closed
    assert not port.is_open
    with pytest.raises(TransportError):
        port.write(b"\x00", 0x01)
    with pytest.raises(TransportError):
        port.read(49, 64)
    port.close()


def test_negative_write_is_an_error(hid_device):
    hid_device.write = lambda data: -1
    port = HidTransport.open()
    with pytest.raises(TransportError):
        port.write(b"\x00", 0x01)


def test_channel_sends_packets_and_pads_replies(hid_device):
    channel = Channel(HidTransport.open())
    channel.send(channel.builder.set_input_mode(0x3F))
    assert hid_device.writes[0][:1] == b"\x01"
    assert len(hid_device.writes[0]) == 49
    assert hid_device.writes[0][10:12] == b"\x03\x3F"

    reply = channel.receive(64)
    assert reply.report_id == 0x21
    assert len(reply.raw) == REPLY_SIZE

    timeout = channel.receive(64)
    assert timeout.length == 0

    channel.close()
    assert hid_device.closed
