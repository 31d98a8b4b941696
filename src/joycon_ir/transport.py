"""HID transport for the Joy-Con.

:class:`HidTransport` is the byte-level port (hidapi underneath). The
:class:`Channel` wraps any port with the packet builder so that the handshake
and the fragment stream speak in :class:`CommandPacket` / :class:`Reply`.
"""

import logging
from typing import Optional, Protocol

import hid

from .errors import DeviceNotFoundError, TransportError
from .packets import CommandPacket, PacketBuilder, Reply
from .protocol import PRODUCT_ID, REPLY_SIZE, VENDOR_ID

log = logging.getLogger(__name__)


class Transport(Protocol):
    """Byte-level port owned by the driver for one connection."""

    def write(self, data: bytes, report_id: int) -> int:
        ...

    def read(self, size: int, timeout_ms: int) -> bytes:
        """Up to *size* bytes of one report, ``b""`` on timeout."""
        ...

    def close(self) -> None:
        ...


class HidTransport:
    """Joy-Con HID channel backed by hidapi."""

    def __init__(self, device):
        self._device = device

    @classmethod
    def open(cls, vendor_id: int = VENDOR_ID, product_id: int = PRODUCT_ID) -> "HidTransport":
        """Open the first attached device matching *vendor_id*/*product_id*.

        Raises
        ------
        DeviceNotFoundError
            If no such device is attached.
        TransportError
            If the device exists but cannot be opened.
        """
        matches = hid.enumerate(vendor_id, product_id)
        if not matches:
            raise DeviceNotFoundError(
                f"No Joy-Con found (vendor=0x{vendor_id:04X}, product=0x{product_id:04X})"
            )
        info = matches[0]
        if len(matches) > 1:
            log.info("%d matching devices, using %s", len(matches), info.get("path"))

        device = hid.device()
        try:
            device.open_path(info["path"])
        except OSError as exc:
            raise TransportError(f"Cannot open {info.get('path')!r}: {exc}") from exc

        log.info("Opened %s %s (serial %s)",
                 info.get("manufacturer_string"), info.get("product_string"),
                 info.get("serial_number"))
        return cls(device)

    @property
    def is_open(self) -> bool:
        return self._device is not None

    def write(self, data: bytes, report_id: int) -> int:
        device = self._require_open()
        try:
            written = device.write(bytes([report_id]) + bytes(data))
        except (OSError, ValueError) as exc:
            raise TransportError(f"HID write failed: {exc}") from exc
        if written < 0:
            raise TransportError(f"HID write failed with {written}")
        return written

    def read(self, size: int, timeout_ms: int) -> bytes:
        device = self._require_open()
        try:
            data = device.read(size, timeout_ms)
        except (OSError, ValueError) as exc:
            raise TransportError(f"HID read failed: {exc}") from exc
        return bytes(data)

    def close(self) -> None:
        if self._device is not None:
            self._device.close()
            self._device = None

    def _require_open(self):
        if self._device is None:
            raise TransportError("HID channel is closed")
        return self._device


class Channel:
    """Packet-level access to a transport, with the connection's counter."""

    def __init__(self, transport: Transport, builder: Optional[PacketBuilder] = None):
        self.transport = transport
        self.builder = builder if builder is not None else PacketBuilder()

    def send(self, packet: CommandPacket) -> int:
        written = self.transport.write(packet.data, packet.report_id)
        if written < 0:
            raise TransportError(f"write of report 0x{packet.report_id:02X} returned {written}")
        return written

    def receive(self, timeout_ms: int, size: int = REPLY_SIZE) -> Reply:
        """Next report as a zero-padded :class:`Reply` (all zeros on timeout)."""
        return Reply(self.transport.read(size, timeout_ms), size)

    def close(self) -> None:
        self.transport.close()
