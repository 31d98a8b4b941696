"""Outbound command packets and inbound report views.

Every outbound packet is a fresh 48-byte buffer sent behind a one-byte
report id. Byte 0 carries a 4-bit rolling counter shared by all packets of a
connection; the Joy-Con uses it to spot reordered or repeated commands.
"""

import struct
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple

from .crc import crc8
from .protocol import (
    FRAGMENT_SIZE, IR_FIRMWARE_MAJOR, IR_FIRMWARE_MINOR,
    MAX_REGISTERS_PER_WRITE, MCU_SET_MODE, MCU_STATUS_REQUEST, MCU_WRITE,
    MCU_WRITE_IR_MODE, MCU_WRITE_REGISTERS, PACKET_SIZE, REPLY_SIZE,
    REPORT_MCU, REPORT_SUBCOMMAND, SUB_INPUT_MODE, SUB_MCU_CONFIG, SUB_SPI_READ,
)

Register = Tuple[int, int]  # (16-bit address, 8-bit value)

# Checksum ranges: (length, 1-based start, destination index)
_CRC_MCU_CONFIG = (36, 12, 47)
_CRC_MCU_REPORT = (36, 11, 46)
_CRC_DIAGNOSTIC = (36, 11, 47)

_SENTINEL_INDEX = 47
_SENTINEL = 0xFF

# Report 0x11 fragment handshake fields
_RESEND_FLAG = 11
_RESEND_INDEX = 12
_ACK_INDEX = 13


class RollingCounter:
    """4-bit packet counter, wraps mod 16."""

    def __init__(self, initial: int = 0):
        self.value = initial & 0xF

    def next(self) -> int:
        value = self.value
        self.value = (self.value + 1) & 0xF
        return value


class CommandPacket(NamedTuple):
    report_id: int
    data: bytes


class PacketBuilder:
    """Builds the Joy-Con command families.

    Each call consumes one value of ``counter``; the builder does no I/O.
    """

    def __init__(self, counter: Optional[RollingCounter] = None):
        self.counter = counter if counter is not None else RollingCounter()

    def _packet(self, subcommand: Optional[int] = None, args: Sequence[int] = ()) -> bytearray:
        packet = bytearray(PACKET_SIZE)
        packet[0] = self.counter.next()
        if subcommand is not None:
            packet[9] = subcommand
            packet[10:10 + len(args)] = bytes(args)
        return packet

    @staticmethod
    def _checksum(packet: bytearray, crc_range) -> None:
        length, start, index = crc_range
        packet[index] = crc8(packet, length, start)

    # ------------------------------------------------------------------
    # Report 0x01: subcommands
    # ------------------------------------------------------------------

    def subcommand(self, subcommand: int, *args: int) -> CommandPacket:
        return CommandPacket(REPORT_SUBCOMMAND, bytes(self._packet(subcommand, args)))

    def rumble(self, rumble_data: Sequence[int], subcommand: Optional[int] = None,
               args: Sequence[int] = ()) -> CommandPacket:
        """Rumble frame for both motors (``rumble_data`` is 8 bytes)."""
        packet = self._packet(subcommand, args)
        packet[1:9] = bytes(rumble_data)
        return CommandPacket(REPORT_SUBCOMMAND, bytes(packet))

    def spi_read(self, address: int, length: int) -> CommandPacket:
        """Read *length* bytes of SPI flash at *address*."""
        return self.subcommand(
            SUB_SPI_READ, address & 0xFF, (address >> 8) & 0xFF, 0x00, 0x00, length)

    def set_input_mode(self, mode: int) -> CommandPacket:
        return self.subcommand(SUB_INPUT_MODE, mode)

    def mcu_mode(self, mode: int) -> CommandPacket:
        packet = self._packet(SUB_MCU_CONFIG, (MCU_SET_MODE, 0x00, mode))
        self._checksum(packet, _CRC_MCU_CONFIG)
        return CommandPacket(REPORT_SUBCOMMAND, bytes(packet))

    def ir_mode(self, ir_mode: int, max_fragment: int) -> CommandPacket:
        """Select the IR mode and fragments per image, pinning firmware 5.24."""
        args = (MCU_WRITE, MCU_WRITE_IR_MODE, ir_mode, max_fragment) + tuple(
            struct.pack(">HH", IR_FIRMWARE_MAJOR, IR_FIRMWARE_MINOR))
        packet = self._packet(SUB_MCU_CONFIG, args)
        self._checksum(packet, _CRC_MCU_CONFIG)
        return CommandPacket(REPORT_SUBCOMMAND, bytes(packet))

    def register_write(self, registers: Iterable[Register]) -> CommandPacket:
        """Write up to nine IR sensor registers in one packet."""
        packet = self._register_packet(registers)
        self._checksum(packet, _CRC_MCU_CONFIG)
        return CommandPacket(REPORT_SUBCOMMAND, bytes(packet))

    def diagnostic_register_write(self, registers: Iterable[Register]) -> CommandPacket:
        """Register write whose checksum starts one byte early.

        Undocumented; the official driver sends it before configuring the
        sensor.
        """
        packet = self._register_packet(registers)
        self._checksum(packet, _CRC_DIAGNOSTIC)
        return CommandPacket(REPORT_SUBCOMMAND, bytes(packet))

    def _register_packet(self, registers: Iterable[Register]) -> bytearray:
        registers = list(registers)
        if not registers or len(registers) > MAX_REGISTERS_PER_WRITE:
            raise ValueError(
                f"A register write carries 1 to {MAX_REGISTERS_PER_WRITE} "
                f"registers, got {len(registers)}"
            )
        args = [MCU_WRITE, MCU_WRITE_REGISTERS, len(registers)]
        for address, value in registers:
            args += [(address >> 8) & 0xFF, address & 0xFF, value & 0xFF]
        return self._packet(SUB_MCU_CONFIG, args)

    # ------------------------------------------------------------------
    # Report 0x11: MCU requests
    # ------------------------------------------------------------------

    def mcu_status(self) -> CommandPacket:
        return CommandPacket(REPORT_MCU, bytes(self._packet(MCU_STATUS_REQUEST)))

    def _mcu_report(self, args: Sequence[int], offsets: Sequence[Tuple[int, int]] = ()) -> CommandPacket:
        packet = self._packet(0x03, args)
        for index, value in offsets:
            packet[index] = value
        self._checksum(packet, _CRC_MCU_REPORT)
        packet[_SENTINEL_INDEX] = _SENTINEL
        return CommandPacket(REPORT_MCU, bytes(packet))

    def ir_status(self) -> CommandPacket:
        return self._mcu_report((0x02,))

    def fragment_ack(self, index: int) -> CommandPacket:
        return self._mcu_report((), [(_ACK_INDEX, index & 0xFF)])

    def missed_fragment_request(self, next_index: int) -> CommandPacket:
        """Ask the camera to resend starting at *next_index*."""
        return self._mcu_report(
            (), [(_RESEND_FLAG, 0x01), (_RESEND_INDEX, next_index & 0xFF), (_ACK_INDEX, 0x00)])


# Reply layout
_REPORT_ID = 0
_BATTERY = 2
_ACK = 13
_ACK_SUBCOMMAND = 14
_SUBCOMMAND_DATA = 15  # also the MCU reply id and the SPI address
_SPI_DATA = 20
_MCU_STATUS_WORD = 22
_STREAM_TYPE = 49
_FRAGMENT_INDEX = 52
_AVERAGE_INTENSITY = 53
_WHITE_PIXELS = 55
_MCU_STATE = 56
_NOISE = 57
_FRAGMENT_PAYLOAD = 59


class Reply:
    """Read-only view over one inbound report.

    The raw report is zero-padded to ``size`` so that a timeout reads as an
    all-zero report; ``length`` remembers how many bytes actually arrived.
    """

    __slots__ = ("raw", "length")

    def __init__(self, data: bytes = b"", size: int = REPLY_SIZE):
        self.length = len(data)
        raw = bytearray(size)
        raw[:min(len(data), size)] = data[:size]
        self.raw = bytes(raw)

    def _le(self, start: int, size: int) -> int:
        return int.from_bytes(self.raw[start:start + size], "little")

    @property
    def report_id(self) -> int:
        return self.raw[_REPORT_ID]

    @property
    def battery(self) -> int:
        return self.raw[_BATTERY]

    # Subcommand replies (report 0x21)

    @property
    def ack(self) -> int:
        return self.raw[_ACK]

    @property
    def subcommand(self) -> int:
        return self.raw[_ACK_SUBCOMMAND]

    def acknowledges(self, ack: int, subcommand: int) -> bool:
        return self.ack == ack and self.subcommand == subcommand

    def subcommand_data(self, offset: int, size: int) -> bytes:
        """Subcommand reply bytes following the echo."""
        start = _SUBCOMMAND_DATA + offset
        return self.raw[start:start + size]

    @property
    def spi_address(self) -> int:
        return self._le(_SUBCOMMAND_DATA, 4)

    def spi_data(self, size: int) -> bytes:
        return self.raw[_SPI_DATA:_SPI_DATA + size]

    @property
    def mcu_reply(self) -> Tuple[int, int, int]:
        """MCU reply id and its first two argument bytes."""
        return tuple(self.raw[_SUBCOMMAND_DATA:_SUBCOMMAND_DATA + 3])

    @property
    def mcu_status_word(self) -> int:
        return self._le(_MCU_STATUS_WORD, 4)

    # Streaming reports (report 0x31)

    @property
    def stream_type(self) -> int:
        return self.raw[_STREAM_TYPE]

    @property
    def stream_header(self) -> Tuple[int, int, int]:
        """Report type and the two bytes after it."""
        return tuple(self.raw[_STREAM_TYPE:_STREAM_TYPE + 3])

    @property
    def fragment_index(self) -> int:
        return self.raw[_FRAGMENT_INDEX]

    @property
    def average_intensity(self) -> int:
        return self.raw[_AVERAGE_INTENSITY]

    @property
    def white_pixels(self) -> int:
        return self._le(_WHITE_PIXELS, 2)

    @property
    def mcu_state(self) -> int:
        return self.raw[_MCU_STATE]

    @property
    def noise(self) -> int:
        return self._le(_NOISE, 2)

    @property
    def payload(self) -> bytes:
        return self.raw[_FRAGMENT_PAYLOAD:_FRAGMENT_PAYLOAD + FRAGMENT_SIZE]
