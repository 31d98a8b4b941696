"""Command packet layouts and reply parsing."""

import pytest

from joycon_ir.crc import crc8
from joycon_ir.packets import PacketBuilder, Reply, RollingCounter
from joycon_ir.protocol import (
    PACKET_SIZE, REPLY_SIZE, REPORT_MCU, REPORT_SUBCOMMAND, REPORT_SUBCOMMAND_REPLY,
)


def test_counter_sequence_wraps_mod_16(builder):
    counters = [builder.subcommand(0x30, 0x01).data[0] for _ in range(20)]
    assert counters == list(range(16)) + [0, 1, 2, 3]


def test_counter_shared_across_families(builder):
    packets = [
        builder.set_input_mode(0x3F),
        builder.mcu_status(),
        builder.fragment_ack(5),
        builder.register_write([(0x0007, 0x01)]),
    ]
    assert [p.data[0] for p in packets] == [0, 1, 2, 3]


def test_counter_initial_value_is_masked():
    counter = RollingCounter(0x1E)
    assert [counter.next() for _ in range(3)] == [0xE, 0xF, 0x0]


def test_subcommand_layout(builder):
    packet = builder.subcommand(0x38, 0x28, 0x20)
    assert packet.report_id == REPORT_SUBCOMMAND
    assert len(packet.data) == PACKET_SIZE
    assert packet.data[9] == 0x38
    assert packet.data[10:12] == b"\x28\x20"
    assert packet.data[1:9] == bytes(8)
    assert packet.data[12:] == bytes(PACKET_SIZE - 12)


def test_rumble_layout(builder):
    pattern = (0xC2, 0xC8, 0x03, 0x72) * 2
    packet = builder.rumble(pattern, 0x48, (0x00,))
    assert packet.data[1:9] == bytes(pattern)
    assert packet.data[9] == 0x48
    assert packet.data[10] == 0x00

    plain = builder.rumble(pattern)
    assert plain.data[9] == 0


def test_spi_read_layout(builder):
    packet = builder.spi_read(0x6050, 12)
    assert packet.data[9:15] == bytes([0x10, 0x50, 0x60, 0x00, 0x00, 0x0C])


def test_mcu_mode_checksum(builder):
    packet = builder.mcu_mode(0x05)
    assert packet.data[10:13] == bytes([0x21, 0x00, 0x05])
    assert packet.data[47] == crc8(packet.data, 36, 12)


def test_ir_mode_layout(builder):
    packet = builder.ir_mode(0x07, 0xFF)
    assert packet.data[9] == 0x21
    assert packet.data[10:18] == bytes([0x23, 0x01, 0x07, 0xFF, 0x00, 0x05, 0x00, 0x18])
    assert packet.data[47] == crc8(packet.data, 36, 12)


def test_register_write_layout(builder):
    packet = builder.register_write([(0x0130, 0x90), (0x0007, 0x01)])
    assert packet.data[10:13] == bytes([0x23, 0x04, 0x02])
    assert packet.data[13:19] == bytes([0x01, 0x30, 0x90, 0x00, 0x07, 0x01])
    assert packet.data[47] == crc8(packet.data, 36, 12)


def test_diagnostic_register_write_checksum_starts_early(builder):
    packet = builder.diagnostic_register_write([(0x002E, 0x00)])
    assert packet.data[47] == crc8(packet.data, 36, 11)


@pytest.mark.parametrize("count", [0, 10])
def test_register_write_limits(builder, count):
    registers = [(0x0010 + i, i) for i in range(count)]
    with pytest.raises(ValueError):
        builder.register_write(registers)
    # rejected batches do not consume a counter value
    assert builder.subcommand(0x30).data[0] == 0


def test_register_write_accepts_nine(builder):
    packet = builder.register_write([(0x0010 + i, i) for i in range(9)])
    assert packet.data[12] == 9


def test_mcu_status_request(builder):
    packet = builder.mcu_status()
    assert packet.report_id == REPORT_MCU
    assert packet.data[9] == 0x01


def test_fragment_ack_layout(builder):
    packet = builder.fragment_ack(0x2A)
    assert packet.report_id == REPORT_MCU
    assert packet.data[9] == 0x03
    assert packet.data[11] == 0x00
    assert packet.data[13] == 0x2A
    assert packet.data[46] == crc8(packet.data, 36, 11)
    assert packet.data[47] == 0xFF


def test_missed_fragment_request_layout(builder):
    packet = builder.missed_fragment_request(0x12)
    assert packet.data[11:14] == bytes([0x01, 0x12, 0x00])
    assert packet.data[46] == crc8(packet.data, 36, 11)
    assert packet.data[47] == 0xFF


def test_ir_status_layout(builder):
    packet = builder.ir_status()
    assert packet.data[9:11] == bytes([0x03, 0x02])
    assert packet.data[47] == 0xFF


def test_reply_pads_short_reads():
    reply = Reply(b"\x21\x00\x8E", size=49)
    assert reply.length == 3
    assert len(reply.raw) == 49
    assert reply.report_id == REPORT_SUBCOMMAND_REPLY
    assert reply.battery == 0x8E

    timeout = Reply(b"")
    assert timeout.length == 0
    assert len(timeout.raw) == REPLY_SIZE
    assert timeout.report_id == 0


def test_reply_fields():
    raw = bytearray(REPLY_SIZE)
    raw[0] = 0x31
    raw[49] = 0x03
    raw[52] = 7
    raw[53] = 0x40
    raw[55:57] = (1234).to_bytes(2, "little")
    raw[57:59] = (17).to_bytes(2, "little")
    raw[59:359] = bytes([0xAB]) * 300
    reply = Reply(bytes(raw))
    assert reply.stream_type == 0x03
    assert reply.fragment_index == 7
    assert reply.average_intensity == 0x40
    assert reply.white_pixels == 1234
    assert reply.noise == 17
    assert reply.payload == bytes([0xAB]) * 300


def test_reply_acknowledges():
    raw = bytearray(49)
    raw[0] = 0x21
    raw[13] = 0x90
    raw[14] = 0x10
    raw[15:19] = (0x6001).to_bytes(4, "little")
    reply = Reply(bytes(raw), 49)
    assert reply.acknowledges(0x90, 0x10)
    assert not reply.acknowledges(0x80, 0x10)
    assert reply.spi_address == 0x6001
