"""Shared fixtures: a scripted Joy-Con that answers the driver over a fake HID port."""

import time
from collections import deque

import pytest

from joycon_ir.errors import TransportError
from joycon_ir.packets import PacketBuilder
from joycon_ir.protocol import (
    ACK_DEVICE_INFO, ACK_IMU_READ, ACK_OK, ACK_SPI_READ, ACK_VOLTAGE,
    FRAGMENT_SIZE, INPUT_MODE_STANDARD, MCU_MODE_IR, MCU_MODE_STANDBY,
    MCU_REPLY_IR_MODE, MCU_REPLY_REGISTERS, MCU_REPLY_STATE, MCU_SET_MODE,
    MCU_WRITE_IR_MODE, REPLY_SIZE, REPORT_MCU, REPORT_STREAMING,
    REPORT_SUBCOMMAND_REPLY, SPI_COLORS, SPI_SERIAL_NUMBER, STREAM_FRAGMENT,
    STREAM_IR_STATUS, STREAM_MCU_STATUS, SUB_DEVICE_INFO, SUB_IMU_READ,
    SUB_INPUT_MODE, SUB_MCU_CONFIG, SUB_MCU_STATE, SUB_SPI_READ, SUB_VOLTAGE,
)

SERIAL = b"XBW17006612345\x00"
COLORS = bytes([0x32, 0x32, 0x32, 0xFF, 0xFF, 0xFF, 0x1E, 0xDC, 0x00, 0xFF, 0xFF, 0xFF])

# Packet kinds whose replies are withheld to make a handshake step fail.
STEP_KINDS = {
    1: "input_mode_standard",
    3: "spi_read",
    5: "input_mode_mcu",
    6: "mcu_enable",
    7: "mcu_status_standby",
    8: "mcu_mode",
    9: "mcu_status_ir",
    10: "ir_mode",
}


def report(report_id, fields=None, size=REPLY_SIZE):
    """Inbound report with ``fields`` = {offset: bytes-like or int}."""
    data = bytearray(size)
    data[0] = report_id
    for offset, value in (fields or {}).items():
        if isinstance(value, int):
            value = [value]
        data[offset:offset + len(value)] = bytes(value)
    return bytes(data)


def fragment_report(index, white_pixels=0, fill=None):
    payload = bytes([index % 256 if fill is None else fill]) * FRAGMENT_SIZE
    return report(REPORT_STREAMING, {
        49: STREAM_FRAGMENT,
        52: index,
        55: white_pixels.to_bytes(2, "little"),
        59: payload,
    })


class FakeJoyCon:
    """Transport that answers every command the way a right Joy-Con does.

    Replies are queued on ``write`` and returned by ``read``; an empty queue
    reads as a timeout. Once the driver acknowledges a fragment, reads with
    an empty queue are served from ``fragments``.
    """

    def __init__(self, fragments=(), fail_after_writes=None):
        self.written = []
        self.replies = deque()
        self.withheld = set()
        self.fragments = deque(fragments)
        self.streaming = False
        self.mcu_state = 0
        self.imu_on = False
        self.closed = False
        self.fail_after_writes = fail_after_writes

    def withhold(self, step):
        self.withheld.add(STEP_KINDS[step])

    # Transport

    def write(self, data, report_id):
        if self.closed:
            raise TransportError("HID channel is closed")
        if self.fail_after_writes is not None and len(self.written) >= self.fail_after_writes:
            raise TransportError("HID write failed: device unplugged")
        data = bytes(data)
        self.written.append((report_id, data))
        kind, reply = self._answer(report_id, data)
        if reply is not None and kind not in self.withheld:
            self.replies.append(reply)
        return len(data) + 1

    def read(self, size, timeout_ms):
        if self.closed:
            raise TransportError("HID channel is closed")
        if self.replies:
            return self.replies.popleft()[:size]
        if self.streaming and self.fragments:
            return self.fragments.popleft()[:size]
        if self.streaming:
            time.sleep(0.001)
        return b""

    def close(self):
        self.closed = True

    # Helpers for assertions

    def packets(self, report_id=None):
        return [data for rid, data in self.written if report_id is None or rid == report_id]

    def input_modes(self):
        return [data[10] for rid, data in self.written if rid != REPORT_MCU and data[9] == SUB_INPUT_MODE]

    # Device emulation

    def _answer(self, report_id, data):
        if report_id == REPORT_MCU:
            return self._answer_mcu(data)

        sub = data[9]
        if sub == SUB_INPUT_MODE:
            kind = "input_mode_standard" if data[10] == INPUT_MODE_STANDARD else "input_mode_mcu"
            return kind, self._ack(ACK_OK, sub)
        if sub == SUB_SPI_READ:
            address = data[10] | data[11] << 8
            length = data[14]
            content = {SPI_SERIAL_NUMBER: SERIAL, SPI_COLORS: COLORS}.get(address, bytes(length))
            return "spi_read", self._ack(ACK_SPI_READ, sub, {15: data[10:15], 20: content[:length]})
        if sub == SUB_DEVICE_INFO:
            info = bytes([0x04, 0x33, 0x02, 0x02, 0x98, 0xB6, 0xE9, 0x12, 0x34, 0x56])
            return "device_info", self._ack(ACK_DEVICE_INFO, sub, {15: info})
        if sub == SUB_VOLTAGE:
            return "battery", self._ack(ACK_VOLTAGE, sub, {2: 0x8E, 15: (0x0618).to_bytes(2, "little")})
        if sub == SUB_IMU_READ:
            if data[10] == 0x10:
                return "imu_state", self._ack(ACK_IMU_READ, sub, {15: data[10:12], 17: 0x00})
            return "temperature", self._ack(ACK_IMU_READ, sub, {15: data[10:12], 17: (80).to_bytes(2, "little")})
        if sub == SUB_MCU_STATE:
            self.mcu_state = MCU_MODE_STANDBY
            return "mcu_enable", self._ack(ACK_OK, sub)
        if sub == SUB_MCU_CONFIG:
            if data[10] == MCU_SET_MODE:
                self.mcu_state = data[12]
                return "mcu_mode", self._mcu_reply({15: MCU_REPLY_STATE, 22: (1).to_bytes(4, "little")})
            if data[11] == MCU_WRITE_IR_MODE:
                return "ir_mode", self._mcu_reply({15: MCU_REPLY_IR_MODE})
            return "registers", self._mcu_reply({15: [MCU_REPLY_REGISTERS, 0x00, 0x07]})
        # LEDs, rumble, IMU enable: plain acknowledgement
        return "other", self._ack(ACK_OK, sub)

    def _answer_mcu(self, data):
        if data[9] == 0x01:
            kind = "mcu_status_ir" if self.mcu_state == MCU_MODE_IR else "mcu_status_standby"
            return kind, report(REPORT_STREAMING, {49: STREAM_MCU_STATUS, 56: self.mcu_state})
        if data[10] == 0x02:
            return "ir_status", report(REPORT_STREAMING, {49: [STREAM_IR_STATUS, 0x00, 0x07]})
        self.streaming = True
        return "fragment_ack", None

    @staticmethod
    def _ack(ack, sub, fields=None):
        fields = dict(fields or {})
        fields.update({13: ack, 14: sub})
        return report(REPORT_SUBCOMMAND_REPLY, fields)

    @staticmethod
    def _mcu_reply(fields):
        fields = dict(fields)
        fields.update({13: 0xA0, 14: SUB_MCU_CONFIG})
        return report(REPORT_SUBCOMMAND_REPLY, fields)


class RecordingTransport:
    """Transport that only records writes; reads always time out."""

    def __init__(self):
        self.written = []

    def write(self, data, report_id):
        self.written.append((report_id, bytes(data)))
        return len(data) + 1

    def read(self, size, timeout_ms):
        return b""

    def close(self):
        pass


@pytest.fixture
def fake_joycon():
    return FakeJoyCon()


@pytest.fixture
def recorder():
    return RecordingTransport()


@pytest.fixture
def builder():
    return PacketBuilder()


@pytest.fixture
def no_sleep():
    return lambda seconds: None
