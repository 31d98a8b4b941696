"""Handshake that takes a freshly opened Joy-Con to IR image streaming.

The ten steps run strictly in order. Every request/response exchange goes
through :func:`exchange`, which owns the retry loop: send, optionally settle,
then poll a bounded number of replies for one the step accepts. A step that
exhausts its budget raises :class:`ProtocolTimeout` carrying its number, and
no later step runs.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ProtocolTimeout
from .exposure import ExposureState, exposure_registers
from .packets import CommandPacket, Register, Reply
from .protocol import (
    ACK_DEVICE_INFO, ACK_IMU_READ, ACK_OK, ACK_SPI_READ, ACK_VOLTAGE,
    INPUT_MODE_MCU, INPUT_MODE_SETTLE, INPUT_MODE_STANDARD, IMU_SETTLE,
    IR_MODE_IMAGE_TRANSFER, MCU_MODE_IR, MCU_MODE_STANDBY, MCU_REPLY_IR_MODE,
    MCU_REPLY_REGISTERS, MCU_REPLY_STATE, POLL_TIMEOUT_MS, REPLY_SIZE,
    REPORT_STREAMING, REPORT_SUBCOMMAND_REPLY, SHORT_REPLY_SIZE, SPI_COLORS,
    SPI_COLORS_LENGTH, SPI_SERIAL_NUMBER, SPI_SERIAL_NUMBER_LENGTH,
    STREAM_IR_STATUS, STREAM_MCU_STATUS, SUB_DEVICE_INFO, SUB_HOME_LED,
    SUB_IMU_ENABLE, SUB_IMU_READ, SUB_INPUT_MODE, SUB_MCU_STATE,
    SUB_PLAYER_LED, SUB_SPI_READ, SUB_VIBRATION, SUB_VOLTAGE,
)
from .resolution import ResolutionProfile
from .transport import Channel

log = logging.getLogger(__name__)


class HandshakeStep(IntEnum):
    SILENCE_INPUT = 1
    SET_LED_BUSY = 2
    READ_DEVICE_DATA = 3
    READY_CUE = 4
    SET_INPUT_MODE = 5
    ENABLE_MCU = 6
    WAIT_MCU_STANDBY = 7
    SET_MCU_MODE = 8
    CONFIRM_MCU_MODE = 9
    CONFIGURE_IR = 10


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    polls: int
    timeout_ms: int = POLL_TIMEOUT_MS
    settle: float = 0.0
    reply_size: int = REPLY_SIZE


SILENCE_POLICY = RetryPolicy(6, 9, reply_size=SHORT_REPLY_SIZE)
READ_POLICY = RetryPolicy(21, 9, reply_size=SHORT_REPLY_SIZE)
INPUT_MODE_POLICY = RetryPolicy(8, 9, settle=INPUT_MODE_SETTLE)
ENABLE_MCU_POLICY = RetryPolicy(9, 8)
MCU_STANDBY_POLICY = RetryPolicy(9, 9)
MCU_MODE_POLICY = RetryPolicy(9, 9)
MCU_MODE_CONFIRM_POLICY = RetryPolicy(8, 9)
IR_MODE_POLICY = RetryPolicy(8, 8)
SENSOR_REGISTERS_POLICY = RetryPolicy(8, 9)
IMAGE_REGISTERS_POLICY = RetryPolicy(8, 8)
STOP_POLICY = RetryPolicy(1, 9)

Request = Callable[[], Iterable[CommandPacket]]
Accept = Callable[[Reply], bool]


def exchange(channel: Channel, request: Request, accept: Accept, policy: RetryPolicy,
             sleep=time.sleep) -> Optional[Tuple[Reply, int]]:
    """Run one request/response exchange under *policy*.

    *request* is called once per attempt so every attempt gets fresh packets
    (and fresh counter values). Returns the accepted reply with the number of
    retries it took, or ``None`` once the budget is spent. Transport errors
    propagate immediately.
    """
    for attempt in range(policy.attempts):
        for packet in request():
            channel.send(packet)
        if policy.settle:
            sleep(policy.settle)
        for _ in range(policy.polls):
            reply = channel.receive(policy.timeout_ms, policy.reply_size)
            if accept(reply):
                return reply, attempt
    return None


# ----------------------------------------------------------------------
# Reply predicates
# ----------------------------------------------------------------------

def acknowledged(ack: int, subcommand: int) -> Accept:
    return lambda reply: reply.acknowledges(ack, subcommand)


def mcu_replied(*expected: int) -> Accept:
    """0x21 report whose MCU reply starts with *expected*."""
    def accept(reply: Reply) -> bool:
        return (reply.report_id == REPORT_SUBCOMMAND_REPLY
                and reply.mcu_reply[:len(expected)] == expected)
    return accept


def mcu_in_state(state: int) -> Accept:
    def accept(reply: Reply) -> bool:
        return (reply.report_id == REPORT_STREAMING
                and reply.stream_type == STREAM_MCU_STATUS
                and reply.mcu_state == state)
    return accept


def spi_read_of(address: int, length: int) -> Accept:
    def accept(reply: Reply) -> bool:
        return (reply.acknowledges(ACK_SPI_READ, SUB_SPI_READ)
                and reply.spi_address == address
                and reply.length >= 0x14 + length)
    return accept


def ir_image_mode(reply: Reply) -> bool:
    return (reply.report_id == REPORT_STREAMING
            and reply.stream_header == (STREAM_IR_STATUS, 0x00, IR_MODE_IMAGE_TRANSFER))


# ----------------------------------------------------------------------
# Register sets
# ----------------------------------------------------------------------

REG_RESOLUTION = 0x002E
REG_FINALIZE = 0x0007

# Written before the sensor batch with an off-by-one checksum, as captured
# from the official driver.
DIAGNOSTIC_REGISTERS: List[Register] = [
    (0x002E, 0x00), (0x0130, 0x90), (0x0131, 0x24), (0x0132, 0x00),
    (0x0010, 0x00), (0x012E, 0x20), (0x012F, 0x00), (0x000E, 0x03),
    (0x0143, 0xC8),
]

IMAGE_REGISTERS: List[Register] = [
    (0x0011, 0x0F),  # IR LEDs 1/2 intensity, max
    (0x0012, 0x10),  # IR LEDs 3/4 intensity, max
    (0x002D, 0x00),  # no flip
    (0x0167, 0x01),  # denoise on
    (0x0168, 0x23),  # edge smoothing threshold
    (0x0169, 0x44),  # color interpolation threshold
    (0x0004, 0x32),  # buffer update time
    (REG_FINALIZE, 0x01),
]


def sensor_registers(profile: ResolutionProfile, exposure: ExposureState) -> List[Register]:
    return [(REG_RESOLUTION, profile.binning)] + exposure_registers(exposure.exposure_us) + [
        (0x0132, 0x00),  # manual exposure
        (0x0010, 0x00),  # IR LED groups
        (0x012E, 0x20),  # digital gain, low nibble
        (0x012F, 0x00),  # digital gain, high nibble
        (0x000E, 0x03),  # external light filter on
        (0x0143, 0xC8),  # white pixel threshold
    ]


# ----------------------------------------------------------------------
# Rumble and LED patterns
# ----------------------------------------------------------------------

RUMBLE_NEUTRAL = (0x00, 0x01, 0x40, 0x40) * 2
READY_RUMBLE = [
    ((0xC2, 0xC8, 0x03, 0x72) * 2, 0.081),
    (RUMBLE_NEUTRAL, 0.005),
    ((0xC3, 0xC8, 0x60, 0x64) * 2, 0.005),
]
HOME_LED_BREATHING = (0x28, 0x20, 0x00, 0xF2, 0xF0, 0xF0)
HOME_LED_HEARTBEAT = (0xF1, 0x00) + (0xF0,) * 6 + (0x00, 0xFF, 0xFF) * 5
PLAYER_LED_BUSY = 0x81
PLAYER_LED_ONE = 0x01


@dataclass
class DeviceInfo:
    """Data read from the Joy-Con during step 3."""

    serial_number: str = ""
    firmware_version: Tuple[int, int] = (0, 0)
    device_type: int = 0
    mac_address: str = ""
    battery_level: int = 0
    charging: bool = False
    battery_voltage_mv: float = 0.0
    temperature_c: float = 0.0
    colors: bytes = b""


@dataclass
class HandshakeResult:
    device: DeviceInfo
    retries: Dict[HandshakeStep, int] = field(default_factory=dict)

    @property
    def total_retries(self) -> int:
        return sum(self.retries.values())


class Handshake:
    """The ten-step startup sequence.

    Parameters
    ----------
    channel : Channel
        Opened channel; its packet builder supplies the rolling counter.
    profile : ResolutionProfile
        Selects the fragment count and sensor binning.
    exposure : ExposureState or None
        Initial exposure written in step 10.
    sleep : callable
        Used for settle delays; tests pass a no-op.
    on_step : callable or None
        Called with each :class:`HandshakeStep` before it runs.
    """

    def __init__(
        self,
        channel: Channel,
        profile: ResolutionProfile,
        exposure: Optional[ExposureState] = None,
        sleep=time.sleep,
        on_step: Optional[Callable[[HandshakeStep], None]] = None,
    ):
        self.channel = channel
        self.builder = channel.builder
        self.profile = profile
        self.exposure = exposure if exposure is not None else ExposureState()
        self._sleep = sleep
        self._on_step = on_step
        self.device = DeviceInfo()
        self.current_step: Optional[HandshakeStep] = None
        self._retries = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> HandshakeResult:
        """Run all steps. Raises :class:`ProtocolTimeout` on the first failure."""
        result = HandshakeResult(self.device)
        for step, action in self._steps():
            self.current_step = step
            if self._on_step is not None:
                self._on_step(step)
            self._retries = 0
            try:
                action()
            except ProtocolTimeout:
                log.error("Handshake step %d (%s) failed", step, step.name)
                raise
            result.retries[step] = self._retries
            log.info("Handshake step %d (%s) ok%s", step, step.name,
                     f" after {self._retries} retries" if self._retries else "")
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _steps(self):
        return [
            (HandshakeStep.SILENCE_INPUT, self.silence_input),
            (HandshakeStep.SET_LED_BUSY, self.set_led_busy),
            (HandshakeStep.READ_DEVICE_DATA, self.read_device_data),
            (HandshakeStep.READY_CUE, self.ready_cue),
            (HandshakeStep.SET_INPUT_MODE, self.set_input_mode),
            (HandshakeStep.ENABLE_MCU, self.enable_mcu),
            (HandshakeStep.WAIT_MCU_STANDBY, self.wait_mcu_standby),
            (HandshakeStep.SET_MCU_MODE, self.set_mcu_mode),
            (HandshakeStep.CONFIRM_MCU_MODE, self.confirm_mcu_mode),
            (HandshakeStep.CONFIGURE_IR, self.configure_ir),
        ]

    def _exchange(self, request: Request, accept: Accept, policy: RetryPolicy,
                  detail: str = "") -> Reply:
        outcome = exchange(self.channel, request, accept, policy, self._sleep)
        if outcome is None:
            raise ProtocolTimeout(self.current_step, detail)
        reply, retries = outcome
        self._retries += retries
        return reply

    def _send_and_drain(self, packet: CommandPacket) -> None:
        """Fire-and-forget: send and swallow one reply, whatever it is."""
        self.channel.send(packet)
        self.channel.receive(POLL_TIMEOUT_MS, SHORT_REPLY_SIZE)

    # Step 1

    def silence_input(self) -> None:
        self._exchange(
            lambda: [self.builder.set_input_mode(INPUT_MODE_STANDARD)],
            acknowledged(ACK_OK, SUB_INPUT_MODE),
            SILENCE_POLICY,
        )

    # Step 2

    def set_led_busy(self) -> None:
        self._send_and_drain(self.builder.subcommand(SUB_PLAYER_LED, PLAYER_LED_BUSY))
        self._send_and_drain(self.builder.subcommand(SUB_HOME_LED, *HOME_LED_BREATHING))

    # Step 3

    def read_device_data(self) -> None:
        self.device.serial_number = self._read_serial_number()
        self._read_device_info()
        self._read_battery()
        self.device.temperature_c = self._read_temperature()
        self.device.colors = self.read_spi(SPI_COLORS, SPI_COLORS_LENGTH, "colors")
        log.info("Joy-Con %s, firmware %d.%d, battery %d, %.1f C",
                 self.device.serial_number or "(no serial)",
                 *self.device.firmware_version, self.device.battery_level,
                 self.device.temperature_c)

    def read_spi(self, address: int, length: int, what: str = "") -> bytes:
        """Read *length* bytes of SPI flash at *address*."""
        reply = self._exchange(
            lambda: [self.builder.spi_read(address, length)],
            spi_read_of(address, length),
            READ_POLICY,
            f"SPI read of {what or hex(address)}",
        )
        return reply.spi_data(length)

    def _read_serial_number(self) -> str:
        raw = self.read_spi(SPI_SERIAL_NUMBER, SPI_SERIAL_NUMBER_LENGTH, "serial number")
        return bytes(b for b in raw if b).decode("ascii", errors="replace")

    def _read_device_info(self) -> None:
        reply = self._exchange(
            lambda: [self.builder.subcommand(SUB_DEVICE_INFO)],
            acknowledged(ACK_DEVICE_INFO, SUB_DEVICE_INFO),
            READ_POLICY,
            "device info",
        )
        data = reply.subcommand_data(0, 10)
        self.device.firmware_version = (data[0], data[1])
        self.device.device_type = data[2]
        self.device.mac_address = ":".join(f"{b:02X}" for b in data[4:10])

    def _read_battery(self) -> None:
        reply = self._exchange(
            lambda: [self.builder.subcommand(SUB_VOLTAGE)],
            acknowledged(ACK_VOLTAGE, SUB_VOLTAGE),
            READ_POLICY,
            "battery",
        )
        self.device.battery_level = (reply.battery >> 4) & 0x0E
        self.device.charging = bool(reply.battery & 0x10)
        self.device.battery_voltage_mv = int.from_bytes(reply.subcommand_data(0, 2), "little") * 2.5

    def _read_temperature(self) -> float:
        """IMU temperature; powers the IMU up for the read if it was off."""
        reply = self._exchange(
            lambda: [self.builder.subcommand(SUB_IMU_READ, 0x10, 0x01)],
            acknowledged(ACK_IMU_READ, SUB_IMU_READ),
            READ_POLICY,
            "IMU state",
        )
        imu_was_off = reply.subcommand_data(2, 1)[0] >> 4 == 0
        if imu_was_off:
            self._send_and_drain(self.builder.subcommand(SUB_IMU_ENABLE, 0x01))
            self._sleep(IMU_SETTLE)

        reply = self._exchange(
            lambda: [self.builder.subcommand(SUB_IMU_READ, 0x20, 0x02)],
            acknowledged(ACK_IMU_READ, SUB_IMU_READ),
            READ_POLICY,
            "temperature",
        )
        raw = int.from_bytes(reply.subcommand_data(2, 2), "little", signed=True)

        if imu_was_off:
            self._send_and_drain(self.builder.subcommand(SUB_IMU_ENABLE, 0x00))
        return 25.0 + raw / 16.0

    # Step 4

    def ready_cue(self) -> None:
        self._send_and_drain(self.builder.subcommand(SUB_VIBRATION, 0x01))
        self._sleep(0.016)
        for pattern, pause in READY_RUMBLE:
            self._send_and_drain(self.builder.rumble(pattern))
            self._sleep(pause)
        self._send_and_drain(self.builder.rumble(RUMBLE_NEUTRAL, SUB_VIBRATION, (0x00,)))
        self._send_and_drain(self.builder.subcommand(SUB_PLAYER_LED, PLAYER_LED_ONE))
        self._send_and_drain(self.builder.subcommand(SUB_HOME_LED, *HOME_LED_HEARTBEAT))

    # Steps 5 - 9

    def set_input_mode(self) -> None:
        self._exchange(
            lambda: [self.builder.set_input_mode(INPUT_MODE_MCU)],
            acknowledged(ACK_OK, SUB_INPUT_MODE),
            INPUT_MODE_POLICY,
        )

    def enable_mcu(self) -> None:
        self._exchange(
            lambda: [self.builder.subcommand(SUB_MCU_STATE, 0x01)],
            acknowledged(ACK_OK, SUB_MCU_STATE),
            ENABLE_MCU_POLICY,
        )

    def wait_mcu_standby(self) -> None:
        self._exchange(
            lambda: [self.builder.mcu_status()],
            mcu_in_state(MCU_MODE_STANDBY),
            MCU_STANDBY_POLICY,
        )

    def set_mcu_mode(self) -> None:
        def accept(reply: Reply) -> bool:
            return mcu_replied(MCU_REPLY_STATE)(reply) and reply.mcu_status_word == 1

        self._exchange(lambda: [self.builder.mcu_mode(MCU_MODE_IR)], accept, MCU_MODE_POLICY)

    def confirm_mcu_mode(self) -> None:
        self._exchange(
            lambda: [self.builder.mcu_status()],
            mcu_in_state(MCU_MODE_IR),
            MCU_MODE_CONFIRM_POLICY,
        )

    # Step 10

    def configure_ir(self) -> None:
        registers_written = mcu_replied(MCU_REPLY_REGISTERS, 0x00, IR_MODE_IMAGE_TRANSFER)

        self._exchange(
            lambda: [self.builder.ir_mode(IR_MODE_IMAGE_TRANSFER, self.profile.max_fragment)],
            mcu_replied(MCU_REPLY_IR_MODE),
            IR_MODE_POLICY,
            "IR mode",
        )

        self.channel.send(self.builder.diagnostic_register_write(DIAGNOSTIC_REGISTERS))
        self.channel.send(self.builder.ir_status())
        for _ in range(5):
            if ir_image_mode(self.channel.receive(POLL_TIMEOUT_MS)):
                log.debug("IR camera reports image transfer mode")
                break

        self._exchange(
            lambda: [self.builder.register_write(sensor_registers(self.profile, self.exposure)),
                     self.builder.ir_status()],
            registers_written,
            SENSOR_REGISTERS_POLICY,
            "sensor registers",
        )
        self._exchange(
            lambda: [self.builder.register_write(IMAGE_REGISTERS)],
            registers_written,
            IMAGE_REGISTERS_POLICY,
            "image registers",
        )
