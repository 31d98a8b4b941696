"""Auto-exposure for the IR sensor, driven by the white-pixel statistic."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .packets import CommandPacket, PacketBuilder, Register
from .protocol import DEFAULT_EXPOSURE_US, EXPOSURE_TICKS_PER_MS, MAX_EXPOSURE_US

log = logging.getLogger(__name__)

REG_EXPOSURE_LSB = 0x0130
REG_EXPOSURE_MSB = 0x0131
REG_FINALIZE = 0x0007

EXPOSURE_STEP_US = 10


@dataclass
class ExposureState:
    exposure_us: int = DEFAULT_EXPOSURE_US


def next_exposure(current_us: int, white_pixel_percent: int) -> int:
    """New exposure (µs) for the given share of saturated pixels.

    Nothing saturated: lengthen by one step. More than 5% saturated: shorten
    by 20 µs for every full 4%. The result is clamped to [0, MAX_EXPOSURE_US].
    """
    exposure = current_us
    if white_pixel_percent == 0:
        exposure += EXPOSURE_STEP_US
    elif white_pixel_percent > 5:
        exposure -= (white_pixel_percent // 4) * 20
    return max(0, min(exposure, MAX_EXPOSURE_US))


def exposure_ticks(exposure_us: int) -> int:
    """Exposure in sensor units."""
    return exposure_us * EXPOSURE_TICKS_PER_MS // 1000


def exposure_registers(exposure_us: int) -> List[Register]:
    ticks = exposure_ticks(exposure_us)
    return [(REG_EXPOSURE_LSB, ticks & 0xFF), (REG_EXPOSURE_MSB, (ticks >> 8) & 0xFF)]


class AutoExposure:
    """Adjusts :class:`ExposureState` and writes it to the sensor.

    ``send`` is any callable taking a :class:`CommandPacket`, normally
    :meth:`Channel.send`.
    """

    def __init__(self, builder: PacketBuilder, send, state: Optional[ExposureState] = None):
        self.builder = builder
        self.send = send
        self.state = state if state is not None else ExposureState()

    def adjust(self, white_pixel_percent: int) -> None:
        previous = self.state.exposure_us
        self.state.exposure_us = next_exposure(previous, white_pixel_percent)
        log.debug("white pixels %d%%: exposure %d -> %d us",
                  white_pixel_percent, previous, self.state.exposure_us)
        self.send(self.command())

    def command(self) -> CommandPacket:
        registers = exposure_registers(self.state.exposure_us) + [(REG_FINALIZE, 0x01)]
        return self.builder.register_write(registers)
