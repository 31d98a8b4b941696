"""Fragment reassembly: the IR streaming main loop.

The camera pushes each image as ``max_fragment + 1`` reports of 300 bytes.
Every fragment must be acknowledged or the Joy-Con falls back to slow
polling. Lost fragments are re-requested one ahead of the last accepted
index; only one request is outstanding at a time.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .exposure import AutoExposure
from .handshake import STOP_POLICY, acknowledged, exchange
from .packets import Reply
from .protocol import (
    ACK_OK, DEFAULT_WARMUP_FRAMES, FRAGMENT_SIZE, FRAME_BUFFER_SIZE,
    INPUT_MODE_STANDARD, REPORT_STREAMING, STREAM_FRAGMENT,
    STREAM_TIMEOUT_MS, SUB_INPUT_MODE, WHITE_PIXEL_SCALE,
)
from .resolution import ResolutionProfile
from .transport import Channel

log = logging.getLogger(__name__)

FrameSink = Callable[[int, bytes], None]


@dataclass
class SequenceState:
    previous: int = 0
    started: bool = False
    outstanding: Optional[int] = None
    warmup_remaining: int = DEFAULT_WARMUP_FRAMES
    frames: int = 0
    requests: int = 0


class FragmentStream:
    """Reassembles IR frames from streaming reports.

    Parameters
    ----------
    channel : Channel
        Channel left in IR streaming mode by the handshake.
    profile : ResolutionProfile
        Frame geometry; the sink receives ``profile.frame_size`` bytes.
    on_frame : callable
        ``on_frame(timestamp_ms, frame_bytes)`` for every completed frame.
    exposure : AutoExposure or None
        Run on the first fragment of each frame during warm-up.
    warmup_frames : int
        Warm-up length in completed frames. Exposure is adjusted on fragment 0
        reached in order, so the first frame of a stream never adjusts and
        ``warmup_frames=2`` gives one adjustment.
    """

    def __init__(
        self,
        channel: Channel,
        profile: ResolutionProfile,
        on_frame: FrameSink,
        exposure: Optional[AutoExposure] = None,
        warmup_frames: int = DEFAULT_WARMUP_FRAMES,
        timeout_ms: int = STREAM_TIMEOUT_MS,
        clock=time.time,
    ):
        self.channel = channel
        self.builder = channel.builder
        self.profile = profile
        self.on_frame = on_frame
        self.exposure = exposure
        self.warmup_frames = warmup_frames
        self.timeout_ms = timeout_ms
        self._clock = clock
        self.buffer = bytearray(FRAME_BUFFER_SIZE)
        self.state = SequenceState(warmup_remaining=warmup_frames)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Reset sequence tracking and prime the camera with an ack for 0."""
        self.state = SequenceState(warmup_remaining=self.warmup_frames)
        self._ack(0)

    def poll(self) -> None:
        """Receive one report and act on it."""
        self.process(self.channel.receive(self.timeout_ms))

    def run(self, stop_event: threading.Event) -> None:
        """Stream until *stop_event* is set, then take the camera out of IR mode.

        Transport errors propagate; the stop command is then skipped since
        the channel is gone.
        """
        self.start()
        while not stop_event.is_set():
            self.poll()
        self.stop()

    def stop(self) -> bool:
        """Switch input reports back to standard mode. Returns ``True`` if echoed."""
        outcome = exchange(
            self.channel,
            lambda: [self.builder.set_input_mode(INPUT_MODE_STANDARD)],
            acknowledged(ACK_OK, SUB_INPUT_MODE),
            STOP_POLICY,
        )
        if outcome is None:
            log.warning("Joy-Con did not confirm stop streaming")
            return False
        log.info("Streaming stopped after %d frames", self.state.frames)
        return True

    def process(self, reply: Reply) -> None:
        if reply.report_id != REPORT_STREAMING:
            return
        if reply.stream_type != STREAM_FRAGMENT:
            # Empty report: the camera dropped to high-latency polling.
            self._ack(self.state.previous)
            return

        state = self.state
        index = reply.fragment_index
        expected = (state.previous + 1) % self.profile.fragment_count

        if index == expected:
            self._accept_next(reply, index)
        elif index == 0 and not state.started:
            log.debug("stream start")
            self._ack(index)
            self._write(reply, index)
            state.previous = 0
            state.started = True
        elif index == state.previous:
            self._ack(index)
        elif state.outstanding is None:
            self._handle_gap(reply, index, expected)
        elif index == state.outstanding:
            log.debug("recovered fragment %d", index)
            self._ack(index)
            self._write(reply, index)
            state.outstanding = None
        else:
            self._ack(index)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accept_next(self, reply: Reply, index: int) -> None:
        state = self.state
        state.previous = index
        state.started = True
        self._ack(index)
        self._write(reply, index)

        if index == 0 and state.warmup_remaining > 0 and self.exposure is not None:
            self.exposure.adjust(reply.white_pixels * 100 // WHITE_PIXEL_SCALE)

        if index == self.profile.max_fragment:
            self._emit_frame()

    def _handle_gap(self, reply: Reply, index: int, expected: int) -> None:
        state = self.state
        if self.profile.supports_recovery:
            log.debug("missed fragment after %d, got %d", state.previous, index)
            self.channel.send(self.builder.missed_fragment_request(expected))
            state.requests += 1
            state.outstanding = (index - 1) % self.profile.fragment_count
        else:
            self._ack(index)
        self._write(reply, index)
        state.previous = index
        state.started = True

    def _emit_frame(self) -> None:
        state = self.state
        timestamp_ms = int(self._clock() * 1000)
        self.on_frame(timestamp_ms, bytes(self.buffer[:self.profile.frame_size]))
        state.frames += 1
        state.outstanding = None
        if state.warmup_remaining > 0:
            state.warmup_remaining -= 1

    def _ack(self, index: int) -> None:
        self.channel.send(self.builder.fragment_ack(index))

    def _write(self, reply: Reply, index: int) -> None:
        offset = FRAGMENT_SIZE * index
        self.buffer[offset:offset + FRAGMENT_SIZE] = reply.payload
