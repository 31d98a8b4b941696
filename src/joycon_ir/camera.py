"""High-level API: stream IR images from a Joy-Con with one call.

``JoyConCamera`` opens the device, runs the handshake on the calling thread,
then hands the channel to a worker thread that reassembles frames. The
latest frame is kept as a numpy array; every frame is also passed to an
optional ``on_frame(timestamp_ms, frame_bytes)`` callback.

Example::

    from joycon_ir import JoyConCamera

    with JoyConCamera(resolution=120) as camera:
        while camera.is_running:
            frame = camera.get_frame()
            if frame is not None:
                print(frame.shape)
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import numpy as np

from .errors import InvalidStateError, JoyConError
from .exposure import AutoExposure, ExposureState
from .handshake import DeviceInfo, Handshake, HandshakeResult, HandshakeStep
from .observer import Frame
from .protocol import (
    DEFAULT_EXPOSURE_US, DEFAULT_RESOLUTION, DEFAULT_WARMUP_FRAMES,
    PRODUCT_ID, STREAM_TIMEOUT_MS, VENDOR_ID,
)
from .resolution import select_profile
from .stream import FragmentStream, FrameSink
from .transport import Channel, HidTransport, Transport

log = logging.getLogger(__name__)


class CameraState(Enum):
    DISCONNECTED = "disconnected"
    HANDSHAKE = "handshake"
    STREAMING = "streaming"
    STOPPING = "stopping"
    CLOSED = "closed"


_TRANSITIONS = {
    CameraState.DISCONNECTED: {CameraState.HANDSHAKE, CameraState.CLOSED},
    CameraState.HANDSHAKE: {CameraState.STREAMING, CameraState.CLOSED},
    CameraState.STREAMING: {CameraState.STOPPING, CameraState.CLOSED},
    CameraState.STOPPING: {CameraState.CLOSED},
    CameraState.CLOSED: set(),
}


class JoyConCamera:
    """Joy-Con IR camera driver.

    Parameters
    ----------
    resolution : int
        Vertical resolution: 240, 120, 60 or 30.
    on_frame : callable or None
        ``on_frame(timestamp_ms, frame_bytes)``, called on the worker thread.
    vendor_id, product_id : int
        HID ids of the device to open.
    transport : Transport or None
        Already opened byte channel. ``None`` opens the first matching HID
        device on :meth:`start`.
    exposure_us : int
        Initial exposure in microseconds.
    warmup_frames : int
        Frames during which auto-exposure is active.
    stream_timeout_ms : int
        Receive timeout while streaming.
    sleep : callable
        Settle delays of the handshake.
    """

    def __init__(
        self,
        resolution: int = DEFAULT_RESOLUTION,
        on_frame: Optional[FrameSink] = None,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
        transport: Optional[Transport] = None,
        exposure_us: int = DEFAULT_EXPOSURE_US,
        warmup_frames: int = DEFAULT_WARMUP_FRAMES,
        stream_timeout_ms: int = STREAM_TIMEOUT_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.profile = select_profile(resolution)
        self._on_frame = on_frame
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._transport = transport
        self._warmup_frames = warmup_frames
        self._stream_timeout_ms = stream_timeout_ms
        self._sleep = sleep

        self.exposure = ExposureState(exposure_us)
        self._state = CameraState.DISCONNECTED
        self._state_lock = threading.Lock()
        self.current_step: Optional[HandshakeStep] = None
        self.handshake_result: Optional[HandshakeResult] = None
        self.error: Optional[BaseException] = None

        self._channel: Optional[Channel] = None
        self._stream: Optional[FragmentStream] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._lock = threading.Lock()
        self._latest: Optional[Frame] = None
        self._frame_count = 0
        self._start_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> CameraState:
        return self._state

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self.handshake_result.device if self.handshake_result else None

    def start(self):
        """Open the device, run the handshake and start streaming.

        Raises
        ------
        DeviceNotFoundError
            If no Joy-Con is attached.
        ProtocolTimeout
            If a handshake step fails; ``code`` names the step.
        InvalidStateError
            If the camera was already started.
        """
        self._transition(CameraState.HANDSHAKE)
        try:
            if self._transport is None:
                self._transport = HidTransport.open(self._vendor_id, self._product_id)
            self._channel = Channel(self._transport)
            handshake = Handshake(self._channel, self.profile, self.exposure,
                                  sleep=self._sleep, on_step=self._on_step)
            self.handshake_result = handshake.run()
        except JoyConError as exc:
            self.error = exc
            self._close_channel()
            self._transition(CameraState.CLOSED)
            raise

        exposure = AutoExposure(self._channel.builder, self._channel.send, self.exposure)
        self._stream = FragmentStream(
            self._channel, self.profile, self._handle_frame, exposure,
            warmup_frames=self._warmup_frames, timeout_ms=self._stream_timeout_ms,
        )
        self._transition(CameraState.STREAMING)
        self._start_time = time.time()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._stream_loop, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        """Ask the worker to stop, wait for it, and release the channel."""
        with self._state_lock:
            # the worker may have closed the camera since the caller looked
            if self._state is CameraState.CLOSED:
                return
            if self._state is not CameraState.STREAMING:
                raise InvalidStateError(f"Cannot stop a camera in state {self._state.value}")
            log.debug("state %s -> %s", self._state.value, CameraState.STOPPING.value)
            self._state = CameraState.STOPPING
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            log.warning("Stream worker did not finish within %.1fs", timeout)

    def get_frame(self) -> Optional[np.ndarray]:
        """Most recent frame as a ``(height, width)`` ``uint8`` array, or ``None``."""
        with self._lock:
            return self._latest.image.copy() if self._latest is not None else None

    def get_latest(self) -> Optional[Frame]:
        """Most recent :class:`Frame`, or ``None``."""
        with self._lock:
            if self._latest is None:
                return None
            latest = self._latest
            return Frame(latest.image.copy(), latest.timestamp, latest.number)

    def get_stats(self) -> Dict[str, Any]:
        """Runtime statistics (frames, FPS, exposure, fragment recovery)."""
        elapsed = time.time() - self._start_time if self._start_time else 0.0
        with self._lock:
            frames = self._frame_count
        sequence = self._stream.state if self._stream is not None else None
        return {
            "source": "joycon-ir",
            "state": self._state.value,
            "resolution": f"{self.profile.width}x{self.profile.height}",
            "frames": frames,
            "fps": frames / elapsed if elapsed > 0 else 0.0,
            "uptime": elapsed,
            "exposure_us": self.exposure.exposure_us,
            "fragment_requests": sequence.requests if sequence else 0,
            "handshake_retries": (self.handshake_result.total_retries
                                  if self.handshake_result else 0),
        }

    @property
    def is_running(self) -> bool:
        """``True`` while the worker thread is streaming."""
        return (self._state is CameraState.STREAMING
                and self._thread is not None and self._thread.is_alive())

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: CameraState):
        with self._state_lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise InvalidStateError(
                    f"Cannot go from {self._state.value} to {new_state.value}")
            log.debug("state %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    def _on_step(self, step: HandshakeStep):
        self.current_step = step

    def _stream_loop(self):
        try:
            self._stream.run(self._stop_event)
        except Exception as exc:
            self.error = exc
            log.exception("IR stream failed")
        finally:
            self._close_channel()
            self._transition(CameraState.CLOSED)

    def _close_channel(self):
        if self._channel is not None:
            self._channel.close()
        elif self._transport is not None:
            self._transport.close()

    def _handle_frame(self, timestamp_ms: int, data: bytes):
        image = np.frombuffer(data, dtype=np.uint8).reshape(
            (self.profile.height, self.profile.width))
        with self._lock:
            self._frame_count += 1
            self._latest = Frame(image, timestamp_ms, self._frame_count)
            total = self._frame_count
        if total % 100 == 0:
            elapsed = time.time() - self._start_time
            log.info("%d frames, %.1f fps, exposure %d us",
                     total, total / elapsed, self.exposure.exposure_us)
        if self._on_frame is not None:
            self._on_frame(timestamp_ms, data)
