"""ZMQ frame consumer: receives IR frames published by the receiver.

Decodes the frame header and keeps the latest frame as a ``(height, width)``
greyscale numpy array, so viewers and pipelines can run in a different
process from the HID driver.
"""

import logging
import struct
import threading
import time
from typing import Any, Dict, Optional, Tuple

import numpy as np
import zmq

from .protocol import DEFAULT_ZMQ_ENDPOINT, HEADER_FORMAT, HEADER_MAGIC, HEADER_SIZE

log = logging.getLogger(__name__)


class Frame:
    """A single IR frame."""

    __slots__ = ("image", "timestamp", "number", "shape")

    def __init__(self, image: np.ndarray, timestamp: int, number: int):
        self.image = image
        self.timestamp = timestamp  # milliseconds since the epoch
        self.number = number
        self.shape = image.shape


def pack_frame(number: int, timestamp_ms: int, width: int, height: int, data: bytes) -> bytes:
    """Wire message for one frame: header followed by raw pixels."""
    header = struct.pack(HEADER_FORMAT, HEADER_MAGIC, number, timestamp_ms, width, height)
    return header + data


def parse_frame(data: bytes) -> Tuple[int, int, np.ndarray]:
    """Decode a frame message into ``(number, timestamp_ms, image)``.

    Raises ValueError on invalid data.
    """
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Message too short: {len(data)} bytes")

    magic, number, timestamp_ms, width, height = struct.unpack(
        HEADER_FORMAT, data[:HEADER_SIZE])

    if magic != HEADER_MAGIC:
        raise ValueError(f"Bad magic: {magic!r}")

    expected_size = HEADER_SIZE + width * height
    if len(data) != expected_size:
        raise ValueError(f"Size mismatch: got {len(data)}, expected {expected_size}")

    image = np.frombuffer(data, dtype=np.uint8, offset=HEADER_SIZE).reshape((height, width))
    return number, timestamp_ms, image.copy()


class IRFrameObserver:
    """Receives IR frames via ZMQ and makes them available as numpy arrays.

    Usage::

        observer = IRFrameObserver()
        frame = observer.get_frame()  # numpy uint8 (height, width) or None
        observer.stop()
    """

    def __init__(self, zmq_endpoint: str = DEFAULT_ZMQ_ENDPOINT):
        self._endpoint = zmq_endpoint
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

        self._latest: Optional[Frame] = None
        self._frame_count = 0
        self._dropped = 0
        self._start_time = time.time()

        self._thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._thread.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_frame(self) -> Optional[np.ndarray]:
        """Most recent frame as ``uint8`` ``(height, width)``, or ``None``."""
        with self._lock:
            return self._latest.image.copy() if self._latest is not None else None

    def get_latest(self) -> Optional[Frame]:
        """Most recent :class:`Frame`, or ``None``."""
        with self._lock:
            latest = self._latest
            if latest is None:
                return None
            return Frame(latest.image.copy(), latest.timestamp, latest.number)

    def get_stats(self) -> Dict[str, Any]:
        elapsed = time.time() - self._start_time
        with self._lock:
            return {
                "source": "joycon-ir",
                "frames": self._frame_count,
                "dropped": self._dropped,
                "fps": self._frame_count / elapsed if elapsed > 0 else 0.0,
                "uptime": elapsed,
                "zmq_endpoint": self._endpoint,
            }

    def stop(self):
        """Stop the background receive thread."""
        self._stop_event.set()
        self._thread.join(timeout=2)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _receive_loop(self):
        ctx = zmq.Context()
        socket = ctx.socket(zmq.PULL)
        socket.connect(self._endpoint)

        poller = zmq.Poller()
        poller.register(socket, zmq.POLLIN)

        try:
            while not self._stop_event.is_set():
                events = dict(poller.poll(timeout=100))
                if socket not in events:
                    continue

                try:
                    number, timestamp_ms, image = parse_frame(socket.recv())
                except ValueError as exc:
                    log.debug("Dropping message: %s", exc)
                    with self._lock:
                        self._dropped += 1
                    continue

                with self._lock:
                    self._latest = Frame(image, timestamp_ms, number)
                    self._frame_count += 1
                    total = self._frame_count

                if total % 300 == 0:
                    elapsed = time.time() - self._start_time
                    log.info("%.1f fps (total=%d)", total / elapsed, total)
        except zmq.ZMQError:
            log.exception("ZMQ error in receive thread")
        finally:
            socket.close()
            ctx.term()
