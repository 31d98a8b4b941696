"""Joy-Con IR receiver: drives the camera and publishes frames over ZMQ.

Opens the Joy-Con over HID, runs the handshake, and pushes every completed
frame to a ZMQ PUSH socket for consumers such as :class:`IRFrameObserver`.

Usage:
    joycon-ir-stream
    joycon-ir-stream --resolution 120 --zmq-endpoint tcp://127.0.0.1:5565 -v
    python -m joycon_ir.receiver --resolution 60

Protocol:
    Header: magic(4) + frame_number(4) + timestamp_ms(8) + width(4) + height(4)
    Total header: 24 bytes, followed by width * height greyscale bytes (uint8)

Exit status is 0 after a clean stop, the handshake step number when the
handshake times out, and 1 for any other failure.
"""

import argparse
import logging
import signal
import sys
import time

import zmq

from .camera import JoyConCamera
from .errors import JoyConError, ProtocolTimeout
from .observer import pack_frame
from .protocol import (
    DEFAULT_EXPOSURE_US, DEFAULT_RESOLUTION, DEFAULT_WARMUP_FRAMES,
    DEFAULT_ZMQ_ENDPOINT, MAX_EXPOSURE_US, PRODUCT_ID, VENDOR_ID,
)
from .resolution import PROFILES, ResolutionProfile, select_profile

log = logging.getLogger(__name__)


class FramePublisher:
    """Pushes frames of one resolution over ZMQ, dropping them if the consumer lags.

    Usage::

        with FramePublisher(profile, "tcp://127.0.0.1:5565") as publisher:
            camera = JoyConCamera(on_frame=publisher.publish)
    """

    def __init__(self, profile: ResolutionProfile, zmq_endpoint: str = DEFAULT_ZMQ_ENDPOINT):
        self.profile = profile
        self._ctx = zmq.Context()
        self._socket = self._ctx.socket(zmq.PUSH)
        self._socket.setsockopt(zmq.SNDHWM, 2)  # drop old frames if consumer is slow
        self._socket.bind(zmq_endpoint)
        log.info("ZMQ bound to %s", zmq_endpoint)

        self.sent = 0
        self.dropped = 0
        self._number = 0
        self._start_time = time.monotonic()

    def publish(self, timestamp_ms: int, data: bytes) -> bool:
        """Send one frame. Returns ``False`` if it was dropped."""
        self._number += 1
        message = pack_frame(self._number, timestamp_ms,
                             self.profile.width, self.profile.height, data)
        try:
            self._socket.send(message, zmq.NOBLOCK)
        except zmq.Again:
            self.dropped += 1
            return False

        self.sent += 1
        if self.sent == 1:
            log.info("First frame published (%dx%d, %d bytes)",
                     self.profile.width, self.profile.height, len(data))
        elif self.sent % 300 == 0:
            elapsed = time.monotonic() - self._start_time
            log.info("%.1f fps published (sent=%d, dropped=%d)",
                     self.sent / elapsed, self.sent, self.dropped)
        return True

    def close(self):
        self._socket.close(linger=0)
        self._ctx.term()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def run(resolution=DEFAULT_RESOLUTION, zmq_endpoint=DEFAULT_ZMQ_ENDPOINT,
        vendor_id=VENDOR_ID, product_id=PRODUCT_ID,
        exposure_us=DEFAULT_EXPOSURE_US, warmup_frames=DEFAULT_WARMUP_FRAMES) -> int:
    """Stream until SIGINT/SIGTERM or a stream failure. Returns the exit status."""
    with FramePublisher(select_profile(resolution), zmq_endpoint) as publisher:
        camera = JoyConCamera(
            resolution=resolution,
            on_frame=publisher.publish,
            vendor_id=vendor_id,
            product_id=product_id,
            exposure_us=exposure_us,
            warmup_frames=warmup_frames,
        )

        try:
            camera.start()
        except ProtocolTimeout as exc:
            log.error("%s", exc)
            return exc.code
        except JoyConError as exc:
            log.error("%s", exc)
            return 1

        device = camera.device_info
        log.info("Streaming %dx%d from %s. Press Ctrl+C to stop.",
                 camera.profile.width, camera.profile.height, device.serial_number or "Joy-Con")

        shutdown = False

        def handle_signal(sig, frame):
            nonlocal shutdown
            shutdown = True

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        while not shutdown and camera.is_running:
            time.sleep(0.1)

        log.info("Shutting down...")
        camera.stop()
        stats = camera.get_stats()
        log.info("Done: %d frames, %d published, %d dropped, %d fragment requests",
                 stats["frames"], publisher.sent, publisher.dropped,
                 stats["fragment_requests"])
        return 1 if camera.error is not None else 0


def _int(value: str) -> int:
    return int(value, 0)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Joy-Con IR camera receiver (ZMQ publisher)")
    parser.add_argument("--resolution", type=int, choices=sorted(PROFILES, reverse=True),
                        default=DEFAULT_RESOLUTION, help="Vertical resolution (default: 240)")
    parser.add_argument("--zmq-endpoint", default=DEFAULT_ZMQ_ENDPOINT)
    parser.add_argument("--vendor-id", type=_int, default=VENDOR_ID)
    parser.add_argument("--product-id", type=_int, default=PRODUCT_ID)
    parser.add_argument("--exposure", type=int, default=DEFAULT_EXPOSURE_US,
                        help=f"Initial exposure in microseconds (0-{MAX_EXPOSURE_US})")
    parser.add_argument("--warmup-frames", type=int, default=DEFAULT_WARMUP_FRAMES,
                        help="Frames during which auto-exposure runs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if not 0 <= args.exposure <= MAX_EXPOSURE_US:
        parser.error(f"--exposure must be between 0 and {MAX_EXPOSURE_US}")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    sys.exit(run(args.resolution, args.zmq_endpoint, args.vendor_id, args.product_id,
                 args.exposure, args.warmup_frames))


if __name__ == "__main__":
    main()
