#!/usr/bin/env python3
"""Minimal example: stream Joy-Con IR frames and print the frame rate.

Prerequisites:
    1. Right Joy-Con paired over Bluetooth
    2. pip install joycon-ir

Usage:
    python examples/basic_consumer.py
    python examples/basic_consumer.py --resolution 60
"""

import argparse
import logging
import time

from joycon_ir import JoyConCamera, PROFILES


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--resolution", type=int, choices=sorted(PROFILES), default=240)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    with JoyConCamera(resolution=args.resolution) as camera:
        print("Streaming, press Ctrl+C to stop\n")

        count = 0
        last = None
        t0 = time.monotonic()

        try:
            while camera.is_running:
                latest = camera.get_latest()
                if latest is None or latest.number == last:
                    time.sleep(0.01)
                    continue

                last = latest.number
                count += 1
                if count % 30 == 0:
                    fps = count / (time.monotonic() - t0)
                    h, w = latest.shape
                    print(f"  frames={count}  fps={fps:.1f}  shape={w}x{h}  "
                          f"mean={latest.image.mean():.0f}")
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
