"""joycon-ir: stream the Joy-Con (R) IR camera over HID.

Quick start::

    from joycon_ir import JoyConCamera

    with JoyConCamera(resolution=240) as camera:
        frame = camera.get_frame()  # numpy uint8 (240, 320) or None

To consume frames in another process, run ``joycon-ir-stream`` and use
:class:`IRFrameObserver`.
"""

from .camera import CameraState, JoyConCamera
from .errors import (
    DeviceNotFoundError, InvalidStateError, JoyConError, ProtocolTimeout, TransportError,
)
from .handshake import DeviceInfo, HandshakeStep
from .observer import Frame, IRFrameObserver
from .protocol import DEFAULT_ZMQ_ENDPOINT, PRODUCT_ID, VENDOR_ID
from .resolution import PROFILES, ResolutionProfile, select_profile

__version__ = "0.1.0"

__all__ = [
    "JoyConCamera",
    "CameraState",
    "IRFrameObserver",
    "Frame",
    "DeviceInfo",
    "HandshakeStep",
    "ResolutionProfile",
    "PROFILES",
    "select_profile",
    "JoyConError",
    "DeviceNotFoundError",
    "TransportError",
    "ProtocolTimeout",
    "InvalidStateError",
    "DEFAULT_ZMQ_ENDPOINT",
    "VENDOR_ID",
    "PRODUCT_ID",
    "__version__",
]
