"""Exceptions raised by the Joy-Con IR driver."""


class JoyConError(RuntimeError):
    """Base class for driver errors."""


class DeviceNotFoundError(JoyConError):
    """No attached HID device matches the requested vendor/product ids."""


class TransportError(JoyConError):
    """The HID channel is closed or an I/O call failed."""


class InvalidStateError(JoyConError):
    """Operation not allowed in the camera's current lifecycle state."""


class ProtocolTimeout(JoyConError):
    """A handshake step used its whole retry budget without a valid reply.

    ``code`` is the number of the step that failed, so callers can tell
    which protocol stage regressed.
    """

    def __init__(self, step, detail: str = ""):
        self.step = step
        self.code = int(step)
        self.detail = detail
        message = f"handshake step {self.code} ({step.name}) timed out"
        if detail:
            message += f": {detail}"
        super().__init__(message)
