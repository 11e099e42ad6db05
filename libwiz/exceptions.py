"""Exceptions raised by libwiz."""


class WizError(Exception):
    """Base class for all libwiz errors."""


class TransportNotReadyError(WizError, RuntimeError):
    """
    Raised when the UDP transport is used while it is not bound.

    This covers sending before start() has completed and sending after
    close(). It is a programming error and is always raised synchronously.
    """


class ProtocolError(WizError, ValueError):
    """
    An inbound datagram could not be understood.

    Never raised to callers; it is delivered inside an ErrorEvent so the
    receive loop keeps running.
    """

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
