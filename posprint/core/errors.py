"""
Error taxonomy for the print core.

Every failure that can happen while resolving, encoding or transmitting a job is
expressed as a PrintError subclass carrying an ErrorKind. The dispatcher records
these in the attempt log of a PrintResult; none of them escape past submit().
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NO_DEVICE_CONFIGURED = "NoDeviceConfigured"
    DEVICE_NOT_FOUND = "DeviceNotFound"
    TRANSPORT_UNAVAILABLE = "TransportUnavailable"
    TIMEOUT = "Timeout"
    PROTOCOL_REJECTED = "ProtocolRejected"
    UNSUPPORTED_CHARACTER = "UnsupportedCharacter"


class PrintError(Exception):
    """
    Base class for print-core failures.

    Attributes:
        kind: the ErrorKind reported to callers
        retriable: whether the same transport may be attempted again
    """

    kind: ErrorKind = ErrorKind.TRANSPORT_UNAVAILABLE
    retriable: bool = False

    def __init__(self, message: str = "", *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if kind is not None:
            self.kind = kind

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.__class__.__name__


class NoDeviceConfigured(PrintError):
    kind = ErrorKind.NO_DEVICE_CONFIGURED


class DeviceNotFound(PrintError):
    kind = ErrorKind.DEVICE_NOT_FOUND


class TransportUnavailable(PrintError):
    """The channel could not be opened (device missing, handle busy, spooler absent)."""

    kind = ErrorKind.TRANSPORT_UNAVAILABLE


class TransmissionFailed(PrintError):
    """The channel opened but a write or job submission failed."""

    kind = ErrorKind.TRANSPORT_UNAVAILABLE
    retriable = True


class AttemptTimeout(PrintError):
    kind = ErrorKind.TIMEOUT
    retriable = True


class ProtocolRejected(PrintError):
    kind = ErrorKind.PROTOCOL_REJECTED


class UnsupportedCharacter(PrintError):
    kind = ErrorKind.UNSUPPORTED_CHARACTER


__all__ = [
    "AttemptTimeout",
    "DeviceNotFound",
    "ErrorKind",
    "NoDeviceConfigured",
    "PrintError",
    "ProtocolRejected",
    "TransmissionFailed",
    "TransportUnavailable",
    "UnsupportedCharacter",
]
