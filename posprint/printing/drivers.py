"""
Transport drivers: one per physical channel.

Each driver exposes open(), write(bytes), close() and is_available(), and maps
the failures of its library (CUPS/pywin32, pyusb via python-escpos, pyserial)
onto the print-core error hierarchy:

- the channel cannot be opened / device gone  -> TransportUnavailable
- a write fails after the channel opened      -> TransmissionFailed (retriable)
- the library reports a timeout               -> AttemptTimeout (retriable)
"""

from __future__ import annotations

import errno
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from posprint.core.config import PrintSettings
from posprint.core.errors import AttemptTimeout, DeviceNotFound, TransmissionFailed, TransportUnavailable
from posprint.core.models import DeviceDescriptor, TransportType
from posprint.printing.spooler import SpoolerBackend, default_spooler

logger = logging.getLogger(__name__)


class TransportDriver(ABC):
    def __init__(self, device: DeviceDescriptor) -> None:
        self.device = device
        self.is_open = False

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def write(self, data: bytes) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def is_available(self) -> bool: ...

    def __enter__(self) -> "TransportDriver":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SpoolerDriver(TransportDriver):
    """Submits each write() as one raw job to the OS spooler queue named after the device."""

    def __init__(
        self,
        device: DeviceDescriptor,
        backend: Optional[SpoolerBackend] = None,
        title: str = "posprint",
        timeout: float = 10.0,
    ) -> None:
        super().__init__(device)
        self.backend = backend or default_spooler(timeout)
        self.title = title

    def open(self) -> None:
        if not self.backend.has_printer(self.device.name):
            raise TransportUnavailable(f"spooler has no queue named {self.device.name!r}")
        self.is_open = True

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportUnavailable("driver is not open")
        self.backend.submit_raw(self.device.name, data, title=self.title)

    def submit_document(self, path: str, copies: int = 1) -> None:
        if not self.is_open:
            raise TransportUnavailable("driver is not open")
        self.backend.submit_document(self.device.name, path, copies=copies, title=self.title)

    def close(self) -> None:
        self.is_open = False

    def is_available(self) -> bool:
        try:
            return self.backend.has_printer(self.device.name)
        except (TransportUnavailable, AttemptTimeout):
            return False


def parse_usb_hint(hint: Optional[str]) -> Tuple[int, int]:
    """'usb:04b8:0e28' -> (0x04b8, 0x0e28)"""
    try:
        prefix, vid, pid = (hint or "").split(":")
        if prefix != "usb":
            raise ValueError(hint)
        return int(vid, 16), int(pid, 16)
    except ValueError as e:
        raise DeviceNotFound(f"invalid USB port hint: {hint!r}") from e


def parse_serial_hint(hint: Optional[str]) -> str:
    """'serial:/dev/ttyUSB0' -> '/dev/ttyUSB0'"""
    if not hint or not hint.startswith("serial:") or len(hint) <= len("serial:"):
        raise DeviceNotFound(f"invalid serial port hint: {hint!r}")
    return hint[len("serial:") :]


class EscposDriver(TransportDriver):
    """Common write/close path for python-escpos printer objects."""

    def __init__(self, device: DeviceDescriptor, timeout: float = 10.0) -> None:
        super().__init__(device)
        self.timeout = timeout
        self._printer = None

    @abstractmethod
    def _connect(self): ...

    def _translate(self, e: Exception, opening: bool) -> Exception:
        return (TransportUnavailable if opening else TransmissionFailed)(f"{self.device.name}: {e}")

    def open(self) -> None:
        try:
            self._printer = self._connect()
        except Exception as e:  # escpos/pyusb/pyserial errors
            raise self._translate(e, opening=True) from e
        self.is_open = True

    def write(self, data: bytes) -> None:
        if self._printer is None:
            raise TransportUnavailable("driver is not open")
        try:
            self._printer._raw(data)
        except Exception as e:
            raise self._translate(e, opening=False) from e

    def write_image(self, img) -> None:
        """Print a Pillow image as a raster (thermal devices only)."""
        if self._printer is None:
            raise TransportUnavailable("driver is not open")
        try:
            self._printer.image(img)
        except Exception as e:
            raise self._translate(e, opening=False) from e

    def close(self) -> None:
        printer, self._printer = self._printer, None
        self.is_open = False
        if printer is not None:
            try:
                printer.close()
            except Exception as e:
                logger.debug("Error closing %s: %s", self.device.name, e)


class UsbDriver(EscposDriver):
    def __init__(self, device: DeviceDescriptor, timeout: float = 10.0) -> None:
        super().__init__(device, timeout)
        self.vendor_id, self.product_id = parse_usb_hint(device.port_hint)

    def _connect(self):
        from escpos.printer import Usb

        p = Usb(self.vendor_id, self.product_id, timeout=int(self.timeout * 1000))
        p.open()
        return p

    def _translate(self, e: Exception, opening: bool) -> Exception:
        import usb.core
        from escpos.exceptions import DeviceNotFoundError

        if isinstance(e, DeviceNotFoundError):
            return TransportUnavailable(f"{self.device.name}: USB device not found")
        if isinstance(e, usb.core.USBTimeoutError):
            return AttemptTimeout(f"{self.device.name}: USB write timed out")
        if isinstance(e, (usb.core.USBError, OSError)) and getattr(e, "errno", None) == errno.ENODEV:
            # device unplugged
            return TransportUnavailable(f"{self.device.name}: USB device disconnected")
        if isinstance(e, usb.core.USBError) and getattr(e, "errno", None) in (errno.EBUSY, errno.EACCES):
            return TransportUnavailable(f"{self.device.name}: {e}")
        return super()._translate(e, opening)

    def is_available(self) -> bool:
        import usb.core

        try:
            return usb.core.find(idVendor=self.vendor_id, idProduct=self.product_id) is not None
        except usb.core.NoBackendError:
            return False


class SerialDriver(EscposDriver):
    def __init__(self, device: DeviceDescriptor, baudrate: int = 19200, timeout: float = 10.0) -> None:
        super().__init__(device, timeout)
        self.port = parse_serial_hint(device.port_hint)
        self.baudrate = baudrate

    def _connect(self):
        from escpos.printer import Serial

        p = Serial(devfile=self.port, baudrate=self.baudrate, timeout=self.timeout)
        p.open()
        return p

    def _translate(self, e: Exception, opening: bool) -> Exception:
        import serial
        from escpos.exceptions import DeviceNotFoundError

        if isinstance(e, serial.SerialTimeoutException):
            return AttemptTimeout(f"{self.device.name}: serial write timed out")
        if isinstance(e, DeviceNotFoundError):
            return TransportUnavailable(f"{self.device.name}: serial port {self.port} not found")
        return super()._translate(e, opening)

    def is_available(self) -> bool:
        from serial.tools import list_ports

        return any(p.device == self.port for p in list_ports.comports())


def driver_for(
    device: DeviceDescriptor,
    settings: Optional[PrintSettings] = None,
    spooler: Optional[SpoolerBackend] = None,
) -> TransportDriver:
    """Build the driver matching the device's transport."""
    settings = settings or PrintSettings()
    if device.transport == TransportType.SPOOLER:
        return SpoolerDriver(device, backend=spooler, timeout=settings.attempt_timeout_seconds)
    if device.transport == TransportType.USB:
        return UsbDriver(device, timeout=settings.attempt_timeout_seconds)
    if device.transport == TransportType.SERIAL:
        return SerialDriver(device, baudrate=settings.serial_baudrate, timeout=settings.attempt_timeout_seconds)
    raise TransportUnavailable(f"unsupported transport: {device.transport}")


__all__ = [
    "EscposDriver",
    "SerialDriver",
    "SpoolerDriver",
    "TransportDriver",
    "UsbDriver",
    "driver_for",
    "parse_serial_hint",
    "parse_usb_hint",
]
