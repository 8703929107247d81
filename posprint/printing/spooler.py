"""
OS print-spooler backends.

- CupsSpooler: lpstat for listing, lp for submission (Linux/macOS)
- Win32Spooler: win32print/win32api from pywin32 (Windows)

Both raise the print-core error hierarchy; nothing library-specific escapes.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from posprint.core.errors import AttemptTimeout, TransmissionFailed, TransportUnavailable
from posprint.core.models import DeviceStatus

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 15.0


@dataclass(frozen=True)
class SpoolerPrinter:
    name: str
    is_default: bool = False
    status: DeviceStatus = DeviceStatus.UNKNOWN
    port_hint: Optional[str] = None


class SpoolerBackend(ABC):
    @abstractmethod
    def list_printers(self) -> List[SpoolerPrinter]: ...

    @abstractmethod
    def submit_raw(self, printer: str, data: bytes, title: str = "posprint") -> None: ...

    @abstractmethod
    def submit_document(self, printer: str, path: str, copies: int = 1, title: str = "posprint") -> None: ...

    def has_printer(self, printer: str) -> bool:
        return any(p.name == printer for p in self.list_printers())


class CupsSpooler(SpoolerBackend):
    """CUPS via the lpstat/lp command-line tools."""

    def __init__(self, timeout: float = COMMAND_TIMEOUT) -> None:
        self.timeout = timeout

    def _run(self, args: List[str], data: Optional[bytes] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(args, input=data, capture_output=True, timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            raise TransportUnavailable(f"{args[0]} not found; CUPS may not be installed") from e
        except subprocess.TimeoutExpired as e:
            raise AttemptTimeout(f"{args[0]} timed out after {self.timeout:.0f}s") from e

    @staticmethod
    def _text(out: bytes) -> str:
        return out.decode("utf-8", errors="replace")

    def list_printers(self) -> List[SpoolerPrinter]:
        res = self._run(["lpstat", "-p"])
        if res.returncode != 0:
            # lpstat exits non-zero when no destinations exist
            logger.debug("lpstat -p exited %s: %s", res.returncode, self._text(res.stderr).strip())
            return []

        default = None
        res_d = self._run(["lpstat", "-d"])
        line = self._text(res_d.stdout).strip()
        if ":" in line and "no system default" not in line:
            default = line.split(":", 1)[1].strip() or None

        uris = {}
        res_v = self._run(["lpstat", "-v"])
        for line in self._text(res_v.stdout).splitlines():
            # "device for NAME: usb://EPSON/TM-T20"
            if line.startswith("device for ") and ":" in line[len("device for ") :]:
                name, uri = line[len("device for ") :].split(":", 1)
                uris[name.strip()] = uri.strip()

        printers: List[SpoolerPrinter] = []
        for line in self._text(res.stdout).splitlines():
            parts = line.split()
            if len(parts) < 3 or parts[0] != "printer":
                continue
            name = parts[1]
            state = " ".join(parts[2:]).lower()
            status = DeviceStatus.OFFLINE if "disabled" in state else DeviceStatus.READY
            printers.append(SpoolerPrinter(name=name, is_default=name == default, status=status, port_hint=uris.get(name)))
        return printers

    def _check(self, res: subprocess.CompletedProcess, printer: str) -> None:
        if res.returncode == 0:
            return
        err = self._text(res.stderr).strip() or f"lp exited with {res.returncode}"
        lowered = err.lower()
        if "does not exist" in lowered or "unknown destination" in lowered or "not accepting" in lowered:
            raise TransportUnavailable(f"{printer}: {err}")
        raise TransmissionFailed(f"{printer}: {err}")

    def submit_raw(self, printer: str, data: bytes, title: str = "posprint") -> None:
        res = self._run(["lp", "-d", printer, "-o", "raw", "-t", title], data=data)
        self._check(res, printer)
        logger.info("Raw job submitted to %s: %s", printer, self._text(res.stdout).strip())

    def submit_document(self, printer: str, path: str, copies: int = 1, title: str = "posprint") -> None:
        res = self._run(["lp", "-d", printer, "-n", str(max(1, copies)), "-o", "fit-to-page", "-t", title, path])
        self._check(res, printer)
        logger.info("Document %s submitted to %s: %s", path, printer, self._text(res.stdout).strip())


class Win32Spooler(SpoolerBackend):
    """Windows spooler through pywin32."""

    @staticmethod
    def _win32print():
        try:
            import win32print  # type: ignore
        except ImportError as e:
            raise TransportUnavailable("pywin32 is not installed") from e
        return win32print

    def list_printers(self) -> List[SpoolerPrinter]:
        win32print = self._win32print()
        flags = win32print.PRINTER_ENUM_LOCAL | win32print.PRINTER_ENUM_CONNECTIONS
        try:
            default = win32print.GetDefaultPrinter()
        except Exception:  # raises pywintypes.error when no default is set
            default = None
        printers: List[SpoolerPrinter] = []
        for entry in win32print.EnumPrinters(flags, None, 2):
            name = entry["pPrinterName"]
            offline = bool(entry.get("Status", 0) & win32print.PRINTER_STATUS_OFFLINE)
            printers.append(
                SpoolerPrinter(
                    name=name,
                    is_default=name == default,
                    status=DeviceStatus.OFFLINE if offline else DeviceStatus.READY,
                    port_hint=entry.get("pPortName") or None,
                )
            )
        return printers

    def submit_raw(self, printer: str, data: bytes, title: str = "posprint") -> None:
        win32print = self._win32print()
        try:
            handle = win32print.OpenPrinter(printer)
        except Exception as e:  # pywintypes.error
            raise TransportUnavailable(f"{printer}: {e}") from e
        try:
            win32print.StartDocPrinter(handle, 1, (title, None, "RAW"))
            try:
                win32print.StartPagePrinter(handle)
                win32print.WritePrinter(handle, data)
                win32print.EndPagePrinter(handle)
            finally:
                win32print.EndDocPrinter(handle)
        except Exception as e:
            raise TransmissionFailed(f"{printer}: {e}") from e
        finally:
            win32print.ClosePrinter(handle)

    def submit_document(self, printer: str, path: str, copies: int = 1, title: str = "posprint") -> None:
        try:
            import win32api  # type: ignore
        except ImportError as e:
            raise TransportUnavailable("pywin32 is not installed") from e
        for _ in range(max(1, copies)):
            try:
                win32api.ShellExecute(0, "printto", path, f'"{printer}"', ".", 0)
            except Exception as e:
                raise TransmissionFailed(f"{printer}: {e}") from e


def default_spooler(timeout: float = COMMAND_TIMEOUT) -> SpoolerBackend:
    if sys.platform == "win32":
        return Win32Spooler()
    return CupsSpooler(timeout=timeout)


__all__ = [
    "CupsSpooler",
    "SpoolerBackend",
    "SpoolerPrinter",
    "Win32Spooler",
    "default_spooler",
]
