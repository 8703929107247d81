"""
Device registry: discovery, thermal classification and the device snapshot.

Three sources are merged on refresh():
- SpoolerSource: printers known to the OS spooler (CUPS or Windows)
- UsbSource: USB printer-class interfaces and known receipt-printer vendors (pyusb)
- SerialSource: serial ports that look like receipt printers (pyserial)

Entries are de-duplicated by normalized name with spooler entries winning. The
snapshot is an immutable tuple replaced atomically; readers never see a partial list.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from posprint.core.models import DeviceDescriptor, DeviceStatus, TransportType
from posprint.printing.spooler import SpoolerBackend, default_spooler

logger = logging.getLogger(__name__)

THERMAL_KEYWORDS: Tuple[str, ...] = (
    "thermal",
    "térmica",
    "termica",
    "receipt",
    "recibo",
    "ticket",
    "pos",
    "58mm",
    "80mm",
    "escpos",
    "esc/pos",
    "tm-",
    "tmt",
    "epson tm",
    "bixolon",
    "citizen",
    "star tsp",
    "tsp",
    "rongta",
    "xprinter",
    "xp-",
    "zjiang",
    "gprinter",
    "cbt",
)

# Vendors whose USB/serial devices are receipt printers or the adapters they ship with
THERMAL_VENDORS: Dict[int, str] = {
    0x04B8: "Epson",
    0x0519: "Star Micronics",
    0x067B: "Prolific",
    0x1D90: "Citizen",
    0x2730: "Citizen",
    0x1504: "Bixolon",
    0x0416: "Xprinter",
    0x0483: "Xprinter",
    0x0DD4: "Custom",
    0x0619: "Seiko",
}

USB_PRINTER_CLASS = 0x07


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").strip()).lower()


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str]:
    # A keyword must start a word; one ending in a letter or digit must not
    # run on into more letters ("pos-80" and "tsp100" match, "postscript" does not).
    parts = []
    for k in keywords:
        tail = r"(?![a-z])" if k[-1].isalnum() else ""
        parts.append(rf"(?<![a-z]){re.escape(k)}{tail}")
    return re.compile("|".join(parts))


THERMAL_NAME_PATTERN = _keyword_pattern(THERMAL_KEYWORDS)


def has_thermal_keyword(text: str) -> bool:
    return THERMAL_NAME_PATTERN.search(normalize_name(text)) is not None


def classify_thermal(
    name: str,
    transport: TransportType,
    class_code: Optional[int] = None,
    vendor_id: Optional[int] = None,
) -> bool:
    """
    Heuristic thermal detection: a keyword in the name, or a USB/serial device
    with the printer class code or a known receipt-printer vendor id.
    """
    if has_thermal_keyword(name):
        return True
    if transport in (TransportType.USB, TransportType.SERIAL):
        if class_code == USB_PRINTER_CLASS:
            return True
        if vendor_id is not None and vendor_id in THERMAL_VENDORS:
            return True
    return False


@dataclass(frozen=True)
class Candidate:
    """A device as reported by one source, before classification."""

    name: str
    transport: TransportType
    is_default: bool = False
    port_hint: Optional[str] = None
    status: DeviceStatus = DeviceStatus.UNKNOWN
    class_code: Optional[int] = None
    vendor_id: Optional[int] = None


class DeviceSource(ABC):
    name: str = "source"

    @abstractmethod
    def scan(self) -> List[Candidate]: ...


class SpoolerSource(DeviceSource):
    name = "spooler"

    def __init__(self, backend: Optional[SpoolerBackend] = None) -> None:
        self.backend = backend or default_spooler()

    def scan(self) -> List[Candidate]:
        return [
            Candidate(
                name=p.name,
                transport=TransportType.SPOOLER,
                is_default=p.is_default,
                port_hint=p.port_hint,
                status=p.status,
            )
            for p in self.backend.list_printers()
        ]


class UsbSource(DeviceSource):
    name = "usb"

    @staticmethod
    def _string(dev, index) -> str:
        import usb.core
        import usb.util

        if not index:
            return ""
        try:
            return usb.util.get_string(dev, index) or ""
        except (ValueError, usb.core.USBError):
            # No permission to read descriptors or no langid
            return ""

    @staticmethod
    def _printer_interface(dev) -> bool:
        import usb.core

        try:
            cfg = dev.get_active_configuration()
        except usb.core.USBError:
            return False
        return any(intf.bInterfaceClass == USB_PRINTER_CLASS for intf in cfg)

    def scan(self) -> List[Candidate]:
        import usb.core

        out: List[Candidate] = []
        for dev in usb.core.find(find_all=True) or []:
            vid, pid = int(dev.idVendor), int(dev.idProduct)
            is_printer = dev.bDeviceClass == USB_PRINTER_CLASS or self._printer_interface(dev)
            if not is_printer and vid not in THERMAL_VENDORS:
                continue
            label = " ".join(
                s for s in (self._string(dev, dev.iManufacturer) or THERMAL_VENDORS.get(vid, ""), self._string(dev, dev.iProduct)) if s
            )
            out.append(
                Candidate(
                    name=label or f"USB Printer {vid:04x}:{pid:04x}",
                    transport=TransportType.USB,
                    port_hint=f"usb:{vid:04x}:{pid:04x}",
                    status=DeviceStatus.READY,
                    class_code=USB_PRINTER_CLASS if is_printer else None,
                    vendor_id=vid,
                )
            )
        return out


class SerialSource(DeviceSource):
    name = "serial"

    def scan(self) -> List[Candidate]:
        from serial.tools import list_ports

        out: List[Candidate] = []
        for port in list_ports.comports():
            text = " ".join(s for s in (port.manufacturer, port.product, port.description) if s)
            vid = port.vid
            if not (vid in THERMAL_VENDORS or has_thermal_keyword(text)):
                continue
            name = port.product or (port.description if port.description and port.description != "n/a" else port.device)
            out.append(
                Candidate(
                    name=name,
                    transport=TransportType.SERIAL,
                    port_hint=f"serial:{port.device}",
                    status=DeviceStatus.READY,
                    vendor_id=vid,
                )
            )
        return out


def default_sources() -> List[DeviceSource]:
    return [SpoolerSource(), UsbSource(), SerialSource()]


class DeviceRegistry:
    """
    Holds the last discovered device snapshot. The core performs no background
    polling; callers invoke refresh() explicitly.
    """

    def __init__(
        self,
        sources: Optional[Sequence[DeviceSource]] = None,
        thermal_overrides: Optional[Mapping[str, bool]] = None,
    ) -> None:
        self._sources: List[DeviceSource] = list(sources) if sources is not None else default_sources()
        self._overrides: Dict[str, bool] = {}
        self.set_thermal_overrides(thermal_overrides)
        self._snapshot: Tuple[DeviceDescriptor, ...] = ()
        self._refresh_lock = threading.Lock()
        self.last_errors: Dict[str, str] = {}

    def set_thermal_overrides(self, overrides: Optional[Mapping[str, bool]]) -> None:
        self._overrides = {normalize_name(k): bool(v) for k, v in (overrides or {}).items()}

    def is_thermal(self, candidate: Candidate) -> bool:
        override = self._overrides.get(normalize_name(candidate.name))
        if override is not None:
            return override
        return classify_thermal(candidate.name, candidate.transport, candidate.class_code, candidate.vendor_id)

    def classify_thermal(self, name: str, transport: TransportType) -> bool:
        return self.is_thermal(Candidate(name=name, transport=transport))

    def _merge(self, candidates: Iterable[Candidate]) -> Tuple[DeviceDescriptor, ...]:
        seen: Dict[str, DeviceDescriptor] = {}
        for c in candidates:
            key = normalize_name(c.name)
            if not key:
                continue
            if key in seen:
                logger.debug("Duplicate device %r via %s ignored", c.name, c.transport.value)
                continue
            seen[key] = DeviceDescriptor(
                name=c.name,
                transport=c.transport,
                is_default=c.is_default,
                is_thermal=self.is_thermal(c),
                port_hint=c.port_hint,
                status=c.status,
            )
        devices = list(seen.values())
        # At most one default survives
        defaults = [d for d in devices if d.is_default]
        for extra in defaults[1:]:
            devices[devices.index(extra)] = replace(extra, is_default=False)
        return tuple(devices)

    def refresh(self, thermal_overrides: Optional[Mapping[str, bool]] = None) -> List[DeviceDescriptor]:
        """
        Re-enumerate all sources and swap in a new snapshot. A failing source is
        logged and skipped; zero devices is a valid result.
        """
        with self._refresh_lock:
            if thermal_overrides is not None:
                self.set_thermal_overrides(thermal_overrides)
            candidates: List[Candidate] = []
            errors: Dict[str, str] = {}
            for source in self._sources:
                try:
                    found = source.scan()
                except Exception as e:  # any backend/library failure
                    logger.warning("Device source %s failed: %s", source.name, e)
                    errors[source.name] = str(e)
                    continue
                logger.info("Device source %s: %d device(s)", source.name, len(found))
                candidates.extend(found)
            snapshot = self._merge(candidates)
            self._snapshot = snapshot
            self.last_errors = errors
        logger.info("Registry refreshed: %d device(s), %d thermal", len(snapshot), sum(d.is_thermal for d in snapshot))
        return list(snapshot)

    def current(self) -> List[DeviceDescriptor]:
        return list(self._snapshot)

    def snapshot(self) -> Tuple[DeviceDescriptor, ...]:
        return self._snapshot

    def find(self, name: Optional[str]) -> Optional[DeviceDescriptor]:
        if not name:
            return None
        snap = self._snapshot
        for d in snap:
            if d.name == name:
                return d
        key = normalize_name(name)
        for d in snap:
            if normalize_name(d.name) == key:
                return d
        return None

    def system_default(self) -> Optional[DeviceDescriptor]:
        return next((d for d in self._snapshot if d.is_default), None)

    def thermal_devices(self) -> List[DeviceDescriptor]:
        return [d for d in self._snapshot if d.is_thermal]


__all__ = [
    "Candidate",
    "DeviceRegistry",
    "DeviceSource",
    "SerialSource",
    "SpoolerSource",
    "THERMAL_KEYWORDS",
    "THERMAL_NAME_PATTERN",
    "THERMAL_VENDORS",
    "UsbSource",
    "classify_thermal",
    "default_sources",
    "has_thermal_keyword",
    "normalize_name",
]
