"""
Data model shared by the registry, encoder, dispatcher and diagnostics.

All types here are immutable snapshots. A registry refresh produces a new tuple of
DeviceDescriptor; a PrintJob is created once per request and consumed once by the
dispatcher; PrintResult and DiagnosticReport are returned to callers and never
stored by the core.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from posprint.core.errors import ErrorKind


class TransportType(str, Enum):
    SPOOLER = "spooler"
    USB = "usb"
    SERIAL = "serial"


class DeviceStatus(str, Enum):
    READY = "ready"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class JobKind(str, Enum):
    RECEIPT = "receipt"
    LABEL = "label"
    BARCODE = "barcode"
    QR = "qr"
    RAW_TEXT = "raw_text"
    CASH_DRAWER_PULSE = "cash_drawer_pulse"


class TransportKind(str, Enum):
    RAW_PROTOCOL = "RawProtocolTransport"
    RENDERED_DOCUMENT = "RenderedDocumentTransport"
    PDF_EXPORT = "PdfExportTransport"


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class DeviceDescriptor:
    name: str
    transport: TransportType
    is_default: bool = False
    is_thermal: bool = False
    port_hint: Optional[str] = None
    status: DeviceStatus = DeviceStatus.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "transport": self.transport.value,
            "is_default": self.is_default,
            "is_thermal": self.is_thermal,
            "port_hint": self.port_hint,
            "status": self.status.value,
        }


# Payloads. Money, tax and dates arrive as display strings computed by the caller.


@dataclass(frozen=True)
class BusinessHeader:
    name: str
    lines: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LabeledValue:
    label: str
    value: str
    emphasize: bool = False


@dataclass(frozen=True)
class LineItem:
    description: str
    amount: str
    quantity: Optional[str] = None
    unit_price: Optional[str] = None


@dataclass(frozen=True)
class BarcodePayload:
    value: str
    symbology: str = "CODE128"
    caption: Optional[str] = None


@dataclass(frozen=True)
class QRPayload:
    value: str
    size: int = 6
    caption: Optional[str] = None


@dataclass(frozen=True)
class ReceiptPayload:
    header: Optional[BusinessHeader] = None
    title: Optional[str] = None
    info: Tuple[LabeledValue, ...] = ()
    items: Tuple[LineItem, ...] = ()
    totals: Tuple[LabeledValue, ...] = ()
    payments: Tuple[LabeledValue, ...] = ()
    footer: Tuple[str, ...] = ()
    currency: str = ""
    timestamp: Optional[str] = None
    barcode: Optional[BarcodePayload] = None
    qr: Optional[QRPayload] = None


@dataclass(frozen=True)
class LabelPayload:
    product_name: str
    price: str
    barcode: Optional[str] = None
    symbology: str = "EAN13"
    currency: str = ""


@dataclass(frozen=True)
class RawTextPayload:
    text: str


@dataclass(frozen=True)
class DrawerPulsePayload:
    """Unset fields fall back to the drawer settings supplied at submit time."""

    pin: Optional[int] = None
    on_ms: Optional[int] = None
    off_ms: Optional[int] = None


Payload = Union[
    ReceiptPayload,
    LabelPayload,
    BarcodePayload,
    QRPayload,
    RawTextPayload,
    DrawerPulsePayload,
]

PAYLOAD_TYPES: Dict[JobKind, type] = {
    JobKind.RECEIPT: ReceiptPayload,
    JobKind.LABEL: LabelPayload,
    JobKind.BARCODE: BarcodePayload,
    JobKind.QR: QRPayload,
    JobKind.RAW_TEXT: RawTextPayload,
    JobKind.CASH_DRAWER_PULSE: DrawerPulsePayload,
}


@dataclass(frozen=True)
class PrintOptions:
    """
    Per-job options. cut_paper/open_drawer left as None take the
    auto-cut/auto-open-drawer settings of the caller.
    """

    copies: int = 1
    cut_paper: Optional[bool] = None
    open_drawer: Optional[bool] = None

    def __post_init__(self) -> None:
        if int(self.copies) < 1:
            raise ValueError("copies must be >= 1")


@dataclass(frozen=True)
class PrintJob:
    kind: JobKind
    payload: Payload = field(default_factory=DrawerPulsePayload)
    target_device_name: Optional[str] = None
    options: PrintOptions = field(default_factory=PrintOptions)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(f"{self.kind.value} job expects {expected.__name__}, got {type(self.payload).__name__}")


@dataclass(frozen=True)
class EncodedCommand:
    data: bytes
    width: int
    code_page: str = "cp437"
    substitutions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AttemptOutcome:
    transport: TransportKind
    attempt: int
    success: bool
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    elapsed_ms: float = 0.0
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transport": self.transport.value,
            "attempt": self.attempt,
            "success": self.success,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "elapsed_ms": round(self.elapsed_ms, 1),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class PrintResult:
    """
    Outcome of one submit. `attempts` lists the failed attempts in the order
    they happened; the successful transport is in `transport_used`.
    """

    success: bool
    job_id: str
    device_name: Optional[str] = None
    transport_used: Optional[TransportKind] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    attempts: Tuple[AttemptOutcome, ...] = ()
    warnings: Tuple[str, ...] = ()
    output_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "job_id": self.job_id,
            "device_name": self.device_name,
            "transport_used": self.transport_used.value if self.transport_used else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "attempts": [a.to_dict() for a in self.attempts],
            "warnings": list(self.warnings),
            "output_path": self.output_path,
        }


@dataclass(frozen=True)
class DiagnosticReport:
    severity: Severity
    generated_at: str
    devices: Tuple[DeviceDescriptor, ...]
    device_status: Dict[str, str]
    messages: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    configured: Dict[str, Optional[str]] = field(default_factory=dict)
    last_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def thermal_devices(self) -> Tuple[DeviceDescriptor, ...]:
        return tuple(d for d in self.devices if d.is_thermal)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "generated_at": self.generated_at,
            "devices": [d.to_dict() for d in self.devices],
            "device_status": dict(self.device_status),
            "thermal_count": len(self.thermal_devices),
            "messages": list(self.messages),
            "recommendations": list(self.recommendations),
            "configured": dict(self.configured),
            "last_results": dict(self.last_results),
        }


__all__ = [
    "AttemptOutcome",
    "BarcodePayload",
    "BusinessHeader",
    "DeviceDescriptor",
    "DeviceStatus",
    "DiagnosticReport",
    "DrawerPulsePayload",
    "EncodedCommand",
    "JobKind",
    "LabelPayload",
    "LabeledValue",
    "LineItem",
    "PAYLOAD_TYPES",
    "Payload",
    "PrintJob",
    "PrintOptions",
    "PrintResult",
    "QRPayload",
    "RawTextPayload",
    "ReceiptPayload",
    "Severity",
    "TransportKind",
    "TransportType",
]
