from __future__ import annotations

"""
Pydantic schemas for the posprint API (v1).

These models validate incoming print requests and convert them into the
immutable PrintJob the dispatcher consumes. Limits are applied through the
validation context passed at runtime so they stay env-driven.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from posprint.core.models import (
    BarcodePayload,
    BusinessHeader,
    DrawerPulsePayload,
    JobKind,
    LabeledValue,
    LabelPayload,
    LineItem,
    PrintJob,
    PrintOptions,
    QRPayload,
    RawTextPayload,
    ReceiptPayload,
)
from posprint.printing.commands import BARCODE_SYMBOLOGIES, pulse_ms

DEFAULT_LIMITS: Dict[str, int] = {
    "MAX_ITEMS": 500,
    "MAX_TEXT_LEN": 4000,
    "MAX_COPIES": 10,
}


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def _check_symbology(v: str) -> str:
    v = v.strip().upper()
    if v not in BARCODE_SYMBOLOGIES:
        raise ValueError(f"symbology must be one of {', '.join(BARCODE_SYMBOLOGIES)}")
    return v


def _limit(info: ValidationInfo, key: str) -> int:
    limits = (info.context or {}).get("limits") or {}
    return int(limits.get(key, DEFAULT_LIMITS[key]))


class BusinessHeaderIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    lines: List[str] = Field(default_factory=list, max_length=10)


class LabeledValueIn(BaseModel):
    label: str = Field(max_length=120)
    value: str = Field(max_length=120)
    emphasize: bool = False


class LineItemIn(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    amount: str = Field(max_length=40)
    quantity: Optional[str] = Field(default=None, max_length=20)
    unit_price: Optional[str] = Field(default=None, max_length=40)

    @field_validator("description")
    @classmethod
    def _no_control(cls, v: str) -> str:
        if _has_control_chars(v):
            raise ValueError("description contains control characters")
        return v


class BarcodeIn(BaseModel):
    value: str = Field(min_length=1, max_length=253)
    symbology: str = "CODE128"
    caption: Optional[str] = Field(default=None, max_length=120)

    @field_validator("symbology")
    @classmethod
    def _known_symbology(cls, v: str) -> str:
        return _check_symbology(v)

    def to_payload(self) -> BarcodePayload:
        return BarcodePayload(value=self.value, symbology=self.symbology, caption=self.caption)


class QRIn(BaseModel):
    value: str = Field(min_length=1, max_length=2048)
    size: int = Field(default=6, ge=1, le=16)
    caption: Optional[str] = Field(default=None, max_length=120)

    def to_payload(self) -> QRPayload:
        return QRPayload(value=self.value, size=self.size, caption=self.caption)


class ReceiptIn(BaseModel):
    header: Optional[BusinessHeaderIn] = None
    title: Optional[str] = Field(default=None, max_length=120)
    info: List[LabeledValueIn] = Field(default_factory=list)
    items: List[LineItemIn] = Field(default_factory=list)
    totals: List[LabeledValueIn] = Field(default_factory=list)
    payments: List[LabeledValueIn] = Field(default_factory=list)
    footer: List[str] = Field(default_factory=list)
    currency: str = Field(default="", max_length=8)
    timestamp: Optional[str] = Field(default=None, max_length=64)
    barcode: Optional[BarcodeIn] = None
    qr: Optional[QRIn] = None

    @field_validator("items")
    @classmethod
    def _items_limit(cls, v: List[LineItemIn], info: ValidationInfo) -> List[LineItemIn]:
        max_items = _limit(info, "MAX_ITEMS")
        if len(v) > max_items:
            raise ValueError(f"too many items (max {max_items})")
        return v

    def to_payload(self) -> ReceiptPayload:
        return ReceiptPayload(
            header=BusinessHeader(self.header.name, tuple(self.header.lines)) if self.header else None,
            title=self.title,
            info=tuple(LabeledValue(i.label, i.value, i.emphasize) for i in self.info),
            items=tuple(LineItem(i.description, i.amount, i.quantity, i.unit_price) for i in self.items),
            totals=tuple(LabeledValue(i.label, i.value, i.emphasize) for i in self.totals),
            payments=tuple(LabeledValue(i.label, i.value, i.emphasize) for i in self.payments),
            footer=tuple(self.footer),
            currency=self.currency,
            timestamp=self.timestamp,
            barcode=self.barcode.to_payload() if self.barcode else None,
            qr=self.qr.to_payload() if self.qr else None,
        )


class LabelIn(BaseModel):
    product_name: str = Field(min_length=1, max_length=200)
    price: str = Field(min_length=1, max_length=40)
    barcode: Optional[str] = Field(default=None, max_length=64)
    symbology: str = "EAN13"
    currency: str = Field(default="", max_length=8)

    @field_validator("symbology")
    @classmethod
    def _known_symbology(cls, v: str) -> str:
        return _check_symbology(v)

    def to_payload(self) -> LabelPayload:
        return LabelPayload(self.product_name, self.price, self.barcode, self.symbology, self.currency)


class RawTextIn(BaseModel):
    text: str = Field(min_length=1)

    @field_validator("text")
    @classmethod
    def _text_limit(cls, v: str, info: ValidationInfo) -> str:
        max_len = _limit(info, "MAX_TEXT_LEN")
        if len(v) > max_len:
            raise ValueError(f"text too long (max {max_len})")
        if _has_control_chars(v):
            raise ValueError("text contains control characters")
        return v

    def to_payload(self) -> RawTextPayload:
        return RawTextPayload(self.text)


class DrawerIn(BaseModel):
    pin: Optional[int] = None
    on_ms: Optional[int] = Field(default=None, ge=0, le=510)
    off_ms: Optional[int] = Field(default=None, ge=0, le=510)

    @field_validator("pin")
    @classmethod
    def _pin(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in (2, 5):
            raise ValueError("pin must be 2 or 5")
        return v

    @field_validator("on_ms", "off_ms")
    @classmethod
    def _pulse_unit(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else pulse_ms(v)

    def to_payload(self) -> DrawerPulsePayload:
        return DrawerPulsePayload(self.pin, self.on_ms, self.off_ms)


PAYLOAD_MODELS: Dict[JobKind, type] = {
    JobKind.RECEIPT: ReceiptIn,
    JobKind.LABEL: LabelIn,
    JobKind.BARCODE: BarcodeIn,
    JobKind.QR: QRIn,
    JobKind.RAW_TEXT: RawTextIn,
    JobKind.CASH_DRAWER_PULSE: DrawerIn,
}


class OptionsIn(BaseModel):
    copies: int = Field(default=1, ge=1)
    cut_paper: Optional[bool] = None
    open_drawer: Optional[bool] = None

    @field_validator("copies")
    @classmethod
    def _copies_limit(cls, v: int, info: ValidationInfo) -> int:
        max_copies = _limit(info, "MAX_COPIES")
        if v > max_copies:
            raise ValueError(f"copies must be <= {max_copies}")
        return v


class PrintRequest(BaseModel):
    """
    POST /api/v1/print body:

    {"kind": "receipt", "target_device_name": "POS-80" | null,
     "payload": {...kind-specific...}, "options": {"copies": 1, "cut_paper": true}}
    """

    kind: JobKind
    target_device_name: Optional[str] = Field(default=None, max_length=200)
    payload: Any = Field(default_factory=dict, validate_default=True)
    options: OptionsIn = Field(default_factory=OptionsIn)

    @field_validator("target_device_name")
    @classmethod
    def _blank_target(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @field_validator("payload")
    @classmethod
    def _parse_payload(cls, v: Any, info: ValidationInfo) -> Any:
        kind = info.data.get("kind")
        if kind is None:
            # kind already failed validation
            return v
        if not isinstance(v, dict):
            raise ValueError("payload must be an object")
        try:
            return PAYLOAD_MODELS[kind].model_validate(v, context=info.context)
        except ValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ValueError(f"{loc}: {first.get('msg')}" if loc else first.get("msg")) from None

    def to_print_job(self) -> PrintJob:
        return PrintJob(
            kind=self.kind,
            payload=self.payload.to_payload(),
            target_device_name=self.target_device_name,
            options=PrintOptions(
                copies=self.options.copies,
                cut_paper=self.options.cut_paper,
                open_drawer=self.options.open_drawer,
            ),
        )


class DeviceNameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


__all__ = [
    "BarcodeIn",
    "DeviceNameRequest",
    "DrawerIn",
    "LabelIn",
    "OptionsIn",
    "PAYLOAD_MODELS",
    "PrintRequest",
    "QRIn",
    "RawTextIn",
    "ReceiptIn",
]
