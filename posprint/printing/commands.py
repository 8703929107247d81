"""
Named ESC/POS operations and the reference byte table.

Each operation is a small frozen dataclass whose encode() returns exactly one
canonical byte sequence. decode() walks a byte stream against the same table
and reproduces the operations, reporting anything it does not recognise as
Unknown instead of failing.

Reference table:

    Init               ESC @
    SelectCodePage(n)  ESC t n
    Bold(on)           ESC E 1|0
    Align(a)           ESC a 0|1|2
    FeedLines(n)       ESC d n
    Cut(mode)          GS V 0 (full) | GS V 1 (partial)
    DrawerPulse        ESC p m t1 t2   (m=0 pin 2, m=1 pin 5; t in 2 ms units)
    Barcode            GS k m n d1..dn (function B)
    QR                 GS ( k  model 2 / size / EC level M / store / print
    LineFeed           LF
    Text               printable bytes in the active code page
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from posprint.core.errors import UnsupportedCharacter
from posprint.printing.codepages import DEFAULT_CODE_PAGE

logger = logging.getLogger(__name__)

ESC = 0x1B
GS = 0x1D
FS = 0x1C
DLE = 0x10
LF = 0x0A

ALIGN_CODES: Dict[str, int] = {"left": 0, "center": 1, "right": 2}
CUT_CODES: Dict[str, int] = {"full": 0, "partial": 1}
DRAWER_PINS: Dict[int, int] = {2: 0, 5: 1}

BARCODE_SYMBOLOGIES: Dict[str, int] = {
    "UPC-A": 65,
    "UPC-E": 66,
    "EAN13": 67,
    "EAN8": 68,
    "CODE39": 69,
    "ITF": 70,
    "CODABAR": 71,
    "CODE93": 72,
    "CODE128": 73,
}

_CODE39_CHARS = set("0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ $%*+-./")
_CODABAR_CHARS = set("0123456789ABCDabcd$+-./:")
_CODE128_SET_B = b"{B"

QR_MAX_BYTES = 7089


class Command:
    """Base class for named operations."""

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        raise NotImplementedError


@dataclass(frozen=True)
class Init(Command):
    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x40])


@dataclass(frozen=True)
class SelectCodePage(Command):
    number: int

    def __post_init__(self) -> None:
        if not 0 <= self.number <= 255:
            raise ValueError(f"code page number out of range: {self.number}")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x74, self.number])


@dataclass(frozen=True)
class Bold(Command):
    on: bool

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x45, 1 if self.on else 0])


@dataclass(frozen=True)
class Align(Command):
    alignment: str = "left"

    def __post_init__(self) -> None:
        if self.alignment not in ALIGN_CODES:
            raise ValueError(f"unknown alignment: {self.alignment}")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x61, ALIGN_CODES[self.alignment]])


@dataclass(frozen=True)
class FeedLines(Command):
    lines: int

    def __post_init__(self) -> None:
        if not 0 <= self.lines <= 255:
            raise ValueError(f"feed lines out of range: {self.lines}")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x64, self.lines])


@dataclass(frozen=True)
class Cut(Command):
    mode: str = "full"

    def __post_init__(self) -> None:
        if self.mode not in CUT_CODES:
            raise ValueError(f"unknown cut mode: {self.mode}")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([GS, 0x56, CUT_CODES[self.mode]])


def pulse_ms(ms: int) -> int:
    """Round a drawer pulse time down to the 2 ms unit ESC p counts in."""
    return ms - ms % 2


@dataclass(frozen=True)
class DrawerPulse(Command):
    """Kick-out pulse on drawer connector pin 2 or 5. Times are in milliseconds."""

    pin: int = 2
    on_ms: int = 50
    off_ms: int = 100

    def __post_init__(self) -> None:
        if self.pin not in DRAWER_PINS:
            raise UnsupportedCharacter(f"drawer pin must be 2 or 5, got {self.pin}")
        for label, value in (("on_ms", self.on_ms), ("off_ms", self.off_ms)):
            if not 0 <= value <= 510 or value % 2:
                raise UnsupportedCharacter(f"drawer {label} must be an even value in 0..510, got {value}")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([ESC, 0x70, DRAWER_PINS[self.pin], self.on_ms // 2, self.off_ms // 2])


def _check_barcode_value(symbology: str, value: str) -> None:
    if not value:
        raise UnsupportedCharacter("empty barcode value")
    if not value.isascii():
        raise UnsupportedCharacter(f"barcode value is not ASCII: {value!r}")
    digits_only = {
        "UPC-A": (11, 12),
        "UPC-E": (6, 7, 8, 11, 12),
        "EAN13": (12, 13),
        "EAN8": (7, 8),
    }
    if symbology in digits_only:
        if not value.isdigit() or len(value) not in digits_only[symbology]:
            raise UnsupportedCharacter(f"{symbology} needs {digits_only[symbology]} digits, got {value!r}")
    elif symbology == "ITF":
        if not value.isdigit() or len(value) % 2:
            raise UnsupportedCharacter(f"ITF needs an even number of digits, got {value!r}")
    elif symbology == "CODE39":
        if not set(value) <= _CODE39_CHARS:
            raise UnsupportedCharacter(f"CODE39 cannot encode {value!r}")
    elif symbology == "CODABAR":
        if not set(value) <= _CODABAR_CHARS:
            raise UnsupportedCharacter(f"CODABAR cannot encode {value!r}")
    if len(value) > 253:
        raise UnsupportedCharacter("barcode value too long")


@dataclass(frozen=True)
class Barcode(Command):
    symbology: str
    value: str

    def __post_init__(self) -> None:
        if self.symbology not in BARCODE_SYMBOLOGIES:
            raise UnsupportedCharacter(f"unknown barcode symbology: {self.symbology}")
        _check_barcode_value(self.symbology, self.value)

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        data = self.value.encode("ascii")
        if self.symbology == "CODE128":
            data = _CODE128_SET_B + data
        return bytes([GS, 0x6B, BARCODE_SYMBOLOGIES[self.symbology], len(data)]) + data


def _qr_block(fn: int, body: bytes) -> bytes:
    size = len(body) + 2
    return bytes([GS, 0x28, 0x6B, size & 0xFF, size >> 8, 0x31, fn]) + body


@dataclass(frozen=True)
class QR(Command):
    value: str
    size: int = 6

    def __post_init__(self) -> None:
        if not 1 <= self.size <= 16:
            raise ValueError(f"QR module size must be in 1..16, got {self.size}")
        if not self.value:
            raise UnsupportedCharacter("empty QR value")
        if len(self.value.encode("utf-8")) > QR_MAX_BYTES:
            raise UnsupportedCharacter("QR value too long")

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return b"".join(
            [
                _qr_block(0x41, bytes([0x32, 0x00])),  # model 2
                _qr_block(0x43, bytes([self.size])),
                _qr_block(0x45, bytes([0x31])),  # error correction M
                _qr_block(0x50, b"\x30" + self.value.encode("utf-8")),
                _qr_block(0x51, b"\x30"),
            ]
        )


@dataclass(frozen=True)
class LineFeed(Command):
    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return bytes([LF])


@dataclass(frozen=True)
class Text(Command):
    """Printable text. Callers transcode first; characters outside code_page become '?'."""

    text: str

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return self.text.encode(code_page, errors="replace")


@dataclass(frozen=True)
class Unknown(Command):
    data: bytes

    def encode(self, code_page: str = DEFAULT_CODE_PAGE) -> bytes:
        return self.data


def encode_all(commands: Sequence[Command], code_page: str = DEFAULT_CODE_PAGE) -> bytes:
    return b"".join(c.encode(code_page) for c in commands)


# Decoding


def _is_text_byte(b: int) -> bool:
    return b >= 0x20 and b != 0x7F


def _decode_qr(data: bytes, i: int):
    """Parse the five-block QR sequence starting at i; return (QR, next_index) or None."""
    blocks = []
    j = i
    for _ in range(5):
        if data[j : j + 3] != bytes([GS, 0x28, 0x6B]) or j + 7 > len(data):
            return None
        size = data[j + 3] | (data[j + 4] << 8)
        end = j + 5 + size
        if end > len(data) or data[j + 5] != 0x31:
            return None
        blocks.append((data[j + 6], data[j + 7 : end]))
        j = end
    fns = [fn for fn, _ in blocks]
    if fns != [0x41, 0x43, 0x45, 0x50, 0x51]:
        return None
    size_body = blocks[1][1]
    store_body = blocks[3][1]
    if len(size_body) != 1 or not store_body.startswith(b"\x30"):
        return None
    try:
        value = store_body[1:].decode("utf-8")
        return QR(value=value, size=size_body[0]), j
    except (UnicodeDecodeError, ValueError, UnsupportedCharacter):
        return None


def decode(data: bytes, code_page: str = DEFAULT_CODE_PAGE) -> List[Command]:
    """
    Decode a byte stream into named operations.

    Sequences outside the reference table, or truncated ones, are returned as
    Unknown(bytes). Runs of printable bytes become a single Text.
    """
    ops: List[Command] = []
    i = 0
    n = len(data)
    symbologies = {v: k for k, v in BARCODE_SYMBOLOGIES.items()}
    pins = {v: k for k, v in DRAWER_PINS.items()}
    aligns = {v: k for k, v in ALIGN_CODES.items()}
    cuts = {v: k for k, v in CUT_CODES.items()}

    def unknown(start: int, end: int) -> None:
        chunk = bytes(data[start:end])
        logger.debug("Unknown ESC/POS sequence: %s", chunk.hex(" "))
        ops.append(Unknown(chunk))

    while i < n:
        b = data[i]
        if b == LF:
            ops.append(LineFeed())
            i += 1
            continue
        if _is_text_byte(b):
            j = i
            while j < n and _is_text_byte(data[j]):
                j += 1
            ops.append(Text(bytes(data[i:j]).decode(code_page, errors="replace")))
            i = j
            continue
        if b == ESC and i + 1 < n:
            cmd = data[i + 1]
            if cmd == 0x40:
                ops.append(Init())
                i += 2
                continue
            if cmd == 0x70 and i + 4 < n and data[i + 2] in pins:
                try:
                    ops.append(DrawerPulse(pins[data[i + 2]], data[i + 3] * 2, data[i + 4] * 2))
                except UnsupportedCharacter:
                    unknown(i, i + 5)
                i += 5
                continue
            if i + 2 < n:
                arg = data[i + 2]
                if cmd == 0x74:
                    ops.append(SelectCodePage(arg))
                    i += 3
                    continue
                if cmd == 0x45:
                    ops.append(Bold(bool(arg & 1)))
                    i += 3
                    continue
                if cmd == 0x61 and arg in aligns:
                    ops.append(Align(aligns[arg]))
                    i += 3
                    continue
                if cmd == 0x64:
                    ops.append(FeedLines(arg))
                    i += 3
                    continue
            unknown(i, min(i + 2, n))
            i += 2
            continue
        if b == GS and i + 1 < n:
            cmd = data[i + 1]
            if cmd == 0x56 and i + 2 < n and data[i + 2] in cuts:
                ops.append(Cut(cuts[data[i + 2]]))
                i += 3
                continue
            if cmd == 0x6B and i + 3 < n and data[i + 2] in symbologies:
                length = data[i + 3]
                end = i + 4 + length
                if end <= n:
                    payload = bytes(data[i + 4 : end])
                    symbology = symbologies[data[i + 2]]
                    if symbology == "CODE128" and payload.startswith(_CODE128_SET_B):
                        payload = payload[len(_CODE128_SET_B) :]
                    try:
                        ops.append(Barcode(symbology, payload.decode("ascii")))
                    except (UnicodeDecodeError, UnsupportedCharacter):
                        unknown(i, end)
                    i = end
                    continue
            if cmd == 0x28 and i + 2 < n and data[i + 2] == 0x6B:
                parsed = _decode_qr(data, i)
                if parsed is not None:
                    ops.append(parsed[0])
                    i = parsed[1]
                    continue
                if i + 4 < n:
                    end = min(n, i + 5 + (data[i + 3] | (data[i + 4] << 8)))
                    unknown(i, end)
                    i = end
                    continue
            unknown(i, min(i + 2, n))
            i += 2
            continue
        # lone control byte (CR, DLE, FS, trailing ESC/GS, ...)
        unknown(i, i + 1)
        i += 1
    return ops


__all__ = [
    "ALIGN_CODES",
    "Align",
    "BARCODE_SYMBOLOGIES",
    "Barcode",
    "Bold",
    "Command",
    "Cut",
    "DrawerPulse",
    "FeedLines",
    "Init",
    "LineFeed",
    "QR",
    "SelectCodePage",
    "Text",
    "Unknown",
    "decode",
    "encode_all",
    "pulse_ms",
]
