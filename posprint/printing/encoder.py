"""
Receipt/label layout and ESC/POS encoding.

layout_job() turns a PrintJob payload into a column-bounded list of blocks
(text lines, barcode, QR). The same layout feeds both encode() for the raw
protocol path and the Pillow renderer for the document paths, so the two
presentations never drift apart.

encode() is pure: identical inputs give identical bytes. Timestamps, totals
and currency strings come from the payload; nothing is computed here.
"""

from __future__ import annotations

import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union, cast

from posprint.core.models import (
    BarcodePayload,
    DrawerPulsePayload,
    EncodedCommand,
    JobKind,
    LabeledValue,
    LabelPayload,
    PrintJob,
    QRPayload,
    RawTextPayload,
    ReceiptPayload,
)
from posprint.printing import commands as cmd
from posprint.printing.codepages import (
    DEFAULT_CODE_PAGE,
    PLACEHOLDER,
    code_page_number,
    normalize_code_page,
    transcode,
)

logger = logging.getLogger(__name__)

MIN_COLUMNS = 16
TRAILING_FEED = 4
# C0 controls except newline, plus DEL
CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b-\x1f\x7f]")


@dataclass(frozen=True)
class TextLine:
    text: str = ""
    align: str = "left"
    bold: bool = False


@dataclass(frozen=True)
class BarcodeBlock:
    symbology: str
    value: str
    caption: Optional[str] = None


@dataclass(frozen=True)
class QRBlock:
    value: str
    size: int = 6
    caption: Optional[str] = None


Block = Union[TextLine, BarcodeBlock, QRBlock]


@dataclass
class Layout:
    columns: int
    blocks: List[Block] = field(default_factory=list)
    substitutions: List[str] = field(default_factory=list)

    def text_lines(self) -> List[str]:
        return [b.text for b in self.blocks if isinstance(b, TextLine)]


class _LayoutBuilder:
    def __init__(self, columns: int, code_page: Optional[str]) -> None:
        if columns < MIN_COLUMNS:
            raise ValueError(f"columns must be >= {MIN_COLUMNS}, got {columns}")
        self.layout = Layout(columns=columns)
        self.code_page = code_page

    @property
    def columns(self) -> int:
        return self.layout.columns

    def clean(self, text: Optional[str], inline: bool = False) -> str:
        """
        Make visible text printable: control bytes become PLACEHOLDER, then
        the text is transcoded. inline=True also folds newlines into spaces.
        """
        text = (text or "").replace("\t", " ").replace("\r", "")
        if inline:
            text = text.replace("\n", " ")
        text = CONTROL_CHARS.sub(self._scrub, text)
        if self.code_page is None:
            return text
        safe, subs = transcode(text, self.code_page)
        for s in subs:
            self._note(s)
        return safe

    def _note(self, substitution: str) -> None:
        if substitution not in self.layout.substitutions:
            self.layout.substitutions.append(substitution)

    def _scrub(self, match: re.Match[str]) -> str:
        self._note(f"0x{ord(match.group()):02x}->{PLACEHOLDER}")
        return PLACEHOLDER

    def line(self, text: str = "", align: str = "left", bold: bool = False) -> None:
        self.layout.blocks.append(TextLine(text[: self.columns], align, bold))

    def wrapped(self, text: Optional[str], align: str = "left", bold: bool = False) -> None:
        text = self.clean(text)
        for raw_line in text.split("\n"):
            if not raw_line.strip():
                self.line("", align, bold)
                continue
            for part in textwrap.wrap(raw_line, width=self.columns, break_long_words=True, break_on_hyphens=False):
                self.line(part, align, bold)

    def separator(self, char: str = "-") -> None:
        self.line(char * self.columns)

    def two_column(self, left: str, right: str, bold: bool = False) -> None:
        """Left text hard-cut to the space remaining after the right-aligned value."""
        left = self.clean(left, inline=True)
        right = self.clean(right, inline=True)[: self.columns]
        room = self.columns - len(right) - 1
        if room <= 0:
            self.line(right.rjust(self.columns), bold=bold)
            return
        self.line(left[:room].ljust(room) + " " + right, bold=bold)

    def labeled(self, items: Tuple[LabeledValue, ...], currency: str = "") -> None:
        for lv in items:
            value = f"{currency}{lv.value}" if currency else lv.value
            self.two_column(lv.label, value, bold=lv.emphasize)

    def barcode(self, value: str, symbology: str, caption: Optional[str]) -> None:
        self.layout.blocks.append(
            BarcodeBlock(symbology=symbology.upper(), value=value, caption=self.clean(caption, inline=True)[: self.columns] if caption else None)
        )

    def qr(self, value: str, size: int, caption: Optional[str]) -> None:
        self.layout.blocks.append(
            QRBlock(value=value, size=size, caption=self.clean(caption, inline=True)[: self.columns] if caption else None)
        )


def _layout_receipt(b: _LayoutBuilder, p: ReceiptPayload) -> None:
    if p.header:
        b.wrapped(p.header.name, align="center", bold=True)
        for extra in p.header.lines:
            b.wrapped(extra, align="center")
    if p.title:
        b.line()
        b.wrapped(p.title, align="center", bold=True)
    if p.timestamp:
        b.wrapped(p.timestamp, align="center")
    if p.info:
        b.separator()
        b.labeled(p.info)
    if p.items:
        b.separator()
        for item in p.items:
            amount = f"{p.currency}{item.amount}" if p.currency else item.amount
            b.two_column(item.description, amount)
            if item.quantity and item.unit_price:
                unit = f"{p.currency}{item.unit_price}" if p.currency else item.unit_price
                b.line("  " + b.clean(f"{item.quantity} x {unit}", inline=True))
    if p.totals:
        b.separator()
        b.labeled(p.totals, p.currency)
    if p.payments:
        b.separator()
        b.labeled(p.payments, p.currency)
    if p.footer:
        b.line()
        for text in p.footer:
            b.wrapped(text, align="center")
    if p.barcode:
        b.line()
        b.barcode(p.barcode.value, p.barcode.symbology, p.barcode.caption)
    if p.qr:
        b.line()
        b.qr(p.qr.value, p.qr.size, p.qr.caption)


def _layout_label(b: _LayoutBuilder, p: LabelPayload) -> None:
    b.wrapped(p.product_name, align="center", bold=True)
    price = f"{p.currency}{p.price}" if p.currency else p.price
    b.wrapped(price, align="center", bold=True)
    if p.barcode:
        b.barcode(p.barcode, p.symbology, p.barcode)


def layout_job(job: PrintJob, columns: int, code_page: Optional[str] = DEFAULT_CODE_PAGE) -> Layout:
    """
    Lay out the job body. code_page=None skips transcoding (used by the
    renderer, which draws Unicode directly).
    """
    b = _LayoutBuilder(columns, code_page)
    p = job.payload
    if job.kind == JobKind.RECEIPT:
        _layout_receipt(b, cast(ReceiptPayload, p))
    elif job.kind == JobKind.LABEL:
        _layout_label(b, cast(LabelPayload, p))
    elif job.kind == JobKind.BARCODE:
        barcode = cast(BarcodePayload, p)
        b.barcode(barcode.value, barcode.symbology, barcode.caption)
    elif job.kind == JobKind.QR:
        qr = cast(QRPayload, p)
        b.qr(qr.value, qr.size, qr.caption)
    elif job.kind == JobKind.RAW_TEXT:
        b.wrapped(cast(RawTextPayload, p).text)
    return b.layout


def _body_commands(layout: Layout) -> List[cmd.Command]:
    ops: List[cmd.Command] = []
    align = "left"
    bold = False
    for block in layout.blocks:
        if isinstance(block, TextLine):
            if block.align != align:
                align = block.align
                ops.append(cmd.Align(align))
            if block.bold != bold:
                bold = block.bold
                ops.append(cmd.Bold(bold))
            if block.text:
                ops.append(cmd.Text(block.text))
            ops.append(cmd.LineFeed())
            continue
        if align != "center":
            align = "center"
            ops.append(cmd.Align("center"))
        if bold:
            bold = False
            ops.append(cmd.Bold(False))
        if isinstance(block, BarcodeBlock):
            ops.append(cmd.Barcode(block.symbology, block.value))
        else:
            ops.append(cmd.QR(block.value, block.size))
        ops.append(cmd.LineFeed())
        if block.caption:
            ops.append(cmd.Text(block.caption))
            ops.append(cmd.LineFeed())
    if bold:
        ops.append(cmd.Bold(False))
    if align != "left":
        ops.append(cmd.Align("left"))
    return ops


def build_commands(
    job: PrintJob,
    columns: int,
    *,
    code_page: str = DEFAULT_CODE_PAGE,
    cut_paper: Optional[bool] = None,
    open_drawer: Optional[bool] = None,
    drawer_pin: int = 2,
    drawer_on_ms: int = 50,
    drawer_off_ms: int = 100,
) -> Tuple[List[cmd.Command], List[str]]:
    """
    Return the named operation list for a job plus the character substitutions
    applied to its text.

    Raises UnsupportedCharacter when a control value (drawer parameters,
    barcode/QR data) cannot be expressed. Visible text never raises.
    """
    code_page = normalize_code_page(code_page)
    ops: List[cmd.Command] = [cmd.Init(), cmd.SelectCodePage(code_page_number(code_page))]

    if job.kind == JobKind.CASH_DRAWER_PULSE:
        p = cast(DrawerPulsePayload, job.payload)
        ops.append(
            cmd.DrawerPulse(
                pin=p.pin if p.pin is not None else drawer_pin,
                on_ms=cmd.pulse_ms(p.on_ms if p.on_ms is not None else drawer_on_ms),
                off_ms=cmd.pulse_ms(p.off_ms if p.off_ms is not None else drawer_off_ms),
            )
        )
        return ops, []

    if job.options.open_drawer if open_drawer is None else open_drawer:
        ops.append(cmd.DrawerPulse(pin=drawer_pin, on_ms=cmd.pulse_ms(drawer_on_ms), off_ms=cmd.pulse_ms(drawer_off_ms)))

    layout = layout_job(job, columns, code_page)
    body = _body_commands(layout)
    cut = job.options.cut_paper if cut_paper is None else cut_paper
    for _ in range(job.options.copies):
        ops.extend(body)
        ops.append(cmd.FeedLines(TRAILING_FEED))
        if cut:
            ops.append(cmd.Cut("full"))
    return ops, layout.substitutions


def encode(job: PrintJob, columns: int, **kwargs) -> EncodedCommand:
    """
    Encode a job into the ESC/POS byte stream for a device with `columns`
    character columns. Keyword arguments are passed to build_commands().
    """
    code_page = normalize_code_page(kwargs.pop("code_page", DEFAULT_CODE_PAGE))
    ops, subs = build_commands(job, columns, code_page=code_page, **kwargs)
    data = cmd.encode_all(ops, code_page)
    if subs:
        logger.info("Job %s: substituted %d character(s) for %s", job.job_id, len(subs), code_page)
    return EncodedCommand(data=data, width=columns, code_page=code_page, substitutions=tuple(subs))


__all__ = [
    "BarcodeBlock",
    "Block",
    "Layout",
    "QRBlock",
    "TextLine",
    "build_commands",
    "encode",
    "layout_job",
]
