import pytest

from posprint.core.errors import UnsupportedCharacter
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
from posprint.printing import commands as cmd
from posprint.printing.encoder import BarcodeBlock, QRBlock, build_commands, encode, layout_job


def _receipt(**kw) -> ReceiptPayload:
    base = dict(
        header=BusinessHeader("Corner Shop", ("12 Main St",)),
        items=(LineItem("Coffee", "2.50", quantity="1", unit_price="2.50"),),
        totals=(LabeledValue("TOTAL", "2.50", emphasize=True),),
        currency="$",
    )
    base.update(kw)
    return ReceiptPayload(**base)


def _long_receipt() -> ReceiptPayload:
    return ReceiptPayload(
        header=BusinessHeader("The Extraordinarily Long Named Neighbourhood Grocery", ("Unit 7, 1234 Somewhere Boulevard, Springfield",)),
        title="INVOICE 0001-00004567",
        timestamp="2024-05-01 12:34",
        info=(LabeledValue("Cashier", "Alexandria Montgomery-Smythe"),),
        items=(
            LineItem("Organic free-range eggs, dozen, large brown, from the farm down the road", "12345.67", "12", "1028.81"),
            LineItem("X" * 120, "1.00"),
        ),
        totals=(LabeledValue("Subtotal", "12346.67"), LabeledValue("TOTAL", "12346.67", True)),
        payments=(LabeledValue("Card ending 4242", "12346.67"),),
        footer=("Thank you for shopping with us. Returns accepted within thirty days with receipt.",),
        currency="EUR ",
        barcode=BarcodePayload("0001-00004567", "CODE128", caption="0001-00004567 " * 5),
        qr=QRPayload("https://example.test/i/4567", caption="Scan to view your invoice online"),
    )


def test_example_receipt_layout():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_receipt())
    assert layout_job(job, 32).text_lines() == [
        "Corner Shop",
        "12 Main St",
        "-" * 32,
        "Coffee".ljust(26) + " $2.50",
        "  1 x $2.50",
        "-" * 32,
        "TOTAL".ljust(26) + " $2.50",
    ]


@pytest.mark.parametrize("columns", [16, 32, 42, 48])
def test_no_line_exceeds_device_width(columns):
    job = PrintJob(kind=JobKind.RECEIPT, payload=_long_receipt())
    layout = layout_job(job, columns)
    assert all(len(line) <= columns for line in layout.text_lines())
    for block in layout.blocks:
        if isinstance(block, (BarcodeBlock, QRBlock)) and block.caption:
            assert len(block.caption) <= columns

    # The same holds for the text that actually reaches the printer
    data = encode(job, columns).data
    texts = [op.text for op in cmd.decode(data) if isinstance(op, cmd.Text)]
    assert texts and all(len(t) <= columns for t in texts)


def test_encoding_is_deterministic():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_long_receipt(), options=PrintOptions(copies=2))
    assert encode(job, 42) == encode(job, 42)


def test_receipt_stream_shape():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_receipt())
    ops, subs = build_commands(job, 32, cut_paper=True, open_drawer=False)
    assert subs == []
    assert ops[:2] == [cmd.Init(), cmd.SelectCodePage(0)]
    assert ops[-2:] == [cmd.FeedLines(4), cmd.Cut("full")]
    assert not any(isinstance(op, cmd.DrawerPulse) for op in ops)


def test_open_drawer_pulses_before_the_body():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_receipt())
    ops, _ = build_commands(job, 32, open_drawer=True, drawer_pin=5, drawer_on_ms=60, drawer_off_ms=120)
    assert ops[2] == cmd.DrawerPulse(5, 60, 120)


def test_copies_repeat_body_and_cut():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_receipt(), options=PrintOptions(copies=3))
    ops, _ = build_commands(job, 32, cut_paper=True)
    assert sum(isinstance(op, cmd.Cut) for op in ops) == 3
    assert sum(op == cmd.Text("Corner Shop") for op in ops) == 3


def test_no_cut_when_disabled():
    job = PrintJob(kind=JobKind.RECEIPT, payload=_receipt(), options=PrintOptions(cut_paper=False))
    ops, _ = build_commands(job, 32)
    assert not any(isinstance(op, cmd.Cut) for op in ops)


def test_drawer_job_is_only_the_pulse():
    job = PrintJob(kind=JobKind.CASH_DRAWER_PULSE)
    assert encode(job, 42).data == b"\x1b@\x1bt\x00\x1bp\x00\x19\x32"

    custom = PrintJob(kind=JobKind.CASH_DRAWER_PULSE, payload=DrawerPulsePayload(pin=5, on_ms=100))
    ops, _ = build_commands(custom, 42, drawer_off_ms=200)
    assert ops[-1] == cmd.DrawerPulse(5, 100, 200)


def test_substitutions_are_reported():
    job = PrintJob(kind=JobKind.RAW_TEXT, payload=RawTextPayload("Price €5"))
    encoded = encode(job, 32)
    assert encoded.substitutions == ("€->EUR",)
    assert b"Price EUR5" in encoded.data


def test_code_page_selection():
    job = PrintJob(kind=JobKind.RAW_TEXT, payload=RawTextPayload("Crème brûlée"))
    encoded = encode(job, 32, code_page="windows-1252")
    assert encoded.code_page == "cp1252"
    assert encoded.data.startswith(b"\x1b@\x1bt\x10")
    assert "Crème brûlée".encode("cp1252") in encoded.data


def test_label_layout():
    job = PrintJob(kind=JobKind.LABEL, payload=LabelPayload("Olive Oil 1L", "9.99", "4006381333931", currency="$"))
    layout = layout_job(job, 32)
    assert layout.text_lines() == ["Olive Oil 1L", "$9.99"]
    assert layout.blocks[-1] == BarcodeBlock("EAN13", "4006381333931", "4006381333931")


def test_unencodable_barcode_raises():
    job = PrintJob(kind=JobKind.BARCODE, payload=BarcodePayload("not-digits", "EAN13"))
    with pytest.raises(UnsupportedCharacter):
        encode(job, 32)


def test_too_few_columns():
    job = PrintJob(kind=JobKind.RAW_TEXT, payload=RawTextPayload("x"))
    with pytest.raises(ValueError):
        encode(job, 8)


def test_payload_must_match_kind():
    with pytest.raises(TypeError):
        PrintJob(kind=JobKind.LABEL, payload=RawTextPayload("x"))


def test_control_bytes_in_text_cannot_reach_the_printer():
    payload = _receipt(
        header=BusinessHeader("Shop\x1bp\x00\x19\xfa", ("St\x7f",)),
        info=(LabeledValue("Cashier", "Ann\x1dV\x00"),),
        footer=("bye\x07",),
    )
    job = PrintJob(kind=JobKind.RECEIPT, payload=payload)
    encoded = encode(job, 32, cut_paper=False, open_drawer=False)
    ops = cmd.decode(encoded.data)
    assert not any(isinstance(op, (cmd.DrawerPulse, cmd.Cut, cmd.Unknown)) for op in ops)
    assert cmd.Text("Shop?p??ú") in ops
    assert {"0x1b->?", "0x00->?", "0x1d->?", "0x7f->?", "0x07->?"} <= set(encoded.substitutions)


def test_newlines_fold_in_two_column_rows():
    payload = ReceiptPayload(info=(LabeledValue("Table\n4", "Ann\nLee"),))
    lines = layout_job(PrintJob(kind=JobKind.RECEIPT, payload=payload), 32).text_lines()
    assert any(line.startswith("Table 4") and line.endswith("Ann Lee") for line in lines)


def test_drawer_times_are_rounded_to_the_pulse_unit():
    job = PrintJob(kind=JobKind.CASH_DRAWER_PULSE, payload=DrawerPulsePayload(on_ms=101))
    ops, _ = build_commands(job, 42, drawer_off_ms=75)
    assert ops[-1] == cmd.DrawerPulse(2, 100, 74)
    with pytest.raises(UnsupportedCharacter):
        cmd.DrawerPulse(2, 25, 100)


@pytest.mark.parametrize(
    "kind, payload, first",
    [
        (JobKind.RECEIPT, ReceiptPayload(title="Z REPORT"), "Z REPORT"),
        (JobKind.LABEL, LabelPayload("Tea", "1.00"), "Tea"),
        (JobKind.RAW_TEXT, RawTextPayload("hello"), "hello"),
    ],
)
def test_every_kind_lays_out_from_its_payload(kind, payload, first):
    layout = layout_job(PrintJob(kind=kind, payload=payload), 32)
    assert first in layout.text_lines()


def test_code_jobs_lay_out_a_single_block():
    barcode = layout_job(PrintJob(kind=JobKind.BARCODE, payload=BarcodePayload("12345", "CODE39")), 32)
    qr = layout_job(PrintJob(kind=JobKind.QR, payload=QRPayload("https://example.test", size=4)), 32)
    assert barcode.blocks == [BarcodeBlock("CODE39", "12345", None)]
    assert qr.blocks == [QRBlock("https://example.test", 4, None)]
