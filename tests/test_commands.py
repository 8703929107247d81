import pytest

from posprint.core.errors import UnsupportedCharacter
from posprint.printing import commands as cmd


@pytest.mark.parametrize(
    "op, expected",
    [
        (cmd.Init(), b"\x1b@"),
        (cmd.SelectCodePage(16), b"\x1bt\x10"),
        (cmd.Bold(True), b"\x1bE\x01"),
        (cmd.Bold(False), b"\x1bE\x00"),
        (cmd.Align("center"), b"\x1ba\x01"),
        (cmd.Align("right"), b"\x1ba\x02"),
        (cmd.FeedLines(4), b"\x1bd\x04"),
        (cmd.Cut("full"), b"\x1dV\x00"),
        (cmd.Cut("partial"), b"\x1dV\x01"),
        (cmd.DrawerPulse(2, 50, 100), b"\x1bp\x00\x19\x32"),
        (cmd.DrawerPulse(5, 100, 200), b"\x1bp\x01\x32\x64"),
        (cmd.LineFeed(), b"\n"),
    ],
)
def test_reference_byte_table(op, expected):
    assert op.encode() == expected


def test_barcode_bytes():
    assert cmd.Barcode("EAN13", "4006381333931").encode() == b"\x1dk" + bytes([67, 13]) + b"4006381333931"
    # CODE128 is sent in function B with the code set B selector
    assert cmd.Barcode("CODE128", "ABC").encode() == b"\x1dk" + bytes([73, 5]) + b"{BABC"


def test_qr_bytes():
    data = cmd.QR("hi", 4).encode()
    assert data.startswith(b"\x1d(k\x04\x001A2\x00")  # model 2
    assert b"\x1d(k\x03\x001C\x04" in data  # module size
    assert b"\x1d(k\x03\x001E1" in data  # error correction M
    assert b"\x1d(k\x05\x001P0hi" in data  # store
    assert data.endswith(b"\x1d(k\x03\x001Q0")  # print


def test_text_uses_code_page():
    assert cmd.Text("café").encode("cp437") == b"caf\x82"
    assert cmd.Text("café").encode("cp1252") == b"caf\xe9"


def test_decode_round_trip_of_named_operations():
    ops = [
        cmd.Init(),
        cmd.SelectCodePage(0),
        cmd.Align("center"),
        cmd.Bold(True),
        cmd.Text("HELLO"),
        cmd.LineFeed(),
        cmd.Bold(False),
        cmd.Barcode("CODE128", "A-1"),
        cmd.QR("https://example.test/r/42", 6),
        cmd.FeedLines(4),
        cmd.Cut("full"),
        cmd.DrawerPulse(5, 100, 200),
    ]
    assert cmd.decode(cmd.encode_all(ops)) == ops


def test_decode_reports_unknown_sequences():
    ops = cmd.decode(b"\x1b!\x08AB")
    assert ops == [cmd.Unknown(b"\x1b!"), cmd.Unknown(b"\x08"), cmd.Text("AB")]


def test_decode_truncated_escape_is_unknown():
    assert cmd.decode(b"OK\x1b") == [cmd.Text("OK"), cmd.Unknown(b"\x1b")]


def test_drawer_pulse_parameters_are_validated():
    with pytest.raises(UnsupportedCharacter):
        cmd.DrawerPulse(3, 50, 100)
    with pytest.raises(UnsupportedCharacter):
        cmd.DrawerPulse(2, 51, 100)
    with pytest.raises(UnsupportedCharacter):
        cmd.DrawerPulse(2, 50, 600)


@pytest.mark.parametrize(
    "symbology, value",
    [
        ("EAN13", "12AB"),
        ("EAN13", "123"),
        ("ITF", "123"),
        ("CODE39", "lower"),
        ("CODE128", "naïve"),
        ("NOPE", "1"),
    ],
)
def test_barcode_rejects_values_it_cannot_encode(symbology, value):
    with pytest.raises(UnsupportedCharacter):
        cmd.Barcode(symbology, value)


def test_malformed_operations_raise_value_error():
    with pytest.raises(ValueError):
        cmd.Align("justify")
    with pytest.raises(ValueError):
        cmd.FeedLines(300)
    with pytest.raises(ValueError):
        cmd.QR("x", 40)
