import subprocess
import sys

import pytest

from posprint.core.errors import AttemptTimeout, TransmissionFailed, TransportUnavailable
from posprint.core.models import DeviceStatus
from posprint.printing.spooler import CupsSpooler, Win32Spooler

LPSTAT = {
    ("lpstat", "-p"): (0, "printer POS80 is idle.  enabled since Mon 01 Jan 2026\nprinter Laser disabled since Tue 02 Jan 2026 -\n"),
    ("lpstat", "-d"): (0, "system default destination: POS80\n"),
    ("lpstat", "-v"): (0, "device for POS80: usb://EPSON/TM-T20?serial=123\ndevice for Laser: ipp://10.0.0.5/ipp\n"),
}


class FakeRun:
    def __init__(self, table=None, result=None, error=None):
        self.table = table or {}
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, args, input=None, capture_output=False, timeout=None, check=False):
        self.calls.append((list(args), input))
        if self.error is not None:
            raise self.error
        code, out, err = self.result or (self.table.get(tuple(args)) + ("",))
        return subprocess.CompletedProcess(args, code, out.encode(), err.encode())


def test_list_printers_parses_lpstat(monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeRun(LPSTAT))
    printers = {p.name: p for p in CupsSpooler().list_printers()}
    assert set(printers) == {"POS80", "Laser"}
    assert printers["POS80"].is_default is True
    assert printers["POS80"].status == DeviceStatus.READY
    assert printers["POS80"].port_hint == "usb://EPSON/TM-T20?serial=123"
    assert printers["Laser"].is_default is False
    assert printers["Laser"].status == DeviceStatus.OFFLINE


def test_no_destinations(monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeRun(result=(1, "", "lpstat: No destinations added.")))
    assert CupsSpooler().list_printers() == []


def test_missing_cups_tools(monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeRun(error=FileNotFoundError("lpstat")))
    with pytest.raises(TransportUnavailable):
        CupsSpooler().list_printers()


def test_command_timeout(monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeRun(error=subprocess.TimeoutExpired("lp", 15)))
    with pytest.raises(AttemptTimeout):
        CupsSpooler().submit_raw("POS80", b"\x1b@")


def test_submit_raw_pipes_bytes(monkeypatch):
    run = FakeRun(result=(0, "request id is POS80-7 (0 file(s))", ""))
    monkeypatch.setattr(subprocess, "run", run)
    CupsSpooler().submit_raw("POS80", b"\x1b@hi", title="job-1")
    assert run.calls == [(["lp", "-d", "POS80", "-o", "raw", "-t", "job-1"], b"\x1b@hi")]


def test_submit_document_copies(monkeypatch):
    run = FakeRun(result=(0, "", ""))
    monkeypatch.setattr(subprocess, "run", run)
    CupsSpooler().submit_document("Laser", "/tmp/r.png", copies=2)
    args, data = run.calls[0]
    assert args[:5] == ["lp", "-d", "Laser", "-n", "2"]
    assert args[-1] == "/tmp/r.png"
    assert data is None


@pytest.mark.parametrize(
    "stderr, error",
    [
        ("lp: The printer or class does not exist.", TransportUnavailable),
        ("lp: Unknown destination \"Ghost\".", TransportUnavailable),
        ("lp: Destination \"Laser\" is not accepting jobs.", TransportUnavailable),
        ("lp: Error - scheduler not responding.", TransmissionFailed),
    ],
)
def test_lp_errors_are_classified(monkeypatch, stderr, error):
    monkeypatch.setattr(subprocess, "run", FakeRun(result=(1, "", stderr)))
    with pytest.raises(error):
        CupsSpooler().submit_raw("Laser", b"x")


def test_has_printer(monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeRun(LPSTAT))
    spooler = CupsSpooler()
    assert spooler.has_printer("POS80")
    assert not spooler.has_printer("Ghost")


def test_win32_spooler_without_pywin32(monkeypatch):
    monkeypatch.setitem(sys.modules, "win32print", None)
    with pytest.raises(TransportUnavailable):
        Win32Spooler().list_printers()
