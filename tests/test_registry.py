from types import SimpleNamespace
from typing import List

import pytest

from conftest import FakeSource, make_registry, spooler, usb
from posprint.core.models import DeviceStatus, TransportType
from posprint.printing.registry import DeviceRegistry, SerialSource, SpoolerSource, UsbSource, classify_thermal
from posprint.printing.spooler import SpoolerBackend, SpoolerPrinter


@pytest.mark.parametrize(
    "name, transport, kwargs, expected",
    [
        ("EPSON TM-T20II Receipt", TransportType.SPOOLER, {}, True),
        ("POS-58 Thermal", TransportType.SPOOLER, {}, True),
        ("HP LaserJet M404", TransportType.SPOOLER, {}, False),
        ("HP LaserJet PostScript", TransportType.SPOOLER, {}, False),
        ("Canon Compose Series", TransportType.SPOOLER, {}, False),
        ("Star TSP100", TransportType.SPOOLER, {}, True),
        ("POS58 USB", TransportType.SPOOLER, {}, True),
        ("Generic", TransportType.USB, {"class_code": 0x07}, True),
        ("Generic", TransportType.USB, {"vendor_id": 0x0519}, True),
        ("Generic", TransportType.SPOOLER, {"vendor_id": 0x0519}, False),
    ],
)
def test_classify_thermal(name, transport, kwargs, expected):
    assert classify_thermal(name, transport, **kwargs) is expected


def test_merge_dedupes_by_normalized_name_and_keeps_one_default():
    registry = DeviceRegistry(
        sources=[
            FakeSource([spooler("POS-80", default=True), spooler("Office Laser", default=True)], name="spooler"),
            FakeSource([usb("  pos-80 ")], name="usb"),
        ]
    )
    devices = registry.refresh()
    assert [d.name for d in devices] == ["POS-80", "Office Laser"]
    assert devices[0].transport == TransportType.SPOOLER
    assert [d.is_default for d in devices] == [True, False]


def test_thermal_override_wins_over_heuristic():
    registry = make_registry(spooler("Office Laser"), spooler("POS-80"), overrides={"office laser": True, "POS-80": False})
    by_name = {d.name: d for d in registry.current()}
    assert by_name["Office Laser"].is_thermal is True
    assert by_name["POS-80"].is_thermal is False

    registry.refresh(thermal_overrides={})
    by_name = {d.name: d for d in registry.current()}
    assert by_name["Office Laser"].is_thermal is False
    assert by_name["POS-80"].is_thermal is True


def test_failing_source_is_skipped_and_recorded():
    registry = DeviceRegistry(
        sources=[
            FakeSource(error=RuntimeError("lpstat missing"), name="spooler"),
            FakeSource([usb("Star TSP100", vid=0x0519)], name="usb"),
        ]
    )
    devices = registry.refresh()
    assert [d.name for d in devices] == ["Star TSP100"]
    assert registry.last_errors == {"spooler": "lpstat missing"}


def test_zero_devices_is_valid():
    registry = DeviceRegistry(sources=[FakeSource([])])
    assert registry.refresh() == []
    assert registry.system_default() is None
    assert registry.thermal_devices() == []


def test_find_exact_then_normalized():
    registry = make_registry(spooler("POS-80"), spooler("Office Laser"))
    assert registry.find("POS-80").name == "POS-80"
    assert registry.find("  pos-80 ").name == "POS-80"
    assert registry.find("office   LASER").name == "Office Laser"
    assert registry.find("Missing") is None
    assert registry.find(None) is None


def test_refresh_swaps_snapshot_without_mutating_the_old_one():
    source = FakeSource([spooler("A")])
    registry = DeviceRegistry(sources=[source])
    registry.refresh()
    before = registry.snapshot()
    source.candidates = [spooler("A"), spooler("B")]
    registry.refresh()
    assert [d.name for d in before] == ["A"]
    assert [d.name for d in registry.snapshot()] == ["A", "B"]


class _FakeSpooler(SpoolerBackend):
    def __init__(self, printers: List[SpoolerPrinter]):
        self.printers = printers

    def list_printers(self) -> List[SpoolerPrinter]:
        return list(self.printers)

    def submit_raw(self, printer, data, title="posprint"):
        raise AssertionError("not used")

    def submit_document(self, printer, path, copies=1, title="posprint"):
        raise AssertionError("not used")


def test_spooler_source_maps_queues():
    backend = _FakeSpooler(
        [
            SpoolerPrinter("TM-T88V", is_default=True, status=DeviceStatus.READY, port_hint="usb://EPSON/TM-T88V"),
            SpoolerPrinter("Office", status=DeviceStatus.OFFLINE),
        ]
    )
    registry = DeviceRegistry(sources=[SpoolerSource(backend)])
    devices = registry.refresh()
    assert devices[0].name == "TM-T88V"
    assert devices[0].is_default and devices[0].is_thermal
    assert devices[0].port_hint == "usb://EPSON/TM-T88V"
    assert devices[1].status == DeviceStatus.OFFLINE
    assert not devices[1].is_thermal


def test_usb_source_picks_printer_class_and_known_vendors(monkeypatch):
    import usb.core

    def _dev(vid, pid, device_class=0, interface_class=0):
        cfg = [SimpleNamespace(bInterfaceClass=interface_class)]
        return SimpleNamespace(
            idVendor=vid,
            idProduct=pid,
            bDeviceClass=device_class,
            iManufacturer=0,
            iProduct=0,
            get_active_configuration=lambda: cfg,
        )

    devices = [
        _dev(0x04B8, 0x0E28),  # Epson, vendor match only
        _dev(0x1234, 0x5678, interface_class=0x07),  # unknown vendor, printer interface
        _dev(0x046D, 0xC077, interface_class=0x03),  # mouse
    ]
    monkeypatch.setattr(usb.core, "find", lambda find_all=True: iter(devices))

    found = UsbSource().scan()
    assert [c.port_hint for c in found] == ["usb:04b8:0e28", "usb:1234:5678"]
    assert found[0].name == "Epson"
    assert found[1].name == "USB Printer 1234:5678"
    assert found[1].class_code == 0x07


def test_serial_source_filters_by_vendor_and_vocabulary(monkeypatch):
    from serial.tools import list_ports

    ports = [
        SimpleNamespace(device="/dev/ttyUSB0", manufacturer="Prolific", product="USB-Serial Controller", description="", vid=0x067B),
        SimpleNamespace(device="/dev/ttyS0", manufacturer=None, product=None, description="n/a", vid=None),
        SimpleNamespace(device="/dev/ttyACM0", manufacturer="Acme", product=None, description="Receipt Printer", vid=0x9999),
    ]
    monkeypatch.setattr(list_ports, "comports", lambda: ports)

    found = SerialSource().scan()
    assert [(c.name, c.port_hint) for c in found] == [
        ("USB-Serial Controller", "serial:/dev/ttyUSB0"),
        ("Receipt Printer", "serial:/dev/ttyACM0"),
    ]
