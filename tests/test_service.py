import concurrent.futures
import threading
import time

import pytest

from conftest import fake_transports, make_registry, no_backoff, spooler, usb
from posprint.core.config import PrintSettings
from posprint.core.models import JobKind, PrintJob, RawTextPayload, TransportKind
from posprint.printing.dispatcher import Dispatcher
from posprint.printing.service import PrintService


def _job(text="hello", target=None):
    return PrintJob(kind=JobKind.RAW_TEXT, payload=RawTextPayload(text), target_device_name=target)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class _Gate:
    """Transport outcome that blocks until released."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()

    def __call__(self, ctx):
        self.started.set()
        self.release.wait(5)
        return "ok"


@pytest.fixture
def make_service():
    services = []

    def _make(*candidates, transports=None, settings=None, jobs_max=50):
        registry = make_registry(*candidates)
        transports = transports or fake_transports()
        dispatcher = Dispatcher(registry, transports=transports.values(), backoff=no_backoff)
        svc = PrintService(
            registry=registry,
            dispatcher=dispatcher,
            settings_loader=lambda: settings or PrintSettings(),
            jobs_max=jobs_max,
        )
        services.append(svc)
        return svc

    yield _make
    for svc in services:
        svc.shutdown()


def test_submit_blocks_for_the_result(make_service):
    svc = make_service(usb("POS-80"))
    job = _job()
    result = svc.submit(job, wait_timeout=5)
    assert result.success
    assert result.transport_used == TransportKind.RAW_PROTOCOL

    record = svc.get_job(job.job_id)
    assert record["status"] == "success"
    assert record["device"] == "POS-80"
    assert record["result"]["transport_used"] == "RawProtocolTransport"


def test_failed_job_is_recorded_as_error(make_service):
    svc = make_service(usb("POS-80"))
    result = svc.submit(_job(target="Ghost"), wait_timeout=5)
    assert not result.success
    record = svc.get_job(result.job_id)
    assert record["status"] == "error"
    assert record["result"]["error_kind"] == "DeviceNotFound"


def test_enqueue_returns_immediately(make_service):
    svc = make_service(spooler("Office Laser", default=True))
    job_id = svc.enqueue(_job(), origin="api")
    record = svc.get_job(job_id)
    assert record["origin"] == "api"
    assert record["kind"] == "raw_text"
    assert _wait_for(lambda: svc.get_job(job_id)["status"] == "success")
    assert svc.get_job(job_id)["result"]["transport_used"] == "RenderedDocumentTransport"


def test_duplicate_submission_is_rejected(make_service):
    svc = make_service(usb("POS-80"))
    job = _job()
    svc.submit(job, wait_timeout=5)
    with pytest.raises(ValueError):
        svc.enqueue(job)


def test_unknown_job(make_service):
    svc = make_service()
    assert svc.get_job("missing") is None
    assert svc.list_jobs() == []
    assert svc.worker_status()["worker_started"] is False


def test_list_jobs_newest_first_and_pruned(make_service):
    svc = make_service(usb("POS-80"), jobs_max=2)
    ids = [svc.submit(_job(str(i)), wait_timeout=5).job_id for i in range(3)]
    listed = [j["id"] for j in svc.list_jobs()]
    assert listed == [ids[2], ids[1]]


def test_submit_timeout_leaves_job_running(make_service):
    gate = _Gate()
    svc = make_service(usb("POS-80"), transports=fake_transports(raw=[gate]))
    job = _job()
    with pytest.raises(concurrent.futures.TimeoutError):
        svc.submit(job, wait_timeout=0.05)
    assert gate.started.wait(5)
    assert svc.get_job(job.job_id)["status"] == "running"
    assert svc.worker_status()["pending_jobs"] == 1
    gate.release.set()
    assert _wait_for(lambda: svc.get_job(job.job_id)["status"] == "success")
    assert svc.worker_status()["pending_jobs"] == 0


def test_cancel_queued_job(make_service):
    gate = _Gate()
    transports = fake_transports(raw=[gate])
    svc = make_service(usb("POS-80"), transports=transports)
    first = svc.enqueue(_job("first"))
    assert gate.started.wait(5)
    second = svc.enqueue(_job("second"))

    assert svc.cancel(second) is True
    assert svc.get_job(second)["status"] == "cancelled"
    # the first job already holds the device
    assert svc.cancel(first) is False

    gate.release.set()
    assert _wait_for(lambda: svc.get_job(first)["status"] == "success")
    assert svc.get_job(second)["status"] == "cancelled"
    assert len(transports[TransportKind.RAW_PROTOCOL].calls) == 1
    assert svc.cancel("missing") is False


def test_refresh_applies_thermal_overrides_from_settings(make_service):
    svc = make_service(usb("POS-80"), settings=PrintSettings(thermal_overrides={"POS-80": False}))
    assert svc.list_devices()[0].is_thermal is True
    devices = svc.refresh_devices()
    assert devices[0].is_thermal is False


def test_diagnostics_through_the_service(make_service):
    svc = make_service(usb("POS-80"), settings=PrintSettings(default_receipt_device="POS-80"))
    assert svc.test_device("POS-80", wait_timeout=5).success
    assert svc.test_drawer("POS-80", wait_timeout=5).success

    report = svc.diagnostic_report(refresh=False)
    assert report.severity.value == "success"
    assert report.last_results["POS-80"]["test"] == "drawer"
    text = svc.diagnostic_text(refresh=False)
    assert "Receipt: POS-80" in text


def test_shutdown_is_idempotent(make_service):
    svc = make_service(usb("POS-80"))
    svc.ensure_worker()
    assert svc.worker_status()["worker_alive"] is True
    svc.shutdown()
    svc.shutdown()
    assert svc.worker_status()["worker_started"] is False
