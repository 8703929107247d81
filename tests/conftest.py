# Ensure the repository root is on sys.path so `posprint` can be imported in tests.

import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    # We want to add <repo_root> to sys.path (if not already present).
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from posprint.core.models import DeviceStatus, TransportKind, TransportType  # noqa: E402
from posprint.printing.registry import Candidate, DeviceRegistry, DeviceSource  # noqa: E402
from posprint.printing.transports import DeliveryContext, Transport  # noqa: E402


class FakeSource(DeviceSource):
    """Device source returning a fixed candidate list (or raising)."""

    def __init__(self, candidates: Sequence[Candidate] = (), name: str = "fake", error: Optional[Exception] = None):
        self.name = name
        self.candidates = list(candidates)
        self.error = error
        self.scans = 0

    def scan(self) -> List[Candidate]:
        self.scans += 1
        if self.error is not None:
            raise self.error
        return list(self.candidates)


Outcome = Union[None, str, Exception, Callable[[DeliveryContext], Optional[str]]]


class FakeTransport(Transport):
    """
    Transport returning scripted outcomes in order: an Exception is raised, a
    callable is invoked with the context, anything else is returned. The last
    outcome repeats once the script runs out.
    """

    def __init__(self, kind: TransportKind, outcomes: Sequence[Outcome] = (None,)):
        self.kind = kind
        self.outcomes = list(outcomes) or [None]
        self.calls: List[DeliveryContext] = []
        self._lock = threading.Lock()

    def send(self, ctx: DeliveryContext) -> Optional[str]:
        with self._lock:
            index = min(len(self.calls), len(self.outcomes) - 1)
            self.calls.append(ctx)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(ctx)
        return outcome


async def no_backoff(_seconds: float) -> None:
    return None


def spooler(name: str, default: bool = False) -> Candidate:
    return Candidate(name=name, transport=TransportType.SPOOLER, is_default=default, status=DeviceStatus.READY)


def usb(name: str, vid: int = 0x04B8, pid: int = 0x0E28) -> Candidate:
    return Candidate(
        name=name,
        transport=TransportType.USB,
        port_hint=f"usb:{vid:04x}:{pid:04x}",
        status=DeviceStatus.READY,
        class_code=0x07,
        vendor_id=vid,
    )


def make_registry(*candidates: Candidate, overrides=None) -> DeviceRegistry:
    registry = DeviceRegistry(sources=[FakeSource(candidates)], thermal_overrides=overrides)
    registry.refresh()
    return registry


def fake_transports(raw=(None,), rendered=(None,), pdf=("/tmp/out.pdf",)):
    return {
        TransportKind.RAW_PROTOCOL: FakeTransport(TransportKind.RAW_PROTOCOL, raw),
        TransportKind.RENDERED_DOCUMENT: FakeTransport(TransportKind.RENDERED_DOCUMENT, rendered),
        TransportKind.PDF_EXPORT: FakeTransport(TransportKind.PDF_EXPORT, pdf),
    }


@pytest.fixture(autouse=True)
def _isolated_paths(tmp_path, monkeypatch):
    # Keep settings and exports out of the real home directory
    monkeypatch.setenv("POSPRINT_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("POSPRINT_JSON_LOGS", raising=False)
