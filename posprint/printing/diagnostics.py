"""
Diagnostics reporter.

Produces a DiagnosticReport from the registry snapshot and the configured
defaults, runs synthetic test prints and drawer pulses through the regular
dispatcher path, and renders the report as plain text for support hand-off.
The structured report and the text document come from the same object.
"""

from __future__ import annotations

import difflib
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined

from posprint.core.config import PrintSettings
from posprint.core.models import (
    BusinessHeader,
    DiagnosticReport,
    DrawerPulsePayload,
    JobKind,
    LabeledValue,
    LineItem,
    PrintJob,
    PrintOptions,
    PrintResult,
    ReceiptPayload,
    Severity,
)
from posprint.printing.dispatcher import Dispatcher
from posprint.printing.registry import DeviceRegistry

logger = logging.getLogger(__name__)

_SEVERITY_ORDER = {Severity.SUCCESS: 0, Severity.WARNING: 1, Severity.ERROR: 2}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def synthetic_receipt_job(device_name: str, timestamp: str) -> PrintJob:
    payload = ReceiptPayload(
        header=BusinessHeader(name="posprint", lines=("Printer test page",)),
        title="TEST",
        timestamp=timestamp,
        info=(LabeledValue("Device", device_name),),
        items=(
            LineItem("Test item", "1.00", quantity="1", unit_price="1.00"),
            LineItem("Accents: áéíóú ñ ü", "0.00"),
        ),
        totals=(LabeledValue("TOTAL", "1.00", emphasize=True),),
        footer=("If you can read this, printing works.",),
    )
    return PrintJob(kind=JobKind.RECEIPT, payload=payload, target_device_name=device_name, options=PrintOptions(open_drawer=False))


def drawer_pulse_job(device_name: str) -> PrintJob:
    return PrintJob(kind=JobKind.CASH_DRAWER_PULSE, payload=DrawerPulsePayload(), target_device_name=device_name)


class DiagnosticsReporter:
    def __init__(self, registry: DeviceRegistry, dispatcher: Dispatcher) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self._last: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._env = Environment(
            loader=PackageLoader("posprint", "templates"),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def run_diagnostic(self, settings: Optional[PrintSettings] = None, refresh: bool = True) -> DiagnosticReport:
        settings = settings or PrintSettings()
        devices = tuple(self.registry.refresh(settings.thermal_overrides) if refresh else self.registry.current())
        names = [d.name for d in devices]
        severity = Severity.SUCCESS
        messages: List[str] = []
        recs: List[str] = []

        def raise_to(level: Severity) -> None:
            nonlocal severity
            if _SEVERITY_ORDER[level] > _SEVERITY_ORDER[severity]:
                severity = level

        for source, err in sorted(self.registry.last_errors.items()):
            messages.append(f"Device source '{source}' failed: {err}")

        if not devices:
            raise_to(Severity.ERROR)
            messages.append("No printers detected.")
            recs.append("Check that the printer is powered on and connected, then refresh the device list.")
            recs.append("Install the printer in the operating system (CUPS or Windows printers).")
        else:
            messages.append(f"{len(devices)} printer(s) detected, {sum(d.is_thermal for d in devices)} thermal.")

        configured = {
            "receipt": settings.default_receipt_device,
            "label": settings.default_label_device,
        }
        for role, name in configured.items():
            if not name:
                continue
            device = self.registry.find(name)
            if device is None:
                raise_to(Severity.ERROR)
                messages.append(f"Configured {role} printer '{name}' was not found.")
                similar = difflib.get_close_matches(name, names, n=3, cutoff=0.4)
                if similar:
                    recs.append(f"Did you mean: {', '.join(similar)}? Update the {role} printer setting.")
                else:
                    recs.append(f"Select an available {role} printer in settings.")
            elif role == "receipt" and not device.is_thermal:
                raise_to(Severity.WARNING)
                messages.append(f"Receipt printer '{name}' does not accept ESC/POS; cut and drawer control are unavailable.")
                recs.append("Mark the printer as thermal in settings if it is a receipt printer.")

        if devices and not any(d.is_thermal for d in devices):
            raise_to(Severity.WARNING)
            messages.append("No thermal printer detected; receipts will use rendered documents or PDF export.")
            recs.append("Connect a thermal receipt printer or mark one as thermal in settings.")

        if not settings.default_receipt_device and devices:
            recs.append("Configure a default receipt printer.")

        with self._lock:
            last = {k: dict(v) for k, v in self._last.items()}
        status = {d.name: d.status.value for d in devices}

        report = DiagnosticReport(
            severity=severity,
            generated_at=_utc_now_iso(),
            devices=devices,
            device_status=status,
            messages=tuple(messages),
            recommendations=tuple(recs),
            configured=configured,
            last_results=last,
        )
        logger.info("Diagnostic report: %s (%d device(s))", severity.value, len(devices))
        return report

    def _remember(self, name: str, test: str, result: PrintResult) -> None:
        with self._lock:
            self._last[name] = {
                "test": test,
                "success": result.success,
                "transport_used": result.transport_used.value if result.transport_used else None,
                "error_kind": result.error_kind.value if result.error_kind else None,
                "error_message": result.error_message,
                "at": _utc_now_iso(),
            }

    async def test_device(self, name: str, settings: Optional[PrintSettings] = None) -> PrintResult:
        """Print a minimal synthetic receipt on the named device."""
        result = await self.dispatcher.submit(synthetic_receipt_job(name, _utc_now_iso()), settings)
        self._remember(name, "print", result)
        return result

    async def test_drawer(self, name: str, settings: Optional[PrintSettings] = None) -> PrintResult:
        """Pulse the cash drawer attached to the named device."""
        result = await self.dispatcher.submit(drawer_pulse_job(name), settings)
        self._remember(name, "drawer", result)
        return result

    def render_text(self, report: DiagnosticReport) -> str:
        template = self._env.get_template("diagnostic_report.txt")
        return template.render(report=report.to_dict())


__all__ = ["DiagnosticsReporter", "drawer_pulse_job", "synthetic_receipt_job"]
