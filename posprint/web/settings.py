from __future__ import annotations

"""
Settings and diagnostics pages for posprint.

This blueprint provides:
- GET/POST /settings: Printer settings form and persistence (CSRF-protected)
- GET /diagnostics: HTML diagnostic report with test print and drawer buttons
- POST /diagnostics/test: Run a test print or drawer pulse from the page
"""

import concurrent.futures
from typing import Any, Dict

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from pydantic import ValidationError

from posprint.core.config import PrintSettings, get_config_path, save_settings
from posprint.printing.codepages import ESC_POS_CODE_PAGES

settings_bp = Blueprint("settings", __name__)


def _to_int(val, default: int) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


def _to_float(val, default: float) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def _settings_from_form(form, current: PrintSettings) -> Dict[str, Any]:
    data = current.model_dump()
    data.update(
        {
            "default_receipt_device": form.get("default_receipt_device", ""),
            "default_label_device": form.get("default_label_device", ""),
            "auto_cut": form.get("auto_cut") == "on",
            "auto_open_drawer": form.get("auto_open_drawer") == "on",
            "receipt_columns": max(16, min(96, _to_int(form.get("receipt_columns"), current.receipt_columns))),
            "label_columns": max(16, min(96, _to_int(form.get("label_columns"), current.label_columns))),
            "code_page": form.get("code_page", current.code_page),
            "attempt_timeout_seconds": _to_float(form.get("attempt_timeout_seconds"), current.attempt_timeout_seconds),
            "max_attempts_per_transport": max(
                1, min(5, _to_int(form.get("max_attempts_per_transport"), current.max_attempts_per_transport))
            ),
            "drawer_pin": _to_int(form.get("drawer_pin"), current.drawer_pin),
            "drawer_on_ms": max(0, min(510, _to_int(form.get("drawer_on_ms"), current.drawer_on_ms))),
            "drawer_off_ms": max(0, min(510, _to_int(form.get("drawer_off_ms"), current.drawer_off_ms))),
            "serial_baudrate": _to_int(form.get("serial_baudrate"), current.serial_baudrate),
        }
    )
    export_dir = (form.get("pdf_export_dir", "") or "").strip()
    if export_dir:
        data["pdf_export_dir"] = export_dir

    # thermal_<index> = auto|thermal|standard, paired with device_<index> = name;
    # overrides for devices not on the form are kept
    overrides: Dict[str, bool] = dict(current.thermal_overrides)
    for key, choice in form.items():
        if not key.startswith("thermal_"):
            continue
        name = form.get("device_" + key[len("thermal_") :], "")
        if not name:
            continue
        if choice in ("thermal", "standard"):
            overrides[name] = choice == "thermal"
        else:
            overrides.pop(name, None)
    data["thermal_overrides"] = overrides
    return data


@settings_bp.route("/settings", methods=["GET", "POST"])
def settings():
    service = current_app.extensions["posprint"]
    current = service.settings()

    if request.method == "POST":
        current_app.logger.info("POST /settings received: form_keys=%s", list(request.form.keys()))
        try:
            updated = PrintSettings.model_validate(_settings_from_form(request.form, current))
        except ValidationError as e:
            first = e.errors()[0]
            flash(f"Invalid setting {'.'.join(str(p) for p in first['loc'])}: {first['msg']}", "error")
            return redirect(url_for("settings.settings"))

        # Persist to the current resolved config path to honor per-test env overrides
        save_settings(updated, path=get_config_path())
        service.registry.set_thermal_overrides(updated.thermal_overrides)
        flash("Settings saved.", "success")
        return redirect(url_for("settings.settings"))

    return render_template(
        "settings.html",
        settings=current,
        devices=service.list_devices(),
        code_pages=sorted(ESC_POS_CODE_PAGES),
    )


@settings_bp.get("/diagnostics")
def diagnostics_page():
    service = current_app.extensions["posprint"]
    report = service.diagnostic_report(refresh=request.args.get("refresh") == "1")
    return render_template("diagnostics.html", report=report.to_dict())


@settings_bp.post("/diagnostics/test")
def diagnostics_test():
    service = current_app.extensions["posprint"]
    name = (request.form.get("name", "") or "").strip()
    action = request.form.get("action", "print")
    if not name:
        flash("Select a printer first.", "error")
        return redirect(url_for("settings.diagnostics_page"))

    run = service.test_drawer if action == "drawer" else service.test_device
    try:
        result = run(name, wait_timeout=60)
    except concurrent.futures.TimeoutError:
        flash(f"{name}: no result after 60 seconds.", "error")
        return redirect(url_for("settings.diagnostics_page"))

    if result.success:
        flash(f"{name}: sent via {result.transport_used.value}.", "success")  # type: ignore[union-attr]
    else:
        flash(f"{name}: {result.error_kind.value if result.error_kind else 'error'}: {result.error_message}", "error")
    for warning in result.warnings:
        flash(warning, "warning")
    return redirect(url_for("settings.diagnostics_page"))
