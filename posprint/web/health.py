from __future__ import annotations

"""
Health endpoints for posprint.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Dispatcher loop status and pending job count (via PrintService.worker_status)
- Presence of saved config
- Whether the configured receipt printer is in the current device snapshot
"""

from typing import Any, Dict

from flask import Blueprint, current_app

from posprint.core.config import get_config_path, load_config

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    service = current_app.extensions["posprint"]
    status: Dict[str, Any] = {"status": "ok"}
    status.update(service.worker_status())

    try:
        cfg = load_config(get_config_path())
        settings = service.settings()
    except (OSError, ValueError) as e:
        current_app.logger.warning("Config unreadable: %s", e)
        status["status"] = "degraded"
        status["reason"] = "config_unreadable"
        return status, 200
    status["config_present"] = cfg is not None

    devices = service.list_devices()
    status["thermal_devices"] = sum(1 for d in devices if d.is_thermal)

    name = settings.default_receipt_device
    if name:
        ok = service.registry.find(name) is not None
        status["receipt_device"] = name
        status["printer_ok"] = ok
        if not ok:
            status["status"] = "degraded"
            status["reason"] = "receipt_device_missing"
    elif not devices:
        status["status"] = "degraded"
        status["reason"] = "no_devices"

    return status, 200
