from __future__ import annotations

"""
JSON API (v1) for posprint.

Endpoints:
- GET    /api/v1/devices                     : Current device snapshot
- POST   /api/v1/devices/refresh             : Re-enumerate devices
- POST   /api/v1/print                       : Submit a print job (async). Returns 202 + Location
                                               (?wait=true blocks and returns the PrintResult)
- GET    /api/v1/jobs                        : Job registry, newest first
- GET    /api/v1/jobs/<job_id>               : Job status
- DELETE /api/v1/jobs/<job_id>               : Cancel a queued job
- GET    /api/v1/diagnostics                 : Diagnostic report (?format=text for the support document)
- POST   /api/v1/diagnostics/test-device     : Synthetic test receipt on {"name": ...}
- POST   /api/v1/diagnostics/test-drawer     : Drawer pulse on {"name": ...}

Payload shape (POST /api/v1/print):
{
  "kind": "receipt|label|barcode|qr|raw_text|cash_drawer_pulse",
  "target_device_name": str | null,
  "payload": {...},
  "options": {"copies": int, "cut_paper": bool | null, "open_drawer": bool | null}
}
"""

import concurrent.futures
import os

from flask import Blueprint, Response, current_app, jsonify, request, url_for
from pydantic import ValidationError

from posprint import csrf
from posprint.printing.service import PrintService
from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")


# Limits (env-driven)
def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


MAX_ITEMS = _env_int("POSPRINT_MAX_ITEMS", schemas.DEFAULT_LIMITS["MAX_ITEMS"])
MAX_TEXT_LEN = _env_int("POSPRINT_MAX_TEXT_LEN", schemas.DEFAULT_LIMITS["MAX_TEXT_LEN"])
MAX_COPIES = _env_int("POSPRINT_MAX_COPIES", schemas.DEFAULT_LIMITS["MAX_COPIES"])
WAIT_TIMEOUT = float(_env_int("POSPRINT_WAIT_TIMEOUT", 120))


def _json_error(msg: str, code: int = 400):
    return jsonify({"error": msg}), code


def _service() -> PrintService:
    return current_app.extensions["posprint"]


def _validation_message(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    msg = first.get("msg") or str(e)
    return f"{loc}: {msg}" if loc else msg


def _truthy(value) -> bool:
    return str(value or "").lower() in ("1", "true", "yes")


@api_bp.get("/devices")
def devices():
    return {"devices": [d.to_dict() for d in _service().list_devices()]}


@csrf.exempt
@api_bp.post("/devices/refresh")
def refresh_devices():
    devices = _service().refresh_devices()
    current_app.logger.info("Device refresh: %d device(s)", len(devices))
    return {"devices": [d.to_dict() for d in devices]}


@csrf.exempt
@api_bp.post("/print")
def submit_print():
    """
    Validate a print request and hand it to the print service.
    Returns 202 Accepted with a Location header to the job status resource,
    or 200 with the PrintResult when ?wait=true.
    """
    if not request.is_json:
        return _json_error("Expected application/json body", 415)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("invalid JSON payload", 400)

    try:
        req = schemas.PrintRequest.model_validate(
            data,
            context={
                "limits": {
                    "MAX_ITEMS": MAX_ITEMS,
                    "MAX_TEXT_LEN": MAX_TEXT_LEN,
                    "MAX_COPIES": MAX_COPIES,
                }
            },
        )
    except ValidationError as e:
        return _json_error(_validation_message(e), 400)

    job = req.to_print_job()
    service = _service()

    if _truthy(request.args.get("wait")):
        try:
            result = service.submit(job, wait_timeout=WAIT_TIMEOUT)
        except concurrent.futures.TimeoutError:
            api_href = url_for("api.job_status", job_id=job.job_id)
            return {"id": job.job_id, "status": "running", "links": {"self": api_href}}, 202, {"Location": api_href}
        # Printing failures are reported in the body, not the status code
        return result.to_dict(), 200

    try:
        job_id = service.enqueue(job, origin="api")
    except ValueError as e:
        return _json_error(str(e), 409)

    api_href = url_for("api.job_status", job_id=job_id)
    resp = jsonify({"id": job_id, "status": "queued", "links": {"self": api_href}})
    resp.status_code = 202
    resp.headers["Location"] = api_href
    return resp


@api_bp.get("/jobs")
def jobs_list():
    return {"jobs": _service().list_jobs()}


@api_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    """
    Return job status JSON, 404 if not found.
    """
    job = _service().get_job(job_id)
    if job:
        return job
    return _json_error("not_found", 404)


@csrf.exempt
@api_bp.delete("/jobs/<job_id>")
def cancel_job(job_id: str):
    service = _service()
    job = service.get_job(job_id)
    if not job:
        return _json_error("not_found", 404)
    if not service.cancel(job_id):
        return _json_error(f"job is {service.get_job(job_id)['status']}; only queued jobs can be cancelled", 409)
    return service.get_job(job_id)


@api_bp.get("/diagnostics")
def diagnostics():
    service = _service()
    refresh = request.args.get("refresh", "true").lower() not in ("0", "false", "no")
    report = service.diagnostic_report(refresh=refresh)
    if request.args.get("format") == "text":
        return Response(service.diagnostics.render_text(report), mimetype="text/plain; charset=utf-8")
    return report.to_dict()


def _device_name_request():
    if not request.is_json:
        return None, _json_error("Expected application/json body", 415)
    try:
        return schemas.DeviceNameRequest.model_validate(request.get_json(silent=True) or {}), None
    except ValidationError as e:
        return None, _json_error(_validation_message(e), 400)


@csrf.exempt
@api_bp.post("/diagnostics/test-device")
def test_device():
    req, err = _device_name_request()
    if err:
        return err
    try:
        result = _service().test_device(req.name, wait_timeout=WAIT_TIMEOUT)
    except concurrent.futures.TimeoutError:
        return _json_error("test print did not finish in time", 504)
    return result.to_dict(), 200


@csrf.exempt
@api_bp.post("/diagnostics/test-drawer")
def test_drawer():
    req, err = _device_name_request()
    if err:
        return err
    try:
        result = _service().test_drawer(req.name, wait_timeout=WAIT_TIMEOUT)
    except concurrent.futures.TimeoutError:
        return _json_error("drawer pulse did not finish in time", 504)
    return result.to_dict(), 200
