"""
MCP tools for posprint operations.

Each tool is a thin wrapper over PrintService. The wrapped operations are
plain functions taking the service first, so they can be exercised without
an MCP client.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field, ValidationError

from posprint.printing.service import PrintService
from posprint.web.schemas import DEFAULT_LIMITS, PrintRequest

logger = logging.getLogger(__name__)

WAIT_TIMEOUT = 120.0


class JobAccepted(BaseModel):
    """Result of queueing a print job via MCP."""

    job_id: str = Field(description="Unique identifier for the submitted print job")
    status: str = Field(description="Current job status", examples=["queued"])
    message: str = Field(description="Human-readable status message")


# Operations


def list_devices(service: PrintService) -> List[Dict[str, Any]]:
    return [d.to_dict() for d in service.list_devices()]


def refresh_devices(service: PrintService) -> List[Dict[str, Any]]:
    return [d.to_dict() for d in service.refresh_devices()]


def submit_print(service: PrintService, request: Dict[str, Any], wait: bool = False) -> Dict[str, Any]:
    try:
        req = PrintRequest.model_validate(request, context={"limits": dict(DEFAULT_LIMITS)})
    except ValidationError as e:
        first = e.errors()[0]
        raise ToolError(f"Invalid print request: {first.get('msg')}") from e

    job = req.to_print_job()
    if wait:
        try:
            return service.submit(job, wait_timeout=WAIT_TIMEOUT).to_dict()
        except concurrent.futures.TimeoutError:
            return JobAccepted(job_id=job.job_id, status="running", message="Still printing; poll get_job_status").model_dump()

    job_id = service.enqueue(job, origin="mcp")
    return JobAccepted(job_id=job_id, status="queued", message="Job submitted successfully").model_dump()


def get_job_status(service: PrintService, job_id: str) -> Dict[str, Any]:
    job = service.get_job(job_id)
    if not job:
        raise ToolError(f"Job {job_id} not found")
    return job


def run_diagnostic(service: PrintService, refresh: bool = True) -> Dict[str, Any]:
    report = service.diagnostic_report(refresh=refresh)
    data = report.to_dict()
    data["text"] = service.diagnostics.render_text(report)
    return data


def test_device(service: PrintService, name: str) -> Dict[str, Any]:
    try:
        return service.test_device(name, wait_timeout=WAIT_TIMEOUT).to_dict()
    except concurrent.futures.TimeoutError as e:
        raise ToolError(f"Test print on {name} did not finish in time") from e


def test_drawer(service: PrintService, name: str) -> Dict[str, Any]:
    try:
        return service.test_drawer(name, wait_timeout=WAIT_TIMEOUT).to_dict()
    except concurrent.futures.TimeoutError as e:
        raise ToolError(f"Drawer pulse on {name} did not finish in time") from e


# Registration


def register_tools(server: FastMCP, service: PrintService) -> None:
    """
    Register all MCP tools with the server.

    Args:
        server: FastMCP server instance to register tools with.
        service: PrintService the tools delegate to.
    """

    @server.tool(name="list_devices")
    def _list_devices() -> List[Dict[str, Any]]:
        """List the printers in the current device snapshot (name, transport, thermal, default, status)."""
        return list_devices(service)

    @server.tool(name="refresh_devices")
    def _refresh_devices() -> List[Dict[str, Any]]:
        """Re-enumerate spooler, USB and serial printers and return the new snapshot."""
        return refresh_devices(service)

    @server.tool(name="submit_print")
    def _submit_print(
        request: Dict[str, Any] = Field(
            description=(
                'Print request: {"kind": "receipt|label|barcode|qr|raw_text|cash_drawer_pulse", '
                '"target_device_name": str|null, "payload": {...}, "options": {"copies": 1}}'
            )
        ),
        wait: bool = Field(default=False, description="Block until the job finishes and return its PrintResult"),
    ) -> Dict[str, Any]:
        """
        Submit a print job.

        Example request:
        {
            "kind": "receipt",
            "payload": {
                "header": {"name": "Corner Shop", "lines": ["12 Main St"]},
                "items": [{"description": "Coffee", "amount": "2.50"}],
                "totals": [{"label": "TOTAL", "value": "2.50", "emphasize": true}]
            }
        }
        """
        logger.info("MCP submit_print kind=%s wait=%s", request.get("kind"), wait)
        return submit_print(service, request, wait=wait)

    @server.tool(name="get_job_status")
    def _get_job_status(
        job_id: str = Field(description="The unique ID of the print job", min_length=1),
    ) -> Dict[str, Any]:
        """Get the status and, once finished, the PrintResult of a job."""
        return get_job_status(service, job_id)

    @server.tool(name="run_diagnostic")
    def _run_diagnostic(
        refresh: bool = Field(default=True, description="Refresh the device list before diagnosing"),
    ) -> Dict[str, Any]:
        """Produce the diagnostic report (structured fields plus the plain-text support document)."""
        return run_diagnostic(service, refresh=refresh)

    @server.tool(name="test_device")
    def _test_device(name: str = Field(description="Printer name", min_length=1)) -> Dict[str, Any]:
        """Print a short synthetic test receipt on the named printer."""
        return test_device(service, name)

    @server.tool(name="test_drawer")
    def _test_drawer(name: str = Field(description="Thermal printer name", min_length=1)) -> Dict[str, Any]:
        """Pulse the cash drawer attached to the named thermal printer."""
        return test_drawer(service, name)


__all__ = [
    "get_job_status",
    "list_devices",
    "refresh_devices",
    "register_tools",
    "run_diagnostic",
    "submit_print",
    "test_device",
    "test_drawer",
]
