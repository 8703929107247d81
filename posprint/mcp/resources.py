"""
MCP resources for posprint.

The diagnostic report as a plain-text support document and the recent jobs
list, both read-only.
"""

from __future__ import annotations

from typing import Any, Dict

from posprint.printing.service import PrintService


def register_resources(server, service: PrintService) -> None:
    """
    Register all MCP resources with the server.

    Args:
        server: FastMCP server instance to register resources with.
        service: PrintService the resources read from.
    """

    @server.resource(
        "posprint://diagnostics/report",
        name="Diagnostic Report",
        description="Plain-text diagnostic report for support hand-off",
        mime_type="text/plain",
        annotations={"readOnlyHint": True, "idempotentHint": False},
    )
    def diagnostics_report() -> str:
        return service.diagnostic_text(refresh=False)

    @server.resource(
        "posprint://jobs/recent",
        name="Recent Jobs",
        description="In-memory job registry, newest first",
        mime_type="application/json",
        annotations={"readOnlyHint": True, "idempotentHint": False},
    )
    def recent_jobs() -> Dict[str, Any]:
        return {"jobs": service.list_jobs()[:20]}


__all__ = ["register_resources"]
