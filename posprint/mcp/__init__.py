"""
MCP (Model Context Protocol) server for posprint.

This module exposes the print service to support tooling and assistants as
MCP tools and resources: device listing, print submission, job status,
diagnostics, test print and drawer pulse.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from posprint.printing.service import PrintService

try:
    from fastmcp import FastMCP
    MCP_AVAILABLE = True
except ImportError:
    MCP_AVAILABLE = False
    FastMCP = None

logger = logging.getLogger(__name__)

__all__ = ["MCP_AVAILABLE", "create_mcp_server_if_available"]


def create_mcp_server_if_available(service: Optional["PrintService"] = None):
    """
    Create MCP server if FastMCP is available, otherwise return None.
    This provides graceful degradation when MCP dependencies aren't installed.
    """
    if not MCP_AVAILABLE:
        logger.debug("FastMCP not available, skipping MCP server creation")
        return None

    from .server import create_mcp_server

    return create_mcp_server(service)
