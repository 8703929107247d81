"""
Main MCP server implementation for posprint.

This module creates and configures the FastMCP server with the print
service tools and the diagnostics resource.
"""

from __future__ import annotations

import logging
from typing import Optional

try:
    from fastmcp import FastMCP
    MCP_AVAILABLE = True
except ImportError:
    MCP_AVAILABLE = False
    FastMCP = None

from posprint.printing.service import PrintService

from .resources import register_resources
from .tools import register_tools

logger = logging.getLogger(__name__)


def create_mcp_server(service: Optional[PrintService] = None):
    """
    Create and configure MCP server bound to a print service.

    Args:
        service: The PrintService the tools delegate to. A default one is
            built (real device sources and transports) when omitted.

    Returns:
        Configured FastMCP server instance.

    Raises:
        ImportError: If FastMCP is not available.
    """
    if not MCP_AVAILABLE or FastMCP is None:
        raise ImportError("FastMCP is not available. Install with: pip install fastmcp")

    service = service or PrintService()
    server = FastMCP("posprint")

    register_tools(server, service)
    register_resources(server, service)
    logger.info("MCP server created - tools and resources registered")
    return server


__all__ = ["MCP_AVAILABLE", "create_mcp_server"]
