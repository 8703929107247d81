#!/usr/bin/env python3
"""
Standalone MCP server for posprint.

Runs the print service and exposes it over MCP without the Flask app.
"""

import argparse
import asyncio
import logging
import os
import sys

from posprint.core.logging import configure_logging
from posprint.mcp import MCP_AVAILABLE


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Standalone posprint MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("POSPRINT_MCP_HOST", "localhost"),
        help="Host to bind to (default: localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("POSPRINT_MCP_PORT", "5002")),
        help="Port to bind to (default: 5002)",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http", "sse"],
        default=os.environ.get("POSPRINT_MCP_TRANSPORT", "stdio"),
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def main():
    """Main entry point for the standalone MCP server."""
    args = parse_args()

    configure_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    logger = logging.getLogger(__name__)

    if not MCP_AVAILABLE:
        logger.error("FastMCP is not available. Install with: pip install 'posprint[mcp]'")
        sys.exit(1)

    from posprint.mcp.server import create_mcp_server
    from posprint.printing.service import PrintService

    service = PrintService()
    service.ensure_worker()
    server = create_mcp_server(service)
    logger.info("Available tools: list_devices, refresh_devices, submit_print, get_job_status, run_diagnostic, test_device, test_drawer")

    try:
        if args.transport == "stdio":
            logger.info("Starting MCP server with STDIO transport")
            await server.run_async(transport="stdio")
        else:
            logger.info("Starting MCP server on %s:%d with %s transport", args.host, args.port, args.transport)
            await server.run_async(transport=args.transport, host=args.host, port=args.port)
    finally:
        service.shutdown()
        logger.info("MCP server shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
