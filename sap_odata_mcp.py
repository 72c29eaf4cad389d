#!/usr/bin/env python3
"""
SAP OData MCP server.

Exposes a fixed set of tools (connect, discover services, read metadata,
query and modify entities, call function imports) that translate MCP tool
calls into OData v2 requests against a SAP Gateway.
"""

import asyncio
import signal
import sys
import traceback

from dotenv import load_dotenv

from sap_odata_mcp_lib import ODataMCPBridge
from sap_odata_mcp_lib.config import load_settings, parse_http_addr
from sap_odata_mcp_lib.transport.http_sse import HttpSSETransport
from sap_odata_mcp_lib.transport.stdio import StdioTransport

# Load environment variables from .env file
load_dotenv()


def main():
    """Main entry point."""
    settings = load_settings()

    # Handle SIGINT (Ctrl+C) and SIGTERM gracefully
    def signal_handler(sig, frame):
        print(f"\n{signal.Signals(sig).name} received, shutting down server...", file=sys.stderr)
        sys.exit(0)
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        bridge = ODataMCPBridge(tool_prefix=settings.tool_prefix, verbose=settings.verbose)

        if settings.uses_streamable_http:
            host, port = parse_http_addr(settings.http_addr)
            if settings.connection is not None:
                asyncio.run(bridge.auto_connect(settings.connection))
            bridge.run(host=host, port=port, streamable_http=True)
            return

        if settings.uses_http_sse:
            host, port = parse_http_addr(settings.http_addr)
            if settings.verbose:
                print(f"[VERBOSE] Starting HTTP/SSE transport on {host}:{port}", file=sys.stderr)
            transport = HttpSSETransport(host=host, port=port)
        else:
            if settings.verbose:
                print("[VERBOSE] Using stdio transport", file=sys.stderr)
            transport = StdioTransport()

        asyncio.run(_serve(bridge, transport, settings.connection))
    except Exception as e:
        print(f"\n--- FATAL ERROR ---", file=sys.stderr)
        print(f"An unexpected error occurred during startup or runtime: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        print("-------------------", file=sys.stderr)
        sys.exit(1)


async def _serve(bridge, transport, connection):
    if connection is not None:
        await bridge.auto_connect(connection)
    await bridge.serve(transport)


if __name__ == "__main__":
    main()
