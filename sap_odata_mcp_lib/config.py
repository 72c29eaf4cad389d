"""
Server settings from the command line and the environment.

Priority: CLI flag > environment variable (including a .env file loaded by the
entry point) > default.
"""

import argparse
import os
import sys
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .constants import DEFAULT_TIMEOUT_MS
from .models import ConnectionConfig

TRANSPORTS = ["stdio", "http", "sse", "streamable-http", "edge"]
DEFAULT_HTTP_ADDR = ":8080"
DEFAULT_TOOL_PREFIX = "sap_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ServerSettings(BaseModel):
    transport: str = "stdio"
    http_addr: str = DEFAULT_HTTP_ADDR
    tool_prefix: str = DEFAULT_TOOL_PREFIX
    verbose: bool = False
    connection: Optional[ConnectionConfig] = None

    @property
    def uses_http_sse(self) -> bool:
        return self.transport in ("http", "sse")

    @property
    def uses_streamable_http(self) -> bool:
        return self.transport in ("streamable-http", "edge")


def parse_http_addr(http_addr: str) -> Tuple[str, int]:
    """Parse ``host:port``, ``:port`` or ``port``. Falls back to 0.0.0.0:8080."""
    addr_parts = http_addr.rsplit(":", 1)
    if len(addr_parts) == 2:
        host = addr_parts[0] or "0.0.0.0"
        port_text = addr_parts[1]
    else:
        host = "0.0.0.0"
        port_text = http_addr
    try:
        port = int(port_text)
    except ValueError:
        print(f"WARNING: Invalid HTTP address '{http_addr}', using port 8080", file=sys.stderr)
        port = 8080
    return host, port


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_VALUES


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="MCP server exposing SAP OData services as tools",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--transport", choices=TRANSPORTS, default=None,
                        help="Transport: 'stdio' (default), 'http'/'sse' (HTTP+SSE) or 'streamable-http'/'edge' (env: MCP_TRANSPORT)")
    parser.add_argument("--http-addr", default=None, help=f"HTTP server address, host:port or :port (env: MCP_HTTP_ADDR, default {DEFAULT_HTTP_ADDR})")
    parser.add_argument("--tool-prefix", default=None, help=f"Prefix for tool names (env: MCP_TOOL_PREFIX, default {DEFAULT_TOOL_PREFIX})")
    parser.add_argument("-v", "--verbose", "--debug", dest="verbose", action="store_true", help="Enable verbose output to stderr")

    connect_group = parser.add_argument_group("auto-connect", "Connect at startup when URL, user and password are all known")
    connect_group.add_argument("--service", help="SAP OData base URL (env: SAP_ODATA_URL or ODATA_URL)")
    connect_group.add_argument("-u", "--user", help="Username for basic authentication (env: ODATA_USER or ODATA_USERNAME)")
    connect_group.add_argument("-p", "--password", help="Password for basic authentication (env: ODATA_PASS or ODATA_PASSWORD)")
    connect_group.add_argument("--client", help="SAP client number (env: SAP_CLIENT)")
    connect_group.add_argument("--timeout", type=int, help=f"Request timeout in milliseconds (env: ODATA_TIMEOUT, default {DEFAULT_TIMEOUT_MS})")
    connect_group.add_argument("--no-ssl-verify", action="store_true", help="Do not validate TLS certificates")
    connect_group.add_argument("--no-csrf", action="store_true", help="Disable CSRF token handling")
    return parser


def _connection_from_args(args: argparse.Namespace) -> Optional[ConnectionConfig]:
    base_url = args.service or _first_env("SAP_ODATA_URL", "ODATA_URL")
    username = args.user if args.user is not None else _first_env("ODATA_USER", "ODATA_USERNAME")
    password = args.password if args.password is not None else _first_env("ODATA_PASS", "ODATA_PASSWORD")
    if not (base_url and username and password):
        if args.verbose and (base_url or username or password):
            print("[VERBOSE] Incomplete auto-connect settings, waiting for a connect tool call.", file=sys.stderr)
        return None

    timeout = args.timeout
    if timeout is None:
        env_timeout = os.getenv("ODATA_TIMEOUT")
        timeout = int(env_timeout) if env_timeout else DEFAULT_TIMEOUT_MS

    return ConnectionConfig(
        base_url=base_url,
        username=username,
        password=password,
        client=args.client or os.getenv("SAP_CLIENT") or None,
        timeout=timeout,
        validate_ssl=not args.no_ssl_verify,
        enable_csrf=not args.no_csrf,
    )


def load_settings(argv: Optional[List[str]] = None) -> ServerSettings:
    """Parse argv (defaults to sys.argv) and the environment into ServerSettings."""
    parser = build_parser()
    args = parser.parse_args(argv)

    transport = args.transport or os.getenv("MCP_TRANSPORT") or "stdio"
    if transport not in TRANSPORTS:
        parser.error(f"invalid transport '{transport}' (choose from {', '.join(TRANSPORTS)})")

    try:
        connection = _connection_from_args(args)
    except ValueError as e:
        parser.error(f"invalid connection settings: {e}")

    return ServerSettings(
        transport=transport,
        http_addr=args.http_addr or os.getenv("MCP_HTTP_ADDR") or DEFAULT_HTTP_ADDR,
        tool_prefix=args.tool_prefix if args.tool_prefix is not None else os.getenv("MCP_TOOL_PREFIX", DEFAULT_TOOL_PREFIX),
        verbose=args.verbose or _env_flag("ODATA_VERBOSE"),
        connection=connection,
    )
