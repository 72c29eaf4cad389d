"""
MCP bridge: exposes the SAP OData tools over JSON-RPC and through FastMCP.
"""

import asyncio
import json
import re
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
import mcp.types as types
from pydantic import ValidationError

from .errors import ODataError, describe_error
from .handlers import ODataToolHandlers
from .models import ConnectionConfig, ToolResult
from .tool_definitions import TOOL_DEFINITIONS, TOOLS_BY_NAME, ToolDefinition
from .transport import Transport, TransportMessage

SERVER_VERSION = "0.1.0"

# JSON schema type -> annotation used in generated FastMCP tool signatures
_SCHEMA_TYPE_HINTS = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "List[str]",
    "object": "Dict[str, Any]",
}


class UnknownToolError(LookupError):
    pass


class ODataMCPBridge:
    """Bridge between MCP clients and the SAP OData tool handlers."""

    def __init__(self, tool_prefix: str = "sap_", verbose: bool = False, mcp_name: str = "sap-odata-mcp"):
        self.tool_prefix = tool_prefix
        self.verbose = verbose
        self.mcp_name = mcp_name
        self.handlers = ODataToolHandlers(tool_prefix=tool_prefix, verbose=verbose)
        self.mcp = FastMCP(name=mcp_name)
        self.all_registered_tools: Dict[str, Any] = {}
        self._implementation_registry: Dict[str, Any] = {}

        self._log_verbose("Registering MCP Tools...")
        self._register_tools()
        self._log_verbose(f"MCP Tools Registered ({len(self.all_registered_tools)}).")

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Bridge VERBOSE] {message}", file=sys.stderr)

    def _make_tool_name(self, base_name: str) -> str:
        return f"{self.tool_prefix}{base_name}"

    def _base_tool_name(self, tool_name: str) -> str:
        """Strip the configured prefix. Raises UnknownToolError if the name is not ours."""
        if tool_name.startswith(self.tool_prefix):
            base_name = tool_name[len(self.tool_prefix):]
            if base_name in TOOLS_BY_NAME:
                return base_name
        raise UnknownToolError(f"Unknown tool: {tool_name}")

    # --- Tool surface ---

    def list_tools(self) -> List[Dict[str, Any]]:
        return [definition.to_mcp(self.tool_prefix) for definition in TOOL_DEFINITIONS]

    async def execute_tool(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Run a tool and turn operation failures into error results.

        Raises UnknownToolError for names outside the tool table and
        pydantic.ValidationError for malformed arguments.
        """
        base_name = self._base_tool_name(tool_name)
        try:
            return await self.handlers.dispatch(base_name, arguments)
        except ValidationError:
            raise
        except ODataError as e:
            print(f"ERROR: Tool {tool_name} failed: {e.message}", file=sys.stderr)
            return ToolResult(text=f"Error: {e.message}", is_error=True)
        except Exception as e:
            print(f"ERROR: Unexpected error in tool {tool_name}: {e}", file=sys.stderr)
            if self.verbose:
                traceback.print_exc(file=sys.stderr)
            return ToolResult(text=f"Error: {describe_error(e)}", is_error=True)

    async def call_tool(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        result = await self.execute_tool(tool_name, arguments)
        return result.to_call_result()

    async def auto_connect(self, config: ConnectionConfig) -> bool:
        """Connect at startup. Failures are reported, never raised."""
        result = await self.execute_tool(self._make_tool_name("connect"), config.model_dump(by_alias=True))
        if result.is_error:
            print(f"ERROR: Auto-connect to {config.base_url} failed: {result.text}", file=sys.stderr)
            return False
        print(f"Auto-connected to {config.base_url}", file=sys.stderr)
        return True

    # --- JSON-RPC dispatch ---

    def _initialize_result(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        protocol_version = requested if isinstance(requested, str) and requested else types.LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": protocol_version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.mcp_name, "version": SERVER_VERSION},
        }

    async def handle_message(self, message: TransportMessage) -> Optional[TransportMessage]:
        """Answer one JSON-RPC message. Returns None when no response is due."""
        if message.method is None:
            # A response or an empty object; nothing to answer
            return None

        self._log_verbose(f"Received {message.method} (id={message.id})")
        params = message.params if isinstance(message.params, dict) else {}

        if message.is_notification:
            # notifications/initialized, notifications/cancelled, ...
            return None

        if message.method == "initialize":
            return TransportMessage(id=message.id, result=self._initialize_result(params))
        if message.method == "ping":
            return TransportMessage(id=message.id, result={})
        if message.method == "tools/list":
            return TransportMessage(id=message.id, result={"tools": self.list_tools()})
        if message.method == "tools/call":
            return await self._call_from_message(message.id, params)

        return TransportMessage.error_response(message.id, types.METHOD_NOT_FOUND,
                                               f"Method not found: {message.method}")

    async def _call_from_message(self, request_id: Any, params: Dict[str, Any]) -> TransportMessage:
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(tool_name, str) or not isinstance(arguments, dict):
            return TransportMessage.error_response(request_id, types.INVALID_PARAMS,
                                                   "tools/call requires a tool name and an arguments object")
        try:
            result = await self.call_tool(tool_name, arguments)
        except UnknownToolError as e:
            return TransportMessage.error_response(request_id, types.METHOD_NOT_FOUND, str(e))
        except ValidationError as e:
            return TransportMessage.error_response(request_id, types.INVALID_PARAMS,
                                                   f"Invalid arguments for {tool_name}",
                                                   json.loads(e.json(include_url=False)))
        return TransportMessage(id=request_id, result=result)

    # --- FastMCP registration ---

    def _get_param_defs(self, definition: ToolDefinition) -> List[Dict[str, Any]]:
        schema = definition.input_schema
        required = set(schema.get("required", []))
        return [
            {
                'name': name,
                'type_hint': _SCHEMA_TYPE_HINTS.get(prop.get("type"), "Any"),
                'required': name in required,
                'description': prop.get("description"),
            }
            for name, prop in schema.get("properties", {}).items()
        ]

    def _format_docstring(self, definition: ToolDefinition, params_list: List[Dict[str, Any]]) -> str:
        doc = f"{definition.description}\n\nParameters:\n"
        if params_list:
            for param in params_list:
                req_str = "**required**" if param['required'] else "optional"
                desc_str = f" - {param['description']}" if param.get('description') else ""
                doc += f"    - `{param['name']}` ({param['type_hint']}, {req_str}){desc_str}\n"
        else:
            doc += "    None\n"
        return doc

    def _create_and_register_tool(self, tool_name: str, param_defs: List[Dict[str, Any]], docstring: str):
        """
        Build a keyword-only async function whose signature mirrors the tool's
        input schema, and register it on the FastMCP server. FastMCP derives the
        tool's argument schema from that signature.
        """
        param_strings = []
        param_names = []
        for p in param_defs:
            name = p['name']
            if re.fullmatch(r'[A-Za-z_]\w*', name) is None:
                raise ValueError(f"Parameter name '{name}' of tool '{tool_name}' is not a valid identifier")
            param_names.append(name)
            if p['required']:
                param_strings.append(f"{name}: {p['type_hint']}")
            else:
                param_strings.append(f"{name}: Optional[{p['type_hint']}] = None")

        signature_params = f"*, {', '.join(param_strings)}" if param_strings else ""
        func_name = re.sub(r'\W', '_', tool_name)
        body = [
            f"async def {func_name}({signature_params}) -> str:",
            f"    '''{docstring}'''",
            f"    arguments = {{{', '.join(repr(n) + ': ' + n for n in param_names)}}}",
            f"    return await _implementation_registry[{tool_name!r}]("
            f"{{k: v for k, v in arguments.items() if v is not None}})",
        ]
        func_def_str = "\n".join(body)

        self._implementation_registry[tool_name] = self._make_fastmcp_logic(tool_name)
        exec_scope = {
            "_implementation_registry": self._implementation_registry,
            "Any": Any,
            "Dict": Dict,
            "List": List,
            "Optional": Optional,
        }
        self._log_verbose(f"Generating function for {tool_name}:\n{func_def_str}")
        exec(func_def_str, exec_scope, exec_scope)
        tool_func = exec_scope[func_name]

        self.mcp.tool(name=tool_name)(tool_func)
        self.all_registered_tools[tool_name] = tool_func
        self._log_verbose(f"Registered tool: {tool_name}")

    def _make_fastmcp_logic(self, tool_name: str):
        async def logic(arguments: Dict[str, Any]) -> str:
            try:
                result = await self.execute_tool(tool_name, arguments)
            except ValidationError as e:
                raise ToolError(f"Invalid arguments for {tool_name}: {e}") from e
            if result.is_error:
                raise ToolError(result.text)
            if result.raw_data is None:
                return result.text
            return f"{result.text}\n\nRaw data:\n{json.dumps(result.raw_data, indent=2, default=str, ensure_ascii=False)}"
        return logic

    def _register_tools(self):
        for definition in TOOL_DEFINITIONS:
            tool_name = self._make_tool_name(definition.name)
            param_defs = self._get_param_defs(definition)
            self._create_and_register_tool(tool_name, param_defs, self._format_docstring(definition, param_defs))

    # --- Serving ---

    async def serve(self, transport: Transport) -> None:
        """Serve JSON-RPC over a custom transport until it closes."""
        transport.handler = self.handle_message
        self._log_verbose(f"Starting {type(transport).__name__}")
        await transport.start()
        try:
            await transport.wait_closed()
        finally:
            await transport.stop()
            await self.handlers.shutdown()

    def run(self, transport: Optional[Transport] = None, host: str = "0.0.0.0", port: int = 8080,
            streamable_http: bool = False):
        """Run the MCP server until the transport closes or the process is interrupted."""
        self._log_verbose(f"MCP Server Name: {self.mcp_name}")
        if streamable_http:
            self._log_verbose(f"Starting FastMCP streamable HTTP server on {host}:{port}")
            self.mcp.run(transport="streamable-http", host=host, port=port)
            return
        if transport is None:
            from .transport.stdio import StdioTransport
            transport = StdioTransport()
        asyncio.run(self.serve(transport))
