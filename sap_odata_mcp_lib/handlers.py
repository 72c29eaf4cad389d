"""
Tool handlers: route validated tool arguments to the OData client and format the results.
"""

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from .client import ODataClient
from .constants import SAMPLE_RECORD_COUNT
from .errors import NotConnectedError, ODataError, describe_error
from .models import ConnectionConfig, ODataMetadata, QueryOptions, ServiceList, ToolResult, classify_collection
from .tool_definitions import (CallFunctionArguments, CreateEntityArguments, EntityKeyArguments,
                               QueryEntitySetArguments, ServiceArguments, TOOLS_BY_NAME, UpdateEntityArguments)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, ensure_ascii=False)


def _unwrap_entity(result: Any) -> Any:
    """OData v2 wraps single entities in ``d``."""
    if isinstance(result, dict) and 'd' in result:
        return result['d']
    return result


def format_services(result: ServiceList) -> str:
    text = "SAP OData Service Discovery Results:\n\n"
    if result.services:
        text += f"✅ Found {len(result.services)} services (via {result.source}):\n\n"
        for index, service in enumerate(result.services, 1):
            text += f"{index}. {service.name}\n"
            if service.title and service.title != service.name:
                text += f"   Title: {service.title}\n"
            if service.url:
                text += f"   URL: {service.url}\n"
            if service.version:
                text += f"   Version: {service.version}\n"
            text += "\n"
        first = result.services[0].name
        text += "💡 To use these services:\n"
        text += f"1. Get metadata: \"Get metadata for service {first}\"\n"
        text += f"2. Query data: \"Query [EntitySet] from {first}\"\n"
    else:
        text += "❌ No OData services found.\n\n"
        text += "This could mean:\n"
        text += "1. No services are activated on this SAP system\n"
        text += "2. The catalog service is not accessible\n"
        text += "3. Different authorization is needed\n\n"
        text += "💡 Try these steps:\n"
        text += "1. Contact SAP administrator to verify OData service activation\n"
        text += "2. Check SAP GUI: Transaction /IWFND/MAINT_SERVICE\n"
        text += "3. Try get_service_metadata with a service name you know\n"
        if result.message:
            text += f"\nNote: {result.message}"
    return text


def format_metadata(service_name: str, metadata: ODataMetadata) -> str:
    text = f"SAP OData Service Metadata for {service_name}:\n\n"
    if metadata.entities:
        text += f"Entity Types ({len(metadata.entities)}):\n"
        for entity in metadata.entities:
            text += f"\n- {entity.name}:\n"
            for prop in entity.properties:
                text += f"  • {prop.name}: {prop.type}{'' if prop.nullable else ' (required)'}\n"
    if metadata.entity_sets:
        text += f"\n\nEntity Sets ({len(metadata.entity_sets)}):\n"
        for entity_set in metadata.entity_sets:
            text += f"- {entity_set.name} ({entity_set.entity_type})\n"
    if metadata.functions:
        text += f"\n\nFunction Imports ({len(metadata.functions)}):\n"
        for func in metadata.functions:
            text += f"\n- {func.name}"
            if func.return_type:
                text += f" → {func.return_type}"
            text += "\n"
    if metadata.raw is not None:
        text += "\nThe metadata document could not be parsed; the raw document is attached."
    return text


def format_query_result(service_name: str, entity_set: str, result: Any, options: QueryOptions) -> str:
    text = f"SAP OData Query Results for {service_name}/{entity_set}:\n\n"
    collection = classify_collection(result)
    if collection.envelope == 'none':
        text += "No data found matching the criteria."
    else:
        records = collection.records
        text += f"Records found: {len(records)}\n\n"
        if records:
            sample = records[:SAMPLE_RECORD_COUNT]
            text += f"Sample data (first {len(sample)} records):\n"
            text += _dump(sample)
            if len(records) > SAMPLE_RECORD_COUNT:
                text += f"\n\n... and {len(records) - SAMPLE_RECORD_COUNT} more records"

    used: List[str] = []
    if options.select: used.append(f"$select: {', '.join(options.select)}")
    if options.filter: used.append(f"$filter: {options.filter}")
    if options.orderby: used.append(f"$orderby: {options.orderby}")
    if options.top is not None: used.append(f"$top: {options.top}")
    if options.skip is not None: used.append(f"$skip: {options.skip}")
    if options.expand: used.append(f"$expand: {', '.join(options.expand)}")
    if used:
        text += "\n\nQuery parameters used:\n" + "\n".join(used)
    return text


class ODataToolHandlers:
    """Holds at most one active OData client and implements each tool."""

    def __init__(self, tool_prefix: str = "sap_", verbose: bool = False):
        self.tool_prefix = tool_prefix
        self.verbose = verbose
        self.client: Optional[ODataClient] = None
        # One tool call at a time, so a reconnect never races an in-flight query
        self._lock = asyncio.Lock()

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Handlers VERBOSE] {message}", file=sys.stderr)

    @property
    def connect_tool_name(self) -> str:
        return f"{self.tool_prefix}connect"

    async def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Validate arguments and run the named tool (base name, without prefix).

        Raises KeyError for an unknown tool, pydantic.ValidationError for bad
        arguments and ODataError for failed operations.
        """
        definition = TOOLS_BY_NAME[name]
        handler = getattr(self, f"handle_{name}")
        args = definition.arguments_model.model_validate(arguments or {}) if definition.arguments_model else None
        self._log_verbose(f"Dispatching tool {name}")
        async with self._lock:
            if args is None:
                return await handler()
            return await handler(args)

    def _ensure_client(self) -> ODataClient:
        if self.client is None:
            raise NotConnectedError(f"Not connected to SAP OData service. Use {self.connect_tool_name} first.")
        return self.client

    async def _live_client(self) -> ODataClient:
        client = self._ensure_client()
        if not await client.is_connected():
            raise NotConnectedError(f"SAP OData connection lost. Please reconnect using {self.connect_tool_name}.")
        return client

    async def handle_connect(self, config: ConnectionConfig) -> ToolResult:
        if self.client is not None:
            await self.client.disconnect()
            self.client = None

        client = ODataClient(config, verbose=self.verbose)
        await client.connect()
        self.client = client

        text = (
            "Successfully connected to SAP OData service:\n"
            f"- Base URL: {config.base_url}\n"
            f"- Username: {config.username}\n"
            f"- Client: {config.client or 'Not specified'}\n"
            f"- CSRF Enabled: {str(config.enable_csrf).lower()}\n\n"
            "Note: The base URL may return 404 when accessed directly. This is normal for SAP OData services - "
            f"you need to specify a service name. Use '{self.tool_prefix}get_services' to discover available services."
        )
        return ToolResult(text=text)

    async def handle_get_services(self) -> ToolResult:
        client = await self._live_client()
        result = await client.get_services()
        return ToolResult(text=format_services(result), raw_data=result.model_dump(mode='json'))

    async def handle_get_service_metadata(self, args: ServiceArguments) -> ToolResult:
        client = await self._live_client()
        result = await client.get_service_metadata(args.service_name)
        return ToolResult(text=format_metadata(args.service_name, result),
                          raw_data=result.model_dump(mode='json', exclude_none=True))

    async def handle_query_entity_set(self, args: QueryEntitySetArguments) -> ToolResult:
        client = await self._live_client()
        options = args.query_options()
        result = await client.query_entity_set(args.service_name, args.entity_set, options)
        return ToolResult(text=format_query_result(args.service_name, args.entity_set, result, options),
                          raw_data=result)

    async def handle_get_entity(self, args: EntityKeyArguments) -> ToolResult:
        client = await self._live_client()
        result = await client.get_entity(args.service_name, args.entity_set, args.key_values)
        text = f"SAP OData Entity from {args.service_name}/{args.entity_set}:\n\n"
        text += f"Key values: {_dump(args.key_values)}\n\n"
        text += f"Entity data:\n{_dump(_unwrap_entity(result))}"
        return ToolResult(text=text, raw_data=result)

    async def handle_create_entity(self, args: CreateEntityArguments) -> ToolResult:
        client = await self._live_client()
        result = await client.create_entity(args.service_name, args.entity_set, args.data)
        text = f"SAP OData Entity Created in {args.service_name}/{args.entity_set}:\n\n"
        text += f"Input data:\n{_dump(args.data)}\n\n"
        text += f"Created entity:\n{_dump(_unwrap_entity(result))}"
        return ToolResult(text=text, raw_data=result)

    async def handle_update_entity(self, args: UpdateEntityArguments) -> ToolResult:
        client = await self._live_client()
        result = await client.update_entity(args.service_name, args.entity_set, args.key_values, args.data)
        text = f"SAP OData Entity Updated in {args.service_name}/{args.entity_set}:\n\n"
        text += f"Key values: {_dump(args.key_values)}\n\n"
        text += f"Update data: {_dump(args.data)}\n\n"
        text += "Update successful"
        if result:
            text += f"\n\nResponse: {_dump(result)}"
        return ToolResult(text=text, raw_data=result)

    async def handle_delete_entity(self, args: EntityKeyArguments) -> ToolResult:
        client = await self._live_client()
        await client.delete_entity(args.service_name, args.entity_set, args.key_values)
        text = f"SAP OData Entity Deleted from {args.service_name}/{args.entity_set}:\n\n"
        text += f"Key values: {_dump(args.key_values)}\n\n"
        text += "Entity successfully deleted"
        return ToolResult(text=text)

    async def handle_call_function(self, args: CallFunctionArguments) -> ToolResult:
        client = await self._live_client()
        result = await client.call_function(args.service_name, args.function_name, args.parameters)
        text = f"SAP OData Function Result for {args.service_name}/{args.function_name}:\n\n"
        if args.parameters:
            text += f"Parameters: {_dump(args.parameters)}\n\n"
        text += f"Result:\n{_dump(result)}"
        return ToolResult(text=text, raw_data=result)

    async def handle_connection_status(self) -> ToolResult:
        if self.client is None:
            return ToolResult(text=f"No SAP OData connection established. Use {self.connect_tool_name} to connect to an SAP OData service.")

        try:
            connected = await self.client.is_connected()
        except ODataError as e:
            return ToolResult(text=f"Error checking connection status: {describe_error(e)}")
        info = self.client.get_connection_info()

        text = "SAP OData Connection Status:\n\n"
        text += f"Status: {'✅ Connected' if connected else '❌ Disconnected'}\n"
        text += f"Base URL: {info.base_url}\n"
        text += f"Username: {info.username}\n"
        text += f"Client: {info.client or 'Not specified'}\n"
        text += f"Timeout: {info.timeout}ms\n"
        text += f"CSRF Enabled: {str(info.enable_csrf).lower()}\n"
        text += f"CSRF Token: {'Available' if info.has_csrf_token else 'Not available'}\n"
        if not connected:
            text += f"\nNote: Connection appears to be lost. Use {self.connect_tool_name} to reconnect."
        return ToolResult(text=text)

    async def handle_disconnect(self) -> ToolResult:
        if self.client is None:
            return ToolResult(text="No active SAP OData connection to disconnect")
        client, self.client = self.client, None
        await client.disconnect()
        return ToolResult(text="Successfully disconnected from SAP OData service")

    async def shutdown(self) -> None:
        """Drop the active session, if any. Used on process shutdown."""
        if self.client is not None:
            await self.client.disconnect()
            self.client = None
