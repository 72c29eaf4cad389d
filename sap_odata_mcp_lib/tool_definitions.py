"""
Static tool table: names, descriptions, JSON schemas and argument models.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from .models import ConnectionConfig, QueryOptions


class ToolArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ServiceArguments(ToolArguments):
    service_name: str = Field(alias='serviceName', min_length=1)


class QueryEntitySetArguments(ServiceArguments, QueryOptions):
    entity_set: str = Field(alias='entitySet', min_length=1)

    def query_options(self) -> QueryOptions:
        return QueryOptions(select=self.select, filter=self.filter, orderby=self.orderby,
                            top=self.top, skip=self.skip, expand=self.expand)


class EntityKeyArguments(ServiceArguments):
    entity_set: str = Field(alias='entitySet', min_length=1)
    key_values: Dict[str, Any] = Field(alias='keyValues', min_length=1)


class CreateEntityArguments(ServiceArguments):
    entity_set: str = Field(alias='entitySet', min_length=1)
    data: Dict[str, Any]


class UpdateEntityArguments(EntityKeyArguments):
    data: Dict[str, Any]


class CallFunctionArguments(ServiceArguments):
    function_name: str = Field(alias='functionName', min_length=1)
    parameters: Dict[str, Any] = {}


class ToolDefinition(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str  # base name, the configured prefix is added when exposed
    description: str
    input_schema: Dict[str, Any]
    arguments_model: Optional[Type[BaseModel]] = None

    def to_mcp(self, prefix: str = "") -> Dict[str, Any]:
        return {"name": f"{prefix}{self.name}", "description": self.description, "inputSchema": self.input_schema}


_SERVICE_NAME = {"type": "string", "description": "Name of the OData service"}
_ENTITY_SET = {"type": "string", "description": "Name of the entity set"}
_KEY_VALUES = {"type": "object", "description": "Key-value pairs for entity keys", "additionalProperties": True}


def _object_schema(properties: Optional[Dict[str, Any]] = None, required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return schema


TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name="connect",
        description="Connect to SAP OData service",
        input_schema=_object_schema({
            "baseUrl": {"type": "string", "description": "SAP OData service base URL (e.g., https://sap-host:8000/sap/opu/odata/sap/)"},
            "username": {"type": "string", "description": "SAP username"},
            "password": {"type": "string", "description": "SAP password"},
            "client": {"type": "string", "description": "SAP client number (optional)"},
            "timeout": {"type": "integer", "description": "Request timeout in milliseconds", "default": 30000},
            "validateSSL": {"type": "boolean", "description": "Validate SSL certificates", "default": True},
            "enableCSRF": {"type": "boolean", "description": "Enable CSRF token handling", "default": True},
        }, ["baseUrl", "username", "password"]),
        arguments_model=ConnectionConfig,
    ),
    ToolDefinition(
        name="get_services",
        description="Get list of available OData services",
        input_schema=_object_schema(),
    ),
    ToolDefinition(
        name="get_service_metadata",
        description="Get metadata for a specific OData service",
        input_schema=_object_schema({"serviceName": _SERVICE_NAME}, ["serviceName"]),
        arguments_model=ServiceArguments,
    ),
    ToolDefinition(
        name="query_entity_set",
        description="Query an OData entity set with filtering, sorting, and pagination",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME,
            "entitySet": _ENTITY_SET,
            "select": {"type": "array", "items": {"type": "string"}, "description": "Fields to select"},
            "filter": {"type": "string", "description": "OData filter expression"},
            "orderby": {"type": "string", "description": "OData orderby expression"},
            "top": {"type": "integer", "description": "Number of records to return"},
            "skip": {"type": "integer", "description": "Number of records to skip"},
            "expand": {"type": "array", "items": {"type": "string"}, "description": "Navigation properties to expand"},
        }, ["serviceName", "entitySet"]),
        arguments_model=QueryEntitySetArguments,
    ),
    ToolDefinition(
        name="get_entity",
        description="Get a specific entity by its key values",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME, "entitySet": _ENTITY_SET, "keyValues": _KEY_VALUES,
        }, ["serviceName", "entitySet", "keyValues"]),
        arguments_model=EntityKeyArguments,
    ),
    ToolDefinition(
        name="create_entity",
        description="Create a new entity in an entity set",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME,
            "entitySet": _ENTITY_SET,
            "data": {"type": "object", "description": "Entity data to create", "additionalProperties": True},
        }, ["serviceName", "entitySet", "data"]),
        arguments_model=CreateEntityArguments,
    ),
    ToolDefinition(
        name="update_entity",
        description="Update an existing entity",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME,
            "entitySet": _ENTITY_SET,
            "keyValues": _KEY_VALUES,
            "data": {"type": "object", "description": "Updated entity data", "additionalProperties": True},
        }, ["serviceName", "entitySet", "keyValues", "data"]),
        arguments_model=UpdateEntityArguments,
    ),
    ToolDefinition(
        name="delete_entity",
        description="Delete an entity",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME, "entitySet": _ENTITY_SET, "keyValues": _KEY_VALUES,
        }, ["serviceName", "entitySet", "keyValues"]),
        arguments_model=EntityKeyArguments,
    ),
    ToolDefinition(
        name="call_function",
        description="Call an OData function import",
        input_schema=_object_schema({
            "serviceName": _SERVICE_NAME,
            "functionName": {"type": "string", "description": "Name of the function to call"},
            "parameters": {"type": "object", "description": "Function parameters", "additionalProperties": True},
        }, ["serviceName", "functionName"]),
        arguments_model=CallFunctionArguments,
    ),
    ToolDefinition(
        name="connection_status",
        description="Check current SAP connection status",
        input_schema=_object_schema(),
    ),
    ToolDefinition(
        name="disconnect",
        description="Disconnect from SAP OData service",
        input_schema=_object_schema(),
    ),
]

TOOLS_BY_NAME: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOL_DEFINITIONS}
