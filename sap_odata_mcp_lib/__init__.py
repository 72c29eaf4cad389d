"""
SAP OData MCP Library - exposes SAP OData v2 services to MCP clients as tools.
"""

from .models import (
    ConnectionConfig,
    ConnectionInfo,
    QueryOptions,
    ServiceDescriptor,
    ServiceList,
    EntityProperty,
    EntityType,
    EntitySet,
    FunctionImport,
    ODataMetadata,
    ToolResult,
)
from .errors import (
    ODataError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    HTTPStatusError,
    NetworkError,
    ProtocolError,
    NotConnectedError,
)
from .metadata_parser import MetadataParser
from .session import ODataSession
from .client import ODataClient
from .handlers import ODataToolHandlers
from .bridge import ODataMCPBridge

__all__ = [
    'ConnectionConfig',
    'ConnectionInfo',
    'QueryOptions',
    'ServiceDescriptor',
    'ServiceList',
    'EntityProperty',
    'EntityType',
    'EntitySet',
    'FunctionImport',
    'ODataMetadata',
    'ToolResult',
    'ODataError',
    'AuthenticationError',
    'AuthorizationError',
    'NotFoundError',
    'HTTPStatusError',
    'NetworkError',
    'ProtocolError',
    'NotConnectedError',
    'MetadataParser',
    'ODataSession',
    'ODataClient',
    'ODataToolHandlers',
    'ODataMCPBridge',
]
