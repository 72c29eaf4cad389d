"""
Data models for connections, discovery results, metadata and tool results.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_TIMEOUT_MS


class ConnectionConfig(BaseModel):
    """Connection settings for one SAP OData session. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_url: str = Field(alias='baseUrl', min_length=1)
    username: str
    password: str
    client: Optional[str] = None  # SAP client number, sent as sap-client header
    timeout: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)  # milliseconds
    validate_ssl: bool = Field(default=True, alias='validateSSL')
    enable_csrf: bool = Field(default=True, alias='enableCSRF')

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0


class ConnectionInfo(BaseModel):
    connected: bool
    base_url: str
    username: str
    client: Optional[str] = None
    timeout: int
    enable_csrf: bool
    has_csrf_token: bool


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return value


class QueryOptions(BaseModel):
    """OData system query options. Values are passed through verbatim."""

    select: Optional[List[str]] = None
    filter: Optional[str] = None
    orderby: Optional[str] = None
    top: Optional[int] = Field(default=None, ge=0)
    skip: Optional[int] = Field(default=None, ge=0)
    expand: Optional[List[str]] = None

    @field_validator('select', 'expand', mode='before')
    @classmethod
    def split_comma_lists(cls, value: Any) -> Any:
        return _split_list(value)


class ServiceDescriptor(BaseModel):
    name: str
    title: str
    version: Optional[str] = None
    url: Optional[str] = None


class ServiceList(BaseModel):
    services: List[ServiceDescriptor] = []
    source: str
    catalog_url: Optional[str] = None
    message: Optional[str] = None


class EntityProperty(BaseModel):
    name: str
    type: str  # OData type string (e.g., "Edm.String")
    nullable: bool = True
    is_key: bool = False


class EntityType(BaseModel):
    name: str
    properties: List[EntityProperty] = []
    key_properties: List[str] = []


class EntitySet(BaseModel):
    name: str
    entity_type: str


class FunctionImport(BaseModel):
    name: str
    return_type: Optional[str] = None
    http_method: str = "GET"
    parameters: List[EntityProperty] = []


class ODataMetadata(BaseModel):
    entities: List[EntityType] = []
    functions: List[FunctionImport] = []
    entity_sets: List[EntitySet] = []
    raw: Optional[Any] = None  # Only set when the document could not be parsed


class RecordCollection(BaseModel):
    """A collection payload tagged with the envelope convention it arrived in."""

    envelope: Literal['results', 'value', 'none']
    records: List[Any] = []


def classify_collection(payload: Any) -> RecordCollection:
    """Detect the OData v2 ``d.results`` or v4 ``value`` collection envelope."""
    if isinstance(payload, dict):
        d = payload.get('d')
        if isinstance(d, dict) and isinstance(d.get('results'), list):
            return RecordCollection(envelope='results', records=d['results'])
        if isinstance(d, list):
            return RecordCollection(envelope='results', records=d)
        if isinstance(payload.get('value'), list):
            return RecordCollection(envelope='value', records=payload['value'])
    return RecordCollection(envelope='none')


class ToolResult(BaseModel):
    """Human-readable summary plus an optional raw-data side channel."""

    text: str
    raw_data: Optional[Any] = None
    is_error: bool = False

    def to_call_result(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            result["isError"] = True
        if self.raw_data is not None:
            result["_rawData"] = self.raw_data
        return result
