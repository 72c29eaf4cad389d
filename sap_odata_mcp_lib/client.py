"""
SAP OData client: connection lifecycle, service discovery, metadata and CRUD operations.
"""

import asyncio
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import requests

from .constants import BASE_PATH_PROBE_TIMEOUT, CATALOG_PROBE_TIMEOUT, CATALOG_SERVICE_PATHS, CSRF_HEADER, LIVENESS_PROBE_TIMEOUT
from .discovery import discover_services
from .errors import (AuthenticationError, AuthorizationError, NotConnectedError, NotFoundError,
                     ODataError, describe_error, wrap_error)
from .metadata_parser import MetadataParser
from .models import ConnectionConfig, ConnectionInfo, ODataMetadata, QueryOptions, ServiceList
from .session import ODataSession

NOT_CONNECTED_MESSAGE = "Not connected to SAP OData service. Connect first."


def to_wire_string(value: Any) -> str:
    """Stringify a value for a URL: booleans as true/false, None as empty."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return ''
    return str(value)


def encode_query_params(params):
    """Encode query parameters properly for OData compatibility.

    OData servers (especially SAP backends) don't accept '+' for spaces
    in URL parameters. They require '%20' according to RFC 3986.
    """
    encoded = urlencode(params, doseq=True, safe='$')
    # Replace '+' with '%20' for OData compatibility
    return encoded.replace('+', '%20')


def build_query_params(options: QueryOptions) -> List[Tuple[str, str]]:
    """OData system query options in wire order, only those present."""
    params = []
    if options.top is not None:
        params.append(('$top', str(options.top)))
    if options.skip is not None:
        params.append(('$skip', str(options.skip)))
    if options.select:
        params.append(('$select', ','.join(options.select)))
    if options.filter:
        params.append(('$filter', options.filter))
    if options.orderby:
        params.append(('$orderby', options.orderby))
    if options.expand:
        params.append(('$expand', ','.join(options.expand)))
    return params


def build_key_predicate(key_values: Dict[str, Any]) -> str:
    """Build ``Key='value'`` pairs joined by commas, each value percent-encoded."""
    if not key_values:
        raise ValueError("At least one key value is required.")
    return ','.join(
        f"{key}='{quote(to_wire_string(value), safe='')}'"
        for key, value in key_values.items()
    )


def with_query(path: str, params) -> str:
    if not params:
        return path
    return f"{path}?{encode_query_params(params)}"


class ODataClient:
    """Client for one SAP OData session.

    Owns exactly one ODataSession. Construct one client per connection; a new
    connection means a new client.
    """

    def __init__(self, config: ConnectionConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.session = ODataSession(config, verbose=verbose)
        self.parser = MetadataParser(verbose=verbose)

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Client VERBOSE] {message}", file=sys.stderr)

    async def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        return await asyncio.to_thread(self.session.request, method, path, **kwargs)

    @staticmethod
    def _read_body(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _ensure_connected(self) -> None:
        if not self.session.connected:
            raise NotConnectedError(NOT_CONNECTED_MESSAGE)

    # --- Connection lifecycle ---

    async def connect(self) -> None:
        """Establish the session and verify connectivity. Clears all state on failure."""
        print(f"Connecting to SAP OData service at {self.config.base_url}", file=sys.stderr)
        try:
            if self.config.enable_csrf:
                await self._fetch_csrf_token()
            await self._verify_connectivity()
            self.session.mark_connected()
            print("Successfully connected to SAP OData service", file=sys.stderr)
        except Exception as e:
            self.session.clear()
            raise wrap_error("Failed to connect to SAP OData service", e) from e

    async def _fetch_csrf_token(self) -> None:
        """Fetch a CSRF token. Some backends don't require it, so failure is not fatal."""
        self._log_verbose("Fetching CSRF token...")
        try:
            await self._request('GET', '', headers={CSRF_HEADER: 'Fetch', 'Accept': 'application/xml'})
        except ODataError as e:
            print(f"WARNING: Could not fetch CSRF token: {describe_error(e)}", file=sys.stderr)

    async def _verify_connectivity(self) -> None:
        # Method 1: the catalog service
        try:
            await self._request('GET', CATALOG_SERVICE_PATHS[0],
                                headers={'Accept': 'application/json'}, timeout=CATALOG_PROBE_TIMEOUT)
            self._log_verbose("Connection verified via catalog service")
            return
        except ODataError as e:
            self._log_verbose(f"Catalog service not accessible ({describe_error(e)}), trying base path")

        # Method 2: the bare base path. SAP answers 404 there once authentication succeeded.
        try:
            await self._request('GET', '', headers={'Accept': 'application/xml'}, timeout=BASE_PATH_PROBE_TIMEOUT)
        except NotFoundError:
            self._log_verbose("Connection verified - base URL returns 404 as expected")
        except AuthenticationError as e:
            raise AuthenticationError("Authentication failed - check username/password",
                                      status_code=e.status_code, reason=e.reason) from e
        except AuthorizationError as e:
            raise AuthorizationError("Access forbidden - check user authorizations",
                                     status_code=e.status_code, reason=e.reason) from e

    async def is_connected(self) -> bool:
        """Liveness probe. Performs a network round trip on every call."""
        if not self.session.connected:
            return False
        try:
            await self._request('GET', '', headers={'Accept': 'application/xml'}, timeout=LIVENESS_PROBE_TIMEOUT)
            return True
        except NotFoundError:
            # 404 is expected for the incomplete base URL
            return True
        except (AuthenticationError, AuthorizationError) as e:
            self._log_verbose(f"Liveness probe rejected: {describe_error(e)}, clearing session")
            self.session.clear()
            return False
        except ODataError as e:
            self._log_verbose(f"Liveness probe failed: {describe_error(e)}")
            self.session.mark_connected(False)
            return False

    async def disconnect(self) -> None:
        """Clear all session state. Idempotent."""
        self.session.clear()
        print("Disconnected from SAP OData service", file=sys.stderr)

    def get_connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            connected=self.session.connected,
            base_url=self.config.base_url,
            username=self.config.username,
            client=self.config.client,
            timeout=self.config.timeout,
            enable_csrf=self.config.enable_csrf,
            has_csrf_token=bool(self.session.state.csrf_token),
        )

    # --- Discovery and metadata ---

    async def get_services(self) -> ServiceList:
        self._ensure_connected()
        try:
            return await discover_services(self.session)
        except Exception as e:
            raise wrap_error("Failed to get OData services", e) from e

    async def get_service_metadata(self, service_name: str) -> ODataMetadata:
        """Fetch and parse ``<service>/$metadata``. Parse failures yield an empty model."""
        self._ensure_connected()
        try:
            response = await self._request('GET', f"{service_name}/$metadata", headers={'Accept': 'application/xml'})
        except Exception as e:
            raise wrap_error("Failed to get service metadata", e) from e
        return self.parser.parse(response.content)

    # --- Data operations ---

    async def query_entity_set(self, service_name: str, entity_set: str,
                               options: Optional[QueryOptions] = None) -> Any:
        """Query an entity set. Returns the response body uninterpreted."""
        self._ensure_connected()
        params = build_query_params(options or QueryOptions())
        try:
            response = await self._request('GET', with_query(f"{service_name}/{entity_set}", params))
            return self._read_body(response)
        except Exception as e:
            raise wrap_error(f"Failed to query entity set {entity_set}", e) from e

    async def get_entity(self, service_name: str, entity_set: str, key_values: Dict[str, Any]) -> Any:
        self._ensure_connected()
        try:
            path = f"{service_name}/{entity_set}({build_key_predicate(key_values)})"
            response = await self._request('GET', path)
            return self._read_body(response)
        except Exception as e:
            raise wrap_error("Failed to get entity", e) from e

    async def create_entity(self, service_name: str, entity_set: str, data: Dict[str, Any]) -> Any:
        self._ensure_connected()
        try:
            response = await self._request('POST', f"{service_name}/{entity_set}", json=data)
            return self._read_body(response)
        except Exception as e:
            raise wrap_error("Failed to create entity", e) from e

    async def update_entity(self, service_name: str, entity_set: str, key_values: Dict[str, Any],
                            data: Dict[str, Any]) -> Any:
        self._ensure_connected()
        try:
            path = f"{service_name}/{entity_set}({build_key_predicate(key_values)})"
            response = await self._request('PUT', path, json=data)
            return self._read_body(response)
        except Exception as e:
            raise wrap_error("Failed to update entity", e) from e

    async def delete_entity(self, service_name: str, entity_set: str, key_values: Dict[str, Any]) -> None:
        self._ensure_connected()
        try:
            path = f"{service_name}/{entity_set}({build_key_predicate(key_values)})"
            await self._request('DELETE', path)
        except Exception as e:
            raise wrap_error("Failed to delete entity", e) from e

    async def call_function(self, service_name: str, function_name: str,
                            parameters: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a function import with GET, parameters as query-string values."""
        self._ensure_connected()
        params = [(key, to_wire_string(value)) for key, value in (parameters or {}).items()]
        try:
            response = await self._request('GET', with_query(f"{service_name}/{function_name}", params))
            return self._read_body(response)
        except Exception as e:
            raise wrap_error(f"Failed to call function {function_name}", e) from e
