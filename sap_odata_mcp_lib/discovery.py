"""
Best-effort discovery of the OData services registered on a SAP Gateway.

There is no reliable universal discovery endpoint, so discovery walks an
ordered list of strategies of decreasing confidence. Each strategy returns a
ServiceList when it found something and None otherwise; the first hit wins.
Candidates are tried strictly one after another.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from .constants import (CATALOG_PROBE_TIMEOUT, CATALOG_SERVICE_PATHS, COMMON_SERVICE_NAMES,
                        NONE_FOUND_MESSAGE, SERVICE_PROBE_TIMEOUT, SOURCE_COMMON_SERVICES,
                        SOURCE_GATEWAY_CATALOG, SOURCE_NONE_FOUND)
from .errors import ODataError, ProtocolError, describe_error
from .models import ServiceDescriptor, ServiceList, classify_collection
from .session import ODataSession

DiscoveryStrategy = Callable[[ODataSession], Awaitable[Optional[ServiceList]]]


def _read_json(response) -> object:
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(f"Expected a JSON body: {e}") from e


def service_from_catalog_record(record: dict, base_url: str) -> ServiceDescriptor:
    """Map one catalog ServiceCollection record to a ServiceDescriptor."""
    service_id = str(record.get('ID') or record.get('TechnicalServiceName') or '')
    version = record.get('Version') or record.get('TechnicalServiceVersion')
    return ServiceDescriptor(
        name=service_id,
        title=record.get('Title') or service_id,
        version=str(version) if version is not None else None,
        url=f"{base_url}{service_id}/",
    )


async def discover_via_catalog(session: ODataSession,
                               catalog_paths: Sequence[str] = CATALOG_SERVICE_PATHS) -> Optional[ServiceList]:
    """Ask the Gateway catalog service, trying each known path variant."""
    for catalog_path in catalog_paths:
        session.log_verbose(f"Trying catalog service at: {catalog_path}")
        try:
            response = await asyncio.to_thread(
                session.request, 'GET', catalog_path,
                headers={'Accept': 'application/json'}, timeout=CATALOG_PROBE_TIMEOUT,
            )
            payload = _read_json(response)
        except ODataError as e:
            session.log_verbose(f"Catalog service failed at {catalog_path}: {describe_error(e)}")
            continue

        collection = classify_collection(payload)
        if collection.envelope == 'none':
            session.log_verbose(f"Catalog service at {catalog_path} returned no results array")
            continue

        services = [
            service_from_catalog_record(record, session.base_url)
            for record in collection.records if isinstance(record, dict)
        ]
        return ServiceList(services=services, source=SOURCE_GATEWAY_CATALOG, catalog_url=catalog_path)
    return None


async def discover_via_common_services(session: ODataSession,
                                       service_names: Sequence[str] = COMMON_SERVICE_NAMES) -> Optional[ServiceList]:
    """Probe well-known service names and keep the ones that answer."""
    found: List[ServiceDescriptor] = []
    for service_name in service_names:
        try:
            await asyncio.to_thread(
                session.request, 'GET', f"{service_name}/",
                headers={'Accept': 'application/xml'}, timeout=SERVICE_PROBE_TIMEOUT,
            )
        except ODataError:
            continue
        found.append(ServiceDescriptor(name=service_name, title=service_name, url=f"{session.base_url}{service_name}/"))

    if found:
        return ServiceList(services=found, source=SOURCE_COMMON_SERVICES)
    return None


DISCOVERY_STRATEGIES: List[DiscoveryStrategy] = [
    discover_via_catalog,
    discover_via_common_services,
]


async def discover_services(session: ODataSession,
                            strategies: Sequence[DiscoveryStrategy] = DISCOVERY_STRATEGIES) -> ServiceList:
    """Run the strategies in order and return the first result, or a tagged empty list."""
    for strategy in strategies:
        result = await strategy(session)
        if result is not None:
            return result
        session.log_verbose(f"Discovery strategy {strategy.__name__} found nothing")
    return ServiceList(services=[], source=SOURCE_NONE_FOUND, message=NONE_FOUND_MESSAGE)
