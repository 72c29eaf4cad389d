#!/usr/bin/env python3
"""
Tests for ODataClient: connection lifecycle, URL construction and error wrapping.
"""

import asyncio
import unittest

import requests

from fake_backend import BASE_URL, CATALOG_URL, FakeBackend, make_response
from sap_odata_mcp_lib.client import ODataClient, build_key_predicate
from sap_odata_mcp_lib.errors import (AuthenticationError, AuthorizationError, HTTPStatusError,
                                      NetworkError, NotConnectedError)
from sap_odata_mcp_lib.models import ConnectionConfig, QueryOptions

METADATA_XML = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">
  <edmx:DataServices>
    <Schema Namespace="GWSAMPLE_BASIC" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="Product">
        <Key><PropertyRef Name="ProductID"/></Key>
        <Property Name="ProductID" Type="Edm.String" Nullable="false"/>
        <Property Name="Name" Type="Edm.String"/>
      </EntityType>
      <EntityContainer Name="GWSAMPLE_BASIC_Entities">
        <EntitySet Name="ProductSet" EntityType="GWSAMPLE_BASIC.Product"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>"""


def make_client(backend: FakeBackend, **overrides) -> ODataClient:
    values = {"baseUrl": BASE_URL, "username": "DEVELOPER", "password": "secret"}
    values.update(overrides)
    client = ODataClient(ConnectionConfig(**values))
    client.session.http.request = backend
    return client


def connected_backend() -> FakeBackend:
    backend = FakeBackend()
    backend.add('GET', CATALOG_URL, make_response(200, json_body={'d': {'results': []}}))
    return backend


class TestConnect(unittest.TestCase):
    """Connection verification: catalog first, then the base path."""

    def test_connect_via_catalog(self):
        backend = connected_backend()
        client = make_client(backend)
        asyncio.run(client.connect())

        self.assertTrue(client.session.connected)
        catalog_call = backend.calls_to('GET', CATALOG_URL)[0]
        self.assertEqual(catalog_call.kwargs['timeout'], 10.0)

    def test_base_path_404_counts_as_success(self):
        backend = FakeBackend()  # every path answers 404
        client = make_client(backend)
        asyncio.run(client.connect())

        self.assertTrue(client.session.connected)
        self.assertTrue(client.get_connection_info().connected)

    def test_authentication_failure(self):
        backend = FakeBackend(default=make_response(401, set_cookies=["SAP_SESSIONID=stale; path=/"]))
        client = make_client(backend)

        with self.assertRaises(AuthenticationError) as ctx:
            asyncio.run(client.connect())
        self.assertEqual(ctx.exception.message,
                         "Failed to connect to SAP OData service: Authentication failed - check username/password")
        self.assertFalse(client.session.connected)
        self.assertIsNone(client.session.state.csrf_token)
        self.assertEqual(client.session.state.cookies, [])

    def test_authorization_failure(self):
        backend = FakeBackend(default=make_response(403))
        client = make_client(backend)

        with self.assertRaises(AuthorizationError) as ctx:
            asyncio.run(client.connect())
        self.assertIn("Access forbidden - check user authorizations", ctx.exception.message)
        self.assertFalse(client.session.connected)

    def test_server_error(self):
        backend = FakeBackend(default=make_response(500))
        client = make_client(backend)

        with self.assertRaises(HTTPStatusError) as ctx:
            asyncio.run(client.connect())
        self.assertEqual(ctx.exception.message,
                         "Failed to connect to SAP OData service: HTTP 500: Internal Server Error")

    def test_no_response(self):
        backend = FakeBackend(default=None)
        backend.add('GET', BASE_URL, requests.exceptions.ConnectTimeout("timed out"))
        backend.add('GET', CATALOG_URL, requests.exceptions.ConnectionError("refused"))
        client = make_client(backend)

        with self.assertRaises(NetworkError) as ctx:
            asyncio.run(client.connect())
        self.assertEqual(ctx.exception.message,
                         "Failed to connect to SAP OData service: No response received from server")

    def test_csrf_transport_failure_is_not_fatal(self):
        backend = connected_backend()
        backend.add('GET', BASE_URL, requests.exceptions.TooManyRedirects("Exceeded 30 redirects."))
        client = make_client(backend)
        asyncio.run(client.connect())

        self.assertTrue(client.session.connected)
        self.assertIsNone(client.session.state.csrf_token)

    def test_disconnect_is_idempotent(self):
        client = make_client(connected_backend())

        async def scenario():
            await client.connect()
            await client.disconnect()
            await client.disconnect()

        asyncio.run(scenario())
        self.assertFalse(client.session.connected)
        self.assertFalse(client.get_connection_info().has_csrf_token)

    def test_operations_require_connection(self):
        client = make_client(FakeBackend())
        with self.assertRaises(NotConnectedError):
            asyncio.run(client.query_entity_set("SVC", "Products"))
        with self.assertRaises(NotConnectedError):
            asyncio.run(client.get_services())


class TestLivenessProbe(unittest.TestCase):

    def test_probe_404_is_alive(self):
        backend = connected_backend()
        client = make_client(backend)
        asyncio.run(client.connect())
        self.assertTrue(asyncio.run(client.is_connected()))
        self.assertEqual(backend.last.kwargs['timeout'], 5.0)

    def test_probe_failure_marks_disconnected(self):
        backend = connected_backend()
        backend.add('GET', BASE_URL, [make_response(200), make_response(500)])
        client = make_client(backend)
        asyncio.run(client.connect())

        self.assertFalse(asyncio.run(client.is_connected()))
        self.assertFalse(client.session.connected)

    def test_probe_403_clears_session(self):
        backend = connected_backend()
        backend.add('GET', BASE_URL, [make_response(200, headers={'X-CSRF-Token': 'abc123'}), make_response(403)])
        client = make_client(backend)
        asyncio.run(client.connect())
        self.assertEqual(client.session.state.csrf_token, 'abc123')

        self.assertFalse(asyncio.run(client.is_connected()))
        self.assertIsNone(client.session.state.csrf_token)

    def test_broken_response_stream_reads_as_disconnected(self):
        backend = connected_backend()
        backend.add('GET', BASE_URL, [make_response(200), requests.exceptions.ChunkedEncodingError("broken")])
        client = make_client(backend)
        asyncio.run(client.connect())

        self.assertFalse(asyncio.run(client.is_connected()))
        self.assertFalse(client.session.connected)

    def test_never_connected_skips_network(self):
        backend = FakeBackend()
        client = make_client(backend)
        self.assertFalse(asyncio.run(client.is_connected()))
        self.assertEqual(backend.calls, [])


class TestDataOperations(unittest.TestCase):

    def setUp(self):
        self.backend = connected_backend()
        self.client = make_client(self.backend, enableCSRF=False)
        asyncio.run(self.client.connect())

    def test_query_string_order_and_encoding(self):
        url = BASE_URL + "SVC/Products?$top=5&$filter=Price%20gt%2010"
        self.backend.add('GET', url, make_response(200, json_body={'d': {'results': [{'ProductID': 'P1'}]}}))

        result = asyncio.run(self.client.query_entity_set("SVC", "Products", QueryOptions(top=5, filter="Price gt 10")))

        self.assertEqual(self.backend.last.url, url)
        self.assertEqual(result, {'d': {'results': [{'ProductID': 'P1'}]}})

    def test_all_query_options(self):
        options = QueryOptions(select=["ProductID", "Name"], filter="Price gt 10", orderby="Name desc",
                               top=0, skip=20, expand=["ToSupplier"])
        self.backend.add('GET', BASE_URL + "SVC/Products?$top=0&$skip=20&$select=ProductID%2CName"
                                           "&$filter=Price%20gt%2010&$orderby=Name%20desc&$expand=ToSupplier",
                         make_response(200, json_body={'value': []}))

        result = asyncio.run(self.client.query_entity_set("SVC", "Products", options))
        self.assertEqual(result, {'value': []})

    def test_key_predicate_identical_across_operations(self):
        keys = {"SalesOrderID": "0500000001", "ItemPosition": "0000000010"}
        path = BASE_URL + "SVC/SalesOrderLineItemSet(SalesOrderID='0500000001',ItemPosition='0000000010')"
        self.backend.add('GET', path, make_response(200, json_body={'d': {}}))
        self.backend.add('PUT', path, make_response(204))
        self.backend.add('DELETE', path, make_response(204))

        async def scenario():
            await self.client.get_entity("SVC", "SalesOrderLineItemSet", keys)
            await self.client.update_entity("SVC", "SalesOrderLineItemSet", keys, {"Quantity": 2})
            return await self.client.delete_entity("SVC", "SalesOrderLineItemSet", keys)

        self.assertIsNone(asyncio.run(scenario()))
        self.assertEqual([call.url for call in self.backend.calls[-3:]], [path, path, path])
        self.assertEqual(self.backend.calls_to('PUT')[0].kwargs['json'], {"Quantity": 2})

    def test_key_values_are_percent_encoded(self):
        self.assertEqual(build_key_predicate({"Name": "A B/C"}), "Name='A%20B%2FC'")
        self.assertEqual(build_key_predicate({"Active": True}), "Active='true'")
        with self.assertRaises(ValueError):
            build_key_predicate({})

    def test_empty_body_reads_as_none(self):
        path = BASE_URL + "SVC/Products(ProductID='P1')"
        self.backend.add('PUT', path, make_response(204))
        result = asyncio.run(self.client.update_entity("SVC", "Products", {"ProductID": "P1"}, {"Name": "x"}))
        self.assertIsNone(result)

    def test_call_function_parameters(self):
        url = BASE_URL + "SVC/ActivateProgram?Name=Z%20TEST&Force=true"
        self.backend.add('GET', url, make_response(200, json_body={'d': {'Status': 'OK'}}))

        result = asyncio.run(self.client.call_function("SVC", "ActivateProgram", {"Name": "Z TEST", "Force": True}))

        self.assertEqual(self.backend.last.url, url)
        self.assertEqual(result, {'d': {'Status': 'OK'}})

    def test_query_error_is_prefixed(self):
        with self.assertRaises(HTTPStatusError) as ctx:
            self.backend.add('GET', BASE_URL + "SVC/Products", make_response(500))
            asyncio.run(self.client.query_entity_set("SVC", "Products"))
        self.assertEqual(ctx.exception.message, "Failed to query entity set Products: HTTP 500: Internal Server Error")

    def test_401_forces_reconnect(self):
        self.backend.add('GET', BASE_URL + "SVC/Products", make_response(401))

        with self.assertRaises(AuthenticationError):
            asyncio.run(self.client.query_entity_set("SVC", "Products"))
        with self.assertRaises(NotConnectedError):
            asyncio.run(self.client.query_entity_set("SVC", "Products"))

    def test_service_metadata(self):
        self.backend.add('GET', BASE_URL + "GWSAMPLE_BASIC/$metadata", make_response(200, text=METADATA_XML))

        metadata = asyncio.run(self.client.get_service_metadata("GWSAMPLE_BASIC"))

        self.assertEqual([entity.name for entity in metadata.entities], ["Product"])
        self.assertEqual(metadata.entity_sets[0].entity_type, "Product")
        self.assertEqual(self.backend.last.headers['Accept'], 'application/xml')

    def test_unparseable_metadata_is_not_an_error(self):
        self.backend.add('GET', BASE_URL + "BROKEN/$metadata", make_response(200, text="<html>oops"))

        metadata = asyncio.run(self.client.get_service_metadata("BROKEN"))

        self.assertEqual(metadata.entities, [])
        self.assertEqual(metadata.raw, "<html>oops")


if __name__ == '__main__':
    unittest.main()
