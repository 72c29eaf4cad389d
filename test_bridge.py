#!/usr/bin/env python3
"""
Tests for the MCP bridge: JSON-RPC dispatch and FastMCP tool registration.
"""

import asyncio
import inspect
import unittest
from unittest.mock import patch

import requests
from fastmcp.exceptions import ToolError

from fake_backend import BASE_URL, CATALOG_URL, FakeBackend, make_response
from sap_odata_mcp_lib.bridge import ODataMCPBridge
from sap_odata_mcp_lib.models import ConnectionConfig
from sap_odata_mcp_lib.transport import TransportMessage

EXPECTED_TOOLS = [
    "connect", "get_services", "get_service_metadata", "query_entity_set", "get_entity",
    "create_entity", "update_entity", "delete_entity", "call_function", "connection_status", "disconnect",
]


def rpc(bridge: ODataMCPBridge, method: str, params=None, id=1, backend: FakeBackend = None):
    message = TransportMessage(id=id, method=method, params=params)
    with patch.object(requests.Session, 'request', new=backend or FakeBackend()):
        return asyncio.run(bridge.handle_message(message))


class TestJsonRpcDispatch(unittest.TestCase):

    def setUp(self):
        self.bridge = ODataMCPBridge()

    def test_tools_list(self):
        response = rpc(self.bridge, "tools/list")
        names = [tool["name"] for tool in response.result["tools"]]
        self.assertEqual(names, [f"sap_{name}" for name in EXPECTED_TOOLS])
        query_tool = response.result["tools"][3]
        self.assertEqual(query_tool["inputSchema"]["required"], ["serviceName", "entitySet"])
        connect_tool = response.result["tools"][0]
        self.assertEqual(connect_tool["inputSchema"]["properties"]["timeout"]["type"], "integer")

    def test_custom_prefix(self):
        bridge = ODataMCPBridge(tool_prefix="erp_")
        names = [tool["name"] for tool in rpc(bridge, "tools/list").result["tools"]]
        self.assertEqual(len(names), 11)
        self.assertTrue(all(name.startswith("erp_") for name in names))

    def test_initialize(self):
        response = rpc(self.bridge, "initialize", {"protocolVersion": "2024-11-05", "capabilities": {},
                                                  "clientInfo": {"name": "test", "version": "1"}})
        self.assertEqual(response.id, 1)
        self.assertEqual(response.result["protocolVersion"], "2024-11-05")
        self.assertIn("tools", response.result["capabilities"])
        self.assertEqual(response.result["serverInfo"]["name"], "sap-odata-mcp")

    def test_ping(self):
        response = rpc(self.bridge, "ping", id="abc")
        self.assertEqual(response.to_dict(), {"jsonrpc": "2.0", "id": "abc", "result": {}})

    def test_notification_gets_no_response(self):
        self.assertIsNone(rpc(self.bridge, "notifications/initialized", id=None))

    def test_unknown_method(self):
        response = rpc(self.bridge, "resources/list")
        self.assertEqual(response.error["code"], -32601)

    def test_unknown_tool(self):
        response = rpc(self.bridge, "tools/call", {"name": "sap_drop_database", "arguments": {}})
        self.assertEqual(response.error["code"], -32601)
        response = rpc(self.bridge, "tools/call", {"name": "connect", "arguments": {}})
        self.assertEqual(response.error["code"], -32601)

    def test_invalid_arguments(self):
        response = rpc(self.bridge, "tools/call", {"name": "sap_get_service_metadata", "arguments": {}})
        self.assertEqual(response.error["code"], -32602)
        response = rpc(self.bridge, "tools/call", {"name": "sap_get_services", "arguments": "nope"})
        self.assertEqual(response.error["code"], -32602)

    def test_failure_is_error_result(self):
        response = rpc(self.bridge, "tools/call", {"name": "sap_get_services", "arguments": {}})
        self.assertTrue(response.result["isError"])
        self.assertIn("Not connected to SAP OData service", response.result["content"][0]["text"])

    def test_connected_call_carries_raw_data(self):
        backend = FakeBackend()
        backend.add('GET', CATALOG_URL, make_response(200, json_body={'d': {'results': [{"ID": "ZDEV_SRV"}]}}))

        connect = rpc(self.bridge, "tools/call", {"name": "sap_connect", "arguments": {
            "baseUrl": BASE_URL, "username": "DEVELOPER", "password": "secret"}}, backend=backend)
        services = rpc(self.bridge, "tools/call", {"name": "sap_get_services"}, id=2, backend=backend)

        self.assertNotIn("isError", connect.result)
        self.assertNotIn("_rawData", connect.result)
        self.assertEqual(services.result["_rawData"]["services"][0]["name"], "ZDEV_SRV")

    def test_auto_connect_failure_is_reported(self):
        config = ConnectionConfig(baseUrl=BASE_URL, username="DEVELOPER", password="wrong")
        with patch.object(requests.Session, 'request', new=FakeBackend(default=make_response(401))):
            connected = asyncio.run(self.bridge.auto_connect(config))
        self.assertFalse(connected)
        self.assertIsNone(self.bridge.handlers.client)


class TestFastMCPRegistration(unittest.TestCase):

    def setUp(self):
        self.bridge = ODataMCPBridge()

    def test_all_tools_registered(self):
        self.assertEqual(sorted(self.bridge.all_registered_tools), sorted(f"sap_{name}" for name in EXPECTED_TOOLS))

    def test_generated_signature_mirrors_schema(self):
        func = self.bridge.all_registered_tools["sap_query_entity_set"]
        params = inspect.signature(func).parameters

        self.assertTrue(all(p.kind is inspect.Parameter.KEYWORD_ONLY for p in params.values()))
        self.assertIs(params["serviceName"].default, inspect.Parameter.empty)
        self.assertIsNone(params["top"].default)
        self.assertIn("Query an OData entity set", inspect.getdoc(func))

    def test_connect_timeout_is_integer(self):
        func = self.bridge.all_registered_tools["sap_connect"]
        annotation = str(inspect.signature(func).parameters["timeout"].annotation)
        self.assertIn("int", annotation)
        self.assertNotIn("float", annotation)

    def test_tool_without_parameters(self):
        func = self.bridge.all_registered_tools["sap_connection_status"]
        self.assertEqual(len(inspect.signature(func).parameters), 0)
        text = asyncio.run(func())
        self.assertIn("No SAP OData connection established", text)

    def test_errors_raise_tool_error(self):
        func = self.bridge.all_registered_tools["sap_get_services"]
        with self.assertRaises(ToolError):
            asyncio.run(func())


if __name__ == '__main__':
    unittest.main()
