#!/usr/bin/env python3
"""
Test transport implementations.
"""

import asyncio
import io
import json
import unittest

from aiohttp import test_utils

from sap_odata_mcp_lib.bridge import ODataMCPBridge
from sap_odata_mcp_lib.transport import TransportMessage
from sap_odata_mcp_lib.transport.http_sse import HttpSSETransport
from sap_odata_mcp_lib.transport.stdio import StdioTransport


async def echo_handler(message: TransportMessage) -> TransportMessage:
    """Simple test handler."""
    if message.method == "test":
        return TransportMessage(id=message.id, result={"status": "ok", "echo": message.params})
    if message.method == "explode":
        raise RuntimeError("boom")
    return TransportMessage.error_response(message.id, -32601, "Method not found")


class TestTransportMessage(unittest.TestCase):

    def test_request_round_trip(self):
        msg = TransportMessage.from_json(TransportMessage(id=1, method="test", params={"hello": "world"}).to_json())
        self.assertEqual((msg.id, msg.method, msg.params), (1, "test", {"hello": "world"}))
        self.assertFalse(msg.is_notification)

    def test_notification(self):
        msg = TransportMessage.from_json('{"jsonrpc": "2.0", "method": "notifications/initialized"}')
        self.assertTrue(msg.is_notification)
        self.assertNotIn("id", msg.to_dict())

    def test_response_shapes(self):
        self.assertEqual(TransportMessage(id=7, result={}).to_dict(), {"jsonrpc": "2.0", "id": 7, "result": {}})
        error = TransportMessage.parse_error().to_dict()
        self.assertEqual(error, {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})

    def test_malformed_input(self):
        with self.assertRaises(json.JSONDecodeError):
            TransportMessage.from_json("{not json")
        with self.assertRaises(ValueError):
            TransportMessage.from_json("[1, 2]")


class TestStdioTransport(unittest.TestCase):

    def run_lines(self, lines, handler=echo_handler):
        stdin = io.StringIO("".join(line + "\n" for line in lines))
        stdout = io.StringIO()
        transport = StdioTransport(handler=handler, stdin=stdin, stdout=stdout)

        async def scenario():
            await transport.start()
            await asyncio.wait_for(transport.wait_closed(), timeout=5)
            await transport.stop()

        asyncio.run(scenario())
        self.assertFalse(transport.is_running)
        return [json.loads(line) for line in stdout.getvalue().splitlines()]

    def test_responses_in_order_and_stop_on_eof(self):
        responses = self.run_lines([
            '{"jsonrpc": "2.0", "id": 1, "method": "test", "params": {"n": 1}}',
            '{"jsonrpc": "2.0", "method": "test"}',
            '',
            '{"jsonrpc": "2.0", "id": 2, "method": "unknown"}',
        ])
        self.assertEqual([r["id"] for r in responses], [1, 2])
        self.assertEqual(responses[0]["result"]["echo"], {"n": 1})
        self.assertEqual(responses[1]["error"]["code"], -32601)

    def test_parse_error(self):
        responses = self.run_lines(['{broken', '{"jsonrpc": "2.0", "id": 3, "method": "test"}'])
        self.assertEqual(responses[0]["error"]["code"], -32700)
        self.assertEqual(responses[1]["id"], 3)

    def test_handler_failure_is_internal_error(self):
        responses = self.run_lines(['{"jsonrpc": "2.0", "id": 4, "method": "explode"}'])
        self.assertEqual(responses[0]["id"], 4)
        self.assertEqual(responses[0]["error"]["code"], -32603)

    def test_bridge_over_stdio(self):
        bridge = ODataMCPBridge()
        responses = self.run_lines([
            '{"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2025-03-26"}}',
            '{"jsonrpc": "2.0", "method": "notifications/initialized"}',
            '{"jsonrpc": "2.0", "id": 2, "method": "tools/list"}',
        ], handler=bridge.handle_message)
        self.assertEqual(len(responses), 2)
        self.assertEqual(len(responses[1]["result"]["tools"]), 11)


class TestHttpSSETransport(unittest.TestCase):

    def run_client(self, scenario):
        transport = HttpSSETransport(host="127.0.0.1", port=0, handler=echo_handler)

        async def wrapper():
            async with test_utils.TestClient(test_utils.TestServer(transport.build_app())) as client:
                return await scenario(client)

        return asyncio.run(wrapper())

    def test_health(self):
        async def scenario(client):
            resp = await client.get('/health')
            return resp.status, await resp.json()

        status, body = self.run_client(scenario)
        self.assertEqual(status, 200)
        self.assertEqual(body, {"status": "healthy", "transport": "http/sse", "clients": 0})

    def test_rpc(self):
        async def scenario(client):
            resp = await client.post('/rpc', json={"jsonrpc": "2.0", "id": 9, "method": "test", "params": {"a": 1}})
            return resp.status, await resp.json()

        status, body = self.run_client(scenario)
        self.assertEqual(status, 200)
        self.assertEqual(body["id"], 9)
        self.assertEqual(body["result"]["echo"], {"a": 1})

    def test_rpc_notification(self):
        async def scenario(client):
            resp = await client.post('/rpc', json={"jsonrpc": "2.0", "method": "test"})
            return resp.status

        self.assertEqual(self.run_client(scenario), 204)

    def test_rpc_parse_error(self):
        async def scenario(client):
            resp = await client.post('/rpc', data="{oops", headers={"Content-Type": "application/json"})
            return resp.status, await resp.json()

        status, body = self.run_client(scenario)
        self.assertEqual(status, 400)
        self.assertEqual(body["error"]["code"], -32700)

    def test_rpc_internal_error(self):
        async def scenario(client):
            resp = await client.post('/rpc', json={"jsonrpc": "2.0", "id": 5, "method": "explode"})
            return resp.status, await resp.json()

        status, body = self.run_client(scenario)
        self.assertEqual(status, 500)
        self.assertEqual(body["error"]["code"], -32603)


if __name__ == '__main__':
    unittest.main()
