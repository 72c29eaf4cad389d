"""
HTTP/SSE transport: JSON-RPC over POST /rpc, server push over GET /sse.
"""

import asyncio
import json
import sys
import uuid
from typing import Dict, Optional

from aiohttp import web
from aiohttp_sse import sse_response
import aiohttp_cors

from . import Transport, TransportMessage

KEEPALIVE_INTERVAL = 30.0


class HttpSSETransport(Transport):
    """HTTP/SSE transport implementation using aiohttp.

    Endpoints:
        GET  /health  liveness and connected SSE client count
        GET  /sse     event stream; the first event carries the client id
        POST /rpc     one JSON-RPC message; the reply is the HTTP body. With
                      ``?clientId=<id>`` the reply is also pushed to that stream.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8080, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.host = host
        self.port = port
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._client_queues: Dict[str, asyncio.Queue] = {}

    def build_app(self) -> web.Application:
        """Create the aiohttp application with routes and CORS configured."""
        app = web.Application()
        cors = aiohttp_cors.setup(app, defaults={
            "*": aiohttp_cors.ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*",
            )
        })
        app.router.add_get('/health', self._handle_health)
        app.router.add_get('/sse', self._handle_sse)
        app.router.add_post('/rpc', self._handle_rpc)
        for route in list(app.router.routes()):
            cors.add(route)
        return app

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        print(f"HTTP/SSE transport listening on http://{self.host}:{self.port}", file=sys.stderr)

    async def stop(self) -> None:
        self._running = False
        self._client_queues.clear()
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._mark_closed()

    async def send_message(self, message: TransportMessage) -> None:
        """Broadcast a message to every connected SSE client."""
        if not self._running:
            raise RuntimeError("Transport not running")
        for queue in list(self._client_queues.values()):
            await queue.put(message)

    async def send_to_client(self, client_id: str, message: TransportMessage) -> bool:
        """Queue a message for one SSE client. Returns False if it is not connected."""
        queue = self._client_queues.get(client_id)
        if queue is None:
            return False
        await queue.put(message)
        return True

    @property
    def client_count(self) -> int:
        return len(self._client_queues)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "transport": "http/sse",
            "clients": self.client_count,
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        client_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue()
        self._client_queues[client_id] = queue

        async with sse_response(request) as response:
            try:
                await response.send(json.dumps({"type": "connection", "clientId": client_id}), event='connection')
                while self._running:
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                    except asyncio.TimeoutError:
                        await response.send('', event='keepalive')
                        continue
                    await response.send(message.to_json(), event='message')
            except ConnectionResetError:
                print(f"SSE client {client_id} disconnected", file=sys.stderr)
            finally:
                self._client_queues.pop(client_id, None)
        return response

    async def _handle_rpc(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
            message = TransportMessage.from_dict(data)
        except (json.JSONDecodeError, ValueError) as e:
            return web.json_response(TransportMessage.parse_error(str(e)).to_dict(), status=400)

        try:
            response = await self.handle_message(message)
        except Exception as e:
            print(f"ERROR: Unhandled error processing {message.method}: {e}", file=sys.stderr)
            return web.json_response(TransportMessage.internal_error(message.id, str(e)).to_dict(), status=500)

        if response is None or message.is_notification:
            return web.Response(status=204)

        client_id = request.query.get('clientId')
        if client_id:
            await self.send_to_client(client_id, response)
        return web.json_response(response.to_dict(), dumps=lambda obj: json.dumps(obj, default=str))
