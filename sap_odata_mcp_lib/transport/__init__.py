"""
Transport layer for the SAP OData MCP server.

A transport moves JSON-RPC 2.0 messages between a client and a single
async handler. It knows nothing about tools; the handler decides what a
message means and whether it gets a reply.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import json

from mcp.types import INTERNAL_ERROR, PARSE_ERROR


class TransportMessage:
    """A JSON-RPC 2.0 request, notification or response."""

    def __init__(self, jsonrpc: str = "2.0", id: Optional[Any] = None,
                 method: Optional[str] = None, params: Optional[Dict[str, Any]] = None,
                 result: Optional[Any] = None, error: Optional[Dict[str, Any]] = None):
        self.jsonrpc = jsonrpc
        self.id = id
        self.method = method
        self.params = params
        self.result = result
        self.error = error

    @property
    def is_notification(self) -> bool:
        """A request without an id never gets a response."""
        return self.method is not None and self.id is None

    def to_dict(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.method is not None:
            if self.id is not None:
                msg["id"] = self.id
            msg["method"] = self.method
            if self.params is not None:
                msg["params"] = self.params
            return msg

        # Responses always carry an id, null when the request id was unknown
        msg["id"] = self.id
        if self.error is not None:
            msg["error"] = self.error
        else:
            msg["result"] = self.result if self.result is not None else {}
        return msg

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransportMessage':
        if not isinstance(data, dict):
            raise ValueError("JSON-RPC message must be an object")
        return cls(
            jsonrpc=data.get("jsonrpc", "2.0"),
            id=data.get("id"),
            method=data.get("method"),
            params=data.get("params"),
            result=data.get("result"),
            error=data.get("error"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> 'TransportMessage':
        """Raises json.JSONDecodeError or ValueError on malformed input."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def error_response(cls, id: Optional[Any], code: int, message: str, data: Optional[Any] = None) -> 'TransportMessage':
        error: Dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return cls(id=id, error=error)

    @classmethod
    def parse_error(cls, detail: Optional[str] = None) -> 'TransportMessage':
        return cls.error_response(None, PARSE_ERROR, "Parse error", detail)

    @classmethod
    def internal_error(cls, id: Optional[Any], detail: Optional[str] = None) -> 'TransportMessage':
        return cls.error_response(id, INTERNAL_ERROR, "Internal error", detail)


MessageHandler = Callable[[TransportMessage], Awaitable[Optional[TransportMessage]]]


class Transport(ABC):
    """Abstract base class for transport implementations."""

    def __init__(self, handler: Optional[MessageHandler] = None):
        self.handler = handler
        self._running = False
        self._closed = asyncio.Event()

    @abstractmethod
    async def start(self) -> None:
        """Start the transport."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport."""

    @abstractmethod
    async def send_message(self, message: TransportMessage) -> None:
        """Send a message through the transport."""

    async def handle_message(self, message: TransportMessage) -> Optional[TransportMessage]:
        """Handle an incoming message using the registered handler."""
        if self.handler:
            return await self.handler(message)
        return None

    async def wait_closed(self) -> None:
        """Block until the transport has stopped."""
        await self._closed.wait()

    def _mark_closed(self) -> None:
        self._running = False
        self._closed.set()

    @property
    def is_running(self) -> bool:
        """Check if transport is running."""
        return self._running
