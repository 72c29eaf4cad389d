"""
STDIO transport: newline-delimited JSON-RPC on stdin/stdout.

stdout carries protocol messages only; all diagnostics go to stderr.
"""

import asyncio
import json
import sys
from typing import Optional, TextIO

from . import Transport, TransportMessage


class StdioTransport(Transport):
    """Reads one JSON-RPC message per line, answers in arrival order, stops on EOF."""

    def __init__(self, *args, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._reader_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def stop(self) -> None:
        self._running = False
        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._mark_closed()

    async def send_message(self, message: TransportMessage) -> None:
        if not self._running:
            raise RuntimeError("Transport not running")
        await asyncio.to_thread(self._write_line, message.to_json())

    def _read_line(self) -> Optional[str]:
        """Blocking read. Returns None on EOF."""
        line = self._stdin.readline()
        if not line:
            return None
        return line.strip()

    def _write_line(self, line: str) -> None:
        self._stdout.write(line + '\n')
        self._stdout.flush()

    async def _process_line(self, line: str) -> None:
        try:
            message = TransportMessage.from_json(line)
        except (json.JSONDecodeError, ValueError) as e:
            await self.send_message(TransportMessage.parse_error(str(e)))
            return

        try:
            response = await self.handle_message(message)
        except Exception as e:
            print(f"ERROR: Unhandled error processing {message.method}: {e}", file=sys.stderr)
            response = None if message.is_notification else TransportMessage.internal_error(message.id, str(e))

        if response is not None and not message.is_notification:
            await self.send_message(response)

    async def _reader_loop(self) -> None:
        try:
            while self._running:
                line = await asyncio.to_thread(self._read_line)
                if line is None:
                    print("stdin closed, stopping stdio transport", file=sys.stderr)
                    break
                if not line:
                    continue
                await self._process_line(line)
        finally:
            self._mark_closed()
