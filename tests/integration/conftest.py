"""Local collector fixtures for integration tests."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import pytest


@dataclass
class TcpCollector:
    """Accepts connections and keeps every byte received, per connection."""

    port: int
    received: list[bytearray] = field(default_factory=list)
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def data(self) -> bytes:
        return b"".join(bytes(chunk) for chunk in self.received)


@dataclass
class HttpCollector:
    url: str
    bodies: list[bytes] = field(default_factory=list)
    methods: list[str] = field(default_factory=list)


@pytest.fixture
async def tcp_collector() -> AsyncIterator[TcpCollector]:
    collector = TcpCollector(port=0)

    async def _handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        buf = bytearray()
        collector.received.append(buf)
        while chunk := await reader.read(65536):
            buf.extend(chunk)
        writer.close()
        collector.done.set()

    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    collector.port = server.sockets[0].getsockname()[1]
    try:
        yield collector
    finally:
        server.close()
        await server.wait_closed()


@pytest.fixture
async def refused_port() -> int:
    """A TCP port with nothing listening on it."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


@pytest.fixture
def http_collector() -> Iterator[HttpCollector]:
    """Threaded HTTP server recording each request body in arrival order."""
    collector = HttpCollector(url="")
    lock = threading.Lock()

    class Handler(BaseHTTPRequestHandler):
        def _collect(self) -> None:
            length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(length)
            with lock:
                collector.bodies.append(body)
                collector.methods.append(self.command)
            self.send_response(200)
            self.send_header("Content-Length", "0")
            self.end_headers()

        do_POST = _collect
        do_PUT = _collect

        def log_message(self, format: str, *args: Any) -> None:
            pass  # Suppress request logging

    server = HTTPServer(("127.0.0.1", 0), Handler)
    collector.url = f"http://127.0.0.1:{server.server_address[1]}/ingest"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield collector
    finally:
        server.shutdown()
        server.server_close()
