"""Raw TCP socket sink."""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from pdd.config.models import SinkConfig, SocketSinkConfig

logger = structlog.get_logger()


class SocketSink:
    """Streams raw block bytes over one persistent TCP connection.

    No framing is added.  Once a write fails the connection is considered
    unusable; reconnecting is left to the caller.
    """

    def __init__(self, config: SinkConfig) -> None:
        self._config = config
        if config.socket is None:
            msg = "SocketSink requires a socket sub-config"
            raise ValueError(msg)
        self._socket: SocketSinkConfig = config.socket
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._broken = False

    @property
    def sink_id(self) -> str:
        return self._config.sink_id

    @property
    def describe(self) -> str:
        return self._config.describe()

    async def open(self) -> None:
        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.multiplier if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )
        async def _connect() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
            return await asyncio.wait_for(
                asyncio.open_connection(self._socket.host, self._socket.port),
                timeout=self._socket.connect_timeout_seconds,
            )

        self._reader, self._writer = await _connect()
        logger.info(
            "socket_sink.connected",
            sink_id=self.sink_id,
            host=self._socket.host,
            port=self._socket.port,
        )

    async def write(self, block: bytes) -> None:
        if self._writer is None:
            msg = "SocketSink not opened — call open() first"
            raise RuntimeError(msg)
        if self._broken:
            msg = f"Connection to {self._socket.host}:{self._socket.port} is broken"
            raise ConnectionError(msg)
        try:
            self._writer.write(block)
            await asyncio.wait_for(
                self._writer.drain(), timeout=self._socket.write_timeout_seconds
            )
        except (OSError, TimeoutError):
            self._broken = True
            raise
        logger.debug(
            "socket_sink.write",
            sink_id=self.sink_id,
            host=self._socket.host,
            port=self._socket.port,
            bytes=len(block),
        )

    async def close(self) -> None:
        if self._writer is not None:
            writer, self._writer = self._writer, None
            self._reader = None
            writer.close()
            # The peer may already have reset the connection.
            with contextlib.suppress(OSError):
                await asyncio.wait_for(
                    writer.wait_closed(), timeout=self._socket.write_timeout_seconds
                )
            logger.info("socket_sink.closed", sink_id=self.sink_id)
