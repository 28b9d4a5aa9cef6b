"""Plain file sink."""

from __future__ import annotations

import asyncio
from typing import IO

import structlog

from pdd.config.models import FileSinkConfig, SinkConfig

logger = structlog.get_logger()


class FileSink:
    """Writes blocks sequentially to a file, created or truncated on open.

    Blocking file calls run in the default executor so a slow disk never
    stalls the event loop.
    """

    def __init__(self, config: SinkConfig) -> None:
        self._config = config
        if config.file is None:
            msg = "FileSink requires a file sub-config"
            raise ValueError(msg)
        self._file_config: FileSinkConfig = config.file
        self._fh: IO[bytes] | None = None
        self._bytes_written = 0

    @property
    def sink_id(self) -> str:
        return self._config.sink_id

    @property
    def describe(self) -> str:
        return self._config.describe()

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        self._fh = await loop.run_in_executor(None, self._file_config.path.open, "wb")
        logger.info(
            "file_sink.opened", sink_id=self.sink_id, path=str(self._file_config.path)
        )

    async def write(self, block: bytes) -> None:
        if self._fh is None:
            msg = "FileSink not opened — call open() first"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._fh.write, block)
        self._bytes_written += len(block)
        logger.debug(
            "file_sink.write",
            sink_id=self.sink_id,
            path=str(self._file_config.path),
            bytes=len(block),
        )

    async def close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, fh.close)
            logger.info(
                "file_sink.closed",
                sink_id=self.sink_id,
                bytes_written=self._bytes_written,
            )
