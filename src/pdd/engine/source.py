"""Block reader for an operation's input."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import IO

import structlog

logger = structlog.get_logger()


class InputError(Exception):
    """Raised when the input cannot be opened or read."""


class BlockReader:
    """Reads up to ``block_size`` bytes per call from a file.

    With ``follow`` set (redirected inputs) a zero-byte read is not the end:
    the reader polls for growth every ``poll_interval`` seconds and reports
    end of input once nothing new has arrived for ``idle_timeout`` seconds.
    An ``idle_timeout`` of 0 follows until ``stop_event`` is set.
    """

    def __init__(
        self,
        path: Path,
        block_size: int,
        *,
        follow: bool = False,
        poll_interval: float = 0.25,
        idle_timeout: float = 5.0,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._path = path
        self._block_size = block_size
        self._follow = follow
        self._poll_interval = poll_interval
        self._idle_timeout = idle_timeout
        self._stop_event = stop_event or asyncio.Event()
        self._fh: IO[bytes] | None = None

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._fh = await loop.run_in_executor(None, self._path.open, "rb")
        except OSError as exc:
            msg = f"Cannot open input {self._path}: {exc.strerror or exc}"
            raise InputError(msg) from exc
        logger.info("source.opened", path=str(self._path), follow=self._follow)

    async def _read_once(self) -> bytes:
        assert self._fh is not None
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._fh.read, self._block_size)
        except OSError as exc:
            msg = f"Error reading input {self._path}: {exc.strerror or exc}"
            raise InputError(msg) from exc

    async def read(self) -> bytes:
        """Return the next block, or ``b""`` at end of input."""
        if self._fh is None:
            msg = "BlockReader not opened — call open() first"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        # Time spent waiting on sinks between calls is not idle input.
        idle_since: float | None = None
        while True:
            data = await self._read_once()
            if data:
                return data
            if not self._follow or self._stop_event.is_set():
                return b""
            if idle_since is None:
                idle_since = loop.time()
            idle = loop.time() - idle_since
            if self._idle_timeout and idle >= self._idle_timeout:
                logger.info(
                    "source.follow_idle", path=str(self._path), idle_seconds=idle
                )
                return b""
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._poll_interval
                )

    async def close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, fh.close)
