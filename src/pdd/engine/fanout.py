"""Block fan-out engine — one input, many sinks, one operation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from pdd.config.models import EngineSettings, OperationConfig, SinkConfig
from pdd.engine.channel import BroadcastChannel, Subscription
from pdd.engine.result import OperationResult, OperationStatus, SinkResult
from pdd.engine.source import BlockReader, InputError
from pdd.sinks.base import SinkWriter
from pdd.sinks.factory import create_sink

logger = structlog.get_logger()

SinkFactory = Callable[[SinkConfig], SinkWriter]


def _error_text(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


@dataclass
class _SinkState:
    config: SinkConfig
    writer: SinkWriter
    subscription: Subscription | None = None
    opened: bool = False
    blocks_written: int = 0
    bytes_written: int = 0
    failed_at_open: bool = False
    dead: bool = False
    error: str | None = None

    def to_result(self) -> SinkResult:
        return SinkResult(
            sink_id=self.config.sink_id,
            description=self.config.describe(),
            blocks_written=self.blocks_written,
            bytes_written=self.bytes_written,
            dropped_blocks=self.subscription.dropped if self.subscription else 0,
            opened=self.opened,
            failed_at_open=self.failed_at_open,
            error=self.error,
        )


class BlockFanoutEngine:
    """Reads an operation's input block by block and replicates every block
    to all of its sinks.

    One reader (this object's :meth:`run`) publishes blocks to a bounded
    broadcast channel; one writer task per sink drains its own queue in
    read order.  A sink that fails to open, fails a write or times out is
    marked dead and recorded; it never stops the reader or the other sinks.
    Only input failures are fatal to the operation.
    """

    def __init__(
        self,
        operation: OperationConfig,
        settings: EngineSettings | None = None,
        *,
        index: int = 0,
        sink_factory: SinkFactory = create_sink,
    ) -> None:
        self._operation = operation
        self._settings = settings or EngineSettings()
        self._index = index
        self._sink_factory = sink_factory
        self._stop_event = asyncio.Event()
        self._cancelled = False
        self._blocks_delivered = 0
        self._bytes_read = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop reading; queued blocks are still written before sinks close."""
        if not self._cancelled:
            logger.info("engine.cancel_requested", operation=self._index)
        self._cancelled = True
        self._stop_event.set()

    async def run(self) -> OperationResult:
        op = self._operation
        started = time.monotonic()
        log = logger.bind(operation=self._index, input=str(op.input_path))
        log.info(
            "engine.started",
            block_size=op.block_size,
            block_count=op.block_count,
            redirected=op.is_redirected,
            sinks=[s.describe() for s in op.sinks],
        )

        reader = BlockReader(
            op.input_path,
            op.block_size,
            follow=op.is_redirected,
            poll_interval=self._settings.follow_poll_interval_seconds,
            idle_timeout=self._settings.follow_idle_timeout_seconds,
            stop_event=self._stop_event,
        )
        try:
            await reader.open()
        except InputError as exc:
            log.error("engine.input_open_failed", error=str(exc))
            untouched = [SinkResult(s.sink_id, s.describe()) for s in op.sinks]
            return self._result(
                OperationStatus.FAILED, untouched, started, error=str(exc)
            )

        states: list[_SinkState] = []
        channel = BroadcastChannel(
            self._settings.max_buffered_blocks, self._settings.overflow_policy
        )
        writers: list[asyncio.Task[None]] = []
        fatal: InputError | None = None
        interrupted = False
        try:
            states = [_SinkState(cfg, self._sink_factory(cfg)) for cfg in op.sinks]
            await asyncio.gather(*(self._open_sink(s) for s in states))
            for state in states:
                if state.failed_at_open:
                    continue
                state.subscription = channel.subscribe(state.config.sink_id)
                writers.append(
                    asyncio.create_task(
                        self._sink_loop(state), name=f"sink:{state.config.sink_id}"
                    )
                )
            try:
                interrupted = await self._read_loop(reader, channel, states)
            except InputError as exc:
                fatal = exc
                log.error(
                    "engine.input_read_failed",
                    error=str(exc),
                    blocks_delivered=self._blocks_delivered,
                )
            except asyncio.CancelledError:
                self.cancel()
                raise
        finally:
            await channel.close()
            if writers:
                await asyncio.gather(*writers)
            await self._close_sinks(states)
            await reader.close()

        if fatal is not None:
            status = OperationStatus.FAILED
        elif interrupted:
            status = OperationStatus.CANCELLED
        elif all(s.to_result().ok for s in states):
            status = OperationStatus.COMPLETED
        else:
            status = OperationStatus.DEGRADED

        result = self._result(
            status,
            [s.to_result() for s in states],
            started,
            error=str(fatal) if fatal else None,
        )
        log.info(
            "engine.finished",
            status=result.status.value,
            blocks_delivered=result.blocks_delivered,
            bytes_read=result.bytes_read,
            sinks_ok=result.sinks_ok,
            sinks_total=len(result.sinks),
        )
        return result

    async def _read_loop(
        self,
        reader: BlockReader,
        channel: BroadcastChannel,
        states: list[_SinkState],
    ) -> bool:
        """Publish blocks until the input ends; True if stopped by cancel()."""
        op = self._operation
        opened = [s for s in states if not s.failed_at_open]
        while not self._stop_event.is_set():
            if op.block_count and self._blocks_delivered >= op.block_count:
                logger.debug(
                    "engine.block_count_reached",
                    operation=self._index,
                    block_count=op.block_count,
                )
                return False
            # With no sink opened at all the input is still read and counted.
            if opened and all(s.dead for s in opened):
                logger.warning("engine.all_sinks_dead", operation=self._index)
                return False

            block = await reader.read()
            if not block:
                # A followed input also comes back empty when interrupted.
                return op.is_redirected and self._stop_event.is_set()
            self._blocks_delivered += 1
            self._bytes_read += len(block)
            await channel.publish(block)
        return True

    async def _open_sink(self, state: _SinkState) -> None:
        try:
            await state.writer.open()
        except Exception as exc:
            state.failed_at_open = True
            state.dead = True
            state.error = _error_text(exc)
            logger.error(
                "engine.sink_open_failed",
                operation=self._index,
                sink_id=state.config.sink_id,
                sink=state.config.describe(),
                error=state.error,
            )
            return
        state.opened = True

    async def _sink_loop(self, state: _SinkState) -> None:
        """Per-sink writer — drains its queue in order until end-of-stream."""
        sub = state.subscription
        assert sub is not None
        try:
            while True:
                block = await sub.get()
                if block is None:
                    return
                try:
                    await state.writer.write(block)
                except Exception as exc:
                    state.dead = True
                    state.error = _error_text(exc)
                    logger.error(
                        "engine.sink_write_error",
                        operation=self._index,
                        sink_id=state.config.sink_id,
                        block=state.blocks_written + 1,
                        error=state.error,
                    )
                    return
                state.blocks_written += 1
                state.bytes_written += len(block)
        finally:
            sub.close()

    async def _close_sinks(self, states: list[_SinkState]) -> None:
        for state in states:
            try:
                await state.writer.close()
            except Exception as exc:
                logger.error(
                    "engine.sink_close_error",
                    operation=self._index,
                    sink_id=state.config.sink_id,
                    error=str(exc),
                )
                if state.error is None:
                    state.error = _error_text(exc)

    def _result(
        self,
        status: OperationStatus,
        sinks: list[SinkResult],
        started: float,
        *,
        error: str | None = None,
    ) -> OperationResult:
        return OperationResult(
            index=self._index,
            input_path=str(self._operation.input_path),
            status=status,
            blocks_delivered=self._blocks_delivered,
            bytes_read=self._bytes_read,
            sinks=sinks,
            error=error,
            duration_seconds=time.monotonic() - started,
        )
