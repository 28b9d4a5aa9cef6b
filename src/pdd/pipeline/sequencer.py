"""Operation sequencer — runs each operation through the fan-out engine."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from pdd.config.models import EngineSettings, OperationConfig
from pdd.engine.fanout import BlockFanoutEngine, SinkFactory
from pdd.engine.result import OperationResult, OperationStatus, SinkResult
from pdd.sinks.factory import create_sink

logger = structlog.get_logger()


@dataclass
class SequenceResult:
    operations: list[OperationResult] = field(default_factory=list)

    @property
    def failed(self) -> list[OperationResult]:
        return [r for r in self.operations if r.status == OperationStatus.FAILED]

    @property
    def all_completed(self) -> bool:
        return all(r.status == OperationStatus.COMPLETED for r in self.operations)

    def exit_code(self, *, strict: bool = False) -> int:
        """1 if any operation hit a fatal input error (or, when *strict*,
        anything short of full replication), else 0."""
        if self.failed:
            return 1
        if strict and not self.all_completed:
            return 1
        return 0


class Sequencer:
    """Runs operations in declaration order, one engine per operation.

    Operations are independent: a failed one is reported and the next one
    starts anyway.  With ``concurrent_operations`` enabled, up to
    ``max_concurrent_operations`` engines run at once; results are still
    returned in declaration order.
    """

    def __init__(
        self,
        operations: Sequence[OperationConfig],
        settings: EngineSettings | None = None,
        *,
        sink_factory: SinkFactory = create_sink,
    ) -> None:
        self._operations = list(operations)
        self._settings = settings or EngineSettings()
        self._sink_factory = sink_factory
        self._active: set[BlockFanoutEngine] = set()
        self._stopping = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def run(self) -> SequenceResult:
        """Run all operations (blocking); SIGINT/SIGTERM stop the run cleanly."""
        return asyncio.run(self.run_async(install_signal_handlers=True))

    async def run_async(
        self, *, install_signal_handlers: bool = False
    ) -> SequenceResult:
        self._loop = asyncio.get_running_loop()
        previous: dict[int, Any] = {}
        if install_signal_handlers:
            previous = self._install_signal_handlers()

        logger.info(
            "sequencer.started",
            operations=len(self._operations),
            concurrent=self._settings.concurrent_operations,
        )
        try:
            if self._settings.concurrent_operations:
                results = await self._run_concurrent()
            else:
                results = [
                    await self._run_one(i, op) for i, op in enumerate(self._operations)
                ]
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        outcome = SequenceResult(operations=results)
        logger.info(
            "sequencer.finished",
            statuses=[r.status.value for r in results],
            failed=len(outcome.failed),
        )
        return outcome

    async def _run_concurrent(self) -> list[OperationResult]:
        semaphore = asyncio.Semaphore(self._settings.max_concurrent_operations)

        async def _bounded(index: int, op: OperationConfig) -> OperationResult:
            async with semaphore:
                return await self._run_one(index, op)

        return list(
            await asyncio.gather(
                *(_bounded(i, op) for i, op in enumerate(self._operations))
            )
        )

    async def _run_one(self, index: int, op: OperationConfig) -> OperationResult:
        if self._stopping:
            logger.info("sequencer.operation_skipped", operation=index)
            return OperationResult(
                index=index,
                input_path=str(op.input_path),
                status=OperationStatus.SKIPPED,
                sinks=[SinkResult(s.sink_id, s.describe()) for s in op.sinks],
            )

        engine = BlockFanoutEngine(
            op, self._settings, index=index, sink_factory=self._sink_factory
        )
        self._active.add(engine)
        try:
            result = await engine.run()
        except Exception as exc:
            logger.error("sequencer.operation_error", operation=index, error=str(exc))
            result = OperationResult(
                index=index,
                input_path=str(op.input_path),
                status=OperationStatus.FAILED,
                sinks=[SinkResult(s.sink_id, s.describe()) for s in op.sinks],
                error=str(exc),
            )
        finally:
            self._active.discard(engine)

        if result.status == OperationStatus.FAILED:
            logger.error(
                "sequencer.operation_failed",
                operation=index,
                input=result.input_path,
                error=result.error,
            )
        return result

    def stop(self) -> None:
        """Cancel running operations and skip the ones not yet started."""
        self._stopping = True
        for engine in list(self._active):
            engine.cancel()

    def _install_signal_handlers(self) -> dict[int, Any]:
        def _shutdown(signum: int, frame: Any) -> None:
            logger.info("sequencer.shutdown_signal", signal=signum)
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self.stop)

        previous: dict[int, Any] = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, _shutdown)
        return previous
