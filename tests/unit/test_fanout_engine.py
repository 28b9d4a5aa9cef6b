"""Unit tests for the block fan-out engine."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from pdd.config.models import (
    EngineSettings,
    FileSinkConfig,
    OperationConfig,
    OverflowPolicy,
    SinkConfig,
    SinkType,
)
from pdd.engine.fanout import BlockFanoutEngine
from pdd.engine.result import OperationStatus
from pdd.engine.source import BlockReader, InputError


def _payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


def _make_operation(
    src: Path,
    *sink_ids: str,
    block_size: int = 1024,
    block_count: int = 0,
    is_redirected: bool = False,
) -> OperationConfig:
    return OperationConfig(
        input_path=src,
        sinks=[
            SinkConfig(
                sink_id=sink_id,
                sink_type=SinkType.FILE,
                file=FileSinkConfig(path=src.parent / f"{sink_id}.out"),
            )
            for sink_id in sink_ids
        ],
        block_size=block_size,
        block_count=block_count,
        is_redirected=is_redirected,
    )


def _mock_sink(
    sink_id: str,
    *,
    open_error: Exception | None = None,
    fail_on_write: int | None = None,
    write_error: Exception | None = None,
    delay: float = 0.0,
) -> AsyncMock:
    """Sink double that records every block it accepts in ``sink.blocks``."""
    sink = AsyncMock()
    sink.sink_id = sink_id
    sink.describe = f"mock:{sink_id}"
    sink.blocks = []
    if open_error is not None:
        sink.open.side_effect = open_error

    async def _write(block: bytes) -> None:
        if delay:
            await asyncio.sleep(delay)
        if fail_on_write is not None and sink.write.await_count == fail_on_write:
            raise write_error or ConnectionResetError("peer went away")
        sink.blocks.append(block)

    sink.write.side_effect = _write
    return sink


def _factory(*sinks: AsyncMock):
    by_id = {s.sink_id: s for s in sinks}
    return lambda cfg: by_id[cfg.sink_id]


@pytest.fixture
def src(tmp_path: Path) -> Path:
    path = tmp_path / "input.bin"
    path.write_bytes(_payload(2500))
    return path


@pytest.mark.asyncio
class TestBlockSizing:
    async def test_partial_last_block(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a"), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert result.status == OperationStatus.COMPLETED
        assert [len(b) for b in sink.blocks] == [1024, 1024, 452]
        assert b"".join(sink.blocks) == src.read_bytes()
        assert result.blocks_delivered == 3
        assert result.bytes_read == 2500
        assert result.sinks[0].blocks_written == 3
        assert result.sinks[0].bytes_written == 2500

    async def test_exact_multiple(self, tmp_path: Path):
        path = tmp_path / "in.bin"
        path.write_bytes(_payload(2048))
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(path, "a"), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert [len(b) for b in sink.blocks] == [1024, 1024]
        assert result.blocks_delivered == 2

    async def test_empty_input_completes(self, tmp_path: Path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(path, "a"), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert result.status == OperationStatus.COMPLETED
        assert result.blocks_delivered == 0
        sink.write.assert_not_awaited()
        sink.close.assert_awaited_once()

    async def test_block_count_caps_delivery(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a", block_count=2), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert [len(b) for b in sink.blocks] == [1024, 1024]
        assert result.blocks_delivered == 2
        # The third block is never read.
        assert result.bytes_read == 2048

    async def test_block_count_larger_than_input(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a", block_count=10), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert result.blocks_delivered == 3
        assert result.status == OperationStatus.COMPLETED


@pytest.mark.asyncio
class TestSinkIsolation:
    async def test_fan_out_to_multiple_sinks(self, src: Path):
        a, b, c = _mock_sink("a"), _mock_sink("b"), _mock_sink("c")
        engine = BlockFanoutEngine(
            _make_operation(src, "a", "b", "c", block_size=100),
            sink_factory=_factory(a, b, c),
        )

        result = await engine.run()

        assert result.status == OperationStatus.COMPLETED
        assert result.sinks_ok == 3
        for sink in (a, b, c):
            assert b"".join(sink.blocks) == src.read_bytes()
            assert len(sink.blocks) == 25

    async def test_sink_failing_to_open_is_never_written(self, src: Path):
        broken = _mock_sink("broken", open_error=IsADirectoryError("is a directory"))
        ok = _mock_sink("ok")
        engine = BlockFanoutEngine(
            _make_operation(src, "broken", "ok"), sink_factory=_factory(broken, ok)
        )

        result = await engine.run()

        assert result.status == OperationStatus.DEGRADED
        broken.write.assert_not_awaited()
        broken_result, ok_result = result.sinks
        assert broken_result.failed_at_open is True
        assert broken_result.blocks_written == 0
        assert "is a directory" in (broken_result.error or "")
        assert [len(b) for b in ok.blocks] == [1024, 1024, 452]
        assert ok_result.ok

    async def test_sink_failing_on_jth_write(self, src: Path):
        flaky = _mock_sink("flaky", fail_on_write=2)
        ok = _mock_sink("ok")
        engine = BlockFanoutEngine(
            _make_operation(src, "flaky", "ok", block_size=100),
            sink_factory=_factory(flaky, ok),
        )

        result = await engine.run()

        flaky_result, ok_result = result.sinks
        assert flaky_result.blocks_written == 1
        assert flaky.write.await_count == 2
        assert "ConnectionResetError" in (flaky_result.error or "")
        assert ok_result.blocks_written == 25
        assert b"".join(ok.blocks) == src.read_bytes()
        assert result.status == OperationStatus.DEGRADED
        assert result.sinks_ok == 1
        assert result.sinks_failed == 1

    async def test_timeout_is_a_write_failure(self, src: Path):
        slow = _mock_sink("slow", fail_on_write=1, write_error=TimeoutError())
        ok = _mock_sink("ok")
        engine = BlockFanoutEngine(
            _make_operation(src, "slow", "ok"), sink_factory=_factory(slow, ok)
        )

        result = await engine.run()

        assert result.sinks[0].error == "TimeoutError"
        assert result.sinks[0].blocks_written == 0
        assert result.sinks[1].blocks_written == 3

    async def test_every_sink_closed_exactly_once(self, src: Path):
        broken = _mock_sink("broken", open_error=OSError("nope"))
        flaky = _mock_sink("flaky", fail_on_write=1)
        ok = _mock_sink("ok")
        engine = BlockFanoutEngine(
            _make_operation(src, "broken", "flaky", "ok"),
            sink_factory=_factory(broken, flaky, ok),
        )

        await engine.run()

        for sink in (broken, flaky, ok):
            sink.close.assert_awaited_once()

    async def test_close_error_recorded(self, src: Path):
        sink = _mock_sink("a")
        sink.close.side_effect = OSError("flush failed")
        engine = BlockFanoutEngine(
            _make_operation(src, "a"), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert result.sinks[0].blocks_written == 3
        assert "flush failed" in (result.sinks[0].error or "")
        assert result.status == OperationStatus.DEGRADED

    async def test_all_sinks_dead_stops_reading(self, tmp_path: Path):
        path = tmp_path / "big.bin"
        path.write_bytes(_payload(100 * 64))
        dead = _mock_sink("dead", fail_on_write=1)
        engine = BlockFanoutEngine(
            _make_operation(path, "dead", block_size=64),
            EngineSettings(max_buffered_blocks=1),
            sink_factory=_factory(dead),
        )

        result = await engine.run()

        assert result.blocks_delivered < 100
        assert result.status == OperationStatus.DEGRADED

    async def test_no_sink_opened_still_reads_input(self, src: Path):
        refused = _mock_sink("refused", open_error=ConnectionRefusedError("refused"))
        engine = BlockFanoutEngine(
            _make_operation(src, "refused"), sink_factory=_factory(refused)
        )

        result = await engine.run()

        assert result.status == OperationStatus.DEGRADED
        assert result.blocks_delivered == 3
        assert result.bytes_read == 2500
        assert result.sinks_failed == 1
        refused.write.assert_not_awaited()


@pytest.mark.asyncio
class TestInputFailures:
    async def test_missing_input_is_fatal(self, tmp_path: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(tmp_path / "missing.bin", "a"),
            sink_factory=_factory(sink),
        )

        result = await engine.run()

        assert result.status == OperationStatus.FAILED
        assert "missing.bin" in (result.error or "")
        assert result.blocks_delivered == 0
        sink.open.assert_not_awaited()
        assert result.sinks[0].blocks_written == 0

    async def test_missing_input_counts_no_sink_as_replicated(self, tmp_path: Path):
        a, b = _mock_sink("a"), _mock_sink("b")
        engine = BlockFanoutEngine(
            _make_operation(tmp_path / "missing.bin", "a", "b"),
            sink_factory=_factory(a, b),
        )

        result = await engine.run()

        assert result.status == OperationStatus.FAILED
        assert result.sinks_ok == 0
        assert not any(s.opened for s in result.sinks)
        assert result.summary.startswith("failed: 0 of 2 sinks")

    async def test_read_error_reports_partial_counts(self, src: Path, monkeypatch):
        real_read = BlockReader.read
        calls = 0

        async def _flaky_read(self: BlockReader) -> bytes:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise InputError("Error reading input: I/O error")
            return await real_read(self)

        monkeypatch.setattr(BlockReader, "read", _flaky_read)
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a"), sink_factory=_factory(sink)
        )

        result = await engine.run()

        assert result.status == OperationStatus.FAILED
        assert result.blocks_delivered == 1
        assert result.sinks[0].blocks_written == 1
        assert "I/O error" in (result.error or "")
        sink.close.assert_awaited_once()


@pytest.mark.asyncio
class TestOrderingAndPolicies:
    async def test_blocks_arrive_in_read_order_despite_slow_sink(self, src: Path):
        slow = _mock_sink("slow", delay=0.005)
        fast = _mock_sink("fast")
        engine = BlockFanoutEngine(
            _make_operation(src, "slow", "fast", block_size=100),
            EngineSettings(max_buffered_blocks=2),
            sink_factory=_factory(slow, fast),
        )

        result = await engine.run()

        assert result.status == OperationStatus.COMPLETED
        assert b"".join(slow.blocks) == src.read_bytes()
        assert b"".join(fast.blocks) == src.read_bytes()
        assert result.sinks[0].dropped_blocks == 0

    async def test_drop_policy_counts_gaps(self, tmp_path: Path):
        src = tmp_path / "numbered.bin"
        src.write_bytes(b"".join(bytes([k]) * 100 for k in range(25)))
        slow = _mock_sink("slow", delay=0.05)
        engine = BlockFanoutEngine(
            _make_operation(src, "slow", block_size=100),
            EngineSettings(max_buffered_blocks=1, overflow_policy=OverflowPolicy.DROP),
            sink_factory=_factory(slow),
        )

        result = await engine.run()

        [sink_result] = result.sinks
        assert result.blocks_delivered == 25
        assert sink_result.dropped_blocks > 0
        assert sink_result.blocks_written + sink_result.dropped_blocks == 25
        assert result.status == OperationStatus.DEGRADED
        # Whatever arrived is still an in-order subsequence of the input.
        numbers = [b[0] for b in slow.blocks]
        assert numbers == sorted(set(numbers))


@pytest.mark.asyncio
class TestCancellation:
    async def test_cancel_before_run(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a"), sink_factory=_factory(sink)
        )
        engine.cancel()

        result = await engine.run()

        assert result.status == OperationStatus.CANCELLED
        assert result.blocks_delivered == 0
        sink.close.assert_awaited_once()

    async def test_cancel_after_input_exhausted_still_completes(self, src: Path):
        gate = asyncio.Event()
        sink = _mock_sink("a")
        written: list[bytes] = []

        async def _gated_write(block: bytes) -> None:
            await gate.wait()
            written.append(block)

        sink.write.side_effect = _gated_write
        engine = BlockFanoutEngine(
            _make_operation(src, "a"), sink_factory=_factory(sink)
        )

        run_task = asyncio.create_task(engine.run())

        async def _wait_for_first_write() -> None:
            while sink.write.await_count == 0:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_wait_for_first_write(), timeout=2.0)
        # All three blocks fit in the queue; give the reader time to hit EOF.
        await asyncio.sleep(0.1)
        engine.cancel()
        gate.set()
        result = await asyncio.wait_for(run_task, timeout=2.0)

        assert result.status == OperationStatus.COMPLETED
        assert result.blocks_delivered == 3
        assert b"".join(written) == src.read_bytes()

    async def test_cancel_while_following(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a", is_redirected=True),
            EngineSettings(
                follow_poll_interval_seconds=0.01, follow_idle_timeout_seconds=0
            ),
            sink_factory=_factory(sink),
        )

        run_task = asyncio.create_task(engine.run())

        async def _wait_for_all_blocks() -> None:
            while len(sink.blocks) < 3:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_wait_for_all_blocks(), timeout=2.0)
        assert not run_task.done(), "redirected input should keep following"

        engine.cancel()
        result = await asyncio.wait_for(run_task, timeout=2.0)

        assert engine.cancelled
        assert result.status == OperationStatus.CANCELLED
        assert result.blocks_delivered == 3
        assert result.sinks[0].blocks_written == 3
        sink.close.assert_awaited_once()

    async def test_redirected_input_ends_after_idle_timeout(self, src: Path):
        sink = _mock_sink("a")
        engine = BlockFanoutEngine(
            _make_operation(src, "a", is_redirected=True),
            EngineSettings(
                follow_poll_interval_seconds=0.01, follow_idle_timeout_seconds=0.05
            ),
            sink_factory=_factory(sink),
        )

        result = await asyncio.wait_for(engine.run(), timeout=2.0)

        assert result.status == OperationStatus.COMPLETED
        assert result.blocks_delivered == 3
