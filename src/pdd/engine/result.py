"""Outcome records for a single operation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class OperationStatus(StrEnum):
    COMPLETED = "completed"  # every sink received every block
    DEGRADED = "degraded"  # replicated to N of M sinks, or with dropped blocks
    FAILED = "failed"  # input could not be opened or read
    CANCELLED = "cancelled"
    SKIPPED = "skipped"  # never started


@dataclass
class SinkResult:
    sink_id: str
    description: str
    blocks_written: int = 0
    bytes_written: int = 0
    # Blocks this sink missed because its queue was full (drop policy only).
    dropped_blocks: int = 0
    # False when the operation never got as far as opening this sink.
    opened: bool = False
    failed_at_open: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.opened
            and self.error is None
            and not self.dropped_blocks
        )


@dataclass
class OperationResult:
    index: int
    input_path: str
    status: OperationStatus
    blocks_delivered: int = 0
    bytes_read: int = 0
    sinks: list[SinkResult] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def sinks_ok(self) -> int:
        return sum(1 for s in self.sinks if s.ok)

    @property
    def sinks_failed(self) -> int:
        return len(self.sinks) - self.sinks_ok

    @property
    def summary(self) -> str:
        """One-line description, e.g. ``degraded: 2 of 3 sinks, 3 blocks``."""
        if self.status == OperationStatus.SKIPPED:
            return "skipped: did not run"
        text = (
            f"{self.status.value}: {self.sinks_ok} of {len(self.sinks)} sinks, "
            f"{self.blocks_delivered} blocks ({self.bytes_read} bytes)"
        )
        if self.error:
            text += f" — {self.error}"
        return text
