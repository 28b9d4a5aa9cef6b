"""Abstract sink writer protocol.

New sink types implement this protocol to plug into the engine
without modifying core code.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SinkWriter(Protocol):
    """Protocol that every block sink must satisfy.

    The engine calls :meth:`open` once, :meth:`write` once per block in read
    order, and :meth:`close` exactly once, even after a failed open or write.
    """

    @property
    def sink_id(self) -> str:
        """Unique identifier for this sink within its operation."""
        ...

    @property
    def describe(self) -> str:
        """Human-readable destination, e.g. ``file:/tmp/out.img``."""
        ...

    async def open(self) -> None:
        """Create the live handle (file, connection, HTTP client)."""
        ...

    async def write(self, block: bytes) -> None:
        """Deliver one block; raise on any failure."""
        ...

    async def close(self) -> None:
        """Flush and release the handle. Safe to call when never opened."""
        ...
