"""Sink factory — maps SinkType to concrete writer classes."""

from __future__ import annotations

from pdd.config.models import SinkConfig, SinkType
from pdd.sinks.base import SinkWriter
from pdd.sinks.file import FileSink
from pdd.sinks.http import HttpSink
from pdd.sinks.socket import SocketSink

_SINK_REGISTRY: dict[SinkType, type] = {
    SinkType.FILE: FileSink,
    SinkType.SOCKET: SocketSink,
    SinkType.HTTP: HttpSink,
}


def create_sink(config: SinkConfig) -> SinkWriter:
    """Create a sink writer from configuration.

    Adding a new sink = one class + one dict entry in ``_SINK_REGISTRY``.
    """
    cls = _SINK_REGISTRY.get(config.sink_type)
    if cls is None:
        msg = f"Unknown sink type: {config.sink_type}"
        raise ValueError(msg)
    return cls(config)  # type: ignore[no-any-return]
