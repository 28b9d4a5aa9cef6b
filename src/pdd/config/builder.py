"""Staged construction of an OperationConfig from individual settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from pdd.config.models import (
    FileSinkConfig,
    HttpSinkConfig,
    OperationConfig,
    SinkConfig,
    SinkType,
    SocketSinkConfig,
)


class OperationError(ValueError):
    """Raised when an operation cannot be built from what was given."""


class OperationBuilder:
    """Accumulates operation fields; all validation happens in :meth:`build`.

    Sink ids are assigned in declaration order per type (``file-1``,
    ``socket-1``, ``http-1``...).
    """

    def __init__(self) -> None:
        self._input_path: Path | None = None
        self._extra_inputs: list[Path] = []
        self._sinks: list[SinkConfig] = []
        self._counters: dict[SinkType, int] = {}
        self._block_size = 1024
        self._block_count = 0
        self._is_redirected = False

    @property
    def is_empty(self) -> bool:
        """True when nothing at all has been set on this builder."""
        return (
            self._input_path is None
            and not self._sinks
            and self._block_size == 1024
            and self._block_count == 0
            and not self._is_redirected
        )

    def _next_id(self, sink_type: SinkType) -> str:
        n = self._counters.get(sink_type, 0) + 1
        self._counters[sink_type] = n
        return f"{sink_type.value}-{n}"

    def input_file(self, path: str | Path) -> None:
        if self._input_path is None:
            self._input_path = Path(path)
        else:
            self._extra_inputs.append(Path(path))

    def output_file(self, path: str | Path) -> None:
        self._sinks.append(
            SinkConfig(
                sink_id=self._next_id(SinkType.FILE),
                sink_type=SinkType.FILE,
                file=FileSinkConfig(path=Path(path)),
            )
        )

    def output_socket(self, host: str, port: int) -> None:
        try:
            socket_cfg = SocketSinkConfig(host=host, port=port)
        except ValidationError as exc:
            msg = f"Invalid socket output {host}:{port}: {exc.errors()[0]['msg']}"
            raise OperationError(msg) from exc
        self._sinks.append(
            SinkConfig(
                sink_id=self._next_id(SinkType.SOCKET),
                sink_type=SinkType.SOCKET,
                socket=socket_cfg,
            )
        )

    def output_http(self, method: str, url: str) -> None:
        try:
            http_cfg = HttpSinkConfig(method=method, url=url)
        except ValidationError as exc:
            msg = f"Invalid HTTP output {method};{url}: {exc.errors()[0]['msg']}"
            raise OperationError(msg) from exc
        self._sinks.append(
            SinkConfig(
                sink_id=self._next_id(SinkType.HTTP),
                sink_type=SinkType.HTTP,
                http=http_cfg,
            )
        )

    def block_size(self, bs: int) -> None:
        self._block_size = bs

    def count(self, c: int) -> None:
        self._block_count = c

    def toggle_redirected(self) -> None:
        self._is_redirected = not self._is_redirected

    def build(self) -> OperationConfig:
        if self._input_path is None:
            msg = "Operation is missing input file"
            raise OperationError(msg)
        if self._extra_inputs:
            extra = ", ".join(str(p) for p in self._extra_inputs)
            msg = (
                f"Operation has more than one input ({self._input_path}, {extra}); "
                "separate operations with '--'"
            )
            raise OperationError(msg)
        if not self._sinks:
            msg = f"Operation for {self._input_path} must have at least one output"
            raise OperationError(msg)
        if self._block_size <= 0:
            msg = f"Block size must be positive, got {self._block_size}"
            raise OperationError(msg)
        if self._block_count < 0:
            msg = f"Block count must not be negative, got {self._block_count}"
            raise OperationError(msg)

        try:
            return OperationConfig(
                input_path=self._input_path,
                sinks=list(self._sinks),
                block_size=self._block_size,
                block_count=self._block_count,
                is_redirected=self._is_redirected,
            )
        except ValidationError as exc:
            msg = f"Invalid operation for {self._input_path}:\n{exc}"
            raise OperationError(msg) from exc
