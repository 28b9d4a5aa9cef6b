"""Pydantic configuration models for fan-out operations."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class SinkType(StrEnum):
    """Supported sink types."""

    FILE = "file"
    SOCKET = "socket"
    HTTP = "http"


class OverflowPolicy(StrEnum):
    """What the reader does when a sink's queue is full."""

    BACKPRESSURE = "backpressure"
    DROP = "drop"


class RetryConfig(BaseModel):
    """Retry / backoff for establishing a sink connection.

    Only connection-level failures are retried.  A sink that has accepted
    blocks is never silently reconnected, and a non-success HTTP response
    is never retried.
    """

    max_attempts: int = Field(default=1, ge=1)
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class FileSinkConfig(BaseModel):
    """Configuration for a plain file sink (created or truncated on open)."""

    path: Path


class SocketSinkConfig(BaseModel):
    """Configuration for a raw TCP socket sink."""

    host: str = "localhost"
    port: int = Field(ge=1, le=65535)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    write_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("host")
    @classmethod
    def default_empty_host(cls, v: str) -> str:
        return v.strip() or "localhost"


class HttpSinkConfig(BaseModel):
    """Configuration for an HTTP sink (one request per block)."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0)
    auth_token: SecretStr | None = None

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        method = v.strip().upper()
        if not method.isalpha():
            msg = f"Invalid HTTP method '{v}'"
            raise ValueError(msg)
        return method

    @field_validator("url")
    @classmethod
    def validate_url_scheme(cls, v: str) -> str:
        url = v.strip()
        if not url.startswith(("http://", "https://")):
            msg = f"HTTP sink url '{v}' must start with http:// or https://"
            raise ValueError(msg)
        return url


class SinkConfig(BaseModel):
    """Configuration for a single sink destination."""

    sink_id: str = Field(min_length=1)
    sink_type: SinkType
    retry: RetryConfig = RetryConfig()
    file: FileSinkConfig | None = None
    socket: SocketSinkConfig | None = None
    http: HttpSinkConfig | None = None

    @model_validator(mode="after")
    def check_matching_sub_config(self) -> Self:
        """Ensure the sub-config matching sink_type is provided."""
        if self.sink_type == SinkType.FILE and self.file is None:
            msg = "file config is required when sink_type is 'file'"
            raise ValueError(msg)
        if self.sink_type == SinkType.SOCKET and self.socket is None:
            msg = "socket config is required when sink_type is 'socket'"
            raise ValueError(msg)
        if self.sink_type == SinkType.HTTP and self.http is None:
            msg = "http config is required when sink_type is 'http'"
            raise ValueError(msg)
        return self

    def describe(self) -> str:
        """Short human-readable destination, e.g. ``socket:localhost:9000``."""
        if self.sink_type == SinkType.FILE and self.file is not None:
            return f"file:{self.file.path}"
        if self.sink_type == SinkType.SOCKET and self.socket is not None:
            return f"socket:{self.socket.host}:{self.socket.port}"
        if self.sink_type == SinkType.HTTP and self.http is not None:
            return f"http:{self.http.method} {self.http.url}"
        return str(self.sink_type)


class OperationConfig(BaseModel, frozen=True, extra="forbid"):
    """One unit of work: a single input replicated to one or more sinks."""

    input_path: Path
    sinks: list[SinkConfig] = Field(min_length=1)
    block_size: int = Field(default=1024, gt=0)
    # 0 = until the input is exhausted
    block_count: int = Field(default=0, ge=0)
    # The input is still being appended to (e.g. a redirected stdout log).
    is_redirected: bool = False

    @model_validator(mode="after")
    def check_unique_sink_ids(self) -> Self:
        seen: set[str] = set()
        for sink in self.sinks:
            if sink.sink_id in seen:
                msg = f"Duplicate sink_id '{sink.sink_id}' in operation"
                raise ValueError(msg)
            seen.add(sink.sink_id)
        return self


class EngineSettings(BaseModel):
    """Engine and sequencer tuning shared by every operation of a run."""

    # Per-sink queue depth between the reader and each sink writer.
    max_buffered_blocks: int = Field(default=16, ge=1)
    overflow_policy: OverflowPolicy = OverflowPolicy.BACKPRESSURE
    # Redirected inputs: how often to poll for growth, and how long without
    # growth before the input is considered finished (0 = until cancelled).
    follow_poll_interval_seconds: float = Field(default=0.25, gt=0)
    follow_idle_timeout_seconds: float = Field(default=5.0, ge=0)
    concurrent_operations: bool = False
    max_concurrent_operations: int = Field(default=4, ge=1)
    log_level: Literal["debug", "info", "warning", "error"] = "info"
    log_format: Literal["console", "json"] = "console"


class JobConfig(BaseModel, extra="forbid"):
    """A batch of operations loaded from YAML."""

    operations: list[OperationConfig] = Field(min_length=1)
    settings: EngineSettings = EngineSettings()
