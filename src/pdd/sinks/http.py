"""HTTP sink — one request per block."""

from __future__ import annotations

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from pdd.config.models import HttpSinkConfig, SinkConfig

logger = structlog.get_logger()


class HttpSink:
    """Sends each block as the raw body of one HTTP request.

    Any non-2xx response fails the write.  Only connection failures (the
    request never reached the server) are retried, and only when the sink's
    retry config allows more than one attempt.
    """

    def __init__(self, config: SinkConfig) -> None:
        self._config = config
        if config.http is None:
            msg = "HttpSink requires an http sub-config"
            raise ValueError(msg)
        self._http: HttpSinkConfig = config.http
        self._client: httpx.AsyncClient | None = None
        self._requests = 0

    @property
    def sink_id(self) -> str:
        return self._config.sink_id

    @property
    def describe(self) -> str:
        return self._config.describe()

    async def open(self) -> None:
        headers: dict[str, str] = {
            "Content-Type": "application/octet-stream",
            **self._http.headers,
        }
        token = self._http.auth_token
        if token is not None and token.get_secret_value():
            headers["Authorization"] = f"Bearer {token.get_secret_value()}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self._http.timeout_seconds),
        )
        logger.info(
            "http_sink.started",
            sink_id=self.sink_id,
            method=self._http.method,
            url=self._http.url,
        )

    async def write(self, block: bytes) -> None:
        if self._client is None:
            msg = "HttpSink not opened — call open() first"
            raise RuntimeError(msg)

        client = self._client
        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.multiplier if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        )
        async def _send() -> httpx.Response:
            response = await client.request(
                method=self._http.method,
                url=self._http.url,
                content=block,
            )
            response.raise_for_status()
            return response

        response = await _send()
        self._requests += 1

        logger.debug(
            "http_sink.write",
            sink_id=self.sink_id,
            url=self._http.url,
            status=response.status_code,
            bytes=len(block),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info(
                "http_sink.stopped", sink_id=self.sink_id, requests=self._requests
            )
