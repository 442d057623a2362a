"""
Completion client for OpenAI-compatible chat endpoints.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, OpenRouter-style proxies, vLLM, LM Studio, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

import httpx

from linchat.llm.errors import APIStatusError, StreamCancelled, StreamError
from linchat.llm.stream_reader import (
    decode_completion,
    error_chunk_from_payload,
    read_delta_stream,
)
from linchat.llm.types import AbortSignal, ParsedChunk

logger = logging.getLogger(__name__)


class CompletionClient:
    """
    Stream-capable client for an OpenAI-API-compatible endpoint.

    Parameters
    ----------
    base_url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"http://localhost:8080/v1"``.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Number of automatic retries on transient HTTP errors (5xx, 429).
        Retries only happen before any response byte has been consumed.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject one with a
        ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 2,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._http_client = http_client
        self.request_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream(
        self,
        body: dict[str, Any],
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[ParsedChunk]:
        """
        POST *body* and yield parsed chunks as they arrive.

        Raises ``APIStatusError`` for non-2xx responses, ``StreamError`` for
        error frames and ``StreamCancelled`` when *signal* fires mid-read.
        Transport errors are retried only until the first chunk is yielded.
        """
        url = f"{self._url}/chat/completions"
        headers = self._build_headers()

        last_error: Exception | None = None
        yielded = False
        async with self._client() as client:
            for attempt in range(1 + self._max_retries):
                if signal is not None and signal.aborted:
                    raise StreamCancelled()
                self.request_count += 1
                try:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code == 429 or response.status_code >= 500:
                            # Retryable -- read body so the connection is released.
                            await response.aread()
                            last_error = APIStatusError(
                                response.status_code, _error_message(response)
                            )
                            logger.warning(
                                "Retryable HTTP %d (attempt %d)",
                                response.status_code,
                                attempt + 1,
                            )
                            continue

                        if response.status_code >= 400:
                            await response.aread()
                            raise APIStatusError(
                                response.status_code, _error_message(response)
                            )

                        content_type = response.headers.get("content-type", "")
                        if content_type.startswith("application/json"):
                            data = json.loads(await response.aread())
                            error = error_chunk_from_payload(data)
                            if error is not None:
                                yielded = True
                                yield error
                                raise StreamError(
                                    error.message, name=error.name, status=error.status
                                )
                            for chunk in decode_completion(data):
                                yielded = True
                                yield chunk
                            return

                        byte_stream = response.aiter_bytes()
                        if signal is not None:
                            byte_stream = abortable(byte_stream, signal)
                        async for chunk in read_delta_stream(byte_stream):
                            yielded = True
                            yield chunk
                        return
                except httpx.TransportError as exc:
                    if yielded:
                        # Only retry before the first chunk reaches the caller.
                        raise
                    last_error = exc
                    if attempt < self._max_retries:
                        continue
                    raise

        if last_error is not None:
            raise last_error

    async def complete(self, body: dict[str, Any]) -> dict[str, Any]:
        """Non-streaming request; returns the decoded JSON response."""
        url = f"{self._url}/chat/completions"
        body = {**body, "stream": False}
        async with self._client() as client:
            self.request_count += 1
            resp = await client.post(url, json=body, headers=self._build_headers())
            if resp.status_code >= 400:
                raise APIStatusError(resp.status_code, _error_message(resp))
            return resp.json()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient | _Borrowed:
        if self._http_client is not None:
            return _Borrowed(self._http_client)
        return httpx.AsyncClient(timeout=self._timeout)

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers


class _Borrowed:
    """Async context manager around a client the caller keeps owning."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def __aenter__(self) -> httpx.AsyncClient:
        return self._client

    async def __aexit__(self, *exc_info: object) -> None:
        return None


async def abortable(
    source: AsyncIterable[bytes],
    signal: AbortSignal,
) -> AsyncIterator[bytes]:
    """
    Re-yield *source*, racing every read against *signal*.

    A stalled read is cancelled as soon as the signal fires, raising
    ``StreamCancelled``.
    """
    iterator = source.__aiter__()
    abort_task = asyncio.ensure_future(signal.wait())
    try:
        while True:
            if signal.aborted:
                raise StreamCancelled()
            read_task = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait(
                {read_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if read_task not in done:
                read_task.cancel()
                try:
                    await read_task
                except (asyncio.CancelledError, StopAsyncIteration):
                    pass
                raise StreamCancelled()
            try:
                data = read_task.result()
            except StopAsyncIteration:
                return
            yield data
    finally:
        abort_task.cancel()


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return "Unknown error"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return "Unknown error"
