"""OpenAI-compatible chat-completions client with SSE streaming."""

import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from helmsman.config import ModelConfig
from helmsman.exceptions import LLMAPIError, LLMError, RequestTooLargeError, RetryExhaustedError
from helmsman.logging import get_logger
from helmsman.messages import Message, to_api_payload
from helmsman.retry import RetryPolicy
from helmsman.stats import Stats
from helmsman.streaming import StreamChunk

log = get_logger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
RETRYABLE_STATUS = {408, 409, 425, 429}
UNREACHABLE_MESSAGE = (
    "\n\n[Unable to connect to AI service. Please try again later.]"
)


def is_retryable_error(error: BaseException) -> bool:
    """Network failures, throttling and server errors are worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, LLMAPIError):
        status = error.status_code
        return status is None or status >= 500 or status in RETRYABLE_STATUS
    return False


def parse_sse_line(line: str) -> StreamChunk | str | None:
    """Parse one SSE line.

    Returns:
        a StreamChunk, ``SSE_DONE`` at the end marker, or None for lines to skip
    """
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX) :].strip()
    if data == SSE_DONE:
        return SSE_DONE
    try:
        return StreamChunk.model_validate_json(data)
    except ValidationError as e:
        log.error("SSE parse error", error=str(e), raw=data[:200])
        return None


@dataclass
class _OpenedStream:
    response: httpx.Response
    first: StreamChunk | None
    lines: AsyncIterator[str] | None


class StreamingClient:
    """Posts the conversation to ``<base_url>/chat/completions``."""

    def __init__(
        self,
        model_config: ModelConfig,
        retry: RetryPolicy | None = None,
        stats: Stats | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = model_config
        self.retry = retry or RetryPolicy()
        self.stats = stats or Stats()
        self.tool_definitions: list[dict[str, Any]] = []
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(model_config.total_timeout),
            follow_redirects=True,
        )

    def set_tool_definitions(self, definitions: list[dict[str, Any]]) -> None:
        self.tool_definitions = list(definitions)

    def build_request_body(
        self,
        messages: list[Message],
        stream: bool = True,
        include_tools: bool = True,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [to_api_payload(msg) for msg in messages],
            "stream": stream,
        }
        if self.config.temperature is not None:
            body["temperature"] = self.config.temperature
        if self.config.max_tokens:
            body["max_tokens"] = self.config.max_tokens
        if include_tools and self.tool_definitions:
            body["tools"] = self.tool_definitions
            body["tool_choice"] = "auto"
        return body

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _open(self, payload: bytes) -> httpx.Response:
        request = self.client.build_request(
            "POST",
            self.config.endpoint,
            content=payload,
            headers=self._headers(),
        )
        response = await self.client.send(request, stream=True)
        if not response.is_success:
            error_text = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise LLMAPIError(
                f"HTTP {response.status_code}: {error_text[:500]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _parse_completion(raw: bytes) -> StreamChunk:
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise LLMError(f"Response decode error: {e}") from e
        try:
            return StreamChunk.from_completion(data)
        except ValidationError as e:
            raise LLMError(f"Unexpected response body: {e}") from e

    async def _start(self, payload: bytes) -> _OpenedStream:
        """Open the response and read up to its first fragment.

        Transport failures up to that point fail the whole attempt, so the
        RetryPolicy re-sends the request.
        """
        response = await self._open(payload)
        try:
            content_type = response.headers.get("content-type", "")
            if "text/event-stream" not in content_type and "text/plain" not in content_type:
                chunk = self._parse_completion(await response.aread())
                return _OpenedStream(response, chunk, None)

            lines = response.aiter_lines()
            async for line in lines:
                parsed = parse_sse_line(line)
                if parsed is None:
                    continue
                if isinstance(parsed, str):
                    break
                return _OpenedStream(response, parsed, lines)
            return _OpenedStream(response, None, None)
        except BaseException:
            await response.aclose()
            raise

    async def stream_request(
        self,
        messages: list[Message],
        stream: bool = True,
        throw_on_error: bool = False,
        include_tools: bool = True,
    ) -> AsyncIterator[StreamChunk]:
        """Yield response fragments for ``messages``.

        Each attempt covers opening the response and reading its first
        fragment; both are retried by the RetryPolicy. With
        ``throw_on_error`` the final failure is raised; otherwise a single
        fragment carrying an explanatory note is yielded instead.

        Raises:
            RequestTooLargeError: when the body exceeds ``max_request_bytes``
            RetryExhaustedError: when every attempt failed (``throw_on_error``)
            LLMError: for non-retryable failures (``throw_on_error``)
        """
        started = time.monotonic()
        self.stats.increment_api_requests()

        payload = json.dumps(
            self.build_request_body(messages, stream=stream, include_tools=include_tools),
            ensure_ascii=False,
        ).encode("utf-8")
        if len(payload) > self.config.max_request_bytes:
            self.stats.increment_api_errors()
            raise RequestTooLargeError(len(payload), self.config.max_request_bytes)

        log.debug(
            "Sending chat request",
            endpoint=self.config.endpoint,
            model=self.config.model,
            messages=len(messages),
            bytes=len(payload),
        )

        try:
            opened = await self.retry.run(lambda: self._start(payload), is_retryable_error)
        except (RetryExhaustedError, LLMError, httpx.HTTPError) as e:
            self.stats.increment_api_errors()
            self.stats.add_api_time(time.monotonic() - started)
            log.error("Chat request failed", error=str(e))
            if throw_on_error:
                if isinstance(e, LLMError):
                    raise
                raise LLMAPIError(f"HTTP error: {e}") from e
            yield StreamChunk.model_validate(
                {"choices": [{"delta": {"content": UNREACHABLE_MESSAGE}, "finish_reason": "stop"}]}
            )
            return

        try:
            if opened.first is not None:
                yield opened.first
            if opened.lines is not None:
                async for line in opened.lines:
                    parsed = parse_sse_line(line)
                    if parsed is None:
                        continue
                    if isinstance(parsed, str):
                        break
                    yield parsed
        except httpx.HTTPError as e:
            self.stats.increment_api_errors()
            raise LLMAPIError(f"Stream interrupted: {e}") from e
        finally:
            await opened.response.aclose()
            self.stats.add_api_time(time.monotonic() - started)

        self.stats.increment_api_success()

    async def complete_text(self, messages: list[Message]) -> str:
        """Non-streamed completion without tools, returned as plain text."""
        parts: list[str] = []
        async for chunk in self.stream_request(
            messages, stream=False, throw_on_error=True, include_tools=False
        ):
            for choice in chunk.choices[:1]:
                if choice.delta.content:
                    parts.append(choice.delta.content)
        return "".join(parts)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
