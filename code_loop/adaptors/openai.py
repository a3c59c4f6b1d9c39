"""OpenAI API adaptor for code-loop."""

import json
import os
import time
from typing import AsyncIterator, Optional, Sequence

import httpx

from code_loop.execution import Message, UsageStats
from code_loop.model import ModelAdaptor, StreamChunk, decode_rate

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class OpenAIAdaptor(ModelAdaptor):
    """OpenAI-compatible streaming model adaptor.

    Supports OpenAI API and compatible endpoints (local models, proxies, etc.).

    Args:
        api_key: OpenAI API key. Falls back to OPENAI_API_KEY environment variable.
        model: Model name (default: gpt-5-mini).
        base_url: Base URL for the API (default: https://api.openai.com/v1).
        temperature: Sampling temperature sent with every request (default: server's).
        top_p: Nucleus sampling cutoff sent with every request (default: server's).
        timeout: Request timeout in seconds (default: 60).
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-5-mini",
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. "
                "Pass api_key argument or set OPENAI_API_KEY environment variable."
            )

        self.model = model
        self.base_url = base_url or "https://api.openai.com/v1"
        self.temperature = temperature
        self.top_p = top_p
        self.timeout = timeout
        self.transport = transport

    async def stream(
        self,
        messages: Sequence[Message],
        include_usage: bool = True,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion from the OpenAI API.

        Args:
            messages: Conversation messages.
            include_usage: Ask the server for a trailing usage chunk.

        Yields:
            StreamChunk with a text delta and/or a usage summary.

        Raises:
            ValueError: If the API returns an error status.
            httpx.HTTPError: If the request fails.
        """
        payload = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": True,
        }
        if include_usage:
            payload["stream_options"] = {"include_usage": True}
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.top_p is not None:
            payload["top_p"] = self.top_p

        first_token_at: Optional[float] = None

        async with httpx.AsyncClient(transport=self.transport) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise ValueError(f"OpenAI API error: {self._error_message(response)}")

                async for line in response.aiter_lines():
                    data = self._parse_line(line)
                    if data is None:
                        continue

                    chunk = self._parse_chunk(data)
                    if chunk.delta and first_token_at is None:
                        first_token_at = time.monotonic()
                    if chunk.usage is not None:
                        chunk.usage = self._with_decode_rate(chunk.usage, first_token_at)
                    yield chunk

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict]:
        """Convert code-loop Message objects to OpenAI format."""
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    def _parse_line(self, line: str) -> Optional[dict]:
        """Decode one server-sent-events line. Returns None for non-data lines."""
        line = line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        data = line[len(SSE_DATA_PREFIX):].strip()
        if not data or data == SSE_DONE:
            return None
        return json.loads(data)

    def _parse_chunk(self, data: dict) -> StreamChunk:
        """Parse one chat.completion.chunk object.

        The usage chunk sent at the end of the stream has an empty
        ``choices`` list.
        """
        if "error" in data:
            raise ValueError(f"OpenAI API error: {data['error'].get('message', data['error'])}")

        delta = None
        choices = data.get("choices") or []
        if choices:
            delta = (choices[0].get("delta") or {}).get("content")

        usage = None
        if data.get("usage"):
            raw = data["usage"]
            usage = UsageStats(
                prompt_tokens=raw.get("prompt_tokens"),
                completion_tokens=raw.get("completion_tokens"),
                total_tokens=raw.get("total_tokens"),
                extra={
                    k: v
                    for k, v in raw.items()
                    if k not in ("prompt_tokens", "completion_tokens", "total_tokens")
                },
            )
        return StreamChunk(delta=delta, usage=usage)

    def _with_decode_rate(
        self, usage: UsageStats, first_token_at: Optional[float]
    ) -> UsageStats:
        # Some local servers report the rate themselves, at the top level or under "extra"
        nested = usage.extra.get("extra")
        reported = usage.extra.get("decode_tokens_per_s")
        if reported is None and isinstance(nested, dict):
            reported = nested.get("decode_tokens_per_s")
        rate = reported if reported is not None else decode_rate(
            usage.completion_tokens, first_token_at
        )
        return UsageStats(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            decode_tokens_per_second=rate,
            extra=usage.extra,
        )

    def _error_message(self, response: httpx.Response) -> str:
        try:
            error_data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(error_data, dict):
            error = error_data.get("error", {})
            if isinstance(error, dict):
                return error.get("message", "Unknown error")
            return str(error)
        return "Unknown error"
