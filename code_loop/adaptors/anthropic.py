"""Anthropic API adaptor for code-loop."""

import os
import time
from typing import AsyncIterator, Optional, Sequence

from anthropic import AsyncAnthropic

from code_loop.execution import Message, UsageStats
from code_loop.model import ModelAdaptor, StreamChunk, decode_rate


class AnthropicAdaptor(ModelAdaptor):
    """Anthropic model adaptor using the official SDK.

    Args:
        api_key: Anthropic API key. Falls back to ANTHROPIC_API_KEY environment variable.
        model: Model name (default: claude-sonnet-4-5-20250929).
        max_tokens: Maximum tokens in the response (default: 1024).
        temperature: Sampling temperature (default: the API's).
        top_p: Nucleus sampling cutoff (default: the API's).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 1024,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key not provided. "
                "Pass api_key argument or set ANTHROPIC_API_KEY environment variable."
            )

        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.client = AsyncAnthropic(api_key=self.api_key)

    async def stream(
        self,
        messages: Sequence[Message],
        include_usage: bool = True,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        system, anthropic_messages = self._convert_messages(messages)

        stream_kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": anthropic_messages,
        }
        if system:
            stream_kwargs["system"] = system
        if self.temperature is not None:
            stream_kwargs["temperature"] = self.temperature
        if self.top_p is not None:
            stream_kwargs["top_p"] = self.top_p

        first_token_at: Optional[float] = None
        async with self.client.messages.stream(**stream_kwargs) as stream:
            async for text in stream.text_stream:
                if first_token_at is None:
                    first_token_at = time.monotonic()
                yield StreamChunk(delta=text)

            final = await stream.get_final_message()

        if include_usage:
            yield StreamChunk(usage=self._parse_usage(final.usage, first_token_at))

    def _convert_messages(self, messages: Sequence[Message]) -> tuple[str, list[dict]]:
        """Split out the system prompt and merge consecutive same-role turns.

        The Messages API rejects two user (or two assistant) messages in a
        row, which the error-recovery flow produces.
        """
        system_parts = []
        anthropic_messages: list[dict] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            if anthropic_messages and anthropic_messages[-1]["role"] == msg.role:
                anthropic_messages[-1]["content"] += "\n\n" + msg.content
            else:
                anthropic_messages.append({"role": msg.role, "content": msg.content})
        return "\n\n".join(system_parts), anthropic_messages

    def _parse_usage(self, usage, first_token_at: Optional[float]) -> UsageStats:
        input_tokens = getattr(usage, "input_tokens", None)
        output_tokens = getattr(usage, "output_tokens", None)
        total = None
        if input_tokens is not None and output_tokens is not None:
            total = input_tokens + output_tokens
        return UsageStats(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=total,
            decode_tokens_per_second=decode_rate(output_tokens, first_token_at),
        )
