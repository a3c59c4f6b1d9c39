"""Google Gemini API adaptor for code-loop."""

import os
import time
from typing import AsyncIterator, Optional, Sequence

from google import genai
from google.genai import types

from code_loop.execution import Message, UsageStats
from code_loop.model import ModelAdaptor, StreamChunk, decode_rate


class GeminiAdaptor(ModelAdaptor):
    """Google Gemini model adaptor using the official google-genai SDK.

    Args:
        api_key: Google AI API key. Falls back to GOOGLE_API_KEY environment variable.
        model: Model name (default: gemini-2.5-flash).
        temperature: Sampling temperature (default: the model's).
        top_p: Nucleus sampling cutoff (default: the model's).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ):
        self.api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Google API key not provided. "
                "Pass api_key argument or set GOOGLE_API_KEY environment variable."
            )

        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.client = genai.Client(api_key=self.api_key)

    async def stream(
        self,
        messages: Sequence[Message],
        include_usage: bool = True,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        system, contents = self._convert_messages(messages)
        config = types.GenerateContentConfig(
            system_instruction=system or None,
            temperature=self.temperature,
            top_p=self.top_p,
        )

        first_token_at: Optional[float] = None
        usage_metadata = None

        response = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=contents,
            config=config,
        )
        async for chunk in response:
            text = chunk.text
            if text:
                if first_token_at is None:
                    first_token_at = time.monotonic()
                yield StreamChunk(delta=text)
            # Counts are cumulative; the last chunk carries the totals
            if chunk.usage_metadata is not None:
                usage_metadata = chunk.usage_metadata

        if include_usage and usage_metadata is not None:
            yield StreamChunk(usage=self._parse_usage(usage_metadata, first_token_at))

    def _convert_messages(
        self, messages: Sequence[Message]
    ) -> tuple[str, list[types.Content]]:
        system_parts = []
        contents: list[types.Content] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            role = "model" if msg.role == "assistant" else "user"
            if contents and contents[-1].role == role:
                contents[-1].parts.append(types.Part(text=msg.content))
            else:
                contents.append(types.Content(role=role, parts=[types.Part(text=msg.content)]))
        return "\n\n".join(system_parts), contents

    def _parse_usage(self, metadata, first_token_at: Optional[float]) -> UsageStats:
        completion_tokens = metadata.candidates_token_count
        return UsageStats(
            prompt_tokens=metadata.prompt_token_count,
            completion_tokens=completion_tokens,
            total_tokens=metadata.total_token_count,
            decode_tokens_per_second=decode_rate(completion_tokens, first_token_at),
        )
