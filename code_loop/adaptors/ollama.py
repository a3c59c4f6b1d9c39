"""Ollama adaptor for code-loop."""

from typing import AsyncIterator, Optional, Sequence

from ollama import AsyncClient

from code_loop.execution import Message, UsageStats
from code_loop.model import ModelAdaptor, StreamChunk

NANOSECONDS = 1_000_000_000


class OllamaAdaptor(ModelAdaptor):
    """Ollama model adaptor using the official SDK.

    Local models have to be present before they can stream, so the adaptor
    starts out not ready; call ``load()`` to pull (optionally) and verify the
    model, reporting progress through the progress callback.

    Args:
        model: Model name (default: qwen2.5-coder:1.5b).
        host: Ollama server URL (default: None, SDK defaults to localhost:11434).
        pull: Download the model during ``load()`` (default: True).
        options: Sampling options such as temperature and top_p.
    """

    def __init__(
        self,
        model: str = "qwen2.5-coder:1.5b",
        host: Optional[str] = None,
        pull: bool = True,
        options: Optional[dict] = None,
    ):
        self.model = model
        self.pull = pull
        self.options = options
        self.client = AsyncClient(host=host)
        self.ready = False

    async def load(self) -> None:
        self.ready = False
        if self.pull:
            async for progress in await self.client.pull(self.model, stream=True):
                self.report_progress(self._format_progress(progress))
        await self.client.show(self.model)
        self.ready = True
        self.report_progress("Model loaded successfully")

    async def stream(
        self,
        messages: Sequence[Message],
        include_usage: bool = True,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        chat_kwargs = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": True,
        }
        if self.options:
            chat_kwargs["options"] = self.options

        async for part in await self.client.chat(**chat_kwargs):
            content = part.message.content if part.message else None
            usage = None
            if part.done and include_usage:
                usage = self._parse_usage(part)
            if content or usage is not None:
                yield StreamChunk(delta=content or None, usage=usage)

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict]:
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    def _format_progress(self, progress) -> str:
        status = progress.status or "pulling"
        if progress.total:
            percent = (progress.completed or 0) * 100 // progress.total
            return f"{status} {percent}%"
        return status

    def _parse_usage(self, part) -> UsageStats:
        prompt_tokens = part.prompt_eval_count
        completion_tokens = part.eval_count
        total = None
        if prompt_tokens is not None and completion_tokens is not None:
            total = prompt_tokens + completion_tokens

        rate = None
        if completion_tokens and part.eval_duration:
            rate = completion_tokens / (part.eval_duration / NANOSECONDS)

        return UsageStats(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total,
            decode_tokens_per_second=rate,
            extra={
                "total_duration": part.total_duration,
                "load_duration": part.load_duration,
            },
        )
