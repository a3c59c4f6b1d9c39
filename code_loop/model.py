import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Sequence

from code_loop.execution import Message, UsageStats

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    delta: Optional[str] = None
    usage: Optional[UsageStats] = None


class ModelAdaptor:
    """Base class for inference engines.

    Subclasses implement ``stream`` as an async generator. Engines that need
    a warm-up step (downloading weights, loading a local model) start out not
    ready and flip ``ready`` at the end of ``load``.
    """

    ready: bool = True
    _progress_callback: Optional[Callable[[str], None]] = None

    @property
    def is_ready(self) -> bool:
        return self.ready

    def set_progress_callback(self, callback: Optional[Callable[[str], None]]) -> None:
        """Register a callable that receives human-readable load progress."""
        self._progress_callback = callback

    def report_progress(self, text: str) -> None:
        logger.debug("Model progress: %s", text)
        if self._progress_callback is not None:
            self._progress_callback(text)

    async def load(self) -> None:
        """Prepare the engine for streaming."""
        self.ready = True
        self.report_progress("Model loaded successfully")

    def stream(
        self,
        messages: Sequence[Message],
        include_usage: bool = True,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion for the conversation as text deltas plus usage."""
        raise NotImplementedError


def decode_rate(tokens: Optional[int], started_at: Optional[float]) -> Optional[float]:
    """Tokens per second between the first streamed delta and now."""
    if not tokens or started_at is None:
        return None
    elapsed = time.monotonic() - started_at
    if elapsed <= 0:
        return None
    return tokens / elapsed
