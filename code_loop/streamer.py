import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from code_loop.exceptions import EngineNotReady, UsageNotAvailable
from code_loop.execution import Conversation, UsageStats
from code_loop.model import ModelAdaptor

if TYPE_CHECKING:
    from code_loop.events import CancellationToken
    from code_loop.hooks import HookRegistry

logger = logging.getLogger(__name__)

DeltaHandler = Callable[[str], Awaitable[None]]
FinishHandler = Callable[[str, UsageStats], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]


@dataclass(frozen=True)
class Completion:
    text: str
    usage: UsageStats


class CompletionStreamer:
    """Runs one streamed request/response cycle against a model.

    The streamer never raises: engine failures, a missing usage summary and
    cancellation are all handed to ``on_error`` and ``stream`` returns None.
    """

    def __init__(self, model: ModelAdaptor, hooks: Optional["HookRegistry"] = None):
        self.model = model
        if hooks is None:
            from code_loop.hooks import HookRegistry

            hooks = HookRegistry()
        self.hooks = hooks

    async def stream(
        self,
        conversation: Conversation,
        on_delta: DeltaHandler,
        on_finish: FinishHandler,
        on_error: ErrorHandler,
        stage: str = "answer",
        cancel: Optional["CancellationToken"] = None,
    ) -> Optional[Completion]:
        """Stream a completion for ``conversation``.

        Args:
            conversation: Messages to send. Only a snapshot is read.
            on_delta: Awaited with the full text accumulated so far.
            on_finish: Awaited once with the final text and usage.
            on_error: Awaited with the exception if anything goes wrong.
            stage: Label passed to model-call hooks.
            cancel: Optional token checked between chunks.

        Returns:
            The completion, or None if ``on_error`` was called.
        """
        from code_loop.hooks import AfterModelCallEventData, BeforeModelCallEventData

        if not self.model.is_ready:
            await on_error(EngineNotReady("Engine not initialized"))
            return None

        messages = conversation.messages
        await self.hooks.trigger(
            "before_model_call",
            BeforeModelCallEventData(messages=list(messages), stage=stage),
        )

        start = time.time()
        try:
            text = ""
            usage: Optional[UsageStats] = None

            async for chunk in self.model.stream(messages, include_usage=True):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                if chunk.delta:
                    text += chunk.delta
                    await on_delta(text)
                if chunk.usage is not None:
                    usage = chunk.usage

            if usage is None:
                raise UsageNotAvailable("Usage data not available")

            completion = Completion(text=text, usage=usage)
            await on_finish(text, usage)
        except Exception as e:
            logger.warning("Completion stream failed during %s: %s", stage, e)
            await on_error(e)
            return None

        response_time = (time.time() - start) * 1000
        logger.debug(
            "Streamed %d characters for %s in %.0fms", len(text), stage, response_time
        )
        await self.hooks.trigger(
            "after_model_call",
            AfterModelCallEventData(
                stage=stage,
                text=text,
                usage=usage,
                response_time_ms=response_time,
            ),
        )
        return completion
