import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from code_loop.config import InterpreterConfig
from code_loop.events import CancellationToken, TurnCallbacks, TurnChannel
from code_loop.exceptions import TurnCancelled
from code_loop.execution import (
    Conversation,
    ExecutionRecord,
    Turn,
    TurnOutcome,
    TurnState,
    UsageStats,
)
from code_loop.extract import extract_code
from code_loop.model import ModelAdaptor
from code_loop.prompts import SYSTEM_PROMPT, code_block, explanation_prompt
from code_loop.recovery import ExecutionLoop
from code_loop.sandbox import Sandbox
from code_loop.streamer import CompletionStreamer

if TYPE_CHECKING:
    from code_loop.hooks import HookRegistry, Middleware

logger = logging.getLogger(__name__)

EXPLANATION_ERROR_PREFIX = "Error generating explanation"


class CodeInterpreter:
    def __init__(
        self,
        model: ModelAdaptor,
        sandbox: Sandbox,
        max_recovery_attempts: int = 3,
        system_prompt: str = SYSTEM_PROMPT,
        language: str = "python",
        hooks: Optional["HookRegistry"] = None,
        middlewares: Optional[list["Middleware"]] = None,
        config: Optional[InterpreterConfig] = None,
    ):
        if config is not None:
            max_recovery_attempts = config.max_recovery_attempts
            system_prompt = config.system_prompt
            language = config.language

        self.model = model
        self.sandbox = sandbox
        self.max_recovery_attempts = max_recovery_attempts
        self.system_prompt = system_prompt
        self.language = language

        # Every stage shares one HookRegistry; middleware registers into it
        if hooks is None:
            from code_loop.hooks import HookRegistry

            hooks = HookRegistry()
        self.hooks = hooks

        if middlewares:
            self._register_middlewares(middlewares)

        self.streamer = CompletionStreamer(model, hooks=self.hooks)
        self.loop = ExecutionLoop(
            sandbox,
            self.streamer,
            max_recovery_attempts=max_recovery_attempts,
            language=language,
            hooks=self.hooks,
        )

    def _register_middlewares(self, middlewares: list["Middleware"]) -> None:
        """Convert middleware instances to HookRegistry handlers."""
        from code_loop.hooks import HookEvent

        hook_names = [e.value for e in HookEvent]
        for middleware in middlewares:
            for hook_name in hook_names:
                handler = getattr(middleware, hook_name, None)
                if handler is not None and asyncio.iscoroutinefunction(handler):
                    self.hooks.register_handler(hook_name, handler)

    def hook(self, hook_name: str):
        """Decorator for registering hooks directly on the interpreter.

        Usage:
            interpreter = CodeInterpreter(model=model, sandbox=sandbox)

            @interpreter.hook('after_execution')
            async def log_run(event):
                print(f"Ran: {event.record.code}")
        """
        return self.hooks.on(hook_name)

    def run(self, input: str, callbacks: Optional[TurnCallbacks] = None) -> Turn:
        """Run one turn synchronously."""
        return asyncio.run(self.handle_turn(input, callbacks))

    def open_turn(self, input: str) -> TurnChannel:
        """Start a turn in the background and return its event channel.

        Must be called from a running event loop.
        """
        channel = TurnChannel()
        task = asyncio.create_task(
            self.handle_turn(input, channel, cancel=channel.cancel_token)
        )
        channel.attach(task)
        return channel

    async def handle_turn(
        self,
        input: str,
        callbacks: Optional[TurnCallbacks] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Turn:
        """Answer one question: stream, extract, execute, recover, explain.

        Failures never propagate out of this method. They are recorded on the
        returned Turn and surfaced through ``callbacks``.
        """
        from code_loop.hooks import AfterTurnEventData, BeforeTurnEventData

        callbacks = callbacks or TurnCallbacks()
        start_time = time.time()

        turn = Turn(
            input=input,
            conversation=Conversation.start(self.system_prompt, input),
        )

        await self.hooks.trigger(
            "before_turn", BeforeTurnEventData(interpreter=self, input=input)
        )

        try:
            record = await self._answer_and_execute(turn, callbacks, cancel)
            if record is not None:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                await self._explain(turn, record, callbacks, cancel)
        except TurnCancelled as e:
            logger.info("Turn cancelled")
            turn.error = str(e)
            turn.finish(TurnOutcome.CANCELLED)
        except Exception as e:
            logger.exception("Turn failed unexpectedly")
            await self._fail(turn, callbacks, e)
        finally:
            turn.in_progress = False
            if not turn.done:
                turn.advance(TurnState.DONE)
            turn.finish(TurnOutcome.ERROR if turn.has_error else TurnOutcome.ANSWERED)

            total_time = (time.time() - start_time) * 1000
            await self.hooks.trigger(
                "after_turn",
                AfterTurnEventData(turn=turn, total_time_ms=total_time),
            )
            await callbacks.on_turn_end(turn)

        return turn

    async def _answer_and_execute(
        self,
        turn: Turn,
        callbacks: TurnCallbacks,
        cancel: Optional[CancellationToken],
    ) -> Optional[ExecutionRecord]:
        completion = await self._complete(
            turn,
            callbacks,
            on_delta=callbacks.on_result_update,
            on_final=callbacks.on_result_update,
            stage="answer",
            cancel=cancel,
        )
        if completion is None:
            return None

        turn.response = completion
        code = extract_code(completion, self.language)
        if code is None:
            logger.debug("No %s code in response; treating it as the answer", self.language)
            turn.finish(TurnOutcome.ANSWERED)
            return None

        turn.advance(TurnState.CODE_DETECTED)
        return await self.loop.run_and_recover(code, turn, callbacks, cancel)

    async def _explain(
        self,
        turn: Turn,
        record: ExecutionRecord,
        callbacks: TurnCallbacks,
        cancel: Optional[CancellationToken],
    ) -> None:
        turn.advance(TurnState.EXPLAINING)
        result = record.result
        turn.conversation.add("assistant", code_block(record.code, self.language))
        turn.conversation.add(
            "user", explanation_prompt(result.value, result.stdout)
        )

        explanation = await self._complete(
            turn,
            callbacks,
            on_delta=callbacks.on_explanation_update,
            on_final=callbacks.on_explanation_update,
            stage="explanation",
            cancel=cancel,
            error_prefix=EXPLANATION_ERROR_PREFIX,
        )
        if explanation is not None:
            turn.explanation = explanation
            turn.finish(TurnOutcome.EXPLAINED)

    async def _complete(
        self,
        turn: Turn,
        callbacks: TurnCallbacks,
        on_delta,
        on_final,
        stage: str,
        cancel: Optional[CancellationToken],
        error_prefix: str = "",
    ) -> Optional[str]:
        """Stream one completion, returning its text or None after an error."""
        stream_error: list[Exception] = []

        async def on_finish(text: str, usage: UsageStats) -> None:
            turn.usage.append(usage)
            await on_final(text)
            await callbacks.on_usage_update(usage)

        async def on_error(error: Exception) -> None:
            stream_error.append(error)

        completion = await self.streamer.stream(
            turn.conversation,
            on_delta=on_delta,
            on_finish=on_finish,
            on_error=on_error,
            stage=stage,
            cancel=cancel,
        )
        if completion is None:
            error = stream_error[0]
            if isinstance(error, TurnCancelled):
                raise error
            await self._fail(turn, callbacks, error, error_prefix)
            return None
        return completion.text

    async def _fail(
        self,
        turn: Turn,
        callbacks: TurnCallbacks,
        error: Exception,
        prefix: str = "",
    ) -> None:
        message = f"{prefix}: {error}" if prefix else str(error)
        turn.has_error = True
        turn.error = message
        turn.finish(TurnOutcome.ERROR)
        await callbacks.on_error_update(True)
        await callbacks.on_result_update(message)
