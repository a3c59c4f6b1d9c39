import logging
import time
from typing import TYPE_CHECKING, Optional

from code_loop.exceptions import RecoveryLimitReached, TurnCancelled
from code_loop.execution import (
    ExecutionFailure,
    ExecutionRecord,
    ExecutionResult,
    ExecutionSuccess,
    Turn,
    TurnOutcome,
    TurnState,
    UsageStats,
)
from code_loop.extract import extract_code
from code_loop.prompts import error_prompt, success_summary
from code_loop.sandbox import Sandbox
from code_loop.streamer import CompletionStreamer

if TYPE_CHECKING:
    from code_loop.events import CancellationToken, TurnCallbacks
    from code_loop.hooks import HookRegistry

logger = logging.getLogger(__name__)


class ExecutionLoop:
    """Executes model-written code and asks the model to fix it on failure.

    Every execution outcome is appended to the turn's conversation before the
    model is called again. Recovery stops after ``max_recovery_attempts``
    re-prompts; ``0`` disables recovery entirely.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        streamer: CompletionStreamer,
        max_recovery_attempts: int = 3,
        language: str = "python",
        hooks: Optional["HookRegistry"] = None,
    ):
        if max_recovery_attempts < 0:
            raise ValueError("max_recovery_attempts must be >= 0")

        self.sandbox = sandbox
        self.streamer = streamer
        self.max_recovery_attempts = max_recovery_attempts
        self.language = language

        if hooks is None:
            from code_loop.hooks import HookRegistry

            hooks = HookRegistry()
        self.hooks = hooks

    async def run_and_recover(
        self,
        code: str,
        turn: Turn,
        callbacks: "TurnCallbacks",
        cancel: Optional["CancellationToken"] = None,
    ) -> Optional[ExecutionRecord]:
        """Run ``code``, re-prompting the model until it works or we give up.

        Returns:
            The successful execution record, or None if the turn ended in a
            failed, gave-up or error state (recorded on ``turn``).
        """
        from code_loop.hooks import OnExecutionErrorEventData

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()

            record = await self._execute(code, turn)
            result = record.result

            if isinstance(result, ExecutionSuccess):
                turn.advance(TurnState.EXECUTION_SUCCEEDED)
                output = result.output
                turn.conversation.add("assistant", success_summary(output))
                turn.code_output = output or None
                if turn.has_error:
                    turn.has_error = False
                    turn.error = None
                    await callbacks.on_error_update(False)
                await callbacks.on_code_output_update(output or None)
                return record

            turn.advance(TurnState.EXECUTION_FAILED)
            reason = result.reason
            logger.info("Execution attempt %d failed: %s", record.attempt, reason)

            turn.has_error = True
            turn.error = reason
            await callbacks.on_error_update(True)
            await callbacks.on_result_update(reason)

            turn.conversation.add("user", error_prompt(reason, code, self.language))

            hook_response = await self.hooks.trigger(
                "on_execution_error",
                OnExecutionErrorEventData(
                    turn=turn,
                    code=code,
                    error_message=reason,
                    attempt=record.attempt,
                ),
            )
            if hook_response and hook_response.action == "abort":
                turn.finish(TurnOutcome.FAILED)
                return None

            if turn.recovery_attempts >= self.max_recovery_attempts:
                error = RecoveryLimitReached(
                    f"Gave up after {turn.recovery_attempts} recovery attempts: {reason}"
                )
                logger.warning(str(error))
                turn.error = str(error)
                turn.finish(TurnOutcome.GAVE_UP)
                await callbacks.on_result_update(str(error))
                return None

            turn.recovery_attempts += 1
            turn.advance(TurnState.RECOVERING)

            new_code = await self._request_fix(turn, callbacks, cancel)
            if new_code is None:
                return None
            code = new_code

    async def _execute(self, code: str, turn: Turn) -> ExecutionRecord:
        from code_loop.hooks import AfterExecutionEventData, BeforeExecutionEventData

        turn.advance(TurnState.EXECUTING)
        attempt = turn.recovery_attempts

        before = await self.hooks.trigger(
            "before_execution",
            BeforeExecutionEventData(turn=turn, code=code, attempt=attempt),
        )

        start = time.time()
        if before and before.action == "skip" and before.cached_result is not None:
            result: ExecutionResult = ExecutionSuccess(
                stdout="", value=before.cached_result
            )
        else:
            try:
                result = await self.sandbox.execute(code)
            except Exception as e:
                logger.warning("Sandbox raised while executing code: %s", e)
                result = ExecutionFailure(reason=str(e) or type(e).__name__)
        execution_time = (time.time() - start) * 1000

        record = ExecutionRecord(code=code, result=result, attempt=attempt)
        turn.executions.append(record)

        await self.hooks.trigger(
            "after_execution",
            AfterExecutionEventData(
                turn=turn, record=record, execution_time_ms=execution_time
            ),
        )
        return record

    async def _request_fix(
        self,
        turn: Turn,
        callbacks: "TurnCallbacks",
        cancel: Optional["CancellationToken"],
    ) -> Optional[str]:
        """Ask the model for corrected code. None means the turn is over."""
        stream_error: list[Exception] = []

        async def on_finish(text: str, usage: UsageStats) -> None:
            turn.usage.append(usage)
            await callbacks.on_result_update(text)
            await callbacks.on_usage_update(usage)

        async def on_error(error: Exception) -> None:
            stream_error.append(error)

        completion = await self.streamer.stream(
            turn.conversation,
            on_delta=callbacks.on_result_update,
            on_finish=on_finish,
            on_error=on_error,
            stage="recovery",
            cancel=cancel,
        )
        if completion is None:
            error = stream_error[0]
            if isinstance(error, TurnCancelled):
                raise error
            turn.has_error = True
            turn.error = str(error)
            turn.finish(TurnOutcome.ERROR)
            await callbacks.on_error_update(True)
            await callbacks.on_result_update(str(error))
            return None

        turn.response = completion.text
        turn.conversation.add("assistant", completion.text)
        new_code = extract_code(completion.text, self.language)
        if new_code is None:
            logger.info("Recovery response contained no %s code", self.language)
            turn.finish(TurnOutcome.FAILED)
            return None

        turn.advance(TurnState.CODE_DETECTED)
        return new_code
