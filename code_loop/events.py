"""Progress reporting for a running turn.

A turn pushes updates to a ``TurnCallbacks`` object. Callers either subclass
it and override the methods they care about, or use ``TurnChannel`` and
iterate over the events it queues.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from code_loop.exceptions import TurnCancelled

if TYPE_CHECKING:
    from code_loop.execution import Turn, UsageStats


class CancellationToken:
    """Cooperative cancellation flag checked between stages and stream chunks."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled("Turn cancelled")


class TurnCallbacks:
    """Receives a turn's visible progress. All methods are no-ops by default."""

    async def on_result_update(self, result: str) -> None:
        pass

    async def on_code_output_update(self, output: Optional[str]) -> None:
        pass

    async def on_explanation_update(self, explanation: Optional[str]) -> None:
        pass

    async def on_error_update(self, has_error: bool) -> None:
        pass

    async def on_usage_update(self, usage: "UsageStats") -> None:
        pass

    async def on_turn_end(self, turn: "Turn") -> None:
        pass


class TurnEventKind(str, Enum):
    RESULT = "result"
    CODE_OUTPUT = "code_output"
    EXPLANATION = "explanation"
    ERROR = "error"
    USAGE = "usage"
    END = "end"


@dataclass(frozen=True)
class TurnEvent:
    kind: TurnEventKind
    payload: Any = None


class TurnChannel(TurnCallbacks):
    """Single-consumer queue of events produced by one turn.

    Usage:
        channel = interpreter.open_turn("How many r's are in 'strawberry'?")
        async for event in channel:
            if event.kind == TurnEventKind.RESULT:
                render(event.payload)
        turn = await channel.wait()
    """

    def __init__(self, cancel: Optional[CancellationToken] = None):
        self.cancel_token = cancel or CancellationToken()
        self._queue: asyncio.Queue[TurnEvent] = asyncio.Queue()
        self._consumed = False
        self._task: Optional[asyncio.Task] = None

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        self.cancel_token.cancel()

    async def wait(self) -> "Turn":
        if self._task is None:
            raise RuntimeError("No turn is attached to this channel")
        return await self._task

    async def _put(self, kind: TurnEventKind, payload: Any = None) -> None:
        await self._queue.put(TurnEvent(kind=kind, payload=payload))

    async def on_result_update(self, result: str) -> None:
        await self._put(TurnEventKind.RESULT, result)

    async def on_code_output_update(self, output: Optional[str]) -> None:
        await self._put(TurnEventKind.CODE_OUTPUT, output)

    async def on_explanation_update(self, explanation: Optional[str]) -> None:
        await self._put(TurnEventKind.EXPLANATION, explanation)

    async def on_error_update(self, has_error: bool) -> None:
        await self._put(TurnEventKind.ERROR, has_error)

    async def on_usage_update(self, usage: "UsageStats") -> None:
        await self._put(TurnEventKind.USAGE, usage)

    async def on_turn_end(self, turn: "Turn") -> None:
        await self._put(TurnEventKind.END, turn)

    def __aiter__(self) -> AsyncIterator[TurnEvent]:
        if self._consumed:
            raise RuntimeError("TurnChannel supports a single consumer")
        self._consumed = True
        return self._drain()

    async def _drain(self) -> AsyncIterator[TurnEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.kind == TurnEventKind.END:
                return
