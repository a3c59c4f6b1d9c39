"""Lifecycle hooks for code-loop turns.

Handlers observe a turn at seven points: around the whole turn, around every
model call (answer, recovery, explanation), and around every sandbox run.
Two of them can steer the turn by returning a response:

- ``before_execution`` returning ``{"action": "skip", "cached_result": ...}``
  uses the cached value instead of running the code.
- ``on_execution_error`` returning ``{"action": "abort"}`` ends the turn
  without asking the model for a fix.

Handlers are registered on a HookRegistry, either with the ``@hooks.on``
decorator (``@interpreter.hook`` on a CodeInterpreter) or by passing
Middleware instances to the interpreter.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence, Union

if TYPE_CHECKING:
    from code_loop.execution import ExecutionRecord, Message, Turn, UsageStats
    from code_loop.interpreter import CodeInterpreter

logger = logging.getLogger(__name__)

HookHandler = Callable[[Any], Awaitable[Any]]


class HookEvent(str, Enum):
    """Available hook points in a turn."""

    BEFORE_TURN = "before_turn"
    AFTER_TURN = "after_turn"

    BEFORE_MODEL_CALL = "before_model_call"
    AFTER_MODEL_CALL = "after_model_call"

    BEFORE_EXECUTION = "before_execution"
    AFTER_EXECUTION = "after_execution"
    ON_EXECUTION_ERROR = "on_execution_error"


# --- Event payloads ---


@dataclass
class BeforeTurnEventData:
    interpreter: "CodeInterpreter"
    input: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AfterTurnEventData:
    turn: "Turn"
    total_time_ms: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class BeforeModelCallEventData:
    messages: Sequence["Message"]
    stage: str  # "answer" | "recovery" | "explanation"


@dataclass
class AfterModelCallEventData:
    stage: str
    text: str
    usage: "UsageStats"
    response_time_ms: float


@dataclass
class BeforeExecutionEventData:
    turn: "Turn"
    code: str
    attempt: int  # 0 for the first run, then one per recovery


@dataclass
class AfterExecutionEventData:
    """Fired for every sandbox run, failed ones included."""

    turn: "Turn"
    record: "ExecutionRecord"
    execution_time_ms: float


@dataclass
class OnExecutionErrorEventData:
    """Fired after a failed run, before the model is asked for a fix."""

    turn: "Turn"
    code: str
    error_message: str
    attempt: int


# --- Responses ---


@dataclass
class HookResponse:
    action: Optional[str] = None  # "skip" | "abort"
    cached_result: Optional[str] = None  # value reported instead of running the code

    @classmethod
    def from_dict(
        cls, data: Union["HookResponse", dict, None]
    ) -> Optional["HookResponse"]:
        """Build a response from a handler's return value; unknown keys are dropped."""
        if data is None or isinstance(data, HookResponse):
            return data
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


# --- Registry ---


class HookRegistry:
    """Holds the handlers for every hook point.

    Handlers for one hook run in registration order. The first handler that
    returns something other than None decides the response; later handlers
    are not called. A handler that raises is logged and skipped so a broken
    hook never fails a turn.

    Usage:
        hooks = HookRegistry()

        @hooks.on("after_execution")
        async def log_run(event):
            print(event.record.code, event.record.succeeded)
    """

    def __init__(self):
        self._handlers: dict[str, list[HookHandler]] = {}
        for event in HookEvent:
            self._handlers[event.value] = []

    def on(self, hook_name: str) -> Callable[[HookHandler], HookHandler]:
        """Decorator form of ``register_handler``."""

        def decorator(func: HookHandler) -> HookHandler:
            self.register_handler(hook_name, func)
            return func

        return decorator

    def register_handler(self, hook_name: str, handler: HookHandler) -> None:
        """Add ``handler`` to ``hook_name``.

        Raises:
            ValueError: If hook_name is not one of HookEvent's values.
        """
        try:
            self._handlers[hook_name].append(handler)
        except KeyError:
            valid = ", ".join(e.value for e in HookEvent)
            raise ValueError(
                f"Invalid hook name '{hook_name}'. Valid hooks: {valid}"
            ) from None

    async def trigger(self, hook_name: str, event_data: Any) -> Optional[HookResponse]:
        for handler in self._handlers.get(hook_name, ()):
            try:
                result = await handler(event_data)
                if result is None:
                    continue
                if not isinstance(result, (dict, HookResponse)):
                    logger.warning(
                        "Hook '%s' handler %r returned %r; expected a dict or HookResponse",
                        hook_name,
                        handler,
                        result,
                    )
                    continue
                return HookResponse.from_dict(result)
            except Exception as e:
                logger.warning("Hook '%s' handler %r raised: %s", hook_name, handler, e)
        return None

    def has_handlers(self, hook_name: str) -> bool:
        return bool(self._handlers.get(hook_name))

    def clear(self) -> None:
        """Remove every handler from every hook."""
        for handlers in self._handlers.values():
            handlers.clear()


class Middleware:
    """Stateful alternative to decorated handlers.

    Subclasses override the hook methods they care about; the interpreter
    registers each hook coroutine with its HookRegistry.

    Usage:
        class RunLog(Middleware):
            def __init__(self):
                self.failures = []

            async def on_execution_error(self, event):
                self.failures.append(event.error_message)

        interpreter = CodeInterpreter(model, sandbox, middlewares=[RunLog()])
    """

    async def before_turn(self, event: BeforeTurnEventData) -> Optional[dict]:
        return None

    async def after_turn(self, event: AfterTurnEventData) -> Optional[dict]:
        return None

    async def before_model_call(self, event: BeforeModelCallEventData) -> Optional[dict]:
        return None

    async def after_model_call(self, event: AfterModelCallEventData) -> Optional[dict]:
        return None

    async def before_execution(self, event: BeforeExecutionEventData) -> Optional[dict]:
        return None

    async def after_execution(self, event: AfterExecutionEventData) -> Optional[dict]:
        return None

    async def on_execution_error(self, event: OnExecutionErrorEventData) -> Optional[dict]:
        return None
