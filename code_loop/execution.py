import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Literal, Optional, Union

Role = Literal["system", "user", "assistant"]

# Textual renderings of "no value" that the sandbox may hand back
NULL_VALUES = ("", "null", "None")


@dataclass(frozen=True)
class Message:
    role: Role
    content: str


class Conversation:
    """Ordered, append-only list of messages sent to the model.

    The first message is the system prompt and the second the user's
    question; everything after that is appended by the turn as it runs.
    """

    def __init__(self, messages: Optional[list[Message]] = None):
        self._messages: list[Message] = list(messages or [])

    @classmethod
    def start(cls, system_prompt: str, user_input: str) -> "Conversation":
        return cls(
            [
                Message(role="system", content=system_prompt),
                Message(role="user", content=user_input),
            ]
        )

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def add(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self.append(message)
        return message

    @property
    def messages(self) -> tuple[Message, ...]:
        """Snapshot of the conversation; later appends do not affect it."""
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"Conversation({len(self._messages)} messages)"


@dataclass(frozen=True)
class ExecutionSuccess:
    stdout: str
    value: Optional[str] = None

    @property
    def output(self) -> str:
        return compose_output(self.stdout, self.value)


@dataclass(frozen=True)
class ExecutionFailure:
    reason: str


ExecutionResult = Union[ExecutionSuccess, ExecutionFailure]


def compose_output(stdout: Optional[str], value: Optional[str]) -> str:
    """Join printed output and the final expression value for display.

    A null-like value is left out so "no output" and "output of None" both
    render as nothing rather than as the literal word.
    """
    parts = []
    if stdout:
        parts.append(stdout)
    if value is not None and value.strip() not in NULL_VALUES:
        parts.append(value)
    return "".join(parts).rstrip()


@dataclass(frozen=True)
class UsageStats:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    decode_tokens_per_second: Optional[float] = None
    extra: dict = field(default_factory=dict)


class TurnState(str, Enum):
    AWAITING_RESPONSE = "awaiting_response"
    CODE_DETECTED = "code_detected"
    EXECUTING = "executing"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    RECOVERING = "recovering"
    EXPLAINING = "explaining"
    DONE = "done"


class TurnOutcome(str, Enum):
    ANSWERED = "answered"  # plain answer, no code
    EXPLAINED = "explained"
    FAILED = "failed"
    GAVE_UP = "gave_up"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExecutionRecord:
    code: str
    result: ExecutionResult
    attempt: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, ExecutionSuccess)


@dataclass
class Turn:
    input: str
    conversation: Conversation
    state: TurnState = TurnState.AWAITING_RESPONSE
    history: list[TurnState] = field(
        default_factory=lambda: [TurnState.AWAITING_RESPONSE]
    )
    outcome: Optional[TurnOutcome] = None
    response: str = ""
    code_output: Optional[str] = None
    explanation: str = ""
    has_error: bool = False
    error: Optional[str] = None
    executions: list[ExecutionRecord] = field(default_factory=list)
    usage: list[UsageStats] = field(default_factory=list)
    recovery_attempts: int = 0
    in_progress: bool = True
    metadata: dict = field(default_factory=dict)

    def advance(self, state: TurnState) -> None:
        if self.state == TurnState.DONE:
            raise RuntimeError(f"Turn is done; cannot move to '{state.value}'")
        self.state = state
        self.history.append(state)

    def finish(self, outcome: TurnOutcome) -> None:
        """Record the terminal outcome. The first outcome recorded wins."""
        if self.outcome is None:
            self.outcome = outcome

    @property
    def done(self) -> bool:
        return self.state == TurnState.DONE
