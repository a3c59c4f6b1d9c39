from code_loop.adaptors.openai import OpenAIAdaptor

# Conditional imports for optional SDK-based adaptors
try:
    from code_loop.adaptors.anthropic import AnthropicAdaptor
except ImportError:
    pass

try:
    from code_loop.adaptors.gemini import GeminiAdaptor
except ImportError:
    pass

try:
    from code_loop.adaptors.ollama import OllamaAdaptor
except ImportError:
    pass

from code_loop.config import InterpreterConfig
from code_loop.events import (
    CancellationToken,
    TurnCallbacks,
    TurnChannel,
    TurnEvent,
    TurnEventKind,
)
from code_loop.exceptions import (
    CodeLoopError,
    EngineNotReady,
    RecoveryLimitReached,
    SandboxError,
    TurnCancelled,
    UsageNotAvailable,
)
from code_loop.execution import (
    Conversation,
    ExecutionFailure,
    ExecutionRecord,
    ExecutionResult,
    ExecutionSuccess,
    Message,
    Turn,
    TurnOutcome,
    TurnState,
    UsageStats,
    compose_output,
)
from code_loop.extract import extract_code
from code_loop.hooks import (
    AfterExecutionEventData,
    AfterModelCallEventData,
    AfterTurnEventData,
    BeforeExecutionEventData,
    BeforeModelCallEventData,
    BeforeTurnEventData,
    HookEvent,
    HookRegistry,
    HookResponse,
    Middleware,
    OnExecutionErrorEventData,
)
from code_loop.interpreter import CodeInterpreter
from code_loop.model import ModelAdaptor, StreamChunk
from code_loop.recovery import ExecutionLoop
from code_loop.sandbox import Sandbox, SubprocessSandbox
from code_loop.streamer import Completion, CompletionStreamer

__all__ = [
    # Core
    "CodeInterpreter",
    "CompletionStreamer",
    "Completion",
    "ExecutionLoop",
    "InterpreterConfig",
    "extract_code",
    # Data model
    "Conversation",
    "Message",
    "ExecutionFailure",
    "ExecutionRecord",
    "ExecutionResult",
    "ExecutionSuccess",
    "Turn",
    "TurnOutcome",
    "TurnState",
    "UsageStats",
    "compose_output",
    # Engines and sandboxes
    "ModelAdaptor",
    "StreamChunk",
    "OpenAIAdaptor",
    "AnthropicAdaptor",
    "GeminiAdaptor",
    "OllamaAdaptor",
    "Sandbox",
    "SubprocessSandbox",
    # Progress
    "CancellationToken",
    "TurnCallbacks",
    "TurnChannel",
    "TurnEvent",
    "TurnEventKind",
    # Hooks
    "HookRegistry",
    "HookEvent",
    "HookResponse",
    "Middleware",
    # Hook Event Data
    "BeforeTurnEventData",
    "AfterTurnEventData",
    "BeforeModelCallEventData",
    "AfterModelCallEventData",
    "BeforeExecutionEventData",
    "AfterExecutionEventData",
    "OnExecutionErrorEventData",
    # Exceptions
    "CodeLoopError",
    "EngineNotReady",
    "RecoveryLimitReached",
    "SandboxError",
    "TurnCancelled",
    "UsageNotAvailable",
]
