class CodeLoopError(Exception):
    """Base exception for code-loop errors."""


class EngineNotReady(CodeLoopError):
    """Raised when a completion is requested before the model has loaded."""


class UsageNotAvailable(CodeLoopError):
    """Raised when a stream finishes without reporting token usage."""


class SandboxError(CodeLoopError):
    """Raised when the sandbox itself fails, as opposed to the code it runs."""


class RecoveryLimitReached(CodeLoopError):
    """The model kept producing failing code past the recovery ceiling."""


class TurnCancelled(CodeLoopError):
    """Raised when a turn is cancelled by its consumer."""
