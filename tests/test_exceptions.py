from code_loop.exceptions import (
    CodeLoopError,
    EngineNotReady,
    RecoveryLimitReached,
    SandboxError,
    TurnCancelled,
    UsageNotAvailable,
)


class TestExceptionHierarchy:
    def test_all_exceptions_inherit_from_code_loop_error(self):
        for exc_class in [
            EngineNotReady,
            UsageNotAvailable,
            SandboxError,
            RecoveryLimitReached,
            TurnCancelled,
        ]:
            assert issubclass(exc_class, CodeLoopError)

    def test_code_loop_error_inherits_from_exception(self):
        assert issubclass(CodeLoopError, Exception)

    def test_exceptions_carry_message(self):
        err = UsageNotAvailable("Usage data not available")
        assert str(err) == "Usage data not available"
