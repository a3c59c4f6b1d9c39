import os

from pydantic import BaseModel, Field

from code_loop.prompts import SYSTEM_PROMPT


class InterpreterConfig(BaseModel):
    """Settings for a CodeInterpreter and the sandbox it drives."""

    language: str = "python"
    max_recovery_attempts: int = Field(default=3, ge=0)
    system_prompt: str = SYSTEM_PROMPT
    # Consumed by SubprocessSandbox.from_config; CodeInterpreter does not build sandboxes
    sandbox_timeout: float = Field(default=30.0, gt=0)

    @classmethod
    def from_env(cls) -> "InterpreterConfig":
        """Build a config from CODE_LOOP_* environment variables.

        Unset variables keep their defaults; values are validated by Pydantic.
        """
        env_map = {
            "language": "CODE_LOOP_LANGUAGE",
            "max_recovery_attempts": "CODE_LOOP_MAX_RECOVERY_ATTEMPTS",
            "system_prompt": "CODE_LOOP_SYSTEM_PROMPT",
            "sandbox_timeout": "CODE_LOOP_SANDBOX_TIMEOUT",
        }
        values = {
            name: os.environ[var] for name, var in env_map.items() if var in os.environ
        }
        return cls(**values)
