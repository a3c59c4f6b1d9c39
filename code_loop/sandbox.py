"""Code-execution sandboxes.

A sandbox takes a source string and returns an ExecutionSuccess with the
printed output and the value of the trailing expression, or an
ExecutionFailure with the reason the code failed.
"""

import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from code_loop.execution import ExecutionFailure, ExecutionResult, ExecutionSuccess

if TYPE_CHECKING:
    from code_loop.config import InterpreterConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Runs the user's file like a REPL cell: everything is executed, and if the
# last statement is an expression its value is written to the result file.
_DRIVER = """
import ast, sys
source_path, result_path = sys.argv[1], sys.argv[2]
with open(source_path, encoding="utf-8") as fh:
    source = fh.read()
tree = ast.parse(source, source_path)
last = None
if tree.body and isinstance(tree.body[-1], ast.Expr):
    last = ast.Expression(tree.body.pop().value)
namespace = {"__name__": "__main__"}
exec(compile(tree, source_path, "exec"), namespace)
value = eval(compile(last, source_path, "eval"), namespace) if last is not None else None
sys.stdout.flush()
with open(result_path, "w", encoding="utf-8") as fh:
    fh.write("" if value is None else str(value))
"""


class Sandbox:
    async def execute(self, code: str) -> ExecutionResult:
        """Run ``code`` and report its output or failure."""
        raise NotImplementedError


class SubprocessSandbox(Sandbox):
    """Runs each snippet in a fresh Python interpreter.

    Args:
        python: Interpreter to use (default: the current one).
        timeout: Seconds before the process is killed (default: 30).
        cwd: Working directory for the process. A temp dir when None.
        env: Extra environment variables layered over os.environ.
    """

    def __init__(
        self,
        python: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        cwd: Optional[Path] = None,
        env: Optional[dict[str, str]] = None,
    ):
        self.python = python or sys.executable
        self.timeout = timeout
        self.cwd = cwd
        self.env = env or {}

    @classmethod
    def from_config(cls, config: "InterpreterConfig", **kwargs) -> "SubprocessSandbox":
        """Build a sandbox using ``config.sandbox_timeout``."""
        return cls(timeout=config.sandbox_timeout, **kwargs)

    async def execute(self, code: str) -> ExecutionResult:
        with tempfile.TemporaryDirectory() as tmpdir:
            source_path = Path(tmpdir) / "snippet.py"
            result_path = Path(tmpdir) / "result.txt"
            source_path.write_text(code, encoding="utf-8")

            env = dict(os.environ)
            env.update(self.env)
            env["PYTHONIOENCODING"] = "utf-8"

            proc = await asyncio.create_subprocess_exec(
                self.python,
                "-c",
                _DRIVER,
                str(source_path),
                str(result_path),
                cwd=str(self.cwd or tmpdir),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Sandbox execution timed out after %ss", self.timeout)
                return ExecutionFailure(
                    reason=f"Execution timed out after {self.timeout}s"
                )
            finally:
                # Also reached when the awaiting task is cancelled
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()

            if proc.returncode != 0:
                reason = stderr.decode("utf-8", errors="replace").strip()
                return ExecutionFailure(
                    reason=reason or f"Process exited with code {proc.returncode}"
                )

            value = None
            if result_path.exists():
                value = result_path.read_text(encoding="utf-8")
            return ExecutionSuccess(
                stdout=stdout.decode("utf-8", errors="replace"),
                value=value,
            )
