#!/usr/bin/env python3
"""Minimal MCP server exposing a single 'execute_python' tool.

Code runs in a local subprocess. Successful runs return the printed output
and the value of the trailing expression; failures are raised so the
client sees an error result. Used by mcp_interpreter.py over stdio.

Run standalone (for testing):
    python examples/mcp_server.py
"""

from mcp.server.fastmcp import FastMCP

from code_loop.execution import ExecutionFailure
from code_loop.sandbox import SubprocessSandbox

server = FastMCP("python-sandbox")
sandbox = SubprocessSandbox(timeout=20.0)


@server.tool()
async def execute_python(code: str) -> dict:
    """Execute Python code and return its stdout and final expression value."""
    result = await sandbox.execute(code)
    if isinstance(result, ExecutionFailure):
        raise RuntimeError(result.reason)
    return {"stdout": result.stdout, "value": result.value}


if __name__ == "__main__":
    server.run(transport="stdio")
