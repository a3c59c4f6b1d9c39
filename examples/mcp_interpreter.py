#!/usr/bin/env python3
"""Example: CodeInterpreter executing code through an MCP server.

Connects to the sandbox server (mcp_server.py) over stdio and answers a
question whose code runs on the server's 'execute_python' tool.

Uses a mock model so no API key is needed.

Requirements:
    pip install code-loop[mcp]

Run:
    python examples/mcp_interpreter.py
"""

import asyncio
import os
import sys

from mcp.client.stdio import StdioServerParameters

from code_loop import CodeInterpreter, ModelAdaptor, StreamChunk, UsageStats
from code_loop.mcp import MCPConnection


class MockModel(ModelAdaptor):
    """Model that writes one snippet, then explains whatever it printed."""

    def __init__(self):
        self.call_count = 0

    async def stream(self, messages, include_usage=True, **kwargs):
        self.call_count += 1
        if self.call_count == 1:
            text = (
                "```python\n"
                "import platform\n"
                "print(platform.python_version())\n"
                "2 ** 10\n"
                "```"
            )
        else:
            # The explanation request carries the execution result
            text = f"The server replied:\n{messages[-1].content}"
        yield StreamChunk(delta=text)
        yield StreamChunk(usage=UsageStats(completion_tokens=len(text.split())))


async def main():
    server_script = os.path.join(os.path.dirname(__file__), "mcp_server.py")

    server_params = StdioServerParameters(
        command=sys.executable,
        args=[server_script],
    )

    async with MCPConnection(server_params) as sandbox:
        print(f"Connected to MCP tool: {sandbox.tool_name}")

        interpreter = CodeInterpreter(model=MockModel(), sandbox=sandbox)
        turn = await interpreter.handle_turn("Which Python version does the server run?")

        print(f"Outcome: {turn.outcome.value}")
        print(f"Executions: {len(turn.executions)}")
        print(f"Code output: {turn.code_output}")
        print(f"Explanation: {turn.explanation}")


if __name__ == "__main__":
    asyncio.run(main())
