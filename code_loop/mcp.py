"""MCP (Model Context Protocol) integration for code-loop.

Runs code through a code-interpreter tool exposed by an MCP server, so any
server that offers "execute this Python" can stand in as the sandbox.

Requires: pip install code-loop[mcp]
"""

import asyncio
import json
import logging
from contextlib import AsyncExitStack
from typing import Any, Optional, Union

from code_loop.exceptions import SandboxError
from code_loop.execution import ExecutionFailure, ExecutionResult, ExecutionSuccess
from code_loop.sandbox import Sandbox

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_TOOL_NAME = "execute_python"
DEFAULT_CODE_ARGUMENT = "code"


def _parse_tool_result(result: Any) -> ExecutionSuccess:
    """Map a successful CallToolResult to an ExecutionSuccess.

    Structured content with ``stdout``/``value`` keys is used as-is. Otherwise
    a single text block holding a JSON object with those keys is accepted,
    and any other text is treated as printed output.
    """
    structured = getattr(result, "structuredContent", None)
    if isinstance(structured, dict) and (
        "stdout" in structured or "value" in structured
    ):
        return _success_from_dict(structured)

    texts = [c.text for c in result.content if hasattr(c, "text")]
    if len(texts) == 1:
        try:
            payload = json.loads(texts[0])
        except ValueError:
            payload = None
        if isinstance(payload, dict) and ("stdout" in payload or "value" in payload):
            return _success_from_dict(payload)

    return ExecutionSuccess(stdout="\n".join(texts), value=None)


def _success_from_dict(data: dict) -> ExecutionSuccess:
    value = data.get("value")
    return ExecutionSuccess(
        stdout=str(data.get("stdout") or ""),
        value=None if value is None else str(value),
    )


class MCPSandbox(Sandbox):
    """Executes code by calling a tool on a connected MCP session.

    Args:
        session: An initialized MCP ClientSession.
        tool_name: Name of the code-execution tool (default: execute_python).
        code_argument: Argument the tool expects the source in (default: code).
        timeout: Seconds to wait for the tool call.
    """

    def __init__(
        self,
        session: ClientSession,
        tool_name: str = DEFAULT_TOOL_NAME,
        code_argument: str = DEFAULT_CODE_ARGUMENT,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._session = session
        self.tool_name = tool_name
        self.code_argument = code_argument
        self._timeout = timeout

    async def execute(self, code: str) -> ExecutionResult:
        """Call the MCP tool and convert its answer into an ExecutionResult."""
        try:
            result = await asyncio.wait_for(
                self._session.call_tool(
                    self.tool_name, arguments={self.code_argument: code}
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return ExecutionFailure(
                reason=f"MCP tool '{self.tool_name}' timed out after {self._timeout}s"
            )
        except Exception as e:
            logger.warning("MCP tool '%s' call failed: %s", self.tool_name, e)
            return ExecutionFailure(
                reason=f"MCP tool '{self.tool_name}' call failed: {e}"
            )

        if result.isError:
            texts = [c.text for c in result.content if hasattr(c, "text")]
            return ExecutionFailure(reason=" ".join(texts) or "Unknown error")

        return _parse_tool_result(result)


class MCPConnection:
    """Owns one MCP server connection and hands out a sandbox bound to it.

    ``server_params`` selects the transport: StdioServerParameters spawn a
    local server process, a URL string connects over streamable HTTP.
    ``timeout`` bounds the handshake, the tool listing and every execution.

    Usage:
        async with MCPConnection(StdioServerParameters(command="python", args=["server.py"])) as sandbox:
            interpreter = CodeInterpreter(model=model, sandbox=sandbox)
            turn = await interpreter.handle_turn("query")
    """

    def __init__(
        self,
        server_params: Union[StdioServerParameters, str],
        tool_name: str = DEFAULT_TOOL_NAME,
        code_argument: str = DEFAULT_CODE_ARGUMENT,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._server_params = server_params
        self.tool_name = tool_name
        self.code_argument = code_argument
        self._timeout = timeout
        self._exit_stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    def _transport(self):
        if isinstance(self._server_params, str):
            return streamablehttp_client(self._server_params)
        return stdio_client(self._server_params)

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        # stdio yields (read, write); HTTP adds a session-id getter
        read_stream, write_stream, *_ = await stack.enter_async_context(
            self._transport()
        )
        session = await stack.enter_async_context(
            ClientSession(read_stream, write_stream)
        )
        await asyncio.wait_for(session.initialize(), timeout=self._timeout)
        return session

    async def _require_tool(self, session: ClientSession) -> None:
        listing = await asyncio.wait_for(session.list_tools(), timeout=self._timeout)
        names = [tool.name for tool in listing.tools]
        if self.tool_name not in names:
            raise SandboxError(
                f"MCP server has no tool '{self.tool_name}'. Available tools: {names}"
            )

    async def connect(self) -> MCPSandbox:
        """Open the transport, check the execution tool exists, return a sandbox.

        Raises:
            SandboxError: If the server does not offer the configured tool.
        """
        if self._exit_stack is not None:
            await self.disconnect()

        self._exit_stack = AsyncExitStack()
        try:
            self._session = await self._open_session(self._exit_stack)
            await self._require_tool(self._session)
        except BaseException:
            await self.disconnect()
            raise

        logger.info("Connected to MCP tool '%s'", self.tool_name)
        return MCPSandbox(
            session=self._session,
            tool_name=self.tool_name,
            code_argument=self.code_argument,
            timeout=self._timeout,
        )

    async def disconnect(self) -> None:
        """Close the session and transport; safe to call when not connected."""
        stack, self._exit_stack = self._exit_stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()

    async def __aenter__(self) -> MCPSandbox:
        return await self.connect()

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()
