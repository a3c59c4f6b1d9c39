import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from code_loop.exceptions import SandboxError
from code_loop.execution import ExecutionFailure, ExecutionSuccess
from code_loop.mcp import (
    DEFAULT_TIMEOUT,
    DEFAULT_TOOL_NAME,
    MCPConnection,
    MCPSandbox,
)


def _make_text_content(text: str):
    """Create a mock TextContent object."""
    content = MagicMock()
    content.text = text
    return content


def _make_image_content():
    """Create a mock non-text content object (e.g. ImageContent)."""
    content = MagicMock(spec=[])  # no .text attribute
    return content


def _make_result(content, is_error=False, structured=None):
    result = MagicMock()
    result.isError = is_error
    result.content = content
    result.structuredContent = structured
    return result


# --- MCPSandbox tests ---


class TestMCPSandbox:
    def test_defaults(self):
        sandbox = MCPSandbox(session=MagicMock())
        assert sandbox.tool_name == DEFAULT_TOOL_NAME
        assert sandbox.code_argument == "code"
        assert sandbox._timeout == DEFAULT_TIMEOUT

    async def test_plain_text_is_stdout(self):
        session = AsyncMock()
        session.call_tool.return_value = _make_result([_make_text_content("4\n")])

        sandbox = MCPSandbox(session=session)
        result = await sandbox.execute("print(2+2)")

        assert result == ExecutionSuccess(stdout="4\n", value=None)
        session.call_tool.assert_called_once_with(
            "execute_python", arguments={"code": "print(2+2)"}
        )

    async def test_structured_content(self):
        session = AsyncMock()
        session.call_tool.return_value = _make_result(
            [], structured={"stdout": "5\n", "value": 10}
        )

        result = await MCPSandbox(session=session).execute("print(5)\n10")

        assert result == ExecutionSuccess(stdout="5\n", value="10")

    async def test_json_text_content(self):
        session = AsyncMock()
        payload = json.dumps({"stdout": "hi\n", "value": None})
        session.call_tool.return_value = _make_result([_make_text_content(payload)])

        result = await MCPSandbox(session=session).execute("print('hi')")

        assert result == ExecutionSuccess(stdout="hi\n", value=None)

    async def test_multiple_text_blocks_joined(self):
        session = AsyncMock()
        session.call_tool.return_value = _make_result(
            [_make_text_content("one"), _make_image_content(), _make_text_content("two")]
        )

        result = await MCPSandbox(session=session).execute("x")

        assert result.stdout == "one\ntwo"

    async def test_custom_tool_and_argument(self):
        session = AsyncMock()
        session.call_tool.return_value = _make_result([_make_text_content("")])

        sandbox = MCPSandbox(session=session, tool_name="run", code_argument="source")
        await sandbox.execute("pass")

        session.call_tool.assert_called_once_with("run", arguments={"source": "pass"})

    async def test_tool_error_is_failure(self):
        session = AsyncMock()
        session.call_tool.return_value = _make_result(
            [_make_text_content("Traceback: ZeroDivisionError")], is_error=True
        )

        result = await MCPSandbox(session=session).execute("1/0")

        assert result == ExecutionFailure(reason="Traceback: ZeroDivisionError")

    async def test_transport_error_is_failure(self):
        session = AsyncMock()
        session.call_tool.side_effect = ConnectionError("pipe broken")

        result = await MCPSandbox(session=session).execute("1")

        assert isinstance(result, ExecutionFailure)
        assert "pipe broken" in result.reason

    async def test_timeout(self):
        session = AsyncMock()

        async def slow_call(*args, **kwargs):
            await asyncio.sleep(10)

        session.call_tool.side_effect = slow_call

        result = await MCPSandbox(session=session, timeout=0.01).execute("1")

        assert isinstance(result, ExecutionFailure)
        assert "timed out" in result.reason


# --- MCPConnection tests ---


def _mock_mcp_infra(tool_names=(DEFAULT_TOOL_NAME,)):
    """Set up mock session and streams for stdio_client and ClientSession."""
    tools = []
    for name in tool_names:
        tool = MagicMock()
        tool.name = name
        tools.append(tool)

    mock_session = AsyncMock()
    mock_session.list_tools.return_value = MagicMock(tools=tools)
    mock_session.initialize = AsyncMock()

    mock_read = MagicMock()
    mock_write = MagicMock()

    return mock_session, mock_read, mock_write


def _async_cm(value):
    cm = AsyncMock()
    cm.__aenter__.return_value = value
    cm.__aexit__.return_value = False
    return cm


class TestMCPConnection:
    async def test_connect_stdio(self):
        mock_session, mock_read, mock_write = _mock_mcp_infra()

        with patch("code_loop.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _async_cm((mock_read, mock_write))

            with patch("code_loop.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _async_cm(mock_session)

                from mcp.client.stdio import StdioServerParameters

                conn = MCPConnection(
                    StdioServerParameters(command="python", args=["server.py"])
                )
                sandbox = await conn.connect()

                assert isinstance(sandbox, MCPSandbox)
                assert sandbox.tool_name == DEFAULT_TOOL_NAME
                mock_session.initialize.assert_awaited_once()

                await conn.disconnect()

    async def test_connect_http(self):
        mock_session, mock_read, mock_write = _mock_mcp_infra()

        with patch("code_loop.mcp.streamablehttp_client") as mock_http:
            mock_http.return_value = _async_cm((mock_read, mock_write, MagicMock()))

            with patch("code_loop.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _async_cm(mock_session)

                conn = MCPConnection("http://localhost:8000/mcp")
                sandbox = await conn.connect()

                assert isinstance(sandbox, MCPSandbox)
                mock_http.assert_called_once_with("http://localhost:8000/mcp")

                await conn.disconnect()

    async def test_missing_tool_raises_and_cleans_up(self):
        mock_session, mock_read, mock_write = _mock_mcp_infra(tool_names=("hello",))

        with patch("code_loop.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _async_cm((mock_read, mock_write))

            with patch("code_loop.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _async_cm(mock_session)

                from mcp.client.stdio import StdioServerParameters

                conn = MCPConnection(StdioServerParameters(command="echo", args=["hi"]))
                with pytest.raises(SandboxError, match="execute_python"):
                    await conn.connect()

                assert conn._exit_stack is None
                assert conn._session is None

    async def test_context_manager(self):
        mock_session, mock_read, mock_write = _mock_mcp_infra(tool_names=("run",))

        with patch("code_loop.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _async_cm((mock_read, mock_write))

            with patch("code_loop.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _async_cm(mock_session)

                from mcp.client.stdio import StdioServerParameters

                async with MCPConnection(
                    StdioServerParameters(command="echo", args=["hi"]),
                    tool_name="run",
                    timeout=120.0,
                ) as sandbox:
                    assert sandbox.tool_name == "run"
                    assert sandbox._timeout == 120.0

    async def test_disconnect_without_connect(self):
        """Calling disconnect before connect is a safe no-op."""
        from mcp.client.stdio import StdioServerParameters

        conn = MCPConnection(StdioServerParameters(command="echo", args=["hi"]))
        await conn.disconnect()
        assert conn._exit_stack is None

    async def test_connect_failure_cleans_up(self):
        """If connect() fails partway through, resources are cleaned up."""
        mock_session, mock_read, mock_write = _mock_mcp_infra()
        mock_session.initialize.side_effect = RuntimeError("init failed")

        with patch("code_loop.mcp.stdio_client") as mock_stdio:
            mock_stdio.return_value = _async_cm((mock_read, mock_write))

            with patch("code_loop.mcp.ClientSession") as mock_session_cls:
                mock_session_cls.return_value = _async_cm(mock_session)

                from mcp.client.stdio import StdioServerParameters

                conn = MCPConnection(StdioServerParameters(command="echo", args=["hi"]))
                with pytest.raises(RuntimeError, match="init failed"):
                    await conn.connect()

                assert conn._exit_stack is None
                assert conn._session is None


# --- Integration-style test: MCPSandbox drives a turn ---


class TestMCPSandboxWithInterpreter:
    async def test_interpreter_uses_mcp_sandbox(self):
        from code_loop.execution import TurnOutcome, UsageStats
        from code_loop.interpreter import CodeInterpreter
        from code_loop.model import ModelAdaptor, StreamChunk

        session = AsyncMock()
        session.call_tool.return_value = _make_result(
            [], structured={"stdout": "", "value": "42"}
        )

        class MockModel(ModelAdaptor):
            def __init__(self):
                self.responses = ["```python\n6*7\n```", "The answer is 42."]

            async def stream(self, messages, include_usage=True, **kwargs):
                yield StreamChunk(delta=self.responses.pop(0))
                yield StreamChunk(usage=UsageStats(completion_tokens=4))

        interpreter = CodeInterpreter(model=MockModel(), sandbox=MCPSandbox(session))
        turn = await interpreter.handle_turn("What is 6*7?")

        assert turn.outcome == TurnOutcome.EXPLAINED
        assert turn.code_output == "42"
        assert turn.explanation == "The answer is 42."
        session.call_tool.assert_called_once_with(
            "execute_python", arguments={"code": "6*7"}
        )
