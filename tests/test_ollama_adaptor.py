"""Tests for the Ollama adaptor."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from code_loop.exceptions import EngineNotReady
from code_loop.execution import Conversation, Message
from code_loop.streamer import CompletionStreamer


# --- Test fixtures ---


def make_part(content="", done=False, **stats):
    part = MagicMock()
    part.message = MagicMock()
    part.message.content = content
    part.done = done
    part.prompt_eval_count = stats.get("prompt_eval_count")
    part.eval_count = stats.get("eval_count")
    part.eval_duration = stats.get("eval_duration")
    part.total_duration = stats.get("total_duration")
    part.load_duration = stats.get("load_duration")
    return part


def make_progress(status, completed=None, total=None):
    progress = MagicMock()
    progress.status = status
    progress.completed = completed
    progress.total = total
    return progress


def async_iter(items):
    async def gen():
        for item in items:
            yield item

    return gen()


@pytest.fixture
def adaptor():
    with patch("code_loop.adaptors.ollama.AsyncClient") as mock_cls:
        mock_client = MagicMock()
        mock_client.chat = AsyncMock()
        mock_client.pull = AsyncMock()
        mock_client.show = AsyncMock()
        mock_cls.return_value = mock_client

        from code_loop.adaptors.ollama import OllamaAdaptor

        a = OllamaAdaptor(model="llama3.1")
        yield a, mock_client


async def collect(adaptor, messages, **kwargs):
    return [chunk async for chunk in adaptor.stream(messages, **kwargs)]


# --- Constructor tests ---


class TestOllamaAdaptorInit:
    def test_defaults(self):
        with patch("code_loop.adaptors.ollama.AsyncClient") as mock_cls:
            from code_loop.adaptors.ollama import OllamaAdaptor

            a = OllamaAdaptor()
            assert a.model == "qwen2.5-coder:1.5b"
            assert a.pull is True
            assert a.options is None
            mock_cls.assert_called_once_with(host=None)

    def test_custom_host(self):
        with patch("code_loop.adaptors.ollama.AsyncClient") as mock_cls:
            from code_loop.adaptors.ollama import OllamaAdaptor

            OllamaAdaptor(host="http://gpu-box:11434")
            mock_cls.assert_called_once_with(host="http://gpu-box:11434")

    def test_not_ready_until_loaded(self, adaptor):
        a, _ = adaptor
        assert not a.is_ready


# --- Loading tests ---


class TestLoad:
    async def test_pull_reports_progress(self, adaptor):
        a, client = adaptor
        client.pull.return_value = async_iter(
            [
                make_progress("pulling manifest"),
                make_progress("pulling abc123", completed=50, total=200),
                make_progress("success"),
            ]
        )
        reports = []
        a.set_progress_callback(reports.append)

        await a.load()

        assert a.is_ready
        assert reports == [
            "pulling manifest",
            "pulling abc123 25%",
            "success",
            "Model loaded successfully",
        ]
        client.pull.assert_awaited_once_with("llama3.1", stream=True)
        client.show.assert_awaited_once_with("llama3.1")

    async def test_load_without_pull(self):
        with patch("code_loop.adaptors.ollama.AsyncClient") as mock_cls:
            client = MagicMock()
            client.pull = AsyncMock()
            client.show = AsyncMock()
            mock_cls.return_value = client

            from code_loop.adaptors.ollama import OllamaAdaptor

            a = OllamaAdaptor(model="llama3.1", pull=False)
            await a.load()

            assert a.is_ready
            client.pull.assert_not_awaited()

    async def test_missing_model_stays_not_ready(self, adaptor):
        a, client = adaptor
        client.pull.return_value = async_iter([])
        client.show.side_effect = RuntimeError("model 'llama3.1' not found")

        with pytest.raises(RuntimeError, match="not found"):
            await a.load()

        assert not a.is_ready

    async def test_streamer_refuses_unloaded_model(self, adaptor):
        a, client = adaptor
        errors = []

        async def on_delta(text):
            pass

        async def on_finish(text, usage):
            pass

        async def on_error(error):
            errors.append(error)

        result = await CompletionStreamer(a).stream(
            Conversation.start("sys", "hi"), on_delta, on_finish, on_error
        )

        assert result is None
        assert isinstance(errors[0], EngineNotReady)
        client.chat.assert_not_awaited()


# --- Streaming tests ---


class TestStream:
    async def test_deltas_and_final_usage(self, adaptor):
        a, client = adaptor
        client.chat.return_value = async_iter(
            [
                make_part("Hello"),
                make_part(" there"),
                make_part(
                    "",
                    done=True,
                    prompt_eval_count=20,
                    eval_count=10,
                    eval_duration=500_000_000,
                    total_duration=900_000_000,
                    load_duration=100_000_000,
                ),
            ]
        )

        chunks = await collect(a, [Message(role="user", content="Hi")])

        assert [c.delta for c in chunks[:-1]] == ["Hello", " there"]
        usage = chunks[-1].usage
        assert chunks[-1].delta is None
        assert usage.prompt_tokens == 20
        assert usage.completion_tokens == 10
        assert usage.total_tokens == 30
        assert usage.decode_tokens_per_second == pytest.approx(20.0)
        assert usage.extra == {
            "total_duration": 900_000_000,
            "load_duration": 100_000_000,
        }

        client.chat.assert_awaited_once_with(
            model="llama3.1",
            messages=[{"role": "user", "content": "Hi"}],
            stream=True,
        )

    async def test_options_forwarded(self):
        with patch("code_loop.adaptors.ollama.AsyncClient") as mock_cls:
            client = MagicMock()
            client.chat = AsyncMock(return_value=async_iter([make_part("ok")]))
            mock_cls.return_value = client

            from code_loop.adaptors.ollama import OllamaAdaptor

            a = OllamaAdaptor(model="llama3.1", options={"temperature": 0.2})
            await collect(a, [Message(role="user", content="Hi")])

            assert client.chat.call_args.kwargs["options"] == {"temperature": 0.2}

    async def test_no_usage_when_not_requested(self, adaptor):
        a, client = adaptor
        client.chat.return_value = async_iter(
            [make_part("ok"), make_part("", done=True, eval_count=1, eval_duration=1)]
        )

        chunks = await collect(a, [Message(role="user", content="Hi")], include_usage=False)

        assert len(chunks) == 1
        assert chunks[0].delta == "ok"
