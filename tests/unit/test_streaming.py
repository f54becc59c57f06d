"""Tests for incremental response delivery."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.config.settings import StreamingSettings
from taskpilot.streaming import (
    ChunkType,
    GeneratedResponse,
    StreamingHandler,
    StreamManager,
    StreamStatus,
    extract_final_content,
    extract_function_calls,
    is_streaming_complete,
)
from taskpilot.tools import ToolCall
from taskpilot.utils.error_handler import TimeoutError as TaskTimeoutError

CONTENT = "Swapped 10 USDC for 0.0031 ETH on 1inch."


def _settings(**overrides):
    values = {"chunk_size": 8, "chunk_delay_ms": 0, "max_retries": 3, "completion_timeout_ms": 5000}
    values.update(overrides)
    return StreamingSettings(**values)


def _returning(value):
    async def generate():
        return value
    return generate


class TestStreamingHandler:
    @pytest.mark.asyncio
    async def test_chunks_reproduce_content(self):
        chunks = []
        on_complete = MagicMock()
        handler = StreamingHandler(_settings(), on_chunk=chunks.append, on_complete=on_complete, sleep=AsyncMock())

        response = await handler.stream(_returning(CONTENT))

        assert response.content == CONTENT
        assert extract_final_content(chunks) == CONTENT
        assert all(len(c.content) <= 8 for c in chunks if c.type == ChunkType.CONTENT)
        assert is_streaming_complete(chunks[-1])
        assert [c.id for c in chunks[:2]] == ["chunk_1", "chunk_2"]

        state = handler.get_state()
        assert state.status == StreamStatus.COMPLETED
        assert state.completion_reason == "success"
        assert state.is_active is False
        on_complete.assert_called_once_with(CONTENT)

    @pytest.mark.asyncio
    async def test_chunk_delay_between_content_chunks(self):
        sleep = AsyncMock()
        handler = StreamingHandler(_settings(chunk_size=4, chunk_delay_ms=50), sleep=sleep)

        await handler.stream(_returning("abcdefgh"))

        # two chunks, one pause between them
        sleep.assert_awaited_once_with(0.05)

    @pytest.mark.asyncio
    async def test_function_calls_follow_content(self):
        chunks = []
        on_function_call = AsyncMock()
        handler = StreamingHandler(_settings(), on_chunk=chunks.append, on_function_call=on_function_call,
                                   sleep=AsyncMock())
        payload = {"content": "ok", "function_calls": [{"name": "check_balance", "arguments": {"address": "0x1"}}]}

        response = await handler.stream(_returning(payload))

        assert [c.type for c in chunks] == [ChunkType.CONTENT, ChunkType.FUNCTION_CALL, ChunkType.DONE]
        assert extract_function_calls(chunks) == [ToolCall(name="check_balance", params={"address": "0x1"})]
        assert response.function_calls == [ToolCall(name="check_balance", params={"address": "0x1"})]
        on_function_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_abort_stops_emission(self):
        chunks = []
        handler = None

        def on_chunk(chunk):
            chunks.append(chunk)
            if len(chunks) == 2:
                handler.abort()

        handler = StreamingHandler(_settings(), on_chunk=on_chunk, sleep=AsyncMock())

        response = await handler.stream(_returning(CONTENT))

        assert len(chunks) == 2
        assert response.content == CONTENT[:16]
        assert handler.get_state().status == StreamStatus.ABORTED
        assert not any(c.type == ChunkType.DONE for c in chunks)

    @pytest.mark.asyncio
    async def test_abort_while_generating_returns_empty_response(self):
        async def slow():
            await asyncio.sleep(5)
            return CONTENT

        chunks = []
        handler = StreamingHandler(_settings(), on_chunk=chunks.append, sleep=AsyncMock())

        task = asyncio.ensure_future(handler.stream(slow))
        await asyncio.sleep(0.01)
        handler.abort()
        response = await task

        assert response == GeneratedResponse()
        assert chunks == []
        assert handler.get_state().completion_reason == "abort"

    @pytest.mark.asyncio
    async def test_abort_after_completion_is_ignored(self):
        handler = StreamingHandler(_settings(), sleep=AsyncMock())
        await handler.stream(_returning("done"))

        handler.abort()

        assert handler.get_state().status == StreamStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_disabled_streaming_returns_result_unchanged(self):
        on_chunk = MagicMock()
        handler = StreamingHandler(_settings(enable_streaming=False), on_chunk=on_chunk)
        raw = {"content": CONTENT, "extra": object()}

        result = await handler.stream(_returning(raw))

        assert result is raw
        on_chunk.assert_not_called()

    @pytest.mark.asyncio
    async def test_generation_is_retried(self):
        calls = {"count": 0}

        async def flaky():
            calls["count"] += 1
            if calls["count"] < 3:
                raise RuntimeError("model unavailable")
            return CONTENT

        handler = StreamingHandler(_settings(max_retries=3), sleep=AsyncMock())

        response = await handler.stream(flaky)

        assert response.content == CONTENT
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted_reports_error(self):
        on_error = MagicMock()
        generate = AsyncMock(side_effect=RuntimeError("model unavailable"))
        handler = StreamingHandler(_settings(max_retries=1), on_error=on_error, sleep=AsyncMock())

        with pytest.raises(RuntimeError):
            await handler.stream(generate)

        assert generate.await_count == 2
        on_error.assert_called_once()
        assert handler.get_state().status == StreamStatus.ERROR
        assert handler.get_state().completion_reason == "error"

    @pytest.mark.asyncio
    async def test_failing_chunk_callback_ends_stream_with_error(self):
        on_chunk = MagicMock(side_effect=RuntimeError("consumer gone"))
        on_error = MagicMock()
        on_complete = MagicMock()
        handler = StreamingHandler(_settings(), on_chunk=on_chunk, on_error=on_error, on_complete=on_complete,
                                   sleep=AsyncMock())

        with pytest.raises(RuntimeError, match="consumer gone"):
            await handler.stream(_returning(CONTENT))

        state = handler.get_state()
        assert state.status == StreamStatus.ERROR
        assert state.completion_reason == "error"
        assert state.is_active is False
        assert handler._watchdog is None
        on_chunk.assert_called_once()
        on_error.assert_called_once_with(on_chunk.side_effect)
        on_complete.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_function_call_callback_ends_stream_with_error(self):
        on_error = MagicMock()
        on_function_call = AsyncMock(side_effect=ValueError("bad call"))
        handler = StreamingHandler(_settings(), on_function_call=on_function_call, on_error=on_error,
                                   sleep=AsyncMock())
        payload = {"content": "ok", "function_calls": [{"name": "check_balance", "arguments": {}}]}

        with pytest.raises(ValueError):
            await handler.stream(_returning(payload))

        assert handler.get_state().status == StreamStatus.ERROR
        assert handler.get_state().is_active is False
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_unsupported_response_type_ends_stream_with_error(self):
        on_error = MagicMock()
        handler = StreamingHandler(_settings(), on_error=on_error, sleep=AsyncMock())

        with pytest.raises(TypeError, match="Unsupported generated response type: int"):
            await handler.stream(_returning(42))

        state = handler.get_state()
        assert state.status == StreamStatus.ERROR
        assert state.completion_reason == "error"
        assert state.is_active is False
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_watchdog_times_out_slow_generation(self):
        async def slow():
            await asyncio.sleep(5)
            return CONTENT

        on_error = MagicMock()
        handler = StreamingHandler(_settings(completion_timeout_ms=20), on_error=on_error, sleep=AsyncMock())

        with pytest.raises(TaskTimeoutError):
            await handler.stream(slow)

        state = handler.get_state()
        assert state.status == StreamStatus.ERROR
        assert state.completion_reason == "timeout"
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_stats(self):
        handler = StreamingHandler(_settings(chunk_size=10), sleep=AsyncMock())
        await handler.stream(_returning("x" * 25))

        stats = handler.get_stats()

        assert stats["total_chunks"] == 3
        assert stats["average_chunk_size"] == pytest.approx(25 / 3)


class TestStreamManager:
    @pytest.mark.asyncio
    async def test_create_and_list(self):
        manager = StreamManager(_settings(), sleep=AsyncMock())

        response = await manager.create_stream("s1", _returning("hello"))

        assert response.content == "hello"
        assert set(manager.list_streams()) == {"s1"}
        assert manager.get_stream_state("s1").status == StreamStatus.COMPLETED
        assert manager.get_stream_state("missing") is None

    @pytest.mark.asyncio
    async def test_same_id_replaces_handler(self):
        manager = StreamManager(_settings(), sleep=AsyncMock())
        await manager.create_stream("s1", _returning("a"))
        first = manager.get_handler("s1")

        await manager.create_stream("s1", _returning("b"))

        assert manager.get_handler("s1") is not first
        assert len(manager.list_streams()) == 1

    @pytest.mark.asyncio
    async def test_abort_stream(self):
        manager = StreamManager(_settings(), sleep=AsyncMock())
        await manager.create_stream("s1", _returning("a"))

        assert manager.abort_stream("s1") is True
        assert manager.abort_stream("s1") is False

    @pytest.mark.asyncio
    async def test_cleanup_stale(self):
        manager = StreamManager(_settings(), max_age_s=600, sleep=AsyncMock())
        await manager.create_stream("old", _returning("a"))
        started = manager.get_stream_state("old").start_time

        assert manager.cleanup_stale(now=started + 10) == []
        assert manager.cleanup_stale(now=started + 601) == ["old"]
        assert manager.list_streams() == {}

    @pytest.mark.asyncio
    async def test_shutdown(self):
        manager = StreamManager(_settings(), sleep=AsyncMock())
        await manager.create_stream("a", _returning("1"))
        await manager.create_stream("b", _returning("2"))

        manager.shutdown()

        assert manager.list_streams() == {}
