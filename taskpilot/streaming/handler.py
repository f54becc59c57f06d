"""Incremental delivery of a generated response with abort and timeout safety."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from taskpilot.config.settings import StreamingSettings
from taskpilot.tools.registry import Sleep, ToolCall
from taskpilot.utils import error_handler as errors
from taskpilot.utils.logging_utils import log_error

LOGGER = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]
Callback = Callable[..., Any]


class ChunkType(str, Enum):
    CONTENT = "content"
    FUNCTION_CALL = "function_call"
    DONE = "done"


class StreamStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


# Completion reason -> terminal status.
_TERMINAL = {
    "success": StreamStatus.COMPLETED,
    "error": StreamStatus.ERROR,
    "timeout": StreamStatus.ERROR,
    "abort": StreamStatus.ABORTED,
}


@dataclass
class GeneratedResponse:
    content: str = ""
    function_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class StreamChunk:
    id: str
    type: ChunkType
    content: Optional[str] = None
    function_call: Optional[ToolCall] = None
    done: bool = False


@dataclass
class StreamingState:
    is_active: bool = False
    status: StreamStatus = StreamStatus.IDLE
    completion_reason: Optional[str] = None
    current_content: str = ""
    function_calls: List[ToolCall] = field(default_factory=list)
    chunks_received: int = 0
    start_time: float = 0.0
    last_chunk_time: float = 0.0


def _coerce_response(value: Any) -> GeneratedResponse:
    if isinstance(value, GeneratedResponse):
        return value
    if isinstance(value, str):
        return GeneratedResponse(content=value)
    if isinstance(value, Mapping):
        calls = []
        for call in value.get("function_calls") or []:
            if isinstance(call, ToolCall):
                calls.append(call)
            else:
                calls.append(ToolCall(name=call["name"], params=dict(call.get("params") or call.get("arguments") or {})))
        return GeneratedResponse(content=str(value.get("content") or ""), function_calls=calls)
    raise TypeError(f"Unsupported generated response type: {type(value).__name__}")


def chunk_text(content: str, size: int) -> List[str]:
    return [content[i:i + size] for i in range(0, len(content), size)]


class StreamingHandler:
    """Splits one generated response into chunks and emits them one by one.

    ``stream(generate)`` runs the producer (retrying it up to
    ``max_retries`` extra times on failure), then emits content chunks,
    then any function calls, then a ``done`` chunk. ``abort()`` and the
    completion watchdog both stop emission at the next chunk boundary.
    Chunks already handed to ``on_chunk`` stay delivered.

    Terminal once completed: later abort/timeout signals are ignored.
    """

    def __init__(
        self,
        settings: Optional[StreamingSettings] = None,
        *,
        on_chunk: Optional[Callback] = None,
        on_function_call: Optional[Callback] = None,
        on_complete: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings or StreamingSettings()
        self.on_chunk = on_chunk
        self.on_function_call = on_function_call
        self.on_complete = on_complete
        self.on_error = on_error
        self._sleep: Sleep = sleep or asyncio.sleep
        self.state = StreamingState()
        self._completed = False
        self._emitted = 0
        self._task: Optional[asyncio.Future] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None

    @property
    def is_completed(self) -> bool:
        return self._completed

    async def stream(self, generate: Producer) -> Any:
        if not self.settings.enable_streaming:
            return await generate()

        self._completed = False
        self._emitted = 0
        self.state = StreamingState(is_active=True, status=StreamStatus.STREAMING, start_time=time.time())
        self._start_watchdog()

        retries = 0
        while True:
            try:
                produced = await self._produce(generate)
                break
            except errors.TimeoutError as e:
                self._notify(self.on_error, e)
                raise
            except Exception as e:
                if retries < self.settings.max_retries and not self._completed:
                    retries += 1
                    LOGGER.warning(f"Response generation failed ({e}), retrying ({retries}/{self.settings.max_retries})")
                    continue
                log_error(LOGGER, e, f"streaming failed after {retries + 1} attempt(s)")
                self._complete("error")
                self._notify(self.on_error, e)
                raise

        if produced is None:
            # aborted while the producer was still running
            return GeneratedResponse()

        try:
            await self._emit_response(_coerce_response(produced))
        except Exception as e:
            log_error(LOGGER, e, "streaming emission failed")
            self._complete("error")
            self._notify(self.on_error, e)
            raise
        self._complete("success")
        return GeneratedResponse(content=self.state.current_content, function_calls=list(self.state.function_calls))

    def abort(self) -> None:
        if self._completed:
            return
        self._complete("abort")
        LOGGER.info("Streaming aborted")

    def get_state(self) -> StreamingState:
        return replace(self.state, function_calls=list(self.state.function_calls))

    def get_stats(self) -> Dict[str, float]:
        duration = (self.state.last_chunk_time - self.state.start_time) * 1000 if self.state.last_chunk_time else 0.0
        chunks = self.state.chunks_received
        return {
            "duration": duration,
            "chunks_per_second": chunks / duration * 1000 if duration > 0 else 0.0,
            "average_chunk_size": len(self.state.current_content) / chunks if chunks else 0.0,
            "total_chunks": chunks,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _produce(self, generate: Producer) -> Any:
        self._task = asyncio.ensure_future(generate())
        try:
            return await self._task
        except asyncio.CancelledError:
            reason = self.state.completion_reason
            if reason == "timeout":
                raise errors.TimeoutError(
                    f"Streaming completion timeout after {self.settings.completion_timeout_ms}ms"
                ) from None
            if reason == "abort":
                return None
            raise
        finally:
            self._task = None

    async def _emit_response(self, response: GeneratedResponse) -> None:
        pieces = chunk_text(response.content, self.settings.chunk_size)
        delay = self.settings.chunk_delay_ms / 1000

        for index, piece in enumerate(pieces):
            if self._completed:
                return
            self.state.current_content += piece
            self.state.chunks_received += 1
            self.state.last_chunk_time = time.time()
            await self._send(StreamChunk(id=self._next_id(), type=ChunkType.CONTENT, content=piece))
            if index < len(pieces) - 1:
                await self._sleep(delay)

        for call in response.function_calls:
            if self._completed:
                return
            self.state.function_calls.append(call)
            await self._send(StreamChunk(id=self._next_id(), type=ChunkType.FUNCTION_CALL, function_call=call))
            await self._call(self.on_function_call, call)
            await self._sleep(delay)

        if not self._completed:
            await self._send(StreamChunk(id=self._next_id(), type=ChunkType.DONE, done=True))

    def _next_id(self) -> str:
        self._emitted += 1
        return f"chunk_{self._emitted}"

    async def _send(self, chunk: StreamChunk) -> None:
        await self._call(self.on_chunk, chunk)

    @staticmethod
    async def _call(callback: Optional[Callback], *args: Any) -> None:
        if callback is None:
            return
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome

    @staticmethod
    def _notify(callback: Optional[Callback], *args: Any) -> None:
        """Fire a callback from synchronous code; coroutines are scheduled."""
        if callback is None:
            return
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            asyncio.ensure_future(outcome)

    def _start_watchdog(self) -> None:
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self.settings.completion_timeout_ms / 1000, self._on_timeout)

    def _on_timeout(self) -> None:
        if self._completed:
            return
        LOGGER.warning(f"Streaming completion timeout reached ({self.settings.completion_timeout_ms}ms)")
        self._complete("timeout")

    def _complete(self, reason: str) -> None:
        if self._completed:
            return
        self._completed = True
        self.state.is_active = False
        self.state.status = _TERMINAL[reason]
        self.state.completion_reason = reason

        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

        LOGGER.info(
            f"Streaming completed: {reason} ({self.state.chunks_received} chunks, "
            f"{len(self.state.current_content)} chars, {len(self.state.function_calls)} function calls)"
        )
        self._notify(self.on_complete, self.state.current_content)


class StreamManager:
    """Tracks concurrent streams by id."""

    def __init__(
        self,
        settings: Optional[StreamingSettings] = None,
        *,
        idle_timeout_s: float = 300,
        max_age_s: float = 600,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings or StreamingSettings()
        self.idle_timeout_s = idle_timeout_s
        self.max_age_s = max_age_s
        self._sleep = sleep
        self._streams: Dict[str, StreamingHandler] = {}

    async def create_stream(self, stream_id: str, generate: Producer, **callbacks: Callback) -> Any:
        """Start a stream; an existing stream with the same id is aborted first."""
        existing = self._streams.pop(stream_id, None)
        if existing is not None:
            existing.abort()

        handler = StreamingHandler(self.settings, sleep=self._sleep, **callbacks)
        self._streams[stream_id] = handler
        LOGGER.info(f"Created stream {stream_id}")
        return await handler.stream(generate)

    def get_handler(self, stream_id: str) -> Optional[StreamingHandler]:
        return self._streams.get(stream_id)

    def abort_stream(self, stream_id: str) -> bool:
        handler = self._streams.pop(stream_id, None)
        if handler is None:
            return False
        handler.abort()
        LOGGER.info(f"Aborted stream {stream_id}")
        return True

    def get_stream_state(self, stream_id: str) -> Optional[StreamingState]:
        handler = self._streams.get(stream_id)
        return handler.get_state() if handler else None

    def list_streams(self) -> Dict[str, StreamingState]:
        return {stream_id: handler.get_state() for stream_id, handler in self._streams.items()}

    def cleanup_stale(self, now: Optional[float] = None) -> List[str]:
        """Abort streams idle for ``idle_timeout_s`` or older than ``max_age_s``."""
        now = time.time() if now is None else now
        stale = []
        for stream_id, handler in self._streams.items():
            state = handler.state
            idle = state.last_chunk_time > 0 and now - state.last_chunk_time > self.idle_timeout_s
            old = state.start_time > 0 and now - state.start_time > self.max_age_s
            if idle or old:
                stale.append(stream_id)

        for stream_id in stale:
            self.abort_stream(stream_id)
        if stale:
            LOGGER.info(f"Cleaned up {len(stale)} stale stream(s)")
        return stale

    def shutdown(self) -> None:
        for handler in self._streams.values():
            handler.abort()
        self._streams.clear()
        LOGGER.info("All streams shut down")


def is_streaming_complete(chunk: StreamChunk) -> bool:
    return chunk.type == ChunkType.DONE and chunk.done


def extract_final_content(chunks: Iterable[StreamChunk]) -> str:
    return "".join(c.content for c in chunks if c.type == ChunkType.CONTENT and c.content)


def extract_function_calls(chunks: Iterable[StreamChunk]) -> List[ToolCall]:
    return [c.function_call for c in chunks if c.type == ChunkType.FUNCTION_CALL and c.function_call]
