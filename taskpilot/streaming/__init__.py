"""Incremental response streaming."""

from .handler import (
    ChunkType,
    GeneratedResponse,
    StreamChunk,
    StreamManager,
    StreamStatus,
    StreamingHandler,
    StreamingState,
    chunk_text,
    extract_final_content,
    extract_function_calls,
    is_streaming_complete,
)

__all__ = [
    "ChunkType",
    "GeneratedResponse",
    "StreamChunk",
    "StreamManager",
    "StreamStatus",
    "StreamingHandler",
    "StreamingState",
    "chunk_text",
    "extract_final_content",
    "extract_function_calls",
    "is_streaming_complete",
]
