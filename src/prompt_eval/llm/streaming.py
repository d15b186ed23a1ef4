"""Frame parsers for raw streaming responses.

Providers frame streamed responses differently: server-sent events
(``data: {...}`` lines) or newline-delimited JSON objects. A parser is fed
raw bytes as they arrive and turns complete frames into ResponseChunks:

    accumulate bytes -> split on frame boundary -> parse frame -> yield or discard

A frame that cannot be parsed is discarded and counted; it never fails the
stream.

Public API (the "studs"):
    StreamParser: Base state machine
    SSEParser: ``data:``-prefixed server-sent events
    NDJSONParser: Newline-delimited JSON objects
    iter_chunks: Drive a parser over an async byte stream
"""

from __future__ import annotations

import codecs
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Any

from .types import ResponseChunk

_logger = logging.getLogger(__name__)

ChunkDecoder = Callable[[dict[str, Any]], "ResponseChunk | None"]

# Exceptions a frame decoder may raise on a malformed payload
_FRAME_ERRORS = (ValueError, KeyError, IndexError, TypeError, AttributeError)


class ParserState(str, Enum):
    """Parser lifecycle."""

    ACCUMULATING = "accumulating"
    CLOSED = "closed"


class StreamParser(ABC):
    """Incremental frame parser.

    Bytes are decoded incrementally so a multi-byte character split across
    two reads is reassembled. Text after the last delimiter stays buffered
    until more data arrives or ``finish()`` is called.
    """

    delimiter = "\n"

    def __init__(self, decode: ChunkDecoder) -> None:
        self._decode = decode
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.state = ParserState.ACCUMULATING
        self.discarded = 0

    def feed(self, data: bytes) -> list[ResponseChunk]:
        """Accept a read from the transport and return any completed chunks."""
        if self.state is ParserState.CLOSED:
            return []
        self._buffer += self._decoder.decode(data)
        frames = self._buffer.split(self.delimiter)
        self._buffer = frames.pop()
        return self._parse_frames(frames)

    def finish(self) -> list[ResponseChunk]:
        """Flush the buffer at end of stream and close the parser."""
        if self.state is ParserState.CLOSED:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        chunks = self._parse_frames([remainder])
        self.state = ParserState.CLOSED
        return chunks

    def _parse_frames(self, frames: list[str]) -> list[ResponseChunk]:
        chunks = []
        for raw in frames:
            if self.state is ParserState.CLOSED:
                break
            frame = raw.strip()
            if not frame:
                continue
            try:
                chunk = self.parse_frame(frame)
            except _FRAME_ERRORS as e:
                self.discarded += 1
                _logger.warning("Discarding unparsable stream frame: %s", e)
                continue
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def close(self) -> None:
        self.state = ParserState.CLOSED

    @abstractmethod
    def parse_frame(self, frame: str) -> ResponseChunk | None:
        """Parse one complete frame. Raise on malformed input, return None to skip."""
        ...


class SSEParser(StreamParser):
    """Server-sent events: ``data: <json>`` lines, ``[DONE]`` ends the stream."""

    def parse_frame(self, frame: str) -> ResponseChunk | None:
        if not frame.startswith("data:"):
            # event:, id:, retry: and comment lines carry no payload
            return None
        payload = frame[len("data:") :].strip()
        if payload == "[DONE]":
            self.close()
            return None
        return self._decode(json.loads(payload))


class NDJSONParser(StreamParser):
    """One JSON object per line."""

    def parse_frame(self, frame: str) -> ResponseChunk | None:
        return self._decode(json.loads(frame))


async def iter_chunks(
    byte_stream: AsyncIterator[bytes], parser: StreamParser
) -> AsyncIterator[ResponseChunk]:
    """Feed an async byte stream through a parser, yielding chunks in order."""
    async for data in byte_stream:
        for chunk in parser.feed(data):
            yield chunk
        if parser.state is ParserState.CLOSED:
            return
    for chunk in parser.finish():
        yield chunk


__all__ = ["ParserState", "StreamParser", "SSEParser", "NDJSONParser", "iter_chunks"]
