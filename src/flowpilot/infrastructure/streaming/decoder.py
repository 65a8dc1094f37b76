"""
Event Decoder - line-delimited, prefix-tagged JSON frames.

Turns the raw byte chunks of a streaming response into typed execution
events. Supports the two framings spoken by the agent endpoints:

- Server-sent events:  data: {"type": "node-start", "nodeId": "n1", ...}
- Data-stream prefixes: 0:"text"  9:{tool call}  a:{tool result}  d:{...}  3:"error"

A frame split across chunks is buffered until its newline arrives. A frame
that cannot be parsed is dropped (and logged at debug level); it never
aborts the stream.
"""

import codecs
import json
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

import structlog

from flowpilot.core.domain.errors import MalformedFrameError
from flowpilot.core.domain.events import (
    DEFAULT_TEXT_STEP_ID,
    EventType,
    ExecutionEvent,
    event_from_dict,
)

logger = structlog.get_logger()

FrameAdapter = Callable[[Any], Mapping[str, Any]]


def sse_frame(body: Any) -> Mapping[str, Any]:
    """`data:` frames carry the event object itself."""
    return body


def text_frame(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, str):
        raise MalformedFrameError("text frame body must be a string")
    return {"type": EventType.TEXT_DELTA.value, "delta": body}


def tool_call_frame(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise MalformedFrameError("tool call frame body must be an object")
    return {
        "type": EventType.TOOL_CALL_START.value,
        "toolCallId": body.get("toolCallId"),
        "name": body.get("toolName"),
        "input": body.get("args") or {},
    }


def tool_result_frame(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise MalformedFrameError("tool result frame body must be an object")
    return {
        "type": EventType.TOOL_CALL_OUTPUT.value,
        "toolCallId": body.get("toolCallId"),
        "name": body.get("toolName"),
        "output": body.get("result"),
    }


def done_frame(body: Any) -> Mapping[str, Any]:
    output = body if isinstance(body, Mapping) else None
    return {"type": EventType.FLOW_COMPLETE.value, "output": output}


def error_frame(body: Any) -> Mapping[str, Any]:
    if isinstance(body, Mapping):
        body = body.get("error") or body.get("message")
    return {"type": EventType.FLOW_ERROR.value, "error": str(body or "Stream error")}


SSE_ADAPTERS: dict[str, FrameAdapter] = {"data": sse_frame}

DATA_STREAM_ADAPTERS: dict[str, FrameAdapter] = {
    "0": text_frame,
    "9": tool_call_frame,
    "a": tool_result_frame,
    "d": done_frame,
    "3": error_frame,
}


class EventDecoder:
    """
    Incremental decoder from byte chunks to ExecutionEvents.

    One decoder serves one connection: once finish() has been called the
    instance refuses further input.

    Example:
        >>> decoder = EventDecoder()
        >>> decoder.feed(b'data: {"type":"te')
        []
        >>> decoder.feed(b'xt-delta","stepId":"x","delta":"hi"}\\n')
        [TextDelta(step_id='x', delta='hi')]
    """

    def __init__(
        self,
        frame_adapters: Mapping[str, FrameAdapter] | None = None,
        default_step_id: str = DEFAULT_TEXT_STEP_ID,
    ):
        """
        Initialize the decoder.

        Args:
            frame_adapters: Sentinel -> adapter turning the JSON body into an
                event object. Defaults to server-sent `data:` frames.
            default_step_id: Step id for text deltas that name no step
        """
        self.frame_adapters = dict(frame_adapters or SSE_ADAPTERS)
        self.default_step_id = default_step_id
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False
        self.dropped_frames = 0
        self.logger = logger.bind(component="event_decoder")

    def feed(self, chunk: bytes) -> list[ExecutionEvent]:
        """
        Consume one chunk and return the events completed by it.

        Raises:
            RuntimeError: If the decoder was already finished
        """
        if self._finished:
            raise RuntimeError("EventDecoder cannot be reused after finish()")

        self._buffer += self._text.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def finish(self) -> list[ExecutionEvent]:
        """Decode the trailing unterminated line, if any, and close the decoder."""
        if self._finished:
            return []
        self._finished = True
        self._buffer += self._text.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return self._decode_lines([tail])

    async def decode(self, stream: AsyncIterator[bytes]) -> AsyncIterator[ExecutionEvent]:
        """Lazily decode an async byte stream, in order, until it closes."""
        async for chunk in stream:
            for event in self.feed(chunk):
                yield event
        for event in self.finish():
            yield event

    def _decode_lines(self, lines: list[str]) -> list[ExecutionEvent]:
        events = []
        for line in lines:
            event = self._decode_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _decode_line(self, line: str) -> ExecutionEvent | None:
        if not line.strip():
            return None

        split = self._split_sentinel(line)
        if split is None:
            return None
        sentinel, body = split

        try:
            payload = json.loads(body)
            return event_from_dict(
                self.frame_adapters[sentinel](payload), self.default_step_id
            )
        except (json.JSONDecodeError, RecursionError, MalformedFrameError) as e:
            # RecursionError: nesting deeper than json.loads can parse
            self.dropped_frames += 1
            self.logger.debug(
                "frame.malformed",
                sentinel=sentinel,
                error=str(e),
                frame=line[:120],
            )
            return None

    def _split_sentinel(self, line: str) -> tuple[str, str] | None:
        for sentinel in self.frame_adapters:
            if not line.startswith(sentinel):
                continue
            rest = line[len(sentinel):]
            if rest[:1] not in (":", " "):
                continue
            return sentinel, rest[1:].strip()
        return None
