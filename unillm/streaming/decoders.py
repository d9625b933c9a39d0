"""
unillm - Provider Decoders

Turns frames into provider events. Each provider's chunk schema is decoded
here and nowhere else; the normalizer only ever sees ProviderEvent values.

Decoders are stateful per stream (Anthropic numbers content blocks, not tool
calls; Ollama sends each call whole) so a fresh decoder is built for every
stream.

A frame that cannot be decoded raises MalformedFrameError. The stream task
logs and skips it; one bad frame never ends a stream.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.errors import StreamingError
from .framing import Frame, FrameKind


# ============================================================
# Provider Events
# ============================================================

@dataclass(frozen=True)
class Usage:
    """Token counts as reported by a provider; None means not reported."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


@dataclass(frozen=True)
class ToolCallFragment:
    """Piece of a tool call as the provider sent it."""
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass(frozen=True)
class ProviderEvent:
    """Base class for decoded provider events."""
    pass


@dataclass(frozen=True)
class StreamStart(ProviderEvent):
    """Provider acknowledged the request and began the message."""
    message_id: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class Delta(ProviderEvent):
    """Incremental update: any combination of text, tool calls, finish and usage."""
    text: str = ""
    tool_calls: List[ToolCallFragment] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class Done(ProviderEvent):
    """Provider signalled the end of the stream."""
    pass


@dataclass(frozen=True)
class Failure(ProviderEvent):
    """Provider sent an explicit error in the body."""
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class Heartbeat(ProviderEvent):
    """Keep-alive with no content."""
    pass


class MalformedFrameError(StreamingError):
    """A frame could not be decoded and will be skipped."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


def _load_json(payload: str) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedFrameError("invalid_json", str(e))
    if not isinstance(data, dict):
        raise MalformedFrameError("unexpected_shape", type(data).__name__)
    return data


def _typed(value: Any, expected: type, name: str) -> Any:
    """Return a JSON leaf value, or None, after checking its type."""
    if value is None:
        return None
    if not isinstance(value, expected) or isinstance(value, bool):
        raise MalformedFrameError("unexpected_shape", f"{name} is {type(value).__name__}")
    return value


def _text(value: Any, name: str = "content") -> str:
    return _typed(value, str, name) or ""


def _usage(prompt_tokens: Any, completion_tokens: Any) -> Usage:
    return Usage(
        prompt_tokens=_typed(prompt_tokens, int, "prompt_tokens"),
        completion_tokens=_typed(completion_tokens, int, "completion_tokens")
    )


def _error_failure(error: Any) -> Failure:
    """Build a Failure from the {"error": ...} shapes providers send mid-stream."""
    if isinstance(error, dict):
        code = error.get("type") or error.get("code")
        return Failure(
            message=str(error.get("message") or "Provider reported an error"),
            code=str(code) if code else None
        )
    return Failure(message=str(error))


# ============================================================
# Decoders
# ============================================================

_SHAPE_ERRORS = (AttributeError, TypeError, KeyError, IndexError)


class StreamDecoder(ABC):
    """Base class for per-provider frame decoders."""

    def decode(self, frame: Frame) -> List[ProviderEvent]:
        """
        Decode one frame.

        Returns:
            Zero or more provider events, in order

        Raises:
            MalformedFrameError: the payload could not be understood
        """
        try:
            return self._decode(frame)
        except _SHAPE_ERRORS as e:
            # Valid JSON whose fields have the wrong types
            raise MalformedFrameError("unexpected_shape", str(e))

    @abstractmethod
    def _decode(self, frame: Frame) -> List[ProviderEvent]:
        pass


class OpenAIDecoder(StreamDecoder):
    """
    Decoder for OpenAI chat.completion.chunk payloads.

    Format:
        {"choices": [{"delta": {"content": "Hi", "tool_calls": [...]},
                      "finish_reason": null}],
         "usage": {"prompt_tokens": 5, "completion_tokens": 2}}
    """

    def _decode(self, frame: Frame) -> List[ProviderEvent]:
        if frame.kind == FrameKind.DONE:
            return [Done()]
        if frame.kind != FrameKind.DATA:
            return []

        data = _load_json(frame.payload)

        if "error" in data:
            return [_error_failure(data["error"])]

        usage = None
        raw_usage = data.get("usage")
        if isinstance(raw_usage, dict):
            usage = _usage(raw_usage.get("prompt_tokens"), raw_usage.get("completion_tokens"))

        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise MalformedFrameError("unexpected_shape", "choices is not a list")

        if not choices:
            # The usage-only chunk sent when stream_options.include_usage is set
            return [Delta(usage=usage)] if usage else []

        choice = choices[0]
        delta = choice.get("delta") or {}

        tool_calls = []
        for position, tc in enumerate(delta.get("tool_calls") or []):
            function = tc.get("function") or {}
            index = _typed(tc.get("index"), int, "index")
            tool_calls.append(ToolCallFragment(
                index=position if index is None else index,
                id=_typed(tc.get("id"), str, "id"),
                name=_typed(function.get("name"), str, "name"),
                arguments=_text(function.get("arguments"), "arguments")
            ))

        return [Delta(
            text=_text(delta.get("content")),
            tool_calls=tool_calls,
            finish_reason=_typed(choice.get("finish_reason"), str, "finish_reason"),
            usage=usage
        )]


def _block_index(data: Dict[str, Any]) -> int:
    return _typed(data.get("index"), int, "index") or 0


class AnthropicDecoder(StreamDecoder):
    """
    Decoder for Anthropic Messages API events.

    Event sequence:
        message_start -> content_block_start -> content_block_delta* ->
        content_block_stop -> ... -> message_delta -> message_stop

    Tool calls arrive as tool_use content blocks. Block indexes count text
    blocks too, so they are renumbered into tool call ordinals.
    """

    def __init__(self):
        self._tool_indices: Dict[int, int] = {}

    def _tool_index(self, block_index: int) -> Optional[int]:
        return self._tool_indices.get(block_index)

    def _decode(self, frame: Frame) -> List[ProviderEvent]:
        if frame.kind == FrameKind.DONE:
            return [Done()]
        if frame.kind == FrameKind.EVENT:
            return [Heartbeat()] if frame.payload == "ping" else []

        data = _load_json(frame.payload)
        event_type = data.get("type")
        if not event_type:
            raise MalformedFrameError("missing_type")

        if event_type == "message_start":
            message = data.get("message") or {}
            raw_usage = message.get("usage") or {}
            return [StreamStart(
                message_id=_typed(message.get("id"), str, "id"),
                model=_typed(message.get("model"), str, "model"),
                usage=_usage(raw_usage.get("input_tokens"), raw_usage.get("output_tokens"))
            )]

        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                ordinal = len(self._tool_indices)
                self._tool_indices[_block_index(data)] = ordinal
                return [Delta(tool_calls=[ToolCallFragment(
                    index=ordinal,
                    id=_typed(block.get("id"), str, "id"),
                    name=_typed(block.get("name"), str, "name")
                )])]
            text = _text(block.get("text"), "text") if block.get("type") == "text" else ""
            if text:
                return [Delta(text=text)]
            return []

        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return [Delta(text=_text(delta.get("text"), "text"))]
            if delta_type == "input_json_delta":
                ordinal = self._tool_index(_block_index(data))
                if ordinal is None:
                    raise MalformedFrameError("unknown_block", str(data.get("index")))
                return [Delta(tool_calls=[ToolCallFragment(
                    index=ordinal,
                    arguments=_text(delta.get("partial_json"), "partial_json")
                )])]
            return []

        if event_type == "message_delta":
            delta = data.get("delta") or {}
            raw_usage = data.get("usage") or {}
            usage = None
            if raw_usage:
                usage = _usage(raw_usage.get("input_tokens"), raw_usage.get("output_tokens"))
            return [Delta(
                finish_reason=_typed(delta.get("stop_reason"), str, "stop_reason"),
                usage=usage
            )]

        if event_type == "message_stop":
            return [Done()]

        if event_type == "ping":
            return [Heartbeat()]

        if event_type == "error":
            return [_error_failure(data.get("error"))]

        # content_block_stop and future event types
        return []


class OllamaDecoder(StreamDecoder):
    """
    Decoder for Ollama NDJSON chunks (/api/chat and /api/generate).

    Format:
        {"message": {"content": "Hi"}, "done": false}
        {"done": true, "done_reason": "stop", "prompt_eval_count": 5, "eval_count": 9}
    """

    def __init__(self):
        # Each tool call arrives whole, so calls are numbered across the stream
        self._tool_count = 0

    def _decode(self, frame: Frame) -> List[ProviderEvent]:
        if frame.kind == FrameKind.DONE:
            return [Done()]
        if frame.kind != FrameKind.DATA:
            return []

        data = _load_json(frame.payload)

        if "error" in data:
            return [_error_failure(data["error"])]

        message = data.get("message") or {}
        text = _text(message.get("content")) or _text(data.get("response"), "response")

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            tool_calls.append(ToolCallFragment(
                index=self._tool_count + len(tool_calls),
                id=_typed(tc.get("id"), str, "id"),
                name=_typed(function.get("name"), str, "name"),
                arguments=arguments
            ))

        if not data.get("done"):
            self._tool_count += len(tool_calls)
            if not text and not tool_calls:
                return []
            return [Delta(text=text, tool_calls=tool_calls)]

        delta = Delta(
            text=text,
            tool_calls=tool_calls,
            finish_reason=_typed(data.get("done_reason"), str, "done_reason"),
            usage=_usage(data.get("prompt_eval_count"), data.get("eval_count"))
        )
        self._tool_count += len(tool_calls)
        return [delta, Done()]


class PreFramedDecoder:
    """
    Decoder for transports that deliver whole messages (gRPC-style).

    No byte buffering or framing applies. A message may be a mapping or an
    object exposing the same attributes:
        content, tool_calls, finish_reason, usage, is_final, error
    """

    @staticmethod
    def _get(message: Any, name: str) -> Any:
        if isinstance(message, dict):
            return message.get(name)
        return getattr(message, name, None)

    def decode_message(self, message: Any) -> List[ProviderEvent]:
        """
        Decode one whole message.

        Raises:
            MalformedFrameError: the message could not be understood
        """
        try:
            return self._decode_message(message)
        except _SHAPE_ERRORS as e:
            raise MalformedFrameError("unexpected_shape", str(e))

    def _decode_message(self, message: Any) -> List[ProviderEvent]:
        if message is None:
            raise MalformedFrameError("empty_message")

        error = self._get(message, "error")
        if error:
            return [_error_failure(error)]

        tool_calls = []
        for i, tc in enumerate(self._get(message, "tool_calls") or []):
            index = _typed(self._get(tc, "index"), int, "index")
            tool_calls.append(ToolCallFragment(
                index=i if index is None else index,
                id=_typed(self._get(tc, "id"), str, "id") or None,
                name=_typed(self._get(tc, "name"), str, "name") or None,
                arguments=_text(self._get(tc, "arguments"), "arguments")
            ))

        usage = None
        raw_usage = self._get(message, "usage")
        if raw_usage:
            usage = _usage(self._get(raw_usage, "prompt_tokens"), self._get(raw_usage, "completion_tokens"))

        events: List[ProviderEvent] = []
        text = _text(self._get(message, "content"))
        finish_reason = _typed(self._get(message, "finish_reason"), str, "finish_reason") or None
        if text or tool_calls or finish_reason or usage:
            events.append(Delta(
                text=text,
                tool_calls=tool_calls,
                finish_reason=finish_reason,
                usage=usage
            ))

        if self._get(message, "is_final"):
            events.append(Done())

        return events
