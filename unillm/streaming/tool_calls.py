"""
unillm - Tool Call Accumulation

Reassembles streamed ToolCallDelta fragments into complete tool calls.

Tool calls arrive in pieces:
1. A fragment with the call id and function name
2. Fragments with partial arguments JSON
3. FinishReason(TOOL_CALLS) once the model is done

Fragments are keyed by index, so parallel calls interleave safely.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .events import ToolCallDelta


@dataclass
class ToolCallAccumulator:
    """Accumulates the fragments of one tool call."""
    index: int
    id: Optional[str] = None
    function_name: Optional[str] = None
    arguments_buffer: str = ""

    def update(self, delta: ToolCallDelta):
        """Merge a fragment; later ids and names win, arguments concatenate."""
        if delta.id:
            self.id = delta.id
        if delta.name:
            self.function_name = delta.name
        if delta.arguments:
            self.arguments_buffer += delta.arguments

    def parsed_arguments(self) -> Dict[str, Any]:
        """
        Decode the accumulated arguments.

        Raises:
            ValueError: arguments are not a JSON object
        """
        if not self.arguments_buffer:
            return {}
        value = json.loads(self.arguments_buffer)
        if not isinstance(value, dict):
            raise ValueError("Tool call arguments must be a JSON object")
        return value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to OpenAI tool call format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.function_name or "",
                "arguments": self.arguments_buffer
            }
        }

    def validate(self) -> Tuple[bool, Optional[str]]:
        """
        Validate the accumulated tool call.

        Returns:
            (is_valid, error_message)
        """
        if not self.function_name:
            return False, "Missing function name"

        try:
            self.parsed_arguments()
        except ValueError as e:
            return False, f"Invalid arguments JSON: {e}"

        return True, None


class ToolCallStreamTracker:
    """
    Tracks multiple tool calls during streaming.

    Usage:
        tracker = ToolCallStreamTracker()
        async for event in handle:
            if isinstance(event, ToolCallDelta):
                tracker.apply(event)
        calls = tracker.to_list()
    """

    def __init__(self):
        self._calls: Dict[int, ToolCallAccumulator] = {}

    def apply(self, delta: ToolCallDelta):
        """Merge a fragment into the call at its index, creating it if new."""
        if delta.index not in self._calls:
            self._calls[delta.index] = ToolCallAccumulator(index=delta.index)
        self._calls[delta.index].update(delta)

    def get_call(self, index: int) -> Optional[ToolCallAccumulator]:
        """Get a specific tool call by index."""
        return self._calls.get(index)

    def get_all_calls(self) -> List[ToolCallAccumulator]:
        """Get all tracked tool calls in index order."""
        return [self._calls[i] for i in sorted(self._calls)]

    def to_list(self) -> List[Dict[str, Any]]:
        """Convert all tool calls to list of dicts."""
        return [call.to_dict() for call in self.get_all_calls()]

    def validate_all(self) -> Tuple[bool, List[str]]:
        """
        Validate all accumulated tool calls.

        Returns:
            (all_valid, list_of_errors)
        """
        errors = []
        for call in self.get_all_calls():
            is_valid, error = call.validate()
            if not is_valid:
                errors.append(f"Tool call {call.index}: {error}")

        return len(errors) == 0, errors

    def has_calls(self) -> bool:
        """Check if any tool calls are being tracked."""
        return bool(self._calls)

    def call_count(self) -> int:
        """Get number of tracked tool calls."""
        return len(self._calls)
