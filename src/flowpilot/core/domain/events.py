"""
Domain Events for Flow Execution

This module defines the event vocabulary a server-side executor streams back
while it runs one conversational turn. Every decoded frame becomes exactly one
immutable event:
- Step lifecycle: StepStart, StepComplete, StepReused, StepError, StepSkipped
- Step annotations: EvalResult, TextDelta
- Terminal events: FlowComplete, FlowError
- Ad-hoc tool calls (chat mode): ToolCallStart, ToolCallInput, ToolCallOutput
- Graph editing (flow-authoring mode): GraphCommand

Events form a closed sum type (ExecutionEvent). Each variant carries its
EventType tag as a class attribute, so the decoder and the projector can
dispatch on the class alone.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from flowpilot.core.domain.errors import MalformedFrameError

DEFAULT_TEXT_STEP_ID = "assistant"


class EventType(str, Enum):
    """Wire discriminator of an execution event."""

    STEP_START = "step-start"
    STEP_COMPLETE = "step-complete"
    STEP_REUSED = "step-reused"
    STEP_ERROR = "step-error"
    STEP_SKIPPED = "step-skipped"
    EVAL_RESULT = "eval-result"
    TEXT_DELTA = "text-delta"
    FLOW_COMPLETE = "flow-complete"
    FLOW_ERROR = "flow-error"
    TOOL_CALL_START = "tool-call-start"
    TOOL_CALL_INPUT = "tool-call-input"
    TOOL_CALL_OUTPUT = "tool-call-output"
    GRAPH_COMMAND = "graph-command"


# Discriminators emitted by the existing flow, chat and builder endpoints.
WIRE_ALIASES: dict[str, EventType] = {
    "node-start": EventType.STEP_START,
    "node-complete": EventType.STEP_COMPLETE,
    "node-reused": EventType.STEP_REUSED,
    "node-error": EventType.STEP_ERROR,
    "node-skipped": EventType.STEP_SKIPPED,
    "tool-input-start": EventType.TOOL_CALL_START,
    "tool-input-available": EventType.TOOL_CALL_INPUT,
    "tool-output-available": EventType.TOOL_CALL_OUTPUT,
    "flow-command": EventType.GRAPH_COMMAND,
}


@dataclass(frozen=True)
class StepStart:
    """A step began executing."""

    step_id: str
    label: str
    event_type: ClassVar[EventType] = EventType.STEP_START


@dataclass(frozen=True)
class StepComplete:
    """
    A step finished successfully.

    Attributes:
        step_id: Step identifier
        output: Step output (cached for retry when present)
    """

    step_id: str
    output: Any = None
    event_type: ClassVar[EventType] = EventType.STEP_COMPLETE


@dataclass(frozen=True)
class StepReused:
    """A step was satisfied from a cached output instead of being executed."""

    step_id: str
    output: Any = None
    event_type: ClassVar[EventType] = EventType.STEP_REUSED


@dataclass(frozen=True)
class StepError:
    """
    A step failed.

    Attributes:
        step_id: Step identifier
        error: Error message reported by the executor
        fatal: Whether the executor stopped the flow because of this failure
    """

    step_id: str
    error: str
    fatal: bool = True
    event_type: ClassVar[EventType] = EventType.STEP_ERROR


@dataclass(frozen=True)
class StepSkipped:
    """A step was bypassed by branch logic."""

    step_id: str
    reason: str | None = None
    event_type: ClassVar[EventType] = EventType.STEP_SKIPPED


@dataclass(frozen=True)
class EvalResult:
    """Quality-gate evaluation attached to a previously reported step."""

    step_id: str
    passed: bool
    score: float | None = None
    event_type: ClassVar[EventType] = EventType.EVAL_RESULT


@dataclass(frozen=True)
class TextDelta:
    """Incremental text chunk produced by a streaming step."""

    step_id: str
    delta: str
    event_type: ClassVar[EventType] = EventType.TEXT_DELTA


@dataclass(frozen=True)
class FlowComplete:
    """Terminal: the whole flow finished."""

    completed_count: int = 0
    output: Any = None
    event_type: ClassVar[EventType] = EventType.FLOW_COMPLETE


@dataclass(frozen=True)
class FlowError:
    """Terminal: the whole flow aborted."""

    error: str
    event_type: ClassVar[EventType] = EventType.FLOW_ERROR


@dataclass(frozen=True)
class ToolCallStart:
    """An ad-hoc tool invocation began (chat mode)."""

    tool_call_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    event_type: ClassVar[EventType] = EventType.TOOL_CALL_START


@dataclass(frozen=True)
class ToolCallInput:
    """The arguments of an ad-hoc tool invocation are complete."""

    tool_call_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    event_type: ClassVar[EventType] = EventType.TOOL_CALL_INPUT


@dataclass(frozen=True)
class ToolCallOutput:
    """An ad-hoc tool invocation returned."""

    tool_call_id: str
    name: str
    output: Any = None
    event_type: ClassVar[EventType] = EventType.TOOL_CALL_OUTPUT


@dataclass(frozen=True)
class GraphCommand:
    """
    A graph-editing command proposed by the flow-authoring assistant.

    Attributes:
        command: Command object, e.g. {"type": "add_node", "nodeType": ...}
    """

    command: dict[str, Any]
    event_type: ClassVar[EventType] = EventType.GRAPH_COMMAND

    @property
    def command_type(self) -> str:
        return str(self.command.get("type", ""))


ExecutionEvent = Union[
    StepStart,
    StepComplete,
    StepReused,
    StepError,
    StepSkipped,
    EvalResult,
    TextDelta,
    FlowComplete,
    FlowError,
    ToolCallStart,
    ToolCallInput,
    ToolCallOutput,
    GraphCommand,
]

TERMINAL_EVENTS = (FlowComplete, FlowError)


def is_terminal(event: ExecutionEvent) -> bool:
    """Return True for events that end a flow."""
    return isinstance(event, TERMINAL_EVENTS)


# ============================================
# WIRE PARSING
# ============================================


def _field(data: Mapping[str, Any], *keys: str, required: bool = True) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    if required:
        raise MalformedFrameError(f"missing field '{keys[0]}'")
    return None


def _step_id(data: Mapping[str, Any]) -> str:
    value = _field(data, "stepId", "nodeId")
    if not isinstance(value, str) or not value:
        raise MalformedFrameError("step id must be a non-empty string")
    return value


def _tool_call_id(data: Mapping[str, Any]) -> str:
    value = _field(data, "toolCallId")
    if not isinstance(value, str) or not value:
        raise MalformedFrameError("toolCallId must be a non-empty string")
    return value


def _tool_input(data: Mapping[str, Any]) -> dict[str, Any]:
    value = _field(data, "input", "args", required=False)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedFrameError("tool input must be an object")
    return value


def _score(data: Mapping[str, Any]) -> float | None:
    value = _field(data, "score", "l2Score", required=False)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedFrameError("score must be a number")
    return float(value)


def _completed_count(data: Mapping[str, Any]) -> int:
    value = _field(data, "completedCount", required=False)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedFrameError("completedCount must be an integer")
    return value


def _graph_command(data: Mapping[str, Any]) -> dict[str, Any]:
    value = _field(data, "command")
    if not isinstance(value, dict) or "type" not in value:
        raise MalformedFrameError("graph command must be an object with a type")
    return value


def _passed(data: Mapping[str, Any]) -> bool:
    value = _field(data, "passed")
    if not isinstance(value, bool):
        raise MalformedFrameError("passed must be a boolean")
    return value


_Builder = Callable[[Mapping[str, Any], str], ExecutionEvent]

_BUILDERS: dict[EventType, _Builder] = {
    EventType.STEP_START: lambda d, _: StepStart(
        step_id=_step_id(d), label=str(_field(d, "label", required=False) or _step_id(d))
    ),
    EventType.STEP_COMPLETE: lambda d, _: StepComplete(
        step_id=_step_id(d), output=d.get("output")
    ),
    EventType.STEP_REUSED: lambda d, _: StepReused(
        step_id=_step_id(d), output=_field(d, "output")
    ),
    EventType.STEP_ERROR: lambda d, _: StepError(
        step_id=_step_id(d),
        error=str(_field(d, "error")),
        fatal=bool(d.get("fatal", True)),
    ),
    EventType.STEP_SKIPPED: lambda d, _: StepSkipped(
        step_id=_step_id(d), reason=d.get("reason")
    ),
    EventType.EVAL_RESULT: lambda d, _: EvalResult(
        step_id=_step_id(d), passed=_passed(d), score=_score(d)
    ),
    EventType.TEXT_DELTA: lambda d, default_step: TextDelta(
        step_id=str(_field(d, "stepId", "nodeId", required=False) or default_step),
        delta=str(_field(d, "delta")),
    ),
    EventType.FLOW_COMPLETE: lambda d, _: FlowComplete(
        completed_count=_completed_count(d), output=d.get("output")
    ),
    EventType.FLOW_ERROR: lambda d, _: FlowError(error=str(_field(d, "error", "message"))),
    EventType.TOOL_CALL_START: lambda d, _: ToolCallStart(
        tool_call_id=_tool_call_id(d),
        name=str(_field(d, "name", "toolName")),
        input=_tool_input(d),
    ),
    EventType.TOOL_CALL_INPUT: lambda d, _: ToolCallInput(
        tool_call_id=_tool_call_id(d),
        name=str(_field(d, "name", "toolName", required=False) or ""),
        input=_tool_input(d),
    ),
    EventType.TOOL_CALL_OUTPUT: lambda d, _: ToolCallOutput(
        tool_call_id=_tool_call_id(d),
        name=str(_field(d, "name", "toolName", required=False) or ""),
        output=_field(d, "output", "result", required=False),
    ),
    EventType.GRAPH_COMMAND: lambda d, _: GraphCommand(command=_graph_command(d)),
}


def resolve_event_type(raw_type: Any) -> EventType:
    """
    Map a wire discriminator to its EventType.

    Raises:
        MalformedFrameError: If the discriminator is missing or unknown
    """
    if not isinstance(raw_type, str):
        raise MalformedFrameError("frame has no type")
    if raw_type in WIRE_ALIASES:
        return WIRE_ALIASES[raw_type]
    try:
        return EventType(raw_type)
    except ValueError:
        raise MalformedFrameError(f"unknown event type '{raw_type}'") from None


def event_from_dict(
    data: Any, default_step_id: str = DEFAULT_TEXT_STEP_ID
) -> ExecutionEvent:
    """
    Build a typed event from a decoded JSON frame.

    Args:
        data: Parsed frame body (must be a JSON object with a "type" field)
        default_step_id: Step id given to text deltas that name no step

    Returns:
        The matching ExecutionEvent variant

    Raises:
        MalformedFrameError: If the frame is not a known, well-formed event
    """
    if not isinstance(data, Mapping):
        raise MalformedFrameError("frame body is not an object")
    event_type = resolve_event_type(data.get("type"))
    return _BUILDERS[event_type](data, default_step_id)
