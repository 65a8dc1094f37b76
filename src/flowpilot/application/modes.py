"""
Mode Strategies

A turn runs in exactly one of three modes. Each mode decides where the request
goes, how its stream is framed, what the request body contains and how raw
events map onto the step vocabulary the projector understands:

- ChatMode: direct LLM tool-calling; tool calls become implicit steps
- FlowMode: server-side graph execution; the only mode that can retry
- FlowAuthoringMode: builder assistant streaming graph-editing commands
"""

from collections.abc import Mapping
from typing import Any

from flowpilot.api.schemas.execution_schemas import ExecuteRequest
from flowpilot.core.domain.events import (
    DEFAULT_TEXT_STEP_ID,
    ExecutionEvent,
    StepComplete,
    StepStart,
    ToolCallOutput,
    ToolCallStart,
)
from flowpilot.core.domain.models import FlowGraph
from flowpilot.infrastructure.streaming.decoder import (
    DATA_STREAM_ADAPTERS,
    SSE_ADAPTERS,
    FrameAdapter,
)

TOOL_STEP_PREFIX = "tool-"


class ModeStrategy:
    """Base strategy: SSE framing, pass-through translation, no retry."""

    name: str = ""
    route: str = ""
    supports_retry: bool = False
    requires_terminal_event: bool = False
    default_text_step_id: str = DEFAULT_TEXT_STEP_ID

    @property
    def frame_adapters(self) -> Mapping[str, FrameAdapter]:
        return SSE_ADAPTERS

    def build_payload(
        self,
        agent_id: str,
        user_message: str,
        conversation_id: str | None = None,
        flow_graph: FlowGraph | None = None,
        retry_from_node_id: str | None = None,
        previous_node_outputs: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Build the outbound request body of one attempt.

        Args:
            agent_id: Agent whose turn is executed
            user_message: The user's input for this turn
            conversation_id: Conversation the turn belongs to
            flow_graph: Graph to execute (only sent by modes that execute one)
            retry_from_node_id: Failed step to resume from
            previous_node_outputs: Outputs the executor may reuse

        Returns:
            JSON-serializable request body (camelCase keys)
        """
        request = ExecuteRequest(
            agent_id=agent_id,
            conversation_id=conversation_id,
            user_message=user_message,
        )
        return request.to_payload()

    def translate(self, event: ExecutionEvent) -> list[ExecutionEvent]:
        """Map one decoded event onto the events the coordinator applies."""
        return [event]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(route={self.route!r})"


class ChatMode(ModeStrategy):
    """
    Direct LLM tool-calling.

    Each tool call is shown as an implicit step `tool-<toolCallId>`: the raw
    tool-call event is kept for listeners and followed by the step event the
    projector consumes.
    """

    name = "chat"
    route = "chat"

    def translate(self, event: ExecutionEvent) -> list[ExecutionEvent]:
        if isinstance(event, ToolCallStart):
            return [event, StepStart(step_id=tool_step_id(event.tool_call_id), label=event.name)]
        if isinstance(event, ToolCallOutput):
            return [
                event,
                StepComplete(step_id=tool_step_id(event.tool_call_id), output=event.output),
            ]
        return [event]


class FlowMode(ModeStrategy):
    """Graph execution on the server; sends the flow graph and can resume."""

    name = "flow"
    route = "flow"
    supports_retry = True
    requires_terminal_event = True

    def build_payload(
        self,
        agent_id: str,
        user_message: str,
        conversation_id: str | None = None,
        flow_graph: FlowGraph | None = None,
        retry_from_node_id: str | None = None,
        previous_node_outputs: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if flow_graph is None:
            raise ValueError("Flow mode requires a flow graph")

        request = ExecuteRequest(
            agent_id=agent_id,
            conversation_id=conversation_id,
            user_message=user_message,
            flow_graph=flow_graph.to_dict(),
            retry_from_node_id=retry_from_node_id,
            previous_node_outputs=previous_node_outputs,
        )
        return request.to_payload()


class FlowAuthoringMode(ModeStrategy):
    """Builder assistant: data-stream text plus graph-editing commands."""

    name = "flow_authoring"
    route = "flow_authoring"

    @property
    def frame_adapters(self) -> Mapping[str, FrameAdapter]:
        return {**SSE_ADAPTERS, **DATA_STREAM_ADAPTERS}


_MODES: dict[str, type[ModeStrategy]] = {
    ChatMode.name: ChatMode,
    FlowMode.name: FlowMode,
    FlowAuthoringMode.name: FlowAuthoringMode,
}


def tool_step_id(tool_call_id: str) -> str:
    return f"{TOOL_STEP_PREFIX}{tool_call_id}"


def create_mode(name: str) -> ModeStrategy:
    """
    Create a mode strategy by name.

    Raises:
        ValueError: If the mode is unknown
    """
    key = name.replace("-", "_").lower()
    if key not in _MODES:
        raise ValueError(
            f"Unknown mode '{name}'. Available: {', '.join(sorted(_MODES))}"
        )
    return _MODES[key]()
