"""
Core Domain Models

This module defines the data models shared by the coordinator, the projector
and the mode strategies:
- StepRecord: one unit of work of a flow, derived from the authoring graph
- FlowGraph: the static graph sent to the executor in flow mode
- FlowExecutionState: the externally observable execution projection
- PendingConfirmation: a step output waiting for human approval
- AttemptResult: outcome of one run of the coordinator
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StepKind(str, Enum):
    """Kind of work a step performs."""

    TRIGGER = "trigger"
    AI_STEP = "ai-step"
    TOOL_ACTION = "tool-action"
    CONDITION = "condition"
    LOOP = "loop"
    KNOWLEDGE_SEARCH = "knowledge-search"
    PASSTHROUGH = "passthrough"
    ERROR = "error"


# Authoring-graph node types; anything not listed is a connector action.
NODE_TYPE_KINDS: dict[str, StepKind] = {
    "messageReceived": StepKind.TRIGGER,
    "trigger": StepKind.TRIGGER,
    "webhookTrigger": StepKind.TRIGGER,
    "aiResponse": StepKind.AI_STEP,
    "ai": StepKind.AI_STEP,
    "agent": StepKind.AI_STEP,
    "condition": StepKind.CONDITION,
    "conditionBranch": StepKind.CONDITION,
    "loop": StepKind.LOOP,
    "enterLoop": StepKind.LOOP,
    "exitLoop": StepKind.LOOP,
    "loopContainer": StepKind.LOOP,
    "knowledgeSearch": StepKind.KNOWLEDGE_SEARCH,
    "chatOutcome": StepKind.PASSTHROUGH,
    "addNode": StepKind.PASSTHROUGH,
    "error": StepKind.ERROR,
}


@dataclass(frozen=True)
class StepRecord:
    """
    One unit of work in a flow.

    Attributes:
        id: Step identifier, unique within a flow
        kind: Kind of work the step performs
        label: Display name
        icon_ref: Opaque presentation key
    """

    id: str
    kind: StepKind
    label: str
    icon_ref: str = ""


@dataclass
class FlowNode:
    """Node of the authoring graph."""

    id: str
    type: str
    position: dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    data: dict[str, Any] = field(default_factory=dict)

    def to_step(self) -> StepRecord:
        label = self.data.get("label") or self.type
        return StepRecord(
            id=self.id,
            kind=NODE_TYPE_KINDS.get(self.type, StepKind.TOOL_ACTION),
            label=str(label),
            icon_ref=str(self.data.get("icon") or self.type),
        )


@dataclass
class FlowEdge:
    """Directed edge of the authoring graph."""

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


@dataclass
class FlowGraph:
    """
    Static directed graph of steps representing an agent's automation.

    The graph is read-only during execution; the coordinator only forwards it
    to the executor and uses it to label steps.
    """

    nodes: list[FlowNode] = field(default_factory=list)
    edges: list[FlowEdge] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlowGraph":
        """
        Build a graph from its wire/file representation.

        Raises:
            ValueError: If a node or edge lacks its identifying fields
        """
        nodes = []
        for raw in data.get("nodes") or []:
            if not raw.get("id") or not raw.get("type"):
                raise ValueError(f"Flow node needs 'id' and 'type': {raw!r}")
            position = raw.get("position") or {}
            nodes.append(
                FlowNode(
                    id=str(raw["id"]),
                    type=str(raw["type"]),
                    position={
                        "x": float(position.get("x", 0)),
                        "y": float(position.get("y", 0)),
                    },
                    data=dict(raw.get("data") or {}),
                )
            )

        edges = []
        for index, raw in enumerate(data.get("edges") or []):
            if not raw.get("source") or not raw.get("target"):
                raise ValueError(f"Flow edge needs 'source' and 'target': {raw!r}")
            edges.append(
                FlowEdge(
                    id=str(raw.get("id") or f"e{index}"),
                    source=str(raw["source"]),
                    target=str(raw["target"]),
                    source_handle=raw.get("sourceHandle"),
                    target_handle=raw.get("targetHandle"),
                )
            )

        node_ids = {node.id for node in nodes}
        if len(node_ids) != len(nodes):
            raise ValueError("Flow node ids must be unique")

        return cls(nodes=nodes, edges=edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [
                {"id": n.id, "type": n.type, "position": dict(n.position), "data": dict(n.data)}
                for n in self.nodes
            ],
            "edges": [
                {
                    "id": e.id,
                    "source": e.source,
                    "target": e.target,
                    "sourceHandle": e.source_handle,
                    "targetHandle": e.target_handle,
                }
                for e in self.edges
            ],
        }

    def steps(self) -> list[StepRecord]:
        return [node.to_step() for node in self.nodes]


@dataclass(frozen=True)
class FlowExecutionState:
    """
    Externally observable projection of one execution attempt.

    Step id collections are tuples with set semantics: an id appears at most
    once and insertion order is kept, so the earliest failure is always
    error_step_ids[0].

    Attributes:
        is_running: Whether the attempt is still consuming events
        current_step_id: Step currently executing (None when not running)
        completed_step_ids: Steps that finished successfully
        error_step_ids: Steps that failed
        skipped_step_ids: Steps bypassed by branch logic
        reused_step_ids: Steps satisfied from cached outputs
    """

    is_running: bool = False
    current_step_id: str | None = None
    completed_step_ids: tuple[str, ...] = ()
    error_step_ids: tuple[str, ...] = ()
    skipped_step_ids: tuple[str, ...] = ()
    reused_step_ids: tuple[str, ...] = ()

    def __post_init__(self):
        if not self.is_running and self.current_step_id is not None:
            raise ValueError("current_step_id must be unset when not running")

    def status_of(self, step_id: str) -> str | None:
        """Return the terminal status recorded for a step, if any."""
        if step_id in self.completed_step_ids:
            return "completed"
        if step_id in self.error_step_ids:
            return "error"
        if step_id in self.skipped_step_ids:
            return "skipped"
        if step_id in self.reused_step_ids:
            return "reused"
        return None

    @property
    def has_errors(self) -> bool:
        return bool(self.error_step_ids)

    @property
    def done_count(self) -> int:
        """Steps that count as done for progress display (completed or reused)."""
        return len(self.completed_step_ids) + len(self.reused_step_ids)


@dataclass(frozen=True)
class PendingConfirmation:
    """
    Side-effecting step output that needs human approval.

    Attributes:
        step_id: Step whose output requested confirmation
        activity_id: Key used by the approval endpoint
        action_type: Machine name of the action (e.g. GMAIL_SEND_EMAIL)
        action_label: Human-readable action name
        details: Arguments of the action, shown to the approver
    """

    step_id: str
    activity_id: str
    action_type: str
    action_label: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_output(cls, step_id: str, output: Any) -> "PendingConfirmation | None":
        """Return a confirmation request if the output declares one."""
        if not isinstance(output, Mapping):
            return None
        if not output.get("requiresConfirmation") or not output.get("activityId"):
            return None
        action_type = str(output.get("actionType") or step_id)
        return cls(
            step_id=step_id,
            activity_id=str(output["activityId"]),
            action_type=action_type,
            action_label=str(output.get("actionLabel") or action_type),
            details=dict(output.get("details") or {}),
        )


class AttemptStatus(str, Enum):
    """How an attempt ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"


@dataclass
class AttemptResult:
    """
    Result of one execution attempt.

    Attributes:
        generation: Attempt number within the coordinator
        status: How the attempt ended
        state: Final execution projection
        error: Flow-level error message (flow-error), if any
        texts: Final streamed text per step
        evaluations: Quality-gate results by step id
    """

    generation: int
    status: AttemptStatus
    state: FlowExecutionState
    error: str | None = None
    texts: dict[str, str] = field(default_factory=dict)
    evaluations: dict[str, Any] = field(default_factory=dict)
