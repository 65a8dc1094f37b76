"""
Request schemas for the agent execution endpoints.

Outbound payloads are validated with pydantic before they are sent and
serialized with camelCase aliases, matching what the chat, flow and builder
endpoints accept.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FlowNodeSchema(BaseModel):
    """Node of a flow graph."""
    id: str
    type: str
    position: Dict[str, float] = Field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    data: Optional[Dict[str, Any]] = None


class FlowEdgeSchema(BaseModel):
    """Edge of a flow graph."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class FlowGraphSchema(BaseModel):
    """Static flow graph (nodes + edges)."""
    nodes: List[FlowNodeSchema]
    edges: List[FlowEdgeSchema] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    """Request body of one execution attempt.

    `flow_graph` is only sent in flow mode; the retry fields only when an
    attempt resumes from a failed step.
    """
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_message: str = Field(default="", alias="userMessage")
    flow_graph: Optional[FlowGraphSchema] = Field(default=None, alias="flowGraph")
    retry_from_node_id: Optional[str] = Field(default=None, alias="retryFromNodeId")
    previous_node_outputs: Optional[Dict[str, Any]] = Field(
        default=None, alias="previousNodeOutputs"
    )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the wire (camelCase, unset optionals omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConfirmActionRequest(BaseModel):
    """Body of the human-approval request."""
    model_config = ConfigDict(populate_by_name=True)

    activity_id: str = Field(alias="activityId")
    confirmed: bool
