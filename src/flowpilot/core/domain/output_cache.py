"""
Output Cache & Retry Planning

The output cache remembers the last successful output of every step of the
current turn. It exists only to support retry-from-failed: when a flow fails,
everything that succeeded is handed back to the executor so only the failed
part of the graph is recomputed.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from flowpilot.core.domain.models import FlowExecutionState


class OutputCache:
    """
    Mapping step_id -> last successful output, in insertion order.

    A step may legitimately run more than once within one execution (loop
    bodies); the last output wins but the step keeps its original position.
    """

    def __init__(self, outputs: Mapping[str, Any] | None = None):
        self._outputs: dict[str, Any] = dict(outputs or {})

    def store(self, step_id: str, output: Any) -> None:
        self._outputs[step_id] = output

    def get(self, step_id: str, default: Any = None) -> Any:
        return self._outputs.get(step_id, default)

    def clear(self) -> None:
        self._outputs.clear()

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of the cached outputs."""
        return dict(self._outputs)

    def without(self, step_ids: Iterable[str]) -> dict[str, Any]:
        """Copy of the cache with the given steps removed."""
        excluded = set(step_ids)
        return {k: v for k, v in self._outputs.items() if k not in excluded}

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._outputs

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs)

    def __len__(self) -> int:
        return len(self._outputs)

    def __repr__(self) -> str:
        return f"OutputCache({list(self._outputs)!r})"


@dataclass(frozen=True)
class RetryPlan:
    """
    Resumption hint handed to the executor.

    Attributes:
        retry_from_node_id: Earliest failed step of the previous attempt
        previous_node_outputs: Outputs the executor may reuse instead of
            recomputing the corresponding steps
    """

    retry_from_node_id: str
    previous_node_outputs: dict[str, Any] = field(default_factory=dict)


def _is_error_output(output: Any) -> bool:
    return isinstance(output, Mapping) and output.get("kind") == "error"


def plan_retry(state: FlowExecutionState, cache: OutputCache) -> RetryPlan | None:
    """
    Decide where a retry resumes and which outputs it may reuse.

    The first failed step in insertion order is chosen; later failures are
    usually downstream consequences of it. Failed and skipped steps must be
    recomputed, so their outputs are dropped, as are outputs that themselves
    describe an error.

    Args:
        state: Projection of the attempt being retried
        cache: Outputs collected during that attempt

    Returns:
        RetryPlan, or None when the attempt has no failed step
    """
    if not state.error_step_ids:
        return None

    reusable = cache.without(state.error_step_ids + state.skipped_step_ids)
    reusable = {k: v for k, v in reusable.items() if not _is_error_output(v)}
    return RetryPlan(
        retry_from_node_id=state.error_step_ids[0],
        previous_node_outputs=reusable,
    )
