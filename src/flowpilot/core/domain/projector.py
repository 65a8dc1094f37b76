"""
Execution State Projector

Pure reducer turning the event sequence of one attempt into a
FlowExecutionState. No I/O and no mutation: every transition returns a new
state, and an event that changes nothing returns the very same instance so
consumers can detect changes by identity.

A step keeps the first terminal status it receives (completed, error,
skipped or reused). Later terminal events naming the same step are ignored.
"""

from collections.abc import Iterable
from dataclasses import replace

from flowpilot.core.domain.events import (
    ExecutionEvent,
    FlowComplete,
    FlowError,
    StepComplete,
    StepError,
    StepReused,
    StepSkipped,
    StepStart,
)
from flowpilot.core.domain.models import FlowExecutionState

_TERMINAL_FIELDS = {
    StepComplete: "completed_step_ids",
    StepError: "error_step_ids",
    StepSkipped: "skipped_step_ids",
    StepReused: "reused_step_ids",
}


def seed(reused_step_ids: Iterable[str] = ()) -> FlowExecutionState:
    """Initial state of a freshly started attempt."""
    return FlowExecutionState(
        is_running=True, reused_step_ids=tuple(dict.fromkeys(reused_step_ids))
    )


def stop(state: FlowExecutionState) -> FlowExecutionState:
    """Terminal transition: not running, no current step, sets kept."""
    if not state.is_running and state.current_step_id is None:
        return state
    return replace(state, is_running=False, current_step_id=None)


def reduce(state: FlowExecutionState, event: ExecutionEvent) -> FlowExecutionState:
    """
    Apply one event to the projection.

    Args:
        state: Current projection
        event: Next event in arrival order

    Returns:
        The new projection (the same object when nothing changed)
    """
    if isinstance(event, StepStart):
        if state.is_running and state.current_step_id == event.step_id:
            return state
        return replace(state, is_running=True, current_step_id=event.step_id)

    if isinstance(event, (FlowComplete, FlowError)):
        return stop(state)

    field_name = _TERMINAL_FIELDS.get(type(event))
    if field_name is None:
        # eval-result, text-delta, tool-call-*, graph-command
        return state

    step_id = event.step_id
    changes = {}
    if state.status_of(step_id) is None:
        changes[field_name] = getattr(state, field_name) + (step_id,)
    # Loop bodies re-run a finished step; its status stays but it stops being current
    if state.current_step_id == step_id and isinstance(event, (StepComplete, StepError)):
        changes["current_step_id"] = None
    if not changes:
        return state
    return replace(state, **changes)


def reduce_all(
    state: FlowExecutionState, events: Iterable[ExecutionEvent]
) -> FlowExecutionState:
    """Fold a sequence of events into a projection."""
    for event in events:
        state = reduce(state, event)
    return state
