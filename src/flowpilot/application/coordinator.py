"""
Execution Coordinator - drives one conversational turn end to end.

The coordinator owns the attempt lifecycle of a single agent session:

1. Build the request body for the active mode and open the stream
2. Decode the stream into events, strictly in arrival order
3. Reduce every event into the FlowExecutionState projection
4. Cache step outputs so a failed flow can be resumed
5. Coalesce streamed text into frame-aligned UI updates
6. Hold side-effecting step outputs until a human approves them

Each attempt runs its read loop in a child task so cancel() can interrupt a
pending read. A monotonically increasing generation number guards every
state, cache and text write: once an attempt is superseded (retry while
running, reset), its late events can no longer touch the session.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

import structlog

from flowpilot.application.coalescer import (
    DeltaCoalescer,
    FrameScheduler,
    LoopFrameScheduler,
)
from flowpilot.application.modes import ModeStrategy
from flowpilot.core.domain.errors import (
    AttemptInProgressError,
    NoPendingConfirmationError,
    TransportError,
)
from flowpilot.core.domain.events import (
    EvalResult,
    ExecutionEvent,
    FlowError,
    GraphCommand,
    StepComplete,
    StepError,
    StepReused,
    StepSkipped,
    TextDelta,
    is_terminal,
)
from flowpilot.core.domain.models import (
    AttemptResult,
    AttemptStatus,
    FlowExecutionState,
    FlowGraph,
    PendingConfirmation,
    StepRecord,
)
from flowpilot.core.domain.output_cache import OutputCache, plan_retry
from flowpilot.core.domain.projector import reduce, seed, stop
from flowpilot.core.interfaces.transport import (
    ApprovalProtocol,
    StreamTransportProtocol,
)
from flowpilot.infrastructure.streaming.decoder import EventDecoder

logger = structlog.get_logger()

Listener = Callable[..., None]
Unsubscribe = Callable[[], None]


@dataclass
class _Attempt:
    """Mutable bookkeeping of one attempt."""

    generation: int
    coalescer: DeltaCoalescer
    state: FlowExecutionState
    task: asyncio.Task | None = None
    cancel_requested: bool = False
    superseded: bool = False
    status: AttemptStatus | None = None
    error: str | None = None
    evaluations: dict[str, EvalResult] = field(default_factory=dict)
    confirmation: asyncio.Future | None = None


class ExecutionCoordinator:
    """
    Drives agent turns through one mode and keeps the UI projection current.

    Example:
        >>> coordinator = ExecutionCoordinator(transport, FlowMode(), "agent-1",
        ...                                    flow_graph=graph)
        >>> coordinator.on_state_change(render)
        >>> result = await coordinator.run("Summarize my inbox")
        >>> if result.state.has_errors:
        ...     result = await coordinator.retry_from_failed()
    """

    def __init__(
        self,
        transport: StreamTransportProtocol,
        mode: ModeStrategy,
        agent_id: str,
        conversation_id: str | None = None,
        flow_graph: FlowGraph | None = None,
        approvals: ApprovalProtocol | None = None,
        scheduler_factory: Callable[[], FrameScheduler] | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            transport: Opens the streaming request of each attempt
            mode: Execution strategy (chat, flow, flow_authoring)
            agent_id: Agent whose turns are executed
            conversation_id: Conversation the turns belong to
            flow_graph: Graph executed in flow mode (also labels steps)
            approvals: Client of the human-approval endpoint; when omitted,
                confirmations are resolved locally
            scheduler_factory: Creates the frame scheduler of each attempt
        """
        self.transport = transport
        self.mode = mode
        self.agent_id = agent_id
        self.conversation_id = conversation_id
        self.flow_graph = flow_graph
        self.approvals = approvals
        self.scheduler_factory = scheduler_factory or LoopFrameScheduler

        self._state = FlowExecutionState()
        self._cache = OutputCache()
        self._last_user_input: str | None = None
        self._generation = 0
        self._active: _Attempt | None = None
        self._pending: PendingConfirmation | None = None

        self._state_listeners: list[Listener] = []
        self._text_listeners: list[Listener] = []
        self._event_listeners: list[Listener] = []
        self._graph_listeners: list[Listener] = []
        self._confirmation_listeners: list[Listener] = []

        self.logger = logger.bind(
            component="execution_coordinator", mode=mode.name, agent_id=agent_id
        )

    # ============================================
    # READ-ONLY VIEW
    # ============================================

    @property
    def state(self) -> FlowExecutionState:
        return self._state

    @property
    def cache(self) -> OutputCache:
        return self._cache

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def last_user_input(self) -> str | None:
        return self._last_user_input

    @property
    def pending_confirmation(self) -> PendingConfirmation | None:
        return self._pending

    @property
    def steps(self) -> list[StepRecord]:
        """Steps of the flow graph, in graph order."""
        return self.flow_graph.steps() if self.flow_graph else []

    def step(self, step_id: str) -> StepRecord | None:
        for record in self.steps:
            if record.id == step_id:
                return record
        return None

    # ============================================
    # LISTENERS
    # ============================================

    def on_state_change(self, callback: Callable[[FlowExecutionState], None]) -> Unsubscribe:
        """Called with the new projection whenever it changes."""
        return self._subscribe(self._state_listeners, callback)

    def on_text_update(self, callback: Callable[[str, str], None]) -> Unsubscribe:
        """Called with (step_id, full_text) at most once per rendering frame."""
        return self._subscribe(self._text_listeners, callback)

    def on_event(self, callback: Callable[[ExecutionEvent], None]) -> Unsubscribe:
        """Called with every applied event except text deltas."""
        return self._subscribe(self._event_listeners, callback)

    def on_graph_command(self, callback: Callable[[dict[str, Any]], None]) -> Unsubscribe:
        """Called with each graph-editing command (flow-authoring mode)."""
        return self._subscribe(self._graph_listeners, callback)

    def on_confirmation_required(
        self, callback: Callable[[PendingConfirmation], None]
    ) -> Unsubscribe:
        """Called when a step output waits for human approval."""
        return self._subscribe(self._confirmation_listeners, callback)

    @staticmethod
    def _subscribe(listeners: list[Listener], callback: Listener) -> Unsubscribe:
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    # ============================================
    # ATTEMPT LIFECYCLE
    # ============================================

    async def run(self, user_message: str) -> AttemptResult:
        """
        Execute a fresh turn.

        Args:
            user_message: The user's input

        Returns:
            AttemptResult describing how the attempt ended

        Raises:
            AttemptInProgressError: If an attempt is already running
            TransportError: If the request or the stream failed
        """
        if self.is_running:
            raise AttemptInProgressError("An attempt is already running")

        payload = self.mode.build_payload(
            agent_id=self.agent_id,
            user_message=user_message,
            conversation_id=self.conversation_id,
            flow_graph=self.flow_graph,
        )
        self._cache.clear()
        self._last_user_input = user_message
        return await self._run_attempt(payload, seed())

    async def retry_from_failed(self) -> AttemptResult | None:
        """
        Re-run the last turn from its first failed step.

        Outputs of steps that succeeded are handed back to the executor so
        only the failed part of the graph is recomputed. A still running
        attempt is superseded.

        Returns:
            AttemptResult of the retry, or None when there is nothing to retry
            (mode without retry support, no previous input, no failed step)

        Raises:
            TransportError: If the request or the stream failed
        """
        if not self.mode.supports_retry:
            self.logger.info("retry.unsupported")
            return None
        if self._last_user_input is None:
            self.logger.info("retry.skipped", reason="no_previous_input")
            return None

        plan = plan_retry(self._state, self._cache)
        if plan is None:
            self.logger.info("retry.skipped", reason="no_failed_step")
            return None

        if self._active is not None:
            self._abort(self._active, superseded=True)

        self.logger.info(
            "retry.planned",
            retry_from_node_id=plan.retry_from_node_id,
            reused_steps=list(plan.previous_node_outputs),
        )

        payload = self.mode.build_payload(
            agent_id=self.agent_id,
            user_message=self._last_user_input,
            conversation_id=self.conversation_id,
            flow_graph=self.flow_graph,
            retry_from_node_id=plan.retry_from_node_id,
            previous_node_outputs=plan.previous_node_outputs,
        )
        self._cache = OutputCache(plan.previous_node_outputs)
        return await self._run_attempt(payload, seed(plan.previous_node_outputs))

    def cancel(self) -> None:
        """Abort the running attempt. Idempotent; no-op when idle."""
        if self._active is None or self._active.cancel_requested:
            return
        self._abort(self._active, superseded=False)

    def reset(self) -> None:
        """Forget the last input, the cached outputs and the projection."""
        if self._active is not None:
            self._abort(self._active, superseded=False)
        self._generation += 1
        self._active = None
        self._pending = None
        self._cache = OutputCache()
        self._last_user_input = None
        self._set_state(FlowExecutionState())
        self.logger.debug("session.reset", generation=self._generation)

    async def resolve_confirmation(self, approved: bool) -> None:
        """
        Approve or reject the step output awaiting confirmation.

        Approval applies the held step-complete with the approval response
        merged into its output; rejection marks the step skipped. The read
        loop resumes afterwards.

        Args:
            approved: True to execute the action, False to skip it

        Raises:
            NoPendingConfirmationError: If nothing awaits approval
            ApprovalError: If the approval endpoint rejected the request
                (the confirmation stays pending)
        """
        ctx = self._active
        pending = self._pending
        if ctx is None or pending is None or ctx.confirmation is None:
            raise NoPendingConfirmationError("No step output awaits confirmation")

        response: dict[str, Any] = {}
        if self.approvals is not None:
            response = await self.approvals.resolve(pending.activity_id, approved)

        self.logger.info(
            "confirmation.resolved",
            step_id=pending.step_id,
            activity_id=pending.activity_id,
            approved=approved,
        )
        if ctx.confirmation is not None and not ctx.confirmation.done():
            ctx.confirmation.set_result((approved, response or {}))

    # ============================================
    # INTERNALS
    # ============================================

    async def _run_attempt(
        self, payload: dict[str, Any], initial: FlowExecutionState
    ) -> AttemptResult:
        self._generation += 1
        generation = self._generation
        coalescer = DeltaCoalescer(
            self.scheduler_factory(),
            lambda step_id, text: self._emit_text(generation, step_id, text),
        )
        ctx = _Attempt(generation=generation, coalescer=coalescer, state=initial)
        self._active = ctx
        # Task exists before listeners run so a cancel() from them reaches it
        ctx.task = asyncio.create_task(self._consume(ctx, payload))
        try:
            self._set_state(initial)
            self.logger.info(
                "attempt.started",
                generation=ctx.generation,
                retry_from_node_id=payload.get("retryFromNodeId"),
            )
            await ctx.task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not ctx.cancel_requested or (current is not None and current.cancelling()):
                raise
            ctx.status = AttemptStatus.SUPERSEDED if ctx.superseded else AttemptStatus.CANCELLED
            self.logger.info(
                "attempt.superseded" if ctx.superseded else "attempt.cancelled",
                generation=ctx.generation,
                current_step_id=ctx.state.current_step_id,
            )
        except TransportError as e:
            self.logger.error(
                "attempt.transport_failed",
                generation=ctx.generation,
                error=str(e),
                status_code=e.status_code,
            )
            raise
        finally:
            if not ctx.task.done():
                ctx.task.cancel()
            self._finish(ctx)

        result = self._result(ctx)
        self.logger.info(
            "attempt.finished",
            generation=ctx.generation,
            status=result.status.value,
            completed=len(result.state.completed_step_ids),
            errors=len(result.state.error_step_ids),
        )
        return result

    async def _consume(self, ctx: _Attempt, payload: dict[str, Any]) -> None:
        decoder = EventDecoder(
            frame_adapters=self.mode.frame_adapters,
            default_step_id=self.mode.default_text_step_id,
        )
        stream: AsyncIterator[bytes] = self.transport.open_stream(self.mode.route, payload)
        terminal = False
        try:
            async with aclosing(decoder.decode(stream)) as events:
                async for event in events:
                    if self._is_stale(ctx):
                        return
                    for item in self.mode.translate(event):
                        await self._dispatch(ctx, item)
                    if is_terminal(event):
                        terminal = True
                        break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if decoder.dropped_frames:
            self.logger.debug(
                "stream.frames_dropped",
                generation=ctx.generation,
                count=decoder.dropped_frames,
            )
        if not terminal and self.mode.requires_terminal_event and not self._is_stale(ctx):
            raise TransportError("Stream ended before flow-complete or flow-error")

    async def _dispatch(self, ctx: _Attempt, event: ExecutionEvent) -> None:
        if isinstance(event, TextDelta):
            ctx.coalescer.push(event.step_id, event.delta)
            return

        if isinstance(event, StepComplete):
            confirmation = PendingConfirmation.from_output(event.step_id, event.output)
            if confirmation is not None:
                event = await self._await_confirmation(ctx, confirmation, event)
                if self._is_stale(ctx):
                    return

        if isinstance(event, GraphCommand):
            self._notify(self._graph_listeners, event.command)
        elif isinstance(event, EvalResult):
            ctx.evaluations[event.step_id] = event
        elif isinstance(event, FlowError):
            ctx.error = event.error
        elif isinstance(event, (StepComplete, StepReused)) and event.output is not None:
            self._cache.store(event.step_id, event.output)

        if isinstance(event, (StepComplete, StepError)):
            ctx.coalescer.flush_step(event.step_id)
        elif is_terminal(event):
            ctx.coalescer.flush_all()

        self._apply(ctx, event)
        self._notify(self._event_listeners, event)

    async def _await_confirmation(
        self, ctx: _Attempt, confirmation: PendingConfirmation, event: StepComplete
    ) -> StepComplete | StepSkipped:
        ctx.confirmation = asyncio.get_running_loop().create_future()
        self._pending = confirmation
        self.logger.info(
            "confirmation.required",
            step_id=confirmation.step_id,
            activity_id=confirmation.activity_id,
            action_type=confirmation.action_type,
        )
        self._notify(self._confirmation_listeners, confirmation)

        try:
            approved, response = await ctx.confirmation
        finally:
            ctx.confirmation = None
            if self._active is ctx:
                self._pending = None

        if not approved:
            return StepSkipped(step_id=event.step_id, reason="rejected")
        return StepComplete(
            step_id=event.step_id,
            output={**event.output, **response, "requiresConfirmation": False},
        )

    def _apply(self, ctx: _Attempt, event: ExecutionEvent) -> None:
        new_state = reduce(ctx.state, event)
        if new_state is ctx.state:
            return
        ctx.state = new_state
        if not self._is_stale(ctx):
            self._set_state(new_state)

    def _finish(self, ctx: _Attempt) -> None:
        ctx.coalescer.flush_all()
        ctx.state = stop(ctx.state)
        if self._is_stale(ctx):
            return
        self._active = None
        self._pending = None
        self._set_state(ctx.state)

    def _abort(self, ctx: _Attempt, superseded: bool) -> None:
        ctx.cancel_requested = True
        ctx.superseded = superseded
        if superseded:
            ctx.coalescer.close()
        if ctx.task is not None:
            ctx.task.cancel()
        self.logger.debug(
            "attempt.abort_requested", generation=ctx.generation, superseded=superseded
        )

    def _result(self, ctx: _Attempt) -> AttemptResult:
        status = ctx.status
        if status is None:
            failed = ctx.error is not None or ctx.state.has_errors
            status = AttemptStatus.FAILED if failed else AttemptStatus.COMPLETED
        return AttemptResult(
            generation=ctx.generation,
            status=status,
            state=ctx.state,
            error=ctx.error,
            texts=ctx.coalescer.texts,
            evaluations=dict(ctx.evaluations),
        )

    def _is_stale(self, ctx: _Attempt) -> bool:
        return ctx.generation != self._generation

    def _set_state(self, state: FlowExecutionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify(self._state_listeners, state)

    def _emit_text(self, generation: int, step_id: str, text: str) -> None:
        if generation != self._generation:
            return
        self._notify(self._text_listeners, step_id, text)

    @staticmethod
    def _notify(listeners: list[Listener], *args: Any) -> None:
        for listener in list(listeners):
            listener(*args)
