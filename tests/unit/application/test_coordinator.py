"""
Unit tests for ExecutionCoordinator.

Uses a scripted in-memory transport: each stream is a list of byte chunks,
Gate markers that pause the stream until released, and exceptions to raise.

Tests verify:
- Happy path projection, caching and text updates
- Retry-from-failed payloads, seeding and cache replacement
- Cancellation mid-step and cancellation of the caller
- Superseding a running attempt
- Transport failures and missing terminal events
- Human approval of side-effecting step outputs
"""

import asyncio
import json
from dataclasses import dataclass, field
from unittest.mock import AsyncMock

import pytest

from flowpilot.application.coalescer import ManualFrameScheduler
from flowpilot.application.coordinator import ExecutionCoordinator
from flowpilot.application.modes import ChatMode, FlowAuthoringMode, FlowMode
from flowpilot.core.domain.errors import (
    ApprovalError,
    AttemptInProgressError,
    NoPendingConfirmationError,
    TransportError,
)
from flowpilot.core.domain.events import (
    EvalResult,
    StepComplete,
    StepStart,
    ToolCallInput,
    ToolCallOutput,
    ToolCallStart,
)
from flowpilot.core.domain.models import AttemptStatus, FlowExecutionState, FlowGraph


@dataclass
class Gate:
    """Pauses a scripted stream until released."""

    reached: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)


class ScriptedTransport:
    """In-memory StreamTransportProtocol playing one script per request."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = []
        self.closed = 0

    async def open_stream(self, route, payload):
        self.calls.append((route, payload))
        script = self.scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, Gate):
                    item.reached.set()
                    await item.release.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed += 1


def sse(*events):
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


def start(step_id):
    return {"type": "node-start", "nodeId": step_id, "label": step_id.upper()}


def complete(step_id, output=None):
    frame = {"type": "node-complete", "nodeId": step_id}
    if output is not None:
        frame["output"] = output
    return frame


FLOW_COMPLETE = {"type": "flow-complete", "completedCount": 1}


@pytest.fixture
def graph():
    return FlowGraph.from_dict(
        {
            "nodes": [
                {"id": "a", "type": "messageReceived"},
                {"id": "b", "type": "aiResponse", "data": {"label": "Draft"}},
                {"id": "c", "type": "condition"},
                {"id": "d", "type": "slackSendMessage"},
            ],
            "edges": [
                {"source": "a", "target": "b"},
                {"source": "b", "target": "c"},
                {"source": "c", "target": "d"},
            ],
        }
    )


@pytest.fixture
def scheduler():
    return ManualFrameScheduler()


@pytest.fixture
def make_coordinator(graph, scheduler):
    """Build a coordinator around a scripted transport."""

    def _make(*scripts, mode=None, approvals=None):
        transport = ScriptedTransport(*scripts)
        coordinator = ExecutionCoordinator(
            transport=transport,
            mode=mode or FlowMode(),
            agent_id="agent-1",
            conversation_id="conv-1",
            flow_graph=graph,
            approvals=approvals,
            scheduler_factory=lambda: scheduler,
        )
        return coordinator, transport

    return _make


class TestHappyPath:
    """Test a flow that runs to completion."""

    @pytest.mark.asyncio
    async def test_completed_flow(self, make_coordinator):
        """Test projection, cache and result of a clean run."""
        coordinator, transport = make_coordinator(
            [
                sse(start("a"), complete("a", {"text": "hi"})),
                sse(start("b"), complete("b", {"text": "draft"}), FLOW_COMPLETE),
            ]
        )

        result = await coordinator.run("New email")

        assert result.status == AttemptStatus.COMPLETED
        assert result.generation == 1
        assert result.state.completed_step_ids == ("a", "b")
        assert not result.state.is_running
        assert coordinator.state == result.state
        assert not coordinator.is_running
        assert coordinator.cache.snapshot() == {"a": {"text": "hi"}, "b": {"text": "draft"}}
        assert coordinator.last_user_input == "New email"
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_payload(self, make_coordinator, graph):
        """Test the flow request body."""
        coordinator, transport = make_coordinator([sse(FLOW_COMPLETE)])

        await coordinator.run("Go")

        route, payload = transport.calls[0]
        assert route == "flow"
        assert payload["agentId"] == "agent-1"
        assert payload["conversationId"] == "conv-1"
        assert payload["userMessage"] == "Go"
        assert [n["id"] for n in payload["flowGraph"]["nodes"]] == ["a", "b", "c", "d"]
        assert "retryFromNodeId" not in payload

    @pytest.mark.asyncio
    async def test_state_listener_sees_every_change(self, make_coordinator):
        """Test listeners are called once per projection change."""
        coordinator, _ = make_coordinator(
            [sse(start("a"), {"type": "text-delta", "nodeId": "a", "delta": "x"},
                 complete("a"), FLOW_COMPLETE)]
        )
        states = []
        coordinator.on_state_change(states.append)

        await coordinator.run("Go")

        assert [s.current_step_id for s in states] == [None, "a", None, None]
        assert [s.is_running for s in states] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_step_text_flushed_on_completion(self, make_coordinator):
        """Test trailing text is delivered when its step completes."""
        coordinator, _ = make_coordinator(
            [
                sse(
                    start("b"),
                    {"type": "text-delta", "nodeId": "b", "delta": "Dear "},
                    {"type": "text-delta", "nodeId": "b", "delta": "Bob"},
                    complete("b"),
                    FLOW_COMPLETE,
                )
            ]
        )
        updates = []
        coordinator.on_text_update(lambda step_id, text: updates.append((step_id, text)))

        result = await coordinator.run("Go")

        assert updates == [("b", ""), ("b", "Dear Bob")]
        assert result.texts == {"b": "Dear Bob"}

    @pytest.mark.asyncio
    async def test_eval_results_collected(self, make_coordinator):
        """Test quality-gate results are reported and kept."""
        coordinator, _ = make_coordinator(
            [
                sse(
                    start("b"),
                    complete("b", "draft"),
                    {"type": "eval-result", "nodeId": "b", "passed": False, "l2Score": 0.4},
                    FLOW_COMPLETE,
                )
            ]
        )
        seen = []
        coordinator.on_event(seen.append)

        result = await coordinator.run("Go")

        assert result.evaluations["b"] == EvalResult(step_id="b", passed=False, score=0.4)
        assert EvalResult(step_id="b", passed=False, score=0.4) in seen

    @pytest.mark.asyncio
    async def test_malformed_frames_do_not_abort(self, make_coordinator):
        """Test broken frames are skipped and the run completes."""
        coordinator, _ = make_coordinator(
            [
                sse(start("a")),
                b"data: {not json}\n\n",
                b'data: {"type":"node-teleported","nodeId":"a"}\n\n',
                sse(complete("a"), FLOW_COMPLETE),
            ]
        )

        result = await coordinator.run("Go")

        assert result.status == AttemptStatus.COMPLETED
        assert result.state.completed_step_ids == ("a",)

    @pytest.mark.asyncio
    async def test_fresh_run_clears_cache(self, make_coordinator):
        """Test the cache only holds outputs of the latest turn."""
        coordinator, _ = make_coordinator(
            [sse(start("a"), complete("a", 1), FLOW_COMPLETE)],
            [sse(start("b"), complete("b", 2), FLOW_COMPLETE)],
        )

        await coordinator.run("first")
        await coordinator.run("second")

        assert coordinator.cache.snapshot() == {"b": 2}
        assert coordinator.state.completed_step_ids == ("b",)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_coordinator):
        """Test unsubscribed listeners are no longer called."""
        coordinator, _ = make_coordinator([sse(start("a"), FLOW_COMPLETE)])
        states = []
        unsubscribe = coordinator.on_state_change(states.append)
        unsubscribe()
        unsubscribe()

        await coordinator.run("Go")

        assert states == []

    def test_steps_from_graph(self, make_coordinator):
        """Test step records are derived from the graph."""
        coordinator, _ = make_coordinator()
        assert [s.id for s in coordinator.steps] == ["a", "b", "c", "d"]
        assert coordinator.step("b").label == "Draft"
        assert coordinator.step("zz") is None


class TestFailures:
    """Test step, flow and transport failures."""

    @pytest.mark.asyncio
    async def test_step_error_fails_attempt(self, make_coordinator):
        """Test step errors are results, not exceptions."""
        coordinator, _ = make_coordinator(
            [
                sse(
                    start("a"),
                    complete("a", "A"),
                    start("b"),
                    {"type": "node-error", "nodeId": "b", "error": "LLM timeout"},
                    {"type": "flow-error", "error": "Flow stopped"},
                )
            ]
        )

        result = await coordinator.run("Go")

        assert result.status == AttemptStatus.FAILED
        assert result.error == "Flow stopped"
        assert result.state.error_step_ids == ("b",)
        assert result.state.current_step_id is None

    @pytest.mark.asyncio
    async def test_flow_stream_without_terminal_event(self, make_coordinator):
        """Test a flow stream closing early is a transport error."""
        coordinator, _ = make_coordinator([sse(start("a"), complete("a"))])

        with pytest.raises(TransportError, match="ended before"):
            await coordinator.run("Go")

        assert not coordinator.is_running
        assert not coordinator.state.is_running
        assert coordinator.state.completed_step_ids == ("a",)

    @pytest.mark.asyncio
    async def test_transport_error_propagates_once(self, make_coordinator):
        """Test transport failures reset the running state and are re-raised."""
        coordinator, transport = make_coordinator(
            [sse(start("a")), TransportError("HTTP 500", status_code=500)]
        )

        with pytest.raises(TransportError) as exc_info:
            await coordinator.run("Go")

        assert exc_info.value.status_code == 500
        assert not coordinator.is_running
        assert coordinator.state.current_step_id is None
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_run_while_running_rejected(self, make_coordinator):
        """Test only one attempt runs at a time."""
        gate = Gate()
        coordinator, _ = make_coordinator([sse(start("a")), gate, sse(FLOW_COMPLETE)])

        task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()

        assert coordinator.is_running
        with pytest.raises(AttemptInProgressError):
            await coordinator.run("Again")

        gate.release.set()
        result = await task
        assert result.status == AttemptStatus.COMPLETED


class TestRetryFromFailed:
    """Test resumable retry."""

    @pytest.mark.asyncio
    async def test_retry_payload_and_seed(self, make_coordinator):
        """Test retry resumes at B reusing only A and D."""
        failing = sse(
            start("a"),
            complete("a", "A"),
            start("b"),
            {"type": "node-error", "nodeId": "b", "error": "boom"},
            {"type": "node-skipped", "nodeId": "c"},
            start("d"),
            complete("d", "D"),
            {"type": "flow-error", "error": "Flow failed"},
        )
        retry = sse(
            {"type": "node-reused", "nodeId": "a", "output": "A"},
            start("b"),
            complete("b", "B"),
            start("c"),
            complete("c", "C"),
            FLOW_COMPLETE,
        )
        coordinator, transport = make_coordinator([failing], [retry])
        states = []

        await coordinator.run("Go")
        coordinator.on_state_change(states.append)
        result = await coordinator.retry_from_failed()

        _, payload = transport.calls[1]
        assert payload["userMessage"] == "Go"
        assert payload["retryFromNodeId"] == "b"
        assert payload["previousNodeOutputs"] == {"a": "A", "d": "D"}

        assert states[0].is_running
        assert states[0].reused_step_ids == ("a", "d")
        assert result.status == AttemptStatus.COMPLETED
        assert result.state.reused_step_ids == ("a", "d")
        assert result.state.completed_step_ids == ("b", "c")
        assert result.state.error_step_ids == ()
        assert coordinator.cache.snapshot() == {"a": "A", "d": "D", "b": "B", "c": "C"}

    @pytest.mark.asyncio
    async def test_error_outputs_not_reused(self, make_coordinator):
        """Test outputs describing an error are not handed back."""
        failing = sse(
            start("a"),
            complete("a", {"kind": "error", "message": "partial"}),
            {"type": "node-error", "nodeId": "b", "error": "boom"},
            {"type": "flow-error", "error": "x"},
        )
        coordinator, transport = make_coordinator([failing], [sse(FLOW_COMPLETE)])

        await coordinator.run("Go")
        await coordinator.retry_from_failed()

        assert transport.calls[1][1]["previousNodeOutputs"] == {}

    @pytest.mark.asyncio
    async def test_no_failed_step(self, make_coordinator):
        """Test a clean run has nothing to retry."""
        coordinator, transport = make_coordinator([sse(start("a"), complete("a"), FLOW_COMPLETE)])

        await coordinator.run("Go")

        assert await coordinator.retry_from_failed() is None
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_flow_error_without_step_error(self, make_coordinator):
        """Test a flow-level failure alone gives no resume point."""
        coordinator, _ = make_coordinator([sse({"type": "flow-error", "error": "bad graph"})])

        result = await coordinator.run("Go")

        assert result.status == AttemptStatus.FAILED
        assert await coordinator.retry_from_failed() is None

    @pytest.mark.asyncio
    async def test_without_previous_input(self, make_coordinator):
        """Test retry needs a remembered user input."""
        coordinator, _ = make_coordinator()
        assert await coordinator.retry_from_failed() is None

    @pytest.mark.asyncio
    async def test_chat_mode_never_retries(self, make_coordinator):
        """Test retry is a flow-mode capability."""
        coordinator, transport = make_coordinator(
            [sse({"type": "node-error", "nodeId": "tool-1", "error": "x"})], mode=ChatMode()
        )

        await coordinator.run("Hi")

        assert await coordinator.retry_from_failed() is None
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_supersedes_running_attempt(self, make_coordinator):
        """Test a retry while running discards the old attempt."""
        gate = Gate()
        first = [
            sse(start("a"), complete("a", "A"), {"type": "node-error", "nodeId": "b", "error": "x"}),
            gate,
            sse(complete("c", "late"), FLOW_COMPLETE),
        ]
        second = [sse(start("b"), complete("b", "B"), FLOW_COMPLETE)]
        coordinator, transport = make_coordinator(first, second)

        first_task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()

        retried = await coordinator.retry_from_failed()
        first_result = await first_task

        assert first_result.status == AttemptStatus.SUPERSEDED
        assert retried.status == AttemptStatus.COMPLETED
        assert retried.generation == 2
        assert coordinator.state.completed_step_ids == ("b",)
        assert coordinator.state.reused_step_ids == ("a",)
        assert "c" not in coordinator.cache
        assert transport.closed == 2


class TestCancellation:
    """Test user cancellation and caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_mid_step(self, make_coordinator):
        """Test cancel stops the attempt without marking steps failed."""
        gate = Gate()
        coordinator, transport = make_coordinator(
            [sse(start("a"), complete("a"), start("b")), gate, sse(complete("b"), FLOW_COMPLETE)]
        )

        task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()
        assert coordinator.state.current_step_id == "b"

        coordinator.cancel()
        coordinator.cancel()
        result = await task

        assert result.status == AttemptStatus.CANCELLED
        assert result.state.completed_step_ids == ("a",)
        assert result.state.error_step_ids == ()
        assert not coordinator.state.is_running
        assert coordinator.state.current_step_id is None
        assert not coordinator.is_running
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_cancel_from_first_state_update(self, make_coordinator):
        """Test cancel() from the seeded-state listener stops the attempt."""
        coordinator, transport = make_coordinator([sse(start("a"), complete("a"), FLOW_COMPLETE)])

        def cancel_on_start(state):
            if state.is_running:
                coordinator.cancel()

        coordinator.on_state_change(cancel_on_start)
        result = await coordinator.run("Go")

        assert result.status == AttemptStatus.CANCELLED
        assert result.state.completed_step_ids == ()
        assert transport.calls == []
        assert not coordinator.is_running
        assert not coordinator.state.is_running

    def test_cancel_when_idle_is_noop(self, make_coordinator):
        """Test cancel without an attempt does nothing."""
        coordinator, _ = make_coordinator()
        coordinator.cancel()
        assert coordinator.state == FlowExecutionState()

    @pytest.mark.asyncio
    async def test_cancelled_run_can_be_retried(self, make_coordinator):
        """Test cancellation keeps the input and cache for a later retry."""
        gate = Gate()
        coordinator, _ = make_coordinator(
            [sse(start("a"), complete("a", "A"), {"type": "node-error", "nodeId": "b", "error": "x"}),
             gate]
        )

        task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()
        coordinator.cancel()
        await task

        assert coordinator.last_user_input == "Go"
        assert coordinator.cache.snapshot() == {"a": "A"}
        assert coordinator.state.error_step_ids == ("b",)

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, make_coordinator):
        """Test cancelling the awaiting task re-raises and cleans up."""
        gate = Gate()
        coordinator, transport = make_coordinator([sse(start("a")), gate])

        task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not coordinator.is_running
        assert not coordinator.state.is_running

    @pytest.mark.asyncio
    async def test_reset(self, make_coordinator):
        """Test reset forgets input, cache and projection."""
        coordinator, _ = make_coordinator([sse(start("a"), complete("a", 1), FLOW_COMPLETE)])
        await coordinator.run("Go")

        coordinator.reset()

        assert coordinator.state == FlowExecutionState()
        assert coordinator.last_user_input is None
        assert len(coordinator.cache) == 0
        assert await coordinator.retry_from_failed() is None

    @pytest.mark.asyncio
    async def test_reset_cancels_running_attempt(self, make_coordinator):
        """Test reset while running stops the attempt and ignores its events."""
        gate = Gate()
        coordinator, _ = make_coordinator([sse(start("a")), gate, sse(complete("a"), FLOW_COMPLETE)])

        task = asyncio.create_task(coordinator.run("Go"))
        await gate.reached.wait()
        coordinator.reset()
        result = await task

        assert result.status == AttemptStatus.CANCELLED
        assert coordinator.state == FlowExecutionState()
        assert not coordinator.is_running


class TestModes:
    """Test chat and flow-authoring specifics."""

    @pytest.mark.asyncio
    async def test_chat_tool_calls_become_steps(self, make_coordinator):
        """Test tool calls are projected as implicit steps."""
        coordinator, transport = make_coordinator(
            [
                sse(
                    {"type": "tool-input-start", "toolCallId": "c1", "toolName": "search"},
                    {"type": "tool-input-available", "toolCallId": "c1",
                     "toolName": "search", "input": {"q": "weather"}},
                    {"type": "tool-output-available", "toolCallId": "c1", "output": {"temp": 21}},
                    {"type": "text-delta", "delta": "It is "},
                    {"type": "text-delta", "delta": "21C"},
                )
            ],
            mode=ChatMode(),
        )
        seen = []
        coordinator.on_event(seen.append)

        result = await coordinator.run("Weather?")

        assert transport.calls[0][0] == "chat"
        assert "flowGraph" not in transport.calls[0][1]
        assert result.status == AttemptStatus.COMPLETED
        assert result.state.completed_step_ids == ("tool-c1",)
        assert result.texts == {"assistant": "It is 21C"}
        assert [type(e) for e in seen] == [
            ToolCallStart,
            StepStart,
            ToolCallInput,
            ToolCallOutput,
            StepComplete,
        ]

    @pytest.mark.asyncio
    async def test_flow_authoring_graph_commands(self, make_coordinator):
        """Test builder commands reach graph listeners in order."""
        coordinator, _ = make_coordinator(
            [
                b'0:"Adding a Slack step"\n',
                sse({"type": "flow-command", "command": {"type": "add_node", "nodeType": "slack"}}),
                sse({"type": "flow-command",
                     "command": {"type": "connect_nodes", "source": "a", "target": "n9"}}),
                b'd:{"finishReason":"stop"}\n',
            ],
            mode=FlowAuthoringMode(),
        )
        commands = []
        coordinator.on_graph_command(commands.append)

        result = await coordinator.run("Post to Slack")

        assert [c["type"] for c in commands] == ["add_node", "connect_nodes"]
        assert result.texts == {"assistant": "Adding a Slack step"}
        assert result.status == AttemptStatus.COMPLETED


class TestConfirmation:
    """Test the human-approval side channel."""

    OUTPUT = {
        "requiresConfirmation": True,
        "activityId": "act-1",
        "actionType": "GMAIL_SEND_EMAIL",
        "actionLabel": "Send email",
        "details": {"to": "bob@example.com"},
    }

    def _script(self):
        return [sse(start("d"), complete("d", self.OUTPUT), FLOW_COMPLETE)]

    @pytest.mark.asyncio
    async def test_approve(self, make_coordinator):
        """Test approval completes the held step with the response merged in."""
        approvals = AsyncMock()
        approvals.resolve.return_value = {"executed": True, "messageId": "m-1"}
        coordinator, _ = make_coordinator(self._script(), approvals=approvals)
        required = asyncio.Event()
        requests = []

        def on_required(confirmation):
            requests.append(confirmation)
            required.set()

        coordinator.on_confirmation_required(on_required)

        task = asyncio.create_task(coordinator.run("Reply to Bob"))
        await required.wait()

        assert coordinator.pending_confirmation.activity_id == "act-1"
        assert coordinator.state.completed_step_ids == ()
        assert coordinator.state.current_step_id == "d"

        await coordinator.resolve_confirmation(True)
        result = await task

        approvals.resolve.assert_awaited_once_with("act-1", True)
        assert requests[0].action_label == "Send email"
        assert result.state.completed_step_ids == ("d",)
        assert coordinator.pending_confirmation is None
        output = coordinator.cache.get("d")
        assert output["executed"] is True
        assert output["messageId"] == "m-1"
        assert output["requiresConfirmation"] is False

    @pytest.mark.asyncio
    async def test_reject(self, make_coordinator):
        """Test rejection marks the step skipped and caches nothing."""
        approvals = AsyncMock()
        approvals.resolve.return_value = {"executed": False}
        coordinator, _ = make_coordinator(self._script(), approvals=approvals)
        required = asyncio.Event()
        coordinator.on_confirmation_required(lambda c: required.set())

        task = asyncio.create_task(coordinator.run("Reply to Bob"))
        await required.wait()
        await coordinator.resolve_confirmation(False)
        result = await task

        approvals.resolve.assert_awaited_once_with("act-1", False)
        assert result.state.skipped_step_ids == ("d",)
        assert "d" not in coordinator.cache
        assert result.status == AttemptStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_local_resolution_without_client(self, make_coordinator):
        """Test confirmations resolve locally when no approval client is set."""
        coordinator, _ = make_coordinator(self._script())
        required = asyncio.Event()
        coordinator.on_confirmation_required(lambda c: required.set())

        task = asyncio.create_task(coordinator.run("Go"))
        await required.wait()
        await coordinator.resolve_confirmation(True)
        result = await task

        assert result.state.completed_step_ids == ("d",)
        assert coordinator.cache.get("d")["requiresConfirmation"] is False

    @pytest.mark.asyncio
    async def test_approval_failure_keeps_pending(self, make_coordinator):
        """Test a failed approval request leaves the step waiting."""
        approvals = AsyncMock()
        approvals.resolve.side_effect = ApprovalError("Activity expired")
        coordinator, _ = make_coordinator(self._script(), approvals=approvals)
        required = asyncio.Event()
        coordinator.on_confirmation_required(lambda c: required.set())

        task = asyncio.create_task(coordinator.run("Go"))
        await required.wait()

        with pytest.raises(ApprovalError, match="expired"):
            await coordinator.resolve_confirmation(True)
        assert coordinator.pending_confirmation is not None

        coordinator.cancel()
        result = await task

        assert result.status == AttemptStatus.CANCELLED
        assert coordinator.pending_confirmation is None

    @pytest.mark.asyncio
    async def test_nothing_pending(self, make_coordinator):
        """Test resolving without a pending confirmation raises."""
        coordinator, _ = make_coordinator()
        with pytest.raises(NoPendingConfirmationError):
            await coordinator.resolve_confirmation(True)
