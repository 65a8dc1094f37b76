"""Shared plumbing for CLI commands: logging setup and turn driving."""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Optional

import structlog
import typer

from flowpilot.api.cli.output_formatter import FlowConsole
from flowpilot.application.coordinator import ExecutionCoordinator
from flowpilot.core.domain.errors import ApprovalError
from flowpilot.core.domain.models import AttemptResult, PendingConfirmation


def configure_logging(debug: bool) -> None:
    """DEBUG with --debug, WARNING otherwise."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def attach_console(coordinator: ExecutionCoordinator, flow_console: FlowConsole) -> None:
    """Render the coordinator's events, text and graph commands."""
    coordinator.on_text_update(flow_console.print_text)
    coordinator.on_event(
        lambda event: flow_console.print_event(
            event, coordinator.step(getattr(event, "step_id", ""))
        )
    )
    coordinator.on_graph_command(flow_console.print_graph_command)


async def _ask_confirmation(
    coordinator: ExecutionCoordinator,
    flow_console: FlowConsole,
    confirmation: PendingConfirmation,
) -> None:
    flow_console.print_confirmation(confirmation)
    approved = await asyncio.to_thread(
        typer.confirm, f"Execute {confirmation.action_label}?", default=False
    )
    try:
        await coordinator.resolve_confirmation(approved)
    except ApprovalError as e:
        flow_console.print_error(f"Approval failed: {e}")
        coordinator.cancel()


async def drive(
    coordinator: ExecutionCoordinator,
    flow_console: FlowConsole,
    attempt: Callable[[], Awaitable[Optional[AttemptResult]]],
) -> Optional[AttemptResult]:
    """
    Run one attempt with Ctrl+C mapped to cancel() and interactive approvals.

    Args:
        coordinator: Coordinator executing the attempt
        flow_console: Console the attempt is rendered to
        attempt: Zero-argument coroutine factory (run or retry_from_failed)

    Returns:
        The attempt's result (None when retry had nothing to do)
    """
    loop = asyncio.get_running_loop()
    prompts: set[asyncio.Task] = set()

    def on_confirmation(confirmation: PendingConfirmation) -> None:
        task = loop.create_task(_ask_confirmation(coordinator, flow_console, confirmation))
        prompts.add(task)
        task.add_done_callback(prompts.discard)

    unsubscribe = coordinator.on_confirmation_required(on_confirmation)
    try:
        loop.add_signal_handler(signal.SIGINT, coordinator.cancel)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        # No signal support on this loop (Windows, non-main thread)
        handles_sigint = False

    try:
        return await attempt()
    finally:
        unsubscribe()
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        for task in prompts:
            task.cancel()
