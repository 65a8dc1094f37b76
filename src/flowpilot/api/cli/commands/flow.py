"""Flow command - execute an agent's flow graph, retrying failed steps."""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from flowpilot.api.cli.output_formatter import FlowConsole
from flowpilot.api.cli.session import attach_console, configure_logging, drive
from flowpilot.application.coordinator import ExecutionCoordinator
from flowpilot.application.factory import CoordinatorFactory, load_flow_graph
from flowpilot.core.domain.errors import FlowpilotError
from flowpilot.core.domain.models import AttemptResult, AttemptStatus


async def execute_with_retries(
    coordinator: ExecutionCoordinator,
    flow_console: FlowConsole,
    message: str,
    retries: int,
) -> AttemptResult:
    """Run the flow, then resume from the failed step up to `retries` times."""
    result = await drive(coordinator, flow_console, lambda: coordinator.run(message))

    remaining = retries
    while result.status == AttemptStatus.FAILED and remaining > 0:
        remaining -= 1
        flow_console.print_system_message(
            f"Retrying from failed step ({retries - remaining}/{retries})", "warning"
        )
        retried = await drive(coordinator, flow_console, coordinator.retry_from_failed)
        if retried is None:
            break
        result = retried
    return result


def flow(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent that owns the flow"),
    graph_file: Path = typer.Argument(..., help="Flow graph (YAML or JSON)"),
    message: str = typer.Argument(..., help="User message that triggers the flow"),
    retries: int = typer.Option(
        0, "--retries", "-r", min=0, help="Retry from the failed step up to N times"
    ),
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Continue an existing conversation"
    ),
):
    """Execute a flow graph step by step.

    Examples:
        flowpilot flow agent-123 flows/inbox.yaml "New email from Bob"

        flowpilot -p prod flow agent-123 flows/inbox.json "Go" --retries 2
    """
    global_opts = ctx.obj or {}
    profile = global_opts.get("profile", "dev")
    debug = global_opts.get("debug", False)
    configure_logging(debug)

    flow_console = FlowConsole(debug=debug)

    try:
        graph = load_flow_graph(graph_file)
        coordinator = CoordinatorFactory().create_coordinator(
            mode="flow",
            agent_id=agent_id,
            conversation_id=conversation_id,
            flow_graph=graph,
            profile=profile,
        )
    except (FlowpilotError, FileNotFoundError, ValueError) as e:
        flow_console.print_error(str(e))
        raise typer.Exit(1)

    flow_console.print_system_message(
        f"Flow: {graph_file.name} ({len(graph.nodes)} steps)", "system"
    )
    flow_console.print_divider()
    attach_console(coordinator, flow_console)

    try:
        result = asyncio.run(
            execute_with_retries(coordinator, flow_console, message, retries)
        )
    except FlowpilotError as e:
        flow_console.print_error(str(e))
        raise typer.Exit(1)

    flow_console.print_divider()
    flow_console.print_result(result, coordinator.steps)
    if result.status != AttemptStatus.COMPLETED:
        raise typer.Exit(1)
