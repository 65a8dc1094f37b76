"""Build command - ask the flow-authoring assistant to edit a graph."""

import asyncio
from typing import Optional

import typer

from flowpilot.api.cli.output_formatter import FlowConsole
from flowpilot.api.cli.session import attach_console, configure_logging, drive
from flowpilot.application.factory import CoordinatorFactory
from flowpilot.core.domain.errors import FlowpilotError
from flowpilot.core.domain.models import AttemptStatus


def build(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent whose flow is edited"),
    message: str = typer.Argument(..., help="What to build or change"),
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Continue an existing conversation"
    ),
):
    """Stream the builder assistant's reply and print its graph commands.

    Examples:
        flowpilot build agent-123 "When an email arrives, summarize it to Slack"
    """
    global_opts = ctx.obj or {}
    profile = global_opts.get("profile", "dev")
    debug = global_opts.get("debug", False)
    configure_logging(debug)

    flow_console = FlowConsole(debug=debug)
    flow_console.print_system_message(f"Flow builder for agent {agent_id}", "system")
    flow_console.print_divider()

    try:
        coordinator = CoordinatorFactory().create_coordinator(
            mode="flow_authoring",
            agent_id=agent_id,
            conversation_id=conversation_id,
            profile=profile,
        )
    except (FlowpilotError, ValueError) as e:
        flow_console.print_error(str(e))
        raise typer.Exit(1)

    commands: list[dict] = []
    coordinator.on_graph_command(commands.append)
    attach_console(coordinator, flow_console)

    try:
        result = asyncio.run(
            drive(coordinator, flow_console, lambda: coordinator.run(message))
        )
    except FlowpilotError as e:
        flow_console.print_error(str(e))
        raise typer.Exit(1)

    flow_console.print_divider()
    flow_console.print_result(result, coordinator.steps)
    flow_console.print_system_message(f"{len(commands)} graph command(s) proposed", "info")
    if result.status != AttemptStatus.COMPLETED:
        raise typer.Exit(1)
