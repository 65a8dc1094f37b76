"""Chat command - one tool-calling turn with an agent."""

import asyncio
from typing import Optional

import typer

from flowpilot.api.cli.output_formatter import FlowConsole
from flowpilot.api.cli.session import attach_console, configure_logging, drive
from flowpilot.application.factory import CoordinatorFactory
from flowpilot.core.domain.errors import FlowpilotError
from flowpilot.core.domain.models import AttemptStatus


def chat(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent to talk to"),
    message: str = typer.Argument(..., help="User message"),
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Continue an existing conversation"
    ),
):
    """Send one message in chat mode and stream the reply.

    Examples:
        flowpilot chat agent-123 "What's on my calendar today?"

        flowpilot --debug chat agent-123 "Draft a reply" -c conv-9
    """
    global_opts = ctx.obj or {}
    profile = global_opts.get("profile", "dev")
    debug = global_opts.get("debug", False)
    configure_logging(debug)

    flow_console = FlowConsole(debug=debug)
    flow_console.print_system_message(f"Agent: {agent_id}", "system")
    flow_console.print_debug(f"Profile: {profile}")
    flow_console.print_divider()

    try:
        coordinator = CoordinatorFactory().create_coordinator(
            mode="chat",
            agent_id=agent_id,
            conversation_id=conversation_id,
            profile=profile,
        )
    except (FlowpilotError, ValueError) as e:
        flow_console.print_error(str(e))
        raise typer.Exit(1)

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
    if result.status != AttemptStatus.COMPLETED:
        raise typer.Exit(1)
