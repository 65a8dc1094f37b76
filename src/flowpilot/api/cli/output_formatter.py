"""
Console output for the flowpilot CLI.

Renders execution events, streamed text, graph commands and attempt summaries
with rich.
"""

import json
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from flowpilot.core.domain.events import (
    EvalResult,
    ExecutionEvent,
    FlowError,
    StepComplete,
    StepError,
    StepReused,
    StepSkipped,
    StepStart,
    ToolCallInput,
)
from flowpilot.core.domain.models import (
    AttemptResult,
    AttemptStatus,
    PendingConfirmation,
    StepRecord,
)

_STATUS_STYLES = {
    "completed": "[green]completed[/green]",
    "reused": "[cyan]reused[/cyan]",
    "error": "[red]error[/red]",
    "skipped": "[yellow]skipped[/yellow]",
}

_RESULT_STYLES = {
    AttemptStatus.FAILED: "red",
    AttemptStatus.CANCELLED: "yellow",
    AttemptStatus.SUPERSEDED: "yellow",
}


class FlowConsole:
    """Rich console adapter for streaming agent turns."""

    def __init__(self, debug: bool = False, console: Optional[Console] = None):
        self.debug = debug
        self.console = console or Console()
        self._printed: dict[str, int] = {}
        self._open_step: Optional[str] = None

    def print_system_message(self, message: str, style: str = "info") -> None:
        colors = {"info": "blue", "system": "magenta", "warning": "yellow"}
        self.console.print(f"[{colors.get(style, 'white')}]{message}[/]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[bold green]{message}[/bold green]")

    def print_error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def print_debug(self, message: str) -> None:
        if self.debug:
            self.console.print(f"[dim]{message}[/dim]")

    def print_divider(self) -> None:
        self._end_text()
        self.console.rule(style="dim")

    def print_text(self, step_id: str, text: str) -> None:
        """Print the part of a step's text that has not been shown yet."""
        shown = self._printed.get(step_id, 0)
        if len(text) < shown:
            # Loop re-run restarted the step's buffer
            shown = 0
        if len(text) == shown:
            return
        if self._open_step != step_id:
            self._end_text()
            self._open_step = step_id
        self.console.print(text[shown:], end="", markup=False, highlight=False)
        self._printed[step_id] = len(text)

    def print_event(self, event: ExecutionEvent, step: Optional[StepRecord] = None) -> None:
        label = step.label if step else getattr(event, "step_id", "")
        if isinstance(event, StepStart):
            self._end_text()
            self.console.print(f"[bold]>[/bold] {step.label if step else event.label}")
        elif isinstance(event, StepComplete):
            self._end_text()
            self.print_debug(f"  done: {label}")
        elif isinstance(event, StepReused):
            self._end_text()
            self.console.print(f"[cyan]=[/cyan] {label} [dim](reused)[/dim]")
        elif isinstance(event, StepError):
            self._end_text()
            self.console.print(f"[red]x[/red] {escape(label)}: {escape(event.error)}")
        elif isinstance(event, StepSkipped):
            self._end_text()
            reason = f" ({event.reason})" if event.reason else ""
            self.console.print(f"[yellow]-[/yellow] {label} [dim]skipped{reason}[/dim]")
        elif isinstance(event, EvalResult):
            verdict = "[green]passed[/green]" if event.passed else "[red]failed[/red]"
            score = f" score={event.score:.2f}" if event.score is not None else ""
            self.console.print(f"  eval {label}: {verdict}{score}")
        elif isinstance(event, ToolCallInput):
            self.print_debug(f"  {event.name} {escape(json.dumps(event.input, default=str))}")
        elif isinstance(event, FlowError):
            self._end_text()
            self.print_error(event.error)

    def print_graph_command(self, command: dict[str, Any]) -> None:
        self._end_text()
        command_type = command.get("type", "?")
        rest = {k: v for k, v in command.items() if k != "type"}
        self.console.print(
            f"[magenta]{escape(str(command_type))}[/magenta] {escape(json.dumps(rest, default=str))}",
            highlight=False,
        )

    def print_confirmation(self, confirmation: PendingConfirmation) -> None:
        self._end_text()
        table = Table(show_header=False, box=None)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")
        for key, value in confirmation.details.items():
            if isinstance(value, (list, dict)):
                value = json.dumps(value, indent=2, default=str)
            table.add_row(str(key), str(value))
        self.console.print(
            Panel(
                table,
                title=f"[bold yellow]Confirm: {confirmation.action_label}[/bold yellow]",
                subtitle=confirmation.action_type,
            )
        )

    def print_result(self, result: AttemptResult, steps: list[StepRecord]) -> None:
        """Summary table of the attempt's step statuses."""
        self._end_text()
        summary = f"Attempt {result.generation}: {result.status.value}"
        if result.status == AttemptStatus.COMPLETED:
            self.print_success(summary)
        else:
            self.console.print(f"[bold {_RESULT_STYLES[result.status]}]{summary}[/]")
        if result.error:
            self.print_error(result.error)

        if not steps:
            return
        table = Table(title="Steps")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Kind", style="white")
        table.add_column("Status")
        for step in steps:
            status = result.state.status_of(step.id)
            table.add_row(step.label, step.kind.value, _STATUS_STYLES.get(status, "[dim]-[/dim]"))
        self.console.print(table)

    def _end_text(self) -> None:
        if self._open_step is not None:
            self.console.print()
            self._open_step = None
