"""Flowpilot CLI entry point."""

import typer
from rich.console import Console

from flowpilot.api.cli.commands import build, chat, flow

app = typer.Typer(
    name="flowpilot",
    help="Flowpilot - drive agent chat, flow and builder turns from the terminal",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("chat", help="One tool-calling chat turn")(chat.chat)
app.command("flow", help="Execute a flow graph")(flow.flow)
app.command("build", help="Flow-authoring assistant")(build.build)


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("dev", "--profile", "-p", help="Configuration profile"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output and logging"),
):
    """Flowpilot CLI."""
    # Store global options in context for subcommands
    ctx.obj = {"profile": profile, "debug": debug}


@app.command()
def version():
    """Show Flowpilot version."""
    from flowpilot import __version__

    console.print(f"[bold blue]Flowpilot[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
