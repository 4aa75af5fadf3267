"""CLI interface for the thinkrelay websocket relay."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import relay as relay_mod
from . import supervisor
from .config import RelayConfig, load_config
from .engine import OllamaClient
from .errors import RelayError

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


@click.group()
@click.option(
    "-c", "--config",
    default=None,
    help="Path to a thinkrelay YAML config file (default: $THINKRELAY_CONFIG, "
         "then ~/.thinkrelay/config.yaml if present)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    show_default=True,
)
@click.pass_context
def cli(ctx, config, log_level):
    """thinkrelay: stream a local reasoning model to the browser over websockets."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log_level"] = log_level
    _setup_logging(log_level)


def _load(ctx) -> RelayConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def serve(ctx):
    """Start the engine (unless SPAWN_OLLAMA=false) and the websocket relay."""
    config = _load(ctx)

    engine_proc = None
    if config.spawn_engine:
        console.print("[bold]Starting Ollama serve...[/bold]")
        try:
            engine_proc = supervisor.start_engine(config)
        except (ValueError, RuntimeError, OSError) as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        console.print(f"  PID {engine_proc.pid}, logs: {engine_proc.log_path}")
        if not supervisor.wait_until_ready(config.engine_url, process=engine_proc):
            console.print(
                f"[yellow]Engine not answering at {config.engine_url} yet; "
                "sessions will fail until it does.[/yellow]"
            )
    else:
        console.print("[dim]Skipping Ollama serve (SPAWN_OLLAMA=false)[/dim]")

    console.print(f"[bold]Starting thinkrelay on {config.host}:{config.port}...[/bold]")
    console.print(f"  Model:  {config.model}")
    console.print(f"  Engine: {config.engine_url}")

    import uvicorn
    app = relay_mod.create_app(config)
    try:
        uvicorn.run(app, host=config.host, port=config.port, log_level=ctx.obj["log_level"])
    finally:
        relay_mod.reset_relay_state()
        if engine_proc is not None:
            console.print("[bold]Shutting down Ollama serve...[/bold]")
            code = engine_proc.stop()
            console.print(f"  Exit code: {code}, logs kept at {engine_proc.log_path}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show engine health and locally available models."""
    config = _load(ctx)

    async def _status():
        client = OllamaClient(config.engine_url)
        try:
            health = await client.check_health()
            models = await client.list_models() if health.get("alive") else []
            return health, models
        finally:
            await client.close()

    try:
        health, models = asyncio.run(_status())
    except RelayError as e:
        console.print(f"[red]{e.kind}: {e.message}[/red]")
        sys.exit(1)

    if health.get("alive"):
        console.print(f"[green bold]● Engine[/green bold] {config.engine_url}")
    else:
        console.print(
            f"[red bold]● Engine[/red bold] {config.engine_url}: "
            f"{health.get('error', 'unreachable')}"
        )
        sys.exit(1)

    table = Table(title="Local Models")
    table.add_column("Name")
    table.add_column("Configured")
    for name in models:
        table.add_row(name, "[green]yes[/green]" if name == config.model else "")
    console.print(table)
    if config.model not in models:
        console.print(
            f"[yellow]Configured model {config.model} is not pulled yet; "
            "the first session will pull it.[/yellow]"
        )


@cli.command()
@click.argument("model", required=False)
@click.pass_context
def pull(ctx, model):
    """Make sure MODEL (default: the configured model) is present on the engine."""
    config = _load(ctx)
    model = model or config.model

    async def _pull():
        client = OllamaClient(config.engine_url)
        try:
            await client.ensure_model(model)
        finally:
            await client.close()

    console.print(f"[bold]Pulling {model}...[/bold]")
    try:
        asyncio.run(_pull())
    except RelayError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
    console.print(f"[green]{model} is ready.[/green]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
