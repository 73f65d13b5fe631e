"""
Ollie CLI - Command Line Interface
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import click

from ollie import __version__
from ollie.client import OllamaClient
from ollie.config import Settings
from ollie.core import EventBus, ProgressStats, PullResult, Puller, format_size
from ollie.core.constants import CANCELLED_MESSAGE
from ollie.core.events import PULL_ERROR, PULL_PROGRESS
from ollie.core.models import PullStatus, new_pull_id
from ollie.exceptions import OllieError


@click.group()
@click.version_option(version=__version__, prog_name="Ollie")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Settings file (default ~/.config/ollie/settings.json)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[Path]):
    """Ollie - pull and manage models on an Ollama server"""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )
    ctx.obj = {"config_path": config_path}


def _load_settings(ctx: click.Context) -> Settings:
    from rich.console import Console

    try:
        return Settings.load(ctx.obj.get("config_path"))
    except OllieError as e:
        Console().print(f"[bold red]❌ {e}[/bold red]")
        raise SystemExit(1)


@cli.command()
@click.argument("name")
@click.option("-s", "--server", "server_url", help="Server URL (default from settings)")
@click.option("--id", "pull_id", help="Pull identifier (generated if omitted)")
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress output")
@click.pass_context
def pull(ctx: click.Context, name: str, server_url: Optional[str], pull_id: Optional[str], quiet: bool):
    """Pull a model from the server

    Press Ctrl-C to cancel the pull.
    """
    from rich.console import Console

    console = Console()
    settings = _load_settings(ctx)

    console.print(f"[bold green]🚀 Ollie v{__version__}[/bold green]")
    console.print(f"[dim]📥 Model:[/dim] {name}")
    console.print(f"[dim]🌐 Server:[/dim] {server_url or settings.base_url}")

    result = asyncio.run(_pull_with_progress(name, pull_id, server_url, settings, quiet, console))

    if result.success:
        console.print("\n[bold green]✅ Pull complete![/bold green]")
    elif result.status == PullStatus.CANCELLED:
        console.print(f"\n[bold yellow]⏹  {result.error}[/bold yellow]")
        raise SystemExit(130)
    else:
        console.print(f"\n[bold red]❌ Pull failed: {result.error}[/bold red]")
        raise SystemExit(1)


async def _pull_with_progress(
    name: str,
    pull_id: Optional[str],
    server_url: Optional[str],
    settings: Settings,
    quiet: bool,
    console,
) -> PullResult:
    """Run one pull, rendering its progress events with rich"""
    from rich.progress import (
        Progress,
        SpinnerColumn,
        TextColumn,
        BarColumn,
        DownloadColumn,
        TransferSpeedColumn,
        TimeRemainingColumn,
    )

    pull_id = pull_id or new_pull_id()
    bus = EventBus()

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.fields[label]}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
        disable=quiet,
    )
    layer_tasks: dict[str, int] = {}
    last_status: Optional[str] = None

    def on_progress(event: str, payload: dict) -> None:
        nonlocal last_status
        stats = ProgressStats.from_record(payload["progress"])

        if stats.is_parse_error:
            progress.console.print(f"[yellow]⚠️  Unreadable progress line:[/yellow] {payload['progress'].get('raw')}")
            return

        if stats.is_transfer and stats.digest:
            task_id = layer_tasks.get(stats.digest)
            if task_id is None:
                label = stats.digest.split(":")[-1][:12]
                task_id = progress.add_task("Pulling", label=label, total=stats.total)
                layer_tasks[stats.digest] = task_id
            progress.update(task_id, completed=stats.completed, total=stats.total)
            return

        if stats.status and stats.status != last_status:
            last_status = stats.status
            progress.console.print(f"[dim]⏳ {stats.status}[/dim]")

    def on_error(event: str, payload: dict) -> None:
        progress.console.print(f"[red]{payload.get('error')}[/red]")

    bus.subscribe(on_progress, PULL_PROGRESS)
    bus.subscribe(on_error, PULL_ERROR)

    async with Puller(settings=settings, sink=bus) as puller:
        with progress:
            pull_task = asyncio.ensure_future(
                puller.start_pull(name, pull_id=pull_id, server_url=server_url)
            )
            interrupt = InterruptHandler(puller, pull_id, pull_task, progress.console)

            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, interrupt)
            except (NotImplementedError, RuntimeError):
                # No signal handlers on this platform; Ctrl-C aborts the run instead
                pass

            try:
                return await pull_task
            except asyncio.CancelledError:
                if not interrupt.aborted:
                    raise
                return PullResult.fail(CANCELLED_MESSAGE, pull_id=pull_id, status=PullStatus.CANCELLED)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except (NotImplementedError, RuntimeError):
                    pass


class InterruptHandler:
    """
    SIGINT handler for a running pull.

    The first Ctrl-C asks the pull to stop before its next chunk; a second
    one cancels the task outright, for when the server has stalled.
    """

    def __init__(self, puller: Puller, pull_id: str, task: asyncio.Future, console):
        self.puller = puller
        self.pull_id = pull_id
        self.task = task
        self.console = console
        self.presses = 0

    @property
    def aborted(self) -> bool:
        return self.presses > 1

    def __call__(self) -> None:
        self.presses += 1
        if self.presses == 1:
            self.puller.cancel_pull(self.pull_id)
            self.console.print("[yellow]Cancelling... press Ctrl-C again to abort now[/yellow]")
        else:
            self.task.cancel()


@cli.command(name="list")
@click.option("-s", "--server", "server_url", help="Server URL (default from settings)")
@click.pass_context
def list_models(ctx: click.Context, server_url: Optional[str]):
    """List models installed on the server"""
    from rich.console import Console
    from rich.table import Table

    console = Console()
    settings = _load_settings(ctx)

    async def fetch():
        async with OllamaClient(settings=settings, server_url=server_url) as client:
            return await client.list_models()

    try:
        models = asyncio.run(fetch())
    except OllieError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise SystemExit(1)

    if not models:
        console.print("[dim]No models installed[/dim]")
        return

    table = Table(title=f"Installed Models ({len(models)})")
    table.add_column("Name", style="cyan")
    table.add_column("Size", style="green")
    table.add_column("Parameters", style="yellow")
    table.add_column("Quantization", style="white")
    table.add_column("Modified", style="dim")

    for model in models:
        details = model.details
        table.add_row(
            model.name,
            format_size(model.size),
            details.parameter_size if details else "",
            details.quantization_level if details else "",
            model.modified_at[:16].replace("T", " "),
        )

    console.print(table)


@cli.command()
@click.argument("name")
@click.option("-s", "--server", "server_url", help="Server URL (default from settings)")
@click.pass_context
def show(ctx: click.Context, name: str, server_url: Optional[str]):
    """Show details of a model"""
    from rich.console import Console
    from rich.panel import Panel

    console = Console()
    settings = _load_settings(ctx)

    async def fetch():
        async with OllamaClient(settings=settings, server_url=server_url) as client:
            return await client.show_model(name)

    try:
        info = asyncio.run(fetch())
    except OllieError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise SystemExit(1)

    for key in ("parameters", "template", "license", "modelfile"):
        value = info.get(key)
        if value:
            console.print(Panel(str(value).strip(), title=key.capitalize(), expand=False))


@cli.command(name="rm")
@click.argument("name")
@click.option("-s", "--server", "server_url", help="Server URL (default from settings)")
@click.pass_context
def remove(ctx: click.Context, name: str, server_url: Optional[str]):
    """Delete a model from the server"""
    from rich.console import Console

    console = Console()
    settings = _load_settings(ctx)

    async def delete():
        async with OllamaClient(settings=settings, server_url=server_url) as client:
            return await client.delete_model(name)

    result = asyncio.run(delete())
    if result.success:
        console.print(f"[green]✅ Deleted {name}[/green]")
    else:
        console.print(f"[bold red]❌ {result.error}[/bold red]")
        raise SystemExit(1)


@cli.command()
@click.option("--server-url", help="Set the server URL")
@click.option("--default-model", help="Set the default model")
@click.pass_context
def config(ctx: click.Context, server_url: Optional[str], default_model: Optional[str]):
    """Show or update settings"""
    from rich.console import Console
    from rich.table import Table

    console = Console()
    settings = _load_settings(ctx)

    if server_url or default_model:
        if server_url:
            settings.server_url = server_url
        if default_model:
            settings.default_model = default_model
        try:
            settings.save()
        except OllieError as e:
            console.print(f"[bold red]❌ {e}[/bold red]")
            raise SystemExit(1)
        console.print("[green]✅ Settings saved[/green]")

    table = Table(title="Ollie Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Server URL", settings.server_url)
    table.add_row("Default Model", settings.default_model or "(none)")
    table.add_row("Theme", settings.theme or "(none)")

    console.print(table)


if __name__ == "__main__":
    cli()
