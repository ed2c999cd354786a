# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress
from ..core.config import Config
from ..core.models import segment_types_from_name
from ..services.analysis_service import AnalysisService, RunState
from ..services.context import build_context

app = typer.Typer(help="Media Analyzer - Detect intros and end credits in your video library.")
console = Console()


def _load_config(config_path: str) -> Config:
    try:
        config = Config.load(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1)
    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    return config


def _format_time(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes):02d}:{secs:05.2f}"


@app.command("analyze")
def analyze(config_path: str = "config.yaml", type: str = typer.Option("all", help="intro, credits or all")):
    """
    Detect intros and/or end credits for every queued item.
    """
    config = _load_config(config_path)
    try:
        segment_types = segment_types_from_name(type)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    try:
        context = build_context(config)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)
    service = AnalysisService(context, config_path)

    with Progress() as progress:
        task = progress.add_task("[green]Analyzing...", total=100)

        def report(value: float, message: str):
            progress.update(task, completed=value, description=f"[green]{message}...")

        results = service.run(segment_types, report)

    table = Table(title="Analysis Summary")
    table.add_column("Segment", style="magenta")
    table.add_column("State", style="green")
    table.add_column("Queued", justify="right")
    table.add_column("Detected", justify="right", style="cyan")
    for segment_type, result in results.items():
        table.add_row(segment_type.value, result.state.value, str(result.total_queued), str(result.processed))
    console.print(table)

    if any(r.state == RunState.CANCELLED for r in results.values()):
        console.print("[yellow]Analysis was cancelled before it finished.[/yellow]")


@app.command("segments")
def list_segments(config_path: str = "config.yaml", type: str = typer.Option("all", help="intro, credits or all")):
    """
    List detected segments.
    """
    config = _load_config(config_path)
    try:
        segment_types = segment_types_from_name(type)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    context = build_context(config)

    table = Table(title="Detected Segments")
    table.add_column("Series", style="magenta")
    table.add_column("Name")
    table.add_column("Type", style="green")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Analyzer", style="cyan")

    count = 0
    for segment_type in segment_types:
        for segment in context.segment_repo.get_all(segment_type):
            table.add_row(
                segment.series_name,
                segment.name,
                segment.type.value,
                _format_time(segment.start),
                _format_time(segment.end),
                segment.analyzer_type.value,
            )
            count += 1

    console.print(table)
    console.print(f"\nFound [bold]{count}[/bold] segments.")


@app.command("blacklist")
def list_blacklist(config_path: str = "config.yaml"):
    """
    List items excluded from further analysis.
    """
    config = _load_config(config_path)
    context = build_context(config)
    entries = context.metadata_repo.get_blacklist()

    table = Table(title="Blacklisted Items")
    table.add_column("Series", style="magenta")
    table.add_column("Name")
    table.add_column("Type", style="green")
    table.add_column("Note", style="yellow")
    for entry in entries:
        table.add_row(entry.series_name, entry.name, entry.type.value, entry.analyzer_note)
    console.print(table)
    console.print(f"\n[bold]{len(entries)}[/bold] blacklisted entries.")


@app.command("reset-blacklist")
def reset_blacklist(config_path: str = "config.yaml"):
    """
    Remove every blacklist entry so those items are analyzed again.
    """
    config = _load_config(config_path)
    context = build_context(config)
    removed = context.metadata_repo.clear_blacklist()
    context.log_repo.add("BLACKLIST", "RESET", f"Removed {removed} entries")
    console.print(f"[green]Removed {removed} blacklist entries.[/green]")


if __name__ == "__main__":
    app()
