"""Viking Skill CLI - sync and browse the remote skill cache."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vikingskill.config import ConfigError, VikingConfig, load_config, validate_config
from vikingskill.registry import RegistryEntry, SkillRegistry

app = typer.Typer(
    name="vikingskill",
    help="Sync, list, search and load remote Viking skills.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

_state: dict = {"config_path": None, "verbose": False}


@app.callback()
def main(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (default: ~/.config/vikingskill/config.yml)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Sync, list, search and load remote Viking skills."""
    _state["config_path"] = config_path
    _state["verbose"] = verbose


def _setup_logging(config: VikingConfig) -> None:
    level = logging.DEBUG if _state["verbose"] else getattr(logging, config.log_level.name)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_config() -> VikingConfig:
    try:
        config = load_config(_state["config_path"])
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    return config


def _open_registry() -> SkillRegistry:
    """Load config, then build and initialize a registry."""
    config = _load_config()
    errors = validate_config(config)
    if errors:
        console.print("[red]Viking API not configured:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(code=1)

    _setup_logging(config)
    registry = SkillRegistry(config)
    try:
        registry.initialize()
    except Exception:
        registry.close()
        raise
    return registry


def _skills_payload(entries: list[RegistryEntry]) -> dict:
    return {
        "success": True,
        "count": len(entries),
        "skills": [
            {"id": e.id, "name": e.name, "description": e.description, "source": e.source}
            for e in entries
        ],
    }


def _print_entries(entries: list[RegistryEntry], registry: SkillRegistry, title: str) -> None:
    console.print()
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("State")

    for entry in entries:
        state = registry.state(entry.id).value
        color = "green" if state == "ready" else "yellow"
        table.add_row(entry.id, entry.name, entry.latest_version, entry.source, f"[{color}]{state}[/{color}]")

    console.print(table)
    console.print()
    console.print(f"[dim]Found {len(entries)} skill(s)[/dim]")


@app.command("list")
def list_skills(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List all skills in the catalog.

    Example:

    \b
        vikingskill list
        vikingskill list --json
    """
    with _open_registry() as registry:
        entries = registry.list_all()

        if json_output:
            typer.echo(json.dumps(_skills_payload(entries), indent=2))
            return

        if not entries:
            console.print("[yellow]No skills found[/yellow]")
            return
        _print_entries(entries, registry, "Viking Skills")


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to match against skill names and ids"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Search skills by name or id.

    Example:

    \b
        vikingskill search pdf
    """
    with _open_registry() as registry:
        entries = registry.search(query)

        if json_output:
            typer.echo(json.dumps(_skills_payload(entries), indent=2))
            return

        if not entries:
            console.print(f"[yellow]No skills match:[/yellow] {query}")
            return
        _print_entries(entries, registry, f"Skills matching '{query}'")


@app.command()
def load(
    name: str = typer.Argument(..., help="Skill id to load"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Load a skill's SKILL.md, downloading it if needed.

    Example:

    \b
        vikingskill load infographic-creator
    """
    with _open_registry() as registry:
        result = registry.load_content(name)

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        if not result.found:
            raise typer.Exit(code=1)
        return

    if not result.found:
        console.print(f"[red]Error:[/red] {result.error}")
        raise typer.Exit(code=1)

    console.print(Panel(
        Text(result.content or ""),
        title=f"{name}@{result.version}",
        border_style="blue",
    ))


@app.command()
def reload(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Reconcile the local cache against the catalog.

    Example:

    \b
        vikingskill reload
    """
    # Opening the registry runs a full reconciliation pass
    with _open_registry() as registry:
        count = registry.count
        report = registry.last_sync

    if json_output:
        ok = bool(report and report.catalog_ok)
        typer.echo(json.dumps({
            "success": ok,
            "message": "Skills reloaded successfully" if ok else (report.catalog_error if report else ""),
            "count": count,
        }, indent=2))
        return

    if report and not report.catalog_ok:
        console.print(f"[yellow]Catalog unavailable, kept {count} skill(s):[/yellow] {report.catalog_error}")
        return

    console.print(f"[green]✓ Skills reloaded:[/green] {count}")
    if report:
        if report.downloaded:
            console.print(f"  Downloaded: {', '.join(report.downloaded)}")
        if report.failed:
            console.print(f"  [yellow]Unavailable:[/yellow] {', '.join(report.failed)}")
        if report.pruned:
            console.print(f"  Pruned: {', '.join(report.pruned)}")
        if report.skipped:
            console.print(f"  [yellow]Skipped unsafe ids:[/yellow] {', '.join(repr(s) for s in report.skipped)}")


@app.command()
def cache() -> None:
    """Show skill versions materialized on disk (no network)."""
    from vikingskill.cache import VersionCache

    config = _load_config()
    _setup_logging(config)

    version_cache = VersionCache(config.cache_path)
    try:
        if not version_cache.cache_root.is_dir():
            console.print(f"[yellow]Cache directory not found:[/yellow] {version_cache.cache_root}")
            return

        cached = sorted(version_cache.scan_disk().values(), key=lambda c: (c.skill_id, c.version))
    finally:
        version_cache.close()

    if not cached:
        console.print("[yellow]No cached skills[/yellow]")
        return

    console.print()
    table = Table(title="Cached Versions", show_header=True, header_style="bold")
    table.add_column("Skill")
    table.add_column("Version")
    table.add_column("Path")

    for item in cached:
        table.add_row(item.skill_id, item.version, str(item.path))

    console.print(table)
    console.print()
    console.print(f"[dim]Cache root: {config.cache_path}[/dim]")


@app.command("config")
def show_config() -> None:
    """Show the resolved configuration (secret key hidden)."""
    config = _load_config()

    console.print()
    console.print("[bold]Configuration:[/bold]")
    for key, value in config.to_dict().items():
        console.print(f"  {key}: {value}")
    console.print(f"  sk: {'********' if config.sk else '[red]not set[/red]'}")

    errors = validate_config(config)
    if errors:
        console.print()
        console.print("[yellow]Problems:[/yellow]")
        for error in errors:
            console.print(f"  • {error}")


if __name__ == "__main__":
    app()
