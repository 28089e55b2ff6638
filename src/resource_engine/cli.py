"""
Resource engine CLI.

Commands:
- serve:     Run the HTTP adapter with uvicorn
- list:      Show declared resources
- show:      Print one declaration as JSON
- define:    Declare a resource from a JSON file
- update:    Replace a resource's declaration from a JSON file
- drop:      Delete a resource and all its records
- endpoints: Show the generated CRUD endpoints of a resource

All commands read their configuration from the environment (DATABASE_URL,
RESOURCE_ENGINE_*).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from resource_engine import __version__
from resource_engine.runtime.config import get_config
from resource_engine.runtime.engine import ResourceEngine
from resource_engine.runtime.envelope import ApiResponse
from resource_engine.runtime.logging import setup_logging

app = typer.Typer(
    help="Declare resources at runtime and serve CRUD endpoints for them",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"resource-engine {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version"),
    ] = None,
) -> None:
    """Resource engine CLI main callback for global options."""


def _engine() -> ResourceEngine:
    config = get_config()
    setup_logging(config.log_dir, config.log_level)
    return ResourceEngine.from_config(config)


def _read_declaration(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read declaration {escape(str(path))}: {escape(str(e))}[/red]")
        raise typer.Exit(1) from None


def _finish(response: ApiResponse) -> None:
    """Print a failure and exit non-zero, or print the success message."""
    if not response.success:
        console.print(f"[red]{escape(response.error or '')}: {escape(response.message or '')}[/red]")
        raise typer.Exit(1)
    if response.message:
        console.print(f"[green]{escape(response.message)}[/green]")


@app.command(name="serve")
def serve_command(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Enable auto-reload (dev only)")] = False,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    config = get_config()
    setup_logging(config.log_dir, config.log_level)
    console.print(f"[bold]Resource engine[/bold] on http://{host}:{port}{config.api_prefix}")
    uvicorn.run(
        "resource_engine.runtime.routes:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


@app.command(name="list")
def list_command(
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List declared resources."""
    engine = _engine()
    try:
        response = engine.list_resources()
    finally:
        engine.close()
    _finish(response)

    resources = response.data or []
    if output_json:
        console.print_json(json.dumps(resources))
        return

    if not resources:
        console.print("[dim]No resources declared.[/dim]")
        return

    table = Table(title="Resources")
    table.add_column("Name")
    table.add_column("Table", style="dim")
    table.add_column("Fields")
    table.add_column("Updated", style="dim")

    for resource in resources:
        table.add_row(
            resource["name"],
            resource["tableName"],
            ", ".join(f"{f['name']}:{f['type']}" for f in resource["fields"]),
            resource["updatedAt"],
        )

    console.print(table)
    console.print(f"\n[dim]{len(resources)} resource(s)[/dim]")


@app.command(name="show")
def show_command(
    name: Annotated[str, typer.Argument(help="Resource name")],
) -> None:
    """Print a resource declaration as JSON."""
    engine = _engine()
    try:
        response = engine.get_resource(name)
    finally:
        engine.close()
    _finish(response)
    console.print_json(json.dumps(response.data))


@app.command(name="define")
def define_command(
    path: Annotated[Path, typer.Argument(help="JSON file with the declaration")],
) -> None:
    """Declare a new resource and create its table."""
    declaration = _read_declaration(path)
    engine = _engine()
    try:
        response = engine.define_resource(declaration)
    finally:
        engine.close()
    _finish(response)


@app.command(name="update")
def update_command(
    name: Annotated[str, typer.Argument(help="Resource name")],
    path: Annotated[Path, typer.Argument(help="JSON file with the new declaration")],
) -> None:
    """Replace a resource declaration and alter its table."""
    declaration = _read_declaration(path)
    engine = _engine()
    try:
        response = engine.update_resource(name, declaration)
    finally:
        engine.close()
    _finish(response)


@app.command(name="drop")
def drop_command(
    name: Annotated[str, typer.Argument(help="Resource name")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete a resource, its table and every record in it."""
    if not yes:
        typer.confirm(f"Drop resource '{name}' and all its data?", abort=True)
    engine = _engine()
    try:
        response = engine.delete_resource(name)
    finally:
        engine.close()
    _finish(response)


@app.command(name="endpoints")
def endpoints_command(
    name: Annotated[str, typer.Argument(help="Resource name")],
) -> None:
    """Show the CRUD endpoints generated for a resource."""
    engine = _engine()
    try:
        response = engine.resource_endpoints(name)
    finally:
        engine.close()
    _finish(response)

    table = Table(title=f"Endpoints for {name}")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Description", style="dim")
    for endpoint in response.data["endpoints"]:
        table.add_row(endpoint["method"], endpoint["path"], endpoint["description"])
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
