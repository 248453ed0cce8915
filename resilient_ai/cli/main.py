"""
CLI interface for the resilient AI orchestrator.

Provides command-line access to key management, quota status and requests.
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from resilient_ai.config.loader import DEFAULT_CONFIG_ENV, load_orchestrator_config
from resilient_ai.core.credentials import mask
from resilient_ai.core.errors import InvalidCredentialError
from resilient_ai.sdk.orchestrator import Orchestrator, RequestOptions
from resilient_ai.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_OPTION_HELP = f"Path to the providers YAML file (defaults to ${DEFAULT_CONFIG_ENV})"


def _resolve_config(config: Optional[str]) -> str:
    path = config or os.environ.get(DEFAULT_CONFIG_ENV)
    if not path:
        console.print(
            f"[red]Error:[/] no configuration given. Pass --config or set {DEFAULT_CONFIG_ENV}."
        )
        sys.exit(EXIT_CODE_FAIL)
    return path


def _load_orchestrator(config: Optional[str]) -> Orchestrator:
    path = _resolve_config(config)
    try:
        return Orchestrator.from_config(path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _parse_params(pairs: List[str], raw_json: Optional[str]) -> Dict[str, Any]:
    """Build request params from ``key=value`` pairs and an optional JSON object.

    Values made only of digits become integers; everything else stays a
    string. Comma-separated strings are accepted by list fields as-is.
    """
    params: Dict[str, Any] = {}
    if raw_json:
        try:
            decoded = json.loads(raw_json)
        except ValueError as e:
            raise typer.BadParameter(f"--json is not valid JSON: {e}")
        if not isinstance(decoded, dict):
            raise typer.BadParameter("--json must be a JSON object")
        params.update(decoded)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got '{pair}'")
        params[key.strip()] = int(value) if value.strip().isdigit() else value
    return params


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Resilient AI orchestrator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Resilient AI - Use --help to see available commands")


@app.command()
def init(
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Validate the configuration and initialize the local store."""
    path = _resolve_config(config)
    try:
        loaded = load_orchestrator_config(path)
        initialize_schema(loaded.settings.db_path)
        console.print(
            f"[green]✓[/] Store initialized at {loaded.settings.db_path} "
            f"({len(loaded.providers)} providers configured)"
        )
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing store:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Show the current mode and remaining quota per provider."""
    orchestrator = _load_orchestrator(config)
    snapshot = orchestrator.status()

    console.print(f"\n[bold]Mode:[/bold] {snapshot['mode']}")
    table = Table(title="Provider quota")
    table.add_column("Provider")
    table.add_column("Priority", justify="right")
    table.add_column("Tier")
    table.add_column("Key")
    table.add_column("Today", justify="right")
    table.add_column("This month", justify="right")
    for row in snapshot["providers"]:
        table.add_row(
            row["id"],
            str(row["priority"]),
            row["tier"],
            "[green]yes[/]" if row["has_credential"] else "[yellow]no[/]",
            f"{row['daily_used']}/{row['daily_limit']}",
            f"{row['monthly_used']}/{row['monthly_limit']}",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("set-key")
def set_key(
    provider: str = typer.Argument(..., help="Provider id from the configuration"),
    key: str = typer.Argument(..., help="API key to store"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Validate and store an API key for a provider."""
    orchestrator = _load_orchestrator(config)
    if provider not in {p.id for p in orchestrator.providers}:
        console.print(f"[red]Error:[/] unknown provider '{provider}'")
        sys.exit(EXIT_CODE_FAIL)
    try:
        orchestrator.vault.put(provider, key)
    except InvalidCredentialError as e:
        console.print(f"[red]Invalid key:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Stored key for {provider}: {mask(key.strip())}")
    sys.exit(EXIT_CODE_PASS)


@app.command("clear-keys")
def clear_keys(
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Remove every stored API key."""
    orchestrator = _load_orchestrator(config)
    removed = orchestrator.vault.clear_all()
    console.print(f"[green]✓[/] Removed {removed} stored key(s)")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def request(
    task: str = typer.Argument(..., help="Task name: recipe, palette or code_review"),
    param: List[str] = typer.Option([], "--param", "-p", help="Request parameter as key=value"),
    raw_json: Optional[str] = typer.Option(None, "--json", help="Request parameters as a JSON object"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the response cache"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """
    Run one request through the orchestrator and print the result.

    Always produces a result for valid input: when no provider can answer,
    the local fallback does. Exits with an error only for invalid input.
    """
    params = _parse_params(param, raw_json)
    orchestrator = _load_orchestrator(config)

    result = orchestrator.request({"task": task, **params}, RequestOptions(no_cache=no_cache))
    if not result.success:
        console.print(f"[red]Request failed ({result.error}):[/] {result.error_detail}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[bold]Source:[/bold] {result.source}  [dim]({result.latency_ms:.0f}ms)[/]")
    console.print_json(json.dumps(result.data, ensure_ascii=False))
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
