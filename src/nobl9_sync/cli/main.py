"""
nobl9-sync CLI

Entry point for the command-line interface.

Usage:
    python -m src.nobl9_sync.cli.main process --repo-path . --dry-run
    python -m src.nobl9_sync.cli.main resolve alice@example.com bob@example.com
    python -m src.nobl9_sync.cli.main check
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from src.common.exceptions import SyncError
from src.common.logging import configure_logging
from src.common.resilience import OperationContext, RetryExecutor
from src.common.telemetry import init_telemetry, shutdown_telemetry
from src.nobl9_sync.cli.exit_codes import ExitCode, exit_code_for
from src.nobl9_sync.client import ManagementClient
from src.nobl9_sync.config import SyncConfig
from src.nobl9_sync.manifests import discover_manifest_files
from src.nobl9_sync.processor import ManifestProcessor, ProcessingResult
from src.nobl9_sync.resolution import BatchOutcome, BatchResolver, IdentityCache

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="nobl9-sync",
    help="nobl9-sync - Apply Nobl9 manifests from a repository",
    no_args_is_help=True,
)


def _load_config(**overrides: object) -> SyncConfig:
    """Load configuration, exiting with the config code on failure."""
    try:
        config = SyncConfig.from_action_inputs(**overrides)
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(ExitCode.CONFIG)

    secret = config.client_secret.get_secret_value() if config.client_secret else None
    configure_logging(config.log_level, config.log_format, secrets=[secret] if secret else None)
    if config.telemetry_enabled:
        init_telemetry(otlp_endpoint=config.otlp_endpoint)
    return config


def _build_client(config: SyncConfig) -> ManagementClient:
    try:
        return ManagementClient.from_config(config, executor=RetryExecutor())
    except SyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(exit_code_for(e))


def _run(coro: object) -> object:
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    finally:
        shutdown_telemetry()


def write_github_output(name: str, value: object) -> None:
    """Append an output for later workflow steps when running in GitHub Actions."""
    path = os.getenv("GITHUB_OUTPUT")
    if not path:
        return
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{name}={value}\n")


@app.command()
def process(
    repo_path: Annotated[
        Path | None,
        typer.Option("--repo-path", "-r", help="Repository root to scan"),
    ] = None,
    file_pattern: Annotated[
        str | None,
        typer.Option("--file-pattern", "-p", help="Glob pattern for manifest files"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Validate against the API without applying"),
    ] = False,
    validate_only: Annotated[
        bool,
        typer.Option("--validate-only", help="Decode and resolve only"),
    ] = False,
    allow_unresolved: Annotated[
        bool,
        typer.Option("--allow-unresolved", help="Apply even if some users are unresolved"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Apply valid files even if others failed to decode"),
    ] = False,
) -> None:
    """
    Scan the repository, resolve users and apply Nobl9 manifests.
    """
    # Flags only switch behavior on; environment and action inputs stay in effect otherwise
    config = _load_config(
        repo_path=str(repo_path) if repo_path else None,
        file_pattern=file_pattern,
        dry_run=dry_run or None,
        validate_only=validate_only or None,
        allow_unresolved=allow_unresolved or None,
        force=force or None,
    )

    try:
        paths = discover_manifest_files(config.repo_path, config.file_pattern)
    except SyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(ExitCode.FILE)

    if not paths:
        console.print(f"[yellow]No YAML files found matching {config.file_pattern}[/yellow]")
        write_github_output("files_processed", 0)
        return

    client = _build_client(config)
    result = _run(_process_async(config, client, paths))
    assert isinstance(result, ProcessingResult)

    _print_processing_result(result, config)
    for name, value in result.stats().items():
        write_github_output(name, str(value).lower() if isinstance(value, bool) else value)

    if not result.is_success:
        raise typer.Exit(exit_code_for(result.errors[0]))


async def _process_async(
    config: SyncConfig,
    client: ManagementClient,
    paths: list[Path],
) -> ProcessingResult:
    """Async implementation of the process command."""
    ctx = OperationContext.background()
    async with client:
        resolver = BatchResolver(
            client,
            IdentityCache(ttl=config.cache_ttl_seconds),
            max_concurrency=config.resolver_max_concurrency,
        )
        processor = ManifestProcessor(
            client,
            resolver,
            allow_unresolved=config.allow_unresolved,
            force=config.force,
        )
        return await processor.process_files(
            ctx, paths, dry_run=config.dry_run, validate_only=config.validate_only
        )


def _print_processing_result(result: ProcessingResult, config: SyncConfig) -> None:
    mode = "validate only" if config.validate_only else "dry run" if config.dry_run else "apply"
    console.print(f"\n[bold]Processing Summary[/bold] ({mode})")

    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in result.stats().items():
        table.add_row(name.replace("_", " "), str(value))
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]Error:[/red] {error}")

    if result.is_success:
        console.print("[green]All manifests processed successfully[/green]")


@app.command()
def resolve(
    emails: Annotated[
        list[str],
        typer.Argument(help="Email addresses to resolve"),
    ],
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-c", help="Maximum concurrent lookups", min=1),
    ] = None,
) -> None:
    """
    Resolve email addresses to Nobl9 user IDs.
    """
    config = _load_config(resolver_max_concurrency=concurrency)
    client = _build_client(config)
    batch = _run(_resolve_async(config, client, emails))
    assert isinstance(batch, BatchOutcome)

    table = Table(title="Identity Resolution")
    table.add_column("Email", style="cyan")
    table.add_column("User ID")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Cached", justify="center")

    for outcome in batch.results:
        if outcome.resolved:
            status = "[green]resolved[/green]"
        elif outcome.cancelled:
            status = "[yellow]cancelled[/yellow]"
        else:
            status = f"[red]{outcome.error}[/red]"
        table.add_row(
            outcome.input,
            outcome.resolved_value or "-",
            status,
            str(outcome.attempts),
            "yes" if outcome.from_cache else "",
        )
    console.print(table)
    console.print(
        f"Resolved {batch.resolved_count}/{batch.total} "
        f"in {batch.duration:.2f}s ({batch.error_count} failed)"
    )

    failed = [r.error for r in batch.results if not r.resolved and r.error is not None]
    if failed:
        raise typer.Exit(exit_code_for(failed[0]))


async def _resolve_async(
    config: SyncConfig,
    client: ManagementClient,
    emails: list[str],
) -> BatchOutcome:
    async with client:
        resolver = BatchResolver(
            client,
            IdentityCache(ttl=config.cache_ttl_seconds),
            max_concurrency=config.resolver_max_concurrency,
        )
        return await resolver.resolve_many(OperationContext.background(), emails)


@app.command()
def check() -> None:
    """
    Check connectivity and credentials against the Nobl9 API.
    """
    config = _load_config()
    client = _build_client(config)
    try:
        organization = _run(_check_async(client))
    except SyncError as e:
        console.print(f"[red]Connection failed:[/red] {e}")
        raise typer.Exit(exit_code_for(e))
    console.print(f"[green]Connected[/green] to organization [bold]{organization}[/bold]")


async def _check_async(client: ManagementClient) -> str:
    async with client:
        return await client.check_connection(OperationContext(timeout=60.0))


@app.command()
def version() -> None:
    """Show version information."""
    from src import __version__

    typer.echo(f"nobl9-sync version {__version__}")


if __name__ == "__main__":
    app()
