"""CLI for the automation orchestrator.

Runs the pipeline against a JSON requirement document and inspects the
run log.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from .circuit_breaker import CircuitBreakerRegistry
from .database import AutomationDB
from .extractor import FileRequirementSource, StructuredRequirementExtractor
from .gateway import HttpDeploymentGateway
from .generator import StandardMetadataGenerator
from .models import AutomationResult, RunOptions, RunStatus
from .orchestrator import AutomationOrchestrator
from .project_config import ProjectConfig, create_default_config, resolve_project_for_cli
from .retry import RetryHandler
from .targets import InMemoryTargetRegistry, TargetSystem

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.FAILED: 1,
    RunStatus.PARTIAL: 2,
}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Automation Orchestrator - generate, deploy and verify configuration changes."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _resolve(db: str | None) -> tuple[Path, ProjectConfig | None]:
    try:
        return resolve_project_for_cli(db)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@cli.command("init")
@click.option(
    "--project",
    "-p",
    "project_path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Path to the project directory (default: current directory)",
)
@click.option("--name", "-n", default=None, help="Project name (defaults to directory name)")
@click.option("--force", is_flag=True, help="Overwrite existing .automation/ configuration")
def init_command(project_path: str, name: str | None, force: bool) -> None:
    """Initialize a project: .automation/ with config.toml and the run log."""
    path = Path(project_path)

    try:
        config = create_default_config(path, name=name, force=force)
    except FileExistsError:
        click.echo(
            f"Error: Project already initialized at {path / '.automation'}. "
            "Use --force to overwrite.",
            err=True,
        )
        sys.exit(1)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    asyncio.run(_init_db(config.resolve_db_path(path)))
    click.echo(f"Initialized automation project '{config.name}' at {path}")


async def _init_db(db_path: Path) -> None:
    async with AutomationDB(db_path):
        pass


@cli.command()
@click.argument("source")
@click.option("--target", "-t", "target_ref", required=True, help="Target system id")
@click.option("--dry-run", is_flag=True, help="Stop after validation; never deploy")
@click.option("--production", is_flag=True, help="Deploy to a production target directly")
@click.option("--include-context", is_flag=True, help="Fill in missing owning objects")
@click.option("--default-object", default=None, help="Owning object used with --include-context")
@click.option("--db", type=click.Path(), help="Database path")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def run(
    source: str,
    target_ref: str,
    dry_run: bool,
    production: bool,
    include_context: bool,
    default_object: str | None,
    db: str | None,
    as_json: bool,
) -> None:
    """Run the pipeline for the requirement document SOURCE.

    Exit code is 0 for SUCCESS, 1 for FAILED and 2 for PARTIAL.
    """
    db_path, config = _resolve(db)
    options = RunOptions(
        source_ref=source,
        target_ref=target_ref,
        deploy_to_production=production,
        dry_run=dry_run,
        include_context=include_context,
    )
    result = asyncio.run(_run_async(db_path, config, options, default_object))
    _print_result(result, as_json)
    sys.exit(EXIT_CODES.get(result.status, 1))


async def _run_async(
    db_path: Path,
    config: ProjectConfig | None,
    options: RunOptions,
    default_object: str | None,
) -> AutomationResult:
    config = config or ProjectConfig(name="default")
    gateways: dict[str, HttpDeploymentGateway] = {}

    def gateway_for(target: TargetSystem) -> HttpDeploymentGateway:
        if target.id not in gateways:
            gateways[target.id] = HttpDeploymentGateway(target.endpoint)
        return gateways[target.id]

    async with AutomationDB(db_path) as db:
        orchestrator = AutomationOrchestrator(
            FileRequirementSource(),
            StructuredRequirementExtractor(default_object=default_object),
            StandardMetadataGenerator(),
            db,
            InMemoryTargetRegistry(config.targets),
            gateway_for,
            breakers=CircuitBreakerRegistry(config.circuit_breaker),
            retry=RetryHandler(config.retry),
            config=config.deployment,
        )
        try:
            return await orchestrator.run(options)
        finally:
            for gateway in gateways.values():
                await gateway.close()


def _print_result(result: AutomationResult, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Run {result.run_id}: {result.status.value}")
    if result.deployment_id:
        click.echo(f"Deployment: {result.deployment_id}")
    if result.metadata:
        click.echo(f"Units: {len(result.metadata)}")
        for unit in result.metadata:
            click.echo(f"  - {unit.kind.value} {unit.full_name}")
    for error in result.errors:
        click.echo(f"Error: {error}", err=True)
    for warning in result.warnings:
        click.echo(f"Warning: {warning}")


@cli.command()
@click.argument("run_id")
@click.option("--db", type=click.Path(), help="Database path")
@click.option("--json", "as_json", is_flag=True, help="Print the run as JSON")
def status(run_id: str, db: str | None, as_json: bool) -> None:
    """Show a run and its ordered steps."""
    db_path, _ = _resolve(db)
    run_data = asyncio.run(_get_run(db_path, run_id))
    if run_data is None:
        click.echo(f"Error: Automation run {run_id} not found", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(run_data, indent=2, default=str))
        return

    click.echo(f"Run {run_data['id']} ({run_data['source_ref']}): {run_data['status']}")
    click.echo(f"Started: {run_data['started_at']}")
    if run_data.get("completed_at"):
        click.echo(f"Completed: {run_data['completed_at']}")
    if run_data.get("error"):
        click.echo(f"Error: {run_data['error']}")
    click.echo("\nSteps:")
    for step in run_data["steps"]:
        line = f"  {step['step_type']:<9} {step['status']:<10} {step['started_at']}"
        if step.get("error"):
            line += f"  {step['error']}"
        click.echo(line)


async def _get_run(db_path: Path, run_id: str) -> dict[str, Any] | None:
    async with AutomationDB(db_path) as db:
        return await db.get_run(run_id)


@cli.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in RunStatus], case_sensitive=False),
    default=None,
    help="Only runs with this status",
)
@click.option("--source", "source_ref", default=None, help="Only runs for this source")
@click.option("--limit", default=10, type=int, help="Maximum runs to show (default: 10)")
@click.option("--db", type=click.Path(), help="Database path")
def runs(status_filter: str | None, source_ref: str | None, limit: int, db: str | None) -> None:
    """List recent runs, newest first."""
    db_path, _ = _resolve(db)
    rows = asyncio.run(
        _list_runs(db_path, source_ref, status_filter.upper() if status_filter else None, limit)
    )
    if not rows:
        click.echo("No runs found")
        return
    for row in rows:
        click.echo(f"{row['id']}  {row['status']:<8} {row['started_at']}  {row['source_ref']}")


async def _list_runs(
    db_path: Path, source_ref: str | None, status_filter: str | None, limit: int
) -> list[dict[str, Any]]:
    async with AutomationDB(db_path) as db:
        return await db.list_runs(source_ref=source_ref, status=status_filter, limit=limit)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
@click.option("--port", default=8421, type=int, help="Port to bind to (default: 8421)")
@click.option("--db", type=click.Path(), default=None, help="Database path")
@click.option("--reload", is_flag=True, help="Enable auto-reload on code changes")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error", "critical"], case_sensitive=False),
    default="info",
    help="Logging level (default: info)",
)
def serve(host: str, port: int, db: str | None, reload: bool, log_level: str) -> None:
    """Start the read-only API server."""
    db_path, _ = _resolve(db)

    from .api.serve import run_server

    run_server(host=host, port=port, db_path=str(db_path), reload=reload, log_level=log_level)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
