"""
Conductor - CLI Entry Point.

Usage:
    conductor config show        Print the merged configuration
    conductor config validate    Validate configuration files
    conductor config recover     Reset a corrupted configuration
    conductor discover           Run a discovery session
    conductor status             Show configuration and stored state
    conductor modes              List available modes
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from conductor import __version__
from conductor.config.loader import ConfigResolver
from conductor.config.models import ConductorConfig
from conductor.core.enums import ModeName
from conductor.core.errors import ConfigValidationError, CoreError
from conductor.modes.discovery import DiscoveryMode
from conductor.modes.registry import ModeRegistry, build_default_registry
from conductor.storage.files import FileOperations
from conductor.telemetry.logging_setup import configure_logging

logger = logging.getLogger("conductor.cli")

DEFAULT_ROOT = Path(".conductor")
EXIT_WORDS = {"exit", "quit"}

app = typer.Typer(
    name="conductor",
    help="Conductor - stateful conversational modes for project discovery and planning.",
    add_completion=False,
)
config_app = typer.Typer(help="Inspect, validate and repair configuration.", add_completion=False)
app.add_typer(config_app, name="config")


@dataclass(slots=True)
class Runtime:
    files: FileOperations
    resolver: ConfigResolver
    registry: ModeRegistry
    verbose: bool = False


def _runtime(ctx: typer.Context) -> Runtime:
    return ctx.find_root().obj


def _fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _load_config(runtime: Runtime) -> ConductorConfig:
    """Load configuration and point logging at the configured file."""

    config = runtime.resolver.get()
    runtime.files.defaults = runtime.files.defaults.merged(max_size=config.security.max_file_size)
    configure_logging(
        log_file=runtime.files.root / config.logging.file,
        level="DEBUG" if runtime.verbose else config.logging.level.value,
        console=runtime.verbose,
    )
    return config


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(DEFAULT_ROOT, "--root", "-r", help="Runtime root directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Conductor command line."""
    files = FileOperations(root)
    configure_logging(
        log_file=files.root / "logs" / "conductor.log",
        level="DEBUG" if verbose else "INFO",
        console=verbose,
    )
    resolver = ConfigResolver(files)
    ctx.obj = Runtime(
        files=files,
        resolver=resolver,
        registry=build_default_registry(files, resolver),
        verbose=verbose,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Conductor version {__version__}")


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the merged configuration as JSON (API key masked)."""
    runtime = _runtime(ctx)
    try:
        payload = _load_config(runtime).to_json_dict()
    except CoreError as exc:
        _fail(str(exc))
        return
    if payload["api"].get("api_key"):
        payload["api"]["api_key"] = "***"
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@config_app.command("validate")
def config_validate(ctx: typer.Context) -> None:
    """Validate the layered configuration and list every problem found."""
    runtime = _runtime(ctx)
    try:
        runtime.resolver.reload()
    except ConfigValidationError as exc:
        errors = exc.errors
    except CoreError as exc:
        errors = [str(exc)]
    else:
        typer.secho("Configuration is valid.", fg=typer.colors.GREEN)
        return

    typer.secho("Configuration is invalid:", fg=typer.colors.RED, err=True)
    for error in errors:
        typer.echo(f"  - {error}", err=True)
    typer.echo("Run `conductor config recover` to reset it to defaults.", err=True)
    raise typer.Exit(1)


@config_app.command("recover")
def config_recover(ctx: typer.Context) -> None:
    """Reset configuration to defaults when it cannot be loaded."""
    runtime = _runtime(ctx)
    try:
        report = runtime.resolver.validate_and_recover()
    except CoreError as exc:
        _fail(f"Recovery failed: {exc}")
        return
    if not report.recovered:
        typer.secho("Configuration is valid; nothing to recover.", fg=typer.colors.GREEN)
        return
    typer.secho("Configuration was reset to defaults. Problems found:", fg=typer.colors.YELLOW)
    for error in report.errors:
        typer.echo(f"  - {error}")


@app.command()
def discover(
    ctx: typer.Context,
    prompt: Optional[str] = typer.Argument(None, help="Answer to the first discovery question"),
) -> None:
    """Run (or resume) a discovery session. Type 'exit' to stop."""
    runtime = _runtime(ctx)
    try:
        config = _load_config(runtime)
        controller = runtime.registry.create(ModeName.DISCOVERY.value)
        controller.initialize()
    except CoreError as exc:
        _fail(str(exc))
        return

    pending = [prompt] if prompt else []
    try:
        reply = controller.execute_with_result("")
        while True:
            if reply.success:
                typer.echo(f"\n{reply.data}")
            else:
                typer.secho(f"\nError: {reply.error}", fg=typer.colors.RED, err=True)

            record = controller.load_state()
            if record is not None and DiscoveryMode.is_complete(record):
                break

            if pending:
                user_input = pending.pop(0)
                typer.echo(f"\nYou: {user_input}")
            else:
                try:
                    user_input = typer.prompt("\nYou", default="", show_default=False)
                except typer.Abort:
                    typer.echo("\nSession interrupted.")
                    break
            if user_input.strip().lower() in EXIT_WORDS:
                break
            reply = controller.execute_with_result(user_input)
    except CoreError as exc:
        _fail(str(exc))
        return
    finally:
        try:
            runtime.registry.destroy_all()
        except CoreError as exc:
            logger.error("Cleanup failed", extra={"error": str(exc)})
            typer.secho(f"Error: cleanup failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)

    typer.echo(f"\nSession saved. Project document: {config.file_paths.project_file}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show a configuration summary and stored state per mode."""
    runtime = _runtime(ctx)
    try:
        config = _load_config(runtime)
        typer.echo(f"Root:          {runtime.files.root}")
        typer.echo(f"Config:        v{config.version} (modified {config.last_modified.isoformat()})")
        typer.echo(f"Default mode:  {config.default_mode.value}")
        typer.echo(f"State dir:     {config.file_paths.state_dir}")
        typer.echo(f"Log file:      {config.logging.file}")
        typer.echo("")
        typer.echo("Stored state:")
        for descriptor in runtime.registry.available():
            ids = runtime.registry.create(descriptor.mode_id).state_store.list_ids()
            latest = ids[-1] if ids else "-"
            typer.echo(f"  {descriptor.mode_id:<12} {len(ids):>3} record(s)  latest: {latest}")
    except CoreError as exc:
        _fail(str(exc))


@app.command()
def modes(ctx: typer.Context) -> None:
    """List available modes, highest load priority first."""
    runtime = _runtime(ctx)
    for descriptor in runtime.registry.available():
        typer.echo(f"{descriptor.mode_id:<12} priority={descriptor.load_priority:<3} {descriptor.description}")


if __name__ == "__main__":
    app()
