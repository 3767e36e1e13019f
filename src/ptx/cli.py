"""CLI commands for applying and rolling back patches."""

from __future__ import annotations

from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from .config import (
    DEFAULT_CONFIG_NAME,
    PtxConfig,
    configure_logging,
    copy_config_template,
    load_config,
    write_config,
)
from .errors import ContentConflictError, PatchingError
from .installation.patch_info import BASE
from .runner import ContentVerificationPolicy, PatchTool

APP_HELP = "Apply and roll back patches on a modular server installation."

app = typer.Typer(help=APP_HELP)

_CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the ptx configuration file.",
)
_HOME_OPTION = typer.Option(
    None,
    "--home",
    help="Installation home (overrides installation.home from the config).",
)
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


def _prepare(config: str, home: Optional[str], verbose: bool) -> tuple[PtxConfig, PatchTool]:
    try:
        settings = load_config(Path(config))
    except PatchingError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    configure_logging(settings.logging, verbose=verbose)
    root = Path(home).resolve() if home else settings.resolve_home()
    if not root.is_dir():
        raise typer.BadParameter(f"Installation home not found: {root}", param_hint="--home")
    return settings, PatchTool.for_home(root, settings.installation.version)


def _fail(error: PatchingError) -> NoReturn:
    typer.echo(f"Error: {error}")
    if isinstance(error, ContentConflictError):
        for item in error.items:
            typer.echo(f"  conflict: {item}")
        typer.echo("Use --override-all, --override PATH or --preserve PATH to resolve conflicts.")
    raise typer.Exit(code=1) from error


@app.command()
def init(
    config: str = _CONFIG_OPTION,
    home: Optional[str] = typer.Option(None, "--home", help="Installation home to record."),
    version: Optional[str] = typer.Option(None, "--version", help="Base version of the installation."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    data = copy_config_template()
    if home:
        data["installation"]["home"] = home
    if version:
        data["installation"]["version"] = version
    write_config(config_path, data)
    typer.echo(f"Wrote {config_path}.")


@app.command()
def info(
    config: str = _CONFIG_OPTION,
    home: Optional[str] = _HOME_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Show the active version chain."""
    _, tool = _prepare(config, home, verbose)
    try:
        current = tool.current_info()
    except PatchingError as error:
        _fail(error)
    typer.echo(f"Version: {current.version}")
    typer.echo(f"Cumulative patch: {current.cumulative_id}")
    if current.one_off_ids:
        typer.echo(f"One-off patches: {', '.join(current.one_off_ids)}")
    else:
        typer.echo("One-off patches: none")


@app.command()
def history(
    config: str = _CONFIG_OPTION,
    home: Optional[str] = _HOME_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """List the patches in effect, most recent first."""
    _, tool = _prepare(config, home, verbose)
    try:
        entries = tool.history()
    except PatchingError as error:
        _fail(error)
    if not entries:
        typer.echo(f"No patches applied ({BASE}).")
        return
    for entry in entries:
        description = entry.descriptor.description if entry.descriptor else ""
        suffix = f" - {description}" if description else ""
        typer.echo(f"- {entry.patch_id} [{entry.patch_type.value}]{suffix}")


@app.command()
def apply(
    patch: Path = typer.Argument(..., help="Patch directory or .zip archive."),
    config: str = _CONFIG_OPTION,
    home: Optional[str] = _HOME_OPTION,
    override_all: Optional[bool] = typer.Option(
        None,
        "--override-all/--strict",
        help="Overwrite content that differs from what the patch expects.",
    ),
    override: List[str] = typer.Option(
        None,
        "--override",
        help="Overwrite this item even if it was changed locally (repeatable).",
    ),
    preserve: List[str] = typer.Option(
        None,
        "--preserve",
        help="Keep this item as it is and skip its modification (repeatable).",
    ),
    backup_config: Optional[bool] = typer.Option(
        None,
        "--backup-config/--no-backup-config",
        help="Copy configuration XML files into the patch history.",
    ),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Apply a patch to the installation."""
    settings, tool = _prepare(config, home, verbose)
    policy = ContentVerificationPolicy.selective(
        override=override or (),
        preserve=preserve or (),
        override_all=settings.patching.override_all if override_all is None else override_all,
    )
    backup = settings.patching.backup_configuration if backup_config is None else backup_config
    try:
        result = tool.apply(patch, policy, backup_config=backup)
    except PatchingError as error:
        _fail(error)
    typer.echo(f"Applied {result.patch_id}.")
    typer.echo(f"Cumulative patch: {result.patch_info.cumulative_id}")
    typer.echo(f"One-off patches: {', '.join(result.patch_info.one_off_ids) or 'none'}")


@app.command()
def rollback(
    patch_id: str = typer.Argument(..., help="Id of the patch to roll back."),
    config: str = _CONFIG_OPTION,
    home: Optional[str] = _HOME_OPTION,
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Refuse to restore files that changed since the patch was applied.",
    ),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Roll back a patch and every patch applied after it."""
    _, tool = _prepare(config, home, verbose)
    try:
        results = tool.rollback(patch_id, override_all=not strict)
    except PatchingError as error:
        _fail(error)
    for result in results:
        typer.echo(f"Rolled back {result.patch_id}.")
    current = tool.current_info()
    typer.echo(f"Cumulative patch: {current.cumulative_id}")
    typer.echo(f"One-off patches: {', '.join(current.one_off_ids) or 'none'}")


if __name__ == "__main__":
    app()
