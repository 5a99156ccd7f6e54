"""Command-line interface for envbuddel."""

from __future__ import annotations

import json
import logging
import sys
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from envbuddel.exceptions import EnvbuddelError
from envbuddel.keysource import KeyOrigin, ResolvedKey, resolve_key
from envbuddel.operations import (
    InfoReport,
    PathStatus,
    run_decrypt,
    run_encrypt,
    run_info,
    run_init,
)
from envbuddel.settings import Settings

console = Console(soft_wrap=True)

logger = logging.getLogger("envbuddel")


def _setup_logging(verbose: int) -> None:
    """Route envbuddel logs through rich.

    Args:
        verbose: Number of -v flags
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logger.handlers.clear()
    logger.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
    )
    logger.setLevel(level)
    logger.propagate = False


class CommandState:
    """Per-invocation state shared by the subcommands."""

    def __init__(self, settings: Settings, key: str | None) -> None:
        self.settings = settings
        self.key = key

    def resolve(self) -> ResolvedKey:
        return resolve_key(
            self.key, self.settings.key_from_env(), self.settings.keyfile
        )


pass_state = click.make_pass_decorator(CommandState)


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(str(error))}", highlight=False)
    sys.exit(1)


def _log_key_origin(resolved: ResolvedKey, settings: Settings) -> None:
    if resolved.origin is KeyOrigin.KEYFILE:
        logger.info(f"Key was loaded from {settings.keyfile}")
    elif resolved.origin is KeyOrigin.ENVIRONMENT:
        logger.info(f"Key was loaded from {settings.key_env}")
    else:
        logger.info("Key was supplied with --key")


@click.group()
@click.version_option(package_name="envbuddel")
@click.option(
    "--keyfile",
    "-k",
    type=click.Path(dir_okay=False),
    help="Path to the keyfile (default: safe.key)",
)
@click.option("--key", help="Content of the key (overrides environment and keyfile)")
@click.option(
    "--env-conf",
    "-e",
    type=click.Path(),
    help="Path to the environment file or folder (default: .env)",
)
@click.option(
    "--vault",
    "-V",
    type=click.Path(dir_okay=False),
    help="Path to the vault file (default: env.enc)",
)
@click.option(
    "--key-env",
    help="Environment variable holding the key (default: CI_SECRET)",
)
@click.option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)")
@click.pass_context
def main(
    ctx: click.Context,
    keyfile: str | None,
    key: str | None,
    env_conf: str | None,
    vault: str | None,
    key_env: str | None,
    verbose: int,
) -> None:
    """Envbuddel - File-based secret manager for CI/CD pipelines."""
    _setup_logging(verbose)
    settings = Settings.from_env(
        keyfile=keyfile, source=env_conf, vault=vault, key_env=key_env
    )
    logger.debug(f"Using {settings!r}")
    ctx.obj = CommandState(settings, key)


@main.command()
@click.option(
    "--folder", is_flag=True, help="Create a folder instead of a single file"
)
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing keyfile")
@click.option(
    "--gitignore/--no-gitignore",
    default=True,
    help="Add keyfile and environment to .gitignore",
)
@pass_state
def init(state: CommandState, folder: bool, force: bool, gitignore: bool) -> None:
    """Initialize a new key, environment and vault."""
    settings = state.settings
    try:
        key = run_init(
            settings, as_folder=folder, overwrite=force, gitignore=gitignore
        )
    except EnvbuddelError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Key written to {settings.keyfile}")
    console.print(
        f"[green]✓[/green] Environment {'folder' if folder else 'file'}: "
        f"{settings.source}"
    )
    console.print(f"[green]✓[/green] Vault written to {settings.vault}")
    console.print("\nTo provide the key as environment variable, run:")
    console.print(
        f'  export {settings.key_env}="{key.encode()}"', markup=False, highlight=False
    )
    click.echo(
        "\nNote: Keep the key secret! Without it the vault cannot be decrypted.",
        err=True,
    )


@main.command()
@click.option("--armor", "-a", is_flag=True, help="Write a base64 text vault")
@pass_state
def encrypt(state: CommandState, armor: bool) -> None:
    """Encrypt the environment and store it in the vault."""
    settings = state.settings
    try:
        resolved = state.resolve()
        _log_key_origin(resolved, settings)
        run_encrypt(settings, resolved.key, armor=armor)
    except EnvbuddelError as e:
        _fail(e)

    console.print(
        f"[green]✓[/green] Encrypted {settings.source} to {settings.vault}"
    )


@main.command()
@click.option(
    "--force", "-f", is_flag=True, help="Overwrite existing environment files"
)
@pass_state
def decrypt(state: CommandState, force: bool) -> None:
    """Decrypt the vault and restore the environment."""
    settings = state.settings
    try:
        resolved = state.resolve()
        _log_key_origin(resolved, settings)
        written = run_decrypt(settings, resolved.key, overwrite=force)
    except EnvbuddelError as e:
        _fail(e)

    console.print(
        f"[green]✓[/green] Decrypted {len(written)} file(s) to {settings.source}"
    )


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@pass_state
def info(state: CommandState, output: str) -> None:
    """Show diagnostics for the keyfile, environment and vault."""
    report = run_info(state.settings, explicit_key=state.key)

    if output == "json":
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report, state.settings)

    if not report.ok:
        sys.exit(1)


def _describe_path(status: PathStatus) -> str:
    if not status.exists:
        return "[yellow]missing[/yellow]"
    if not status.readable:
        return f"[red]{status.kind}, not readable[/red]"
    return f"[green]{status.kind}[/green]"


def _print_report(report: InfoReport, settings: Settings) -> None:
    """Render an InfoReport as rich tables.

    Args:
        report: Report to render
        settings: Settings used to build the report
    """
    paths = Table(title="Paths")
    paths.add_column("Role", style="cyan")
    paths.add_column("Path")
    paths.add_column("Status")
    for role, status in (
        ("Keyfile", report.keyfile),
        ("Environment", report.source),
        ("Vault", report.vault),
    ):
        paths.add_row(role, str(status.path), _describe_path(status))
    console.print(paths)

    labels = {
        KeyOrigin.EXPLICIT: "--key",
        KeyOrigin.ENVIRONMENT: settings.key_env,
        KeyOrigin.KEYFILE: str(settings.keyfile),
    }
    keys = Table(title="Keys")
    keys.add_column("Source", style="cyan")
    keys.add_column("Status")
    for status in report.keys:
        if not status.present:
            cell = "[dim]not set[/dim]"
        elif status.valid:
            cell = "[green]valid[/green]"
        else:
            cell = f"[red]invalid[/red] ({status.error})"
        keys.add_row(labels[status.origin], cell)
    console.print(keys)

    if report.resolved_origin is None:
        console.print(f"[red]Error:[/red] {report.key_error}")
        return

    console.print(f"Active key: {labels[report.resolved_origin]}")
    if report.vault_decrypts is None:
        console.print("[yellow]![/yellow] No vault file detected")
    elif report.vault_decrypts:
        console.print(
            f"[green]✓[/green] Vault decrypts ({report.vault_files} file(s))"
        )
    else:
        console.print("[red]✗[/red] Vault cannot be decrypted with the active key")


if __name__ == "__main__":
    main()
