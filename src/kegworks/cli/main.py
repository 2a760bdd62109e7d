"""CLI entry point for kegworks."""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import typer

from kegworks.analysis.resolver import index_formulae
from kegworks.cli.renderers import (
    console,
    deps_table,
    install_summary,
    keg_details,
    keg_table,
)
from kegworks.core.errors import (
    EXIT_SYSTEM_ERROR,
    EXIT_USER_ERROR,
    KegError,
    UserError,
    format_error_message,
)
from kegworks.core.logging import get_logger
from kegworks.core.repo import Repository

log = get_logger(__name__)

app = typer.Typer(help="kegworks: a source-based package installer.")


def handle_error(error: Exception) -> int:
    """Handle errors and return appropriate exit codes.

    Args:
        error: The exception to handle.

    Returns:
        An integer exit code.
    """
    if isinstance(error, KegError):
        log.error(
            "cli_error",
            error_type=type(error).__name__,
            message=error.message,
            context={k: str(v) for k, v in error.context.items()},
        )
        console.print(f"\n{format_error_message(error)}\n", style="bold red")
        for warning in error.context.get("rollback_warnings", []):
            console.print(f"  rollback: {warning}", style="yellow")

        if isinstance(error, UserError):
            return EXIT_USER_ERROR
        return EXIT_SYSTEM_ERROR
    else:
        log.error(
            "unexpected_error",
            error=str(error),
            exc_info=True
        )
        console.print(
            f"\n⚠️ Unexpected error occurred: {error}\n",
            style="bold red"
        )
        return EXIT_SYSTEM_ERROR


@app.command()
def install(
    name: str,
    constraint: str = typer.Option("", "--constraint", "-c", help="Version constraint, e.g. '>=2.0'"),
) -> None:
    """Build, install and link a formula with its dependencies."""
    try:
        repo = Repository()
        result = asyncio.run(repo.install(name, constraint))
        console.print(install_summary(result))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def uninstall(
    name: str,
    version: Optional[str] = typer.Option(None, "--version", "-v"),
    force: bool = typer.Option(False, "--force", help="Ignore installed dependents"),
) -> None:
    """Unlink and remove an installed keg."""
    try:
        keg = Repository().uninstall(name, version, force=force)
        console.print(f"Uninstalled {keg.ident}")
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def link(name: str, version: Optional[str] = typer.Option(None, "--version", "-v")) -> None:
    """Link a keg into the prefix."""
    try:
        keg = Repository().link(name, version)
        console.print(f"Linked {keg.ident} ({len(keg.link_manifest)} links)")
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def unlink(name: str, version: Optional[str] = typer.Option(None, "--version", "-v")) -> None:
    """Remove a keg's links from the prefix."""
    try:
        result = Repository().unlink(name, version)
        console.print(f"Unlinked {result.keg.ident} ({len(result.removed)} links)")
        for path in result.skipped:
            console.print(f"  skipped {path}: no longer linked to this keg", style="yellow")
    except Exception as e:
        sys.exit(handle_error(e))


@app.command("list")
def list_kegs(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by name"),
) -> None:
    """List installed kegs."""
    try:
        repo = Repository()
        kegs = repo.list_kegs()
        if search:
            q = search.lower()
            kegs = [k for k in kegs if q in k.name.lower()]
        index = index_formulae(repo.formulae())
        latest = {name: versions[0] for name, versions in index.items()}
        console.print(keg_table(kegs, latest))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def info(name: str, version: Optional[str] = typer.Option(None, "--version", "-v")) -> None:
    """Show detailed information about an installed keg."""
    try:
        repo = Repository()
        keg = repo.lookup(name, version)
        console.print(keg_details(keg, repo.latest(name)))
    except Exception as e:
        sys.exit(handle_error(e))


@app.command()
def deps(name: str) -> None:
    """Show the build order for a formula."""
    try:
        console.print(deps_table(Repository().deps(name)))
    except Exception as e:
        sys.exit(handle_error(e))


if __name__ == "__main__":
    app()
