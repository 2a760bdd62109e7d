"""Renderers for displaying kegs and install results in the CLI using Rich."""

from typing import Iterable, Mapping

from rich import box
from rich.console import Console
from rich.table import Table

from kegworks.analysis.status import derive_status
from kegworks.core.models import Formula, Keg, KegStatus
from kegworks.core.transaction import InstallResult

console = Console()

STATUS_LABELS = {
    KegStatus.LINKED: "[green]Linked[/green]",
    KegStatus.NOT_LINKED: "[blue]Not Linked[/blue]",
    KegStatus.STAGED: "[cyan]Staged[/cyan]",
    KegStatus.KEG_ONLY: "[magenta]Keg-Only[/magenta]",
    KegStatus.OUTDATED: "[red]Outdated[/red]",
}


def status_to_str(status: KegStatus) -> str:
    """Convert KegStatus to a human-readable string with color coding.

    Args:
        status: The KegStatus to convert.

    Returns:
        A human-readable string representation of the KegStatus.
    """
    bits = [label for flag, label in STATUS_LABELS.items() if flag in status]
    return ", ".join(bits)


def keg_table(kegs: Iterable[Keg], latest: Mapping[str, Formula] | None = None) -> Table:
    """Create a Rich Table listing installed kegs.

    Args:
        kegs: The kegs to display.
        latest: Newest known formula per name, for the outdated flag.

    Returns:
        A Rich Table displaying keg information.
    """
    latest = latest or {}
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Latest")
    table.add_column("Status")
    table.add_column("Links", justify="right")
    table.add_column("Installed On", style="dim")

    for k in kegs:
        newest = latest.get(k.name)
        table.add_row(
            k.name,
            k.version,
            newest.version if newest else "",
            status_to_str(derive_status(k, newest)),
            str(len(k.link_manifest)),
            k.installed_on.isoformat(timespec="seconds") if k.installed_on else "",
        )

    return table


def keg_details(keg: Keg, formula: Formula | None = None) -> Table:
    """Display detailed information about a keg.

    Args:
        keg: The keg to display information for.
        formula: The newest known descriptor of the same formula, if any.

    Returns:
        A Rich Table displaying detailed information about the keg.
    """
    t = Table(box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("Field", style="bold")
    t.add_column("Value")
    t.add_row("Name", keg.name)
    t.add_row("Version", keg.version)
    t.add_row("State", keg.state.value)
    t.add_row("Status", status_to_str(derive_status(keg, formula)))
    t.add_row("Path", str(keg.path))
    if keg.dependencies:
        t.add_row("Depends on", ", ".join(keg.dependencies))
    if formula is not None:
        t.add_row("Latest", formula.version)
        if formula.desc:
            t.add_row("Description", formula.desc)
        if formula.homepage:
            t.add_row("Homepage", formula.homepage)
        if formula.caveats:
            t.add_row("Caveats", formula.caveats)
    if keg.link_manifest:
        t.add_row("Links", "\n".join(sorted(keg.link_manifest)))

    return t


def deps_table(order: Iterable[Formula]) -> Table:
    """Display a resolved build order."""
    t = Table(box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("#", justify="right", style="dim")
    t.add_column("Formula", style="bold")
    t.add_column("Version")
    t.add_column("Depends on")
    for i, f in enumerate(order, start=1):
        t.add_row(
            str(i),
            f.name,
            f.version,
            ", ".join(str(d) for d in f.dependencies),
        )
    return t


def install_summary(result: InstallResult) -> Table:
    """Summarise what an install transaction did."""
    t = Table(box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("Keg", style="bold")
    t.add_column("Action")
    if result.caveats:
        t.add_column("Caveats")
    for k in result.superseded:
        t.add_row(k.ident, "[yellow]unlinked (superseded)[/yellow]")
    linked = {k.ident for k in result.linked}
    for k in result.built:
        action = "built, linked" if k.ident in linked else "built, keg-only"
        cells = [k.ident, f"[green]{action}[/green]"]
        if result.caveats:
            cells.append(result.caveats.get(k.ident, ""))
        t.add_row(*cells)
    built = {k.ident for k in result.built}
    for k in result.linked:
        if k.ident not in built:
            t.add_row(k.ident, "[green]linked[/green]")
    for ident in result.skipped:
        t.add_row(ident, "[dim]already installed[/dim]")
    return t
