"""Protocol definitions for the collaborators of the installer."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from kegworks.backends.env import BuildEnvironment
from kegworks.core.models import Formula


class FormulaProvider(Protocol):
    """Supplies the full set of formula descriptors."""

    def load(self) -> list[Formula]:
        """Load every known formula descriptor."""
        ...


class SourceFetcher(Protocol):
    """Obtains a local source tree for a formula."""

    async def fetch(self, formula: Formula) -> Path | None:
        """Return a local source directory or archive, None if there is none.

        Raises:
            FetchError: If the source cannot be obtained.
        """
        ...


class Builder(Protocol):
    """Runs a formula's build procedure into a staging directory."""

    async def build(
        self,
        formula: Formula,
        source_tree: Path | None,
        staging_dir: Path,
        environment: BuildEnvironment,
    ) -> None:
        """Produce the installed files of `formula` under `staging_dir`.

        Raises:
            BuildFailureError: If the build does not succeed.
        """
        ...
