"""Data models for formulae and kegs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Any

from kegworks.core.errors import InvalidFormulaError
from kegworks.core.versions import parse_constraint, parse_version

_DEP_SPEC = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._+@-]*)\s*(.*?)\s*$")


class KegState(Enum):
    """Lifecycle state of a keg."""

    STAGED = "staged"
    LINKED = "linked"
    UNLINKED = "unlinked"


class KegStatus(Flag):
    """Display flags derived from a keg and its formula."""

    NONE = 0
    LINKED = auto()
    NOT_LINKED = auto()
    KEG_ONLY = auto()
    OUTDATED = auto()
    STAGED = auto()


@dataclass(frozen=True)
class Dependency:
    """A dependency edge: formula name plus version constraint."""

    name: str
    constraint: str = ""

    @classmethod
    def parse(cls, spec: str) -> Dependency:
        """Parse `"expat"` or `"expat>=2.0,<3"` into a Dependency."""
        match = _DEP_SPEC.match(spec)
        if not match:
            raise InvalidFormulaError(reason=f"bad dependency {spec!r}")
        return cls(name=match.group(1), constraint=match.group(2))

    def __str__(self) -> str:
        return f"{self.name}{self.constraint}"


@dataclass(frozen=True)
class Formula:
    """Immutable descriptor of one installable package version.

    `build` is an opaque handle interpreted only by the build collaborator.
    """

    name: str
    version: str
    dependencies: tuple[Dependency, ...] = ()
    keg_only: bool = False
    build: Any = field(default=None, compare=False)
    homepage: str | None = None
    desc: str | None = None
    source: str | None = None
    caveats: str | None = None

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name or self.name.startswith("."):
            raise InvalidFormulaError(formula=self.name, reason="invalid name")
        try:
            parse_version(self.version)
        except ValueError as e:
            raise InvalidFormulaError(formula=self.name, reason=str(e)) from e

        # lists are accepted for convenience, the stored value stays immutable
        object.__setattr__(self, "dependencies", tuple(self.dependencies))

        seen: set[str] = set()
        for dep in self.dependencies:
            if dep.name == self.name:
                raise InvalidFormulaError(formula=self.name, reason="depends on itself")
            if dep.name in seen:
                raise InvalidFormulaError(
                    formula=self.name, reason=f"duplicate dependency '{dep.name}'"
                )
            try:
                parse_constraint(dep.constraint)
            except ValueError as e:
                raise InvalidFormulaError(formula=self.name, reason=str(e)) from e
            seen.add(dep.name)

    @property
    def ident(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class Keg:
    """One installed version of a formula inside the Cellar.

    Instances are snapshots; the Cellar returns a fresh Keg after every
    state change.
    """

    name: str
    version: str
    path: Path
    state: KegState = KegState.STAGED
    keg_only: bool = False
    link_manifest: frozenset[str] = frozenset()
    # prefix directories created by the last link, pruned again on unlink
    link_dirs: frozenset[str] = frozenset()
    dependencies: tuple[str, ...] = ()
    installed_on: datetime | None = None

    @property
    def ident(self) -> str:
        return f"{self.name}@{self.version}"

    def __str__(self) -> str:
        return self.ident
