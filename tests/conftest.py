"""Shared fixtures for the kegworks test suite."""

import os
import tempfile

# keep log files out of the real home directory
os.environ.setdefault("KEGWORKS_HOME", tempfile.mkdtemp(prefix="kegworks-test-home-"))

from dataclasses import dataclass, field  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from kegworks.core.errors import BuildFailureError  # noqa: E402
from kegworks.core.linker import LinkEngine  # noqa: E402
from kegworks.core.lock import PrefixLock  # noqa: E402
from kegworks.core.models import Dependency, Formula, Keg  # noqa: E402
from kegworks.core.store import Cellar  # noqa: E402
from kegworks.core.transaction import Installer  # noqa: E402


@dataclass(frozen=True)
class FileTree:
    """Build handle for FakeBuilder: keg-relative path -> file content."""

    files: tuple[tuple[str, str], ...] = ()


def make_formula(
    name: str,
    version: str = "1.0",
    deps: tuple[str, ...] = (),
    files: dict[str, str] | None = None,
    keg_only: bool = False,
    caveats: str | None = None,
) -> Formula:
    if files is None:
        files = {f"bin/{name}": f"#!/bin/sh\necho {name} {version}\n"}
    return Formula(
        name=name,
        version=version,
        dependencies=tuple(Dependency.parse(d) for d in deps),
        keg_only=keg_only,
        build=FileTree(tuple(sorted(files.items()))),
        caveats=caveats,
    )


@dataclass
class FakeBuilder:
    """Writes a formula's FileTree into the staging directory."""

    prefix: Path
    fail: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)
    prefix_at_build: dict[str, list[str]] = field(default_factory=dict)

    async def build(self, formula, source_tree, staging_dir, environment) -> None:
        self.calls.append(formula.ident)
        self.prefix_at_build[formula.name] = listing(self.prefix)
        if formula.name in self.fail:
            raise BuildFailureError(formula=formula.name, version=formula.version, returncode=2)
        for rel, content in formula.build.files:
            path = staging_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)


def listing(root: Path) -> list[str]:
    """Snapshot of a tree: every path with its kind and link target."""
    if not root.exists():
        return []
    out = []
    for base, dirs, files in os.walk(root):
        for name in sorted(dirs + files):
            path = Path(base) / name
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                out.append(f"{rel} -> {os.readlink(path)}")
            elif path.is_dir():
                out.append(f"{rel}/")
            else:
                out.append(rel)
    return sorted(out)


def stage(cellar: Cellar, formula: Formula) -> Keg:
    """Materialize `formula` in a staging dir and adopt it."""
    staging = cellar.staging_dir(formula.name, formula.version)
    for rel, content in formula.build.files:
        path = staging / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return cellar.adopt(formula, staging)


@pytest.fixture
def cellar(tmp_path: Path) -> Cellar:
    return Cellar(tmp_path / "Cellar")


@pytest.fixture
def prefix(tmp_path: Path) -> Path:
    path = tmp_path / "prefix"
    path.mkdir()
    return path


@pytest.fixture
def linker(cellar: Cellar, prefix: Path) -> LinkEngine:
    return LinkEngine(cellar, prefix, PrefixLock(cellar.root / ".link.lock"))


@pytest.fixture
def builder(prefix: Path) -> FakeBuilder:
    return FakeBuilder(prefix=prefix)


@pytest.fixture
def installer(cellar: Cellar, linker: LinkEngine, builder: FakeBuilder) -> Installer:
    return Installer(cellar, linker, builder)
