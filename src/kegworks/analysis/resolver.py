"""Resolve a requested formula into a dependency-first build order."""

from __future__ import annotations

import time
from collections.abc import Iterable

from kegworks.core.errors import (
    CyclicDependencyError,
    InvalidFormulaError,
    MissingDependencyError,
)
from kegworks.core.logging import get_logger
from kegworks.core.models import Formula
from kegworks.core.versions import parse_version, satisfies

log = get_logger(__name__)


def index_formulae(descriptors: Iterable[Formula]) -> dict[str, list[Formula]]:
    """Group descriptors by name, newest version first.

    Raises:
        InvalidFormulaError: If the same name and version appear twice.
    """
    index: dict[str, list[Formula]] = {}
    for f in descriptors:
        versions = index.setdefault(f.name, [])
        if any(v.version == f.version for v in versions):
            raise InvalidFormulaError(formula=f.ident, reason="duplicate descriptor")
        versions.append(f)

    for versions in index.values():
        versions.sort(key=lambda f: parse_version(f.version), reverse=True)

    return index


def resolve(
    root: str, descriptors: Iterable[Formula], constraint: str = ""
) -> list[Formula]:
    """Compute the build order for `root`.

    Depth-first from `root`, visiting dependencies in declared order before
    the formula itself. Each name is bound to the newest version satisfying
    the first edge that reaches it; later edges must accept that version.

    Args:
        root: Name of the requested formula.
        descriptors: Every known formula descriptor.
        constraint: Optional version constraint for the root.

    Returns:
        Formulae in build order, each exactly once, dependencies first.

    Raises:
        MissingDependencyError: If the root or a dependency edge cannot be satisfied.
        CyclicDependencyError: If the graph reachable from `root` has a cycle.
    """
    start = time.perf_counter()
    index = index_formulae(descriptors)

    selected: dict[str, Formula] = {}
    stack: list[str] = []
    order: list[Formula] = []

    def visit(name: str, wanted: str, dependent: str | None) -> None:
        if name in stack:
            cycle = stack[stack.index(name):] + [name]
            log.error("dependency_cycle", package=root, cycle=" -> ".join(cycle))
            raise CyclicDependencyError(cycle)

        if name in selected:
            chosen = selected[name]
            if not satisfies(chosen.version, wanted):
                raise MissingDependencyError(
                    dependent=dependent,
                    dependency=name,
                    constraint=wanted,
                    context={"selected": chosen.version},
                )
            return

        candidates = [f for f in index.get(name, []) if satisfies(f.version, wanted)]
        if not candidates:
            raise MissingDependencyError(
                dependent=dependent, dependency=name, constraint=wanted or None
            )

        formula = candidates[0]
        selected[name] = formula
        stack.append(name)
        for dep in formula.dependencies:
            visit(dep.name, dep.constraint, name)
        stack.pop()

        order.append(formula)

    visit(root, constraint, None)

    duration_ms = int((time.perf_counter() - start) * 1000)
    log.debug(
        "resolve_complete",
        package=root,
        order=[f.ident for f in order],
        duration_ms=duration_ms,
    )

    return order
