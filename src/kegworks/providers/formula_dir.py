"""Formula provider reading JSON descriptors from a directory."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, List

from kegworks.backends.shell_builder import ShellProcedure
from kegworks.core.errors import InvalidFormulaError
from kegworks.core.logging import get_logger
from kegworks.core.models import Dependency, Formula

log = get_logger(__name__)


class FormulaDirectory:
    """Loads every `<name>.json` file of a directory.

    A file holds one descriptor object or a list of them (several versions).
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[Formula]:
        """Load all formula descriptors.

        Returns:
            Formulae sorted by file name, in file order within a file.

        Raises:
            InvalidFormulaError: If a file is unreadable or malformed.
        """
        start = time.perf_counter()
        if not self.path.is_dir():
            log.warning("formula_dir_missing", path=str(self.path))
            return []

        formulae: List[Formula] = []
        for file in sorted(self.path.glob("*.json")):
            formulae.extend(self.load_file(file))

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "formula_load_complete",
            path=str(self.path),
            count=len(formulae),
            duration_ms=duration_ms,
        )
        return formulae

    def load_file(self, file: Path) -> List[Formula]:
        try:
            data = json.loads(file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            log.error("formula_file_invalid", path=str(file), error=str(e))
            raise InvalidFormulaError(
                formula=file.stem, reason=str(e), context={"path": str(file)}
            ) from e

        items = data if isinstance(data, list) else [data]
        try:
            return [formula_from_dict(item) for item in items]
        except InvalidFormulaError as e:
            raise e.with_context(path=str(file))


def formula_from_dict(f: Any) -> Formula:
    """Build a Formula from a decoded JSON object."""
    if not isinstance(f, dict):
        raise InvalidFormulaError(reason="descriptor must be an object")

    name = f.get("name")
    version = f.get("version")
    if not isinstance(name, str) or version is None:
        raise InvalidFormulaError(formula=str(name), reason="'name' and 'version' are required")

    deps = []
    for d in f.get("dependencies", []):
        if isinstance(d, str):
            deps.append(Dependency.parse(d))
        elif isinstance(d, dict) and isinstance(d.get("name"), str):
            deps.append(Dependency(name=d["name"], constraint=str(d.get("constraint", ""))))
        else:
            raise InvalidFormulaError(formula=name, reason=f"bad dependency {d!r}")

    commands = f.get("install", [])
    if not isinstance(commands, list) or not all(isinstance(c, list) for c in commands):
        raise InvalidFormulaError(formula=name, reason="'install' must be a list of argv lists")

    env = f.get("env", {})
    unset_env = f.get("unset_env", [])
    if not isinstance(env, dict) or not isinstance(unset_env, list):
        raise InvalidFormulaError(
            formula=name, reason="'env' must be an object and 'unset_env' a list"
        )

    procedure = ShellProcedure(
        commands=tuple(tuple(str(arg) for arg in argv) for argv in commands),
        hardlink_identical=tuple(str(p) for p in f.get("hardlink_identical", [])),
        env=tuple((str(k), str(v)) for k, v in env.items()),
        unset_env=tuple(str(k) for k in unset_env),
        deparallelize=bool(f.get("deparallelize", False)),
    )

    return Formula(
        name=name,
        version=str(version),
        dependencies=tuple(deps),
        keg_only=bool(f.get("keg_only", False)),
        build=procedure,
        homepage=f.get("homepage"),
        desc=f.get("desc"),
        source=f.get("source"),
        caveats=f.get("caveats"),
    )
