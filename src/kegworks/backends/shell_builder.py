"""Build collaborator running a formula's install commands in a subprocess."""

from __future__ import annotations

import os
import shlex
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from kegworks.backends.dedupe import hardlink_identical
from kegworks.backends.env import BuildEnvironment
from kegworks.core.errors import BuildFailureError, CommandTimeoutError
from kegworks.core.logging import get_logger
from kegworks.core.models import Formula
from kegworks.core.shell import run_capture

log = get_logger(__name__)

# keep the tail of the build output in the error context
_ERROR_TAIL = 2000


@dataclass(frozen=True)
class ShellProcedure:
    """Build handle: argv lists run in order from the unpacked source.

    Arguments and `env` values may use `{prefix}` (the staging directory that
    becomes the keg), `{name}`, `{version}` and `{shared_prefix}`. Directories
    listed in `hardlink_identical` are keg-relative. `env`, `unset_env` and
    `deparallelize` adjust the build environment for this formula only.
    """

    commands: tuple[tuple[str, ...], ...] = ()
    hardlink_identical: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    unset_env: tuple[str, ...] = ()
    deparallelize: bool = False


class ShellBuilder:
    """Runs `ShellProcedure` handles with the supplied build environment."""

    def __init__(self, shared_prefix: Path, timeout: float | None = None) -> None:
        self.shared_prefix = Path(shared_prefix)
        self.timeout = timeout

    async def build(
        self,
        formula: Formula,
        source_tree: Path | None,
        staging_dir: Path,
        environment: BuildEnvironment,
    ) -> None:
        procedure = formula.build
        if not isinstance(procedure, ShellProcedure):
            raise BuildFailureError(
                formula=formula.name,
                version=formula.version,
                phase="prepare",
                error=f"unsupported build procedure {type(procedure).__name__}",
            )

        start = time.perf_counter()
        log.info("build_start", package=formula.name, version=formula.version)

        with tempfile.TemporaryDirectory(prefix=f"kegworks-{formula.name}-") as tmp:
            workdir = self._prepare(formula, source_tree, Path(tmp))
            tokens = {
                "{prefix}": str(staging_dir),
                "{name}": formula.name,
                "{version}": formula.version,
                "{shared_prefix}": str(self.shared_prefix),
            }
            environment = environment.customised(
                extra={k: _substitute(v, tokens) for k, v in procedure.env},
                unset=procedure.unset_env,
                deparallelize=procedure.deparallelize,
            )
            env = environment.apply(os.environ)

            for argv in procedure.commands:
                args = [_substitute(arg, tokens) for arg in argv]
                await self._run(formula, args, workdir, env)

        for rel in procedure.hardlink_identical:
            hardlink_identical(staging_dir / rel)

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "build_complete",
            package=formula.name,
            version=formula.version,
            duration_ms=duration_ms,
        )

    def _prepare(self, formula: Formula, source_tree: Path | None, tmp: Path) -> Path:
        """Copy or unpack the source into a private work directory."""
        work = tmp / "src"
        try:
            if source_tree is None:
                work.mkdir()
            elif source_tree.is_dir():
                shutil.copytree(source_tree, work, symlinks=True)
            elif tarfile.is_tarfile(source_tree):
                work.mkdir()
                with tarfile.open(source_tree) as archive:
                    archive.extractall(work, filter="data")
                # archives usually wrap everything in one top-level directory
                children = list(work.iterdir())
                if len(children) == 1 and children[0].is_dir():
                    return children[0]
            else:
                raise BuildFailureError(
                    formula=formula.name,
                    version=formula.version,
                    phase="prepare",
                    error=f"unsupported source {source_tree}",
                )
        except (OSError, tarfile.TarError) as e:
            raise BuildFailureError(
                formula=formula.name,
                version=formula.version,
                phase="prepare",
                error=str(e),
            ) from e
        return work

    async def _run(
        self, formula: Formula, args: list[str], cwd: Path, env: dict[str, str]
    ) -> None:
        command = shlex.join(args)
        try:
            out, err, code = await run_capture(*args, cwd=cwd, env=env, timeout=self.timeout)
        except CommandTimeoutError as e:
            raise BuildFailureError(
                f"Build of {formula.name} timed out",
                formula=formula.name,
                version=formula.version,
                command=command,
                timeout=e.timeout,
            ) from e
        except OSError as e:
            raise BuildFailureError(
                formula=formula.name,
                version=formula.version,
                command=command,
                error=str(e),
            ) from e

        if code != 0:
            log.error(
                "build_command_failed",
                package=formula.name,
                command=command,
                returncode=code,
            )
            raise BuildFailureError(
                formula=formula.name,
                version=formula.version,
                command=command,
                returncode=code,
                error=(err or out)[-_ERROR_TAIL:],
            )


def _substitute(arg: str, tokens: dict[str, str]) -> str:
    for token, value in tokens.items():
        arg = arg.replace(token, value)
    return arg
