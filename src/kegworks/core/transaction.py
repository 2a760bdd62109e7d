"""Installation transaction: resolve, build, adopt and link with rollback."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from kegworks.analysis.resolver import resolve
from kegworks.backends.env import BuildEnvironment
from kegworks.core.errors import BuildFailureError, KegError, LinkConflictError
from kegworks.core.linker import LinkEngine
from kegworks.core.logging import bind_transaction, get_logger
from kegworks.core.models import Formula, Keg, KegState
from kegworks.core.store import Cellar
from kegworks.core.versions import parse_version
from kegworks.providers.base import Builder, SourceFetcher

log = get_logger(__name__)


@dataclass
class InstallResult:
    """What one install transaction did."""

    root: str
    built: list[Keg] = field(default_factory=list)
    linked: list[Keg] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    superseded: list[Keg] = field(default_factory=list)
    caveats: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _Step:
    """Journal entry; `before` is the keg as it was prior to the step."""

    kind: str  # "built", "linked" or "superseded"
    before: Keg


class Installer:
    """Runs one install request with all-or-nothing semantics.

    Formulae are processed strictly in resolver order. Every side effect is
    journaled so that a failure at any step unwinds the transaction in
    reverse, leaving kegs from earlier transactions as they were.
    """

    def __init__(
        self,
        cellar: Cellar,
        linker: LinkEngine,
        builder: Builder,
        fetcher: SourceFetcher | None = None,
        environment: Callable[[], BuildEnvironment] = BuildEnvironment,
    ) -> None:
        self.cellar = cellar
        self.linker = linker
        self.builder = builder
        self.fetcher = fetcher
        self.environment = environment

    async def install(
        self, root: str, descriptors: Iterable[Formula], constraint: str = ""
    ) -> InstallResult:
        """Install `root` and its dependency chain.

        Returns:
            The InstallResult of this transaction.

        Raises:
            MissingDependencyError, CyclicDependencyError: Before any side effect.
            BuildFailureError, FetchError, LinkConflictError: After rolling back.
        """
        with bind_transaction(root):
            return await self._run(root, descriptors, constraint)

    async def _run(
        self, root: str, descriptors: Iterable[Formula], constraint: str
    ) -> InstallResult:
        order = resolve(root, descriptors, constraint)

        start = time.perf_counter()
        log.info("install_start", package=root, order=[f.ident for f in order])

        result = InstallResult(root=root)
        journal: list[_Step] = []
        formula: Formula | None = None
        phase = "resolve"

        try:
            for formula in order:
                existing = self.cellar.lookup(formula.name, formula.version)
                if existing is not None:
                    if formula.keg_only or existing.state is KegState.LINKED:
                        result.skipped.append(formula.ident)
                        log.info("install_skip", package=formula.name, version=formula.version)
                        continue
                    phase = "link"
                    keg = self._link(existing, journal, result)
                    journal.append(_Step("linked", existing))
                    result.linked.append(keg)
                    continue

                phase = "build"
                keg = await self._build(formula)
                journal.append(_Step("built", keg))
                result.built.append(keg)
                if formula.caveats:
                    result.caveats[formula.ident] = formula.caveats

                if not formula.keg_only:
                    phase = "link"
                    linked = self._link(keg, journal, result)
                    journal.append(_Step("linked", keg))
                    result.linked.append(linked)

        except BaseException as e:
            if isinstance(e, KegError) and formula is not None:
                e.context.setdefault("package", formula.name)
                e.context.setdefault("phase", phase)
            log.error(
                "install_failed",
                package=root,
                failed=formula.ident if formula else None,
                phase=phase,
                error=str(e) or type(e).__name__,
            )
            self._rollback(journal, e)
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "install_complete",
            package=root,
            built=len(result.built),
            linked=len(result.linked),
            skipped=len(result.skipped),
            duration_ms=duration_ms,
        )
        return result

    async def _build(self, formula: Formula) -> Keg:
        """Fetch, build into a fresh staging directory and adopt the output."""
        staging: Path = self.cellar.staging_dir(formula.name, formula.version)
        try:
            source = await self.fetcher.fetch(formula) if self.fetcher else None
            environment = self.environment()
            try:
                await self.builder.build(formula, source, staging, environment)
            except BuildFailureError:
                raise
            except asyncio.CancelledError:
                log.warning("build_cancelled", package=formula.name, version=formula.version)
                raise
            except KegError as e:
                raise BuildFailureError(
                    e.message,
                    formula=formula.name,
                    version=formula.version,
                    command=e.context.get("command"),
                    timeout=e.context.get("timeout"),
                    error=type(e).__name__,
                ) from e
            except Exception as e:
                raise BuildFailureError(
                    formula=formula.name, version=formula.version, error=str(e)
                ) from e
            return self.cellar.adopt(formula, staging)
        except BaseException:
            self.cellar.discard_staging(staging)
            raise

    def _link(self, keg: Keg, journal: list[_Step], result: InstallResult) -> Keg:
        """Link `keg`, first unlinking older linked versions of the same formula.

        A newer linked version is never replaced; a collision with it is fatal.
        """
        with self.linker.lock.hold():
            for other in self.cellar.linked(keg.name):
                if _is_older(other.version, keg.version):
                    self._supersede(other, journal, result)

            try:
                return self.linker.link(keg)
            except LinkConflictError as e:
                if e.owner_name != keg.name or e.owner_version is None:
                    raise
                if not _is_older(e.owner_version, keg.version):
                    raise
                owner = self.cellar.lookup(e.owner_name, e.owner_version)
                if owner is None or owner.state is not KegState.LINKED:
                    raise
                self._supersede(owner, journal, result)
                return self.linker.link(keg)

    def _supersede(self, old: Keg, journal: list[_Step], result: InstallResult) -> None:
        self.linker.unlink(old)
        journal.append(_Step("superseded", old))
        result.superseded.append(old)
        log.info("keg_superseded", package=old.name, version=old.version)

    def _rollback(self, journal: list[_Step], error: BaseException) -> None:
        """Undo journaled steps in reverse; cleanup failures become notes on `error`."""
        warnings: list[str] = []

        for step in reversed(journal):
            try:
                self._undo(step)
            except Exception as cleanup_error:
                message = f"rollback of {step.kind} {step.before.ident} failed: {cleanup_error}"
                log.error(
                    "rollback_step_failed",
                    package=step.before.name,
                    version=step.before.version,
                    step=step.kind,
                    error=str(cleanup_error),
                )
                warnings.append(message)

        for message in warnings:
            error.add_note(message)
        if warnings and isinstance(error, KegError):
            error.context["rollback_warnings"] = warnings

        log.info("rollback_complete", steps=len(journal), warnings=len(warnings))

    def _undo(self, step: _Step) -> None:
        current = self.cellar.lookup(step.before.name, step.before.version)
        if current is None:
            return

        if step.kind == "built":
            if current.state is KegState.LINKED:
                current = self.linker.unlink(current).keg
            elif current.state is KegState.STAGED:
                current = self.cellar.retire(current)
            self.cellar.remove(current)

        elif step.kind == "linked":
            if current.state is KegState.LINKED:
                self.linker.unlink(current)
            self.cellar.save(step.before)

        elif step.kind == "superseded":
            if current.state is not KegState.LINKED:
                self.linker.link(current)

        log.debug("rollback_step", package=current.name, version=current.version, step=step.kind)


def _is_older(version: str, than: str) -> bool:
    return parse_version(version) < parse_version(than)
