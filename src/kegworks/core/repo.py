"""Repository facade wiring the Cellar, LinkEngine and Installer together."""

from __future__ import annotations

import time
from typing import List, Optional

from kegworks.analysis.resolver import index_formulae, resolve
from kegworks.backends.env import build_environment
from kegworks.backends.fetch import LocalSourceFetcher
from kegworks.backends.shell_builder import ShellBuilder
from kegworks.core.config import KegworksENV, discover_env
from kegworks.core.errors import KegInUseError, KegNotFoundError
from kegworks.core.linker import LinkEngine, UnlinkResult
from kegworks.core.lock import PrefixLock
from kegworks.core.logging import get_logger
from kegworks.core.models import Formula, Keg, KegState
from kegworks.core.store import Cellar
from kegworks.core.transaction import Installer, InstallResult
from kegworks.providers.base import Builder, FormulaProvider, SourceFetcher
from kegworks.providers.formula_dir import FormulaDirectory

log = get_logger(__name__)


class Repository:
    """Entry point for the operations exposed to the CLI."""

    def __init__(
        self,
        config: Optional[KegworksENV] = None,
        *,
        provider: Optional[FormulaProvider] = None,
        builder: Optional[Builder] = None,
        fetcher: Optional[SourceFetcher] = None,
    ) -> None:
        self.config = config or discover_env()
        self.cellar = Cellar(self.config.cellar)
        self.linker = LinkEngine(self.cellar, self.config.prefix, PrefixLock(self.config.lock_file))
        self.provider = provider or FormulaDirectory(self.config.formula_dir)
        self.installer = Installer(
            self.cellar,
            self.linker,
            builder or ShellBuilder(self.config.prefix, timeout=self.config.build_timeout),
            fetcher or LocalSourceFetcher(self.config.formula_dir),
            environment=lambda: build_environment(self.config),
        )

    def formulae(self) -> List[Formula]:
        """All known formula descriptors."""
        return self.provider.load()

    def latest(self, name: str) -> Optional[Formula]:
        """Newest known descriptor for `name`, if any."""
        versions = index_formulae(self.formulae()).get(name)
        return versions[0] if versions else None

    async def install(self, name: str, constraint: str = "") -> InstallResult:
        """Install `name` and its dependencies in one transaction."""
        return await self.installer.install(name, self.formulae(), constraint)

    def deps(self, name: str) -> List[Formula]:
        """Build order for `name`, dependencies first."""
        return resolve(name, self.formulae())

    def lookup(self, name: str, version: Optional[str] = None) -> Keg:
        """Return the keg for `name`, newest version if `version` is omitted.

        Raises:
            KegNotFoundError: If no such keg is installed.
        """
        keg = self.cellar.lookup(name, version)
        if keg is None:
            raise KegNotFoundError(name, version)
        return keg

    def list_kegs(self) -> List[Keg]:
        return self.cellar.list_kegs()

    def link(self, name: str, version: Optional[str] = None) -> Keg:
        return self.linker.link(self.lookup(name, version))

    def unlink(self, name: str, version: Optional[str] = None) -> UnlinkResult:
        """Unlink `name`; without a version, the currently linked keg."""
        if version is None:
            linked = self.cellar.linked(name)
            if linked:
                return self.linker.unlink(linked[0])
        return self.linker.unlink(self.lookup(name, version))

    def uninstall(
        self, name: str, version: Optional[str] = None, force: bool = False
    ) -> Keg:
        """Unlink and remove a keg.

        Raises:
            KegNotFoundError: If the keg is not installed.
            KegInUseError: If it is the last version and other kegs depend on it.
        """
        start = time.perf_counter()
        keg = self.lookup(name, version)

        last_version = self.cellar.versions(name) == [keg.version]
        if last_version and not force:
            dependents = [k.ident for k in self.cellar.dependents(name)]
            if dependents:
                raise KegInUseError(name, dependents)

        with self.linker.lock.hold():
            if keg.state is KegState.LINKED:
                keg = self.linker.unlink(keg).keg
            elif keg.state is KegState.STAGED:
                keg = self.cellar.retire(keg)
            self.cellar.remove(keg)

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "uninstall_complete",
            package=keg.name,
            version=keg.version,
            duration_ms=duration_ms,
        )
        return keg
