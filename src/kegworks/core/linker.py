"""Project keg trees into the shared prefix as symlinks, and reverse it."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterator

from kegworks.core.errors import InvalidStateError, KegNotFoundError, LinkConflictError
from kegworks.core.lock import PrefixLock
from kegworks.core.logging import get_logger
from kegworks.core.models import Keg, KegState
from kegworks.core.store import META_DIR, Cellar

log = get_logger(__name__)


@dataclass
class UnlinkResult:
    """Outcome of an unlink: the updated keg plus removed and skipped paths."""

    keg: Keg
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class LinkEngine:
    """Maintains the prefix as the union of all linked kegs.

    Every regular file or symlink of a keg at relative path `p` becomes a
    relative symlink at `<prefix>/p`. Directories are shared and created on
    demand. The set of created links is the keg's link manifest, which is
    the only thing `unlink` ever removes; directories are pruned only when
    this keg created them and they end up empty.
    """

    def __init__(self, cellar: Cellar, prefix: Path, lock: PrefixLock | None = None) -> None:
        self.cellar = cellar
        self.prefix = Path(os.path.abspath(prefix))
        self.lock = lock or PrefixLock(cellar.root / ".link.lock")

    def link(self, keg: Keg) -> Keg:
        """Link every file of `keg` into the prefix.

        Re-linking a `Linked` keg is idempotent. Nothing is left behind when a
        conflict is found.

        Returns:
            The keg in `Linked` state with its new manifest.

        Raises:
            KegNotFoundError: If the keg is not in the Cellar.
            LinkConflictError: If a path is owned by another keg or is a real file.
        """
        current = self._current(keg)
        start = time.perf_counter()

        created_links: list[Path] = []
        created_dirs: list[Path] = []
        manifest: set[str] = set()

        with self.lock.hold():
            self.prefix.mkdir(parents=True, exist_ok=True)
            try:
                for rel in self._leaves(current.path):
                    self._ensure_parents(current, rel, created_dirs)
                    target = self.prefix / rel
                    source = current.path / rel

                    if os.path.lexists(target):
                        if target.is_symlink() and _points_to(target, source):
                            manifest.add(rel)
                            continue
                        raise self._conflict(current, rel, target)

                    os.symlink(os.path.relpath(source, target.parent), target)
                    created_links.append(target)
                    manifest.add(rel)

                dirs = current.link_dirs | {
                    d.relative_to(self.prefix).as_posix() for d in created_dirs
                }
                linked = self.cellar.save(
                    replace(
                        current,
                        state=KegState.LINKED,
                        link_manifest=frozenset(manifest),
                        link_dirs=frozenset(dirs),
                    )
                )
            except (LinkConflictError, OSError) as e:
                self._rollback(current, created_links, created_dirs, e)
                raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "keg_linked",
            package=current.name,
            version=current.version,
            links=len(manifest),
            created=len(created_links),
            duration_ms=duration_ms,
        )
        return linked

    def unlink(self, keg: Keg) -> UnlinkResult:
        """Remove the links recorded in the keg's manifest.

        A manifest path that no longer points into this keg is left alone and
        reported as skipped. Directories emptied by the removal are pruned.

        Raises:
            KegNotFoundError: If the keg is not in the Cellar.
            InvalidStateError: Unless the keg is `Linked`.
        """
        current = self._current(keg)
        if current.state is not KegState.LINKED:
            raise InvalidStateError(current.ident, current.state.value, "unlink")

        result = UnlinkResult(keg=current)
        with self.lock.hold():
            for rel in sorted(current.link_manifest):
                target = self.prefix / rel
                if target.is_symlink() and _points_to(target, current.path / rel):
                    target.unlink()
                    result.removed.append(rel)
                else:
                    log.warning(
                        "unlink_skipped",
                        package=current.name,
                        version=current.version,
                        path=rel,
                        reason="not a link into this keg",
                    )
                    result.skipped.append(rel)

            self._prune(current.link_dirs)
            result.keg = self.cellar.save(
                replace(
                    current,
                    state=KegState.UNLINKED,
                    link_manifest=frozenset(),
                    link_dirs=frozenset(),
                )
            )

        log.info(
            "keg_unlinked",
            package=current.name,
            version=current.version,
            removed=len(result.removed),
            skipped=len(result.skipped),
        )
        return result

    def _current(self, keg: Keg) -> Keg:
        current = self.cellar.lookup(keg.name, keg.version)
        if current is None:
            raise KegNotFoundError(keg.name, keg.version)
        return current

    def _leaves(self, root: Path) -> Iterator[str]:
        """Yield keg-relative POSIX paths of files and symlinks, sorted."""
        for base, dirs, files in os.walk(root):
            rel_base = os.path.relpath(base, root)
            if rel_base == ".":
                rel_base = ""
                if META_DIR in dirs:
                    dirs.remove(META_DIR)

            # symlinked directories are linked as a whole, never descended
            leaves = list(files)
            for d in list(dirs):
                if os.path.islink(os.path.join(base, d)):
                    dirs.remove(d)
                    leaves.append(d)
            dirs.sort()

            for name in sorted(leaves):
                yield Path(rel_base, name).as_posix()

    def _ensure_parents(self, keg: Keg, rel: str, created: list[Path]) -> None:
        current = self.prefix
        for part in Path(rel).parts[:-1]:
            current = current / part
            if current.is_dir() and not current.is_symlink():
                continue
            if os.path.lexists(current):
                raise self._conflict(keg, current.relative_to(self.prefix).as_posix(), current)
            current.mkdir()
            created.append(current)

    def _conflict(self, keg: Keg, rel: str, target: Path) -> LinkConflictError:
        owner_name = owner_version = None
        owner = "unmanaged"
        if target.is_symlink():
            dest = os.path.join(target.parent, os.readlink(target))
            found = self.cellar.owner_of(dest)
            if found:
                owner_name, owner_version = found
                owner = f"{owner_name}@{owner_version}"

        log.warning(
            "link_conflict",
            package=keg.name,
            version=keg.version,
            path=rel,
            owner=owner,
        )
        return LinkConflictError(
            path=rel,
            owner=owner,
            keg=keg.ident,
            owner_name=owner_name,
            owner_version=owner_version,
        )

    def _rollback(
        self, keg: Keg, links: list[Path], dirs: list[Path], error: BaseException
    ) -> None:
        for link in reversed(links):
            link.unlink()
        for d in reversed(dirs):
            if _is_empty(d):
                d.rmdir()
        log.info(
            "link_rolled_back",
            package=keg.name,
            version=keg.version,
            links=len(links),
            dirs=len(dirs),
            error=str(error),
        )

    def _prune(self, dirs: frozenset[str]) -> None:
        """Remove directories this keg created, if nothing else lives there now."""
        for rel_dir in sorted(dirs, key=lambda p: len(Path(p).parts), reverse=True):
            d = self.prefix / rel_dir
            if d.is_dir() and not d.is_symlink() and _is_empty(d):
                d.rmdir()


def _points_to(link: Path, source: Path) -> bool:
    dest = os.path.normpath(os.path.join(link.parent, os.readlink(link)))
    return dest == os.path.normpath(source)


def _is_empty(directory: Path) -> bool:
    with os.scandir(directory) as entries:
        return next(entries, None) is None
