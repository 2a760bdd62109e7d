"""The Cellar: versioned, on-disk store of installed kegs."""

from __future__ import annotations

import errno
import json
import os
import shutil
import tempfile
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from kegworks.core.errors import (
    AlreadyInstalledError,
    InvalidStateError,
    KegNotFoundError,
)
from kegworks.core.logging import get_logger
from kegworks.core.models import Formula, Keg, KegState
from kegworks.core.versions import parse_version

log = get_logger(__name__)

META_DIR = ".kegworks"
RECEIPT = "receipt.json"


class Cellar:
    """Owns `<root>/<name>/<version>/` keg trees and their receipts.

    Each keg carries a receipt in its reserved `.kegworks/` directory with
    its state and link manifest. Nothing else writes inside a keg once it
    has been adopted.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(os.path.abspath(root))
        self.staging_root = self.root / ".staging"

    def __repr__(self) -> str:
        return f"<Cellar {self.root}>"

    # Paths

    def keg_path(self, name: str, version: str) -> Path:
        """Returns `<root>/<name>/<version>`"""
        return self.root / name / version

    def owner_of(self, path: str | Path) -> tuple[str, str] | None:
        """Map an absolute path inside the Cellar to its keg `(name, version)`."""
        try:
            rel = Path(os.path.normpath(path)).relative_to(self.root)
        except ValueError:
            return None
        parts = rel.parts
        if len(parts) < 2 or parts[0].startswith("."):
            return None
        return parts[0], parts[1]

    # Staging

    def staging_dir(self, name: str, version: str) -> Path:
        """Create a fresh staging directory on the same filesystem as the store."""
        self.staging_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{name}-{version}-", dir=self.staging_root))

    def discard_staging(self, staged_dir: Path) -> None:
        """Delete a staging directory that was never adopted."""
        if staged_dir.exists():
            shutil.rmtree(staged_dir)
            log.debug("staging_discarded", path=str(staged_dir))

    # Lifecycle

    def adopt(self, formula: Formula, staged_dir: Path) -> Keg:
        """Take ownership of a staged tree as the keg for `formula`.

        The receipt is written into the staging directory before a single
        rename moves it into place, so a keg is never partially visible.

        Raises:
            AlreadyInstalledError: If a keg for this name and version exists.
        """
        start = time.perf_counter()
        dest = self.keg_path(formula.name, formula.version)
        if os.path.lexists(dest):
            raise AlreadyInstalledError(formula.name, formula.version)

        keg = Keg(
            name=formula.name,
            version=formula.version,
            path=dest,
            state=KegState.STAGED,
            keg_only=formula.keg_only,
            dependencies=tuple(d.name for d in formula.dependencies),
            installed_on=datetime.now(),
        )
        self._write_receipt(Path(staged_dir), keg)

        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(staged_dir, dest)
        except OSError as e:
            if e.errno in (errno.EEXIST, errno.ENOTEMPTY):
                raise AlreadyInstalledError(formula.name, formula.version) from e
            if e.errno != errno.EXDEV:
                raise
            shutil.move(str(staged_dir), str(dest))

        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "keg_adopted",
            package=keg.name,
            version=keg.version,
            path=str(dest),
            duration_ms=duration_ms,
        )
        return keg

    def save(self, keg: Keg) -> Keg:
        """Persist the state and link manifest of `keg`."""
        self._write_receipt(keg.path, keg)
        log.debug("receipt_saved", package=keg.name, version=keg.version, state=keg.state.value)
        return keg

    def retire(self, keg: Keg) -> Keg:
        """Move a never-linked `Staged` keg to `Unlinked` so it can be removed."""
        current = self._require(keg.name, keg.version)
        if current.state is not KegState.STAGED:
            raise InvalidStateError(current.ident, current.state.value, "retire")
        return self.save(replace(current, state=KegState.UNLINKED, link_manifest=frozenset()))

    def remove(self, keg: Keg) -> None:
        """Delete the keg's store path.

        Raises:
            KegNotFoundError: If the keg is not in the Cellar.
            InvalidStateError: Unless the keg is `Unlinked`.
        """
        current = self._require(keg.name, keg.version)
        if current.state is not KegState.UNLINKED:
            raise InvalidStateError(current.ident, current.state.value, "remove")

        shutil.rmtree(current.path)
        try:
            current.path.parent.rmdir()
        except OSError:
            pass  # other versions remain

        log.info("keg_removed", package=keg.name, version=keg.version)

    # Queries

    def lookup(self, name: str, version: str | None = None) -> Keg | None:
        """Return the keg for `name` at `version`, or the newest one installed."""
        if version is None:
            versions = self.versions(name)
            if not versions:
                return None
            version = versions[0]
        return self._read_receipt(self.keg_path(name, version))

    def versions(self, name: str) -> list[str]:
        """Installed versions of `name`, newest first."""
        base = self.root / name
        if name.startswith(".") or not base.is_dir():
            return []
        found = [
            entry.name
            for entry in os.scandir(base)
            if entry.is_dir(follow_symlinks=False)
            and (Path(entry.path) / META_DIR / RECEIPT).is_file()
        ]
        return sorted(found, key=_version_key, reverse=True)

    def list_kegs(self) -> list[Keg]:
        """Every installed keg, by name then newest version first."""
        if not self.root.is_dir():
            return []
        kegs: list[Keg] = []
        for name in sorted(os.listdir(self.root)):
            if name.startswith("."):
                continue
            for version in self.versions(name):
                keg = self.lookup(name, version)
                if keg is not None:
                    kegs.append(keg)
        return kegs

    def linked(self, name: str) -> list[Keg]:
        """Kegs of `name` currently in the `Linked` state."""
        return [
            k for v in self.versions(name)
            if (k := self.lookup(name, v)) is not None and k.state is KegState.LINKED
        ]

    def dependents(self, name: str) -> list[Keg]:
        """Installed kegs of other formulae that depend on `name`."""
        return [k for k in self.list_kegs() if k.name != name and name in k.dependencies]

    # Receipts

    def _require(self, name: str, version: str) -> Keg:
        keg = self.lookup(name, version)
        if keg is None:
            raise KegNotFoundError(name, version)
        return keg

    def _write_receipt(self, keg_root: Path, keg: Keg) -> None:
        meta = keg_root / META_DIR
        meta.mkdir(exist_ok=True)
        data = {
            "name": keg.name,
            "version": keg.version,
            "state": keg.state.value,
            "keg_only": keg.keg_only,
            "dependencies": list(keg.dependencies),
            "installed_on": keg.installed_on.isoformat() if keg.installed_on else None,
            "link_manifest": sorted(keg.link_manifest),
            "link_dirs": sorted(keg.link_dirs),
        }
        tmp = meta / f"{RECEIPT}.tmp"
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, meta / RECEIPT)

    def _read_receipt(self, keg_root: Path) -> Keg | None:
        receipt = keg_root / META_DIR / RECEIPT
        if not receipt.is_file():
            return None
        try:
            data = json.loads(receipt.read_text())
            installed_on = data.get("installed_on")
            return Keg(
                name=data["name"],
                version=data["version"],
                path=keg_root,
                state=KegState(data["state"]),
                keg_only=bool(data.get("keg_only", False)),
                link_manifest=frozenset(data.get("link_manifest", [])),
                link_dirs=frozenset(data.get("link_dirs", [])),
                dependencies=tuple(data.get("dependencies", [])),
                installed_on=datetime.fromisoformat(installed_on) if installed_on else None,
            )
        except (json.JSONDecodeError, KeyError, ValueError):
            log.warning("receipt_corrupted", path=str(receipt), exc_info=True)
            return None


def _version_key(version: str):
    try:
        return (1, parse_version(version), version)
    except ValueError:
        return (0, None, version)
