"""Replace byte-identical files with hardlinks inside a staged tree."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from kegworks.core.logging import get_logger

log = get_logger(__name__)


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fp:
        for chunk in iter(lambda: fp.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def hardlink_identical(directory: Path) -> list[tuple[str, str]]:
    """Hardlink regular files of `directory` that have identical content.

    Files are visited in name order; the first file with a given digest is
    kept and later duplicates become hardlinks to it. Symlinks and
    subdirectories are left alone.

    Returns:
        `(duplicate, original)` name pairs that were relinked.
    """
    if not directory.is_dir():
        return []

    seen: dict[tuple[int, str], Path] = {}
    linked: list[tuple[str, str]] = []

    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        if not entry.is_file(follow_symlinks=False):
            continue
        path = Path(entry.path)
        key = (entry.stat().st_size, file_digest(path))
        original = seen.get(key)
        if original is None:
            seen[key] = path
            continue
        if os.path.samefile(original, path):
            continue

        tmp = path.with_name(f".{path.name}.kegworks-link")
        os.link(original, tmp)
        os.replace(tmp, path)
        linked.append((path.name, original.name))

    if linked:
        log.info("hardlinked_duplicates", path=str(directory), count=len(linked))
    return linked
