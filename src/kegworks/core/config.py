"""Configuration module for the kegworks environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

OPTIMIZATION_LEVELS = ("O3", "O2", "Os", "none")


@dataclass(frozen=True)
class KegworksENV:
    """Configuration for the kegworks environment."""
    home: Path
    prefix: Path
    cellar: Path
    formula_dir: Path
    jobs: int = 1
    build_timeout: float | None = None
    optimize: str = "O3"
    log_level: str = "INFO"

    @property
    def staging_root(self) -> Path:
        return self.cellar / ".staging"

    @property
    def lock_file(self) -> Path:
        return self.cellar / ".link.lock"


def discover_env(environ: Mapping[str, str] | None = None) -> KegworksENV:
    """Discover the kegworks environment from `KEGWORKS_*` variables.

    Args:
        environ: Mapping to read from, defaults to `os.environ`.

    Returns:
        The resolved configuration.
    """
    env = os.environ if environ is None else environ

    home = Path(env.get("KEGWORKS_HOME") or Path.home() / ".kegworks")
    prefix = Path(env.get("KEGWORKS_PREFIX") or home / "prefix")
    cellar = Path(env.get("KEGWORKS_CELLAR") or prefix / "Cellar")
    formula_dir = Path(env.get("KEGWORKS_FORMULA_DIR") or home / "formula")

    try:
        jobs = int(env.get("KEGWORKS_JOBS") or os.cpu_count() or 1)
    except ValueError:
        jobs = os.cpu_count() or 1

    timeout_raw = env.get("KEGWORKS_BUILD_TIMEOUT")
    try:
        build_timeout = float(timeout_raw) if timeout_raw else None
    except ValueError:
        build_timeout = None

    optimize = env.get("KEGWORKS_OPTIMIZE", "O3")
    if optimize not in OPTIMIZATION_LEVELS:
        optimize = "O3"

    return KegworksENV(
        home=home,
        prefix=prefix,
        cellar=cellar,
        formula_dir=formula_dir,
        jobs=max(jobs, 1),
        build_timeout=build_timeout,
        optimize=optimize,
        log_level=env.get("KEGWORKS_LOG_LEVEL", "INFO").upper(),
    )
