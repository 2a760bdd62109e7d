"""Build environment computed once per build invocation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Mapping

from kegworks.core.config import KegworksENV

# -w: keep signal to noise high
SAFE_CFLAGS = "-w -pipe"

OPTIMIZATION_FLAGS = {
    "O3": "-O3",
    "O2": "-O2",
    "Os": "-Os",
    "none": "",
}

# cleared so they cannot leak from the caller's shell into a build
_SCRUBBED = ("CDPATH", "CPPFLAGS", "LDFLAGS", "CFLAGS", "CXXFLAGS", "MAKEFLAGS")


@dataclass(frozen=True)
class BuildEnvironment:
    """Compiler and flag selection handed to the build collaborator."""

    variables: Mapping[str, str] = field(default_factory=dict)
    bin_dirs: tuple[str, ...] = ()
    # also removed from the inherited environment by `apply`
    unset: tuple[str, ...] = ()

    def __getitem__(self, key: str) -> str:
        return self.variables[key]

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.variables.get(key, default)

    def customised(
        self,
        *,
        extra: Mapping[str, str] | None = None,
        unset: Iterable[str] = (),
        deparallelize: bool = False,
    ) -> BuildEnvironment:
        """Return a copy adjusted for one formula's build.

        Args:
            extra: Variables to add or override.
            unset: Variables to remove, whether computed here or inherited.
            deparallelize: Force a single make job.
        """
        unset = tuple(unset)
        variables = {k: v for k, v in self.variables.items() if k not in unset}
        if deparallelize:
            variables["MAKEFLAGS"] = "-j1"
        variables.update(extra or {})
        merged = tuple(dict.fromkeys((*self.unset, *unset)))
        return replace(
            self,
            variables=variables,
            unset=tuple(k for k in merged if k not in variables),
        )

    def apply(self, base: Mapping[str, str]) -> dict[str, str]:
        """Overlay these variables on `base`, dropping scrubbed and unset keys first."""
        env = {k: v for k, v in base.items() if k not in _SCRUBBED and k not in self.unset}
        env.update(self.variables)
        if self.bin_dirs:
            path = env.get("PATH", "")
            env["PATH"] = os.pathsep.join([*self.bin_dirs, path] if path else self.bin_dirs)
        return env


def build_environment(
    config: KegworksENV, *, cc: str | None = None, cxx: str | None = None
) -> BuildEnvironment:
    """Select compilers and flags for a build against `config.prefix`.

    Args:
        config: The active configuration (prefix, jobs, optimisation level).
        cc: C compiler override, defaults to `$CC` or `cc`.
        cxx: C++ compiler override, defaults to `$CXX` or `c++`.

    Returns:
        An immutable BuildEnvironment.
    """
    cc = cc or os.environ.get("CC") or "cc"
    cxx = cxx or os.environ.get("CXX") or "c++"
    cflags = " ".join(
        f for f in (OPTIMIZATION_FLAGS.get(config.optimize, "-O3"), SAFE_CFLAGS) if f
    )

    variables = {
        "CC": cc,
        "CXX": cxx,
        "LD": cc,
        "CFLAGS": cflags,
        "CXXFLAGS": cflags,
        "MAKEFLAGS": f"-j{config.jobs}",
    }

    prefix = Path(config.prefix)
    # /usr/local is already an -isystem and -L directory
    if prefix != Path("/usr/local"):
        variables["CPPFLAGS"] = f"-isystem {prefix / 'include'}"
        variables["LDFLAGS"] = f"-L{prefix / 'lib'}"
        # CMake ignores the variables above
        variables["CMAKE_PREFIX_PATH"] = str(prefix)

    return BuildEnvironment(variables=variables, bin_dirs=(str(prefix / "bin"),))
