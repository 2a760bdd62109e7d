"""Tests for configuration discovery and the build environment."""

from pathlib import Path

from kegworks.backends.env import BuildEnvironment, build_environment
from kegworks.core.config import KegworksENV, discover_env


def config(prefix: str = "/opt/kegworks", **kwargs) -> KegworksENV:
    return KegworksENV(
        home=Path("/home/u/.kegworks"),
        prefix=Path(prefix),
        cellar=Path(prefix) / "Cellar",
        formula_dir=Path("/home/u/.kegworks/formula"),
        **kwargs,
    )


class TestDiscoverEnv:
    """Reading KEGWORKS_* variables."""

    def test_defaults_derive_from_home(self) -> None:
        env = discover_env({"KEGWORKS_HOME": "/tmp/kw", "KEGWORKS_JOBS": "3"})
        assert env.prefix == Path("/tmp/kw/prefix")
        assert env.cellar == Path("/tmp/kw/prefix/Cellar")
        assert env.formula_dir == Path("/tmp/kw/formula")
        assert env.jobs == 3
        assert env.build_timeout is None
        assert env.lock_file == Path("/tmp/kw/prefix/Cellar/.link.lock")

    def test_explicit_paths_win(self) -> None:
        env = discover_env({
            "KEGWORKS_HOME": "/tmp/kw",
            "KEGWORKS_PREFIX": "/opt/p",
            "KEGWORKS_CELLAR": "/var/cellar",
            "KEGWORKS_BUILD_TIMEOUT": "90",
            "KEGWORKS_LOG_LEVEL": "debug",
        })
        assert env.prefix == Path("/opt/p")
        assert env.cellar == Path("/var/cellar")
        assert env.build_timeout == 90.0
        assert env.log_level == "DEBUG"

    def test_bad_values_fall_back(self) -> None:
        env = discover_env({
            "KEGWORKS_HOME": "/tmp/kw",
            "KEGWORKS_JOBS": "many",
            "KEGWORKS_BUILD_TIMEOUT": "soon",
            "KEGWORKS_OPTIMIZE": "O9",
        })
        assert env.jobs >= 1
        assert env.build_timeout is None
        assert env.optimize == "O3"


class TestBuildEnvironment:
    """Compiler and flag selection."""

    def test_flags_for_custom_prefix(self) -> None:
        env = build_environment(config(jobs=4), cc="clang", cxx="clang++")
        assert env["CC"] == "clang"
        assert env["CXX"] == "clang++"
        assert env["LD"] == "clang"
        assert env["CFLAGS"] == "-O3 -w -pipe"
        assert env["CXXFLAGS"] == env["CFLAGS"]
        assert env["MAKEFLAGS"] == "-j4"
        assert env["CPPFLAGS"] == "-isystem /opt/kegworks/include"
        assert env["LDFLAGS"] == "-L/opt/kegworks/lib"
        assert env["CMAKE_PREFIX_PATH"] == "/opt/kegworks"
        assert env.bin_dirs == ("/opt/kegworks/bin",)

    def test_usr_local_needs_no_search_paths(self) -> None:
        env = build_environment(config("/usr/local"), cc="cc", cxx="c++")
        assert env.get("CPPFLAGS") is None
        assert env.get("LDFLAGS") is None

    def test_optimization_level(self) -> None:
        assert build_environment(config(optimize="Os"), cc="cc")["CFLAGS"] == "-Os -w -pipe"
        assert build_environment(config(optimize="none"), cc="cc")["CFLAGS"] == "-w -pipe"

    def test_apply_scrubs_and_prepends_path(self) -> None:
        env = BuildEnvironment(variables={"CC": "gcc"}, bin_dirs=("/opt/kegworks/bin",))
        merged = env.apply({"PATH": "/usr/bin", "LDFLAGS": "-L/evil", "HOME": "/home/u"})
        assert merged == {
            "PATH": "/opt/kegworks/bin:/usr/bin",
            "CC": "gcc",
            "HOME": "/home/u",
        }

    def test_customised_sets_and_unsets(self) -> None:
        env = BuildEnvironment(variables={"CC": "gcc", "CFLAGS": "-O3"})
        custom = env.customised(extra={"NO_FINK": "1"}, unset=["CFLAGS", "RUBYLIB"])
        assert custom.variables == {"CC": "gcc", "NO_FINK": "1"}
        assert custom.unset == ("CFLAGS", "RUBYLIB")
        assert env.variables == {"CC": "gcc", "CFLAGS": "-O3"}

    def test_customised_deparallelize(self) -> None:
        env = build_environment(config(jobs=8), cc="cc")
        assert env.customised(deparallelize=True)["MAKEFLAGS"] == "-j1"

    def test_extra_wins_over_unset(self) -> None:
        custom = BuildEnvironment().customised(extra={"CC": "clang"}, unset=["CC"])
        assert custom["CC"] == "clang"
        assert custom.unset == ()

    def test_apply_drops_unset_inherited_variables(self) -> None:
        env = BuildEnvironment().customised(unset=["RUBYLIB"])
        merged = env.apply({"RUBYLIB": "/home/u/lib", "HOME": "/home/u"})
        assert merged == {"HOME": "/home/u"}
