"""Tests for loading formula descriptors from a directory."""

import asyncio
import json
from pathlib import Path

import pytest

from kegworks.backends.fetch import LocalSourceFetcher
from kegworks.backends.shell_builder import ShellProcedure
from kegworks.core.errors import FetchError, InvalidFormulaError
from kegworks.core.models import Dependency
from kegworks.providers.formula_dir import FormulaDirectory, formula_from_dict


def write(directory: Path, name: str, data) -> Path:
    path = directory / f"{name}.json"
    path.write_text(json.dumps(data))
    return path


class TestFormulaDirectory:
    """Reading *.json descriptor files."""

    def test_loads_single_and_multi_version_files(self, tmp_path: Path) -> None:
        write(tmp_path, "zlib", {"name": "zlib", "version": "1.3"})
        write(tmp_path, "lib", [
            {"name": "lib", "version": "1.0"},
            {"name": "lib", "version": "2.0", "dependencies": ["zlib>=1.2"]},
        ])
        (tmp_path / "README.md").write_text("ignored")

        formulae = FormulaDirectory(tmp_path).load()

        assert [f.ident for f in formulae] == ["lib@1.0", "lib@2.0", "zlib@1.3"]
        assert formulae[1].dependencies == (Dependency("zlib", ">=1.2"),)

    def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        assert FormulaDirectory(tmp_path / "nope").load() == []

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{")
        with pytest.raises(InvalidFormulaError) as exc:
            FormulaDirectory(tmp_path).load()
        assert exc.value.context["path"] == str(path)

    def test_invalid_descriptor_names_file(self, tmp_path: Path) -> None:
        path = write(tmp_path, "app", {
            "name": "app", "version": "1.0", "dependencies": ["lib", "lib"],
        })
        with pytest.raises(InvalidFormulaError) as exc:
            FormulaDirectory(tmp_path).load()
        assert exc.value.context["path"] == str(path)


class TestFormulaFromDict:
    """Mapping one JSON object to a Formula."""

    def test_full_descriptor(self) -> None:
        f = formula_from_dict({
            "name": "hello",
            "version": 2,
            "desc": "Says hello",
            "homepage": "https://example.org/hello",
            "keg_only": True,
            "source": "src/hello",
            "dependencies": [{"name": "gettext", "constraint": ">=0.21"}],
            "install": [["make", "PREFIX={prefix}", "install"]],
            "hardlink_identical": ["bin"],
        })
        assert f.version == "2"
        assert f.keg_only is True
        assert f.source == "src/hello"
        assert f.dependencies == (Dependency("gettext", ">=0.21"),)
        assert f.build == ShellProcedure(
            commands=(("make", "PREFIX={prefix}", "install"),),
            hardlink_identical=("bin",),
        )

    def test_build_adjustments_and_caveats(self) -> None:
        f = formula_from_dict({
            "name": "rubinius",
            "version": "1.0",
            "install": [["make", "install"]],
            "env": {"NO_FINK": 1},
            "unset_env": ["RUBYLIB"],
            "deparallelize": True,
            "caveats": "Binaries are installed as rbx.",
        })
        assert f.build.env == (("NO_FINK", "1"),)
        assert f.build.unset_env == ("RUBYLIB",)
        assert f.build.deparallelize is True
        assert f.caveats == "Binaries are installed as rbx."

    @pytest.mark.parametrize("data", [
        [],
        {"version": "1.0"},
        {"name": "x"},
        {"name": "x", "version": "1.0", "install": "make install"},
        {"name": "x", "version": "1.0", "dependencies": [42]},
        {"name": "x", "version": "1.0", "env": ["CC=gcc"]},
        {"name": "x", "version": "1.0", "unset_env": "CC"},
    ])
    def test_rejects_malformed(self, data) -> None:
        with pytest.raises(InvalidFormulaError):
            formula_from_dict(data)


class TestLocalSourceFetcher:
    """Locating source trees."""

    def test_no_source(self, tmp_path: Path) -> None:
        f = formula_from_dict({"name": "meta", "version": "1.0"})
        assert asyncio.run(LocalSourceFetcher(tmp_path).fetch(f)) is None

    def test_relative_source(self, tmp_path: Path) -> None:
        (tmp_path / "src" / "hello").mkdir(parents=True)
        f = formula_from_dict({"name": "hello", "version": "1.0", "source": "src/hello"})
        assert asyncio.run(LocalSourceFetcher(tmp_path).fetch(f)) == tmp_path / "src" / "hello"

    def test_missing_source(self, tmp_path: Path) -> None:
        f = formula_from_dict({"name": "hello", "version": "1.0", "source": "gone"})
        with pytest.raises(FetchError) as exc:
            asyncio.run(LocalSourceFetcher(tmp_path).fetch(f))
        assert exc.value.context["package"] == "hello"
