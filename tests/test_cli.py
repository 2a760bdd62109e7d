"""End-to-end tests for the CLI and the Repository facade."""

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from kegworks.cli.main import app
from kegworks.core.errors import EXIT_SYSTEM_ERROR, EXIT_USER_ERROR, KegInUseError
from kegworks.core.repo import Repository

runner = CliRunner()


def install_script(name: str, marker: str = "") -> list[list[str]]:
    return [[
        "sh", "-c",
        f"mkdir -p {{prefix}}/bin && printf '{name} {{version}}{marker}' > {{prefix}}/bin/{name}",
    ]]


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    formula_dir = tmp_path / "formula"
    formula_dir.mkdir()
    monkeypatch.setenv("KEGWORKS_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("KEGWORKS_PREFIX", str(tmp_path / "prefix"))
    monkeypatch.setenv("KEGWORKS_CELLAR", str(tmp_path / "Cellar"))
    monkeypatch.setenv("KEGWORKS_FORMULA_DIR", str(formula_dir))
    monkeypatch.setenv("KEGWORKS_JOBS", "2")

    (formula_dir / "gettext.json").write_text(json.dumps({
        "name": "gettext",
        "version": "0.22",
        "desc": "GNU internationalization library",
        "install": install_script("gettext"),
    }))
    (formula_dir / "hello.json").write_text(json.dumps([
        {
            "name": "hello",
            "version": "2.12",
            "dependencies": ["gettext>=0.21"],
            "install": install_script("hello"),
        },
        {
            "name": "hello",
            "version": "2.10",
            "dependencies": ["gettext"],
            "install": install_script("hello"),
        },
    ]))
    (formula_dir / "broken.json").write_text(json.dumps({
        "name": "broken",
        "version": "1.0",
        "dependencies": ["gettext"],
        "install": [["sh", "-c", "echo 'configure: error: no compiler' >&2; exit 1"]],
    }))
    return tmp_path


class TestInstallCommand:
    """`kegworks install`."""

    def test_install_links_formula_and_dependency(self, workspace: Path) -> None:
        result = runner.invoke(app, ["install", "hello"])

        assert result.exit_code == 0, result.output
        assert "hello@2.12" in result.output
        assert "gettext@0.22" in result.output
        tool = workspace / "prefix" / "bin" / "hello"
        assert tool.is_symlink()
        assert tool.read_text() == "hello 2.12"

    def test_install_with_constraint(self, workspace: Path) -> None:
        result = runner.invoke(app, ["install", "hello", "--constraint", "<2.11"])
        assert result.exit_code == 0, result.output
        assert (workspace / "prefix" / "bin" / "hello").read_text() == "hello 2.10"

    def test_install_shows_caveats(self, workspace: Path) -> None:
        (workspace / "formula" / "rbx.json").write_text(json.dumps({
            "name": "rbx",
            "version": "1.0",
            "install": install_script("rbx"),
            "caveats": "Run rbx-setup first.",
        }))

        result = runner.invoke(app, ["install", "rbx"])
        assert result.exit_code == 0, result.output
        assert "Run rbx-setup first." in result.output

        info = runner.invoke(app, ["info", "rbx"])
        assert "Run rbx-setup first." in info.output

    def test_unknown_formula_is_user_error(self, workspace: Path) -> None:
        result = runner.invoke(app, ["install", "nope"])
        assert result.exit_code == EXIT_USER_ERROR

    def test_failed_build_rolls_back(self, workspace: Path) -> None:
        result = runner.invoke(app, ["install", "broken"])

        assert result.exit_code == EXIT_SYSTEM_ERROR
        assert "broken" in result.output
        assert not (workspace / "Cellar" / "gettext").exists()
        assert not (workspace / "prefix" / "bin").exists()


class TestOtherCommands:
    """List, info, deps, link, unlink and uninstall."""

    def test_list_and_info(self, workspace: Path) -> None:
        runner.invoke(app, ["install", "gettext"])

        listed = runner.invoke(app, ["list"])
        assert listed.exit_code == 0
        assert "gettext" in listed.output

        info = runner.invoke(app, ["info", "gettext"])
        assert info.exit_code == 0
        assert "GNU internationalization library" in info.output

    def test_info_for_missing_keg(self, workspace: Path) -> None:
        result = runner.invoke(app, ["info", "gettext"])
        assert result.exit_code == EXIT_USER_ERROR
        assert "Not installed" in result.output

    def test_deps_shows_build_order(self, workspace: Path) -> None:
        result = runner.invoke(app, ["deps", "hello"])
        assert result.exit_code == 0
        assert result.output.index("gettext") < result.output.index("hello")

    def test_unlink_and_link(self, workspace: Path) -> None:
        runner.invoke(app, ["install", "gettext"])
        tool = workspace / "prefix" / "bin" / "gettext"

        assert runner.invoke(app, ["unlink", "gettext"]).exit_code == 0
        assert not tool.exists()

        assert runner.invoke(app, ["link", "gettext"]).exit_code == 0
        assert tool.is_symlink()

    def test_uninstall_refuses_while_needed(self, workspace: Path) -> None:
        runner.invoke(app, ["install", "hello"])

        refused = runner.invoke(app, ["uninstall", "gettext"])
        assert refused.exit_code == EXIT_USER_ERROR
        assert (workspace / "Cellar" / "gettext" / "0.22").is_dir()

        assert runner.invoke(app, ["uninstall", "hello"]).exit_code == 0
        assert runner.invoke(app, ["uninstall", "gettext"]).exit_code == 0
        assert not (workspace / "Cellar" / "gettext").exists()
        assert not (workspace / "prefix" / "bin").exists()


class TestRepository:
    """The facade used by the CLI."""

    def test_upgrade_keeps_old_keg_unlinked(self, workspace: Path) -> None:
        repo = Repository()
        asyncio.run(repo.install("hello", "==2.10"))
        result = asyncio.run(repo.install("hello"))

        assert [k.ident for k in result.superseded] == ["hello@2.10"]
        assert [k.ident for k in repo.list_kegs()] == [
            "gettext@0.22", "hello@2.12", "hello@2.10",
        ]
        assert repo.unlink("hello").keg.version == "2.12"

    def test_uninstall_force(self, workspace: Path) -> None:
        repo = Repository()
        asyncio.run(repo.install("hello"))
        with pytest.raises(KegInUseError):
            repo.uninstall("gettext")
        repo.uninstall("gettext", force=True)
        assert repo.cellar.lookup("gettext") is None
