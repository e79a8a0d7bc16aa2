# tests/test_cli.py
"""Test the psync command line frame"""

import pytest
from click.testing import CliRunner

from pattern_sync import __version__
from pattern_sync.cli import _folder_path, cli
from pattern_sync.workspace import Workspace


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """A config pointing at a token file that does not exist yet"""
    monkeypatch.delenv("PATTERN_SYNC_BASE_URL", raising=False)
    monkeypatch.delenv("PATTERN_SYNC_TOKEN_FILE", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "remote:\n"
        "  base_url: https://patterns.example.com\n"
        "auth:\n"
        f"  token_file: {tmp_path / 'session.json'}\n"
        "logging:\n"
        f"  directory: {tmp_path / 'logs'}\n"
    )
    return path


class TestCli:
    """Test options, exit codes and argument helpers"""

    def test_version(self, runner):
        """Test --version"""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_without_command(self, runner):
        """Test a bare invocation prints help"""
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "edit" in result.output

    def test_missing_config(self, runner, tmp_path, monkeypatch):
        """Test a missing config.yaml exits with 1"""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("PATTERN_SYNC_BASE_URL", raising=False)
        result = runner.invoke(cli, ["ls"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_not_signed_in(self, runner, config_file):
        """Test library commands need a session"""
        result = runner.invoke(cli, ["--config", str(config_file), "ls"])
        assert result.exit_code == 2
        assert "psync login" in result.output

    def test_logout_without_session(self, runner, config_file):
        """Test logging out twice is harmless"""
        result = runner.invoke(cli, ["--config", str(config_file), "logout"])
        assert result.exit_code == 0

    @pytest.mark.parametrize("ref,expected", [
        (None, None),
        ("/", None),
        ("root", None),
        ("/live/drums/", "live/drums"),
    ])
    def test_folder_path(self, ref, expected):
        """Test folder arguments are normalized"""
        assert _folder_path(ref) == expected


class TestPull:
    """Test writing the library to a directory"""

    @pytest.fixture(autouse=True)
    def fake_workspace(self, monkeypatch, session, remote):
        """Build workspaces on the in-memory session and remote"""
        monkeypatch.setattr(
            "pattern_sync.cli.Workspace",
            lambda config: Workspace(config, session=session, remote=remote),
        )

    def test_pull_writes_library(self, runner, config_file, tmp_path):
        """Test every track lands under its folder path"""
        out = tmp_path / "library"
        result = runner.invoke(cli, ["--config", str(config_file), "pull", str(out)])
        assert result.exit_code == 0, result.output

        assert (out / "sketch.js").read_text(encoding="utf-8") == 's("hh*8")'
        assert (out / "live" / "drums" / "kick.js").read_text(encoding="utf-8") == 's("bd*4")'
        assert (out / "live" / "song" / "verse.js").read_text(encoding="utf-8") == 'note("e g")'
        assert (out / "library.json").exists()

    def test_pull_keeps_local_files(self, runner, config_file, tmp_path):
        """Test existing files survive unless --force is given"""
        out = tmp_path / "library"
        out.mkdir()
        (out / "sketch.js").write_text("local", encoding="utf-8")

        runner.invoke(cli, ["--config", str(config_file), "pull", str(out), "--suffix", "js"])
        assert (out / "sketch.js").read_text(encoding="utf-8") == "local"

        result = runner.invoke(cli, ["--config", str(config_file), "pull", str(out), "--force"])
        assert result.exit_code == 0, result.output
        assert (out / "sketch.js").read_text(encoding="utf-8") == 's("hh*8")'
