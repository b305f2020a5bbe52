"""Tests for configuration parsing."""

from pathlib import Path

import pytest

from mesos_ssh.config import (
    CONFIG_ENV,
    DEFAULT_MESOS,
    CommandSpec,
    Defaults,
    RunConfig,
    find_config,
    load_config,
    parse_duration,
)


class TestParseDuration:
    @pytest.mark.parametrize(
        "text, seconds",
        [
            ("90", 90.0),
            ("2.5", 2.5),
            (45, 45.0),
            ("30s", 30.0),
            ("2m", 120.0),
            ("1m30s", 90.0),
            ("500ms", 0.5),
            ("1h", 3600.0),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["", "abc", "10x", "s", "1m 30s", "0", "-5", "0s"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestCommandSpec:
    def test_plain_command_unchanged(self):
        assert CommandSpec("uptime").remote_command() == "uptime"

    def test_workdir_prefix(self):
        spec = CommandSpec("sh setup.sh")
        assert spec.remote_command("/tmp/tmp.abc") == "cd /tmp/tmp.abc; sh setup.sh"

    def test_sudo_wraps_whole_command(self):
        spec = CommandSpec("echo 'hi there'", sudo=True)
        assert spec.remote_command("/tmp/x") == (
            "/usr/bin/sudo /bin/bash -c 'cd /tmp/x; echo '\"'\"'hi there'\"'\"''"
        )

    def test_needs_pty(self):
        assert not CommandSpec("ls").needs_pty
        assert CommandSpec("ls", pty=True).needs_pty
        assert CommandSpec("ls", sudo=True).needs_pty


class TestRunConfig:
    def test_parallel_must_be_positive(self):
        with pytest.raises(ValueError):
            RunConfig(CommandSpec("ls"), user="core", parallel=0)

    def test_defaults(self):
        config = RunConfig(CommandSpec("ls"), user="core")
        assert config.port == 22
        assert config.parallel == 4
        assert not config.interleave


class TestLoadConfig:
    def test_defaults_section(self, tmp_path):
        path = tmp_path / "mesos-ssh.yaml"
        path.write_text(
            "defaults:\n"
            "  user: core\n"
            "  parallel: 8\n"
            "  timeout: 2m\n"
            "  interleave: true\n"
            "  key_file: ~/.ssh/cluster\n"
        )

        defaults = load_config(path)

        assert defaults.user == "core"
        assert defaults.parallel == 8
        assert defaults.timeout == 120.0
        assert defaults.interleave is True
        assert defaults.key_file == Path("~/.ssh/cluster").expanduser()
        assert defaults.mesos == DEFAULT_MESOS
        assert defaults.port == 22

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == Defaults()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("defaults:\n  paralel: 3\n")
        with pytest.raises(ValueError, match="paralel"):
            load_config(path)

    @pytest.mark.parametrize("value", ["0", "-1", "many", "true"])
    def test_bad_parallel(self, tmp_path, value):
        path = tmp_path / "bad.yaml"
        path.write_text(f"defaults:\n  parallel: {value}\n")
        with pytest.raises(ValueError, match="parallel"):
            load_config(path)

    def test_flag_must_be_boolean(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("defaults:\n  agent: 'no'\n")
        with pytest.raises(ValueError, match="agent"):
            load_config(path)


class TestFindConfig:
    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "env.yaml"))
        assert find_config(tmp_path / "cli.yaml") == tmp_path / "cli.yaml"

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "env.yaml"))
        assert find_config() == tmp_path / "env.yaml"

    def test_none(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV, raising=False)
        assert find_config() is None
