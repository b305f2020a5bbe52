"""Tests for the command line entry point."""

import pytest

from mesos_ssh import runner
from mesos_ssh.collectors import BatchedCollector, InterleavedCollector
from mesos_ssh.config import CONFIG_ENV, CommandSpec, RunConfig
from mesos_ssh.errors import DiscoveryError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)


@pytest.fixture
def password_file(tmp_path):
    path = tmp_path / "pw"
    path.write_text("s3cret\n")
    return path


@pytest.fixture
def captured(monkeypatch):
    """Replace discovery and execution, recording what main() asked for."""
    seen = {}

    async def get_hosts(selector, mesos=None):
        seen["selector"] = selector
        seen["mesos"] = mesos
        return ["h1", "h2"]

    def run_headless(hosts, config, auth):
        seen["hosts"] = hosts
        seen["config"] = config
        seen["auth"] = auth
        return 0

    monkeypatch.setattr(runner, "get_hosts", get_hosts)
    monkeypatch.setattr(runner, "_run_headless", run_headless)
    return seen


def base_args(password_file):
    return ["--no-agent", "--password-file", str(password_file)]


class TestUsage:
    def test_target_required(self):
        with pytest.raises(SystemExit) as exc_info:
            runner.main([])
        assert exc_info.value.code == 2

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            runner.main(["all"])
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("flag", [["-m", "0"], ["--timeout", "soon"]])
    def test_bad_option_values(self, flag):
        with pytest.raises(SystemExit) as exc_info:
            runner.main([*flag, "all", "uptime"])
        assert exc_info.value.code == 2


class TestMain:
    def test_builds_run_config(self, captured, password_file, tmp_path):
        script = tmp_path / "setup.sh"
        script.write_text("echo hi\n")

        code = runner.main(
            [
                *base_args(password_file),
                "-m", "2",
                "--sudo",
                "--timeout", "30s",
                "--user", "core",
                "-f", str(script),
                "--mesos", "http://m1:5050",
                "agents", "uptime", "-a",
            ]
        )

        assert code == 0
        assert captured["selector"] == "agents"
        assert captured["mesos"] == "http://m1:5050"
        assert captured["hosts"] == ["h1", "h2"]
        config = captured["config"]
        assert isinstance(config, RunConfig)
        assert config.parallel == 2
        assert config.user == "core"
        assert config.command == CommandSpec(
            "uptime -a", sudo=True, timeout=30.0, files=(script,)
        )
        assert not captured["auth"].needs_prompt

    def test_config_file_defaults(self, captured, password_file, tmp_path):
        config_file = tmp_path / "mesos-ssh.yaml"
        config_file.write_text("defaults:\n  parallel: 7\n  user: ops\n  interleave: true\n")

        code = runner.main(
            ["--config", str(config_file), *base_args(password_file), "all", "hostname"]
        )

        assert code == 0
        config = captured["config"]
        assert config.parallel == 7
        assert config.user == "ops"
        assert config.interleave

    def test_flag_overrides_config_file(self, captured, password_file, tmp_path, monkeypatch):
        config_file = tmp_path / "mesos-ssh.yaml"
        config_file.write_text("defaults:\n  parallel: 7\n")
        monkeypatch.setenv(CONFIG_ENV, str(config_file))

        runner.main([*base_args(password_file), "-m", "3", "all", "hostname"])

        assert captured["config"].parallel == 3

    def test_bad_config_file(self, tmp_path, capsys):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("defaults:\n  parallel: 0\n")

        assert runner.main(["--config", str(config_file), "all", "ls"]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_staged_file(self, captured, password_file, tmp_path, capsys):
        code = runner.main(
            [*base_args(password_file), "-f", str(tmp_path / "nope"), "all", "ls"]
        )

        assert code == 1
        assert "File not found" in capsys.readouterr().err
        assert "selector" not in captured

    def test_discovery_failure(self, monkeypatch, password_file, capsys):
        async def get_hosts(selector, mesos=None):
            raise DiscoveryError("registry down")

        monkeypatch.setattr(runner, "get_hosts", get_hosts)

        assert runner.main([*base_args(password_file), "all", "ls"]) == 1
        assert "registry down" in capsys.readouterr().err

    def test_no_hosts(self, monkeypatch, password_file, capsys):
        async def get_hosts(selector, mesos=None):
            return []

        monkeypatch.setattr(runner, "get_hosts", get_hosts)

        assert runner.main([*base_args(password_file), "public", "ls"]) == 1
        assert "No hosts found" in capsys.readouterr().err

    def test_auth_failure(self, captured, tmp_path, capsys):
        code = runner.main(
            ["--no-agent", "--password-file", str(tmp_path / "missing"), "all", "ls"]
        )

        assert code == 1
        assert "password file" in capsys.readouterr().err

    def test_interrupted(self, captured, monkeypatch, password_file):
        def interrupt(hosts, config, auth):
            raise KeyboardInterrupt

        monkeypatch.setattr(runner, "_run_headless", interrupt)

        assert runner.main([*base_args(password_file), "all", "ls"]) == 130


def test_make_collector():
    command = CommandSpec("ls")
    batched = runner.make_collector(RunConfig(command, user="core"))
    interleaved = runner.make_collector(RunConfig(command, user="core", interleave=True))

    assert isinstance(batched, BatchedCollector)
    assert isinstance(interleaved, InterleavedCollector)
