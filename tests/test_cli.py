"""Tests for the vhostctl CLI."""
from __future__ import annotations

import json
import os
import signal
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import TYPE_CHECKING

import pytest
import requests
from typer.testing import CliRunner, Result

from vhostctl import __version__
from vhostctl.backups import ConfigBackups
from vhostctl.cli import app

if TYPE_CHECKING:
    from conftest import FakeCommands

runner = CliRunner()

DOMAIN = "example.com"


@pytest.fixture
def env_dirs(tmp_path: Path) -> SimpleNamespace:
    """Write a config file pointing every location into *tmp_path*."""
    available = tmp_path / "sites-available"
    enabled = tmp_path / "sites-enabled"
    available.mkdir()
    enabled.mkdir()
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        "logs_dir: {logs}\n"
        "templates_dir: {templates}\n"
        "nginx:\n"
        "  sites_available: {available}\n"
        "  sites_enabled: {enabled}\n".format(
            logs=tmp_path / "logs",
            templates=tmp_path / "templates",
            available=available,
            enabled=enabled,
        ),
        encoding="utf-8",
    )
    return SimpleNamespace(
        config_file=config_file,
        available=available,
        enabled=enabled,
        certs=tmp_path / "certs",
        operations=tmp_path / "logs" / "operations.jsonl",
    )


@pytest.fixture
def upstream_status(monkeypatch: pytest.MonkeyPatch) -> Callable[[int], None]:
    """Answer upstream probes with a fixed status code."""

    def configure(status: int) -> None:
        def fake_get(self: requests.Session, url: str, **kwargs: object) -> SimpleNamespace:
            return SimpleNamespace(status_code=status)

        monkeypatch.setattr(requests.Session, "get", fake_get)

    return configure


def _invoke(env_dirs: SimpleNamespace, args: list[str], answers: list[str] | None = None) -> Result:
    stdin = "".join(f"{answer}\n" for answer in answers) if answers is not None else None
    return runner.invoke(app, ["--config-file", str(env_dirs.config_file), *args], input=stdin)


def _answers(certs: Path, *, redirect: str = "y", probe: str = "n") -> list[str]:
    return [DOMAIN, str(certs), "y", "30", "10.0.0.5", "8080", redirect, probe]


def _last_record(env_dirs: SimpleNamespace) -> dict[str, object]:
    lines = env_dirs.operations.read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])


def test_version_option() -> None:
    """``--version`` prints the package version."""
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"vhostctl {__version__}" in result.stdout


def test_no_command_prints_help(env_dirs: SimpleNamespace) -> None:
    """Running without a subcommand shows help."""
    result = _invoke(env_dirs, [])

    assert result.exit_code == 0
    assert "setup" in result.stdout


def test_invalid_config_exits(tmp_path: Path) -> None:
    """Configuration errors stop the CLI before any prompt."""
    config_file = tmp_path / "config.yml"
    config_file.write_text("backups:\n  scope: nowhere\n", encoding="utf-8")

    result = runner.invoke(app, ["--config-file", str(config_file), "setup"])

    assert result.exit_code == 1
    assert "Configuration error" in result.stdout


def test_setup_success(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
    upstream_status: Callable[[int], None],
) -> None:
    """A full run writes certificates, the site and its link."""
    upstream_status(200)

    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs, probe="y"))

    assert result.exit_code == 0, result.stdout
    key = env_dirs.certs / f"{DOMAIN}.key"
    assert key.exists()
    assert key.stat().st_mode & 0o777 == 0o600
    assert (env_dirs.certs / f"{DOMAIN}.crt").exists()
    config = env_dirs.available / f"{DOMAIN}.conf"
    document = config.read_text(encoding="utf-8")
    assert "return 301 https://$host$request_uri;" in document
    assert f"ssl_certificate {env_dirs.certs}/{DOMAIN}.crt;" in document
    assert (env_dirs.enabled / f"{DOMAIN}.conf").resolve() == config.resolve()
    assert fake_commands.keys() == ["openssl genrsa", "openssl req", "systemctl restart"]
    assert "reachable" in result.stdout
    assert "Setup completed." in result.stdout

    record = _last_record(env_dirs)
    assert record["command"] == "setup"
    assert record["target"] == {"kind": "site", "name": DOMAIN}
    assert record["result"]["status"] == "success"
    assert record["result"]["context"]["probe"]["outcome"] == "reachable"
    assert record["result"]["changed"] == 4
    assert record["result"]["context"]["changes"][-1] == str(config)
    step_names = [step["name"] for step in record["steps"]]
    assert step_names == [
        "prerequisites",
        "certificate.generate",
        "config.write",
        "config.enable",
        "service.restart",
        "upstream.probe",
    ]


def test_setup_rerun_counts_only_real_changes(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """An identical second run regenerates the bundle but leaves the document alone."""
    first = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs))
    assert first.exit_code == 0, first.stdout

    # certificate directory exists now; then overwrite "y", backup "n", test "n"
    answers = [DOMAIN, str(env_dirs.certs), "30", "10.0.0.5", "8080", "y", "y", "n", "n"]
    second = _invoke(env_dirs, ["setup"], answers)

    assert second.exit_code == 0, second.stdout
    result = _last_record(env_dirs)["result"]
    assert result["changed"] == 3
    assert str(env_dirs.available / f"{DOMAIN}.conf") not in result["context"]["changes"]


def test_setup_without_redirect_proxies_port_80(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """Declining the redirect proxies both server blocks."""
    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs, redirect="n"))

    assert result.exit_code == 0, result.stdout
    document = (env_dirs.available / f"{DOMAIN}.conf").read_text(encoding="utf-8")
    assert "return 301" not in document
    assert document.count("proxy_pass http://10.0.0.5:8080;") == 2
    assert "IP and port testing skipped" in result.stdout


def test_setup_invalid_domain_exits_without_changes(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """Invalid input terminates immediately with status 1."""
    result = _invoke(env_dirs, ["setup"], ["not-a-domain"])

    assert result.exit_code == 1
    assert "Invalid domain name" in result.stdout
    assert fake_commands.calls == []
    assert not env_dirs.certs.exists()
    assert _last_record(env_dirs)["result"]["status"] == "error"


def test_setup_invalid_days_exits(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """Out-of-range expiration days are rejected before generation."""
    result = _invoke(env_dirs, ["setup"], [DOMAIN, str(env_dirs.certs), "y", "366"])

    assert result.exit_code == 1
    assert fake_commands.calls == []


def test_setup_end_of_input_exits(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """Closing stdin mid-run aborts with status 1."""
    result = _invoke(env_dirs, ["setup"], [DOMAIN])

    assert result.exit_code == 1
    assert "No input received" in result.stdout


def test_setup_declined_tool_exits(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """Refusing to install a missing tool exits 1 before any prompt for input."""
    fake_commands.installed.discard("nginx")

    result = _invoke(env_dirs, ["setup"], ["n"])

    assert result.exit_code == 1
    assert "Nginx is required" in result.stdout
    assert fake_commands.calls == []


def test_setup_restart_failure_exits_without_probe(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """A failed restart keeps the configuration and skips the probe."""
    fake_commands.fail("systemctl restart", stderr="Job for nginx.service failed")

    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs)[:-1])

    assert result.exit_code == 1
    assert (env_dirs.available / f"{DOMAIN}.conf").exists()
    assert (env_dirs.certs / f"{DOMAIN}.crt").exists()
    assert "Would you like to test" not in result.stdout
    assert _last_record(env_dirs)["result"]["status"] == "error"


def test_setup_generation_failure_rolls_back(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """An ``openssl`` failure removes the certificate directory."""
    fake_commands.fail("openssl genrsa", stderr="genrsa: cannot write")

    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs)[:-1])

    assert result.exit_code == 1, result.stdout
    assert fake_commands.keys() == ["openssl genrsa"]
    assert not env_dirs.certs.exists()
    assert not (env_dirs.available / f"{DOMAIN}.conf").exists()
    record = _last_record(env_dirs)
    assert record["result"]["context"]["recovery"]["mode"] == "rollback"


def test_setup_interrupted_during_generation(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
) -> None:
    """SIGINT while generating cleans up and restores the prior configuration."""
    config = env_dirs.available / f"{DOMAIN}.conf"
    config.write_text("half-written\n", encoding="utf-8")
    backup = env_dirs.available / f"{DOMAIN}.conf-backup-2024-01-01_00:00:00"
    backup.write_text("previous\n", encoding="utf-8")
    fake_commands.hooks["openssl req"] = lambda: os.kill(os.getpid(), signal.SIGINT)
    previous_handler = signal.getsignal(signal.SIGINT)

    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs)[:-1])

    assert result.exit_code == 1, result.stdout
    assert fake_commands.keys() == ["openssl genrsa", "openssl req"]
    assert not env_dirs.certs.exists()
    assert config.read_text(encoding="utf-8") == "previous\n"
    assert "Cleanup completed." in result.stdout
    assert signal.getsignal(signal.SIGINT) is previous_handler
    record = _last_record(env_dirs)
    assert record["result"]["context"]["recovery"]["mode"] == "cleanup"
    assert "systemctl restart" not in fake_commands.keys()


def test_setup_second_interrupt_during_cleanup(
    env_dirs: SimpleNamespace,
    fake_commands: FakeCommands,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Another SIGINT while the backup is restored does not cut the cleanup short."""
    config = env_dirs.available / f"{DOMAIN}.conf"
    config.write_text("half-written\n", encoding="utf-8")
    backup = env_dirs.available / f"{DOMAIN}.conf-backup-2024-01-01_00:00:00"
    backup.write_text("previous\n", encoding="utf-8")
    fake_commands.hooks["openssl req"] = lambda: os.kill(os.getpid(), signal.SIGINT)
    original_restore = ConfigBackups.restore

    def restore_after_interrupt(self: ConfigBackups, path: Path) -> Path:
        os.kill(os.getpid(), signal.SIGINT)
        return original_restore(self, path)

    monkeypatch.setattr(ConfigBackups, "restore", restore_after_interrupt)

    result = _invoke(env_dirs, ["setup"], _answers(env_dirs.certs)[:-1])

    assert result.exit_code == 1, result.stdout
    assert config.read_text(encoding="utf-8") == "previous\n"
    assert not env_dirs.certs.exists()
    assert "Cleanup completed." in result.stdout


def test_probe_command(
    env_dirs: SimpleNamespace,
    upstream_status: Callable[[int], None],
) -> None:
    """The standalone probe prints the classification."""
    upstream_status(500)

    result = _invoke(env_dirs, ["probe", "10.0.0.5", "8080", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["outcome"] == "server_error"
    assert payload["status_code"] == "500"
    assert _last_record(env_dirs)["result"]["status"] == "warning"


def test_probe_command_table(
    env_dirs: SimpleNamespace,
    upstream_status: Callable[[int], None],
) -> None:
    """Without ``--json`` the result is rendered as a table."""
    upstream_status(200)

    result = _invoke(env_dirs, ["probe", "10.0.0.5", "8080"])

    assert result.exit_code == 0
    assert "10.0.0.5:8080" in result.stdout
    assert "reachable" in result.stdout


def test_probe_command_rejects_bad_port(env_dirs: SimpleNamespace) -> None:
    """Arguments are validated like interactive answers."""
    result = _invoke(env_dirs, ["probe", "10.0.0.5", "70000"])

    assert result.exit_code == 1
    assert "Invalid port number" in result.stdout


def test_probe_command_rejects_oversized_port(env_dirs: SimpleNamespace) -> None:
    """A pasted run of digits is reported as an invalid port."""
    result = _invoke(env_dirs, ["probe", "10.0.0.5", "9" * 5000])

    assert result.exit_code == 1
    assert "Invalid port number" in result.stdout


def test_inspect_command(
    env_dirs: SimpleNamespace,
    bundle_writer: Callable[..., tuple[Path, Path]],
) -> None:
    """``inspect`` reports the parsed certificate."""
    bundle_writer(env_dirs.certs, DOMAIN, days=45)

    result = _invoke(env_dirs, ["inspect", DOMAIN, "--dir", str(env_dirs.certs), "--json"])

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["common_name"] == DOMAIN
    assert payload["key_matches"] is True
    assert payload["certificate"] == str(env_dirs.certs / f"{DOMAIN}.crt")

    table = _invoke(env_dirs, ["inspect", DOMAIN, "--dir", str(env_dirs.certs)])
    assert table.exit_code == 0
    assert "Common name" in table.stdout


def test_inspect_missing_bundle(env_dirs: SimpleNamespace) -> None:
    """Missing certificates exit with status 1."""
    result = _invoke(env_dirs, ["inspect", DOMAIN, "--dir", str(env_dirs.certs)])

    assert result.exit_code == 1
    assert "Failed to load certificate" in result.stdout
