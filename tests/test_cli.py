"""
Tests for the command line interface: output and exit codes.
"""

import pytest

from phpfpm import cli


@pytest.fixture(autouse=True)
def services(monkeypatch, pools, runtimes):
    monkeypatch.setattr(cli, "get_pool_manager", lambda: pools)
    monkeypatch.setattr(cli, "get_runtime_service", lambda: runtimes)
    monkeypatch.setattr(cli, "setup_logging", lambda debug=False: None)


class TestPoolCommands:
    def test_create(self, capsys, pools):
        assert cli.main(["pool", "create", "alice", "--php-version", "8.1"]) == cli.EXIT_OK
        assert "Created pool for alice (PHP 8.1, remi)" in capsys.readouterr().out
        assert pools.get_pool("alice").php_version == "8.1"

    def test_create_unknown_user(self, capsys):
        assert cli.main(["pool", "create", "mallory"]) == cli.EXIT_ERROR
        assert "mallory" in capsys.readouterr().err

    def test_create_reload_warning(self, capsys, supervisor, pools):
        supervisor.fail = True
        assert cli.main(["pool", "create", "alice"]) == cli.EXIT_RELOAD_WARNING
        assert "warning" in capsys.readouterr().err
        assert pools.get_pool("alice") is not None

    def test_delete(self, pools):
        pools.create_pool("alice")
        assert cli.main(["pool", "delete", "alice"]) == cli.EXIT_OK
        assert cli.main(["pool", "delete", "alice"]) == cli.EXIT_ERROR

    def test_list(self, capsys, pools):
        assert cli.main(["pool", "list"]) == cli.EXIT_OK
        assert "No pools" in capsys.readouterr().out
        pools.create_pool("alice", "8.2", "lsphp")
        cli.main(["pool", "list"])
        out = capsys.readouterr().out
        assert "alice" in out
        assert "lsphp" in out

    def test_show(self, capsys, pools):
        pools.create_pool("alice", settings={"memory_limit": "256M"})
        assert cli.main(["pool", "show", "alice"]) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "PHP 8.2 (remi) [active]" in out
        assert "memory_limit = 256M" in out

    def test_show_missing(self):
        assert cli.main(["pool", "show", "alice"]) == cli.EXIT_ERROR

    def test_config(self, pools):
        pools.create_pool("alice")
        assert cli.main(["pool", "config", "alice", "max_children=80", "memory_limit=256M"]) == cli.EXIT_OK
        settings = pools.get_pool("alice").settings
        assert settings["max_children"] == 80
        assert settings["memory_limit"] == "256M"

    def test_config_malformed(self, pools, capsys):
        pools.create_pool("alice")
        assert cli.main(["pool", "config", "alice", "max_children"]) == cli.EXIT_ERROR
        assert "key=value" in capsys.readouterr().err

    def test_config_invalid(self, pools):
        pools.create_pool("alice")
        assert cli.main(["pool", "config", "alice", "max_children=zero"]) == cli.EXIT_ERROR

    def test_status(self, capsys, pools):
        pools.create_pool("alice")
        assert cli.main(["pool", "status", "alice", "inactive"]) == cli.EXIT_OK
        assert "now inactive" in capsys.readouterr().out
        assert pools.get_pool("alice").status.value == "inactive"
        assert cli.main(["pool", "status", "alice", "active"]) == cli.EXIT_OK
        assert pools.get_pool("alice").status.value == "active"

    def test_status_missing_pool(self, capsys):
        assert cli.main(["pool", "status", "alice", "inactive"]) == cli.EXIT_ERROR
        assert "alice" in capsys.readouterr().err

    def test_status_choices(self, pools):
        pools.create_pool("alice")
        with pytest.raises(SystemExit):
            cli.main(["pool", "status", "alice", "paused"])


class TestPHPCommands:
    def test_install_and_list(self, capsys):
        assert cli.main(["php", "install", "8.3"]) == cli.EXIT_OK
        assert "PHP 8.3 installed via remi" in capsys.readouterr().out
        assert cli.main(["php", "list"]) == cli.EXIT_OK
        assert capsys.readouterr().out.split() == ["8.3"]

    def test_install_stub_provider(self, capsys):
        assert cli.main(["php", "install", "8.2", "--provider", "docker"]) == cli.EXIT_ERROR
        assert "does not support" in capsys.readouterr().err

    def test_available(self, capsys):
        assert cli.main(["php", "available", "--provider", "lsphp"]) == cli.EXIT_OK
        assert "7.4" in capsys.readouterr().out.split()

    def test_providers(self, capsys):
        assert cli.main(["providers"]) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "remi" in out
        assert "(default)" in out
        assert "docker   Docker PHP (not implemented)" in out

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            cli.main([])
