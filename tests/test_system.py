"""
Tests for host collaborators: OS detection, user lookup, commands, reloads.
"""

import pytest

from phpfpm.errors import ReloadError
from phpfpm.interface import OSFamily
from phpfpm.system import CommandRunner, Supervisor, detect_os_family, lookup_user


class TestDetectOSFamily:
    def test_redhat_release(self, tmp_path):
        (tmp_path / "redhat-release").write_text("Rocky Linux release 9.3\n")
        assert detect_os_family(tmp_path) == OSFamily.RHEL

    def test_debian_version(self, tmp_path):
        (tmp_path / "debian_version").write_text("12.4\n")
        assert detect_os_family(tmp_path) == OSFamily.DEBIAN


class TestLookupUser:
    def test_root_exists(self):
        user = lookup_user("root")
        assert user.uid == 0
        assert user.group

    def test_missing_user(self):
        assert lookup_user("no-such-user-lwphp") is None


class TestCommandRunner:
    def test_success(self):
        result = CommandRunner().run(["echo", "hello"])
        assert result.success
        assert result.stdout.strip() == "hello"

    def test_failure_is_reported(self):
        result = CommandRunner().run(["sh", "-c", "echo broken >&2; exit 3"])
        assert not result.success
        assert result.message == "broken"

    def test_missing_binary(self):
        result = CommandRunner().run(["no-such-binary-lwphp"])
        assert not result.success
        assert result.message

    def test_timeout(self):
        result = CommandRunner(timeout=0.2).run(["sleep", "5"])
        assert not result.success
        assert "timed out" in result.message

    def test_run_script(self):
        assert CommandRunner().run_script("test 1 -eq 1").success


class TestSupervisor:
    def test_reload_ok(self):
        Supervisor(systemctl="true").reload("php82-php-fpm")

    def test_reload_failure(self):
        with pytest.raises(ReloadError, match="php82-php-fpm"):
            Supervisor(systemctl="false").reload("php82-php-fpm")

    def test_missing_systemctl(self):
        with pytest.raises(ReloadError):
            Supervisor(systemctl="no-such-systemctl-lwphp").reload("lsws")
