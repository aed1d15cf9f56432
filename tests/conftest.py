"""
Shared fixtures.

Everything runs against a temporary root and SQLite file; no real users,
packages or systemd units are touched.
"""

from pathlib import Path

import pytest

from phpfpm.config import Settings
from phpfpm.errors import ReloadError
from phpfpm.factory import ProviderFactory
from phpfpm.interface import OSFamily, SystemUser
from phpfpm.pools import PoolManager
from phpfpm.runtimes import RuntimeService
from phpfpm.store import RegistryStore
from phpfpm.system import CommandResult

USERS = {
    "alice": SystemUser(name="alice", uid=1001, gid=1001, group="alice"),
    "bob": SystemUser(name="bob", uid=1002, gid=100, group="users"),
    "carol": SystemUser(name="carol", uid=1003, gid=1003, group="carol"),
}


def fake_lookup(username: str) -> SystemUser | None:
    return USERS.get(username)


class FakeRunner:
    """Records commands; every command succeeds unless listed in `failures`."""

    def __init__(self):
        self.commands: list[list[str]] = []
        self.failures: dict[str, str] = {}
        self.outputs: dict[str, str] = {}
        self.available: set[str] = {"dnf", "apt-get"}

    def has_command(self, name: str) -> bool:
        return name in self.available

    def run(self, cmd: list[str]) -> CommandResult:
        self.commands.append(cmd)
        line = " ".join(cmd)
        for needle, message in self.failures.items():
            if needle in line:
                return CommandResult(False, message)
        for needle, stdout in self.outputs.items():
            if needle in line:
                return CommandResult(True, "", stdout)
        return CommandResult(True, "", "")

    def run_script(self, script: str) -> CommandResult:
        return self.run(["sh", "-c", script])


class RecordingSupervisor:
    """Records reloaded services; raises ReloadError when `fail` is set."""

    def __init__(self):
        self.reloaded: list[str] = []
        self.fail = False

    def reload(self, service: str):
        self.reloaded.append(service)
        if self.fail:
            raise ReloadError(f"Failed to reload {service}: unit not found")


@pytest.fixture
def root(tmp_path: Path) -> Path:
    path = tmp_path / "root"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, root: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "registry.db",
        root=root,
        os_family=OSFamily.RHEL,
        default_provider="remi",
    )


@pytest.fixture
def store(settings: Settings):
    s = RegistryStore(settings.db_path)
    yield s
    s.close()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def supervisor() -> RecordingSupervisor:
    return RecordingSupervisor()


@pytest.fixture
def factory(store, settings, runner) -> ProviderFactory:
    return ProviderFactory(store, OSFamily.RHEL, settings, runner=runner)


@pytest.fixture
def debian_factory(store, settings, runner) -> ProviderFactory:
    return ProviderFactory(store, OSFamily.DEBIAN, settings, runner=runner)


@pytest.fixture
def pools(store, factory, supervisor) -> PoolManager:
    return PoolManager(store, factory, supervisor, lookup_user=fake_lookup)


@pytest.fixture
def runtimes(factory, store) -> RuntimeService:
    return RuntimeService(factory, store)
