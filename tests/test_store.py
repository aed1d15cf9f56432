"""
Tests for the SQLite registry.
"""

import pytest

from phpfpm.errors import RegistryError
from phpfpm.interface import PoolStatus, RuntimeStatus
from phpfpm.store import RegistryStore


def _pool(store, username="alice", version="8.2"):
    store.ensure_version(version, "remi", "rhel")
    return store.insert_pool(
        username, version, "remi", f"/run/{username}.sock", f"/etc/{username}.conf",
        {"memory_limit": "256M"},
    )


# ═══════════════════════════════════════════════════════════════════
#  Runtime versions
# ═══════════════════════════════════════════════════════════════════


class TestVersions:
    def test_register_and_get(self, store):
        version = store.register_version("8.2", "remi", "rhel")
        assert version.version == "8.2"
        assert version.provider == "remi"
        assert version.status == RuntimeStatus.ACTIVE
        assert version.installed_at is not None

    def test_register_reactivates(self, store):
        store.register_version("8.2", "remi", "rhel")
        store.set_version_status("8.2", RuntimeStatus.INACTIVE)
        assert store.register_version("8.2", "remi", "rhel").status == RuntimeStatus.ACTIVE

    def test_ensure_version_keeps_existing(self, store):
        store.register_version("8.2", "remi", "rhel")
        assert store.ensure_version("8.2", "lsphp", "rhel").provider == "remi"

    def test_list_by_provider(self, store):
        store.register_version("8.2", "remi", "rhel")
        store.register_version("8.1", "lsphp", "rhel")
        assert [v.version for v in store.list_versions("remi")] == ["8.2"]
        assert [v.version for v in store.list_versions()] == ["8.2", "8.1"]

    def test_status_of_unknown_version(self, store):
        with pytest.raises(RegistryError):
            store.set_version_status("5.6", RuntimeStatus.INACTIVE)

    def test_get_missing_version(self, store):
        assert store.get_version("8.3") is None


# ═══════════════════════════════════════════════════════════════════
#  Pools
# ═══════════════════════════════════════════════════════════════════


class TestPools:
    def test_insert_and_get(self, store):
        pool = _pool(store)
        assert pool.username == "alice"
        assert pool.status == PoolStatus.ACTIVE
        assert pool.settings == {"memory_limit": "256M"}
        assert store.get_pool("alice") == pool

    def test_username_is_unique(self, store):
        _pool(store)
        with pytest.raises(RegistryError, match="alice"):
            _pool(store, version="8.1")

    def test_version_must_be_registered(self, store):
        with pytest.raises(RegistryError):
            store.insert_pool("alice", "8.0", "remi", "/s", "/c")

    def test_list_sorted(self, store):
        _pool(store, "carol")
        _pool(store, "alice")
        assert [p.username for p in store.list_pools()] == ["alice", "carol"]

    def test_update_settings(self, store):
        _pool(store)
        pool = store.update_pool_settings("alice", {"max_children": 80})
        assert pool.settings == {"max_children": 80}

    def test_update_status(self, store):
        _pool(store)
        assert store.update_pool_status("alice", PoolStatus.INACTIVE).status == PoolStatus.INACTIVE

    def test_update_missing_pool(self, store):
        with pytest.raises(RegistryError):
            store.update_pool_settings("nobody", {})

    def test_delete(self, store):
        _pool(store)
        store.delete_pool("alice")
        assert store.get_pool("alice") is None

    def test_delete_twice(self, store):
        _pool(store)
        store.delete_pool("alice")
        with pytest.raises(RegistryError):
            store.delete_pool("alice")

    def test_persists_across_connections(self, settings):
        first = RegistryStore(settings.db_path)
        _pool(first)
        first.close()
        second = RegistryStore(settings.db_path)
        assert second.get_pool("alice").php_version == "8.2"
        second.close()

    def test_in_memory(self):
        store = RegistryStore(":memory:")
        _pool(store)
        assert len(store.list_pools()) == 1
        store.close()
