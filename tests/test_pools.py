"""
Tests for the pool lifecycle: create, delete, reconfigure and their rollback.

Pools are written under a temporary root; reloads go to a recording
supervisor.
"""

import os
import threading
from pathlib import Path

import pytest

from phpfpm.errors import (
    InvalidProviderError,
    InvalidSettingsError,
    InvalidVersionError,
    PoolAlreadyExistsError,
    PoolIOError,
    PoolNotFoundError,
    RegistryError,
    ReloadError,
    UnknownUserError,
)
from phpfpm.interface import PoolStatus


# ═══════════════════════════════════════════════════════════════════
#  create_pool
# ═══════════════════════════════════════════════════════════════════


class TestCreate:
    def test_writes_config_and_registers(self, pools, store, supervisor, root):
        pool = pools.create_pool("alice", "8.2", "remi")
        config = Path(pool.config_path)
        assert config == root / "etc/opt/remi/php82/php-fpm.d/alice.conf"
        assert config.is_file()
        assert "[alice]" in config.read_text()
        assert Path(pool.socket_path).parent.is_dir()
        assert supervisor.reloaded == ["php82-php-fpm"]
        assert store.get_version("8.2").provider == "remi"

    def test_default_provider_and_version(self, pools):
        pool = pools.create_pool("alice")
        assert pool.provider == "remi"
        assert pool.php_version == "8.2"

    def test_initial_settings_persisted_and_rendered(self, pools):
        pool = pools.create_pool("alice", "8.2", settings={"memory_limit": "512M"})
        assert pool.settings["memory_limit"] == "512M"
        assert "php_admin_value[memory_limit] = 512M" in Path(pool.config_path).read_text()

    def test_unknown_user(self, pools, root):
        with pytest.raises(UnknownUserError):
            pools.create_pool("mallory", "8.2")
        assert not any(root.rglob("*.conf"))

    def test_unknown_provider(self, pools):
        with pytest.raises(InvalidProviderError):
            pools.create_pool("alice", "8.2", "cpanel")

    def test_invalid_version_writes_nothing(self, pools, factory, store, supervisor):
        """Create("bob", "9.9") fails before any file is written."""
        would_be = Path(factory.create("remi").config_path("bob", "9.9"))
        with pytest.raises(InvalidVersionError):
            pools.create_pool("bob", "9.9", "remi")
        assert not would_be.exists()
        assert not would_be.parent.exists()
        assert store.get_pool("bob") is None
        assert supervisor.reloaded == []

    def test_invalid_settings_writes_nothing(self, pools, root):
        with pytest.raises(InvalidSettingsError):
            pools.create_pool("alice", "8.2", settings={"max_children": -3})
        assert not any(root.rglob("*.conf"))

    def test_multiline_value_writes_nothing(self, pools, store, root):
        with pytest.raises(InvalidSettingsError):
            pools.create_pool("alice", "8.2", settings={"sendmail_path": "/bin/true\nuser = root"})
        assert not any(root.rglob("*.conf"))
        assert store.get_pool("alice") is None

    def test_small_pool_uses_fitting_spare_servers(self, pools):
        pool = pools.create_pool("alice", "8.2", settings={"max_children": 4})
        text = Path(pool.config_path).read_text()
        assert "pm.max_spare_servers = 4\n" in text
        assert "pm.start_servers = 4\n" in text

    def test_existing_config_file(self, pools, factory):
        config = Path(factory.create("remi").config_path("alice", "8.2"))
        config.parent.mkdir(parents=True)
        config.write_text("; hand written\n")
        with pytest.raises(PoolAlreadyExistsError):
            pools.create_pool("alice", "8.2")
        assert config.read_text() == "; hand written\n"

    def test_same_user_other_version(self, pools):
        """A user has one pool; switching versions means delete then create."""
        pools.create_pool("alice", "8.2")
        with pytest.raises(PoolAlreadyExistsError):
            pools.create_pool("alice", "8.1")

    def test_reload_failure_keeps_pool(self, pools, supervisor, store):
        supervisor.fail = True
        with pytest.raises(ReloadError) as exc:
            pools.create_pool("alice", "8.2")
        assert exc.value.pool.username == "alice"
        assert store.get_pool("alice") is not None
        assert Path(exc.value.pool.config_path).exists()

    def test_rollback_on_registry_failure(self, pools, store, factory, monkeypatch):
        """A failed registry write leaves neither file nor row."""
        def failing_insert(*args, **kwargs):
            raise RegistryError("disk I/O error")

        monkeypatch.setattr(store, "insert_pool", failing_insert)
        config = Path(factory.create("remi").config_path("alice", "8.2"))
        with pytest.raises(RegistryError):
            pools.create_pool("alice", "8.2")
        assert not config.exists()
        assert store.get_pool("alice") is None

    def test_write_failure_is_io_error(self, pools, factory):
        config = Path(factory.create("remi").config_path("alice", "8.2"))
        # A file where the directory should be
        config.parent.parent.mkdir(parents=True)
        config.parent.write_text("")
        with pytest.raises(PoolIOError):
            pools.create_pool("alice", "8.2")

    def test_concurrent_creates_one_winner(self, pools, store):
        barrier = threading.Barrier(2)
        results = []

        def create():
            barrier.wait()
            try:
                results.append(pools.create_pool("alice", "8.2"))
            except (PoolAlreadyExistsError, RegistryError) as e:
                results.append(e)

        threads = [threading.Thread(target=create) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(store.list_pools()) == 1
        assert Path(winners[0].config_path).exists()


# ═══════════════════════════════════════════════════════════════════
#  delete_pool
# ═══════════════════════════════════════════════════════════════════


class TestDelete:
    def test_removes_file_and_row(self, pools, store, supervisor):
        pool = pools.create_pool("alice", "8.2")
        pools.delete_pool("alice")
        assert not Path(pool.config_path).exists()
        assert store.get_pool("alice") is None
        assert supervisor.reloaded == ["php82-php-fpm", "php82-php-fpm"]

    def test_missing_pool(self, pools):
        with pytest.raises(PoolNotFoundError):
            pools.delete_pool("alice")

    def test_tolerates_missing_file(self, pools, store):
        pool = pools.create_pool("alice", "8.2")
        os.remove(pool.config_path)
        pools.delete_pool("alice")
        assert store.get_pool("alice") is None

    def test_reload_failure_still_deletes(self, pools, store, supervisor):
        pools.create_pool("alice", "8.2")
        supervisor.fail = True
        with pytest.raises(ReloadError):
            pools.delete_pool("alice")
        assert store.get_pool("alice") is None

    def test_remove_failure_keeps_row(self, pools, store):
        pool = pools.create_pool("alice", "8.2")
        # A non-empty directory cannot be removed with os.remove
        os.remove(pool.config_path)
        os.mkdir(pool.config_path)
        (Path(pool.config_path) / "keep").write_text("")
        with pytest.raises(PoolIOError):
            pools.delete_pool("alice")
        assert store.get_pool("alice") is not None


# ═══════════════════════════════════════════════════════════════════
#  reconfigure_pool
# ═══════════════════════════════════════════════════════════════════


class TestReconfigure:
    def test_preserves_unset_fields(self, pools):
        pools.create_pool("alice", "8.2", settings={"memory_limit": "256M"})
        pool = pools.reconfigure_pool("alice", {"max_children": 80})
        text = Path(pool.config_path).read_text()
        assert "php_admin_value[memory_limit] = 256M\n" in text
        assert "pm.max_children = 80\n" in text
        assert pool.settings["memory_limit"] == "256M"
        assert pool.settings["max_children"] == 80

    def test_successive_overrides_accumulate(self, pools):
        pools.create_pool("alice", "8.2")
        pools.reconfigure_pool("alice", {"memory_limit": "256M"})
        pool = pools.reconfigure_pool("alice", {"date_timezone": "UTC"})
        text = Path(pool.config_path).read_text()
        assert "memory_limit] = 256M" in text
        assert "date.timezone] = UTC" in text

    def test_reloads(self, pools, supervisor):
        pools.create_pool("alice", "8.2")
        pools.reconfigure_pool("alice", {"max_requests": 1000})
        assert supervisor.reloaded == ["php82-php-fpm", "php82-php-fpm"]

    def test_missing_pool(self, pools):
        with pytest.raises(PoolNotFoundError):
            pools.reconfigure_pool("alice", {"max_children": 80})

    def test_empty_overrides(self, pools):
        pools.create_pool("alice", "8.2")
        with pytest.raises(InvalidSettingsError):
            pools.reconfigure_pool("alice", {})

    def test_invalid_override_leaves_file(self, pools):
        pool = pools.create_pool("alice", "8.2")
        before = Path(pool.config_path).read_text()
        with pytest.raises(InvalidSettingsError):
            pools.reconfigure_pool("alice", {"pm_children": 80})
        assert Path(pool.config_path).read_text() == before

    def test_registry_failure_restores_file(self, pools, store, monkeypatch):
        pool = pools.create_pool("alice", "8.2")
        before = Path(pool.config_path).read_text()

        def failing_update(*args, **kwargs):
            raise RegistryError("database is locked")

        monkeypatch.setattr(store, "update_pool_settings", failing_update)
        with pytest.raises(RegistryError):
            pools.reconfigure_pool("alice", {"max_children": 80})
        assert Path(pool.config_path).read_text() == before

    def test_pool_deleted_during_update_leaves_no_file(self, pools, store, monkeypatch):
        pool = pools.create_pool("alice", "8.2")
        delete_row = store.delete_pool

        def update_after_delete(username, settings):
            delete_row(username)
            raise RegistryError(f"Pool for user {username} is not registered")

        monkeypatch.setattr(store, "update_pool_settings", update_after_delete)
        with pytest.raises(RegistryError):
            pools.reconfigure_pool("alice", {"max_children": 80})
        assert store.get_pool("alice") is None
        assert not Path(pool.config_path).exists()

    def test_injected_directives_rejected(self, pools):
        pool = pools.create_pool("alice", "8.2")
        before = Path(pool.config_path).read_text()
        with pytest.raises(InvalidSettingsError):
            pools.reconfigure_pool("alice", {"date_timezone": "UTC\nuser = root\ngroup = root"})
        assert Path(pool.config_path).read_text() == before
        assert "date_timezone" not in pools.get_pool("alice").settings

    def test_lowering_children_below_spare_default(self, pools):
        pools.create_pool("alice", "8.2")
        pool = pools.reconfigure_pool("alice", {"max_children": 20})
        text = Path(pool.config_path).read_text()
        assert "pm.max_children = 20\n" in text
        assert "pm.max_spare_servers = 20\n" in text
        assert pool.settings["max_children"] == 20

    def test_reload_failure_keeps_new_file(self, pools, supervisor):
        pools.create_pool("alice", "8.2")
        supervisor.fail = True
        with pytest.raises(ReloadError) as exc:
            pools.reconfigure_pool("alice", {"max_children": 80})
        assert exc.value.pool.settings["max_children"] == 80
        assert "pm.max_children = 80" in Path(exc.value.pool.config_path).read_text()

    def test_no_temp_files_left(self, pools):
        pool = pools.create_pool("alice", "8.2")
        pools.reconfigure_pool("alice", {"max_children": 80})
        assert os.listdir(Path(pool.config_path).parent) == ["alice.conf"]


# ═══════════════════════════════════════════════════════════════════
#  Queries, status and the full lifecycle
# ═══════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_alice_scenario(self, pools):
        pools.create_pool("alice", "8.2", "remi")
        pool = pools.get_pool("alice")
        assert pool.php_version == "8.2"
        assert pool.provider == "remi"
        assert pool.status == PoolStatus.ACTIVE

        with pytest.raises(PoolAlreadyExistsError):
            pools.create_pool("alice", "8.2", "remi")

        pools.delete_pool("alice")
        assert pools.get_pool("alice") is None

        with pytest.raises(PoolNotFoundError):
            pools.delete_pool("alice")

    def test_list_pools(self, pools):
        pools.create_pool("carol", "8.1")
        pools.create_pool("alice", "8.2", "lsphp")
        assert [(p.username, p.provider) for p in pools.list_pools()] == [
            ("alice", "lsphp"),
            ("carol", "remi"),
        ]

    def test_litespeed_reloads_lsws(self, pools, supervisor):
        pools.create_pool("alice", "8.2", "lsphp")
        assert supervisor.reloaded == ["lsws"]

    def test_stub_provider_pool(self, pools, supervisor):
        """Pools can target alt-php; only installs are unsupported."""
        pool = pools.create_pool("alice", "7.4", "alt-php")
        assert supervisor.reloaded == ["alt-php74-php-fpm"]
        assert pool.config_path.endswith("etc/opt/alt/php74/php-fpm.d/alice.conf")

    def test_set_status(self, pools):
        pools.create_pool("alice", "8.2")
        assert pools.set_pool_status("alice", "inactive").status == PoolStatus.INACTIVE

    def test_set_status_unknown(self, pools):
        pools.create_pool("alice", "8.2")
        with pytest.raises(InvalidSettingsError):
            pools.set_pool_status("alice", "paused")

    def test_set_status_missing_pool(self, pools):
        with pytest.raises(PoolNotFoundError):
            pools.set_pool_status("alice", PoolStatus.INACTIVE)
