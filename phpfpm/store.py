"""Persistent registry of runtime versions and pools (SQLite).

The registry is the source of truth for which pools exist. Conflicting writes
are serialized here: inserts rely on the UNIQUE constraints, deletes check the
affected row count. Callers never need their own locking.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from .config import get_settings
from .errors import RegistryError
from .interface import PoolRecord, PoolStatus, RuntimeStatus, RuntimeVersion

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS php_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    version TEXT NOT NULL UNIQUE,
    provider TEXT NOT NULL,
    os_family TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    installed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pools (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    php_version TEXT NOT NULL REFERENCES php_versions(version),
    provider TEXT NOT NULL,
    socket_path TEXT NOT NULL,
    config_path TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    settings TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pools_php_version ON pools(php_version);
"""

_VERSION_COLUMNS = "version, provider, os_family, status, installed_at"
_POOL_COLUMNS = (
    "username, php_version, provider, socket_path, config_path, "
    "status, settings, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_version(row: sqlite3.Row) -> RuntimeVersion:
    return RuntimeVersion(
        version=row["version"],
        provider=row["provider"],
        os_family=row["os_family"],
        status=RuntimeStatus(row["status"]),
        installed_at=datetime.fromisoformat(row["installed_at"]),
    )


def _row_to_pool(row: sqlite3.Row) -> PoolRecord:
    return PoolRecord(
        username=row["username"],
        php_version=row["php_version"],
        provider=row["provider"],
        socket_path=row["socket_path"],
        config_path=row["config_path"],
        status=PoolStatus(row["status"]),
        settings=json.loads(row["settings"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class RegistryStore:
    """SQLite-backed store with one connection shared across threads."""

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise RegistryError(f"Failed to open registry {self.db_path}: {e}") from e
        logger.debug(f"Registry opened at {self.db_path}")

    def close(self):
        with self._lock:
            self._conn.close()

    def _write(self, sql: str, params: tuple = ()) -> int:
        """Run one statement in its own transaction, return affected rows."""
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise RegistryError(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise RegistryError(str(e)) from e

    # ─────────────────────────────────────────────────────────────────
    # Runtime versions
    # ─────────────────────────────────────────────────────────────────

    def register_version(self, version: str, provider: str, os_family: str) -> RuntimeVersion:
        """Record a successfully installed version, reactivating it if known."""
        logger.debug(f"Registering PHP {version} ({provider}, {os_family})")
        self._write(
            f"INSERT INTO php_versions ({_VERSION_COLUMNS}) VALUES (?, ?, ?, 'active', ?) "
            "ON CONFLICT(version) DO UPDATE SET status = 'active'",
            (version, provider, os_family, _now()),
        )
        return self.get_version(version)

    def ensure_version(self, version: str, provider: str, os_family: str) -> RuntimeVersion:
        """Register a version only if it is not already known."""
        inserted = self._write(
            f"INSERT OR IGNORE INTO php_versions ({_VERSION_COLUMNS}) VALUES (?, ?, ?, 'active', ?)",
            (version, provider, os_family, _now()),
        )
        if inserted:
            logger.info(f"Auto-registered PHP {version} for provider {provider}")
        return self.get_version(version)

    def get_version(self, version: str) -> RuntimeVersion | None:
        rows = self._query(
            f"SELECT {_VERSION_COLUMNS} FROM php_versions WHERE version = ?", (version,)
        )
        return _row_to_version(rows[0]) if rows else None

    def list_versions(self, provider: str | None = None) -> list[RuntimeVersion]:
        if provider is None:
            rows = self._query(
                f"SELECT {_VERSION_COLUMNS} FROM php_versions ORDER BY version DESC"
            )
        else:
            rows = self._query(
                f"SELECT {_VERSION_COLUMNS} FROM php_versions WHERE provider = ? "
                "ORDER BY version DESC",
                (provider,),
            )
        return [_row_to_version(r) for r in rows]

    def set_version_status(self, version: str, status: RuntimeStatus):
        updated = self._write(
            "UPDATE php_versions SET status = ? WHERE version = ?", (status.value, version)
        )
        if updated == 0:
            raise RegistryError(f"PHP version {version} is not registered")

    # ─────────────────────────────────────────────────────────────────
    # Pools
    # ─────────────────────────────────────────────────────────────────

    def insert_pool(
        self,
        username: str,
        php_version: str,
        provider: str,
        socket_path: str,
        config_path: str,
        settings: dict | None = None,
    ) -> PoolRecord:
        """Insert a pool row. Raises RegistryError if the user already has one."""
        now = _now()
        try:
            self._write(
                f"INSERT INTO pools ({_POOL_COLUMNS}) VALUES (?, ?, ?, ?, ?, 'active', ?, ?, ?)",
                (
                    username, php_version, provider, socket_path, config_path,
                    json.dumps(settings or {}, sort_keys=True), now, now,
                ),
            )
        except RegistryError as e:
            raise RegistryError(f"Pool for user {username} could not be registered: {e}") from e
        logger.debug(f"Inserted pool row for {username}")
        return self.get_pool(username)

    def get_pool(self, username: str) -> PoolRecord | None:
        rows = self._query(
            f"SELECT {_POOL_COLUMNS} FROM pools WHERE username = ?", (username,)
        )
        return _row_to_pool(rows[0]) if rows else None

    def list_pools(self) -> list[PoolRecord]:
        rows = self._query(f"SELECT {_POOL_COLUMNS} FROM pools ORDER BY username")
        return [_row_to_pool(r) for r in rows]

    def update_pool_settings(self, username: str, settings: dict) -> PoolRecord:
        updated = self._write(
            "UPDATE pools SET settings = ?, updated_at = ? WHERE username = ?",
            (json.dumps(settings, sort_keys=True), _now(), username),
        )
        if updated == 0:
            raise RegistryError(f"Pool for user {username} is not registered")
        return self.get_pool(username)

    def update_pool_status(self, username: str, status: PoolStatus) -> PoolRecord:
        updated = self._write(
            "UPDATE pools SET status = ?, updated_at = ? WHERE username = ?",
            (status.value, _now(), username),
        )
        if updated == 0:
            raise RegistryError(f"Pool for user {username} is not registered")
        return self.get_pool(username)

    def delete_pool(self, username: str):
        """Delete a pool row. Raises RegistryError if no row was removed."""
        deleted = self._write("DELETE FROM pools WHERE username = ?", (username,))
        if deleted == 0:
            raise RegistryError(f"Pool for user {username} was already removed")
        logger.debug(f"Deleted pool row for {username}")


_store: RegistryStore | None = None


def get_store() -> RegistryStore:
    """Get the global registry store."""
    global _store
    if _store is None:
        _store = RegistryStore(get_settings().db_path)
    return _store
