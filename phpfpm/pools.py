"""Pool lifecycle: keeps config files, the registry and the supervisor in step.

Every mutation runs Validating -> Resolving -> Writing -> Persisting ->
Reloading and ends Committed or Failed. A failure before Reloading undoes
whatever the operation itself wrote; a reload failure leaves the mutation
committed and is reported as ReloadError.
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Callable

from .errors import (
    InvalidProviderError,
    InvalidSettingsError,
    PoolAlreadyExistsError,
    PoolIOError,
    PoolNotFoundError,
    RegistryError,
    ReloadError,
    UnknownProviderError,
    UnknownUserError,
)
from .factory import ProviderFactory
from .interface import OSFamily, PoolRecord, PoolStatus, Provider, ProviderType, SystemUser
from .renderer import PoolSettings, merge_settings, parse_settings, render_pool_config
from .store import RegistryStore
from .system import Supervisor, ensure_dir, lookup_user as default_lookup_user

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "8.2"


class Stage(str, Enum):
    VALIDATING = "validating"
    RESOLVING = "resolving"
    WRITING = "writing"
    PERSISTING = "persisting"
    RELOADING = "reloading"
    COMMITTED = "committed"
    FAILED = "failed"


def _write_atomic(path: Path, content: str):
    """Replace a file's content without readers ever seeing a partial file."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class PoolManager:
    """
    Creates, deletes and reconfigures per-user PHP-FPM pools.

    The registry is the source of truth for which pools exist. Config files
    are written with exclusive create, so of two concurrent creates for the
    same user at most one wins and the loser never touches the winner's file.
    """

    def __init__(
        self,
        store: RegistryStore,
        factory: ProviderFactory,
        supervisor: Supervisor,
        lookup_user: Callable[[str], SystemUser | None] = default_lookup_user,
        os_family: OSFamily | None = None,
        default_provider: ProviderType | str | None = None,
    ):
        self.store = store
        self.factory = factory
        self.supervisor = supervisor
        self.lookup_user = lookup_user
        self.os_family = os_family or factory.os_family
        self.default_provider = default_provider or factory.settings.default_provider

    def _stage(self, operation: str, username: str, stage: Stage):
        logger.debug(f"{operation} {username}: {stage.value}")

    def _resolve_user(self, username: str) -> SystemUser:
        user = self.lookup_user(username) if username else None
        if user is None:
            raise UnknownUserError(f"User {username!r} does not exist")
        return user

    def _resolve_provider(self, provider: ProviderType | str | None) -> Provider:
        try:
            return self.factory.create(provider or self.default_provider)
        except UnknownProviderError as e:
            raise InvalidProviderError(str(e)) from e

    def _require_pool(self, username: str) -> PoolRecord:
        pool = self.store.get_pool(username)
        if pool is None:
            raise PoolNotFoundError(f"Pool for user {username} not found")
        return pool

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def list_pools(self) -> list[PoolRecord]:
        return self.store.list_pools()

    def get_pool(self, username: str) -> PoolRecord | None:
        return self.store.get_pool(username)

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    def create_pool(
        self,
        username: str,
        version: str = DEFAULT_VERSION,
        provider: ProviderType | str | None = None,
        settings: dict | None = None,
    ) -> PoolRecord:
        """
        Provision a pool for an existing OS user.

        Raises UnknownUserError, InvalidProviderError, InvalidVersionError,
        InvalidSettingsError or PoolAlreadyExistsError before anything is
        written. PoolIOError and RegistryError leave no trace of this call.
        ReloadError means the pool was created; it carries the record.
        """
        op = "create"
        self._stage(op, username, Stage.VALIDATING)
        try:
            user = self._resolve_user(username)
            impl = self._resolve_provider(provider)
            impl.validate_version(version)
            pool_settings = parse_settings(settings)
            if self.store.get_pool(username) is not None:
                raise PoolAlreadyExistsError(f"Pool for user {username} already exists")

            self._stage(op, username, Stage.RESOLVING)
            socket_path = impl.socket_path(username, version)
            config_path = Path(impl.config_path(username, version))
            service = impl.service_name(version)
            if config_path.exists():
                raise PoolAlreadyExistsError(f"Pool config already exists: {config_path}")

            self._stage(op, username, Stage.WRITING)
            content = render_pool_config(username, user.group, socket_path, pool_settings)
            self._write_new_config(config_path, Path(socket_path), content)

            self._stage(op, username, Stage.PERSISTING)
            try:
                self.store.ensure_version(version, impl.name, self.os_family.value)
                pool = self.store.insert_pool(
                    username,
                    version,
                    impl.name,
                    socket_path,
                    str(config_path),
                    pool_settings.model_dump(exclude_unset=True),
                )
            except RegistryError:
                self._remove_written(config_path)
                raise
        except Exception:
            self._stage(op, username, Stage.FAILED)
            raise

        logger.info(f"Created pool for {username} (PHP {version}, {impl.name})")

        self._stage(op, username, Stage.RELOADING)
        try:
            self.supervisor.reload(service)
        except ReloadError as e:
            logger.warning(f"Pool for {username} created but reload failed: {e}")
            raise ReloadError(str(e), pool=pool) from e

        self._stage(op, username, Stage.COMMITTED)
        return pool

    def _write_new_config(self, config_path: Path, socket_path: Path, content: str):
        try:
            ensure_dir(config_path.parent)
            ensure_dir(socket_path.parent)
        except OSError as e:
            raise PoolIOError(f"Failed to create directories for {config_path}: {e}") from e

        try:
            f = open(config_path, "x")
        except FileExistsError as e:
            raise PoolAlreadyExistsError(f"Pool config already exists: {config_path}") from e
        except OSError as e:
            raise PoolIOError(f"Failed to write {config_path}: {e}") from e

        try:
            with f:
                f.write(content)
        except OSError as e:
            self._remove_written(config_path)
            raise PoolIOError(f"Failed to write {config_path}: {e}") from e
        logger.debug(f"Wrote {config_path}")

    def _remove_written(self, config_path: Path):
        """Undo a config file this operation created."""
        try:
            config_path.unlink()
            logger.debug(f"Rolled back {config_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Rollback could not remove {config_path}: {e}")

    # ─────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────

    def delete_pool(self, username: str):
        """
        Remove a pool's config file and registry row.

        A config file that is already gone is not an error. If the reload
        fails the pool is still deleted and ReloadError is raised afterwards.
        """
        op = "delete"
        self._stage(op, username, Stage.VALIDATING)
        pool = self._require_pool(username)

        self._stage(op, username, Stage.RESOLVING)
        try:
            service = self._resolve_provider(pool.provider).service_name(pool.php_version)
        except InvalidProviderError as e:
            logger.warning(f"Pool for {username} has unusable provider {pool.provider!r}: {e}")
            service = None

        self._stage(op, username, Stage.WRITING)
        try:
            os.remove(pool.config_path)
        except FileNotFoundError:
            logger.debug(f"Config {pool.config_path} already absent")
        except OSError as e:
            self._stage(op, username, Stage.FAILED)
            raise PoolIOError(f"Failed to remove {pool.config_path}: {e}") from e

        reload_error = None
        self._stage(op, username, Stage.RELOADING)
        if service:
            try:
                self.supervisor.reload(service)
            except ReloadError as e:
                logger.warning(f"Reload after removing {username}'s pool failed: {e}")
                reload_error = e

        self._stage(op, username, Stage.PERSISTING)
        try:
            self.store.delete_pool(username)
        except RegistryError:
            self._stage(op, username, Stage.FAILED)
            raise

        logger.info(f"Deleted pool for {username}")
        if reload_error is not None:
            raise ReloadError(str(reload_error)) from reload_error
        self._stage(op, username, Stage.COMMITTED)

    # ─────────────────────────────────────────────────────────────────
    # Reconfigure
    # ─────────────────────────────────────────────────────────────────

    def reconfigure_pool(self, username: str, overrides: dict) -> PoolRecord:
        """
        Apply sparse setting overrides to an existing pool.

        Fields not named keep their current values. The file is replaced
        atomically; if the registry update fails the previous file comes back,
        unless the pool was deleted meanwhile, in which case the file is removed.
        """
        op = "reconfigure"
        self._stage(op, username, Stage.VALIDATING)
        try:
            pool = self._require_pool(username)
            if not overrides:
                raise InvalidSettingsError("No settings given")
            current = parse_settings(pool.settings)
            merged: PoolSettings = merge_settings(current, overrides)
            user = self._resolve_user(username)

            self._stage(op, username, Stage.RESOLVING)
            service = self._resolve_provider(pool.provider).service_name(pool.php_version)
            config_path = Path(pool.config_path)

            self._stage(op, username, Stage.WRITING)
            try:
                previous = config_path.read_text()
            except FileNotFoundError:
                previous = None
            except OSError as e:
                raise PoolIOError(f"Failed to read {config_path}: {e}") from e
            content = render_pool_config(username, user.group, pool.socket_path, merged)
            try:
                ensure_dir(config_path.parent)
                _write_atomic(config_path, content)
            except OSError as e:
                raise PoolIOError(f"Failed to write {config_path}: {e}") from e

            self._stage(op, username, Stage.PERSISTING)
            try:
                pool = self.store.update_pool_settings(
                    username, merged.model_dump(exclude_unset=True)
                )
            except RegistryError:
                if self.store.get_pool(username) is None:
                    # Deleted underneath us; its file must not come back
                    self._remove_written(config_path)
                else:
                    self._restore(config_path, previous)
                raise
        except Exception:
            self._stage(op, username, Stage.FAILED)
            raise

        logger.info(f"Reconfigured pool for {username}: {', '.join(sorted(overrides))}")

        self._stage(op, username, Stage.RELOADING)
        try:
            self.supervisor.reload(service)
        except ReloadError as e:
            logger.warning(f"Pool for {username} reconfigured but reload failed: {e}")
            raise ReloadError(str(e), pool=pool) from e

        self._stage(op, username, Stage.COMMITTED)
        return pool

    def _restore(self, config_path: Path, previous: str | None):
        try:
            if previous is None:
                config_path.unlink(missing_ok=True)
            else:
                _write_atomic(config_path, previous)
            logger.debug(f"Restored {config_path}")
        except OSError as e:
            logger.error(f"Could not restore {config_path}: {e}")

    # ─────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────

    def set_pool_status(self, username: str, status: PoolStatus | str) -> PoolRecord:
        """Mark a pool active or inactive in the registry."""
        self._require_pool(username)
        try:
            status = PoolStatus(status)
        except ValueError:
            raise InvalidSettingsError(f"Unknown pool status: {status!r}") from None
        pool = self.store.update_pool_status(username, status)
        logger.info(f"Pool for {username} is now {status.value}")
        return pool
