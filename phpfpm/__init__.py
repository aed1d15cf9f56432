"""PHP-FPM pool manager - shared logic for provisioning per-user pools."""

from .config import Settings, get_settings
from .errors import (
    FPMError,
    InstallError,
    InvalidProviderError,
    InvalidSettingsError,
    InvalidVersionError,
    PoolAlreadyExistsError,
    PoolIOError,
    PoolNotFoundError,
    ProviderNotImplementedError,
    RegistryError,
    ReloadError,
    UnknownProviderError,
    UnknownUserError,
)
from .factory import ProviderFactory, get_factory
from .interface import OSFamily, PoolRecord, PoolStatus, Provider, ProviderType, RuntimeVersion
from .pools import PoolManager
from .renderer import PoolSettings, render_pool_config
from .runtimes import RuntimeService
from .store import RegistryStore, get_store
from .system import Supervisor

_pool_manager: PoolManager | None = None
_runtime_service: RuntimeService | None = None


def get_pool_manager() -> PoolManager:
    """Get the global pool manager."""
    global _pool_manager
    if _pool_manager is None:
        factory = get_factory()
        _pool_manager = PoolManager(
            store=get_store(),
            factory=factory,
            supervisor=Supervisor(timeout=get_settings().reload_timeout),
        )
    return _pool_manager


def get_runtime_service() -> RuntimeService:
    """Get the global runtime service."""
    global _runtime_service
    if _runtime_service is None:
        _runtime_service = RuntimeService(get_factory(), get_store())
    return _runtime_service


__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Interface
    "OSFamily",
    "PoolRecord",
    "PoolStatus",
    "Provider",
    "ProviderType",
    "RuntimeVersion",
    "PoolSettings",
    "render_pool_config",
    # Services
    "RegistryStore",
    "ProviderFactory",
    "PoolManager",
    "RuntimeService",
    "Supervisor",
    "get_store",
    "get_factory",
    "get_pool_manager",
    "get_runtime_service",
    # Errors
    "FPMError",
    "UnknownUserError",
    "InvalidProviderError",
    "UnknownProviderError",
    "InvalidVersionError",
    "InvalidSettingsError",
    "PoolAlreadyExistsError",
    "PoolNotFoundError",
    "PoolIOError",
    "RegistryError",
    "ReloadError",
    "InstallError",
    "ProviderNotImplementedError",
]
