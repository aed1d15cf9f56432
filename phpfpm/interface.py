"""Abstract interface that all PHP providers must implement."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable


class ProviderType(str, Enum):
    """Closed set of supported PHP providers."""
    REMI = "remi"
    LITESPEED = "lsphp"
    ALT_PHP = "alt-php"
    DOCKER = "docker"


class OSFamily(str, Enum):
    """Host OS family, drives package names and path conventions."""
    RHEL = "rhel"
    DEBIAN = "debian"


class RuntimeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PoolStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class RuntimeVersion:
    """A PHP runtime version tracked in the registry."""
    version: str
    provider: str
    os_family: str
    status: RuntimeStatus = RuntimeStatus.ACTIVE
    installed_at: datetime | None = None


@dataclass
class PoolRecord:
    """A provisioned PHP-FPM pool as stored in the registry."""
    username: str
    php_version: str
    provider: str
    socket_path: str
    config_path: str
    status: PoolStatus = PoolStatus.ACTIVE
    settings: dict = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class SystemUser:
    """Result of an OS account lookup."""
    name: str
    uid: int
    gid: int
    group: str


@runtime_checkable
class Provider(Protocol):
    """Protocol that all PHP providers must implement."""

    # ─────────────────────────────────────────────────────────────────
    # Metadata (properties, no side effects)
    # ─────────────────────────────────────────────────────────────────

    @property
    def provider_type(self) -> ProviderType:
        """Closed identifier for this provider."""
        ...

    @property
    def name(self) -> str:
        """Identifier string stored in the registry (e.g. "remi")."""
        ...

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        ...

    @property
    def description(self) -> str:
        """Description of the provider."""
        ...

    @property
    def implemented(self) -> bool:
        """False for providers whose install/list operations are stubs."""
        ...

    # ─────────────────────────────────────────────────────────────────
    # Path conventions (pure)
    # ─────────────────────────────────────────────────────────────────

    def service_name(self, version: str) -> str:
        """Supervised unit to reload after a pool mutation."""
        ...

    def socket_path(self, username: str, version: str) -> str:
        """Socket path for a user's pool."""
        ...

    def config_path(self, username: str, version: str) -> str:
        """Pool configuration file path for a user's pool."""
        ...

    # ─────────────────────────────────────────────────────────────────
    # Runtime management
    # ─────────────────────────────────────────────────────────────────

    def validate_version(self, version: str) -> None:
        """Raise InvalidVersionError if this provider cannot serve the version."""
        ...

    def install_runtime(self, version: str) -> None:
        """Install a PHP version. Raises InstallError on failure."""
        ...

    def list_installed_runtimes(self) -> list[str]:
        """Versions this provider currently manages."""
        ...

    def list_available_runtimes(self) -> list[str]:
        """Versions this provider can install."""
        ...
