"""Base provider implementation with sensible defaults."""

import logging
import re
from pathlib import Path

from .errors import InvalidVersionError, ProviderNotImplementedError
from .interface import OSFamily, ProviderType, RuntimeStatus
from .store import RegistryStore
from .system import CommandRunner

logger = logging.getLogger(__name__)

MINIMUM_VERSION = (7, 4)

# Versions every provider knows how to serve
DEFAULT_CATALOG = ("8.3", "8.2", "8.1", "8.0", "7.4")

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)$")


def parse_version(version: str) -> tuple[int, int]:
    """Split "8.2" into (8, 2). Raises InvalidVersionError for other shapes."""
    match = _VERSION_RE.match(version or "")
    if not match:
        raise InvalidVersionError(f"Invalid PHP version format: {version!r} (expected MAJOR.MINOR)")
    return int(match.group(1)), int(match.group(2))


def version_digits(version: str) -> str:
    """"8.2" -> "82", the form used in package and unit names."""
    return version.replace(".", "")


def digits_to_version(digits: str) -> str | None:
    """"82" -> "8.2". Returns None if the digits cannot be a version."""
    if len(digits) < 2 or not digits.isdigit():
        return None
    return f"{digits[0]}.{digits[1:]}"


class BaseProvider:
    """
    Base implementation of the Provider interface.

    Subclasses fill in path conventions and, where supported, `_install` and
    `_probe_installed`. Unsupported operations raise
    ProviderNotImplementedError so callers can tell "nothing installed" from
    "cannot tell".
    """

    catalog: tuple[str, ...] = DEFAULT_CATALOG

    def __init__(
        self,
        provider_type: ProviderType,
        display_name: str,
        description: str,
        store: RegistryStore,
        os_family: OSFamily,
        root: Path = Path("/"),
        runner: CommandRunner | None = None,
        implemented: bool = True,
    ):
        self._provider_type = provider_type
        self._display_name = display_name
        self._description = description
        self._implemented = implemented
        self.store = store
        self.os_family = os_family
        self.root = Path(root)
        self.runner = runner or CommandRunner()

    # ─────────────────────────────────────────────────────────────────
    # Metadata
    # ─────────────────────────────────────────────────────────────────

    @property
    def provider_type(self) -> ProviderType:
        return self._provider_type

    @property
    def name(self) -> str:
        return self._provider_type.value

    @property
    def display_name(self) -> str:
        return self._display_name

    @property
    def description(self) -> str:
        return self._description

    @property
    def implemented(self) -> bool:
        return self._implemented

    def _path(self, absolute: str) -> str:
        """Resolve a conventional absolute path under the configured root."""
        return str(self.root / absolute.lstrip("/"))

    def _not_implemented(self, operation: str) -> ProviderNotImplementedError:
        return ProviderNotImplementedError(f"{self.display_name} provider does not support {operation} yet")

    # ─────────────────────────────────────────────────────────────────
    # Path conventions (subclasses must override)
    # ─────────────────────────────────────────────────────────────────

    def service_name(self, version: str) -> str:
        raise NotImplementedError

    def socket_path(self, username: str, version: str) -> str:
        raise NotImplementedError

    def config_path(self, username: str, version: str) -> str:
        raise NotImplementedError

    # ─────────────────────────────────────────────────────────────────
    # Runtime management
    # ─────────────────────────────────────────────────────────────────

    def validate_version(self, version: str):
        major_minor = parse_version(version)
        if major_minor < MINIMUM_VERSION:
            minimum = ".".join(str(p) for p in MINIMUM_VERSION)
            raise InvalidVersionError(f"PHP version {version} is not supported. Minimum version is {minimum}")
        if version not in self.catalog:
            supported = ", ".join(self.catalog)
            raise InvalidVersionError(
                f"PHP {version} is not offered by {self.display_name} (supported: {supported})"
            )

    def install_runtime(self, version: str):
        """Install a version and register it. A registered version is a no-op."""
        self.validate_version(version)

        known = self.store.get_version(version)
        if known and known.status == RuntimeStatus.ACTIVE and known.provider == self.name:
            logger.info(f"PHP {version} already installed via {self.name}")
            return

        logger.info(f"Installing PHP {version} via {self.name} ({self.os_family.value})")
        self._install(version)
        self.store.register_version(version, self.name, self.os_family.value)
        logger.info(f"PHP {version} installed via {self.name}")

    def _install(self, version: str):
        raise self._not_implemented("installation")

    def list_installed_runtimes(self) -> list[str]:
        """Registry first, live probe of the system as fallback."""
        registered = [
            v.version for v in self.store.list_versions(self.name)
            if v.status == RuntimeStatus.ACTIVE
        ]
        if registered:
            return registered
        logger.debug(f"No registered versions for {self.name}, probing system")
        return self._probe_installed()

    def _probe_installed(self) -> list[str]:
        raise self._not_implemented("listing installed versions")

    def list_available_runtimes(self) -> list[str]:
        return list(self.catalog)
