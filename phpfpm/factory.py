"""Provider factory - maps provider identifiers to provider instances.

The provider set is closed (`ProviderType`). Every member must have a
constructor here; a missing one fails at import time rather than surfacing
later as a runtime "not implemented".
"""

import logging
from typing import Iterator

from .config import Settings, get_settings
from .errors import UnknownProviderError
from .interface import OSFamily, Provider, ProviderType
from .providers import AltPHPProvider, DockerProvider, LiteSpeedProvider, RemiProvider
from .store import RegistryStore, get_store
from .system import CommandRunner, detect_os_family

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES = {
    ProviderType.REMI: RemiProvider,
    ProviderType.LITESPEED: LiteSpeedProvider,
    ProviderType.ALT_PHP: AltPHPProvider,
    ProviderType.DOCKER: DockerProvider,
}

_missing = set(ProviderType) - set(_PROVIDER_CLASSES)
if _missing:
    raise RuntimeError(f"No provider implementation for: {sorted(p.value for p in _missing)}")


def resolve_provider_type(value: ProviderType | str) -> ProviderType:
    """Turn a provider identifier into a ProviderType."""
    if isinstance(value, ProviderType):
        return value
    try:
        return ProviderType(value)
    except ValueError:
        known = ", ".join(p.value for p in ProviderType)
        raise UnknownProviderError(f"Unknown provider: {value!r}. Supported: {known}") from None


class ProviderFactory:
    """Creates and caches provider instances for one OS family."""

    def __init__(
        self,
        store: RegistryStore,
        os_family: OSFamily,
        settings: Settings | None = None,
        runner: CommandRunner | None = None,
    ):
        self.store = store
        self.os_family = os_family
        self.settings = settings or get_settings()
        self.runner = runner or CommandRunner(timeout=self.settings.install_timeout)
        self._providers: dict[ProviderType, Provider] = {}

    def _build(self, provider_type: ProviderType) -> Provider:
        cls = _PROVIDER_CLASSES[provider_type]
        kwargs = {
            "store": self.store,
            "os_family": self.os_family,
            "root": self.settings.root,
            "runner": self.runner,
        }
        if provider_type == ProviderType.DOCKER:
            kwargs["hub_url"] = self.settings.docker_hub_url
            kwargs["http_timeout"] = self.settings.http_timeout
        return cls(**kwargs)

    def create(self, provider: ProviderType | str) -> Provider:
        """Get the provider for an identifier. Raises UnknownProviderError."""
        provider_type = resolve_provider_type(provider)
        if provider_type not in self._providers:
            self._providers[provider_type] = self._build(provider_type)
            logger.debug(f"Created provider: {provider_type.value} ({self.os_family.value})")
        return self._providers[provider_type]

    def default(self) -> Provider:
        """The provider used when a caller does not choose one."""
        return self.create(self.settings.default_provider)

    def all(self) -> list[Provider]:
        return [self.create(p) for p in ProviderType]

    def __iter__(self) -> Iterator[Provider]:
        return iter(self.all())

    def __contains__(self, provider: str) -> bool:
        return provider in {p.value for p in ProviderType}


_factory: ProviderFactory | None = None


def get_factory() -> ProviderFactory:
    """Get the global provider factory."""
    global _factory
    if _factory is None:
        settings = get_settings()
        os_family = settings.os_family or detect_os_family()
        logger.info(f"Using OS family: {os_family.value}")
        _factory = ProviderFactory(get_store(), os_family, settings)
    return _factory
