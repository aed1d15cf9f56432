"""Runtime version management across providers."""

import logging
from dataclasses import dataclass

from .errors import ProviderNotImplementedError
from .factory import ProviderFactory
from .interface import Provider, ProviderType, RuntimeVersion
from .store import RegistryStore

logger = logging.getLogger(__name__)


@dataclass
class ProviderInfo:
    """Catalogue entry for one provider."""
    type: str
    display_name: str
    description: str
    implemented: bool
    default: bool = False


class RuntimeService:
    """Installs and lists PHP runtimes. Provider defaults to the factory's."""

    def __init__(self, factory: ProviderFactory, store: RegistryStore):
        self.factory = factory
        self.store = store

    def _provider(self, provider: ProviderType | str | None) -> Provider:
        if provider is None:
            return self.factory.default()
        return self.factory.create(provider)

    def prepare_install(self, version: str, provider: ProviderType | str | None = None) -> Provider:
        """Check an install request without running it.

        Raises UnknownProviderError, InvalidVersionError or
        ProviderNotImplementedError.
        """
        impl = self._provider(provider)
        impl.validate_version(version)
        if not impl.implemented:
            raise ProviderNotImplementedError(
                f"{impl.display_name} provider does not support installation yet"
            )
        logger.debug(f"Install request accepted: PHP {version} via {impl.name}")
        return impl

    def install(self, version: str, provider: ProviderType | str | None = None) -> RuntimeVersion:
        """Install a runtime and return its registry entry. Raises InstallError."""
        impl = self.prepare_install(version, provider)
        impl.install_runtime(version)
        return self.store.get_version(version)

    def install_task(self, version: str, provider: str | None = None) -> str:
        """Install as a background task step and describe the result."""
        runtime = self.install(version, provider)
        return f"PHP {runtime.version} installed via {runtime.provider}"

    def list_installed(self, provider: ProviderType | str | None = None) -> list[str]:
        return self._provider(provider).list_installed_runtimes()

    def list_available(self, provider: ProviderType | str | None = None) -> list[str]:
        return self._provider(provider).list_available_runtimes()

    def list_registered(self) -> list[RuntimeVersion]:
        return self.store.list_versions()

    def providers(self) -> list[ProviderInfo]:
        default = self.factory.default().name
        return [
            ProviderInfo(
                type=p.name,
                display_name=p.display_name,
                description=p.description,
                implemented=p.implemented,
                default=p.name == default,
            )
            for p in self.factory.all()
        ]
