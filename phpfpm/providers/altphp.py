"""Alternative PHP (alt-php) provider (stub)."""

from pathlib import Path

from ..base import BaseProvider, version_digits
from ..interface import OSFamily, ProviderType
from ..store import RegistryStore
from ..system import CommandRunner


class AltPHPProvider(BaseProvider):
    """
    Alternative PHP builds installed under /opt/alt.

    Path conventions are complete, so pools can be provisioned against an
    alt-php runtime installed by other means. Installation and discovery are
    not implemented yet and raise ProviderNotImplementedError.
    """

    def __init__(
        self,
        store: RegistryStore,
        os_family: OSFamily,
        root: Path = Path("/"),
        runner: CommandRunner | None = None,
    ):
        super().__init__(
            provider_type=ProviderType.ALT_PHP,
            display_name="Alternative PHP",
            description="Alternative PHP packages",
            store=store,
            os_family=os_family,
            root=root,
            runner=runner,
            implemented=False,
        )

    def service_name(self, version: str) -> str:
        return f"alt-php{version_digits(version)}-php-fpm"

    def socket_path(self, username: str, version: str) -> str:
        return self._path(f"/var/run/alt-php{version_digits(version)}/{username}.sock")

    def config_path(self, username: str, version: str) -> str:
        return self._path(f"/etc/opt/alt/php{version_digits(version)}/php-fpm.d/{username}.conf")
