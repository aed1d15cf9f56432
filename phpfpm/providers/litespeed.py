"""LiteSpeed bundled PHP (lsphp) provider."""

import logging
from pathlib import Path

from ..base import BaseProvider, digits_to_version, version_digits
from ..errors import InstallError
from ..interface import OSFamily, ProviderType
from ..store import RegistryStore
from ..system import CommandRunner

logger = logging.getLogger(__name__)


class LiteSpeedProvider(BaseProvider):
    """
    PHP shipped for LiteSpeed Web Server.

    All lsphp pools are served by the single lsws unit, so every version
    reloads the same service.
    """

    def __init__(
        self,
        store: RegistryStore,
        os_family: OSFamily,
        root: Path = Path("/"),
        runner: CommandRunner | None = None,
    ):
        super().__init__(
            provider_type=ProviderType.LITESPEED,
            display_name="LiteSpeed PHP",
            description="LiteSpeed Web Server PHP",
            store=store,
            os_family=os_family,
            root=root,
            runner=runner,
        )

    def service_name(self, version: str) -> str:
        return "lsws"

    def socket_path(self, username: str, version: str) -> str:
        return self._path(f"/tmp/lsphp{version_digits(version)}-{username}.sock")

    def config_path(self, username: str, version: str) -> str:
        return self._path(f"/usr/local/lsws/conf/{username}-{version}.conf")

    def _packages(self, version: str) -> list[str]:
        digits = version_digits(version)
        return [f"lsphp{digits}", f"lsphp{digits}-common", f"lsphp{digits}-process"]

    def _install(self, version: str):
        packages = self._packages(version)
        if self.os_family == OSFamily.RHEL:
            tool = "dnf" if self.runner.has_command("dnf") else "yum"
            result = self.runner.run([tool, "install", "-y", *packages])
        else:
            update = self.runner.run(["apt-get", "update"])
            if not update.success:
                logger.warning(f"apt-get update failed: {update.message}")
            result = self.runner.run(["apt-get", "install", "-y", *packages])

        if not result.success:
            raise InstallError(f"Failed to install LiteSpeed PHP packages: {result.message}")

    def _probe_installed(self) -> list[str]:
        if self.os_family == OSFamily.RHEL:
            result = self.runner.run(["rpm", "-qa", "--queryformat", "%{NAME}\n"])
            names = result.stdout.splitlines()
        else:
            result = self.runner.run(["dpkg-query", "-W", "-f", "${Package}\n"])
            names = result.stdout.splitlines()
        if not result.success:
            logger.debug(f"Package listing failed: {result.message}")
            return []

        versions = []
        for name in names:
            # lsphp82-common -> 8.2
            if name.startswith("lsphp") and name.endswith("-common"):
                version = digits_to_version(name[len("lsphp"):-len("-common")])
                if version and version not in versions:
                    versions.append(version)
        return sorted(versions, reverse=True)
