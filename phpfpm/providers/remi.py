"""Remi repository (RHEL) / ondrej PPA (Debian) provider."""

import logging
import os
from pathlib import Path

from ..base import BaseProvider, digits_to_version, version_digits
from ..errors import InstallError
from ..interface import OSFamily, ProviderType
from ..store import RegistryStore
from ..system import CommandRunner

logger = logging.getLogger(__name__)

# RHEL major versions with remi-release / epel-release RPMs
RHEL_RELEASES = ("10", "9", "8", "7")

ONDREJ_KEY = "14AA40EC0831756756D7F66C4F4EA0AAE5267A6C"


class RemiProvider(BaseProvider):
    """
    Distro repository PHP.

    RHEL family installs Software Collections style packages from Remi
    (php82-php-fpm, unit php82-php-fpm). Debian family installs from the
    ondrej/php PPA (php8.2-fpm, unit php8.2-fpm).
    """

    def __init__(
        self,
        store: RegistryStore,
        os_family: OSFamily,
        root: Path = Path("/"),
        runner: CommandRunner | None = None,
    ):
        super().__init__(
            provider_type=ProviderType.REMI,
            display_name="Remi Repository",
            description="Remi repository for RHEL, ondrej PPA for Debian",
            store=store,
            os_family=os_family,
            root=root,
            runner=runner,
        )

    @property
    def is_rhel(self) -> bool:
        return self.os_family == OSFamily.RHEL

    # ─────────────────────────────────────────────────────────────────
    # Path conventions
    # ─────────────────────────────────────────────────────────────────

    def service_name(self, version: str) -> str:
        if self.is_rhel:
            return f"php{version_digits(version)}-php-fpm"
        return f"php{version}-fpm"

    def socket_path(self, username: str, version: str) -> str:
        if self.is_rhel:
            return self._path(f"/var/opt/remi/php{version_digits(version)}/run/php-fpm/{username}.sock")
        return self._path(f"/var/run/php/php{version}-{username}.sock")

    def config_path(self, username: str, version: str) -> str:
        if self.is_rhel:
            return self._path(f"/etc/opt/remi/php{version_digits(version)}/php-fpm.d/{username}.conf")
        return self._path(f"/etc/php/{version}/fpm/pool.d/{username}.conf")

    # ─────────────────────────────────────────────────────────────────
    # Installation
    # ─────────────────────────────────────────────────────────────────

    def _package_tool(self) -> str:
        return "dnf" if self.runner.has_command("dnf") else "yum"

    def _install(self, version: str):
        if self.is_rhel:
            self._install_rhel(version)
        else:
            self._install_debian(version)
        self._start_service(version)

    def _install_rhel(self, version: str):
        digits = version_digits(version)
        tool = self._package_tool()
        self._ensure_remi_repo(tool)

        repo = f"remi-php{digits}"
        listing = self.runner.run([tool, "repolist", "all", "-q"])
        repo_exists = listing.success and repo in listing.stdout
        if repo_exists:
            if self.runner.has_command("yum-config-manager"):
                enabled = self.runner.run(["yum-config-manager", "--enable", repo])
            else:
                enabled = self.runner.run([tool, "config-manager", "--enable", repo])
            if not enabled.success:
                logger.warning(f"Could not enable {repo}: {enabled.message}")

        packages = [f"php{digits}-php-fpm", f"php{digits}-php-cli", f"php{digits}-php-common"]
        if repo_exists:
            result = self.runner.run([tool, "install", "-y", f"--enablerepo={repo}", *packages])
            if not result.success:
                logger.warning(f"Install with {repo} enabled failed, retrying without: {result.message}")
                result = self.runner.run([tool, "install", "-y", *packages])
        else:
            result = self.runner.run([tool, "install", "-y", *packages])
        if not result.success:
            raise InstallError(f"Failed to install PHP packages: {result.message}")

    def _ensure_remi_repo(self, tool: str):
        if self.runner.run(["rpm", "-q", "remi-release"]).success:
            return

        release = self.runner.run(["rpm", "-E", "%{rhel}"]).stdout.strip()
        major = release if release in RHEL_RELEASES else "9"
        epel_url = f"https://dl.fedoraproject.org/pub/epel/epel-release-latest-{major}.noarch.rpm"
        remi_url = f"https://rpms.remirepo.net/enterprise/remi-release-{major}.rpm"

        if not self.runner.run(["rpm", "-q", "epel-release"]).success:
            result = self.runner.run([tool, "install", "-y", epel_url])
            if not result.success:
                raise InstallError(f"Failed to install EPEL repository: {result.message}")

        result = self.runner.run([tool, "install", "-y", remi_url])
        if not result.success:
            raise InstallError(f"Failed to install Remi repository: {result.message}")

    def _install_debian(self, version: str):
        result = self.runner.run(["apt-get", "update"])
        if not result.success:
            raise InstallError(f"Failed to update package list: {result.message}")

        prereqs = self.runner.run([
            "apt-get", "install", "-y", "software-properties-common",
            "apt-transport-https", "lsb-release", "ca-certificates", "gnupg2",
        ])
        if not prereqs.success:
            logger.warning(f"Installing prerequisites failed: {prereqs.message}")

        repo = self.runner.run_script(
            "add-apt-repository -y ppa:ondrej/php || "
            'echo "deb https://ppa.launchpadcontent.net/ondrej/php/ubuntu $(lsb_release -sc) main" '
            "> /etc/apt/sources.list.d/ondrej-php.list"
        )
        if not repo.success:
            logger.warning(f"Adding ondrej/php repository failed: {repo.message}")

        key = self.runner.run_script(
            f'curl -fsSL "https://keyserver.ubuntu.com/pks/lookup?op=get&search=0x{ONDREJ_KEY}" '
            "| gpg --dearmor -o /etc/apt/trusted.gpg.d/ondrej-php.gpg"
        )
        if not key.success:
            logger.warning(f"Importing ondrej/php signing key failed: {key.message}")

        result = self.runner.run(["apt-get", "update"])
        if not result.success:
            raise InstallError(f"Failed to update package list: {result.message}")

        packages = [f"php{version}", f"php{version}-fpm", f"php{version}-cli", f"php{version}-common"]
        result = self.runner.run(["apt-get", "install", "-y", *packages])
        if not result.success:
            raise InstallError(f"Failed to install PHP packages: {result.message}")

    def _start_service(self, version: str):
        service = self.service_name(version)
        enabled = self.runner.run(["systemctl", "enable", service])
        if not enabled.success:
            logger.warning(f"Could not enable {service}: {enabled.message}")
        started = self.runner.run(["systemctl", "start", service])
        if not started.success:
            raise InstallError(f"Failed to start PHP-FPM service {service}: {started.message}")

    # ─────────────────────────────────────────────────────────────────
    # Discovery
    # ─────────────────────────────────────────────────────────────────

    def _probe_installed(self) -> list[str]:
        versions = []
        if self.is_rhel:
            result = self.runner.run([self._package_tool(), "list", "installed", "php*-php-fpm"])
            if not result.success:
                logger.debug(f"Package listing failed: {result.message}")
                return versions
            for line in result.stdout.splitlines():
                fields = line.split()
                if not fields:
                    continue
                package = fields[0].split(".")[0]  # strip .x86_64
                if package.startswith("php") and package.endswith("-php-fpm"):
                    version = digits_to_version(package[3:-len("-php-fpm")])
                    if version and version not in versions:
                        versions.append(version)
        else:
            php_dir = Path(self._path("/etc/php"))
            if php_dir.is_dir():
                versions = sorted(
                    (entry for entry in os.listdir(php_dir) if (php_dir / entry / "fpm").is_dir()),
                    reverse=True,
                )
        return versions
