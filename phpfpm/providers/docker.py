"""Container-hosted PHP provider (stub)."""

import logging
import re
from pathlib import Path

import httpx

from ..base import MINIMUM_VERSION, BaseProvider, parse_version
from ..interface import OSFamily, ProviderType
from ..store import RegistryStore
from ..system import CommandRunner

logger = logging.getLogger(__name__)

# Tags like "8.3-fpm", "8.2.15-fpm-alpine"
_FPM_TAG_RE = re.compile(r"^(\d+\.\d+)(?:\.\d+)?-fpm(?:-|$)")


class DockerProvider(BaseProvider):
    """
    PHP-FPM running in containers built from the official php image.

    Available versions are read live from the image's tag listing. When the
    registry cannot be reached the static catalog is returned instead; that
    list is approximate, not an authoritative view of published tags.

    Installation and discovery of running containers are not implemented yet.
    """

    def __init__(
        self,
        store: RegistryStore,
        os_family: OSFamily,
        root: Path = Path("/"),
        runner: CommandRunner | None = None,
        hub_url: str = "https://hub.docker.com/v2/repositories/library/php/tags",
        http_timeout: float = 5.0,
    ):
        super().__init__(
            provider_type=ProviderType.DOCKER,
            display_name="Docker PHP",
            description="Docker-hosted PHP containers",
            store=store,
            os_family=os_family,
            root=root,
            runner=runner,
            implemented=False,
        )
        self.hub_url = hub_url
        self.http_timeout = http_timeout

    def service_name(self, version: str) -> str:
        return f"php-{version}-fpm"

    def socket_path(self, username: str, version: str) -> str:
        return self._path(f"/var/run/docker/php-{version}-{username}.sock")

    def config_path(self, username: str, version: str) -> str:
        return self._path(f"/etc/docker/php/{version}/{username}.conf")

    def list_available_runtimes(self) -> list[str]:
        try:
            resp = httpx.get(
                self.hub_url,
                params={"name": "fpm", "page_size": 100},
                timeout=self.http_timeout,
            )
            resp.raise_for_status()
            tags = [t["name"] for t in resp.json().get("results", [])]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Docker Hub tag query failed, using approximate static list: {e}")
            return list(self.catalog)

        versions = set()
        for tag in tags:
            match = _FPM_TAG_RE.match(tag)
            if match and parse_version(match.group(1)) >= MINIMUM_VERSION:
                versions.add(match.group(1))
        if not versions:
            logger.warning("Docker Hub returned no fpm tags, using approximate static list")
            return list(self.catalog)
        return sorted(versions, key=parse_version, reverse=True)
