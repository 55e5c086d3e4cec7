import logging
from typing import Optional
from urllib.parse import quote

import httpx

from .client import RegistryClient
from ..domain.errors import PackageNotFound, RegistryError, RegistryUnavailable
from ..domain.models import PackageMetadata

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"

# abbreviated packuments only carry what resolution needs
ABBREVIATED_ACCEPT = "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"


def package_url(base_url: str, package_name: str) -> str:
    """
    url of a package document.

    scoped names such as `@types/react` are sent as one path segment
    (`@types%2Freact`), which is what the npm registry expects.
    """
    return f"{base_url.rstrip('/')}/{quote(package_name, safe='@')}"


class NpmRegistry(RegistryClient):
    def __init__(self, base_url: str = DEFAULT_REGISTRY_URL, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": ABBREVIATED_ACCEPT},
            follow_redirects=True,
        )

    async def fetch(self, package_name: str) -> PackageMetadata:
        url = package_url(self.base_url, package_name)
        logger.debug(f"GET {url}")
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise RegistryUnavailable(package_name, cause=f"timed out: {e}") from e
        except httpx.TransportError as e:
            raise RegistryUnavailable(package_name, cause=f"connection error: {e}") from e

        if response.status_code == 404:
            raise PackageNotFound(package_name)
        if response.status_code == 429 or response.status_code >= 500:
            raise RegistryUnavailable(package_name, cause=f"HTTP {response.status_code}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RegistryError(f"unexpected response for {package_name}: HTTP {response.status_code}") from e

        try:
            data = response.json()
            data.setdefault("name", package_name)
            return PackageMetadata.from_packument(data)
        except (ValueError, AttributeError, TypeError, KeyError) as e:
            raise RegistryError(f"malformed registry document for {package_name}: {e}") from e

    async def aclose(self):
        await self.client.aclose()
