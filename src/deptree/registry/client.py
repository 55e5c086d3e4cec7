from abc import ABC, abstractmethod

from ..domain.models import PackageMetadata


class RegistryClient(ABC):
    @abstractmethod
    async def fetch(self, package_name: str) -> PackageMetadata:
        """
        get the metadata for a package.

        raises:
            PackageNotFound: the registry has no package with this name.
            RegistryUnavailable: a transient failure (network, 5xx, timeout).
        """
        pass

    async def aclose(self):
        """release any resources held by the client."""
        pass
