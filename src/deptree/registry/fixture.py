import asyncio
import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .client import RegistryClient
from ..domain.errors import PackageNotFound, RegistryError
from ..domain.models import PackageMetadata


class FixtureRegistry(RegistryClient):
    """
    in-memory registry serving a fixed snapshot.

    packages map a name to either a packument-shaped dict
    ({"versions": {...}, "dist-tags": {...}}) or, as a shorthand, directly to
    {version: {dependency: range}}.
    """

    def __init__(self, packages: Dict[str, Dict[str, Any]], delay: float = 0.0):
        self.packages = {name: self._normalize(name, data) for name, data in packages.items()}
        self.delay = delay
        self.fetch_counts: Counter = Counter()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FixtureRegistry":
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"could not load registry file {path}: {e}") from e
        if not isinstance(data, dict):
            raise RegistryError(f"registry file {path} must contain an object of packages")
        return cls(data)

    @staticmethod
    def _normalize(name: str, data: Dict[str, Any]) -> PackageMetadata:
        if "versions" in data:
            packument = dict(data)
            packument.setdefault("name", name)
            return PackageMetadata.from_packument(packument)
        versions = {v: {"dependencies": deps or {}} for v, deps in data.items()}
        return PackageMetadata.from_packument({"name": name, "versions": versions})

    async def fetch(self, package_name: str) -> PackageMetadata:
        self.fetch_counts[package_name] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        metadata: Optional[PackageMetadata] = self.packages.get(package_name)
        if metadata is None:
            raise PackageNotFound(package_name)
        return metadata

    @property
    def total_fetches(self) -> int:
        return sum(self.fetch_counts.values())
