import asyncio
import hashlib
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .client import RegistryClient
from ..domain.models import PackageMetadata

logger = logging.getLogger(__name__)


class MetadataCache:
    """
    on-disk store of fetched package metadata, one json file per package.

    max_age is in seconds; None keeps entries forever, which is safe as long as
    published versions never change.
    """

    def __init__(self, cache_dir: Path, max_age: Optional[float] = None):
        self.cache_dir = cache_dir
        self.max_age = max_age
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get_entry_path(self, package_name: str) -> Path:
        # scoped names contain a slash; legacy names may differ only by case,
        # which case-insensitive filesystems would fold into one file
        digest = hashlib.sha1(package_name.encode("utf-8")).hexdigest()[:8]
        return self.cache_dir / f"{quote(package_name, safe='@')}-{digest}.json"

    def has_entry(self, package_name: str) -> bool:
        return self._is_fresh(self.get_entry_path(package_name))

    def _is_fresh(self, path: Path) -> bool:
        if not path.exists():
            return False
        if self.max_age is None:
            return True
        return time.time() - path.stat().st_mtime < self.max_age

    def load(self, package_name: str) -> Optional[PackageMetadata]:
        path = self.get_entry_path(package_name)
        if not self._is_fresh(path):
            return None
        try:
            with open(path, "r") as f:
                return PackageMetadata.from_packument(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            # unreadable entries are treated as misses and rewritten on the next store
            logger.warning(f"ignoring corrupt cache entry {path}: {e}")
            return None

    def store(self, metadata: PackageMetadata):
        path = self.get_entry_path(metadata.name)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(metadata.to_packument(), f)
        tmp_path.replace(path)

    def clear(self):
        if self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)
            self.cache_dir.mkdir()


class CachedRegistry(RegistryClient):
    """registry client that consults a MetadataCache before the wrapped client."""

    def __init__(self, registry: RegistryClient, cache: MetadataCache):
        self.registry = registry
        self.cache = cache

    async def fetch(self, package_name: str) -> PackageMetadata:
        # file access runs in the executor so it does not hold up other fetches
        loop = asyncio.get_event_loop()
        metadata = await loop.run_in_executor(None, self.cache.load, package_name)
        if metadata is not None:
            logger.debug(f"cache hit for {package_name}")
            return metadata
        metadata = await self.registry.fetch(package_name)
        try:
            await loop.run_in_executor(None, self.cache.store, metadata)
        except OSError as e:
            logger.warning(f"could not cache metadata for {package_name}: {e}")
        return metadata

    async def aclose(self):
        await self.registry.aclose()
