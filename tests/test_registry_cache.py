"""test suite for the on-disk metadata cache."""
import pytest
import asyncio
import os
import time
from pathlib import Path
import tempfile
import shutil
import sys
import threading

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deptree.domain.errors import PackageNotFound
from deptree.domain.models import PackageMetadata
from deptree.registry.cache import CachedRegistry, MetadataCache
from deptree.registry.fixture import FixtureRegistry


def make_metadata(name="test-pkg"):
    return PackageMetadata.from_packument({
        "name": name,
        "dist-tags": {"latest": "1.0.0"},
        "versions": {"1.0.0": {"dependencies": {"dep": "^2.0.0"}}},
    })


class TestMetadataCache:
    @pytest.fixture
    def temp_cache_dir(self):
        """create a temporary cache directory."""
        temp_dir = Path(tempfile.mkdtemp())
        yield temp_dir
        # cleanup
        if temp_dir.exists():
            shutil.rmtree(temp_dir)

    @pytest.fixture
    def cache(self, temp_cache_dir):
        """create a MetadataCache instance."""
        return MetadataCache(temp_cache_dir)

    def test_cache_creation(self, temp_cache_dir):
        cache = MetadataCache(temp_cache_dir / "nested")
        assert cache.cache_dir == temp_cache_dir / "nested"
        assert cache.cache_dir.exists()

    def test_get_entry_path(self, cache):
        path = cache.get_entry_path("test-pkg")
        assert path.name.startswith("test-pkg-")
        assert path.suffix == ".json"

    def test_scoped_entry_path_stays_in_cache_dir(self, cache):
        path = cache.get_entry_path("@types/react")
        assert path.parent == cache.cache_dir
        assert path.name.startswith("@types%2Freact-")

    def test_names_differing_by_case_get_distinct_entries(self, cache):
        lower = cache.get_entry_path("jsonstream")
        upper = cache.get_entry_path("JSONStream")
        assert lower.name.lower() != upper.name.lower()

        cache.store(make_metadata("jsonstream"))
        cache.store(make_metadata("JSONStream"))
        assert cache.load("jsonstream").name == "jsonstream"
        assert cache.load("JSONStream").name == "JSONStream"

    def test_has_entry_not_present(self, cache):
        assert not cache.has_entry("nonexistent")
        assert cache.load("nonexistent") is None

    def test_store_and_load(self, cache):
        metadata = make_metadata()
        cache.store(metadata)

        assert cache.has_entry("test-pkg")
        assert cache.load("test-pkg") == metadata

    def test_expired_entry(self, temp_cache_dir):
        cache = MetadataCache(temp_cache_dir, max_age=60)
        cache.store(make_metadata())
        path = cache.get_entry_path("test-pkg")
        old = time.time() - 120
        os.utime(path, (old, old))

        assert not cache.has_entry("test-pkg")
        assert cache.load("test-pkg") is None

    def test_no_max_age_never_expires(self, cache):
        cache.store(make_metadata())
        path = cache.get_entry_path("test-pkg")
        os.utime(path, (0, 0))
        assert cache.has_entry("test-pkg")

    def test_corrupt_entry_is_a_miss(self, cache):
        cache.get_entry_path("broken").write_text("{not json")
        assert cache.load("broken") is None

    def test_clear_cache(self, cache, temp_cache_dir):
        for i in range(3):
            cache.store(make_metadata(f"pkg{i}"))

        cache.clear()

        # cache dir should be recreated but empty
        assert temp_cache_dir.exists()
        assert list(temp_cache_dir.iterdir()) == []


class TestCachedRegistry:
    @pytest.fixture
    def temp_cache_dir(self):
        temp_dir = Path(tempfile.mkdtemp())
        yield temp_dir
        if temp_dir.exists():
            shutil.rmtree(temp_dir)

    def test_second_fetch_served_from_disk(self, temp_cache_dir):
        upstream = FixtureRegistry({"a": {"1.0.0": {}}})

        first = CachedRegistry(upstream, MetadataCache(temp_cache_dir))
        asyncio.run(first.fetch("a"))
        # a fresh wrapper, as a later resolution run would build
        second = CachedRegistry(upstream, MetadataCache(temp_cache_dir))
        metadata = asyncio.run(second.fetch("a"))

        assert metadata.name == "a"
        assert upstream.fetch_counts["a"] == 1

    def test_file_access_runs_off_the_event_loop(self, temp_cache_dir):
        threads = []

        class RecordingCache(MetadataCache):
            def load(self, package_name):
                threads.append(threading.get_ident())
                return super().load(package_name)

            def store(self, metadata):
                threads.append(threading.get_ident())
                super().store(metadata)

        upstream = FixtureRegistry({"a": {"1.0.0": {}}})
        registry = CachedRegistry(upstream, RecordingCache(temp_cache_dir))
        asyncio.run(registry.fetch("a"))

        # one load miss, then one store
        assert len(threads) == 2
        assert threading.get_ident() not in threads

    def test_not_found_is_not_cached(self, temp_cache_dir):
        upstream = FixtureRegistry({})
        registry = CachedRegistry(upstream, MetadataCache(temp_cache_dir))

        for _ in range(2):
            with pytest.raises(PackageNotFound):
                asyncio.run(registry.fetch("ghost"))

        assert upstream.fetch_counts["ghost"] == 2
        assert list(temp_cache_dir.iterdir()) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
