"""registry clients used by the resolver."""
from .client import RegistryClient
from .npm import NpmRegistry, DEFAULT_REGISTRY_URL
from .fixture import FixtureRegistry
from .cache import MetadataCache, CachedRegistry

__all__ = [
    "RegistryClient",
    "NpmRegistry",
    "DEFAULT_REGISTRY_URL",
    "FixtureRegistry",
    "MetadataCache",
    "CachedRegistry",
]
