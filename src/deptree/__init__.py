"""resolve the transitive dependency tree of an npm package."""
from .config import FailurePolicy, Settings
from .domain.errors import (
    DeptreeError,
    RegistryError,
    ResolutionError,
    PackageNotFound,
    VersionNotFound,
    CycleDetected,
    RegistryUnavailable,
    ResolutionTimeout,
)
from .domain.models import ResolvedPackage, UnresolvedDependency, PackageMetadata, PackageVersion
from .resolution.resolver import Resolver

__version__ = "0.1.0"

__all__ = [
    "FailurePolicy",
    "Settings",
    "DeptreeError",
    "RegistryError",
    "ResolutionError",
    "PackageNotFound",
    "VersionNotFound",
    "CycleDetected",
    "RegistryUnavailable",
    "ResolutionTimeout",
    "ResolvedPackage",
    "UnresolvedDependency",
    "PackageMetadata",
    "PackageVersion",
    "Resolver",
]
