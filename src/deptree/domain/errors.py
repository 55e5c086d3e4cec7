import copy
from typing import Iterable, Optional, Tuple

from .models import ResolutionPath, format_path


class DeptreeError(Exception):
    """base class for exceptions in deptree."""
    pass


class RegistryError(DeptreeError):
    """raised when the registry answers with something we cannot use."""
    pass


class ResolutionTimeout(DeptreeError):
    """raised when a whole resolution run exceeds its time limit."""
    def __init__(self, name: str, version: str, seconds: float):
        self.name = name
        self.version = version
        self.seconds = seconds
        super().__init__(f"Resolving {name}@{version} did not finish within {seconds:g}s")


class ResolutionError(DeptreeError):
    """
    base class for failures attributable to one requested dependency.

    `requested` is the exact version or range that was asked for and `path` is
    the chain of (name, version) pairs from the root down to the parent that
    declared the dependency.
    """
    reason = "unresolved"

    def __init__(self, name: str, requested: Optional[str] = None, path: Iterable[Tuple[str, str]] = ()):
        self.name = name
        self.requested = requested
        self.path: ResolutionPath = tuple(path)
        super().__init__(self.describe())

    def describe(self) -> str:
        target = self.name if self.requested is None else f"{self.name}@{self.requested}"
        message = f"{target}: {self.detail()}"
        if self.path:
            message += f" (required by {format_path(self.path)})"
        return message

    def detail(self) -> str:
        return "could not be resolved"

    def attribute(self, requested: Optional[str] = None, path: Optional[Iterable[Tuple[str, str]]] = None) -> "ResolutionError":
        """return a copy of this error pinned to a specific request and path."""
        clone = copy.copy(self)
        if requested is not None:
            clone.requested = requested
        if path is not None:
            clone.path = tuple(path)
        clone.args = (clone.describe(),)
        return clone


class PackageNotFound(ResolutionError):
    """raised when the registry has no record of a package name."""
    reason = "package_not_found"

    def detail(self) -> str:
        return "package not found in registry"


class VersionNotFound(ResolutionError):
    """raised when no published version matches the requested version or range."""
    reason = "version_not_found"

    def __init__(self, name: str, requested: Optional[str] = None, path: Iterable[Tuple[str, str]] = (), available: int = 0):
        self.available = available
        super().__init__(name, requested, path)

    def detail(self) -> str:
        return f"no matching version among {self.available} published"


class CycleDetected(ResolutionError):
    """raised when a package depends on itself, directly or transitively."""
    reason = "cycle_detected"

    @property
    def cycle(self) -> ResolutionPath:
        """the part of the path that forms the loop, ending with the repeated package."""
        start = next(i for i, (name, _) in enumerate(self.path) if name == self.name)
        return self.path[start:]

    def describe(self) -> str:
        return f"dependency cycle detected: {format_path(self.path)}"

    def detail(self) -> str:
        # only the closing edge, which does not depend on where the cycle was entered
        return f"dependency cycle closed by {format_path(self.path[-2:])}"


class RegistryUnavailable(ResolutionError):
    """raised when the registry cannot be reached after retrying."""
    reason = "registry_unavailable"

    def __init__(self, name: str, requested: Optional[str] = None, path: Iterable[Tuple[str, str]] = (), cause: str = ""):
        self.cause = cause
        super().__init__(name, requested, path)

    def detail(self) -> str:
        return f"registry unavailable ({self.cause})" if self.cause else "registry unavailable"
