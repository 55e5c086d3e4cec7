import asyncio
import logging
from typing import Optional

from ..config import FailurePolicy, Settings
from ..domain.errors import ResolutionTimeout
from ..domain.models import ResolvedPackage
from ..registry.client import RegistryClient
from .reporter import ResolutionReporter
from .run import ResolutionRun

logger = logging.getLogger(__name__)


class Resolver:
    def __init__(self, registry: RegistryClient, settings: Optional[Settings] = None, reporter: Optional[ResolutionReporter] = None):
        self.registry = registry
        self.settings = settings or Settings()
        self.reporter = reporter or ResolutionReporter()

    @property
    def policy(self) -> FailurePolicy:
        return self.settings.failure_policy

    def new_run(self) -> ResolutionRun:
        return ResolutionRun(
            self.registry,
            concurrency=self.settings.concurrency,
            retries=self.settings.retries,
            backoff=self.settings.backoff,
            policy=self.settings.failure_policy,
            reporter=self.reporter,
        )

    async def resolve_async(self, name: str, version: str) -> ResolvedPackage:
        """
        resolve the full dependency tree of name@version.

        args:
            name: package name, already decoded (e.g. `@types/react`).
            version: exact published version or dist-tag of the root package.

        returns:
            the root of the resolved tree.

        raises:
            PackageNotFound, VersionNotFound: the root itself cannot be resolved, or
                (abort policy) one of its transitive dependencies cannot.
            CycleDetected: (abort policy) the dependency graph loops.
            RegistryUnavailable: the registry kept failing after retries.
            ResolutionTimeout: resolve_timeout elapsed; all pending work is cancelled.
        """
        if not name or not name.strip():
            raise ValueError("package name must not be empty")
        if not version or not version.strip():
            raise ValueError("version must not be empty")
        name, version = name.strip(), version.strip()

        self.reporter.starting(name, version)
        run = self.new_run()
        timeout = self.settings.resolve_timeout
        try:
            if timeout is None:
                result = await run.resolve(name, version)
            else:
                result = await asyncio.wait_for(run.resolve(name, version), timeout)
        except asyncio.TimeoutError:
            logger.error(f"resolution of {name}@{version} timed out after {timeout}s")
            raise ResolutionTimeout(name, version, timeout) from None
        self.reporter.ending(result)
        return result

    def resolve(self, name: str, version: str) -> ResolvedPackage:
        return asyncio.run(self.resolve_async(name, version))
