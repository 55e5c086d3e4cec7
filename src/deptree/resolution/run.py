import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Set, Tuple, Union

from ..config import FailurePolicy
from ..domain.errors import CycleDetected, RegistryUnavailable, ResolutionError, VersionNotFound
from ..domain.models import PackageMetadata, ResolvedPackage, UnresolvedDependency
from ..registry.client import RegistryClient
from ..versioning.selector import is_exact_version, select_version
from .reporter import ResolutionReporter

logger = logging.getLogger(__name__)

# (name, exact version or range) as declared by a parent
Request = Tuple[str, str]
# (name, selected version)
NodeKey = Tuple[str, str]


@dataclass
class _Frame:
    name: str
    version: str
    # remaining declared dependencies, reverse sorted so pop() yields them in name order
    pending: List[Request]
    dependencies: Dict[str, Union[ResolvedPackage, UnresolvedDependency]] = field(default_factory=dict)
    names: Set[str] = field(default_factory=set)
    # names of ancestors that cycles below this node were cut at
    cuts: Set[str] = field(default_factory=set)


class _Subtree(NamedTuple):
    node: ResolvedPackage
    # every package name that appears in the subtree
    names: FrozenSet[str]
    # ancestor names the subtree's cycles were cut at
    cuts: FrozenSet[str]

    def fits(self, on_path: Set[str]) -> bool:
        """
        true when assembling the same node below `on_path` would give this subtree.

        the same cycles must be cut, and no package that was expanded here may
        now be an ancestor.
        """
        return self.cuts <= on_path and not (self.names & on_path)


class ResolutionRun:
    """
    all state for one top-level resolution. a run is used once and discarded,
    so nothing fetched here leaks into another request.

    resolution happens in two passes. discovery fetches metadata concurrently
    and selects a version for every distinct (name, range) it meets, expanding
    each (name, version) exactly once. assembly then walks the discovered graph
    depth first with an explicit stack, tracking the path to detect cycles and
    memoizing finished subtrees.
    """

    def __init__(
        self,
        registry: RegistryClient,
        concurrency: int = 16,
        retries: int = 2,
        backoff: float = 0.5,
        policy: FailurePolicy = FailurePolicy.ABORT,
        reporter: Optional[ResolutionReporter] = None,
    ):
        self.registry = registry
        self.slots = asyncio.Semaphore(concurrency)
        self.retries = retries
        self.backoff = backoff
        self.policy = policy
        self.reporter = reporter or ResolutionReporter()

        self._fetches: Dict[str, asyncio.Future] = {}
        self._selections: Dict[Request, Union[str, ResolutionError]] = {}
        self._nodes: Dict[NodeKey, Dict[str, str]] = {}
        self._subtrees: Dict[NodeKey, List[_Subtree]] = {}

    async def resolve(self, name: str, version: str) -> ResolvedPackage:
        try:
            await self.discover(name, version)
        finally:
            await self.close()
        result = self.assemble(name, version)
        logger.debug(f"resolved {name}@{version}: {len(self._nodes)} distinct packages, {len(self._fetches)} fetched")
        return result

    # discovery

    async def metadata(self, name: str) -> PackageMetadata:
        """fetch metadata once per run; concurrent callers share the same in-flight fetch."""
        task = self._fetches.get(name)
        if task is None:
            task = asyncio.ensure_future(self._fetch_with_retry(name))
            self._fetches[name] = task
            task.add_done_callback(partial(self._forget_cancelled, name))
        # a cancelled waiter must not cancel the fetch other waiters depend on
        return await asyncio.shield(task)

    def _forget_cancelled(self, name: str, task: asyncio.Future):
        if task.cancelled() and self._fetches.get(name) is task:
            del self._fetches[name]

    async def _fetch_with_retry(self, name: str) -> PackageMetadata:
        attempt = 0
        while True:
            try:
                async with self.slots:
                    self.reporter.fetching(name)
                    metadata = await self.registry.fetch(name)
            except RegistryUnavailable as e:
                if attempt >= self.retries:
                    logger.error(f"giving up on {name} after {attempt + 1} attempts: {e.cause}")
                    self.reporter.failed(name, e)
                    raise
                # back off outside the slot so other fetches can proceed
                delay = self.backoff * (2 ** attempt)
                attempt += 1
                logger.warning(f"registry unavailable for {name} ({e.cause}), retry {attempt}/{self.retries} in {delay:.2f}s")
                self.reporter.retrying(name, attempt, delay)
                await asyncio.sleep(delay)
            except ResolutionError as e:
                self.reporter.failed(name, e)
                raise
            else:
                self.reporter.fetched(name, len(metadata.versions))
                return metadata

    def select(self, metadata: PackageMetadata, requested: str, root: bool = False) -> str:
        """
        pick the concrete version for a request.

        an exact published version or a dist-tag is used directly; an exact
        version that was never published is not found. ranges are only
        honoured below the root.
        """
        if requested in metadata.versions:
            return requested
        tagged = metadata.dist_tags.get(requested)
        if tagged is not None and tagged in metadata.versions:
            return tagged
        version = None if root or is_exact_version(requested) else select_version(metadata.versions, requested)
        if version is None:
            raise VersionNotFound(metadata.name, requested, available=len(metadata.versions))
        return version

    async def _visit(self, request: Request, root: bool = False) -> List[Request]:
        """resolve one request and return the dependencies of its version if it is new."""
        name, requested = request
        try:
            metadata = await self.metadata(name)
            version = self.select(metadata, requested, root=root)
        except ResolutionError as e:
            self._selections[request] = e.attribute(requested=requested)
            self.reporter.selected(name, requested, None)
            return []

        self._selections[request] = version
        self.reporter.selected(name, requested, version)
        key = (name, version)
        if key in self._nodes:
            return []
        dependencies = metadata.dependencies_of(version)
        self._nodes[key] = dependencies
        return list(dependencies.items())

    async def discover(self, name: str, version: str):
        root = (name, version)
        scheduled = {root}
        pending = {asyncio.ensure_future(self._visit(root, root=True))}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    for child in task.result():
                        if child in scheduled:
                            continue
                        scheduled.add(child)
                        pending.add(asyncio.ensure_future(self._visit(child)))
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def close(self):
        """cancel fetches nobody is waiting for any more and collect their outcomes."""
        tasks = list(self._fetches.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # assembly

    def assemble(self, name: str, version: str) -> ResolvedPackage:
        outcome = self._selections[(name, version)]
        if isinstance(outcome, ResolutionError):
            # failures of the root request are never tolerated
            raise outcome

        path: List[NodeKey] = []
        on_path: Set[str] = set()
        stack: List[_Frame] = []

        def push(node_name: str, node_version: str):
            path.append((node_name, node_version))
            on_path.add(node_name)
            declared = self._nodes[(node_name, node_version)]
            stack.append(_Frame(node_name, node_version, sorted(declared.items(), reverse=True)))

        push(name, outcome)
        while True:
            frame = stack[-1]
            if frame.pending:
                child_name, requested = frame.pending.pop()
                selected = self._selections[(child_name, requested)]
                if isinstance(selected, ResolutionError):
                    self._fail(frame, selected.attribute(requested=requested, path=path))
                    continue
                if child_name in on_path:
                    frame.cuts.add(child_name)
                    self._fail(frame, CycleDetected(child_name, requested, path=path + [(child_name, selected)]))
                    continue
                cached = next(
                    (s for s in self._subtrees.get((child_name, selected), ()) if s.fits(on_path)),
                    None,
                )
                if cached is not None:
                    frame.dependencies[child_name] = cached.node
                    frame.names |= cached.names
                    frame.cuts |= cached.cuts
                    continue
                push(child_name, selected)
                continue

            stack.pop()
            path.pop()
            on_path.discard(frame.name)
            node = ResolvedPackage(name=frame.name, version=frame.version, dependencies=frame.dependencies)
            # cuts at this node are internal to its subtree
            frame.cuts.discard(frame.name)
            subtree = _Subtree(node, frozenset(frame.names | {frame.name}), frozenset(frame.cuts))
            self._subtrees.setdefault((frame.name, frame.version), []).append(subtree)
            if not stack:
                return node
            parent = stack[-1]
            parent.dependencies[frame.name] = node
            parent.names |= subtree.names
            parent.cuts |= subtree.cuts

    def _fail(self, frame: _Frame, error: ResolutionError):
        if self.policy is FailurePolicy.ABORT:
            raise error
        logger.warning(f"leaving {error.name} unresolved: {error}")
        # the marker must not mention the path, since the subtree holding it may be reused elsewhere
        frame.dependencies[error.name] = UnresolvedDependency(
            name=error.name,
            requested=error.requested or "",
            reason=error.reason,
            message=error.detail(),
        )
