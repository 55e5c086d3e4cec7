import json
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Mapping, Tuple, Union


class PackageVersion(BaseModel):
    """a single published version and its direct dependency ranges."""
    model_config = ConfigDict(frozen=True)

    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class PackageMetadata(BaseModel):
    """registry metadata for one package name (an npm packument)."""
    model_config = ConfigDict(frozen=True)

    name: str
    versions: Dict[str, PackageVersion] = Field(default_factory=dict)
    dist_tags: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_packument(cls, data: Dict[str, Any]) -> "PackageMetadata":
        """build metadata from the json document a registry returns."""
        versions = {}
        for version, manifest in (data.get("versions") or {}).items():
            deps = (manifest or {}).get("dependencies") or {}
            versions[version] = PackageVersion(version=version, dependencies=dict(deps))
        return cls(
            name=data["name"],
            versions=versions,
            dist_tags=dict(data.get("dist-tags") or {}),
        )

    def to_packument(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dist-tags": dict(self.dist_tags),
            "versions": {
                v: {"name": self.name, "version": v, "dependencies": dict(pv.dependencies)}
                for v, pv in self.versions.items()
            },
        }

    @property
    def version_list(self) -> List[str]:
        return list(self.versions.keys())

    def dependencies_of(self, version: str) -> Dict[str, str]:
        return dict(self.versions[version].dependencies)


class UnresolvedDependency(BaseModel):
    """marker left in the tree for a dependency that could not be resolved."""
    model_config = ConfigDict(frozen=True)

    name: str
    requested: str
    reason: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"requested": self.requested, "error": self.reason, "message": self.message}


class ResolvedPackage(BaseModel):
    """a node of the resolved dependency tree."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    version: str
    dependencies: Mapping[str, Union["ResolvedPackage", UnresolvedDependency]] = Field(
        default_factory=dict, validate_default=True
    )

    @field_validator("dependencies")
    @classmethod
    def freeze_dependencies(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        # subtrees are shared between parents, so the mapping must not change after construction
        return MappingProxyType(dict(value))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)

    def to_dict(self, include_name: bool = True) -> Dict[str, Any]:
        """
        render the tree as plain dicts.

        the root carries its name; children are keyed by name in their parent's
        `dependencies` mapping, so they only render version and dependencies.
        shared subtrees are rendered once per place they appear.
        """
        data: Dict[str, Any] = {}
        if include_name:
            data["name"] = self.name
        data["version"] = self.version
        data["dependencies"] = {}
        stack = [(self, data["dependencies"])]
        while stack:
            node, target = stack.pop()
            for name, child in node.dependencies.items():
                if isinstance(child, UnresolvedDependency):
                    target[name] = child.to_dict()
                else:
                    rendered = {"version": child.version, "dependencies": {}}
                    target[name] = rendered
                    stack.append((child, rendered["dependencies"]))
        return data

    def to_json(self, indent: int = 2) -> str:
        """render `to_dict()` as json text, laid out like `json.dumps(..., indent=indent)`."""
        return dump_json(self.to_dict(), indent=indent)

    def iter_unresolved(self) -> List[UnresolvedDependency]:
        """collect every unresolved marker in the tree."""
        found = []
        stack = [self]
        while stack:
            node = stack.pop()
            for child in node.dependencies.values():
                if isinstance(child, UnresolvedDependency):
                    found.append(child)
                else:
                    stack.append(child)
        return found

    def count(self) -> int:
        """number of resolved nodes in the tree, counting shared subtrees each time they appear."""
        total = 0
        stack = [self]
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(c for c in node.dependencies.values() if isinstance(c, ResolvedPackage))
        return total


ResolvedPackage.model_rebuild()


ResolutionPath = Tuple[Tuple[str, str], ...]


def format_path(path: ResolutionPath) -> str:
    return " -> ".join(f"{name}@{version}" for name, version in path)


def dump_json(data: Dict[str, Any], indent: int = 2) -> str:
    """
    serialize nested dicts of json scalars with an explicit stack.

    the json module's encoder recurses once per nesting level, which a long
    dependency chain easily exceeds.
    """
    out: List[str] = []
    stack: List[Any] = [(data, 0)]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            out.append(item)
            continue
        value, depth = item
        if not isinstance(value, dict):
            out.append(json.dumps(value))
            continue
        if not value:
            out.append("{}")
            continue
        pad = "\n" + " " * (indent * (depth + 1))
        pending: List[Any] = ["{"]
        for i, (key, child) in enumerate(value.items()):
            if i:
                pending.append(",")
            pending.append(f"{pad}{json.dumps(key)}: ")
            pending.append((child, depth + 1))
        pending.append("\n" + " " * (indent * depth) + "}")
        stack.extend(reversed(pending))
    return "".join(out)
