"""
Immutable data model for the resolved module graph.

A Snapshot bundles the dependency graph, the extension usage table and the
derived modules index. Nothing in this module mutates after construction.
"""
from dataclasses import dataclass, field
from functools import total_ordering
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple


ROOT_TOKEN = "<root>"
EMPTY_VERSION_TOKEN = "_"


@total_ordering
@dataclass(frozen=True)
class ModuleKey:
    """Identity of one module version."""
    name: str
    version: str

    def __lt__(self, other: 'ModuleKey') -> bool:
        if not isinstance(other, ModuleKey):
            return NotImplemented
        return (self.name, self.version) < (other.name, other.version)

    @property
    def is_root(self) -> bool:
        return self.name == "" and self.version == ""

    @property
    def canonical_repo_name(self) -> str:
        """Default canonical repository name for this module."""
        if self.is_root:
            return ""
        return f"{self.name}~{self.version}"

    def __str__(self) -> str:
        if self.is_root:
            return ROOT_TOKEN
        return f"{self.name}@{self.version or EMPTY_VERSION_TOKEN}"

    @classmethod
    def parse(cls, text: str) -> 'ModuleKey':
        """
        Parse the canonical textual form produced by __str__.

        Raises:
            ValueError: If text is not `<root>` or `name@version`
        """
        text = text.strip()
        if text == ROOT_TOKEN:
            return ROOT
        name, sep, version = text.partition('@')
        if not sep or not name or not version:
            raise ValueError(f"Invalid module key: {text!r} (expected name@version)")
        if version == EMPTY_VERSION_TOKEN:
            version = ""
        return cls(name, version)


ROOT = ModuleKey("", "")


@total_ordering
@dataclass(frozen=True)
class ModuleExtensionId:
    """Identity of a module extension: defining module, name and isolation key."""
    module: ModuleKey
    extension_name: str
    isolation_key: Optional[str] = None

    def sort_key(self) -> Tuple[str, str, str, bool, str]:
        # Non-isolated usages sort before isolated ones
        return (
            self.module.name,
            self.module.version,
            self.extension_name,
            self.isolation_key is not None,
            self.isolation_key or "",
        )

    def __lt__(self, other: 'ModuleExtensionId') -> bool:
        if not isinstance(other, ModuleExtensionId):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        text = f"{self.module}%{self.extension_name}"
        if self.isolation_key is not None:
            text += f"%{self.isolation_key}"
        return text

    @classmethod
    def parse(cls, text: str) -> 'ModuleExtensionId':
        """
        Parse `module@version%name[%isolation]`.

        Raises:
            ValueError: If the text is malformed
        """
        parts = text.strip().split('%')
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid extension id: {text!r} (expected module%name[%isolation])")
        isolation = parts[2] if len(parts) == 3 else None
        return cls(ModuleKey.parse(parts[0]), parts[1], isolation)


@dataclass(frozen=True)
class EdgeCause:
    """
    Why a used dependency edge exists.

    `direct` marks a declared dependency; `extensions` lists the extension
    usages that introduced the edge.
    """
    direct: bool = True
    extensions: FrozenSet[ModuleExtensionId] = frozenset()

    def passes(self, extension_filter) -> bool:
        """Whether an edge with this cause survives the given extension filter."""
        if self.direct:
            return True
        return any(extension_filter.contains(ext) for ext in self.extensions)

    def attributed_extension(self, extension_filter) -> Optional[ModuleExtensionId]:
        """Smallest extension accepted by the filter, or None for direct edges."""
        if self.direct:
            return None
        accepted = sorted(ext for ext in self.extensions if extension_filter.contains(ext))
        return accepted[0] if accepted else None


DIRECT = EdgeCause()


@dataclass(frozen=True, eq=False)
class AugmentedModule:
    """A node of the dependency graph, with used and unused edges."""
    key: ModuleKey
    repo_name: str
    deps: Mapping[str, ModuleKey]
    unused_deps: Mapping[str, ModuleKey]
    dependents: FrozenSet[ModuleKey]
    extension_usages: Mapping[ModuleExtensionId, FrozenSet[str]]
    dep_causes: Mapping[str, EdgeCause] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_used(self) -> bool:
        return self.key.is_root or bool(self.dependents)

    def cause_of(self, dep_name: str) -> EdgeCause:
        return self.dep_causes.get(dep_name, DIRECT)

    def used_edges(self) -> List[Tuple[ModuleKey, str, EdgeCause]]:
        """Used edges as (target, local name, cause), ordered by target key."""
        return sorted(
            ((key, name, self.cause_of(name)) for name, key in self.deps.items()),
            key=lambda edge: (edge[0], edge[1]),
        )


@dataclass(frozen=True, eq=False)
class ExtensionUsage:
    """One module's usage of one extension."""
    module: ModuleKey
    extension: ModuleExtensionId
    tags: Tuple[str, ...] = ()
    imports: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def build_modules_index(dep_graph: Mapping[ModuleKey, AugmentedModule]) -> Mapping[str, FrozenSet[ModuleKey]]:
    """Map each bare module name to every known version of it."""
    index: Dict[str, FrozenSet[ModuleKey]] = {}
    for key in sorted(dep_graph):
        if key.is_root:
            continue
        index[key.name] = index.get(key.name, frozenset()) | {key}
    return MappingProxyType(index)


@dataclass(frozen=True, eq=False)
class Snapshot:
    """
    Read-only dependency graph snapshot handed to the query engine.

    Attributes:
        dep_graph: ModuleKey -> AugmentedModule for every known version
        usages: (using module, extension) -> ExtensionUsage
        extension_repos: extension -> every repository it generates
        repo_rules: canonical repository name -> rule attributes
    """
    dep_graph: Mapping[ModuleKey, AugmentedModule]
    usages: Mapping[Tuple[ModuleKey, ModuleExtensionId], ExtensionUsage] = field(
        default_factory=lambda: MappingProxyType({}))
    extension_repos: Mapping[ModuleExtensionId, FrozenSet[str]] = field(
        default_factory=lambda: MappingProxyType({}))
    repo_rules: Mapping[str, Mapping[str, object]] = field(
        default_factory=lambda: MappingProxyType({}))
    modules_index: Mapping[str, FrozenSet[ModuleKey]] = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'modules_index', build_modules_index(self.dep_graph))

    @property
    def root(self) -> AugmentedModule:
        return self.dep_graph[ROOT]

    def known_extensions(self) -> FrozenSet[ModuleExtensionId]:
        """Every extension identity that appears anywhere in the snapshot."""
        found = set(self.extension_repos)
        found.update(ext for _, ext in self.usages)
        for module in self.dep_graph.values():
            found.update(module.extension_usages)
            for cause in module.dep_causes.values():
                found.update(cause.extensions)
        return frozenset(found)

    def usages_of(self, extension: ModuleExtensionId,
                  modules: Optional[Iterable[ModuleKey]] = None) -> List[ExtensionUsage]:
        """Usages of an extension, optionally restricted to some using modules, ordered by module."""
        allowed = None if modules is None else frozenset(modules)
        return [
            usage for (module, ext), usage in sorted(self.usages.items(), key=lambda item: item[0][0])
            if ext == extension and (allowed is None or module in allowed)
        ]
