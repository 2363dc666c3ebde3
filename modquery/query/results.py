"""
Structured query results handed to the renderer.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from modquery.graph.model import EdgeCause, ModuleExtensionId, ModuleKey


def _cause_dict(cause: Optional[EdgeCause]) -> Optional[Dict[str, Any]]:
    if cause is None:
        return None
    return {
        'direct': cause.direct,
        'extensions': [str(ext) for ext in sorted(cause.extensions)],
    }


@dataclass(frozen=True)
class TreeEntry:
    """One line of a dependency tree."""
    key: ModuleKey
    depth: int
    reference_only: bool = False
    parent: Optional[ModuleKey] = None
    cause: Optional[EdgeCause] = None
    truncated: bool = False
    extension: Optional[ModuleExtensionId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': str(self.key),
            'depth': self.depth,
            'reference_only': self.reference_only,
            'parent': str(self.parent) if self.parent is not None else None,
            'cause': _cause_dict(self.cause),
            'extension': str(self.extension) if self.extension is not None else None,
            'truncated': self.truncated,
        }


@dataclass(frozen=True)
class TreeResult:
    """Ordered forest of tree entries, one tree per root."""
    roots: Tuple[ModuleKey, ...]
    entries: Tuple[TreeEntry, ...]
    depth: int

    def keys(self) -> Tuple[ModuleKey, ...]:
        return tuple(entry.key for entry in self.entries)

    def expanded_keys(self) -> Tuple[ModuleKey, ...]:
        return tuple(entry.key for entry in self.entries if not entry.reference_only)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'tree',
            'roots': [str(key) for key in self.roots],
            'entries': [entry.to_dict() for entry in self.entries],
        }


@dataclass(frozen=True)
class PathEdge:
    """Edge of a returned path, annotated with why it exists."""
    source: ModuleKey
    target: ModuleKey
    cause: EdgeCause
    extension: Optional[ModuleExtensionId] = None

    @property
    def is_direct(self) -> bool:
        return self.extension is None

    def describe(self) -> str:
        return "direct" if self.extension is None else f"via {self.extension}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': str(self.source),
            'target': str(self.target),
            'direct': self.is_direct,
            'extension': str(self.extension) if self.extension is not None else None,
        }


@dataclass(frozen=True)
class AnnotatedPath:
    """A walk through the graph with a cause on every edge."""
    nodes: Tuple[ModuleKey, ...]
    edges: Tuple[PathEdge, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [str(key) for key in self.nodes],
            'edges': [edge.to_dict() for edge in self.edges],
        }


@dataclass(frozen=True)
class PathResult:
    """Shortest path, or no path (a normal outcome)."""
    sources: Tuple[ModuleKey, ...]
    targets: Tuple[ModuleKey, ...]
    path: Optional[AnnotatedPath] = None

    @property
    def found(self) -> bool:
        return self.path is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'path',
            'sources': [str(key) for key in self.sources],
            'targets': [str(key) for key in self.targets],
            'found': self.found,
            'path': self.path.to_dict() if self.path is not None else None,
        }


@dataclass(frozen=True)
class AllPathsResult:
    """
    Every simple path found, flagged when the enumeration ceiling was hit.

    `context` holds edges from path modules to modules on no path, as far as
    the display depth allows.
    """
    sources: Tuple[ModuleKey, ...]
    targets: Tuple[ModuleKey, ...]
    paths: Tuple[AnnotatedPath, ...]
    truncated: bool = False
    context: Tuple[PathEdge, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'all_paths',
            'sources': [str(key) for key in self.sources],
            'targets': [str(key) for key in self.targets],
            'paths': [path.to_dict() for path in self.paths],
            'context': [edge.to_dict() for edge in self.context],
            'truncated': self.truncated,
        }


@dataclass(frozen=True)
class GeneratedRepo:
    """Repository generated for one usage, and whether that usage imports it."""
    name: str
    imported: bool


@dataclass(frozen=True)
class UsageReport:
    """One module's usage of an extension."""
    module: ModuleKey
    tags: Tuple[str, ...]
    imports: Tuple[Tuple[str, str], ...]
    repos: Tuple[GeneratedRepo, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'module': str(self.module),
            'tags': list(self.tags),
            'imports': dict(self.imports),
            'repos': [{'name': repo.name, 'imported': repo.imported} for repo in self.repos],
        }


@dataclass(frozen=True)
class ExtensionRepo:
    """A repository generated by an extension and the modules importing it."""
    name: str
    imported_by: Tuple[ModuleKey, ...] = ()

    @property
    def imported(self) -> bool:
        return bool(self.imported_by)


@dataclass(frozen=True)
class ExtensionReport:
    """Usage report for a single extension."""
    extension: ModuleExtensionId
    repos: Tuple[ExtensionRepo, ...] = ()
    usages: Tuple[UsageReport, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.usages

    def unimported_repos(self) -> Tuple[str, ...]:
        return tuple(repo.name for repo in self.repos if not repo.imported)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'extension': str(self.extension),
            'repos': [
                {'name': repo.name, 'imported_by': [str(key) for key in repo.imported_by]}
                for repo in self.repos
            ],
            'usages': [usage.to_dict() for usage in self.usages],
        }


@dataclass(frozen=True)
class ShowExtensionResult:
    reports: Tuple[ExtensionReport, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'show_extension', 'reports': [report.to_dict() for report in self.reports]}


@dataclass(frozen=True)
class ShowResult:
    """Reference -> canonical repository name, plus the fetched rule attributes."""
    repo_names: Mapping[str, str]
    rules: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'show',
            'repos': [
                {'reference': reference, 'repo_name': repo, 'rule': dict(self.rules.get(repo, {}))}
                for reference, repo in self.repo_names.items()
            ],
        }
