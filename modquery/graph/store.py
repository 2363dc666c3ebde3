"""
Snapshot store with projection builder.

The evaluation phase hands over a snapshot document; the store projects it
into the immutable model, deriving dependents and checking graph invariants.
"""
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import yaml

from modquery.errors import GraphEvaluationError
from modquery.graph.model import (
    ROOT,
    AugmentedModule,
    EdgeCause,
    ExtensionUsage,
    ModuleExtensionId,
    ModuleKey,
    Snapshot,
)
from modquery.graph.schema import SnapshotDocument, validate_document

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Mutable builder that projects modules, edges and usages into a Snapshot.

    The store is only used while loading; freeze() returns the read-only
    snapshot the query engine works on.
    """

    def __init__(self):
        self.modules: Dict[ModuleKey, Dict[str, Any]] = {}
        self.usages: Dict[tuple, ExtensionUsage] = {}
        self.extension_repos: Dict[ModuleExtensionId, Set[str]] = {}
        self.repo_rules: Dict[str, Dict[str, Any]] = {}

    def add_module(self, key: ModuleKey, repo_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Register a module version (idempotent).

        Args:
            key: Module identity
            repo_name: Canonical repository name (defaults to name~version)

        Returns:
            The internal record for the module
        """
        record = self.modules.get(key)
        if record is None:
            record = {
                'repo_name': key.canonical_repo_name,
                'deps': {},
                'causes': {},
                'unused_deps': {},
                'extension_usages': {},
            }
            self.modules[key] = record
        if repo_name is not None:
            record['repo_name'] = repo_name
        return record

    def add_dep(self, from_key: ModuleKey, name: str, to_key: ModuleKey,
                extensions: Iterable[ModuleExtensionId] = (), direct: Optional[bool] = None):
        """
        Add a used dependency edge.

        Args:
            from_key: Depending module
            name: Local dependency name (unique per module)
            to_key: Selected module version
            extensions: Extension usages that introduced this edge
            direct: Whether the edge is a declared dependency (defaults to
                True when no extension is given)
        """
        record = self.add_module(from_key)
        if name in record['deps']:
            raise GraphEvaluationError(f"Module {from_key} declares dependency name {name!r} twice")
        extensions = frozenset(extensions)
        if direct is None:
            direct = not extensions
        record['deps'][name] = to_key
        if not direct or extensions:
            record['causes'][name] = EdgeCause(direct=direct, extensions=extensions)

    def add_unused_dep(self, from_key: ModuleKey, name: str, to_key: ModuleKey):
        """Add a dependency that lost version selection."""
        record = self.add_module(from_key)
        if name in record['unused_deps']:
            raise GraphEvaluationError(f"Module {from_key} declares unused dependency name {name!r} twice")
        record['unused_deps'][name] = to_key

    def add_module_extension_usage(self, module: ModuleKey, extension: ModuleExtensionId,
                                   repos: Iterable[str] = ()):
        """Record that a module uses an extension and which repositories that generates."""
        usages = self.add_module(module)['extension_usages']
        usages[extension] = usages.get(extension, frozenset()) | frozenset(repos)

    def add_extension_usage(self, module: ModuleKey, extension: ModuleExtensionId,
                            tags: Iterable[str] = (), imports: Optional[Mapping[str, str]] = None):
        """Add a row of the extension usage table."""
        imports = dict(imports or {})
        self.usages[(module, extension)] = ExtensionUsage(
            module=module,
            extension=extension,
            tags=tuple(tags),
            imports=MappingProxyType(imports),
        )
        self.add_module_extension_usage(module, extension, imports.values())

    def set_extension_repos(self, extension: ModuleExtensionId, repos: Iterable[str]):
        """Record every repository an extension generates."""
        self.extension_repos.setdefault(extension, set()).update(repos)

    def add_repo_rule(self, repo_name: str, attributes: Mapping[str, Any]):
        self.repo_rules[repo_name] = dict(attributes)

    def apply_document(self, document: SnapshotDocument):
        """
        Apply a validated snapshot document to the store.

        This is deterministic: the same document always produces the same snapshot.
        """
        for entry in document.modules:
            key = ModuleKey.parse(entry.key)
            self.add_module(key, entry.repo_name)
            for dep in entry.deps:
                self.add_dep(
                    key,
                    dep.name,
                    ModuleKey.parse(dep.key),
                    extensions=[ModuleExtensionId.parse(ext) for ext in dep.extensions],
                    direct=dep.direct,
                )
            for dep in entry.unused_deps:
                self.add_unused_dep(key, dep.name, ModuleKey.parse(dep.key))
            for usage in entry.extension_usages:
                self.add_module_extension_usage(key, ModuleExtensionId.parse(usage.extension), usage.repos)

        for row in document.extension_usages:
            self.add_extension_usage(
                ModuleKey.parse(row.module),
                ModuleExtensionId.parse(row.extension),
                tags=row.tags,
                imports=row.imports,
            )

        for row in document.extension_repos:
            self.set_extension_repos(ModuleExtensionId.parse(row.extension), row.repos)

        for repo_name, attributes in document.repo_rules.items():
            self.add_repo_rule(repo_name, attributes)

    def freeze(self) -> Snapshot:
        """
        Build the immutable snapshot.

        Raises:
            GraphEvaluationError: If the graph violates its invariants
        """
        if ROOT not in self.modules:
            raise GraphEvaluationError("Snapshot has no root module")

        for key, record in list(self.modules.items()):
            for name, target in record['deps'].items():
                if target not in self.modules:
                    raise GraphEvaluationError(f"Dependency {name!r} of {key} points to unknown module {target}")
            for target in record['unused_deps'].values():
                # Unused versions may be omitted by the evaluation phase
                self.add_module(target)
        for module, _ in self.usages:
            if module not in self.modules:
                raise GraphEvaluationError(f"Extension usage refers to unknown module {module}")

        self._check_acyclic()

        used = self._check_reachable()

        # Edges of unused versions never make their targets used
        dependents: Dict[ModuleKey, Set[ModuleKey]] = {key: set() for key in self.modules}
        for key in used:
            for target in self.modules[key]['deps'].values():
                dependents[target].add(key)

        dep_graph = {}
        for key in sorted(self.modules):
            record = self.modules[key]
            dep_graph[key] = AugmentedModule(
                key=key,
                repo_name=record['repo_name'],
                deps=MappingProxyType(dict(record['deps'])),
                unused_deps=MappingProxyType(dict(record['unused_deps'])),
                dependents=frozenset(dependents[key]),
                extension_usages=MappingProxyType(dict(record['extension_usages'])),
                dep_causes=MappingProxyType(dict(record['causes'])),
            )

        extension_repos = {
            ext: frozenset(repos) for ext, repos in sorted(self.extension_repos.items())
        }
        # Extensions without an explicit repo list generate at least what their usages import
        for key, module in dep_graph.items():
            for ext, repos in module.extension_usages.items():
                if ext not in self.extension_repos:
                    extension_repos[ext] = extension_repos.get(ext, frozenset()) | repos

        snapshot = Snapshot(
            dep_graph=MappingProxyType(dep_graph),
            usages=MappingProxyType(dict(self.usages)),
            extension_repos=MappingProxyType(extension_repos),
            repo_rules=MappingProxyType({name: MappingProxyType(attrs) for name, attrs in self.repo_rules.items()}),
        )
        logger.debug(f"Built snapshot with {len(dep_graph)} modules and {len(self.usages)} extension usages")
        return snapshot

    def _check_acyclic(self):
        """Reject cycles in the used-edge relation."""
        state: Dict[ModuleKey, int] = {}  # 1 = on stack, 2 = done
        for start in sorted(self.modules):
            if state.get(start):
                continue
            stack = [(start, iter(sorted(self.modules[start]['deps'].values())))]
            state[start] = 1
            while stack:
                key, children = stack[-1]
                child = next(children, None)
                if child is None:
                    state[key] = 2
                    stack.pop()
                    continue
                if state.get(child) == 1:
                    cycle = [str(k) for k, _ in stack] + [str(child)]
                    raise GraphEvaluationError(f"Dependency cycle detected: {' -> '.join(cycle)}")
                if not state.get(child):
                    state[child] = 1
                    stack.append((child, iter(sorted(self.modules[child]['deps'].values()))))

    def _reachable(self, starts: Iterable[ModuleKey], include_unused: bool) -> Set[ModuleKey]:
        seen = set(starts)
        queue: List[ModuleKey] = list(seen)
        while queue:
            record = self.modules[queue.pop()]
            targets = list(record['deps'].values())
            if include_unused:
                targets.extend(record['unused_deps'].values())
            for target in targets:
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen

    def _check_reachable(self) -> Set[ModuleKey]:
        """
        Every module must be reachable from the root, through used edges or
        through some module's unused dependencies.

        Returns:
            The used modules: those reachable from the root through used edges
        """
        used = self._reachable([ROOT], include_unused=False)
        unused_targets = {
            target for record in self.modules.values() for target in record['unused_deps'].values()
        }
        known = used | self._reachable(unused_targets, include_unused=True)
        orphans = sorted(set(self.modules) - known)
        if orphans:
            raise GraphEvaluationError(
                f"Modules not reachable from the root: {', '.join(str(k) for k in orphans)}"
            )
        return used


def load_snapshot(snapshot_path: Path) -> Snapshot:
    """
    Load a snapshot from a YAML or JSON file.

    Args:
        snapshot_path: Path to the snapshot document

    Returns:
        Immutable snapshot

    Raises:
        GraphEvaluationError: If the file is missing, malformed or violates graph invariants
    """
    snapshot_path = Path(snapshot_path)
    if not snapshot_path.exists():
        raise GraphEvaluationError(f"Snapshot not found: {snapshot_path}")

    try:
        with open(snapshot_path, 'r', encoding='utf-8') as f:
            if snapshot_path.suffix == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise GraphEvaluationError(f"Could not parse snapshot {snapshot_path}: {e}") from e

    return build_snapshot(data)


def build_snapshot(data: Any) -> Snapshot:
    """Validate a raw snapshot document and project it into a Snapshot."""
    try:
        document = validate_document(data)
    except ValueError as e:
        raise GraphEvaluationError(str(e)) from e

    store = SnapshotStore()
    store.apply_document(document)
    return store.freeze()
