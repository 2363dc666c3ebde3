"""
Query engine over an immutable dependency graph snapshot.

All algorithms are deterministic: children are visited in ModuleKey order and
every result is a pure function of (snapshot, identities, filter, depth).
"""
import logging
from collections import deque
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from modquery.errors import GraphEvaluationError, QueryInterrupted
from modquery.graph.model import EdgeCause, ModuleExtensionId, ModuleKey, Snapshot
from modquery.query.filter import COMPLETE, ExtensionFilter
from modquery.query.options import DEFAULT_MAX_PATHS, DEFAULT_MAX_VISITS, UNBOUNDED
from modquery.query.results import (
    AllPathsResult,
    AnnotatedPath,
    ExtensionReport,
    ExtensionRepo,
    GeneratedRepo,
    PathEdge,
    PathResult,
    ShowExtensionResult,
    ShowResult,
    TreeEntry,
    TreeResult,
    UsageReport,
)
from modquery.repo_rules import RepoRuleLookup, SnapshotRepoRuleLookup

logger = logging.getLogger(__name__)


class ModqueryExecutor:
    """
    Executes graph queries against a snapshot.

    Holds no mutable state besides the configuration passed in; a single
    executor may serve several queries on the same snapshot.
    """

    def __init__(
        self,
        snapshot: Snapshot,
        extension_filter: ExtensionFilter = COMPLETE,
        max_paths: int = DEFAULT_MAX_PATHS,
        max_visits: int = DEFAULT_MAX_VISITS,
        cancel_event=None,
    ):
        """
        Args:
            snapshot: Dependency graph snapshot
            extension_filter: Filter applied by graph-traversal queries
            max_paths: Ceiling on paths returned by all_paths
            max_visits: Ceiling on nodes visited by all_paths
            cancel_event: Optional object with is_set(); checked during traversal
        """
        self.snapshot = snapshot
        self.dep_graph = snapshot.dep_graph
        self.extension_filter = extension_filter
        self.max_paths = max_paths
        self.max_visits = max_visits
        self.cancel_event = cancel_event

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise QueryInterrupted("Modquery interrupted")

    def _edges(self, key: ModuleKey) -> List[Tuple[ModuleKey, EdgeCause]]:
        """Used edges of a module that pass the extension filter, in key order."""
        return [
            (target, cause)
            for target, _, cause in self.dep_graph[key].used_edges()
            if cause.passes(self.extension_filter)
        ]

    def _edge(self, source: ModuleKey, target: ModuleKey) -> PathEdge:
        for child, cause in self._edges(source):
            if child == target:
                return PathEdge(source, target, cause, cause.attributed_extension(self.extension_filter))
        raise KeyError(f"No edge from {source} to {target}")

    def _annotate(self, nodes: Sequence[ModuleKey]) -> AnnotatedPath:
        edges = tuple(self._edge(a, b) for a, b in zip(nodes, nodes[1:]))
        return AnnotatedPath(tuple(nodes), edges)

    def tree(self, roots: Iterable[ModuleKey], depth: int = UNBOUNDED) -> TreeResult:
        """
        Depth-bounded dependency tree for each root.

        A module is expanded once per root, at its first occurrence that the
        depth bound does not cut off. Later occurrences are listed as
        reference-only entries.
        A node at distance d from its root is listed iff d < depth.

        Args:
            roots: Start modules, in display order (duplicates ignored)
            depth: Number of levels to display

        Returns:
            TreeResult with entries in depth-first pre-order
        """
        roots = tuple(dict.fromkeys(roots))
        entries: List[TreeEntry] = []
        for root in roots:
            expanded = set()
            stack: List[Tuple[ModuleKey, int, Optional[ModuleKey], Optional[EdgeCause]]] = [(root, 0, None, None)]
            while stack:
                self._check_cancelled()
                key, level, parent, cause = stack.pop()
                extension = cause.attributed_extension(self.extension_filter) if cause is not None else None
                if key in expanded:
                    entries.append(TreeEntry(key, level, True, parent, cause, extension=extension))
                    continue
                children = self._edges(key)
                if level + 1 >= depth:
                    # Cut by the bound, not expanded
                    entries.append(TreeEntry(key, level, False, parent, cause, bool(children), extension))
                    continue
                expanded.add(key)
                entries.append(TreeEntry(key, level, False, parent, cause, extension=extension))
                for child, child_cause in reversed(children):
                    stack.append((child, level + 1, key, child_cause))
        return TreeResult(roots=roots, entries=tuple(entries), depth=depth)

    def deps(self, targets: Iterable[ModuleKey], depth: int = 2) -> TreeResult:
        """The selected modules and, by default, exactly their direct dependencies."""
        return self.tree(targets, depth)

    def path(self, from_keys: Iterable[ModuleKey], to_keys: Iterable[ModuleKey],
             depth: int = UNBOUNDED) -> PathResult:
        """
        Shortest walk from any source to any target along dependency edges.

        Ties between equally short walks go to the lexicographically smallest
        key sequence. Walks longer than `depth` edges are not considered.
        """
        sources = tuple(dict.fromkeys(from_keys))
        targets = tuple(dict.fromkeys(to_keys))
        target_set = frozenset(targets)

        hits = sorted(key for key in sources if key in target_set)
        if hits:
            return PathResult(sources, targets, self._annotate([hits[0]]))

        best: Dict[ModuleKey, Tuple[ModuleKey, ...]] = {key: (key,) for key in sources}
        frontier = sorted(sources)
        level = 0
        while frontier and level < depth:
            self._check_cancelled()
            level += 1
            layer: Dict[ModuleKey, Tuple[ModuleKey, ...]] = {}
            for key in frontier:
                for child, _ in self._edges(key):
                    if child in best:
                        continue
                    candidate = best[key] + (child,)
                    if child not in layer or candidate < layer[child]:
                        layer[child] = candidate
            best.update(layer)
            reached = sorted(layer[key] for key in layer if key in target_set)
            if reached:
                return PathResult(sources, targets, self._annotate(reached[0]))
            frontier = sorted(layer, key=lambda key: layer[key])
        return PathResult(sources, targets, None)

    def _can_reach(self, targets: FrozenSet[ModuleKey]) -> FrozenSet[ModuleKey]:
        """Modules from which some target is reachable through filtered edges."""
        # Unused modules have no recorded dependents, so walk every module's edges
        reverse: Dict[ModuleKey, List[ModuleKey]] = {}
        for key in self.dep_graph:
            for child, _ in self._edges(key):
                reverse.setdefault(child, []).append(key)

        reachable = set(targets)
        queue = deque(targets)
        while queue:
            key = queue.popleft()
            for dependent in reverse.get(key, ()):
                if dependent not in reachable:
                    reachable.add(dependent)
                    queue.append(dependent)
        return frozenset(reachable)

    def all_paths(self, from_keys: Iterable[ModuleKey], to_keys: Iterable[ModuleKey],
                  depth: int = UNBOUNDED) -> AllPathsResult:
        """
        Every simple walk from a source to a target, of any length.

        Enumeration stops once max_paths paths were found or max_visits nodes
        were visited; the result is then flagged as truncated. `depth` only
        bounds the context: the other dependencies of path modules, listed
        when they sit at distance d < depth from the source along a path.
        """
        sources = tuple(dict.fromkeys(from_keys))
        targets = tuple(dict.fromkeys(to_keys))
        target_set = frozenset(targets)
        can_reach = self._can_reach(target_set)

        paths: List[AnnotatedPath] = []
        visits = 0
        truncated = False

        def record(nodes: List[ModuleKey], edges: List[PathEdge]) -> bool:
            if len(paths) >= self.max_paths:
                return False
            paths.append(AnnotatedPath(tuple(nodes), tuple(edges)))
            return True

        for source in sources:
            if truncated:
                break
            if source not in can_reach:
                continue
            nodes = [source]
            on_path = {source}
            edges: List[PathEdge] = []
            if source in target_set and not record(nodes, edges):
                truncated = True
                break
            stack = [iter(self._reaching_edges(source, can_reach))]
            while stack:
                self._check_cancelled()
                step = next(stack[-1], None)
                if step is None:
                    stack.pop()
                    on_path.discard(nodes.pop())
                    if edges:
                        edges.pop()
                    continue
                child, cause = step
                if child in on_path:
                    continue
                visits += 1
                if visits > self.max_visits:
                    truncated = True
                    break
                edge = PathEdge(nodes[-1], child, cause, cause.attributed_extension(self.extension_filter))
                nodes.append(child)
                on_path.add(child)
                edges.append(edge)
                if child in target_set and not record(nodes, edges):
                    truncated = True
                    break
                stack.append(iter(self._reaching_edges(child, can_reach)))

        if truncated:
            logger.warning(f"Path enumeration stopped after {len(paths)} paths and {visits} visited modules")
        return AllPathsResult(sources, targets, tuple(paths), truncated, self._context(paths, depth))

    def _context(self, paths: Sequence[AnnotatedPath], depth: int) -> Tuple[PathEdge, ...]:
        """Edges from path modules to modules on no path, within the display depth."""
        position: Dict[ModuleKey, int] = {}
        for path in paths:
            for i, key in enumerate(path.nodes):
                position[key] = min(i, position.get(key, i))

        context = []
        for key in sorted(position):
            if position[key] + 1 >= depth:
                continue
            for child, cause in self._edges(key):
                if child not in position:
                    context.append(PathEdge(key, child, cause, cause.attributed_extension(self.extension_filter)))
        return tuple(context)

    def _reaching_edges(self, key: ModuleKey, can_reach: FrozenSet[ModuleKey]) -> List[Tuple[ModuleKey, EdgeCause]]:
        return [(child, cause) for child, cause in self._edges(key) if child in can_reach]

    def explain(self, from_keys: Iterable[ModuleKey], to_keys: Iterable[ModuleKey],
                depth: int = 1) -> AllPathsResult:
        return self.all_paths(from_keys, to_keys, depth)

    def show_extension(self, extension_ids: Iterable[ModuleExtensionId],
                       usage_keys: Optional[Iterable[ModuleKey]] = None) -> ShowExtensionResult:
        """
        Report the repositories an extension generates and who imports them.

        Args:
            extension_ids: Extensions to inspect
            usage_keys: Restrict to usages by these modules (None means all)
        """
        usage_keys = None if usage_keys is None else frozenset(usage_keys)
        reports = []
        for extension in sorted(set(extension_ids)):
            self._check_cancelled()
            usages = self.snapshot.usages_of(extension, usage_keys)
            if not usages:
                reports.append(ExtensionReport(extension))
                continue

            usage_reports = []
            importers: Dict[str, List[ModuleKey]] = {}
            for usage in usages:
                imported = set(usage.imports.values())
                module = self.dep_graph[usage.module]
                generated = sorted(set(module.extension_usages.get(extension, frozenset())) | imported)
                for repo in imported:
                    importers.setdefault(repo, []).append(usage.module)
                usage_reports.append(UsageReport(
                    module=usage.module,
                    tags=usage.tags,
                    imports=tuple(sorted(usage.imports.items())),
                    repos=tuple(GeneratedRepo(name, name in imported) for name in generated),
                ))

            if usage_keys is None:
                all_repos = set(self.snapshot.extension_repos.get(extension, frozenset())) | set(importers)
            else:
                all_repos = {repo.name for report in usage_reports for repo in report.repos}
            repos = tuple(
                ExtensionRepo(name, tuple(sorted(importers.get(name, ()))))
                for name in sorted(all_repos)
            )
            report = ExtensionReport(extension, repos, tuple(usage_reports))
            for name in report.unimported_repos():
                logger.warning(f"Repository {name} generated by {extension} is not imported by any usage")
            reports.append(report)
        return ShowExtensionResult(tuple(reports))

    def show(self, repo_names: Mapping[str, str], lookup: Optional[RepoRuleLookup] = None) -> ShowResult:
        """
        Fetch rule attributes for resolved repositories.

        Raises:
            GraphEvaluationError: If the lookup fails
        """
        self._check_cancelled()
        if lookup is None:
            lookup = SnapshotRepoRuleLookup(self.snapshot)
        names = sorted(set(repo_names.values()))
        try:
            rules = lookup(names)
        except GraphEvaluationError:
            raise
        except Exception as e:
            raise GraphEvaluationError(f"Unexpected error during repository rule evaluation: {e}") from e
        return ShowResult(dict(repo_names), {name: rules[name] for name in names if name in rules})
