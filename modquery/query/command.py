"""
Query command: resolves every argument against the base module and
dispatches to the executor.

Nothing is executed until all arguments have resolved, so a failing argument
never produces partial output.
"""
import logging
from typing import Optional, Sequence, Tuple, Union

from modquery.errors import ErrorKind, InvalidArgumentError, QueryInterrupted
from modquery.graph.model import ModuleKey, Snapshot
from modquery.query.args import (
    parse_extension_arg,
    parse_extension_arg_list,
    parse_module_arg,
    parse_module_arg_list,
    resolve_extension_args,
    resolve_module_args,
)
from modquery.query.executor import ModqueryExecutor
from modquery.query.filter import COMPLETE, ExtensionFilter, Finite
from modquery.query.options import QueryOptions, QueryType, effective_depth
from modquery.query.results import AllPathsResult, PathResult, ShowExtensionResult, ShowResult, TreeResult
from modquery.repo_rules import RepoRuleLookup

logger = logging.getLogger(__name__)

QueryResult = Union[TreeResult, PathResult, AllPathsResult, ShowExtensionResult, ShowResult]

UNUSED_NOTE = "(Note that unused modules cannot be used here)"


def resolve_base_module(snapshot: Snapshot, reference: str) -> ModuleKey:
    """
    Resolve the --base_module option relative to the root module.

    Raises:
        InvalidArgumentError: If it does not resolve to exactly one used module
    """
    root = snapshot.root
    try:
        keys = resolve_module_args(
            parse_module_arg_list(reference),
            snapshot.modules_index,
            snapshot.dep_graph,
            root.deps,
            root.unused_deps,
            include_unused=False,
            warn_unused=False,
        )
        if len(keys) > 1:
            raise InvalidArgumentError(
                f"The --base_module option can only specify exactly one module version, choose one of: "
                f"{', '.join(str(key) for key in keys)}",
                ErrorKind.BASE_MODULE_MULTIPLE_VERSIONS,
            )
    except InvalidArgumentError as e:
        raise InvalidArgumentError(
            f"In --base_module {reference} option: {e.message} {UNUSED_NOTE}", e.kind
        ) from e
    return keys[0]


def build_extension_filter(snapshot: Snapshot, query_type: QueryType, options: QueryOptions,
                           base_key: ModuleKey) -> ExtensionFilter:
    """Complete unless the query is a graph query and a non-empty filter list was given."""
    if not query_type.is_graph or options.extension_filter is None:
        return COMPLETE
    if not options.extension_filter.strip():
        return COMPLETE
    base = snapshot.dep_graph[base_key]
    try:
        extensions = resolve_extension_args(
            parse_extension_arg_list(options.extension_filter),
            snapshot.modules_index,
            snapshot.dep_graph,
            base.deps,
            base.unused_deps,
        )
    except InvalidArgumentError as e:
        raise e.with_context(f"In --extension_filter {options.extension_filter} option") from e
    return Finite.of(extensions)


class QueryCommand:
    """
    One query invocation against a snapshot.

    Args:
        snapshot: Dependency graph snapshot
        options: Shared query options
        repo_rule_lookup: Lookup used by `show` (defaults to the snapshot's repo_rules)
        cancel_event: Optional object with is_set() for cooperative cancellation
    """

    def __init__(self, snapshot: Snapshot, options: Optional[QueryOptions] = None,
                 repo_rule_lookup: Optional[RepoRuleLookup] = None, cancel_event=None):
        self.snapshot = snapshot
        self.options = options or QueryOptions()
        self.repo_rule_lookup = repo_rule_lookup
        self.cancel_event = cancel_event

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise QueryInterrupted("Modquery interrupted")

    def _resolve_modules(self, text: str, base_key: ModuleKey, label: str,
                         note: bool = False) -> Tuple[ModuleKey, ...]:
        base = self.snapshot.dep_graph[base_key]
        try:
            return resolve_module_args(
                parse_module_arg_list(text),
                self.snapshot.modules_index,
                self.snapshot.dep_graph,
                base.deps,
                base.unused_deps,
                include_unused=self.options.include_unused,
                warn_unused=True,
            )
        except InvalidArgumentError as e:
            context = f"In {label} {text} option"
            error = e.with_context(context)
            if note:
                error = InvalidArgumentError(f"{error.message} {UNUSED_NOTE}", e.kind)
            raise error from e

    def run(self, query: str, args: Sequence[str] = ()) -> QueryResult:
        """
        Resolve arguments and execute the query.

        Args:
            query: Query type name (tree, deps, path, all_paths, explain, show, show_extension)
            args: Query-specific references

        Returns:
            Structured query result

        Raises:
            InvalidArgumentError: If the query type or any argument is invalid
            GraphEvaluationError: If repository rules cannot be fetched
            QueryInterrupted: If cancellation was requested
        """
        self._check_cancelled()
        query_type = QueryType.parse(query)
        snapshot = self.snapshot
        options = self.options

        base_key = resolve_base_module(snapshot, options.base_module)
        base = snapshot.dep_graph[base_key]

        arg_modules: Tuple[ModuleKey, ...] = ()
        arg_extensions = ()
        arg_repos = {}
        if query_type == QueryType.TREE:
            if args:
                raise InvalidArgumentError(
                    "the 'tree' command doesn't take extra arguments", ErrorKind.TOO_MANY_ARGUMENTS
                )
        elif query_type == QueryType.SHOW:
            for arg in args:
                try:
                    arg_repos.update(parse_module_arg(arg).resolve_to_repo_names(
                        snapshot.modules_index, snapshot.dep_graph, base.deps
                    ))
                except InvalidArgumentError as e:
                    raise InvalidArgumentError(
                        f"In repo argument {arg}: {e.message} {UNUSED_NOTE}", e.kind
                    ) from e
        elif query_type == QueryType.SHOW_EXTENSION:
            extensions = []
            for arg in args:
                try:
                    extensions.extend(resolve_extension_args(
                        [parse_extension_arg(arg)],
                        snapshot.modules_index,
                        snapshot.dep_graph,
                        base.deps,
                        base.unused_deps,
                    ))
                except InvalidArgumentError as e:
                    raise e.with_context(f"In extension argument {arg}") from e
            arg_extensions = tuple(sorted(set(extensions)))
        else:
            for arg in args:
                try:
                    arg_modules += resolve_module_args(
                        parse_module_arg_list(arg),
                        snapshot.modules_index,
                        snapshot.dep_graph,
                        base.deps,
                        base.unused_deps,
                        include_unused=options.include_unused,
                        warn_unused=True,
                    )
                except InvalidArgumentError as e:
                    raise e.with_context(f"In module argument {arg}") from e
            arg_modules = tuple(dict.fromkeys(arg_modules))

        from_keys = self._resolve_modules(options.modules_from, base_key, "--from")
        usage_keys = None
        if options.extension_usages is not None:
            usage_keys = self._resolve_modules(
                options.extension_usages, base_key, "--extension_usages", note=True
            )

        extension_filter = build_extension_filter(snapshot, query_type, options, base_key)
        depth = effective_depth(options.depth, query_type)
        logger.debug(f"Running {query_type.value} with depth {depth} from base module {base_key}")

        executor = ModqueryExecutor(
            snapshot,
            extension_filter=extension_filter,
            max_paths=options.max_paths,
            max_visits=options.max_visits,
            cancel_event=self.cancel_event,
        )

        if query_type == QueryType.TREE:
            return executor.tree(from_keys, depth)
        if query_type == QueryType.DEPS:
            return executor.deps(arg_modules, depth)
        if query_type == QueryType.PATH:
            return executor.path(from_keys, arg_modules, depth)
        if query_type in (QueryType.ALL_PATHS, QueryType.EXPLAIN):
            return executor.all_paths(from_keys, arg_modules, depth)
        if query_type == QueryType.SHOW:
            return executor.show(arg_repos, self.repo_rule_lookup)
        return executor.show_extension(arg_extensions, usage_keys)


def run_query(snapshot: Snapshot, query: str, args: Sequence[str] = (),
              options: Optional[QueryOptions] = None, **kwargs) -> QueryResult:
    """Convenience wrapper around QueryCommand(...).run(...)."""
    return QueryCommand(snapshot, options, **kwargs).run(query, args)
