"""
Query types and query options.
"""
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from modquery.errors import ErrorKind, InvalidArgumentError
from modquery.graph.model import ROOT_TOKEN


UNBOUNDED = sys.maxsize

DEFAULT_MAX_PATHS = 1000
DEFAULT_MAX_VISITS = 1_000_000


class QueryType(str, Enum):
    """Query types selectable by the first positional argument."""
    TREE = "tree"
    DEPS = "deps"
    PATH = "path"
    ALL_PATHS = "all_paths"
    EXPLAIN = "explain"
    SHOW = "show"
    SHOW_EXTENSION = "show_extension"

    @property
    def is_graph(self) -> bool:
        """Graph-traversal queries honor the extension filter."""
        return self not in (QueryType.SHOW, QueryType.SHOW_EXTENSION)

    @classmethod
    def names(cls) -> str:
        return ", ".join(member.value for member in cls)

    @classmethod
    def parse(cls, text: str) -> 'QueryType':
        """
        Raises:
            InvalidArgumentError: UnknownQueryType if text names no query type
        """
        try:
            return cls(text.strip().lower())
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid query type, choose one from : {cls.names()}",
                ErrorKind.UNKNOWN_QUERY_TYPE,
            ) from None


def effective_depth(requested: int, query_type: QueryType) -> int:
    """
    Depth actually used by a query.

    A requested depth below 1 means "not given": explain defaults to 1, deps
    to 2 and everything else is unbounded.
    """
    if requested >= 1:
        return requested
    if query_type == QueryType.EXPLAIN:
        return 1
    if query_type == QueryType.DEPS:
        return 2
    return UNBOUNDED


@dataclass(frozen=True)
class QueryOptions:
    """
    Options shared by every query type.

    Reference-list options hold the raw comma-separated text; they are parsed
    and resolved against the base module when the query runs.
    """
    base_module: str = ROOT_TOKEN
    modules_from: str = ROOT_TOKEN
    extension_usages: Optional[str] = None
    extension_filter: Optional[str] = None
    include_unused: bool = False
    depth: int = -1
    max_paths: int = DEFAULT_MAX_PATHS
    max_visits: int = DEFAULT_MAX_VISITS
