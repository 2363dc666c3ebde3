"""
Error types for modquery.

Every failure carries an ErrorKind so the CLI can report a structured outcome.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""
    INVALID_REFERENCE_SYNTAX = "InvalidReferenceSyntax"
    MODULE_NOT_FOUND = "ModuleNotFound"
    EXTENSION_NOT_FOUND = "ExtensionNotFound"
    AMBIGUOUS_REFERENCE = "AmbiguousReference"
    UNUSED_MODULE_EXCLUDED = "UnusedModuleExcluded"
    TOO_MANY_ARGUMENTS = "TooManyArguments"
    BASE_MODULE_MULTIPLE_VERSIONS = "BaseModuleMultipleVersions"
    UNKNOWN_QUERY_TYPE = "UnknownQueryType"
    GRAPH_EVALUATION_FAILED = "GraphEvaluationFailed"
    INTERRUPTED = "Interrupted"


# Process exit codes per kind
EXIT_CODES = {
    ErrorKind.INVALID_REFERENCE_SYNTAX: 2,
    ErrorKind.MODULE_NOT_FOUND: 2,
    ErrorKind.EXTENSION_NOT_FOUND: 2,
    ErrorKind.AMBIGUOUS_REFERENCE: 2,
    ErrorKind.UNUSED_MODULE_EXCLUDED: 2,
    ErrorKind.TOO_MANY_ARGUMENTS: 2,
    ErrorKind.BASE_MODULE_MULTIPLE_VERSIONS: 2,
    ErrorKind.UNKNOWN_QUERY_TYPE: 2,
    ErrorKind.GRAPH_EVALUATION_FAILED: 37,
    ErrorKind.INTERRUPTED: 8,
}


class ModqueryError(Exception):
    """Base exception for all modquery failures."""

    kind: ErrorKind = ErrorKind.GRAPH_EVALUATION_FAILED

    def __init__(self, message: str, kind: ErrorKind = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.kind, 1)


class InvalidArgumentError(ModqueryError):
    """
    A query argument could not be parsed or resolved.

    Recoverable at the query boundary: the query is aborted with no partial result.
    """

    def __init__(self, message: str, kind: ErrorKind):
        super().__init__(message, kind)

    def with_context(self, prefix: str) -> 'InvalidArgumentError':
        """Return a copy of this error whose message names the offending argument."""
        error = InvalidArgumentError(f"{prefix}: {self.message}", self.kind)
        error.__cause__ = self
        return error


class GraphEvaluationError(ModqueryError):
    """The snapshot (or a repository rule lookup) could not be produced."""
    kind = ErrorKind.GRAPH_EVALUATION_FAILED


class QueryInterrupted(ModqueryError):
    """Cooperative cancellation was requested."""
    kind = ErrorKind.INTERRUPTED

    def __init__(self, message: str = "Query interrupted"):
        super().__init__(message)
