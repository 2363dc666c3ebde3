"""
Extension filter: an inclusion predicate over extension identities.

Either Complete (matches everything) or Finite (matches an allow-set).
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable

from modquery.graph.model import ModuleExtensionId


class ExtensionFilter:
    """Base class for extension inclusion predicates."""

    def contains(self, extension: ModuleExtensionId) -> bool:
        raise NotImplementedError

    @property
    def is_complete(self) -> bool:
        return False


@dataclass(frozen=True)
class Complete(ExtensionFilter):
    """Matches every extension identity."""

    def contains(self, extension: ModuleExtensionId) -> bool:
        return True

    @property
    def is_complete(self) -> bool:
        return True


@dataclass(frozen=True)
class Finite(ExtensionFilter):
    """Matches only the listed extension identities."""
    members: FrozenSet[ModuleExtensionId] = frozenset()

    def contains(self, extension: ModuleExtensionId) -> bool:
        return extension in self.members

    @classmethod
    def of(cls, extensions: Iterable[ModuleExtensionId]) -> 'Finite':
        return cls(frozenset(extensions))


COMPLETE = Complete()
