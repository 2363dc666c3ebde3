"""
Argument resolver for module and extension references.

Grammar:
    <root>          the root module
    foo             dependency named `foo` of the base module
    foo@1.2         exact module version (`foo@_` for an empty version)
    foo@*           every known version of `foo`
    foo@1.2%ext     extension `ext` defined by module foo@1.2 (optional `%isolation`)

Comma-separated lists are unioned, keeping first-seen order.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from modquery.errors import ErrorKind, InvalidArgumentError
from modquery.graph.model import (
    EMPTY_VERSION_TOKEN,
    ROOT,
    ROOT_TOKEN,
    AugmentedModule,
    ModuleExtensionId,
    ModuleKey,
)

logger = logging.getLogger(__name__)

ALL_VERSIONS_TOKEN = "*"

_NAME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9._-]*$')
_VERSION_RE = re.compile(r'^[A-Za-z0-9._+-]+$')


def _unused_error(key: ModuleKey) -> InvalidArgumentError:
    return InvalidArgumentError(
        f"Module version {key} is unused as a result of module resolution. "
        f"Use the --include_unused option to allow specifying unused modules",
        ErrorKind.UNUSED_MODULE_EXCLUDED,
    )


class ModuleArg:
    """A parsed module reference."""

    def resolve_to_module_keys(
        self,
        modules_index: Mapping[str, FrozenSet[ModuleKey]],
        dep_graph: Mapping[ModuleKey, AugmentedModule],
        base_deps: Mapping[str, ModuleKey],
        base_unused_deps: Mapping[str, ModuleKey],
        include_unused: bool = False,
        warn_unused: bool = True,
    ) -> Tuple[ModuleKey, ...]:
        """
        Resolve this reference to concrete module keys.

        Args:
            modules_index: Bare module name -> known versions
            dep_graph: The dependency graph
            base_deps: Used dependencies of the base module (local name -> key)
            base_unused_deps: Unused dependencies of the base module
            include_unused: Allow modules that lost version selection
            warn_unused: Log a warning when an unused module is selected

        Returns:
            Non-empty tuple of keys in deterministic order

        Raises:
            InvalidArgumentError: If the reference cannot be resolved
        """
        raise NotImplementedError

    def resolve_to_repo_names(
        self,
        modules_index: Mapping[str, FrozenSet[ModuleKey]],
        dep_graph: Mapping[ModuleKey, AugmentedModule],
        base_deps: Mapping[str, ModuleKey],
    ) -> Dict[str, str]:
        """Resolve this reference to canonical repository names keyed by the reference text."""
        keys = self.resolve_to_module_keys(
            modules_index, dep_graph, base_deps, {}, include_unused=False, warn_unused=False
        )
        if len(keys) == 1:
            return {str(self): dep_graph[keys[0]].repo_name}
        return {str(key): dep_graph[key].repo_name for key in keys}


@dataclass(frozen=True)
class SpecificVersionOfModule(ModuleArg):
    """`name@version`"""
    name: str
    version: str

    @property
    def key(self) -> ModuleKey:
        return ModuleKey(self.name, self.version)

    def resolve_to_module_keys(self, modules_index, dep_graph, base_deps, base_unused_deps,
                               include_unused=False, warn_unused=True):
        key = self.key
        versions = modules_index.get(self.name)
        if not versions:
            raise InvalidArgumentError(
                f"Module {self.name} does not exist in the dependency graph",
                ErrorKind.MODULE_NOT_FOUND,
            )
        if key not in versions:
            raise InvalidArgumentError(
                f"Module version {key} does not exist, available versions: "
                f"[{', '.join(str(k) for k in sorted(versions))}]",
                ErrorKind.MODULE_NOT_FOUND,
            )
        if not dep_graph[key].is_used:
            if not include_unused:
                raise _unused_error(key)
            if warn_unused:
                logger.warning(f"Module version {key} is unused as a result of module resolution")
        return (key,)

    def __str__(self) -> str:
        return str(self.key)


@dataclass(frozen=True)
class AllVersionsOfModule(ModuleArg):
    """`name@*`"""
    name: str

    def resolve_to_module_keys(self, modules_index, dep_graph, base_deps, base_unused_deps,
                               include_unused=False, warn_unused=True):
        versions = sorted(modules_index.get(self.name, ()))
        if not versions:
            raise InvalidArgumentError(
                f"Module {self.name} does not exist in the dependency graph",
                ErrorKind.MODULE_NOT_FOUND,
            )
        used = tuple(key for key in versions if dep_graph[key].is_used)
        if not include_unused:
            if not used:
                raise InvalidArgumentError(
                    f"All versions of module {self.name} are unused as a result of module resolution. "
                    f"Use the --include_unused option to allow specifying unused modules",
                    ErrorKind.UNUSED_MODULE_EXCLUDED,
                )
            return used
        if warn_unused:
            for key in versions:
                if key not in used:
                    logger.warning(f"Module version {key} is unused as a result of module resolution")
        return tuple(versions)

    def __str__(self) -> str:
        return f"{self.name}@{ALL_VERSIONS_TOKEN}"


@dataclass(frozen=True)
class DependencyName(ModuleArg):
    """
    Bare `name`: a local dependency name of the base module.

    Never looked up in the global index; the name only has meaning relative
    to the base module.
    """
    name: str

    def resolve_to_module_keys(self, modules_index, dep_graph, base_deps, base_unused_deps,
                               include_unused=False, warn_unused=True):
        keys: List[ModuleKey] = []
        if self.name in base_deps:
            keys.append(base_deps[self.name])
        unused = base_unused_deps.get(self.name)
        if unused is not None and unused not in keys:
            if include_unused:
                if warn_unused:
                    logger.warning(f"Module version {unused} is unused as a result of module resolution")
                keys.append(unused)
            elif not keys:
                raise _unused_error(unused)
        if not keys:
            raise InvalidArgumentError(
                f"No dependency named {self.name!r} exists in the base module's dependencies",
                ErrorKind.MODULE_NOT_FOUND,
            )
        return tuple(keys)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RootModule(ModuleArg):
    """`<root>`"""

    def resolve_to_module_keys(self, modules_index, dep_graph, base_deps, base_unused_deps,
                               include_unused=False, warn_unused=True):
        return (ROOT,)

    def __str__(self) -> str:
        return ROOT_TOKEN


def parse_module_arg(token: str) -> ModuleArg:
    """
    Parse a single module reference token.

    Raises:
        InvalidArgumentError: InvalidReferenceSyntax if the token is malformed
    """
    token = token.strip()
    if token == ROOT_TOKEN:
        return RootModule()

    name, sep, version = token.partition('@')
    if not _NAME_RE.match(name):
        raise InvalidArgumentError(
            f"Invalid module reference {token!r}: expected <root>, name, name@version or name@*",
            ErrorKind.INVALID_REFERENCE_SYNTAX,
        )
    if not sep:
        return DependencyName(name)
    if version == ALL_VERSIONS_TOKEN:
        return AllVersionsOfModule(name)
    if version == EMPTY_VERSION_TOKEN:
        return SpecificVersionOfModule(name, "")
    if not _VERSION_RE.match(version):
        raise InvalidArgumentError(
            f"Invalid version in module reference {token!r}",
            ErrorKind.INVALID_REFERENCE_SYNTAX,
        )
    return SpecificVersionOfModule(name, version)


def _split_list(text: str) -> List[str]:
    tokens = [token.strip() for token in text.split(',')]
    if any(not token for token in tokens):
        raise InvalidArgumentError(
            f"Empty element in reference list {text!r}",
            ErrorKind.INVALID_REFERENCE_SYNTAX,
        )
    return tokens


def parse_module_arg_list(text: str) -> Tuple[ModuleArg, ...]:
    """Parse a comma-separated list of module references."""
    return tuple(parse_module_arg(token) for token in _split_list(text))


def resolve_module_args(
    args: Iterable[ModuleArg],
    modules_index: Mapping[str, FrozenSet[ModuleKey]],
    dep_graph: Mapping[ModuleKey, AugmentedModule],
    base_deps: Mapping[str, ModuleKey],
    base_unused_deps: Mapping[str, ModuleKey],
    include_unused: bool = False,
    warn_unused: bool = True,
) -> Tuple[ModuleKey, ...]:
    """Resolve several references and union the results, keeping first-seen order."""
    resolved = ()
    for arg in args:
        resolved += arg.resolve_to_module_keys(
            modules_index, dep_graph, base_deps, base_unused_deps, include_unused, warn_unused
        )
    return tuple(dict.fromkeys(resolved))


def _extensions_defined_by(dep_graph: Mapping[ModuleKey, AugmentedModule],
                           key: ModuleKey, extension_name: str) -> List[ModuleExtensionId]:
    found = set()
    for module in dep_graph.values():
        found.update(module.extension_usages)
        for cause in module.dep_causes.values():
            found.update(cause.extensions)
    return sorted(ext for ext in found if ext.module == key and ext.extension_name == extension_name)


@dataclass(frozen=True)
class ExtensionArg:
    """`module%extension[%isolation]`"""
    module_arg: ModuleArg
    extension_name: str
    isolation_key: Optional[str] = None

    def resolve_to_extension_id(
        self,
        modules_index: Mapping[str, FrozenSet[ModuleKey]],
        dep_graph: Mapping[ModuleKey, AugmentedModule],
        base_deps: Mapping[str, ModuleKey],
        base_unused_deps: Mapping[str, ModuleKey],
    ) -> ModuleExtensionId:
        """
        Resolve to exactly one extension identity.

        Raises:
            InvalidArgumentError: If the module part is ambiguous or the extension is unknown
        """
        keys = self.module_arg.resolve_to_module_keys(
            modules_index, dep_graph, base_deps, base_unused_deps,
            include_unused=False, warn_unused=False,
        )
        if len(keys) > 1:
            raise InvalidArgumentError(
                f"The module part of extension argument {self} matches more than one module version: "
                f"{', '.join(str(k) for k in keys)}. Specify a single version",
                ErrorKind.AMBIGUOUS_REFERENCE,
            )
        key = keys[0]
        candidates = _extensions_defined_by(dep_graph, key, self.extension_name)
        if self.isolation_key is not None:
            candidates = [ext for ext in candidates if ext.isolation_key == self.isolation_key]
        elif len(candidates) > 1:
            shared = [ext for ext in candidates if ext.isolation_key is None]
            if len(shared) == 1:
                candidates = shared
            else:
                raise InvalidArgumentError(
                    f"Extension {self} has several isolated usages: "
                    f"{', '.join(str(ext) for ext in candidates)}. Add the isolation key",
                    ErrorKind.AMBIGUOUS_REFERENCE,
                )
        if not candidates:
            raise InvalidArgumentError(
                f"No extension {self.extension_name} defined by module {key} is used in the dependency graph",
                ErrorKind.EXTENSION_NOT_FOUND,
            )
        return candidates[0]

    def __str__(self) -> str:
        text = f"{self.module_arg}%{self.extension_name}"
        if self.isolation_key is not None:
            text += f"%{self.isolation_key}"
        return text


def parse_extension_arg(token: str) -> ExtensionArg:
    """
    Parse `module%extension[%isolation]`.

    Raises:
        InvalidArgumentError: InvalidReferenceSyntax if the token is malformed
    """
    parts = token.strip().split('%')
    if len(parts) not in (2, 3) or not all(part.strip() for part in parts):
        raise InvalidArgumentError(
            f"Invalid extension reference {token!r}: expected module%extension[%isolation]",
            ErrorKind.INVALID_REFERENCE_SYNTAX,
        )
    isolation = parts[2].strip() if len(parts) == 3 else None
    return ExtensionArg(parse_module_arg(parts[0]), parts[1].strip(), isolation)


def parse_extension_arg_list(text: str) -> Tuple[ExtensionArg, ...]:
    """Parse a comma-separated list of extension references."""
    return tuple(parse_extension_arg(token) for token in _split_list(text))


def resolve_extension_args(
    args: Iterable[ExtensionArg],
    modules_index: Mapping[str, FrozenSet[ModuleKey]],
    dep_graph: Mapping[ModuleKey, AugmentedModule],
    base_deps: Mapping[str, ModuleKey],
    base_unused_deps: Mapping[str, ModuleKey],
) -> Tuple[ModuleExtensionId, ...]:
    """Resolve extension references into a sorted, duplicate-free tuple."""
    return tuple(sorted({
        arg.resolve_to_extension_id(modules_index, dep_graph, base_deps, base_unused_deps)
        for arg in args
    }))
