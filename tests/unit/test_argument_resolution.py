"""
Unit tests for module and extension argument resolution.
"""
import logging

import pytest

from modquery.errors import ErrorKind, InvalidArgumentError
from modquery.graph.model import ROOT, ModuleExtensionId, ModuleKey
from modquery.graph.store import SnapshotStore
from modquery.query.args import (
    AllVersionsOfModule,
    DependencyName,
    RootModule,
    SpecificVersionOfModule,
    parse_extension_arg,
    parse_extension_arg_list,
    parse_module_arg,
    parse_module_arg_list,
    resolve_extension_args,
    resolve_module_args,
)


A1 = ModuleKey("A", "1.0")
B1 = ModuleKey("B", "1.0")
B2 = ModuleKey("B", "2.0")
RULES_X = ModuleKey("rules_x", "1.0")
EXT1 = ModuleExtensionId(RULES_X, "ext1")


def resolve(snapshot, text, base=ROOT, include_unused=False):
    module = snapshot.dep_graph[base]
    return resolve_module_args(
        parse_module_arg_list(text),
        snapshot.modules_index,
        snapshot.dep_graph,
        module.deps,
        module.unused_deps,
        include_unused=include_unused,
    )


def resolve_extension(snapshot, text, base=ROOT):
    module = snapshot.dep_graph[base]
    return parse_extension_arg(text).resolve_to_extension_id(
        snapshot.modules_index, snapshot.dep_graph, module.deps, module.unused_deps
    )


class TestModuleArgParsing:
    """Test the module reference grammar."""

    def test_parse_forms(self):
        assert parse_module_arg("<root>") == RootModule()
        assert parse_module_arg("foo") == DependencyName("foo")
        assert parse_module_arg("foo@1.2") == SpecificVersionOfModule("foo", "1.2")
        assert parse_module_arg("foo@*") == AllVersionsOfModule("foo")
        assert parse_module_arg("foo@_") == SpecificVersionOfModule("foo", "")

    def test_parse_strips_whitespace(self):
        assert parse_module_arg("  foo@1.2 ") == SpecificVersionOfModule("foo", "1.2")

    @pytest.mark.parametrize("token", ["@1.0", "1foo", "foo@", "foo@1.0@2", "fo o", "<other>"])
    def test_parse_rejects_malformed(self, token):
        with pytest.raises(InvalidArgumentError) as excinfo:
            parse_module_arg(token)

        assert excinfo.value.kind == ErrorKind.INVALID_REFERENCE_SYNTAX

    def test_parse_list(self):
        args = parse_module_arg_list("A,B@1.0, <root>")
        assert args == (DependencyName("A"), SpecificVersionOfModule("B", "1.0"), RootModule())

    def test_parse_list_rejects_empty_element(self):
        with pytest.raises(InvalidArgumentError) as excinfo:
            parse_module_arg_list("A,,B")

        assert excinfo.value.kind == ErrorKind.INVALID_REFERENCE_SYNTAX

    def test_str_roundtrip(self):
        for token in ("<root>", "foo", "foo@1.2", "foo@*"):
            assert str(parse_module_arg(token)) == token


class TestModuleArgResolution:
    """Test resolution against the ROOT -> A@1.0 -> B@2.0 graph (B@1.0 unused)."""

    def test_bare_name_equals_qualified_reference(self, scenario_snapshot):
        assert resolve(scenario_snapshot, "A") == resolve(scenario_snapshot, "A@1.0") == (A1,)

    def test_bare_name_is_relative_to_base(self, scenario_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve(scenario_snapshot, "B")

        assert excinfo.value.kind == ErrorKind.MODULE_NOT_FOUND
        assert resolve(scenario_snapshot, "B", base=A1) == (B2,)

    def test_bare_name_with_unused_version(self, scenario_snapshot):
        assert resolve(scenario_snapshot, "B", base=A1, include_unused=True) == (B2, B1)

    def test_root(self, scenario_snapshot):
        assert resolve(scenario_snapshot, "<root>") == (ROOT,)

    def test_unused_version_excluded(self, scenario_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve(scenario_snapshot, "B@1.0")

        assert excinfo.value.kind == ErrorKind.UNUSED_MODULE_EXCLUDED
        assert "--include_unused" in excinfo.value.message

    def test_unused_version_included_with_warning(self, scenario_snapshot, caplog):
        with caplog.at_level(logging.WARNING):
            keys = resolve(scenario_snapshot, "B@1.0", include_unused=True)

        assert keys == (B1,)
        assert "B@1.0 is unused" in caplog.text

    def test_unknown_version(self, scenario_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve(scenario_snapshot, "B@3.0")

        assert excinfo.value.kind == ErrorKind.MODULE_NOT_FOUND
        assert "B@1.0, B@2.0" in excinfo.value.message

    def test_unknown_module(self, scenario_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve(scenario_snapshot, "Z@1.0")

        assert excinfo.value.kind == ErrorKind.MODULE_NOT_FOUND

    def test_all_versions(self, scenario_snapshot):
        assert resolve(scenario_snapshot, "B@*") == (B2,)
        assert resolve(scenario_snapshot, "B@*", include_unused=True) == (B1, B2)

    def test_list_is_unioned_in_first_seen_order(self, scenario_snapshot):
        assert resolve(scenario_snapshot, "A@1.0,<root>,A") == (A1, ROOT)

    def test_failing_element_fails_the_list(self, scenario_snapshot):
        with pytest.raises(InvalidArgumentError):
            resolve(scenario_snapshot, "A,Z@1.0")

    def test_name_only_in_unused_map(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_unused_dep(ROOT, "x", ModuleKey("x", "1.0"))
        snapshot = store.freeze()

        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve(snapshot, "x")

        assert excinfo.value.kind == ErrorKind.UNUSED_MODULE_EXCLUDED
        assert resolve(snapshot, "x", include_unused=True) == (ModuleKey("x", "1.0"),)

    def test_resolve_to_repo_names(self, scenario_snapshot):
        root = scenario_snapshot.root
        repos = parse_module_arg("A").resolve_to_repo_names(
            scenario_snapshot.modules_index, scenario_snapshot.dep_graph, root.deps
        )

        assert repos == {"A": "A~1.0"}


class TestExtensionArgResolution:
    """Test extension references against the extension graph."""

    def test_parse_forms(self):
        arg = parse_extension_arg("rules_x@1.0%ext1%iso")
        assert arg.module_arg == SpecificVersionOfModule("rules_x", "1.0")
        assert arg.extension_name == "ext1"
        assert arg.isolation_key == "iso"
        assert str(arg) == "rules_x@1.0%ext1%iso"

    @pytest.mark.parametrize("token", ["rules_x", "rules_x%", "%ext1", "a%b%c%d"])
    def test_parse_rejects_malformed(self, token):
        with pytest.raises(InvalidArgumentError) as excinfo:
            parse_extension_arg(token)

        assert excinfo.value.kind == ErrorKind.INVALID_REFERENCE_SYNTAX

    def test_resolve_by_dependency_name(self, extension_snapshot):
        assert resolve_extension(extension_snapshot, "rules_x%ext1") == EXT1

    def test_resolve_by_version(self, extension_snapshot):
        assert resolve_extension(extension_snapshot, "rules_x@1.0%ext1") == EXT1

    def test_unknown_extension(self, extension_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve_extension(extension_snapshot, "rules_x%nope")

        assert excinfo.value.kind == ErrorKind.EXTENSION_NOT_FOUND

    def test_module_part_must_resolve(self, extension_snapshot):
        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve_extension(extension_snapshot, "rules_z%ext1")

        assert excinfo.value.kind == ErrorKind.MODULE_NOT_FOUND

    def test_ambiguous_module_part(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_module(ModuleKey("rules_x", "1.0"))
        store.add_module(ModuleKey("rules_x", "2.0"))
        store.add_module(A1)
        store.add_dep(ROOT, "rules_x", ModuleKey("rules_x", "1.0"))
        store.add_dep(ROOT, "A", A1)
        store.add_dep(A1, "rules_x", ModuleKey("rules_x", "2.0"))
        snapshot = store.freeze()

        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve_extension(snapshot, "rules_x@*%ext1")

        assert excinfo.value.kind == ErrorKind.AMBIGUOUS_REFERENCE

    def test_isolated_usages(self):
        iso1 = ModuleExtensionId(RULES_X, "ext1", "iso1")
        iso2 = ModuleExtensionId(RULES_X, "ext1", "iso2")
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_module(RULES_X)
        store.add_dep(ROOT, "rules_x", RULES_X)
        store.add_extension_usage(ROOT, iso1)
        store.add_extension_usage(ROOT, iso2)
        snapshot = store.freeze()

        with pytest.raises(InvalidArgumentError) as excinfo:
            resolve_extension(snapshot, "rules_x%ext1")

        assert excinfo.value.kind == ErrorKind.AMBIGUOUS_REFERENCE
        assert resolve_extension(snapshot, "rules_x%ext1%iso2") == iso2

    def test_resolve_list_sorted_and_deduplicated(self, extension_snapshot):
        root = extension_snapshot.root
        extensions = resolve_extension_args(
            parse_extension_arg_list("rules_y%ext2,rules_x%ext1,rules_x@1.0%ext1"),
            extension_snapshot.modules_index,
            extension_snapshot.dep_graph,
            root.deps,
            root.unused_deps,
        )

        assert extensions == (EXT1, ModuleExtensionId(ModuleKey("rules_y", "1.0"), "ext2"))
