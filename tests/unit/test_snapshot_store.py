"""
Unit tests for snapshot loading and projection.
"""
import json

import pytest

from modquery.errors import ErrorKind, GraphEvaluationError
from modquery.graph.model import ROOT, EdgeCause, ModuleExtensionId, ModuleKey
from modquery.graph.schema import validate_document
from modquery.graph.store import SnapshotStore, build_snapshot, load_snapshot


A1 = ModuleKey("A", "1.0")
B1 = ModuleKey("B", "1.0")
B2 = ModuleKey("B", "2.0")
C1 = ModuleKey("C", "1.0")
EXT1 = ModuleExtensionId(ModuleKey("rules_x", "1.0"), "ext1")

SNAPSHOT_YAML = """
version: 1
modules:
  - key: "<root>"
    deps:
      - {name: A, key: A@1.0}
      - {name: rules_x, key: rules_x@1.0}
  - key: A@1.0
    deps:
      - {name: B, key: B@2.0}
      - {name: C, key: C@1.0, extensions: ["rules_x@1.0%ext1"]}
    unused_deps:
      - {name: B, key: B@1.0}
  - key: B@2.0
  - key: C@1.0
  - key: rules_x@1.0
extension_usages:
  - module: A@1.0
    extension: "rules_x@1.0%ext1"
    tags: ['ext1.install(name = "c")']
    imports: {c: c_repo}
repo_rules:
  A~1.0:
    rule_class: http_archive
    urls: ["https://example.com/a.zip"]
"""


class TestSnapshotStore:
    """Test projection of modules and edges into a snapshot."""

    def test_dependents_are_derived(self, scenario_snapshot):
        graph = scenario_snapshot.dep_graph
        assert graph[A1].dependents == frozenset({ROOT})
        assert graph[B2].dependents == frozenset({A1})
        assert graph[B1].dependents == frozenset()
        assert graph[ROOT].dependents == frozenset()

    def test_unused_targets_are_added(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_unused_dep(ROOT, "x", ModuleKey("x", "0.1"))
        snapshot = store.freeze()

        assert ModuleKey("x", "0.1") in snapshot.dep_graph
        assert not snapshot.dep_graph[ModuleKey("x", "0.1")].is_used

    def test_missing_root_rejected(self):
        store = SnapshotStore()
        store.add_module(A1)

        with pytest.raises(GraphEvaluationError, match="no root module"):
            store.freeze()

    def test_dangling_edge_rejected(self):
        store = SnapshotStore()
        store.add_dep(ROOT, "A", A1)

        with pytest.raises(GraphEvaluationError, match="unknown module A@1.0"):
            store.freeze()

    def test_cycle_rejected(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_module(A1)
        store.add_module(B1)
        store.add_dep(ROOT, "A", A1)
        store.add_dep(A1, "B", B1)
        store.add_dep(B1, "A", A1)

        with pytest.raises(GraphEvaluationError, match="cycle"):
            store.freeze()

    def test_orphan_rejected(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_module(A1)

        with pytest.raises(GraphEvaluationError, match="not reachable"):
            store.freeze()

    def test_dependencies_of_unused_modules_accepted(self):
        store = SnapshotStore()
        store.add_dep(ROOT, "A", A1)
        store.add_module(A1)
        store.add_unused_dep(A1, "B", B1)
        store.add_dep(B1, "C", C1)
        store.add_module(C1)

        snapshot = store.freeze()

        assert not snapshot.dep_graph[B1].is_used
        assert not snapshot.dep_graph[C1].is_used
        assert snapshot.dep_graph[C1].dependents == frozenset()

    def test_dependents_only_from_used_modules(self):
        store = SnapshotStore()
        store.add_dep(ROOT, "A", A1)
        store.add_dep(ROOT, "C", C1)
        store.add_module(A1)
        store.add_module(C1)
        store.add_unused_dep(A1, "B", B1)
        store.add_dep(B1, "C", C1)

        snapshot = store.freeze()

        assert snapshot.dep_graph[C1].dependents == frozenset({ROOT})
        assert snapshot.dep_graph[C1].is_used
        assert snapshot.dep_graph[B1].deps == {"C": C1}

    def test_orphan_below_orphan_rejected(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_dep(A1, "C", C1)
        store.add_module(C1)

        with pytest.raises(GraphEvaluationError, match="A@1.0, C@1.0"):
            store.freeze()

    def test_duplicate_dep_name_rejected(self):
        store = SnapshotStore()
        store.add_dep(ROOT, "A", A1)

        with pytest.raises(GraphEvaluationError):
            store.add_dep(ROOT, "A", B1)

    def test_usage_for_unknown_module_rejected(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_extension_usage(A1, EXT1)
        del store.modules[A1]

        with pytest.raises(GraphEvaluationError, match="unknown module"):
            store.freeze()

    def test_extension_repos_default_to_usage_repos(self):
        store = SnapshotStore()
        store.add_module(ROOT)
        store.add_extension_usage(ROOT, EXT1, imports={"c": "c_repo"})
        snapshot = store.freeze()

        assert snapshot.extension_repos[EXT1] == frozenset({"c_repo"})

    def test_graph_error_kind(self):
        store = SnapshotStore()

        with pytest.raises(GraphEvaluationError) as excinfo:
            store.freeze()

        assert excinfo.value.kind == ErrorKind.GRAPH_EVALUATION_FAILED
        assert excinfo.value.exit_code == 37


class TestSnapshotLoading:
    """Test loading snapshot documents from disk."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "snapshot.yaml"
        path.write_text(SNAPSHOT_YAML)

        snapshot = load_snapshot(path)

        graph = snapshot.dep_graph
        assert graph[A1].deps == {"B": B2, "C": C1}
        assert graph[A1].unused_deps == {"B": B1}
        assert graph[A1].cause_of("C") == EdgeCause(direct=False, extensions=frozenset({EXT1}))
        assert graph[A1].cause_of("B").direct
        assert snapshot.usages[(A1, EXT1)].imports == {"c": "c_repo"}
        assert snapshot.repo_rules["A~1.0"]["rule_class"] == "http_archive"

    def test_load_json(self, tmp_path):
        data = {
            "modules": [
                {"key": "<root>", "deps": [{"name": "A", "key": "A@1.0"}]},
                {"key": "A@1.0", "repo_name": "a_repo"},
            ]
        }
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps(data))

        snapshot = load_snapshot(path)

        assert snapshot.dep_graph[A1].repo_name == "a_repo"
        assert snapshot.root.deps == {"A": A1}

    def test_missing_file(self, tmp_path):
        with pytest.raises(GraphEvaluationError, match="Snapshot not found"):
            load_snapshot(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "snapshot.yaml"
        path.write_text("modules: [unclosed")

        with pytest.raises(GraphEvaluationError, match="Could not parse"):
            load_snapshot(path)

    def test_document_must_be_mapping(self):
        with pytest.raises(GraphEvaluationError, match="must be a mapping"):
            build_snapshot(["not", "a", "mapping"])

    def test_invalid_module_key(self):
        with pytest.raises(GraphEvaluationError, match="Invalid snapshot document"):
            build_snapshot({"modules": [{"key": "no-version"}]})

    def test_indirect_edge_needs_extension(self):
        with pytest.raises(ValueError):
            validate_document({
                "modules": [{"key": "<root>", "deps": [{"name": "A", "key": "A@1.0", "direct": False}]}]
            })

    def test_direct_defaults_from_extensions(self):
        document = validate_document({
            "modules": [{"key": "<root>", "deps": [
                {"name": "A", "key": "A@1.0"},
                {"name": "C", "key": "C@1.0", "extensions": ["rules_x@1.0%ext1"]},
            ]}]
        })
        deps = document.modules[0].deps
        assert deps[0].direct is True
        assert deps[1].direct is False

    def test_same_document_same_snapshot(self, tmp_path):
        path = tmp_path / "snapshot.yaml"
        path.write_text(SNAPSHOT_YAML)

        first = load_snapshot(path)
        second = load_snapshot(path)

        assert list(first.dep_graph) == list(second.dep_graph)
        assert dict(first.modules_index) == dict(second.modules_index)
