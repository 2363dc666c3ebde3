"""
Pytest configuration for unit tests.

Provides small dependency graph snapshots shared by the test modules.
"""
import pytest

from modquery.graph.model import ROOT, ModuleExtensionId, ModuleKey
from modquery.graph.store import SnapshotStore


A1 = ModuleKey("A", "1.0")
B1 = ModuleKey("B", "1.0")
B2 = ModuleKey("B", "2.0")

RULES_X = ModuleKey("rules_x", "1.0")
RULES_Y = ModuleKey("rules_y", "1.0")
EXT1 = ModuleExtensionId(RULES_X, "ext1")
EXT2 = ModuleExtensionId(RULES_Y, "ext2")


def key(text: str) -> ModuleKey:
    return ModuleKey.parse(text)


@pytest.fixture
def scenario_snapshot():
    """
    ROOT -> A@1.0 -> B@2.0, with B@1.0 declared by A but discarded by selection.
    """
    store = SnapshotStore()
    store.add_module(ROOT)
    store.add_module(A1)
    store.add_module(B1)
    store.add_module(B2)
    store.add_dep(ROOT, "A", A1)
    store.add_dep(A1, "B", B2)
    store.add_unused_dep(A1, "B", B1)
    return store.freeze()


@pytest.fixture
def diamond_snapshot():
    """
    ROOT -> a, b; a -> c; b -> c; c -> d. ROOT also declares an unused e@1.0.
    """
    store = SnapshotStore()
    store.add_module(ROOT)
    for text in ("a@1.0", "b@1.0", "c@1.0", "d@1.0", "e@1.0", "e@2.0"):
        store.add_module(key(text))
    store.add_dep(ROOT, "a", key("a@1.0"))
    store.add_dep(ROOT, "b", key("b@1.0"))
    store.add_dep(ROOT, "e", key("e@2.0"))
    store.add_unused_dep(ROOT, "e", key("e@1.0"))
    store.add_dep(key("a@1.0"), "c", key("c@1.0"))
    store.add_dep(key("b@1.0"), "c", key("c@1.0"))
    store.add_dep(key("c@1.0"), "d", key("d@1.0"))
    return store.freeze()


@pytest.fixture
def extension_snapshot():
    """
    Graph whose edges are partly introduced by extensions.

    ROOT -> rules_x, rules_y, a, b (direct)
    a -> p (via ext2 only), a -> q (via ext1 only), a -> r (direct)
    b -> p (direct)
    """
    store = SnapshotStore()
    store.add_module(ROOT)
    for module in (RULES_X, RULES_Y):
        store.add_module(module)
    for text in ("a@1.0", "b@1.0", "p@1.0", "q@1.0", "r@1.0"):
        store.add_module(key(text))

    store.add_dep(ROOT, "rules_x", RULES_X)
    store.add_dep(ROOT, "rules_y", RULES_Y)
    store.add_dep(ROOT, "a", key("a@1.0"))
    store.add_dep(ROOT, "b", key("b@1.0"))
    store.add_dep(key("a@1.0"), "p", key("p@1.0"), extensions=[EXT2])
    store.add_dep(key("a@1.0"), "q", key("q@1.0"), extensions=[EXT1])
    store.add_dep(key("a@1.0"), "r", key("r@1.0"))
    store.add_dep(key("b@1.0"), "p", key("p@1.0"))

    store.add_extension_usage(key("a@1.0"), EXT1, tags=["ext1.install(name = \"q\")"], imports={"q": "q_repo"})
    store.add_module_extension_usage(key("a@1.0"), EXT1, ["q_repo", "q_extra"])
    store.add_extension_usage(key("b@1.0"), EXT1, imports={"q2": "q_repo2"})
    store.add_extension_usage(key("a@1.0"), EXT2, imports={"p": "p_repo"})
    store.set_extension_repos(EXT1, ["q_repo", "q_repo2", "q_extra"])
    store.set_extension_repos(EXT2, ["p_repo"])

    store.add_repo_rule("a~1.0", {"rule_class": "http_archive", "urls": ["https://example.com/a.zip"]})
    store.add_repo_rule("b~1.0", {"rule_class": "http_archive", "strip_prefix": "b-1.0"})
    return store.freeze()
