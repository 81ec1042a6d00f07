from phaseci import cycle
from phaseci.dag import DependencyGraph, build_graph
from phaseci.scc import analyze, find_sccs

from conftest import mk


def graph(edges):
    return DependencyGraph(vertices=tuple(edges), edges={k: tuple(v) for k, v in edges.items()})


def test_acyclic_graph_has_only_trivial_components():
    analysis = analyze(build_graph([mk("c", needs=["b"]), mk("b", needs=["a"]), mk("a")]))
    assert not analysis.has_cycles
    assert analysis.cycles == ()
    assert all(len(s.members) == 1 for s in analysis.sccs)
    order = analysis.topological_order
    assert order.index("a") < order.index("b") < order.index("c")


def test_two_node_cycle_is_one_component():
    sccs = find_sccs(graph({"a": ["b"], "b": ["a"]}))
    assert len(sccs) == 1
    assert sccs[0].members == ("a", "b")
    assert sccs[0].is_cycle


def test_self_loop_is_a_cycle_but_lone_node_is_not():
    sccs = {s.members: s for s in find_sccs(graph({"x": ["x"], "y": []}))}
    assert sccs[("x",)].is_cycle
    assert not sccs[("y",)].is_cycle


def test_components_come_after_their_dependencies():
    # a -> {b <-> c} -> d
    analysis = analyze(graph({"a": [], "b": ["a", "c"], "c": ["b"], "d": ["c"]}))
    members = [s.members for s in analysis.sccs]
    assert members == [("a",), ("b", "c"), ("d",)]
    assert [s.members for s in analysis.cycles] == [("b", "c")]


def test_members_keep_declaration_order():
    sccs = find_sccs(graph({"z": ["m"], "m": ["a"], "a": ["z"]}))
    assert sccs[0].members == ("z", "m", "a")


def test_declared_cycle_shows_up_as_component():
    c = cycle("loop", mk("fetch"), mk("score", needs=["fetch"]), max_iters=3)
    analysis = analyze(build_graph([mk("setup"), mk("report", needs=["score"])], [c]))
    assert [s.members for s in analysis.cycles] == [("fetch", "score")]
    order = analysis.topological_order
    assert order.index("fetch") < order.index("report")


def test_deep_chain_does_not_recurse():
    n = 20000
    edges = {f"j{i}": ([f"j{i - 1}"] if i else []) for i in range(n)}
    # start the walk at the far end of the chain
    g = DependencyGraph(vertices=tuple(reversed(list(edges))), edges={k: tuple(v) for k, v in edges.items()})
    analysis = analyze(g)
    assert len(analysis.sccs) == n
    assert not analysis.has_cycles
    assert analysis.topological_order[0] == "j0"
    assert analysis.topological_order[-1] == f"j{n - 1}"
