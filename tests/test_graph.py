from gorgon.cycles import ExpansionPath, find_cycles, strongly_connected_components
from gorgon.graph import DependencyGraph


def _chain_graph():
    graph = DependencyGraph()
    graph.update_edges("A", {"B"})
    graph.update_edges("B", {"C"})
    graph.update_edges("C", ())
    graph.update_edges("D", {"E"})
    return graph


def test_affected_by_follows_in_edges_transitively():
    graph = _chain_graph()
    assert graph.affected_by({"C"}) == {"A", "B", "C"}
    assert graph.affected_by({"E"}) == {"D", "E"}
    assert graph.affected_by(set()) == set()


def test_update_edges_replaces_out_edges():
    graph = _chain_graph()
    graph.update_edges("A", {"E"})
    assert graph.dependencies_of("A") == {"E"}
    assert graph.dependents_of("B") == frozenset()
    assert graph.dependents_of("E") == {"A", "D"}
    assert graph.affected_by({"C"}) == {"B", "C"}


def test_remove_unit_keeps_dangling_in_edges():
    graph = DependencyGraph()
    graph.update_edges("page", {"footer"})
    graph.update_edges("footer", {"icon"})
    graph.remove_unit("footer")
    assert graph.dependents_of("footer") == {"page"}
    assert graph.dependents_of("icon") == frozenset()
    assert graph.dangling({"page"}) == {"page": frozenset({"footer"})}
    # A unit re-added under the same identifier is reached through the old edge.
    assert graph.affected_by({"footer"}) == {"footer", "page"}


def test_remove_unit_without_edges():
    graph = DependencyGraph()
    graph.remove_unit("ghost")
    assert "ghost" not in graph


def test_transitive_dependencies():
    graph = _chain_graph()
    assert graph.transitive_dependencies("A") == {"B", "C"}
    assert graph.transitive_dependencies("C") == set()


def test_leaves_first_orders_dependencies_before_dependents():
    graph = _chain_graph()
    order = graph.leaves_first({"A", "B", "C", "D"})
    assert order.index("C") < order.index("B") < order.index("A")
    assert set(order) == {"A", "B", "C", "D"}
    assert "E" not in order


def test_leaves_first_terminates_on_cycles():
    graph = DependencyGraph()
    graph.update_edges("a", {"b"})
    graph.update_edges("b", {"a"})
    assert sorted(graph.leaves_first({"a", "b"})) == ["a", "b"]


def test_out_edges_is_read_only_copy():
    graph = _chain_graph()
    edges = graph.out_edges()
    graph.update_edges("A", ())
    assert edges["A"] == {"B"}


def test_strongly_connected_components_sinks_first():
    edges = {"a": {"b"}, "b": {"c"}, "c": set()}
    assert strongly_connected_components(edges) == [("c",), ("b",), ("a",)]


def test_strongly_connected_components_groups_cycles():
    edges = {"page": {"a"}, "a": {"b"}, "b": {"a"}}
    assert strongly_connected_components(edges) == [("a", "b"), ("page",)]


def test_find_cycles_includes_self_loops():
    edges = {"x": {"x"}, "y": {"z"}, "z": {"y"}, "w": set()}
    assert find_cycles(edges) == [("x",), ("y", "z")]


def test_expansion_path_membership_and_cycle_chain():
    path = ExpansionPath(("/",)).push("a").push("b")
    assert "a" in path
    assert "c" not in path
    assert path.depth == 3
    assert path.chain == ("/", "a", "b")
    assert path.cycle_through("a") == ("a", "b", "a")
    assert path.cycle_through("c") == ()


def test_expansion_path_push_does_not_mutate():
    root = ExpansionPath(("/",))
    root.push("footer")
    root.push("footer")
    assert root.depth == 1
    assert "footer" not in root
