"""Cycle detection for Gorgon.

Two complementary checks live here:

- ExpansionPath is carried through every render call. It holds the chain of
  units currently being expanded, so deciding whether an invocation would loop
  back into its own ancestry is a set-membership test. The same component may
  appear many times in one tree (two sibling footers) without being a cycle.
- strongly_connected_components / find_cycles inspect the whole invocation
  graph ahead of rendering so cycles can be reported early, and give the
  fingerprinting code a stable leaves-first order over cyclic graphs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping


class ExpansionPath:
    """Immutable stack of the unit identifiers on the active expansion path."""

    __slots__ = ("_chain", "_members")

    def __init__(self, chain: tuple[str, ...] = ()):
        self._chain = chain
        self._members = frozenset(chain)

    def push(self, unit_id: str) -> ExpansionPath:
        return ExpansionPath(self._chain + (unit_id,))

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._members

    def __len__(self) -> int:
        return len(self._chain)

    def __iter__(self):
        return iter(self._chain)

    @property
    def depth(self) -> int:
        return len(self._chain)

    @property
    def chain(self) -> tuple[str, ...]:
        return self._chain

    def cycle_through(self, unit_id: str) -> tuple[str, ...]:
        """Return the looping part of the path that re-enters unit_id.

        Examples:
            >>> ExpansionPath(("/", "a", "b")).cycle_through("a")
            ('a', 'b', 'a')
        """
        if unit_id not in self._members:
            return ()
        start = self._chain.index(unit_id)
        return self._chain[start:] + (unit_id,)

    def __repr__(self) -> str:
        return f"ExpansionPath({' -> '.join(self._chain)})"


def strongly_connected_components(
    edges: Mapping[str, Iterable[str]],
) -> list[tuple[str, ...]]:
    """Tarjan's algorithm, iterative.

    Args:
        edges: Adjacency map of unit identifier to invoked identifiers. Targets
            missing from the map are treated as leaves.

    Returns:
        Components in reverse topological order: every component comes after all
        components it has edges into. Members of each component are sorted.
    """
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    result: list[tuple[str, ...]] = []
    counter = 0

    nodes = set(edges)
    for targets in edges.values():
        nodes.update(targets)

    for root in sorted(nodes):
        if root in index_of:
            continue
        work = [(root, iter(sorted(edges.get(root, ()))))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            node, children = work[-1]
            child = next(children, None)
            if child is not None:
                if child not in index_of:
                    index_of[child] = lowlink[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(sorted(edges.get(child, ())))))
                elif child in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[child])
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                members = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    members.append(member)
                    if member == node:
                        break
                result.append(tuple(sorted(members)))
    return result


def find_cycles(edges: Mapping[str, Iterable[str]]) -> list[tuple[str, ...]]:
    """Return every group of units that can invoke itself, including self-loops."""
    cycles = []
    for component in strongly_connected_components(edges):
        if len(component) > 1:
            cycles.append(component)
        elif component[0] in set(edges.get(component[0], ())):
            cycles.append(component)
    return cycles
