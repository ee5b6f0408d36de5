"""Dependency graph for Gorgon.

Nodes are unit identifiers (content routes and component identifiers); an edge
``A -> B`` means "A invokes B". The transpose is kept alongside so that the set of
units affected by a change is a simple walk over in-edges.

Edges to identifiers that do not (yet) exist are kept as dangling edges. They
resolve by themselves once a unit with that identifier appears, because the new
identifier is part of the change set and its in-edges already point at it.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType


class DependencyGraph:
    """Directed "invokes" graph over unit identifiers, with its transpose."""

    def __init__(self):
        self._lock = threading.RLock()
        self._out: dict[str, frozenset[str]] = {}
        self._in: dict[str, set[str]] = {}

    def update_edges(self, unit_id: str, out_targets: Iterable[str]) -> None:
        """Replace every out-edge of unit_id in one step and update the transpose."""
        targets = frozenset(out_targets)
        with self._lock:
            previous = self._out.get(unit_id, frozenset())
            for removed in previous - targets:
                dependents = self._in.get(removed)
                if dependents is not None:
                    dependents.discard(unit_id)
                    if not dependents:
                        del self._in[removed]
            for added in targets - previous:
                self._in.setdefault(added, set()).add(unit_id)
            self._out[unit_id] = targets

    def remove_unit(self, unit_id: str) -> None:
        """Drop a unit's out-edges. Edges pointing at it become dangling."""
        with self._lock:
            self.update_edges(unit_id, ())
            del self._out[unit_id]

    def __contains__(self, unit_id: object) -> bool:
        with self._lock:
            return unit_id in self._out or unit_id in self._in

    def nodes(self) -> set[str]:
        with self._lock:
            return set(self._out) | set(self._in)

    def dependencies_of(self, unit_id: str) -> frozenset[str]:
        with self._lock:
            return self._out.get(unit_id, frozenset())

    def dependents_of(self, unit_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._in.get(unit_id, ()))

    def affected_by(self, changed_ids: Iterable[str]) -> set[str]:
        """Return changed_ids plus every unit that depends on them, directly or not."""
        with self._lock:
            affected = set(changed_ids)
            stack = list(affected)
            while stack:
                current = stack.pop()
                for dependent in self._in.get(current, ()):
                    if dependent not in affected:
                        affected.add(dependent)
                        stack.append(dependent)
            return affected

    def transitive_dependencies(self, unit_id: str) -> set[str]:
        """Every identifier reachable from unit_id through out-edges (excluding itself
        unless it lies on a cycle)."""
        with self._lock:
            seen: set[str] = set()
            stack = list(self._out.get(unit_id, ()))
            while stack:
                current = stack.pop()
                if current in seen:
                    continue
                seen.add(current)
                stack.extend(self._out.get(current, ()))
            return seen

    def dangling(self, known_ids: Iterable[str]) -> dict[str, frozenset[str]]:
        """Map each unit to the targets it invokes that are not in known_ids."""
        known = set(known_ids)
        with self._lock:
            result: dict[str, frozenset[str]] = {}
            for unit_id, targets in self._out.items():
                missing = targets - known
                if missing:
                    result[unit_id] = frozenset(missing)
            return result

    def out_edges(self) -> Mapping[str, frozenset[str]]:
        """Read-only copy of the adjacency map."""
        with self._lock:
            return MappingProxyType(dict(self._out))

    def leaves_first(self, unit_ids: Iterable[str]) -> list[str]:
        """Order unit_ids so that dependencies come before their dependents.

        Units on a cycle are ordered arbitrarily among themselves. The result is
        deterministic for a given graph.
        """
        wanted = set(unit_ids)
        with self._lock:
            order: list[str] = []
            visited: set[str] = set()
            for root in sorted(wanted):
                if root in visited:
                    continue
                visited.add(root)
                stack = [(root, iter(sorted(self._out.get(root, ()))))]
                while stack:
                    node, children = stack[-1]
                    child = next(children, None)
                    if child is None:
                        stack.pop()
                        if node in wanted:
                            order.append(node)
                    elif child not in visited:
                        visited.add(child)
                        stack.append((child, iter(sorted(self._out.get(child, ())))))
            return order
