"""Incremental build engine for Gorgon.

The engine owns the content tree, the component registry, the dependency graph
and the render cache. It is fed batches of FileChange events and re-renders the
smallest set of content units those changes can affect.

One build generation runs as:

1. Apply the batch under the write barrier: rebuild units for changed files,
   update the registry and graph, record parse errors and conflicts.
2. Take the affected closure of everything changed (plus work left over from a
   cancelled generation) over the graph's in-edges.
3. Freeze a registry snapshot and compute fingerprints.
4. Validate affected components and render affected content units on a worker
   pool, leaves first, reusing cached output whose fingerprint still matches.

A newer generation cancels the remaining renders of an older one. Units that were
already rendering finish; units that had not started are carried into the next
build.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from .cache import CacheEntry, RenderCache, UnitState, compute_fingerprints
from .content import ChangeKind, FileChange, UnitBuilder
from .cycles import find_cycles
from .diagnostics import DEGRADING_KINDS, Diagnostic, DiagnosticKind, DiagnosticStream
from .errors import (
    BuildError,
    ParseError,
    RegistrationConflict,
    RenderLimitExceeded,
    UnitError,
    UnknownUnitError,
)
from .graph import DependencyGraph
from .logging import get_logger
from .registry import ComponentRegistry, RegistrySnapshot
from .renderer import DEFAULT_MAX_DEPTH, Renderer, RenderResult
from .units import RenderableUnit, UnitKind, hash_text
from .variables import Variables

__all__ = [
    "BuildEngine",
    "BuildReport",
    "ChangeKind",
    "ChangeSet",
    "FileChange",
]

logger = get_logger("engine")

DEFAULT_WORKERS = 4


@dataclass
class ChangeSet:
    """What one batch of file events did to the engine state.

    Attributes:
        generation: Generation the batch was applied in.
        changed: Unit identifiers whose definition changed (added, modified or removed).
        removed: Content routes that no longer exist.
        failures: Parse errors and registration conflicts found in the batch.
        ignored: Paths that are neither content nor components.
    """

    generation: int
    changed: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)
    failures: dict[str, UnitError] = field(default_factory=dict)
    ignored: list[Path] = field(default_factory=list)


@dataclass
class BuildReport:
    """Outcome of one build generation.

    Attributes:
        generation: Build generation number.
        affected: Units in the invalidation closure.
        outputs: HTML per content route produced by this build (rendered or reused).
        reused: Routes whose output came from the cache.
        failures: Per-unit failures; the previous good output stays in the cache.
        degraded: Routes rendered with fallback markers, with the reasons.
        cancelled: Units left unrendered because a newer generation started.
        removed: Content routes deleted in this generation.
        diagnostics: Everything reported while building.
    """

    generation: int
    affected: set[str] = field(default_factory=set)
    outputs: dict[str, str] = field(default_factory=dict)
    reused: set[str] = field(default_factory=set)
    failures: dict[str, BuildError] = field(default_factory=dict)
    degraded: dict[str, list[str]] = field(default_factory=dict)
    cancelled: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def rendered(self) -> set[str]:
        return set(self.outputs) - self.reused

    def summary(self) -> list[str]:
        """Human-readable summary lines, one per failed or degraded unit."""
        lines = [
            f"Generation {self.generation}: {len(self.rendered)} rendered, "
            f"{len(self.reused)} reused, {len(self.failures)} failed, "
            f"{len(self.degraded)} degraded"
        ]
        if self.cancelled:
            lines.append(f"Cancelled {len(self.cancelled)} units (superseded by a newer build)")
        for unit_id in sorted(self.failures):
            lines.append(f"FAILED {unit_id}: {self.failures[unit_id].message}")
        for unit_id in sorted(self.degraded):
            for reason in self.degraded[unit_id]:
                lines.append(f"DEGRADED {unit_id}: {reason}")
        return lines


_CANCELLED = object()


class BuildEngine:
    """Component resolution and incremental build engine.

    Attributes:
        builder: Converts file events into units.
        registry: Component registry.
        graph: Dependency graph over content routes and component identifiers.
        cache: Render cache.
        diagnostics: Stream that every diagnostic is emitted on.
        max_depth: Recursion ceiling handed to the renderer.
        workers: Size of the render worker pool.
    """

    def __init__(
        self,
        content_dir: Path = Path("content"),
        components_dir: Path = Path("components"),
        *,
        builder: UnitBuilder | None = None,
        variables: Variables | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        workers: int = DEFAULT_WORKERS,
        diagnostics: DiagnosticStream | None = None,
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.builder = builder or UnitBuilder(content_dir, components_dir)
        self.registry = ComponentRegistry()
        self.graph = DependencyGraph()
        self.cache = RenderCache()
        self.diagnostics = diagnostics or DiagnosticStream()
        self.max_depth = max_depth
        self.workers = max(1, workers)
        self._variables = variables or Variables()
        self._content: dict[str, RenderableUnit] = {}
        self._content_conflicts: dict[str, RegistrationConflict] = {}
        self._path_ids: dict[Path, tuple[UnitKind, str]] = {}
        self._rejected: dict[Path, RenderableUnit] = {}
        self._pending: set[str] = set()
        self._pending_removed: set[str] = set()
        self._build_lock = threading.RLock()
        self._generation_lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def _next_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def cancel(self) -> None:
        """Cancel the renders of the generation in flight that have not started yet."""
        self._next_generation()

    def apply_changes(self, events: Iterable[FileChange]) -> ChangeSet:
        """Apply a batch of file events as one atomic step.

        Starting a batch cancels renders of the generation in flight. The changed
        units are remembered and rendered by the next build.
        """
        generation = self._next_generation()
        with self._build_lock:
            changes = self._apply(events, generation)
            self._pending.update(changes.changed)
            self._pending_removed.update(changes.removed)
        return changes

    def _apply(self, events: Iterable[FileChange], generation: int) -> ChangeSet:
        changes = ChangeSet(generation)
        for event in events:
            kind = self.builder.classify(event.path)
            if kind is None:
                changes.ignored.append(event.path)
                continue
            if event.kind is ChangeKind.REMOVED:
                self._remove(event.path, kind, changes)
            else:
                unit = self.builder.build(event.path, event.raw_text, kind)
                self._add(unit, changes)
        for unit_id, error in changes.failures.items():
            kind = (
                DiagnosticKind.PARSE_ERROR
                if isinstance(error, ParseError)
                else DiagnosticKind.REGISTRATION_CONFLICT
            )
            self.diagnostics.emit(Diagnostic(kind, unit_id, error.message, None, generation))
        logger.debug(
            "generation %d applied: %d changed, %d removed",
            generation,
            len(changes.changed),
            len(changes.removed),
        )
        return changes

    def _add(self, unit: RenderableUnit, changes: ChangeSet) -> None:
        path = unit.path
        if unit.parse_error is not None:
            changes.failures[unit.id] = unit.parse_error
        if unit.is_component:
            try:
                self.registry.register_unit(unit)
            except RegistrationConflict as conflict:
                self._reject(unit, conflict, changes)
                return
        else:
            existing = self._content.get(unit.id)
            if existing is not None and existing.path != path:
                conflict = RegistrationConflict(unit.id, existing.path, path)
                self._content_conflicts[unit.id] = conflict
                self._reject(unit, conflict, changes)
                return
            self._content[unit.id] = unit
        self._rejected.pop(path, None)
        self._path_ids[path] = (unit.kind, unit.id)
        self.graph.update_edges(unit.id, unit.targets)
        changes.changed.add(unit.id)

    def _reject(
        self, unit: RenderableUnit, conflict: RegistrationConflict, changes: ChangeSet
    ) -> None:
        self._rejected[unit.path] = unit
        changes.failures[unit.id] = conflict
        changes.changed.add(unit.id)

    def _remove(self, path: Path, kind: UnitKind, changes: ChangeSet) -> None:
        rejected = self._rejected.pop(path, None)
        if rejected is not None:
            self._forget_conflict(rejected.id, kind, path)
            changes.changed.add(rejected.id)
            return
        known = self._path_ids.pop(path, None)
        if known is None:
            return
        _, unit_id = known
        if kind is UnitKind.COMPONENT:
            self.registry.unregister(unit_id)
        else:
            self._content.pop(unit_id, None)
            self._content_conflicts.pop(unit_id, None)
            changes.removed.add(unit_id)
        self.graph.remove_unit(unit_id)
        self.cache.discard(unit_id)
        changes.changed.add(unit_id)
        self._promote_rejected(unit_id, changes)

    def _forget_conflict(self, unit_id: str, kind: UnitKind, path: Path) -> None:
        if kind is UnitKind.COMPONENT:
            self.registry.discard_conflict(unit_id, path)
        else:
            conflict = self._content_conflicts.get(unit_id)
            if conflict is not None and conflict.new_path == path:
                del self._content_conflicts[unit_id]

    def _promote_rejected(self, unit_id: str, changes: ChangeSet) -> None:
        """Register a previously rejected definition once the first one is gone."""
        candidates = sorted(
            (path, unit) for path, unit in self._rejected.items() if unit.id == unit_id
        )
        if not candidates:
            return
        changes.failures.pop(unit_id, None)
        changes.removed.discard(unit_id)
        for path, unit in candidates:
            del self._rejected[path]
            self._add(unit, changes)

    def set_variables(self, variables: Variables) -> set[str]:
        """Replace the site variables; returns the units that must be re-rendered."""
        with self._build_lock:
            if variables.digest() == self._variables.digest():
                self._variables = variables
                return set()
            self._variables = variables
            users = {unit.id for unit in self._all_units() if unit.variables}
            self._pending.update(users)
        return users

    def _all_units(self) -> list[RenderableUnit]:
        snapshot = self.registry.snapshot()
        return list(snapshot.values()) + list(self._content.values())

    def affected_by(self, changed_ids: Iterable[str]) -> set[str]:
        """Every unit that depends, directly or transitively, on changed_ids."""
        return self.graph.affected_by(changed_ids)

    def content_ids(self) -> list[str]:
        with self._build_lock:
            return sorted(self._content)

    def component_ids(self) -> list[str]:
        return sorted(self.registry.all_ids())

    def output_for(self, route: str) -> str | None:
        """Last known good HTML for a route."""
        entry = self.cache.last_good(route)
        return entry.html if entry is not None else None

    def render_result(self, unit_id: str) -> RenderResult:
        """Render one content route or component against the current state.

        Raises:
            UnknownUnitError: If unit_id is neither a content route nor a component.
            ParseError: If the unit's source is malformed.
            RenderLimitExceeded: If expansion exceeds max_depth.
        """
        with self._build_lock:
            snapshot = self.registry.snapshot()
            unit = self._content.get(unit_id) or snapshot.lookup(unit_id)
            variables = self._variables
            generation = self._generation
        if unit is None:
            raise UnknownUnitError(unit_id, "no such content page or component")
        result = Renderer(snapshot, variables, self.max_depth).render_unit(unit)
        self.diagnostics.emit_all(d.with_generation(generation) for d in result.diagnostics)
        return result

    def render(self, unit_id: str) -> str:
        """Final expanded HTML for one unit. See render_result."""
        return self.render_result(unit_id).html

    def build(self, events: Iterable[FileChange] = (), full: bool = False) -> BuildReport:
        """Apply events and render everything they affect.

        Args:
            events: File events to apply first.
            full: Render every unit instead of only the affected closure.

        Returns:
            BuildReport for this generation.
        """
        generation = self._next_generation()
        with self._build_lock:
            changes = self._apply(events, generation)
            self._pending.update(changes.changed)
            self._pending_removed.update(changes.removed)
            if full:
                affected = set(self._content) | self.registry.all_ids()
            else:
                affected = self.graph.affected_by(self._pending)
            report = BuildReport(generation, removed=self._pending_removed - set(self._content))
            self._pending.clear()
            self._pending_removed.clear()

            snapshot = self.registry.snapshot()
            content = dict(self._content)
            content_conflicts = dict(self._content_conflicts)
            fingerprints = self._fingerprints(snapshot, content, content_conflicts)
            renderer = Renderer(snapshot, self._variables, self.max_depth)
            affected &= set(content) | set(snapshot)
            report.affected = affected
            self.cache.mark_all(affected, UnitState.INVALID)

            order = self.graph.leaves_first(affected)
            for unit_id in order:
                if unit_id in snapshot:
                    self._validate_component(unit_id, snapshot, report)
            for route in order:
                conflict = content_conflicts.get(route)
                if conflict is not None:
                    report.failures[route] = _conflict_error(conflict)

            pages = [route for route in order if route in content]
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [
                    (
                        route,
                        pool.submit(
                            self._render_one,
                            content[route],
                            fingerprints.get(route, ""),
                            renderer,
                            generation,
                        ),
                    )
                    for route in pages
                ]
                for route, future in futures:
                    self._collect(route, content[route], future.result(), report)

            if report.cancelled:
                self._pending.update(report.cancelled)
                logger.info(
                    "generation %d cancelled with %d units left", generation, len(report.cancelled)
                )
        logger.info("%s", report.summary()[0])
        return report

    def _validate_component(
        self, component_id: str, snapshot: RegistrySnapshot, report: BuildReport
    ) -> None:
        unit = snapshot[component_id]
        self.cache.mark(component_id, UnitState.VALIDATING)
        if unit.parse_error is not None:
            report.failures[component_id] = _build_error(unit, unit.parse_error)
            self.cache.mark(component_id, UnitState.INVALID)
            return
        conflict = snapshot.conflict_for(component_id)
        if conflict is not None:
            report.failures[component_id] = _conflict_error(conflict)
        self.cache.mark(component_id, UnitState.VALID)

    def _render_one(
        self,
        unit: RenderableUnit,
        fingerprint: str,
        renderer: Renderer,
        generation: int,
    ):
        if self._generation != generation:
            return _CANCELLED
        cached = self.cache.lookup(unit.id, fingerprint)
        if cached is not None:
            self.cache.mark(unit.id, UnitState.VALID)
            return cached
        self.cache.mark(unit.id, UnitState.VALIDATING)
        try:
            result = renderer.render_unit(unit)
        except (ParseError, RenderLimitExceeded) as exc:
            self.cache.mark(unit.id, UnitState.INVALID)
            return exc
        entry = CacheEntry(
            unit.id,
            fingerprint,
            result.html,
            result.degraded,
            tuple(d.with_generation(generation) for d in result.diagnostics),
            generation,
        )
        self.cache.store(entry)
        return result

    def _collect(
        self, route: str, unit: RenderableUnit, outcome, report: BuildReport
    ) -> None:
        if outcome is _CANCELLED:
            report.cancelled.add(route)
            return
        if isinstance(outcome, UnitError):
            kind = (
                DiagnosticKind.PARSE_ERROR
                if isinstance(outcome, ParseError)
                else DiagnosticKind.RENDER_LIMIT_EXCEEDED
            )
            diagnostic = Diagnostic(kind, route, outcome.message, None, report.generation)
            if kind is DiagnosticKind.RENDER_LIMIT_EXCEEDED:
                self.diagnostics.emit(diagnostic)
            report.diagnostics.append(diagnostic)
            report.failures.setdefault(route, _build_error(unit, outcome))
            return
        if isinstance(outcome, CacheEntry):
            report.outputs[route] = outcome.html
            report.reused.add(route)
            diagnostics = list(outcome.diagnostics)
            degraded = outcome.degraded
        else:
            report.outputs[route] = outcome.html
            diagnostics = [d.with_generation(report.generation) for d in outcome.diagnostics]
            degraded = outcome.degraded
            self.diagnostics.emit_all(diagnostics)
        report.diagnostics.extend(diagnostics)
        if degraded:
            report.degraded[route] = [
                d.message for d in diagnostics if d.kind in DEGRADING_KINDS
            ]

    def _fingerprints(
        self,
        snapshot: RegistrySnapshot,
        content: Mapping[str, RenderableUnit],
        content_conflicts: Mapping[str, RegistrationConflict],
    ) -> dict[str, str]:
        hashes: dict[str, str] = {}
        uses_variables: set[str] = set()
        for unit_id, unit in list(snapshot.items()) + list(content.items()):
            token = unit.content_hash
            if snapshot.conflict_for(unit_id) is not None or unit_id in content_conflicts:
                token = hash_text(token + ":conflict")
            hashes[unit_id] = token
            if unit.variables:
                uses_variables.add(unit_id)
        return compute_fingerprints(
            self.graph.out_edges(), hashes, self._variables.digest(), uses_variables
        )

    def static_diagnostics(self) -> list[Diagnostic]:
        """Report problems visible without rendering.

        Covers parse errors, registration conflicts, invocation cycles in the graph
        and invocations of components that do not exist.
        """
        with self._build_lock:
            snapshot = self.registry.snapshot()
            units = list(snapshot.values()) + list(self._content.values())
            conflicts = {**self.registry.conflicts(), **self._content_conflicts}
            edges = self.graph.out_edges()
            generation = self._generation
        found: list[Diagnostic] = []
        for unit in sorted(units, key=lambda u: u.id):
            if unit.parse_error is not None:
                found.append(
                    Diagnostic(
                        DiagnosticKind.PARSE_ERROR, unit.id, str(unit.parse_error), None, generation
                    )
                )
        for unit_id in sorted(conflicts):
            found.append(
                Diagnostic(
                    DiagnosticKind.REGISTRATION_CONFLICT,
                    unit_id,
                    conflicts[unit_id].message,
                    None,
                    generation,
                )
            )
        for cycle in find_cycles(edges):
            chain = " -> ".join(cycle + (cycle[0],))
            found.append(
                Diagnostic(
                    DiagnosticKind.CYCLE_DETECTED,
                    cycle[0],
                    f"component cycle {chain}",
                    cycle[0],
                    generation,
                )
            )
        dangling = self.graph.dangling(snapshot.all_ids())
        for unit_id in sorted(dangling):
            for target in sorted(dangling[unit_id]):
                found.append(
                    Diagnostic(
                        DiagnosticKind.UNRESOLVED_COMPONENT,
                        unit_id,
                        f"unknown component '{target}'",
                        target,
                        generation,
                    )
                )
        return found


def _build_error(unit: RenderableUnit, error: UnitError) -> BuildError:
    source = unit.path if unit.path is not None else Path(unit.id)
    return BuildError(source, error.message, error)


def _conflict_error(conflict: RegistrationConflict) -> BuildError:
    # The rejected file is the one that fails; the first definition stays intact.
    source = conflict.new_path if conflict.new_path is not None else Path(conflict.unit_id)
    return BuildError(source, conflict.message, conflict)
