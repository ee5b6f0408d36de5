"""Component registry for Gorgon.

This module maps component identifiers to their parsed units. The registry is an
explicit value shared by reference into the build pipeline, never a process-wide
singleton, so independent builds (and tests) can run side by side.

Key classes:
- ComponentRegistry: Mutable, lock-protected mapping with a generation counter.
- RegistrySnapshot: Read-only view of one generation, used by render passes.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .errors import RegistrationConflict
from .logging import get_logger
from .units import RenderableUnit, UnitKind, make_unit

logger = get_logger("registry")


class RegistrySnapshot(Mapping[str, RenderableUnit]):
    """Immutable view of the registry at one generation."""

    def __init__(
        self,
        units: Mapping[str, RenderableUnit],
        generation: int,
        conflicts: Mapping[str, RegistrationConflict] | None = None,
    ):
        self._units = MappingProxyType(dict(units))
        self._conflicts = MappingProxyType(dict(conflicts or {}))
        self.generation = generation

    def __getitem__(self, key: str) -> RenderableUnit:
        return self._units[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)

    def lookup(self, component_id: str) -> RenderableUnit | None:
        return self._units.get(component_id)

    def conflict_for(self, component_id: str) -> RegistrationConflict | None:
        return self._conflicts.get(component_id)

    def all_ids(self) -> set[str]:
        return set(self._units)


class ComponentRegistry:
    """Maps component identifiers to their parsed units.

    Identifiers are unique. Re-registering an identifier from the same source path
    atomically replaces the previous unit; registering it from a different path is
    rejected with RegistrationConflict and the first definition stays in place.

    Attributes:
        generation: Incremented on every successful mutation.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._units: dict[str, RenderableUnit] = {}
        self._paths: dict[str, Path | None] = {}
        self._conflicts: dict[str, RegistrationConflict] = {}
        self.generation = 0

    def register(
        self,
        component_id: str,
        source: str,
        path: Path | None = None,
        defaults: Mapping[str, Any] | None = None,
        raw_text: str | None = None,
    ) -> RenderableUnit:
        """Parse source and register it under component_id.

        Args:
            component_id: Identifier derived from the component's storage path.
            source: Component markup.
            path: Source file path, used to detect identifier collisions.
            defaults: Declared parameter defaults.
            raw_text: Full file text used for the content hash.

        Returns:
            The registered unit.

        Raises:
            RegistrationConflict: If component_id is already registered from another path.
        """
        unit = make_unit(
            component_id,
            UnitKind.COMPONENT,
            source,
            raw_text=raw_text,
            path=path,
            defaults=defaults,
        )
        return self.register_unit(unit)

    def register_unit(self, unit: RenderableUnit) -> RenderableUnit:
        """Register an already-parsed component unit."""
        with self._lock:
            existing_path = self._paths.get(unit.id, _MISSING)
            if existing_path is not _MISSING and existing_path != unit.path:
                conflict = RegistrationConflict(unit.id, existing_path, unit.path)
                self._conflicts[unit.id] = conflict
                raise conflict
            self._units[unit.id] = unit
            self._paths[unit.id] = unit.path
            self.generation += 1
        logger.debug("registered component %s (generation %d)", unit.id, self.generation)
        return unit

    def unregister(self, component_id: str) -> RenderableUnit | None:
        """Remove a component; returns the removed unit, if any."""
        with self._lock:
            unit = self._units.pop(component_id, None)
            self._paths.pop(component_id, None)
            self._conflicts.pop(component_id, None)
            if unit is not None:
                self.generation += 1
        return unit

    def discard_conflict(self, component_id: str, path: Path | None) -> None:
        """Forget a recorded conflict once the rejected source is gone."""
        with self._lock:
            conflict = self._conflicts.get(component_id)
            if conflict is not None and conflict.new_path == path:
                del self._conflicts[component_id]
                self.generation += 1

    def lookup(self, component_id: str) -> RenderableUnit | None:
        with self._lock:
            return self._units.get(component_id)

    def all_ids(self) -> set[str]:
        with self._lock:
            return set(self._units)

    def path_of(self, component_id: str) -> Path | None:
        with self._lock:
            return self._paths.get(component_id)

    def conflict_for(self, component_id: str) -> RegistrationConflict | None:
        with self._lock:
            return self._conflicts.get(component_id)

    def conflicts(self) -> dict[str, RegistrationConflict]:
        with self._lock:
            return dict(self._conflicts)

    def snapshot(self) -> RegistrySnapshot:
        """Return a read-only view of the current generation."""
        with self._lock:
            return RegistrySnapshot(self._units, self.generation, self._conflicts)

    def __contains__(self, component_id: object) -> bool:
        with self._lock:
            return component_id in self._units

    def __len__(self) -> int:
        with self._lock:
            return len(self._units)


_MISSING = object()
