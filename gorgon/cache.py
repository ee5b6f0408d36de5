"""Render cache and fingerprinting for Gorgon.

A unit's fingerprint combines its own content hash with the fingerprints of
everything it reaches through out-edges. Fingerprints are computed over strongly
connected components, sinks first, so invocation cycles still produce a stable
value: every member of a cycle shares the cycle's combined hash.

A cache entry is valid only while its stored fingerprint equals the freshly
computed one. Entries are never mutated; a newer render supersedes them. The last
successful entry of each unit is kept separately so that a failed re-render can
keep serving the previous page.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from .cycles import strongly_connected_components
from .diagnostics import Diagnostic


class UnitState(str, Enum):
    UNVALIDATED = "unvalidated"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class CacheEntry:
    """One rendered output, keyed by unit identifier and fingerprint."""

    unit_id: str
    fingerprint: str
    html: str
    degraded: bool = False
    diagnostics: tuple[Diagnostic, ...] = ()
    generation: int = 0


def _digest(*parts: str) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()


def compute_fingerprints(
    edges: Mapping[str, Iterable[str]],
    hashes: Mapping[str, str],
    variables_digest: str = "",
    uses_variables: Iterable[str] = (),
) -> dict[str, str]:
    """Compute the fingerprint of every unit in hashes.

    Args:
        edges: Out-edges of the dependency graph.
        hashes: Own content hash per existing unit. Edge targets that are not in
            this map are missing and contribute a ``missing:<id>`` token instead.
        variables_digest: Digest of the site variables.
        uses_variables: Units whose output depends on site variables.

    Returns:
        Fingerprint per unit identifier present in hashes.
    """
    with_vars = set(uses_variables)
    adjacency = {unit_id: set(edges.get(unit_id, ())) for unit_id in hashes}
    fingerprints: dict[str, str] = {}

    for component in strongly_connected_components(adjacency):
        members = set(component)
        tokens: list[str] = []
        external: set[str] = set()
        for member in component:
            if member not in hashes:
                continue
            tokens.append(f"unit:{member}:{hashes[member]}")
            if member in with_vars:
                tokens.append(f"vars:{variables_digest}")
            external.update(adjacency.get(member, ()) - members)
        if not tokens:
            continue
        for target in sorted(external):
            if target in fingerprints:
                tokens.append(f"dep:{target}:{fingerprints[target]}")
            else:
                tokens.append(f"missing:{target}")
        combined = _digest(*tokens)
        for member in component:
            if member in hashes:
                fingerprints[member] = combined if len(members) > 1 else _digest(member, combined)
    return fingerprints


class RenderCache:
    """Thread-safe store of rendered outputs and per-unit validation state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._last_good: dict[str, CacheEntry] = {}
        self._states: dict[str, UnitState] = {}

    def lookup(self, unit_id: str, fingerprint: str) -> CacheEntry | None:
        """Return the entry for unit_id if it was rendered at this fingerprint."""
        with self._lock:
            entry = self._entries.get(unit_id)
        if entry is not None and entry.fingerprint == fingerprint:
            return entry
        return None

    def store(self, entry: CacheEntry) -> None:
        """Supersede the unit's entry and mark it valid."""
        with self._lock:
            self._entries[entry.unit_id] = entry
            self._last_good[entry.unit_id] = entry
            self._states[entry.unit_id] = UnitState.VALID

    def last_good(self, unit_id: str) -> CacheEntry | None:
        with self._lock:
            return self._last_good.get(unit_id)

    def state(self, unit_id: str) -> UnitState:
        with self._lock:
            return self._states.get(unit_id, UnitState.UNVALIDATED)

    def mark(self, unit_id: str, state: UnitState) -> None:
        with self._lock:
            self._states[unit_id] = state

    def mark_all(self, unit_ids: Iterable[str], state: UnitState) -> None:
        with self._lock:
            for unit_id in unit_ids:
                self._states[unit_id] = state

    def discard(self, unit_id: str) -> None:
        """Forget everything about a removed unit, including its last good output."""
        with self._lock:
            self._entries.pop(unit_id, None)
            self._last_good.pop(unit_id, None)
            self._states.pop(unit_id, None)

    def __contains__(self, unit_id: object) -> bool:
        with self._lock:
            return unit_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
