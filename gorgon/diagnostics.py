"""Structured diagnostics for Gorgon builds.

Non-fatal conditions (unknown components, cycles, undefined parameters) never raise;
they are reported as Diagnostic records on a DiagnosticStream. Consumers such as the
CLI summary, the log, or the dev-server error overlay subscribe to the stream.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from .logging import get_logger

logger = get_logger("diagnostics")


class DiagnosticKind(str, Enum):
    PARSE_ERROR = "parse_error"
    REGISTRATION_CONFLICT = "registration_conflict"
    CONFLICTED_COMPONENT = "conflicted_component"
    UNRESOLVED_COMPONENT = "unresolved_component"
    BROKEN_COMPONENT = "broken_component"
    CYCLE_DETECTED = "cycle_detected"
    RENDER_LIMIT_EXCEEDED = "render_limit_exceeded"
    UNDEFINED_PARAMETER = "undefined_parameter"
    UNDEFINED_VARIABLE = "undefined_variable"

    @property
    def fatal(self) -> bool:
        """Whether this kind fails the unit it is attributed to."""
        return self in _FATAL_KINDS


_FATAL_KINDS = frozenset(
    {
        DiagnosticKind.PARSE_ERROR,
        DiagnosticKind.REGISTRATION_CONFLICT,
        DiagnosticKind.RENDER_LIMIT_EXCEEDED,
    }
)

# Kinds that mark a rendered unit as degraded.
DEGRADING_KINDS = frozenset(
    {
        DiagnosticKind.UNRESOLVED_COMPONENT,
        DiagnosticKind.BROKEN_COMPONENT,
        DiagnosticKind.CYCLE_DETECTED,
        DiagnosticKind.CONFLICTED_COMPONENT,
    }
)


@dataclass(frozen=True)
class Diagnostic:
    """A single reported condition.

    Attributes:
        kind: What happened.
        unit_id: Unit the condition is attributed to.
        message: Human-readable description.
        target: Component identifier or parameter name involved, if any.
        generation: Build generation that produced the diagnostic.
    """

    kind: DiagnosticKind
    unit_id: str
    message: str
    target: str | None = None
    generation: int = 0

    def with_generation(self, generation: int) -> Diagnostic:
        return Diagnostic(self.kind, self.unit_id, self.message, self.target, generation)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.unit_id}: {self.message}"


Subscriber = Callable[[Diagnostic], None]


class DiagnosticStream:
    """Thread-safe fan-out of diagnostics to subscribers.

    The stream also keeps the diagnostics of recent generations so that late
    consumers (for example a browser that connects after a failed rebuild) can
    catch up.
    """

    def __init__(self, keep_generations: int = 2):
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._history: dict[int, list[Diagnostic]] = {}
        self._keep_generations = max(1, keep_generations)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            bucket = self._history.setdefault(diagnostic.generation, [])
            bucket.append(diagnostic)
            for stale in sorted(self._history)[: -self._keep_generations]:
                del self._history[stale]
            subscribers = list(self._subscribers)
        if diagnostic.kind.fatal:
            logger.error("%s", diagnostic)
        else:
            logger.warning("%s", diagnostic)
        for callback in subscribers:
            callback(diagnostic)

    def emit_all(self, diagnostics: Iterable[Diagnostic]) -> None:
        for diagnostic in diagnostics:
            self.emit(diagnostic)

    def history(self, generation: int | None = None) -> list[Diagnostic]:
        """Return retained diagnostics, optionally for a single generation."""
        with self._lock:
            if generation is not None:
                return list(self._history.get(generation, []))
            return [d for gen in sorted(self._history) for d in self._history[gen]]
