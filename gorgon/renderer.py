"""Recursive renderer for Gorgon.

This module expands a unit's parsed node sequence into HTML. Text passes through
with its placeholders substituted; each invocation is resolved against the
component registry at render time and expanded recursively.

Rules:
- Invocation attributes override the target's declared defaults. An attribute
  given as an empty string still overrides the default.
- Slot content is rendered in the caller's scope before it is handed down, so
  ``@{title}`` inside a slot block refers to the caller's parameters.
- Unknown components, cycles and broken components render as visible markers
  and mark the render as degraded; they never fail the build.
- Undefined parameters render as the empty string and are reported.
- Expansion deeper than max_depth fails that unit with RenderLimitExceeded.

Renderer instances hold no per-render state and can be shared across threads.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from markupsafe import escape

from .cycles import ExpansionPath
from .diagnostics import DEGRADING_KINDS, Diagnostic, DiagnosticKind
from .errors import RenderLimitExceeded, UnknownUnitError
from .parser import DEFAULT_SLOT, PLACEHOLDER_RE, Invocation, Node, Text
from .protocols import ComponentLookup
from .units import RenderableUnit
from .variables import Variables

DEFAULT_MAX_DEPTH = 256

UNKNOWN_MARKER = (
    '<span class="gorgon-marker gorgon-unknown" data-component="{id}">'
    "[unknown component: {id}]</span>"
)
CYCLE_MARKER = (
    '<span class="gorgon-marker gorgon-cycle" data-component="{id}">'
    "[cycle: {id}]</span>"
)
BROKEN_MARKER = (
    '<span class="gorgon-marker gorgon-broken" data-component="{id}">'
    "[broken component: {id}]</span>"
)


@dataclass(frozen=True)
class RenderResult:
    """Output of one render call.

    Attributes:
        unit_id: The unit that was rendered.
        html: Fully expanded markup.
        degraded: True if a fallback marker was needed anywhere in the tree.
        diagnostics: Conditions reported while rendering.
        visited: Component identifiers that were looked up during expansion.
    """

    unit_id: str
    html: str
    degraded: bool
    diagnostics: tuple[Diagnostic, ...]
    visited: frozenset[str]

    @property
    def reasons(self) -> list[str]:
        return [d.message for d in self.diagnostics if d.kind in DEGRADING_KINDS]


class _RenderState:
    def __init__(self, root_id: str, variables: Variables):
        self.root_id = root_id
        self.variables = variables
        self.diagnostics: list[Diagnostic] = []
        self.visited: set[str] = set()
        self._seen: set[tuple[DiagnosticKind, str, str | None]] = set()

    def report(
        self, kind: DiagnosticKind, unit_id: str, message: str, target: str | None = None
    ) -> None:
        key = (kind, unit_id, target)
        if key in self._seen:
            return
        self._seen.add(key)
        self.diagnostics.append(Diagnostic(kind, unit_id, message, target))

    def result(self, html: str) -> RenderResult:
        degraded = any(d.kind in DEGRADING_KINDS for d in self.diagnostics)
        return RenderResult(
            self.root_id, html, degraded, tuple(self.diagnostics), frozenset(self.visited)
        )


class Renderer:
    """Expands units against a component lookup.

    Attributes:
        components: Registry or registry snapshot used to resolve invocations.
        variables: Site variables for ``@{var(...)}`` references.
        max_depth: Maximum number of units on one expansion path.
    """

    def __init__(
        self,
        components: ComponentLookup,
        variables: Variables | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.components = components
        self.variables = variables or Variables()
        self.max_depth = max_depth

    def render(
        self,
        unit_id: str,
        params: Mapping[str, str] | None = None,
        slots: Mapping[str, Sequence[Node] | str] | None = None,
    ) -> RenderResult:
        """Render a registered component by identifier.

        Raises:
            UnknownUnitError: If no component is registered under unit_id.
            ParseError: If the component's source failed to parse.
            RenderLimitExceeded: If expansion exceeds max_depth.
        """
        unit = self.components.lookup(unit_id)
        if unit is None:
            raise UnknownUnitError(unit_id, "no such component")
        return self.render_unit(unit, params, slots)

    def render_unit(
        self,
        unit: RenderableUnit,
        params: Mapping[str, str] | None = None,
        slots: Mapping[str, Sequence[Node] | str] | None = None,
    ) -> RenderResult:
        """Render a unit that is not necessarily in the registry (e.g. a content page).

        Args:
            unit: The unit to render.
            params: Parameters, merged over the unit's declared defaults.
            slots: Slot content, either pre-rendered strings or node sequences.

        Returns:
            RenderResult with the expanded markup and diagnostics.
        """
        if unit.parse_error is not None:
            raise unit.parse_error
        page_vars = unit.metadata.get("vars")
        variables = self.variables.with_page(page_vars if isinstance(page_vars, Mapping) else None)
        state = _RenderState(unit.id, variables)
        scope = {**unit.defaults, **(params or {})}
        path = ExpansionPath((unit.id,))
        try:
            rendered_slots = {
                name: content
                if isinstance(content, str)
                else self._expand(content, unit.id, {}, {}, ExpansionPath(), state)
                for name, content in (slots or {}).items()
            }
            html = self._expand(unit.nodes, unit.id, scope, rendered_slots, path, state)
        except RecursionError:
            raise RenderLimitExceeded(unit.id, self.max_depth) from None
        return state.result(html)

    def _expand(
        self,
        nodes: Sequence[Node],
        owner_id: str,
        params: Mapping[str, str],
        slots: Mapping[str, str],
        path: ExpansionPath,
        state: _RenderState,
    ) -> str:
        parts: list[str] = []
        for node in nodes:
            if isinstance(node, Text):
                parts.append(self._substitute(node.value, owner_id, params, slots, state))
            else:
                parts.append(self._invoke(node, owner_id, params, slots, path, state))
        return "".join(parts)

    def _invoke(
        self,
        node: Invocation,
        owner_id: str,
        params: Mapping[str, str],
        slots: Mapping[str, str],
        path: ExpansionPath,
        state: _RenderState,
    ) -> str:
        target_id = node.target_id
        state.visited.add(target_id)
        marker_id = escape(target_id)

        target = self.components.lookup(target_id)
        if target is None:
            state.report(
                DiagnosticKind.UNRESOLVED_COMPONENT,
                owner_id,
                f"unknown component '{target_id}' (line {node.line})",
                target_id,
            )
            return UNKNOWN_MARKER.format(id=marker_id)

        if target_id in path:
            cycle = " -> ".join(path.cycle_through(target_id))
            state.report(
                DiagnosticKind.CYCLE_DETECTED,
                owner_id,
                f"component cycle {cycle}",
                target_id,
            )
            return CYCLE_MARKER.format(id=marker_id)

        if target.parse_error is not None:
            state.report(
                DiagnosticKind.BROKEN_COMPONENT,
                owner_id,
                f"component '{target_id}' failed to parse: {target.parse_error.message}",
                target_id,
            )
            return BROKEN_MARKER.format(id=marker_id)

        conflict = self.components.conflict_for(target_id)
        if conflict is not None:
            state.report(
                DiagnosticKind.CONFLICTED_COMPONENT,
                owner_id,
                f"component '{target_id}' has conflicting definitions: {conflict.message}",
                target_id,
            )

        if path.depth >= self.max_depth:
            raise RenderLimitExceeded(state.root_id, self.max_depth, path.chain + (target_id,))

        child_params = dict(target.defaults)
        for name, value in node.attributes.items():
            child_params[name] = self._substitute(value, owner_id, params, slots, state)
        child_slots = {
            name: self._expand(content, owner_id, params, slots, path, state)
            for name, content in node.slots.items()
        }
        child_slots[DEFAULT_SLOT] = self._expand(
            node.default_slot, owner_id, params, slots, path, state
        )
        return self._expand(
            target.nodes, target.id, child_params, child_slots, path.push(target.id), state
        )

    def _substitute(
        self,
        text: str,
        owner_id: str,
        params: Mapping[str, str],
        slots: Mapping[str, str],
        state: _RenderState,
    ) -> str:
        if "@{" not in text:
            return text

        def replace(match) -> str:
            name = match.group("param")
            if name is not None:
                if name in params:
                    return params[name]
                state.report(
                    DiagnosticKind.UNDEFINED_PARAMETER,
                    owner_id,
                    f"undefined parameter '{name}'",
                    name,
                )
                return ""
            key = match.group("var")
            if key is not None:
                value = state.variables.get(key)
                if value is None:
                    state.report(
                        DiagnosticKind.UNDEFINED_VARIABLE,
                        owner_id,
                        f"undefined variable '{key}'",
                        key,
                    )
                    return match.group(0)
                return value
            return slots.get(match.group("slot") or DEFAULT_SLOT, "")

        return PLACEHOLDER_RE.sub(replace, text)
