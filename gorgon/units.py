"""Renderable units for Gorgon.

A renderable unit is a content page or a component template held as a single
parsed entity. Units are immutable: when the source text of a file changes a new
unit replaces the old one wholesale.

Key objects:
- UnitKind: Whether a unit is a content page or a component.
- RenderableUnit: Parsed source, references and content hash of one unit.
- make_unit: Parse source text into a unit, capturing parse errors on the unit.
- component_id_from_path: Derive a component identifier from its storage path.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from .errors import ParseError
from .parser import Invocation, Node, parse_template


class UnitKind(str, Enum):
    CONTENT = "content"
    COMPONENT = "component"


@dataclass(frozen=True)
class RenderableUnit:
    """A content page or component as a single parsed entity.

    Attributes:
        id: Route for content pages, component identifier for components.
        kind: Content page or component.
        source: Markup that was parsed (after frontmatter removal and Markdown conversion).
        nodes: Parsed node sequence; empty when parsing failed.
        targets: Component identifiers invoked anywhere in the unit.
        params: Parameter names referenced by the unit.
        slot_names: Slot names the unit yields ("" is the default slot).
        variables: Site variable keys referenced by the unit.
        defaults: Declared parameter defaults (components only).
        metadata: Opaque key/value map from the metadata extractor (content only).
        content_hash: Hash of the raw source text the unit was built from.
        path: Source file the unit was read from, if any.
        parse_error: The parse failure, if the source was malformed.
    """

    id: str
    kind: UnitKind
    source: str
    nodes: tuple[Node, ...]
    targets: frozenset[str]
    params: frozenset[str]
    slot_names: frozenset[str]
    variables: frozenset[str]
    content_hash: str
    defaults: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    path: Path | None = None
    parse_error: ParseError | None = None

    @property
    def is_component(self) -> bool:
        return self.kind is UnitKind.COMPONENT

    @property
    def ok(self) -> bool:
        return self.parse_error is None


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def component_id_from_path(rel_path: Path | str) -> str:
    """Derive a component identifier from a path relative to the components directory.

    The file extension is stripped and ``/`` is used as the nesting separator.
    Identifiers are case-sensitive.

    Examples:
        >>> component_id_from_path("ui/button.html")
        'ui/button'
    """
    posix = PurePosixPath(Path(rel_path).as_posix())
    return posix.with_suffix("").as_posix() if posix.suffix else posix.as_posix()


def make_unit(
    unit_id: str,
    kind: UnitKind,
    source: str,
    *,
    raw_text: str | None = None,
    path: Path | None = None,
    defaults: Mapping[str, Any] | None = None,
    metadata: Mapping[str, Any] | None = None,
    layout: str | None = None,
) -> RenderableUnit:
    """Parse source text into a RenderableUnit.

    A parse failure does not raise; it is stored on the unit so that the rest of
    the build can carry on and report it.

    Args:
        unit_id: Identifier of the new unit.
        kind: Content page or component.
        source: Markup to parse.
        raw_text: Full file text used for the content hash (defaults to source).
        path: Source file path.
        defaults: Parameter defaults; values are converted to strings.
        metadata: Opaque metadata map.
        layout: Component that wraps the unit's body as its default slot.

    Returns:
        The parsed unit.
    """
    string_defaults = {str(k): _stringify(v) for k, v in (defaults or {}).items()}
    content_hash = hash_text(raw_text if raw_text is not None else source)
    try:
        parsed = parse_template(source, unit_id)
    except ParseError as exc:
        return RenderableUnit(
            id=unit_id,
            kind=kind,
            source=source,
            nodes=(),
            targets=frozenset(),
            params=frozenset(),
            slot_names=frozenset(),
            variables=frozenset(),
            content_hash=content_hash,
            defaults=string_defaults,
            metadata=dict(metadata or {}),
            path=path,
            parse_error=exc,
        )

    nodes = parsed.nodes
    targets = parsed.targets
    if layout:
        nodes = (Invocation(layout, scalar_params(metadata or {}), {}, nodes),)
        targets = targets | {layout}
    return RenderableUnit(
        id=unit_id,
        kind=kind,
        source=source,
        nodes=nodes,
        targets=targets,
        params=parsed.params,
        slot_names=parsed.slot_refs,
        variables=parsed.variables,
        content_hash=content_hash,
        defaults=string_defaults,
        metadata=dict(metadata or {}),
        path=path,
    )


def scalar_params(metadata: Mapping[str, Any]) -> dict[str, str]:
    """Return the scalar entries of a metadata map as string parameters.

    Lists, mappings and other containers are skipped; dates are rendered in ISO form.
    """
    params: dict[str, str] = {}
    for key, value in metadata.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            params[str(key)] = _stringify(value)
        elif isinstance(value, (date, datetime)):
            params[str(key)] = value.isoformat()
    return params


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
