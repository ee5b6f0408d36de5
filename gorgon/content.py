"""Content processing for Gorgon.

This module sits between the filesystem and the build engine. It discovers
content and component files, turns them into FileChange events, and converts
the raw text of an event into a RenderableUnit (frontmatter extraction, Markdown
conversion, layout wrapping).

Key classes:
- FileChange / ChangeKind: One reported file event, carrying the file's text.
- UrlDeriver: Derives the output route of a content file.
- FileContentLoader: Walks the content and component trees.
- UnitBuilder: Builds content and component units from file text.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import ParseError
from .extractors import (
    CompositeMetadataExtractor,
    FrontmatterError,
    default_metadata_extractor,
    extract_frontmatter,
)
from .renderers import RendererRegistry, default_renderer_registry
from .units import RenderableUnit, UnitKind, component_id_from_path, make_unit, scalar_params
from .utils import is_html, is_internal_path, is_markdown, slugify


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class FileChange:
    """A file event reported to the build engine.

    Attributes:
        path: Path of the changed file.
        raw_text: Full text of the file; empty for removals.
        kind: Added, modified or removed.
    """

    path: Path
    raw_text: str = ""
    kind: ChangeKind = ChangeKind.MODIFIED


class UrlDeriver:
    """Derives output routes for content files."""

    def derive(self, rel: Path) -> str:
        """Derive the route for a content file.

        Args:
            rel: Path relative to the content directory.

        Returns:
            Route with leading and trailing slash.

        Examples:
            >>> UrlDeriver().derive(Path("blog/2024-01-02-hi.md"))
            '/blog/hi/'
        """
        slug = slugify(rel.stem)
        segments = [p for p in rel.parent.parts if p]
        url_parts = segments if slug == "index" else segments + [slug]
        path = "/".join(url_parts)
        return f"/{path}/" if path else "/"


def _relative(path: Path, root: Path) -> Path | None:
    try:
        return path.relative_to(root)
    except ValueError:
        return None


class FileContentLoader:
    """Discovers content and component files.

    Attributes:
        content_dir: Directory holding content pages.
        components_dir: Directory holding component templates.
    """

    def __init__(self, content_dir: Path, components_dir: Path):
        self.content_dir = content_dir
        self.components_dir = components_dir

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """Return every content file, sorted.

        Files and folders starting with ``_`` are skipped unless include_drafts.
        """
        files: list[Path] = []
        if not self.content_dir.exists():
            return files
        for path in sorted(self.content_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.content_dir)
            if is_internal_path(rel) and not include_drafts:
                continue
            if is_markdown(path) or is_html(path):
                files.append(path)
        return files

    def iter_components(self) -> list[Path]:
        """Return every component template, sorted."""
        if not self.components_dir.exists():
            return []
        return [
            path
            for path in sorted(self.components_dir.rglob("*"))
            if path.is_file() and is_html(path)
        ]

    def load_changes(self, include_drafts: bool = False) -> list[FileChange]:
        """Read every component and content file into ADDED events."""
        changes = []
        for path in self.iter_components() + self.iter_files(include_drafts):
            text = path.read_text(encoding="utf-8")
            changes.append(FileChange(path, text, ChangeKind.ADDED))
        return changes


class UnitBuilder:
    """Builds renderable units from reported file text.

    Attributes:
        content_dir: Directory holding content pages.
        components_dir: Directory holding component templates.
        default_layout: Layout component applied to pages without a ``layout`` key.
        include_drafts: Whether ``_``-prefixed content is built.
    """

    def __init__(
        self,
        content_dir: Path,
        components_dir: Path,
        default_layout: str | None = None,
        include_drafts: bool = False,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.content_dir = content_dir
        self.components_dir = components_dir
        self.default_layout = default_layout
        self.include_drafts = include_drafts
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.url_deriver = UrlDeriver()

    def classify(self, path: Path) -> UnitKind | None:
        """Return which kind of unit path holds, or None if it is not a unit source."""
        rel = _relative(path, self.components_dir)
        if rel is not None:
            return UnitKind.COMPONENT if is_html(path) else None
        rel = _relative(path, self.content_dir)
        if rel is None:
            return None
        if is_internal_path(rel) and not self.include_drafts:
            return None
        if is_markdown(path) or is_html(path):
            return UnitKind.CONTENT
        return None

    def unit_id(self, path: Path, kind: UnitKind) -> str:
        if kind is UnitKind.COMPONENT:
            return component_id_from_path(path.relative_to(self.components_dir))
        return self.url_deriver.derive(path.relative_to(self.content_dir))

    def build(self, path: Path, raw_text: str, kind: UnitKind) -> RenderableUnit:
        """Build a unit from file text. Problems are captured on the unit as a ParseError."""
        if kind is UnitKind.COMPONENT:
            return self._build_component(path, raw_text)
        return self._build_content(path, raw_text)

    def _build_component(self, path: Path, raw_text: str) -> RenderableUnit:
        unit_id = self.unit_id(path, UnitKind.COMPONENT)
        try:
            frontmatter, body = extract_frontmatter(raw_text)
        except FrontmatterError as exc:
            return _failed(unit_id, UnitKind.COMPONENT, raw_text, path, str(exc))
        params = frontmatter.get("params") or {}
        if not isinstance(params, Mapping):
            return _failed(unit_id, UnitKind.COMPONENT, raw_text, path, "params must be a mapping")
        return make_unit(
            unit_id,
            UnitKind.COMPONENT,
            body,
            raw_text=raw_text,
            path=path,
            defaults=params,
            metadata=frontmatter,
        )

    def _build_content(self, path: Path, raw_text: str) -> RenderableUnit:
        route = self.unit_id(path, UnitKind.CONTENT)
        try:
            metadata: dict[str, Any] = self.metadata_extractor.extract(raw_text, path)
        except FrontmatterError as exc:
            return _failed(route, UnitKind.CONTENT, raw_text, path, str(exc))
        body = metadata.pop("body", raw_text)
        metadata.setdefault("url", route)
        renderer = self.renderer_registry.get_renderer(path)
        source = renderer.render(body) if renderer else body
        layout = metadata.get("layout", self.default_layout)
        return make_unit(
            route,
            UnitKind.CONTENT,
            source,
            raw_text=raw_text,
            path=path,
            defaults=scalar_params(metadata),
            metadata=metadata,
            layout=str(layout) if layout else None,
        )


def _failed(
    unit_id: str, kind: UnitKind, raw_text: str, path: Path, message: str
) -> RenderableUnit:
    unit = make_unit(unit_id, kind, "", raw_text=raw_text, path=path)
    return replace(unit, parse_error=ParseError(unit_id, message, 1, 1))
