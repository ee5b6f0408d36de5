"""Content renderers for Gorgon.

This module contains implementations of the ContentRenderer protocol. A content
renderer converts a file body into markup before template parsing, so component
invocations and placeholders pass through it untouched.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with syntax highlighting.
- HTMLRenderer: Passes through HTML content.
- RendererRegistry: Picks the renderer for a path.
"""

from __future__ import annotations

import re
from pathlib import Path

import mistune
from markupsafe import escape
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .utils import is_html, is_markdown, strip_hashtags


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text."""
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading ids and Pygments code highlighting.

    Raw HTML (and therefore ``<x-...>`` invocations) is passed through unescaped.
    """

    def __init__(self):
        super().__init__(escape=False)
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text) or "section"
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a fenced code block, highlighted when the language is known."""
        lang = info.split()[0] if info else ""
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return _literal_at(highlight(code, lexer, formatter))
        lang_class = f' class="language-{escape(lang)}"' if lang else ""
        return _literal_at(f"<pre><code{lang_class}>{escape(code)}</code></pre>\n")

    def codespan(self, text: str) -> str:
        return _literal_at(super().codespan(text))


def _literal_at(html: str) -> str:
    """Encode @ as an entity so code samples never read as @{...} placeholders."""
    return str(html).replace("@", "&#64;")


CODE_RE = re.compile(r"^(```|~~~).*?^\1[^\n]*$|`[^`\n]+`", re.MULTILINE | re.DOTALL)
TEMPLATE_MARKUP_RE = re.compile(r"</?x-[^>]*>|</?slot\b[^>]*>|@\{[^}\n]*\}", re.IGNORECASE)
TOKEN_RE = re.compile("\ue000(\\d+)\ue001")


def _protect(text: str) -> tuple[str, list[str]]:
    """Swap invocation tags and placeholders outside code for opaque tokens."""
    saved: list[str] = []

    def stash(match: re.Match) -> str:
        saved.append(match.group(0))
        return f"\ue000{len(saved) - 1}\ue001"

    parts: list[str] = []
    pos = 0
    for code in CODE_RE.finditer(text):
        parts.append(TEMPLATE_MARKUP_RE.sub(stash, text[pos : code.start()]))
        parts.append(code.group(0))
        pos = code.end()
    parts.append(TEMPLATE_MARKUP_RE.sub(stash, text[pos:]))
    return "".join(parts), saved


def _restore(html: str, saved: list[str]) -> str:
    return TOKEN_RE.sub(lambda m: saved[int(m.group(1))], html)


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    Component invocations and ``@{...}`` placeholders are kept verbatim. Inside
    fenced or inline code, tags are escaped like any other text and ``@`` becomes
    ``&#64;``, so code samples show the syntax instead of being expanded.
    """

    @property
    def source_type(self) -> str:
        return "markdown"

    def can_render(self, path: Path) -> bool:
        return is_markdown(path)

    def render(self, content: str) -> str:
        """Render Markdown content to HTML.

        Args:
            content: Markdown source content.

        Returns:
            Rendered HTML. Inline hashtags are reduced to plain words.
        """
        markdown = mistune.create_markdown(
            renderer=_HighlightRenderer(),
            plugins=["strikethrough", "footnotes", "table", "url"],
        )
        protected, saved = _protect(strip_hashtags(content))
        return _restore(markdown(protected), saved)


class HTMLRenderer:
    """Passes through HTML content unchanged."""

    @property
    def source_type(self) -> str:
        return "html"

    def can_render(self, path: Path) -> bool:
        return is_html(path)

    def render(self, content: str) -> str:
        return content


class RendererRegistry:
    """Registry for content renderers, checked in registration order."""

    def __init__(self):
        self._renderers: list = []
        self.register(MarkdownRenderer())
        self.register(HTMLRenderer())

    def register(self, renderer) -> None:
        self._renderers.append(renderer)

    def get_renderer(self, path: Path):
        """Return the first renderer that can handle path, or None."""
        for renderer in self._renderers:
            if renderer.can_render(path):
                return renderer
        return None


default_renderer_registry = RendererRegistry()
