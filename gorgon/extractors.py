"""Metadata extractors for Gorgon.

This module contains implementations of the MetadataExtractor protocol. Each
extractor handles a single type of metadata; CompositeMetadataExtractor runs them
all and merges the results into the opaque metadata map of a content unit. The
build engine never interprets these values beyond turning scalars into page
parameters.

Extractors work on text only. They never read the file they are given.

Key classes:
- FrontmatterExtractor: Splits YAML frontmatter from the body.
- TitleExtractor: Title from frontmatter, first heading or filename.
- TagExtractor: Tags from frontmatter or hashtags in the body.
- DateExtractor: Date from frontmatter or a YYYY-MM-DD filename prefix.
- DescriptionExtractor: First paragraph of the body.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from .utils import (
    extract_date_from_name,
    extract_tags,
    first_paragraph,
    strip_hashtags,
    titleize,
)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
HTML_HEADING_RE = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)


class FrontmatterError(ValueError):
    """Raised when a frontmatter block is present but is not a YAML mapping."""


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from content.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (frontmatter dict, remaining content).

    Raises:
        FrontmatterError: If the frontmatter block is invalid YAML or not a mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"invalid frontmatter: {exc}") from exc
    if not isinstance(data, dict):
        raise FrontmatterError("frontmatter must be a mapping")
    return data, text[match.end() :]


class FrontmatterExtractor:
    """Extracts YAML frontmatter from content.

    Frontmatter keys are merged into the metadata map at the top level, and the
    full mapping is also kept under 'frontmatter'. The remaining text is stored
    under 'body'.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        frontmatter, body = extract_frontmatter(content)
        return {**frontmatter, "frontmatter": frontmatter, "body": body}


class TitleExtractor:
    """Extracts a title from content or filename.

    Looks for a level-1 heading (Markdown ``# Title`` or HTML ``<h1>``), falling
    back to titleizing the filename.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        _, body = _split(content)
        for line in body.splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return {"title": stripped.lstrip("# ").strip()}
        match = HTML_HEADING_RE.search(body)
        if match:
            text = re.sub(r"<[^>]+>", "", match.group(1)).strip()
            if text:
                return {"title": text}
        return {"title": titleize(path.name)}


class TagExtractor:
    """Extracts #hashtags from the body."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        _, body = _split(content)
        return {"tags": extract_tags(body)}


class DateExtractor:
    """Extracts a date from a YYYY-MM-DD filename prefix.

    Files without a date prefix get no date; a frontmatter ``date`` key, when
    present, takes precedence in the composite.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        found = extract_date_from_name(path.stem)
        return {"date": found} if found is not None else {}


class DescriptionExtractor:
    """Extracts a description (first paragraph, 160 chars) from the body."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        _, body = _split(content)
        cleaned = strip_hashtags(body)
        return {"description": first_paragraph(cleaned)}


def _split(content: str) -> tuple[dict[str, Any], str]:
    try:
        return extract_frontmatter(content)
    except FrontmatterError:
        return {}, content


class CompositeMetadataExtractor:
    """Combines multiple metadata extractors.

    Derived values (title, tags, date, description) never override a key the
    author set explicitly in the frontmatter.
    """

    def __init__(self, extractors: list | None = None):
        """Initialize with a list of extractors.

        Args:
            extractors: List of MetadataExtractor implementations.
                If None, uses default extractors.
        """
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                TagExtractor(),
                DateExtractor(),
                DescriptionExtractor(),
            ]
        else:
            self._extractors = list(extractors)
        self._frontmatter = FrontmatterExtractor()

    def add_extractor(self, extractor) -> None:
        self._extractors.append(extractor)

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from content.

        Args:
            content: Source content, including any frontmatter.
            path: Path to the source file.

        Returns:
            Dictionary with all extracted metadata plus 'frontmatter' and 'body'.

        Raises:
            FrontmatterError: If the frontmatter block is malformed.
        """
        result = self._frontmatter.extract(content, path)
        for extractor in self._extractors:
            for key, value in extractor.extract(content, path).items():
                result.setdefault(key, value)
        if isinstance(result.get("date"), date) and not isinstance(result["date"], datetime):
            result["date"] = datetime(result["date"].year, result["date"].month, result["date"].day)
        return result


default_metadata_extractor = CompositeMetadataExtractor()
