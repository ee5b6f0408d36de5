"""Utility functions for Gorgon.

These include string processing, path handling and date extraction used by the
content adapters and the site builder.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_tags: Extract hashtags from text.
    extract_date_from_name: Extract date from filename prefix.
    is_markdown: Check if a path is a Markdown file.
    is_html: Check if a path is an HTML file.
    is_internal_path: Check if a path is a draft or internal file.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from datetime import datetime
from pathlib import Path

HASHTAG_RE = re.compile(r"""(?<![\w&"'/=#])#([a-zA-Z][a-zA-Z0-9]{2,}(?:/[a-zA-Z0-9]+)*)""")
PLACEHOLDER_TEXT_RE = re.compile(r"@\{[^}]*\}")


def _strip_date_prefix(name: str) -> str:
    parts = name.split("-")
    if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
        return "-".join(parts[3:])
    return name


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    cleaned = _strip_date_prefix(name)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = _strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        datetime object if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def extract_tags(text: str) -> list[str]:
    """Extract unique hashtags from text content, in order of appearance.

    Examples:
        >>> extract_tags("Hello #world, this is #python code")
        ['world', 'python']
    """
    seen: list[str] = []
    for tag in HASHTAG_RE.findall(text):
        if tag not in seen:
            seen.append(tag)
    return seen


def strip_hashtags(text: str) -> str:
    """Remove hashtag symbols from text, keeping the tag words."""
    return HASHTAG_RE.sub(lambda m: m.group(1), text)


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from text.

    Strips leading # (headers), HTML tags, component invocations and
    placeholders. Collapses whitespace and truncates to the specified limit.
    """
    for paragraph in text.split("\n\n"):
        para = paragraph.strip().lstrip("# ").strip()
        para = re.sub(r"<[^>]+>", "", para)
        para = PLACEHOLDER_TEXT_RE.sub("", para)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def is_internal_path(path: Path) -> bool:
    """Check if any component of a relative path starts with an underscore."""
    return any(part.startswith("_") for part in path.parts)


def is_markdown(path: Path) -> bool:
    return path.suffix.lower() == ".md"


def is_html(path: Path) -> bool:
    return path.suffix.lower() in (".html", ".htm")
