"""Gorgon static site generator.

This package turns a tree of content files (HTML or Markdown with frontmatter) and a
library of reusable, parameterized components into fully-expanded HTML pages.
Each edit is handled incrementally: only pages that depend on what changed are
rendered again.

The main entry point is the CLI module, which provides commands for scaffolding new
projects, building sites, checking component graphs and running the development server.

Architecture:
- parser: Splits markup into text spans and component invocations.
- registry: Maps component identifiers to parsed component units.
- graph / cycles: Track which units invoke which, and guard against cycles.
- renderer: Recursively expands invocations with parameters and slots.
- cache / engine: Fingerprint units and re-render only the affected set.
"""

__all__ = ["__version__"]
__version__ = "0.2.0"
