"""Protocol definitions for Gorgon.

This module defines the interfaces the build engine depends on, so that the
collaborators around it (content renderers, metadata extractors, the component
registry) can be swapped or mocked in tests.

Key protocols:
- ComponentLookup: Read access to components, satisfied by the registry and its snapshots.
- ContentRenderer: Converts a content file's body to markup before template parsing.
- MetadataExtractor: Produces the opaque metadata map of a content unit.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .errors import RegistrationConflict
    from .units import RenderableUnit


@runtime_checkable
class ComponentLookup(Protocol):
    """Read-only access to registered components.

    Both ComponentRegistry and RegistrySnapshot implement this protocol; a render
    pass always uses a snapshot so it never sees a half-applied batch.
    """

    @abstractmethod
    def lookup(self, component_id: str) -> RenderableUnit | None:
        """Return the unit registered under component_id, or None."""
        ...

    @abstractmethod
    def conflict_for(self, component_id: str) -> RegistrationConflict | None:
        """Return the recorded registration conflict for component_id, if any."""
        ...

    @abstractmethod
    def all_ids(self) -> set[str]:
        ...


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for converting content bodies to markup.

    Implementations handle one source type each (Markdown, HTML).
    """

    @abstractmethod
    def can_render(self, path: Path) -> bool:
        """Check if this renderer can handle the given file.

        Args:
            path: Path to the source file.

        Returns:
            True if this renderer can process the file.
        """
        ...

    @abstractmethod
    def render(self, content: str) -> str:
        """Convert content to markup ready for template parsing.

        Args:
            content: Body of the source file, without frontmatter.

        Returns:
            Markup that may still contain component invocations and placeholders.
        """
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the source type identifier (e.g., 'markdown', 'html')."""
        ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """Protocol for extracting metadata from content.

    Implementations extract specific types of metadata (title, tags, date, etc.).
    """

    @abstractmethod
    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract metadata from content.

        Args:
            content: Source content.
            path: Path to the source file. It is never read from disk.

        Returns:
            Dictionary of extracted metadata.
        """
        ...
