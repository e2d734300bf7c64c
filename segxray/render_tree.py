"""
Render Tree Port
================
The narrow query capability the walker and the oracle depend on.

Adapters:
    - SnapshotRenderTree (segxray.snapshot): in-memory tree from a JSON snapshot
    - PdfRenderTree (segxray.pdf_tree): one PDF page through PyMuPDF

Elements and text nodes are opaque to the core; it only hands them back to
the port. All rectangles are viewport-relative.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional, Protocol

from .models import ComputedStyle, Rect, Viewport

Element = Any
TextNode = Any


class RenderTree(Protocol):
    def content_root(self) -> Optional[Element]:
        """The container to scan, or None when the page has none."""
        ...

    def iter_text_nodes(self, root: Element) -> Iterator[TextNode]:
        """Text-bearing nodes under ``root`` in document order."""
        ...

    def node_text(self, node: TextNode) -> str: ...

    def owning_element(self, node: TextNode) -> Optional[Element]: ...

    def tag_name(self, element: Element) -> str: ...

    def computed_style(self, element: Element) -> ComputedStyle: ...

    def element_rect(self, element: Element) -> Rect: ...

    def range_rect(
        self,
        start_node: TextNode,
        start_offset: int,
        end_node: TextNode,
        end_offset: int,
    ) -> Rect:
        """Bounding rectangle of a text range, possibly across nodes."""
        ...

    def element_from_point(self, x: float, y: float) -> Optional[Element]:
        """Topmost element painted at a viewport point."""
        ...

    def parent_element(self, element: Element) -> Optional[Element]: ...

    def viewport(self) -> Viewport: ...

    def scroll_offset(self) -> tuple[float, float]: ...

    def document_size(self) -> tuple[float, float]:
        """Full scrollable (width, height) the overlay must cover."""
        ...


def iter_ancestors(tree: RenderTree, element: Element) -> Iterator[Element]:
    """Yield ``element`` and then each ancestor up to the document root."""
    current = element
    while current is not None:
        yield current
        current = tree.parent_element(current)


def contains(tree: RenderTree, ancestor: Element, element: Element) -> bool:
    """True when ``element`` is ``ancestor`` or lies inside it."""
    return any(a is ancestor for a in iter_ancestors(tree, element))
