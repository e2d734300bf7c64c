"""
PDF Render Tree
===============
Exposes one PDF page as a render tree using PyMuPDF (fitz), so marker
segments baked into a rendered PDF can be located and visibility-checked.

Structure:
    page → block → line → span elements, one text node per span.
Per-character boxes come from ``rawdict`` extraction, so text sub-ranges
get exact rectangles. Span alpha maps to opacity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

import fitz  # PyMuPDF

from .errors import GeometryQueryFailure
from .models import ComputedStyle, Rect, Viewport

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PdfElement:
    tag: str
    rect: Rect
    style: ComputedStyle = field(default_factory=ComputedStyle)
    parent: Optional["PdfElement"] = field(default=None, repr=False)
    children: list["PdfElement"] = field(default_factory=list, repr=False)
    text_nodes: list["PdfTextNode"] = field(default_factory=list, repr=False)

    def append(self, child: "PdfElement") -> "PdfElement":
        child.parent = self
        self.children.append(child)
        return child


@dataclass(eq=False)
class PdfTextNode:
    text: str
    char_boxes: list[Rect]
    parent: Optional[PdfElement] = field(default=None, repr=False)


def _bbox_rect(bbox) -> Rect:
    x0, y0, x1, y1 = bbox
    return Rect.from_edges(x0, y0, x1, y1)


def get_page_count(pdf_path: Union[str, Path]) -> int:
    """Get total number of pages in the PDF."""
    with fitz.open(str(pdf_path)) as doc:
        return doc.page_count


class PdfRenderTree:
    """RenderTree port over a single PDF page."""

    def __init__(self, page: fitz.Page):
        self.page_width = page.rect.width
        self.page_height = page.rect.height
        self.root = PdfElement(
            "page", Rect(x=0, y=0, width=self.page_width, height=self.page_height)
        )
        self._text_nodes: list[PdfTextNode] = []
        self._build(page)

    @classmethod
    def open(
        cls, pdf_path: Union[str, Path], page_number: int = 1
    ) -> "PdfRenderTree":
        """Load page ``page_number`` (1-indexed) of a PDF file."""
        with fitz.open(str(pdf_path)) as doc:
            if not 1 <= page_number <= doc.page_count:
                raise ValueError(
                    f"Page {page_number} out of range (1-{doc.page_count})"
                )
            tree = cls(doc[page_number - 1])
        logger.info(
            f"Loaded page {page_number} of {pdf_path} "
            f"({len(tree._text_nodes)} text spans)"
        )
        return tree

    def _build(self, page: fitz.Page):
        page_dict = page.get_text("rawdict", flags=fitz.TEXT_PRESERVE_WHITESPACE)

        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:  # images
                continue
            block_el = self.root.append(
                PdfElement("block", _bbox_rect(block["bbox"]))
            )
            for line in block.get("lines", []):
                line_el = block_el.append(
                    PdfElement("line", _bbox_rect(line["bbox"]))
                )
                for span in line.get("spans", []):
                    alpha = span.get("alpha", 255)
                    span_el = line_el.append(PdfElement(
                        "span",
                        _bbox_rect(span["bbox"]),
                        style=ComputedStyle(display="inline", opacity=alpha / 255),
                    ))
                    chars = span.get("chars", [])
                    node = PdfTextNode(
                        text="".join(c["c"] for c in chars),
                        char_boxes=[_bbox_rect(c["bbox"]) for c in chars],
                        parent=span_el,
                    )
                    span_el.text_nodes.append(node)
                    self._text_nodes.append(node)

    # ── RenderTree port ──────────────────────────────────────────────

    def content_root(self) -> Optional[PdfElement]:
        return self.root

    def iter_text_nodes(self, root: PdfElement) -> Iterator[PdfTextNode]:
        yield from root.text_nodes
        for child in root.children:
            yield from self.iter_text_nodes(child)

    def node_text(self, node: PdfTextNode) -> str:
        return node.text

    def owning_element(self, node: PdfTextNode) -> Optional[PdfElement]:
        return node.parent

    def tag_name(self, element: PdfElement) -> str:
        return element.tag.upper()

    def computed_style(self, element: PdfElement) -> ComputedStyle:
        return element.style

    def element_rect(self, element: PdfElement) -> Rect:
        return element.rect

    def range_rect(
        self,
        start_node: PdfTextNode,
        start_offset: int,
        end_node: PdfTextNode,
        end_offset: int,
    ) -> Rect:
        try:
            first = self._text_nodes.index(start_node)
            last = self._text_nodes.index(end_node)
        except ValueError:
            raise GeometryQueryFailure(
                "Range endpoint is not part of this page"
            ) from None

        bounds: Optional[Rect] = None
        for node in self._text_nodes[first:last + 1]:
            lo = start_offset if node is start_node else 0
            hi = end_offset if node is end_node else len(node.char_boxes)
            for box in node.char_boxes[lo:hi]:
                if box.width <= 0:
                    continue
                bounds = box if bounds is None else bounds.union(box)

        if bounds is not None:
            return bounds
        if start_node.char_boxes:
            anchor = start_node.char_boxes[
                min(start_offset, len(start_node.char_boxes) - 1)
            ]
            return Rect(x=anchor.x, y=anchor.y, width=0, height=anchor.height)
        return Rect()

    def element_from_point(self, x: float, y: float) -> Optional[PdfElement]:
        return self._hit(self.root, x, y)

    def _hit(self, element: PdfElement, x: float, y: float):
        # later siblings and descendants paint over earlier ones
        for child in reversed(element.children):
            found = self._hit(child, x, y)
            if found is not None:
                return found
        return element if element.rect.contains_point(x, y) else None

    def parent_element(self, element: PdfElement) -> Optional[PdfElement]:
        return element.parent

    def viewport(self) -> Viewport:
        return Viewport(width=self.page_width, height=self.page_height)

    def scroll_offset(self) -> tuple[float, float]:
        return (0.0, 0.0)

    def document_size(self) -> tuple[float, float]:
        return (self.page_width, self.page_height)
