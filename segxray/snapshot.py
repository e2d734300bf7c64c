"""
Snapshot Render Tree
====================
In-memory render tree built from a JSON snapshot of a laid-out page.

Snapshot format::

    {
      "viewport": {"width": 1280, "height": 800},
      "scroll": {"x": 0, "y": 0},
      "root": {
        "tag": "body",
        "rect": {"x": 0, "y": 0, "width": 1280, "height": 2000},
        "style": {"overflow": "visible"},
        "children": [
          {"tag": "p", "rect": [10, 10, 400, 20], "children": [
            {"text": "Hello", "charWidth": 8, "height": 16}
          ]}
        ]
      }
    }

Text runs on a single line from its origin with a fixed per-character
advance. Marker characters have zero advance. A text child without an
explicit origin starts where the previous text child of the same element
ended, or at the element's top-left corner.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from .codec import MARKER_CHARS_PATTERN
from .errors import GeometryQueryFailure
from .models import ComputedStyle, Rect, Viewport

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = (1280.0, 800.0)
DEFAULT_CHAR_WIDTH = 8.0
DEFAULT_LINE_HEIGHT = 16.0

_STYLE_KEYS = {
    "overflowX": "overflow_x",
    "overflowY": "overflow_y",
}


# ─── Nodes ────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class SnapshotElement:
    """An element box. Compared by identity."""
    tag: str
    rect: Rect
    style: ComputedStyle = field(default_factory=ComputedStyle)
    z_index: int = 0
    element_id: Optional[str] = None
    parent: Optional["SnapshotElement"] = field(default=None, repr=False)
    children: list[Union["SnapshotElement", "SnapshotText"]] = field(
        default_factory=list, repr=False
    )

    def append(self, child: Union["SnapshotElement", "SnapshotText"]):
        child.parent = self
        self.children.append(child)
        return child


@dataclass(eq=False)
class SnapshotText:
    """A single-line text run. Compared by identity."""
    text: str
    x: float = 0.0
    y: float = 0.0
    char_width: float = DEFAULT_CHAR_WIDTH
    height: float = DEFAULT_LINE_HEIGHT
    parent: Optional[SnapshotElement] = field(default=None, repr=False)

    def advance(self, char: str) -> float:
        return 0.0 if MARKER_CHARS_PATTERN.match(char) else self.char_width

    def offset_x(self, offset: int) -> float:
        return self.x + sum(self.advance(c) for c in self.text[:offset])

    @property
    def end_x(self) -> float:
        return self.offset_x(len(self.text))


# ─── Tree ─────────────────────────────────────────────────────────────────────


class SnapshotRenderTree:
    """
    Render tree backed by snapshot nodes.

    Implements the RenderTree port. Viewport and scroll position can be
    changed after construction to simulate resizes and scrolling.
    """

    def __init__(
        self,
        root: Optional[SnapshotElement],
        viewport: tuple[float, float] = DEFAULT_VIEWPORT,
        scroll: tuple[float, float] = (0.0, 0.0),
    ):
        self.root = root
        self._viewport = Viewport(width=viewport[0], height=viewport[1])
        self._scroll = scroll

    # ── Loading ──────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotRenderTree":
        viewport = data.get("viewport") or {}
        scroll = data.get("scroll") or {}
        root_data = data.get("root")
        root = _build_element(root_data, None) if root_data else None
        return cls(
            root,
            viewport=(
                float(viewport.get("width", DEFAULT_VIEWPORT[0])),
                float(viewport.get("height", DEFAULT_VIEWPORT[1])),
            ),
            scroll=(float(scroll.get("x", 0)), float(scroll.get("y", 0))),
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "SnapshotRenderTree":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        logger.debug(f"Loaded snapshot: {path}")
        return cls.from_dict(data)

    # ── Mutation ─────────────────────────────────────────────────────

    def set_viewport(self, width: float, height: float):
        self._viewport = Viewport(width=width, height=height)

    def scroll_to(self, x: float, y: float):
        self._scroll = (x, y)

    # ── RenderTree port ──────────────────────────────────────────────

    def content_root(self) -> Optional[SnapshotElement]:
        return self.root

    def iter_text_nodes(self, root: SnapshotElement) -> Iterator[SnapshotText]:
        for child in root.children:
            if isinstance(child, SnapshotText):
                yield child
            else:
                yield from self.iter_text_nodes(child)

    def node_text(self, node: SnapshotText) -> str:
        return node.text

    def owning_element(self, node: SnapshotText) -> Optional[SnapshotElement]:
        return node.parent

    def tag_name(self, element: SnapshotElement) -> str:
        return element.tag.upper()

    def computed_style(self, element: SnapshotElement) -> ComputedStyle:
        return element.style

    def element_rect(self, element: SnapshotElement) -> Rect:
        return element.rect

    def range_rect(
        self,
        start_node: SnapshotText,
        start_offset: int,
        end_node: SnapshotText,
        end_offset: int,
    ) -> Rect:
        nodes = list(self.iter_text_nodes(self.root))
        try:
            first = next(i for i, n in enumerate(nodes) if n is start_node)
            last = next(i for i, n in enumerate(nodes) if n is end_node)
        except StopIteration:
            raise GeometryQueryFailure(
                "Range endpoint is not part of this tree"
            ) from None
        if last < first:
            raise GeometryQueryFailure("Range end precedes range start")

        bounds: Optional[Rect] = None
        for node in nodes[first:last + 1]:
            if not self._is_laid_out(node):
                continue
            lo = start_offset if node is start_node else 0
            hi = end_offset if node is end_node else len(node.text)
            x0, x1 = node.offset_x(lo), node.offset_x(hi)
            if x1 <= x0:
                continue
            rect = Rect(x=x0, y=node.y, width=x1 - x0, height=node.height)
            bounds = rect if bounds is None else bounds.union(rect)

        if bounds is None:
            # Collapsed range: zero width at the start position
            return Rect(
                x=start_node.offset_x(start_offset),
                y=start_node.y,
                width=0,
                height=start_node.height,
            )
        return bounds

    def element_from_point(
        self, x: float, y: float
    ) -> Optional[SnapshotElement]:
        hit = None
        for element in self._paint_order():
            if element.rect.contains_point(x, y):
                hit = element
        return hit

    def parent_element(
        self, element: SnapshotElement
    ) -> Optional[SnapshotElement]:
        return element.parent

    def viewport(self) -> Viewport:
        return self._viewport

    def scroll_offset(self) -> tuple[float, float]:
        return self._scroll

    def document_size(self) -> tuple[float, float]:
        width, height = self._viewport.width, self._viewport.height
        if self.root is not None:
            width = max(width, self.root.rect.right + self._scroll[0])
            height = max(height, self.root.rect.bottom + self._scroll[1])
        return width, height

    # ── Internals ────────────────────────────────────────────────────

    def _is_laid_out(self, node: SnapshotText) -> bool:
        element = node.parent
        while element is not None:
            if element.style.display == "none":
                return False
            element = element.parent
        return True

    def _paint_order(self) -> list[SnapshotElement]:
        """Hit-testable elements, bottom-most first."""
        painted: list[tuple[int, SnapshotElement]] = []

        def visit(element: SnapshotElement, inherited_z: int):
            if element.style.display == "none":
                return
            z = element.z_index or inherited_z
            if element.style.visibility != "hidden":
                painted.append((z, element))
            for child in element.children:
                if isinstance(child, SnapshotElement):
                    visit(child, z)

        if self.root is not None:
            visit(self.root, self.root.z_index)
        # sort is stable: document order is kept within a z level
        painted.sort(key=lambda item: item[0])
        return [element for _, element in painted]


# ─── Builders ─────────────────────────────────────────────────────────────────


def _parse_rect(value: Any) -> Rect:
    if value is None:
        return Rect()
    if isinstance(value, (list, tuple)):
        x, y, width, height = (float(v) for v in value)
        return Rect(x=x, y=y, width=width, height=height)
    return Rect.model_validate(value)


def _parse_style(value: Optional[dict[str, Any]]) -> ComputedStyle:
    if not value:
        return ComputedStyle()
    normalized = {_STYLE_KEYS.get(k, k): v for k, v in value.items()}
    return ComputedStyle.model_validate(normalized)


def _build_element(
    data: dict[str, Any], parent: Optional[SnapshotElement]
) -> SnapshotElement:
    element = SnapshotElement(
        tag=data.get("tag", "div"),
        rect=_parse_rect(data.get("rect")),
        style=_parse_style(data.get("style")),
        z_index=int(data.get("z", 0)),
        element_id=data.get("id"),
        parent=parent,
    )

    cursor_x = element.rect.x
    for child in data.get("children", []):
        if isinstance(child, str):
            child = {"text": child}
        if "text" in child:
            text = SnapshotText(
                text=child["text"],
                x=float(child.get("x", cursor_x)),
                y=float(child.get("y", element.rect.y)),
                char_width=float(child.get("charWidth", DEFAULT_CHAR_WIDTH)),
                height=float(child.get("height", DEFAULT_LINE_HEIGHT)),
            )
            element.append(text)
            cursor_x = text.end_x
        else:
            element.children.append(_build_element(child, element))
    return element
