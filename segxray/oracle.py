"""
Visibility Oracle
=================
Decides whether a segment rectangle is genuinely visible to a reviewer,
not merely present in the document with positive geometry.

Decision sequence:
    1. Positive width and height
    2. Not clipped by more than half by any overflow-clipping ancestor
    3. Intersects the viewport
    4. All four inset corners inside the viewport and hit-testing to the
       owning element, one of its ancestors or one of its descendants

Pure query: never mutates the tree, and any failure reads as "not visible".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import Rect
from .render_tree import Element, RenderTree, contains

logger = logging.getLogger(__name__)


@dataclass
class OracleSettings:
    """Tunable thresholds. Their right values depend on font and zoom."""

    # Minimum visible share of each dimension inside a clipping ancestor
    clip_threshold: float = 0.5

    # Inward inset of the four hit-test corners, in pixels
    corner_inset: float = 2.0


class VisibilityOracle:
    """Answers visibility queries against one render tree."""

    def __init__(
        self,
        tree: RenderTree,
        settings: Optional[OracleSettings] = None,
    ):
        self.tree = tree
        self.settings = settings or OracleSettings()

    def is_visible(self, rect: Rect, owning_element: Element) -> bool:
        return self.explain(rect, owning_element) is None

    def explain(self, rect: Rect, owning_element: Element) -> Optional[str]:
        """
        Return why ``rect`` is not visible, or None when it is.

        Args:
            rect: Viewport-relative rectangle of the segment.
            owning_element: Element owning the segment's starting text.
        """
        try:
            reason = self._check(rect, owning_element)
        except Exception as e:
            reason = f"geometry query failed: {e}"
        if reason:
            logger.debug(f"Rect {rect} not visible: {reason}")
        return reason

    def _check(self, rect: Rect, owner: Element) -> Optional[str]:
        if rect.width <= 0 or rect.height <= 0:
            return "empty rectangle"

        reason = self._check_clipping(rect, owner)
        if reason:
            return reason

        viewport = self.tree.viewport()
        if rect.intersection(viewport.rect) is None:
            return "outside viewport"

        return self._check_corners(rect, owner)

    def _check_clipping(self, rect: Rect, owner: Element) -> Optional[str]:
        threshold = self.settings.clip_threshold
        root = self.tree.content_root()

        element = owner
        while element is not None and element is not root:
            if self.tree.computed_style(element).clips:
                box = self.tree.element_rect(element)
                overlap = rect.intersection(box)
                if overlap is None:
                    return "outside clipping ancestor"
                if (overlap.width < rect.width * threshold
                        or overlap.height < rect.height * threshold):
                    return "mostly clipped by ancestor"
            element = self.tree.parent_element(element)
        return None

    def _check_corners(self, rect: Rect, owner: Element) -> Optional[str]:
        inset = self.settings.corner_inset
        viewport = self.tree.viewport()
        corners = [
            (rect.left + inset, rect.top + inset),
            (rect.right - inset, rect.top + inset),
            (rect.left + inset, rect.bottom - inset),
            (rect.right - inset, rect.bottom - inset),
        ]

        for x, y in corners:
            if not (0 <= x < viewport.width and 0 <= y < viewport.height):
                return "corner outside viewport"

            hit = self.tree.element_from_point(x, y)
            if hit is None:
                return "nothing painted at corner"

            related = (
                hit is owner
                or contains(self.tree, owner, hit)
                or contains(self.tree, hit, owner)
            )
            if not related:
                return "corner occluded"
        return None
