"""
Segment Walker
==============
Single forward pass over the text nodes of a render tree that reconstructs
marker-delimited segments, possibly split across several nodes.

For every finalized segment the walker decodes the marker payload, computes
the geometry of the whole range once, asks the visibility oracle about it
and emits a Segment carrying either the absolute page rectangle or
ZERO_RECT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from .codec import END_MARKER, START_MARKER_PATTERN, decode_metadata
from .errors import MissingRootError
from .models import (
    ZERO_RECT,
    ExtractionResult,
    Rect,
    Segment,
    UnterminatedPolicy,
)
from .oracle import OracleSettings, VisibilityOracle
from .render_tree import Element, RenderTree, TextNode

logger = logging.getLogger(__name__)

# Text inside these elements is never user-facing content
DISALLOWED_TAGS = frozenset({"SCRIPT", "STYLE", "NOSCRIPT", "TEXTAREA", "HEAD"})

MISSING_ROOT_MESSAGE = "Document body not found."


class WalkerState(Enum):
    """Whether a segment is currently open."""
    SEEKING_START = "SEEKING_START"
    IN_SEGMENT = "IN_SEGMENT"


@dataclass
class OpenSegment:
    """The single in-progress segment."""
    start_node: TextNode
    start_offset: int
    start_owner: Element
    payload: str
    text: str
    last_node: TextNode


class SegmentWalker:
    """
    Finite state machine that turns the text nodes of a render tree into
    an ordered list of finalized segments.
    """

    def __init__(
        self,
        tree: RenderTree,
        oracle: Optional[VisibilityOracle] = None,
        unterminated_policy: UnterminatedPolicy = UnterminatedPolicy.DROP,
        disallowed_tags: frozenset[str] = DISALLOWED_TAGS,
        oracle_settings: Optional[OracleSettings] = None,
    ):
        self.tree = tree
        self.oracle = oracle or VisibilityOracle(tree, oracle_settings)
        self.unterminated_policy = UnterminatedPolicy(unterminated_policy)
        self.disallowed_tags = frozenset(t.upper() for t in disallowed_tags)

        self.state = WalkerState.SEEKING_START
        self.current: Optional[OpenSegment] = None
        self.segments: list[Segment] = []

    def reset(self):
        """Reset the walker for a fresh pass."""
        self.state = WalkerState.SEEKING_START
        self.current = None
        self.segments = []

    def walk(self) -> ExtractionResult:
        """
        Run one extraction pass.

        Returns:
            ExtractionResult with the segments, or with an error and no
            segments when the tree has no content root.
        """
        try:
            segments = self.scan()
        except MissingRootError as e:
            logger.warning(f"Extraction aborted: {e}")
            return ExtractionResult.failed(str(e))
        return ExtractionResult.ok(segments)

    def scan(self) -> list[Segment]:
        """
        Like :meth:`walk`, but returns the bare list.

        Raises:
            MissingRootError: If the tree has no content root.
        """
        root = self.tree.content_root()
        if root is None:
            raise MissingRootError(MISSING_ROOT_MESSAGE)

        self.reset()
        for node in self.tree.iter_text_nodes(root):
            if self._is_eligible(node):
                self._process_node(node)
        self.finalize()

        logger.info(f"Extracted {len(self.segments)} segments")
        return self.segments

    def finalize(self):
        """Apply the unterminated policy to a segment still open at the end."""
        if self.state != WalkerState.IN_SEGMENT or self.current is None:
            return

        seg = self.current
        self.current = None
        self.state = WalkerState.SEEKING_START

        if self.unterminated_policy == UnterminatedPolicy.DROP:
            logger.info(
                f"Dropping unterminated segment ({len(seg.text)} chars)"
            )
            return

        logger.info(f"Emitting unterminated segment ({len(seg.text)} chars)")
        end_offset = len(self.tree.node_text(seg.last_node))
        self._emit(
            seg.start_node, seg.start_offset, seg.last_node, end_offset,
            owner=seg.start_owner,
            text=seg.text,
            payload=seg.payload,
            unterminated=True,
        )

    # ── Node filtering ───────────────────────────────────────────────

    def _is_eligible(self, node: TextNode) -> bool:
        owner = self.tree.owning_element(node)
        if owner is None:
            return False
        if self.tree.tag_name(owner).upper() in self.disallowed_tags:
            return False
        try:
            style = self.tree.computed_style(owner)
        except Exception as e:
            # Scan the text anyway: skipping it could merge two segments
            logger.warning(f"Style lookup failed, keeping node: {e}")
            return True
        return style.is_rendered

    # ── Scanning ─────────────────────────────────────────────────────

    def _process_node(self, node: TextNode):
        text = self.tree.node_text(node) or ""
        owner = self.tree.owning_element(node)
        pos = 0

        while pos < len(text):
            if self.state == WalkerState.IN_SEGMENT:
                seg = self.current
                end = text.find(END_MARKER, pos)
                if end == -1:
                    seg.text += text[pos:]
                    seg.last_node = node
                    break

                seg.text += text[pos:end]
                self._emit(
                    seg.start_node, seg.start_offset, node, end,
                    owner=seg.start_owner,
                    text=seg.text,
                    payload=seg.payload,
                )
                self.current = None
                self.state = WalkerState.SEEKING_START
                pos = end + 1
                continue

            match = START_MARKER_PATTERN.search(text, pos)
            if not match:
                break

            body_start = match.end()
            end = text.find(END_MARKER, body_start)
            if end != -1:
                self._emit(
                    node, match.start(), node, end,
                    owner=owner,
                    text=text[body_start:end],
                    payload=match.group(1),
                )
                pos = end + 1
                continue

            self.current = OpenSegment(
                start_node=node,
                start_offset=match.start(),
                start_owner=owner,
                payload=match.group(1),
                text=text[body_start:],
                last_node=node,
            )
            self.state = WalkerState.IN_SEGMENT
            break

    def _emit(
        self,
        start_node: TextNode,
        start_offset: int,
        end_node: TextNode,
        end_offset: int,
        owner: Element,
        text: str,
        payload: str,
        **annotations: Any,
    ):
        metadata, error = decode_metadata(payload)
        if error is not None:
            logger.warning(
                f"Segment {len(self.segments)} metadata not decoded: {error}"
            )
            annotations["decoding_error"] = error

        geometry = self._geometry(
            start_node, start_offset, end_node, end_offset, owner
        )
        try:
            segment = Segment.build(text, geometry, metadata, **annotations)
        except ValidationError as e:
            logger.warning(
                f"Segment {len(self.segments)} metadata rejected: "
                f"{e.error_count()} error(s)"
            )
            annotations["decoding_error"] = f"Metadata rejected: {e}"
            segment = Segment.build(text, geometry, **annotations)
        self.segments.append(segment)

        logger.debug(
            f"Segment {len(self.segments) - 1}: {text[:40]!r} "
            f"visible={segment.is_visible}"
        )

    def _geometry(
        self,
        start_node: TextNode,
        start_offset: int,
        end_node: TextNode,
        end_offset: int,
        owner: Element,
    ) -> Rect:
        """Absolute page rectangle when visible, ZERO_RECT otherwise."""
        try:
            rect = self.tree.range_rect(
                start_node, start_offset, end_node, end_offset
            )
            scroll_x, scroll_y = self.tree.scroll_offset()
        except Exception as e:
            logger.warning(f"Geometry query failed, treating as hidden: {e}")
            return ZERO_RECT

        if not self.oracle.is_visible(rect, owner):
            return ZERO_RECT
        return rect.translate(scroll_x, scroll_y)


def extract_text_and_metadata(
    tree: RenderTree, **kwargs: Any
) -> ExtractionResult:
    """The extraction call: one full walk of ``tree``."""
    return SegmentWalker(tree, **kwargs).walk()
