"""
Painters
========
Render/paint capability the overlay engine drives.

    - MemoryPainter: keeps the current layer in memory (HTTP sessions, tests)
    - PdfHighlightPainter: stamps the layer onto a PDF page with PyMuPDF
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

import fitz  # PyMuPDF

from .models import HighlightLayer, MatchStatus

logger = logging.getLogger(__name__)


class Painter(Protocol):
    def render(self, layer: HighlightLayer) -> None:
        """Draw a fresh layer, visible."""
        ...

    def update(self, layer: HighlightLayer) -> None:
        """Move the boxes of the drawn layer in place."""
        ...

    def set_hidden(self, hidden: bool) -> None: ...

    def clear(self) -> None: ...


class MemoryPainter:
    """Holds the drawn layer and records every paint operation."""

    def __init__(self):
        self.layer: Optional[HighlightLayer] = None
        self.hidden = False
        self.operations: list[str] = []

    @property
    def is_showing(self) -> bool:
        return self.layer is not None and not self.hidden

    def render(self, layer: HighlightLayer) -> None:
        self.layer = layer
        self.hidden = False
        self.operations.append("render")

    def update(self, layer: HighlightLayer) -> None:
        self.layer = layer
        self.operations.append("update")

    def set_hidden(self, hidden: bool) -> None:
        self.hidden = hidden
        self.operations.append("hide" if hidden else "unhide")

    def clear(self) -> None:
        self.layer = None
        self.hidden = False
        self.operations.append("clear")


# ─── PDF Output ───────────────────────────────────────────────────────────────

# Stroke colours per match status (RGB, 0..1)
STATUS_COLORS = {
    MatchStatus.MATCHED: (0.0, 0.8, 0.0),
    MatchStatus.UNMATCHED: (1.0, 0.0, 0.0),
    MatchStatus.UNKNOWN: (0.4, 0.4, 0.4),
}


class PdfHighlightPainter(MemoryPainter):
    """
    Keeps the layer like MemoryPainter and writes it onto a copy of one
    PDF page on :meth:`save`.
    """

    def __init__(self, pdf_path: Union[str, Path], page_number: int = 1):
        super().__init__()
        self.pdf_path = str(pdf_path)
        self.page_number = page_number

    def save(self, output_path: Union[str, Path]) -> int:
        """
        Write the annotated PDF.

        Returns:
            Number of highlight boxes drawn (0 when hidden or cleared).
        """
        drawn = 0
        with fitz.open(self.pdf_path) as doc:
            page = doc[self.page_number - 1]
            if self.is_showing:
                for highlight in self.layer.highlights:
                    color = STATUS_COLORS[highlight.status]
                    r = highlight.rect
                    page.draw_rect(
                        fitz.Rect(r.left, r.top, r.right, r.bottom),
                        color=color,
                        fill=color,
                        width=1.5,
                        dashes="[3] 0",
                        fill_opacity=0.15,
                        stroke_opacity=0.7,
                    )
                    drawn += 1
            doc.save(str(output_path))

        logger.info(f"Saved annotated PDF with {drawn} highlights: {output_path}")
        return drawn
