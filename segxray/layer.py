"""
Highlight Layer
===============
Builds the overlay boxes for a list of segments.

One box per segment, keyed by array index, padded on every side, never
smaller than a clickable minimum, coloured from the match annotation and
carrying a tooltip with the segment text and its metadata.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .models import (
    NON_METADATA_KEYS,
    Highlight,
    HighlightLayer,
    Rect,
    Segment,
)

# Metadata key whose value is copied when a highlight is clicked
COPY_KEY = "g"


@dataclass
class LayerSettings:
    padding: float = 4.0
    min_width: float = 20.0
    min_height: float = 16.0
    text_limit: int = 60
    value_limit: int = 40


def highlight_rect(geometry: Rect, settings: LayerSettings) -> Rect:
    """Padded box drawn around a segment rectangle."""
    pad = settings.padding
    return Rect(
        x=geometry.x - pad,
        y=geometry.y - pad,
        width=max(geometry.width, settings.min_width) + pad * 2,
        height=max(geometry.height, settings.min_height) + pad * 2,
    )


def _truncate(value: str, limit: int) -> str:
    return value[:limit] + "..." if len(value) > limit else value


def _display_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def tooltip_text(index: int, segment: Segment, settings: LayerSettings) -> str:
    lines = [
        f"Segment #{index + 1}",
        f"Text: {_truncate(segment.text, settings.text_limit)}",
    ]

    metadata_lines = []
    for key, value in segment.to_wire().items():
        if key in NON_METADATA_KEYS or value is None:
            continue
        display_key = key[:1].upper() + key[1:]
        display_value = _truncate(_display_value(value), settings.value_limit)
        metadata_lines.append(f"{display_key}: {display_value}")

    if metadata_lines:
        lines.append("")
        lines.extend(metadata_lines)

    if segment.decoding_error:
        lines.append("")
        lines.append(f"⚠ Decode Error: {segment.decoding_error}")

    return "\n".join(lines)


def build_highlight(
    index: int, segment: Segment, settings: LayerSettings
) -> Highlight:
    box = highlight_rect(segment.geometry, settings)
    copy_value = segment.metadata.get(COPY_KEY)
    return Highlight(
        index=index,
        left=box.x,
        top=box.y,
        width=box.width,
        height=box.height,
        status=segment.match_status,
        tooltip=tooltip_text(index, segment, settings),
        copy_value=copy_value if isinstance(copy_value, str) else None,
    )


def build_layer(
    segments: list[Segment],
    settings: LayerSettings,
    page_size: tuple[float, float],
) -> HighlightLayer:
    """Full overlay covering the whole document."""
    return HighlightLayer(
        width=page_size[0],
        height=page_size[1],
        highlights=[
            build_highlight(i, seg, settings)
            for i, seg in enumerate(segments)
        ],
    )


def update_geometry(
    layer: HighlightLayer,
    segments: list[Segment],
    settings: LayerSettings,
    page_size: tuple[float, float],
) -> HighlightLayer:
    """Move each existing box to its segment's rectangle, by index."""
    highlights = []
    for highlight, segment in zip(layer.highlights, segments):
        box = highlight_rect(segment.geometry, settings)
        highlights.append(highlight.model_copy(update={
            "left": box.x,
            "top": box.y,
            "width": box.width,
            "height": box.height,
        }))
    return layer.model_copy(update={
        "width": page_size[0],
        "height": page_size[1],
        "highlights": highlights,
    })
