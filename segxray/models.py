"""
Data Models
===========
Pydantic models for extracted segments, geometry, the highlight layer and
the extraction report.
All models are serializable to the JSON shapes the extraction call and the
overlay command surface exchange.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class MatchStatus(str, Enum):
    """Tri-state match annotation of a displayed segment."""
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, matched: Optional[bool]) -> "MatchStatus":
        if matched is True:
            return cls.MATCHED
        if matched is False:
            return cls.UNMATCHED
        return cls.UNKNOWN


class UnterminatedPolicy(str, Enum):
    """What to do with a segment still open when the document ends."""
    DROP = "drop"
    EMIT = "emit"


# ─── Geometry ─────────────────────────────────────────────────────────────────


class Rect(BaseModel):
    """Axis-aligned rectangle (x, y is the top-left corner)."""
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def from_edges(
        cls, left: float, top: float, right: float, bottom: float
    ) -> "Rect":
        return cls(x=left, y=top, width=right - left, height=bottom - top)

    @property
    def left(self) -> float:
        return self.x

    @property
    def top(self) -> float:
        return self.y

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def is_zero(self) -> bool:
        return (
            self.x == 0 and self.y == 0
            and self.width == 0 and self.height == 0
        )

    def translate(self, dx: float, dy: float) -> "Rect":
        return Rect(x=self.x + dx, y=self.y + dy,
                    width=self.width, height=self.height)

    def contains_point(self, x: float, y: float) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def union(self, other: "Rect") -> "Rect":
        return Rect.from_edges(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )

    def intersection(self, other: "Rect") -> Optional["Rect"]:
        """Overlap of two rectangles, or None when they do not overlap."""
        left = max(self.left, other.left)
        top = max(self.top, other.top)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return None
        return Rect.from_edges(left, top, right, bottom)


# Geometry of a segment that is present but not visible.
ZERO_RECT = Rect()


class Viewport(BaseModel):
    """Size of the visible area, in the same units as rectangles."""
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    @property
    def rect(self) -> Rect:
        return Rect(x=0, y=0, width=self.width, height=self.height)


class ComputedStyle(BaseModel):
    """The subset of computed style the walker and the oracle consult."""
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    overflow: str = "visible"
    overflow_x: str = "visible"
    overflow_y: str = "visible"

    @property
    def is_rendered(self) -> bool:
        return (
            self.display != "none"
            and self.visibility != "hidden"
            and self.opacity != 0
        )

    @property
    def clips(self) -> bool:
        """True when any overflow axis clips its content."""
        values = " ".join((self.overflow, self.overflow_x, self.overflow_y))
        return any(v in values for v in ("hidden", "scroll", "clip"))


# ─── Segment Models ───────────────────────────────────────────────────────────


# Keys the segment itself owns; decoded metadata never overrides them.
RESERVED_KEYS = frozenset({"text", "geometry"})

# Annotations omitted from the wire form when unset.
_OPTIONAL_ANNOTATIONS = ("decoding_error", "matched", "unterminated")

# Metadata keys that would land on a typed annotation field.
ANNOTATION_KEYS = frozenset(
    {"decodingError", "decoding_error", "matched", "unterminated"}
)

# Where producer values for annotation-named keys are kept.
SHADOWED_KEY = "shadowed"

# Keys stripped before metadata is handed to downstream lookups.
NON_METADATA_KEYS = frozenset(
    {"text", "geometry", "decodingError", "matched", "unterminated"}
)


class Segment(BaseModel):
    """
    A finalized segment: reconstructed text, page geometry and decoded
    metadata merged flat onto the same object.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    text: str
    geometry: Rect = Field(
        default=ZERO_RECT,
        description="Absolute page rectangle, or ZERO_RECT when not visible",
    )
    decoding_error: Optional[str] = Field(default=None, alias="decodingError")
    matched: Optional[bool] = None
    unterminated: Optional[bool] = None

    @classmethod
    def build(
        cls,
        text: str,
        geometry: Rect,
        metadata: Optional[dict[str, Any]] = None,
        **annotations: Any,
    ) -> "Segment":
        """
        Merge decoded metadata under the reserved segment keys.

        Annotations come only from keyword arguments. Metadata keys named
        like an annotation are passed through unchanged under
        ``shadowed``; reserved keys are dropped.
        """
        data: dict[str, Any] = {}
        shadowed: dict[str, Any] = {}
        for key, value in (metadata or {}).items():
            if key in ANNOTATION_KEYS:
                shadowed[key] = value
            elif key not in RESERVED_KEYS:
                data[key] = value
        if shadowed:
            data[SHADOWED_KEY] = shadowed
        data.update(annotations)
        data["text"] = text
        data["geometry"] = geometry
        return cls.model_validate(data)

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def is_visible(self) -> bool:
        return not self.geometry.is_zero

    @property
    def match_status(self) -> MatchStatus:
        return MatchStatus.from_flag(self.matched)

    def with_geometry(self, geometry: Rect) -> "Segment":
        return self.model_copy(update={"geometry": geometry})

    def with_match(self, matched: Optional[bool]) -> "Segment":
        return self.model_copy(update={"matched": matched})

    def to_wire(self) -> dict[str, Any]:
        exclude = {
            name for name in _OPTIONAL_ANNOTATIONS
            if getattr(self, name) is None
        }
        return self.model_dump(by_alias=True, exclude=exclude)


def clean_metadata(segment: Segment) -> dict[str, Any]:
    """Metadata-only view of a segment, without nulls or segment keys."""
    return {
        key: value
        for key, value in segment.to_wire().items()
        if key not in NON_METADATA_KEYS and value is not None
    }


class ExtractionResult(BaseModel):
    """
    Outcome of one extraction pass.
    Either a list of segments, or an error with no partial results.
    """
    model_config = ConfigDict(populate_by_name=True)

    text_elements: list[Segment] = Field(
        default_factory=list, alias="textElements"
    )
    error: Optional[str] = None

    @classmethod
    def ok(cls, segments: list[Segment]) -> "ExtractionResult":
        return cls(text_elements=segments)

    @classmethod
    def failed(cls, message: str) -> "ExtractionResult":
        return cls(error=message)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_wire(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"textElements": [s.to_wire() for s in self.text_elements]}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ExtractionResult":
        if data.get("error"):
            return cls.failed(str(data["error"]))
        return cls.ok([
            Segment.model_validate(item)
            for item in data.get("textElements", [])
        ])


# ─── Highlight Layer ──────────────────────────────────────────────────────────


class Highlight(BaseModel):
    """One highlight box of the overlay, keyed by segment index."""
    index: int = Field(ge=0)
    left: float
    top: float
    width: float
    height: float
    status: MatchStatus = MatchStatus.UNKNOWN
    tooltip: str = ""
    copy_value: Optional[str] = Field(
        default=None,
        description="Value copied to the clipboard when the box is clicked",
    )

    @property
    def rect(self) -> Rect:
        return Rect(x=self.left, y=self.top,
                    width=self.width, height=self.height)


class HighlightLayer(BaseModel):
    """The full overlay: one absolutely positioned box per segment."""
    width: float = 0.0
    height: float = 0.0
    highlights: list[Highlight] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.highlights)


# ─── Extraction Report ────────────────────────────────────────────────────────


class ExtractionReport(BaseModel):
    """Post-extraction summary."""
    total_segments: int = 0
    visible_segments: int = 0
    hidden_segments: int = 0
    decoding_errors: list[int] = Field(default_factory=list)
    unterminated_segments: list[int] = Field(default_factory=list)
    matched: int = 0
    unmatched: int = 0
    unknown: int = 0
    metadata_keys: dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None

    @computed_field
    @property
    def visible_rate(self) -> float:
        if self.total_segments == 0:
            return 0.0
        return round(self.visible_segments / self.total_segments * 100, 2)
