"""
Error Taxonomy
==============
Exceptions raised inside the extraction and overlay pipeline.

Only ``MissingRootError`` ever ends an extraction call; the others are
recovered at the segment they concern.
"""

from __future__ import annotations


class XRayError(Exception):
    """Base class for all segxray errors."""


class DecodeError(XRayError):
    """Malformed marker payload (odd length or out-of-range nibble)."""


class MissingRootError(XRayError):
    """The render tree has no content root to scan."""


class GeometryQueryFailure(XRayError):
    """Rectangle computation or hit-testing failed for a segment."""


class UnknownSessionError(XRayError):
    """An overlay command referenced a page session that does not exist."""
