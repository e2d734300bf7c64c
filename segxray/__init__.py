"""
Segment X-Ray
=============
Locates marker-tagged text segments in a rendered page, decides whether each
one is genuinely visible, and keeps a highlight overlay in sync with them.

Architecture:
    - Marker Codec: Decodes the zero-width nibble alphabet into JSON metadata
    - Render Tree: Narrow query port (snapshot and PDF adapters)
    - Visibility Oracle: Clipping, viewport and occlusion checks
    - Segment Walker: Reconstructs segments across text nodes
    - Overlay Sync Engine: Show / hide / peek / resize state machine
    - Report Engine: Post-extraction summary

Version: 1.0.0
"""

__version__ = "1.0.0"
