"""
Overlay Sync Engine
===================
Keeps the highlight layer consistent with the walker output while the
page is resized and while the overlay is transiently hidden.

States:
    HIDDEN       no layer, no stored segments
    VISIBLE      layer shown for the stored segments
    PEEK_HIDDEN  layer hidden, segments and annotations kept

Transitions are pure functions over an immutable OverlayState. The
OverlaySyncEngine controller owns the state of one page session, applies
transitions and drives the painter.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from .layer import LayerSettings, build_layer, update_geometry
from .models import ExtractionResult, HighlightLayer, Segment
from .painters import Painter

logger = logging.getLogger(__name__)

# Outbound notification when a resize changed the page structure
DISABLED_BY_RESIZE = "xray-disabled-by-resize"

DEFAULT_PEEK_KEY = "Shift"
DEFAULT_RESIZE_DEBOUNCE = 0.25

Extractor = Callable[[], ExtractionResult]
Listener = Callable[[str], None]


class OverlayPhase(str, Enum):
    HIDDEN = "hidden"
    VISIBLE = "visible"
    PEEK_HIDDEN = "peek_hidden"


@dataclass(frozen=True)
class OverlayState:
    phase: OverlayPhase = OverlayPhase.HIDDEN
    segments: tuple[Segment, ...] = ()
    peek_latched: bool = False
    # Segments captured when the peek key went down
    peek_saved: tuple[Segment, ...] = ()

    @property
    def is_visible(self) -> bool:
        return self.phase == OverlayPhase.VISIBLE


# ─── Transitions ──────────────────────────────────────────────────────────────


def show(state: OverlayState, segments: list[Segment]) -> OverlayState:
    """Replace whatever is displayed with ``segments``."""
    return OverlayState(phase=OverlayPhase.VISIBLE, segments=tuple(segments))


def remove(state: OverlayState) -> OverlayState:
    return OverlayState()


def hide_temporarily(state: OverlayState) -> tuple[OverlayState, bool]:
    """Hide without discarding. Also reports whether it was visible."""
    if state.phase != OverlayPhase.VISIBLE:
        return state, False
    return replace(state, phase=OverlayPhase.PEEK_HIDDEN), True


def restore(state: OverlayState) -> OverlayState:
    if not state.segments:
        return state
    return replace(
        state, phase=OverlayPhase.VISIBLE, peek_latched=False, peek_saved=()
    )


def resize(
    state: OverlayState, fresh: Optional[list[Segment]]
) -> tuple[OverlayState, bool]:
    """
    Reconcile stored segments with a fresh extraction.

    Segments are correlated by position only. When the count differs the
    page structure changed and the overlay is removed; the returned flag is
    True in that case.
    """
    if not state.is_visible or not state.segments or fresh is None:
        return state, False

    if len(fresh) != len(state.segments):
        return remove(state), True

    moved = tuple(
        old.with_geometry(new.geometry)
        for old, new in zip(state.segments, fresh)
    )
    return replace(state, segments=moved), False


def key_down(state: OverlayState, key: str, peek_key: str) -> OverlayState:
    if key != peek_key or state.peek_latched or not state.is_visible:
        return state
    return replace(
        state,
        phase=OverlayPhase.PEEK_HIDDEN,
        peek_latched=True,
        peek_saved=state.segments,
    )


def key_up(
    state: OverlayState,
    key: str,
    peek_key: str,
    fresh: Optional[list[Segment]],
) -> OverlayState:
    """
    End a key peek. With a fresh extraction, show it with the saved match
    annotations re-attached by index; otherwise restore the old layer.
    An empty fresh extraction removes the overlay.
    """
    if key != peek_key or not state.peek_latched:
        return state

    saved = state.peek_saved
    if fresh is not None and saved:
        merged = [
            seg.with_match(saved[i].matched if i < len(saved) else None)
            for i, seg in enumerate(fresh)
        ]
        if not merged:
            return remove(state)
        return show(state, merged)

    return replace(
        state, phase=OverlayPhase.VISIBLE, peek_latched=False, peek_saved=()
    )


# ─── Resize Debouncing ────────────────────────────────────────────────────────


class ResizeDebouncer:
    """Collapses a burst of resize events into one, ``delay`` after the last."""

    def __init__(
        self,
        delay: float = DEFAULT_RESIZE_DEBOUNCE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay = delay
        self.clock = clock
        self._deadline: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    def trigger(self):
        self._deadline = self.clock() + self.delay

    def cancel(self):
        self._deadline = None

    def due(self) -> bool:
        """True exactly once when the quiet period has elapsed."""
        if self._deadline is None or self.clock() < self._deadline:
            return False
        self._deadline = None
        return True


# ─── Controller ───────────────────────────────────────────────────────────────


class OverlaySyncEngine:
    """
    Owns the overlay state of one page session.

    Not re-entrant: callers serialize commands.
    """

    def __init__(
        self,
        painter: Painter,
        extractor: Optional[Extractor] = None,
        page_size: Optional[Callable[[], tuple[float, float]]] = None,
        layer_settings: Optional[LayerSettings] = None,
        peek_key: str = DEFAULT_PEEK_KEY,
        resize_debounce: float = DEFAULT_RESIZE_DEBOUNCE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.painter = painter
        self.extractor = extractor
        self.page_size = page_size or (lambda: (0.0, 0.0))
        self.layer_settings = layer_settings or LayerSettings()
        self.peek_key = peek_key
        self.debouncer = ResizeDebouncer(resize_debounce, clock)

        self.state = OverlayState()
        self.layer: Optional[HighlightLayer] = None
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    # ── Command surface ──────────────────────────────────────────────

    def show(self, enabled: bool, segments: list[Segment]):
        if enabled and segments:
            self.state = show(self.state, segments)
            self._render()
            logger.info(f"Overlay shown with {len(segments)} segments")
        else:
            self.remove()

    def remove(self):
        self.state = remove(self.state)
        self.debouncer.cancel()
        self._clear()
        logger.info("Overlay removed")

    def hide_temporarily(self) -> bool:
        self.state, was_visible = hide_temporarily(self.state)
        if was_visible:
            self.painter.set_hidden(True)
        return was_visible

    def restore(self):
        previous = self.state
        self.state = restore(self.state)
        if self.state is not previous:
            self._render()

    # ── Page events ──────────────────────────────────────────────────

    def on_resize(self):
        if self.state.is_visible and self.state.segments:
            self.debouncer.trigger()

    def poll(self) -> bool:
        """Run a pending resize reconciliation once its delay has passed."""
        if not self.debouncer.due():
            return False
        self._reconcile_resize()
        return True

    def flush_resize(self):
        """Reconcile immediately, ignoring the debounce delay."""
        self.debouncer.cancel()
        self._reconcile_resize()

    def key_down(self, key: str):
        previous = self.state
        self.state = key_down(self.state, key, self.peek_key)
        if self.state is not previous:
            self.painter.set_hidden(True)

    def key_up(self, key: str):
        if key != self.peek_key or not self.state.peek_latched:
            return
        fresh = self._extract() if self.state.peek_saved else None
        self.state = key_up(self.state, key, self.peek_key, fresh)
        if self.state.phase == OverlayPhase.HIDDEN:
            self.remove()
        elif fresh is not None:
            self._render()
        else:
            self.painter.set_hidden(False)

    # ── Internals ────────────────────────────────────────────────────

    def _reconcile_resize(self):
        if not self.state.is_visible or not self.state.segments:
            return
        fresh = self._extract()
        self.state, structural = resize(self.state, fresh)

        if structural:
            logger.info(
                f"Segment count changed on resize ({len(fresh)}), "
                f"disabling overlay"
            )
            self._clear()
            self._notify(DISABLED_BY_RESIZE)
        elif fresh is not None and self.layer is not None:
            self.layer = update_geometry(
                self.layer,
                list(self.state.segments),
                self.layer_settings,
                self.page_size(),
            )
            self.painter.update(self.layer)

    def _extract(self) -> Optional[list[Segment]]:
        if self.extractor is None:
            return None
        try:
            result = self.extractor()
        except Exception as e:
            logger.warning(f"Re-extraction failed, keeping overlay: {e}")
            return None
        if not result.succeeded:
            logger.warning(f"Re-extraction returned error: {result.error}")
            return None
        return list(result.text_elements)

    def _render(self):
        self.painter.clear()
        self.layer = build_layer(
            list(self.state.segments), self.layer_settings, self.page_size()
        )
        self.painter.render(self.layer)

    def _clear(self):
        self.layer = None
        self.painter.clear()

    def _notify(self, event: str):
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Overlay listener failed on {event}: {e}")
