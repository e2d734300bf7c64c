"""
Test Suite for Segment X-Ray
============================
Unit tests for the codec, walker, visibility oracle, highlight layer,
overlay state machine and report engine.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from segxray.codec import (
    END_MARKER,
    START_MARKER,
    contains_markers,
    decode,
    decode_metadata,
    decode_to_json,
    encode,
    encode_metadata,
    strip_markers,
    wrap,
)
from segxray.errors import DecodeError, MissingRootError
from segxray.layer import (
    LayerSettings,
    build_layer,
    highlight_rect,
    tooltip_text,
)
from segxray.models import (
    ZERO_RECT,
    ExtractionResult,
    MatchStatus,
    Rect,
    Segment,
    UnterminatedPolicy,
    clean_metadata,
)
from segxray.oracle import OracleSettings, VisibilityOracle
from segxray.overlay import (
    DISABLED_BY_RESIZE,
    OverlayPhase,
    OverlayState,
    OverlaySyncEngine,
    ResizeDebouncer,
    hide_temporarily,
    key_down,
    key_up,
    resize,
    restore,
    show,
)
from segxray.painters import MemoryPainter
from segxray.report import ReportEngine
from segxray.snapshot import SnapshotRenderTree
from segxray.walker import SegmentWalker, extract_text_and_metadata


def _page(*children, viewport=(1280, 800), scroll=(0, 0)) -> SnapshotRenderTree:
    """Snapshot with a full-width body holding ``children``."""
    return SnapshotRenderTree.from_dict({
        "viewport": {"width": viewport[0], "height": viewport[1]},
        "scroll": {"x": scroll[0], "y": scroll[1]},
        "root": {
            "tag": "body",
            "rect": [0, 0, 1280, 2000],
            "children": list(children),
        },
    })


def _p(*texts, rect=(10, 10, 400, 20), **extra) -> dict:
    return {"tag": "p", "rect": list(rect), "children": list(texts), **extra}


def _segment(text="abc", geometry=None, **metadata) -> Segment:
    return Segment.build(
        text, geometry or Rect(x=10, y=10, width=24, height=16), metadata
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CODEC TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCodec:
    """Test the zero-width nibble codec."""

    def test_decode_pairs_nibbles(self):
        payload = chr(0xFE00 + 0x4) + chr(0xFE00 + 0x1)
        assert decode(payload) == b"A"

    def test_encode_inverts_decode(self):
        data = bytes(range(256))
        payload = encode(data)
        assert len(payload) == 512
        assert decode(payload) == data

    def test_odd_length_rejected(self):
        with pytest.raises(DecodeError):
            decode(chr(0xFE00) * 3)

    def test_out_of_range_nibble_rejected(self):
        with pytest.raises(DecodeError):
            decode(chr(0xFE00) + "A")

    def test_decode_empty(self):
        assert decode("") == b""

    def test_decode_to_json_object(self):
        payload = encode_metadata({"g": "greeting", "n": 2})[len(START_MARKER):]
        assert decode_to_json(payload) == {"g": "greeting", "n": 2}

    def test_decode_to_json_empty_payload(self):
        assert decode_to_json("") == {}

    def test_decode_to_json_whitespace_payload(self):
        assert decode_to_json(encode(b"  \n")) == {}

    def test_decode_to_json_non_object(self):
        assert decode_to_json(encode(b"[1, 2]")) == {"value": [1, 2]}

    def test_decode_to_json_bad_json(self):
        metadata = decode_to_json(encode(b"{not json"))
        assert metadata["decodingError"]

    def test_decode_to_json_never_raises_on_odd_length(self):
        metadata = decode_to_json(chr(0xFE01))
        assert "even" in metadata["decodingError"]

    def test_decode_metadata_separates_error(self):
        metadata, error = decode_metadata(encode(b"{not json"))
        assert metadata == {}
        assert error

    def test_decode_metadata_keeps_producer_error_key(self):
        payload = encode(b'{"decodingError": "theirs"}')
        assert decode_metadata(payload) == ({"decodingError": "theirs"}, None)

    def test_non_ascii_metadata(self):
        payload = encode_metadata({"g": "café ✓"})[len(START_MARKER):]
        assert decode_to_json(payload) == {"g": "café ✓"}

    def test_wrap_and_strip(self):
        marked = wrap("Hello", {"g": "hello"})
        assert marked.startswith(START_MARKER)
        assert marked.endswith(END_MARKER)
        assert contains_markers(marked)
        assert strip_markers("Say " + marked + "!") == "Say Hello!"

    def test_plain_text_has_no_markers(self):
        assert not contains_markers("plain text")


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestRect:
    """Test Rect geometry helpers."""

    def test_edges(self):
        r = Rect.from_edges(10, 20, 50, 60)
        assert (r.x, r.y, r.width, r.height) == (10, 20, 40, 40)
        assert (r.right, r.bottom) == (50, 60)

    def test_zero_rect(self):
        assert ZERO_RECT.is_zero
        assert not Rect(x=0, y=0, width=1, height=0).is_zero

    def test_intersection(self):
        a = Rect(x=0, y=0, width=100, height=100)
        b = Rect(x=50, y=60, width=100, height=100)
        assert a.intersection(b) == Rect(x=50, y=60, width=50, height=40)

    def test_touching_rects_do_not_intersect(self):
        a = Rect(x=0, y=0, width=10, height=10)
        b = Rect(x=10, y=0, width=10, height=10)
        assert a.intersection(b) is None

    def test_union(self):
        a = Rect(x=0, y=0, width=10, height=10)
        b = Rect(x=20, y=5, width=10, height=10)
        assert a.union(b) == Rect(x=0, y=0, width=30, height=15)

    def test_contains_point_half_open(self):
        r = Rect(x=0, y=0, width=10, height=10)
        assert r.contains_point(0, 0)
        assert not r.contains_point(10, 5)


class TestSegment:
    """Test the Segment model and its wire form."""

    def test_metadata_merged_flat(self):
        seg = _segment(g="greeting", count=3)
        assert seg.metadata == {"g": "greeting", "count": 3}
        wire = seg.to_wire()
        assert wire["g"] == "greeting"
        assert wire["text"] == "abc"
        assert wire["geometry"] == {"x": 10, "y": 10, "width": 24, "height": 16}

    def test_reserved_keys_win(self):
        seg = Segment.build(
            "real", ZERO_RECT, {"text": "fake", "geometry": "nope", "g": "x"}
        )
        assert seg.text == "real"
        assert seg.geometry == ZERO_RECT
        assert seg.metadata == {"g": "x"}

    def test_unset_annotations_omitted(self):
        wire = _segment().to_wire()
        assert set(wire) == {"text", "geometry"}

    def test_decoding_error_alias(self):
        seg = Segment.build("abc", ZERO_RECT, decoding_error="bad")
        assert seg.decoding_error == "bad"
        assert seg.to_wire()["decodingError"] == "bad"
        assert seg.metadata == {}

    def test_metadata_cannot_set_annotations(self):
        seg = Segment.build(
            "abc", ZERO_RECT,
            {"matched": "partial", "decodingError": 5, "unterminated": "x",
             "g": "a"},
        )
        assert seg.matched is None
        assert seg.decoding_error is None
        assert seg.unterminated is None
        assert seg.metadata == {
            "g": "a",
            "shadowed": {
                "matched": "partial", "decodingError": 5, "unterminated": "x",
            },
        }

    def test_metadata_annotation_values_not_coerced(self):
        seg = Segment.build("abc", ZERO_RECT, {"matched": "yes"}, matched=False)
        assert seg.matched is False
        assert seg.metadata["shadowed"] == {"matched": "yes"}

    def test_visibility_and_status(self):
        assert _segment().is_visible
        assert not _segment(geometry=ZERO_RECT).is_visible
        assert _segment().match_status == MatchStatus.UNKNOWN
        assert _segment().with_match(True).match_status == MatchStatus.MATCHED
        assert _segment().with_match(False).match_status == MatchStatus.UNMATCHED

    def test_clean_metadata(self):
        seg = _segment(g="x", empty=None).with_match(True)
        assert clean_metadata(seg) == {"g": "x"}


class TestExtractionResult:
    """Test the extraction call result."""

    def test_ok_wire(self):
        result = ExtractionResult.ok([_segment(g="x")])
        wire = result.to_wire()
        assert list(wire) == ["textElements"]
        assert wire["textElements"][0]["g"] == "x"

    def test_error_wire(self):
        result = ExtractionResult.failed("Document body not found.")
        assert not result.succeeded
        assert result.to_wire() == {"error": "Document body not found."}

    def test_from_wire(self):
        wire = ExtractionResult.ok([_segment(g="x")]).to_wire()
        result = ExtractionResult.from_wire(wire)
        assert result.succeeded
        assert result.text_elements[0].metadata == {"g": "x"}
        assert result.text_elements[0].geometry.width == 24


# ═══════════════════════════════════════════════════════════════════════════════
# WALKER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSegmentWalker:
    """Test segment reconstruction over snapshot trees."""

    def test_single_node_segment(self):
        tree = _page(_p(wrap("abc", {"g": "greeting"})))
        result = extract_text_and_metadata(tree)

        assert result.succeeded
        assert len(result.text_elements) == 1
        seg = result.text_elements[0]
        assert seg.text == "abc"
        assert seg.metadata == {"g": "greeting"}
        assert seg.geometry == Rect(x=10, y=10, width=24, height=16)

    def test_segment_across_nodes_matches_single_node(self):
        meta = {"g": "split"}
        split = _page(_p(
            "before " + encode_metadata(meta) + "ab",
            "cd",
            "ef" + END_MARKER + " after",
        ))
        joined = _page(_p("before " + wrap("abcdef", meta) + " after"))

        split_seg = extract_text_and_metadata(split).text_elements
        joined_seg = extract_text_and_metadata(joined).text_elements

        assert len(split_seg) == len(joined_seg) == 1
        assert split_seg[0].text == joined_seg[0].text == "abcdef"
        assert split_seg[0].geometry == joined_seg[0].geometry
        assert split_seg[0].geometry == Rect(x=66, y=10, width=48, height=16)

    def test_several_segments_in_one_node(self):
        tree = _page(_p(
            wrap("one", {"g": "1"}) + " and " + wrap("two", {"g": "2"})
        ))
        segments = extract_text_and_metadata(tree).text_elements
        assert [s.text for s in segments] == ["one", "two"]
        assert [s.metadata["g"] for s in segments] == ["1", "2"]

    def test_resumes_after_end_in_closing_node(self):
        tree = _page(_p(
            encode_metadata({"g": "a"}) + "first",
            END_MARKER + " " + wrap("second", {"g": "b"}),
        ))
        segments = extract_text_and_metadata(tree).text_elements
        assert [s.text for s in segments] == ["first", "second"]

    def test_hidden_node_text_skipped(self):
        tree = _page(_p(
            encode_metadata({"g": "x"}) + "ab",
            {"tag": "span", "rect": [0, 0, 0, 0],
             "style": {"display": "none"}, "children": ["HIDDEN"]},
            "cd" + END_MARKER,
        ))
        segments = extract_text_and_metadata(tree).text_elements
        assert len(segments) == 1
        assert segments[0].text == "abcd"

    def test_transparent_node_skipped(self):
        tree = _page(_p(wrap("abc", {"g": "x"}), style={"opacity": 0}))
        assert extract_text_and_metadata(tree).text_elements == []

    def test_disallowed_tags_skipped(self):
        tree = _page(
            {"tag": "script", "rect": [0, 0, 100, 20],
             "children": [wrap("code", {"g": "x"})]},
            {"tag": "textarea", "rect": [0, 30, 100, 20],
             "children": [wrap("input", {"g": "y"})]},
        )
        assert extract_text_and_metadata(tree).text_elements == []

    def test_quoted_start_marker_ignored(self):
        tree = _page(_p('title="' + wrap("abc", {"g": "x"}) + '"'))
        assert extract_text_and_metadata(tree).text_elements == []

    def test_angle_bracket_start_marker_ignored(self):
        tree = _page(_p("<" + wrap("abc", {"g": "x"})))
        assert extract_text_and_metadata(tree).text_elements == []

    def test_malformed_payload_still_emitted(self):
        marked = START_MARKER + chr(0xFE01) + "abc" + END_MARKER
        tree = _page(_p(marked, wrap("next", {"g": "ok"})))
        segments = extract_text_and_metadata(tree).text_elements

        assert len(segments) == 2
        assert segments[0].text == "abc"
        assert segments[0].decoding_error
        assert segments[1].metadata == {"g": "ok"}

    def test_producer_matched_key_kept_out_of_annotation(self):
        tree = _page(_p(
            "lead " + wrap("ok", {"g": "first"}) + " "
            + wrap("abc", {"matched": "partial", "g": "a"})
        ))
        result = extract_text_and_metadata(tree)

        assert result.succeeded
        assert [s.text for s in result.text_elements] == ["ok", "abc"]
        seg = result.text_elements[1]
        assert seg.matched is None
        assert seg.match_status == MatchStatus.UNKNOWN
        assert seg.metadata == {"g": "a", "shadowed": {"matched": "partial"}}

    def test_producer_decoding_error_key_is_not_an_error(self):
        tree = _page(_p(wrap("abc", {"decodingError": 5, "g": "a"})))
        seg = extract_text_and_metadata(tree).text_elements[0]

        assert seg.decoding_error is None
        assert "decodingError" not in seg.to_wire()
        assert seg.metadata["shadowed"] == {"decodingError": 5}

    def test_producer_matched_flag_not_coerced(self):
        tree = _page(_p(wrap("abc", {"matched": "yes"})))
        seg = extract_text_and_metadata(tree).text_elements[0]
        assert seg.matched is None

    def test_rejected_metadata_recorded_on_segment(self):
        with pytest.raises(ValidationError) as exc:
            Segment.model_validate({})
        fallback = Segment(text="abc", decoding_error="Metadata rejected")
        tree = _page(_p(wrap("abc", {"g": "x"}), wrap("def", {"g": "y"})))

        with patch.object(
            Segment, "build",
            side_effect=[exc.value, fallback, Segment(text="def")],
        ) as build:
            result = extract_text_and_metadata(tree)

        assert result.succeeded
        assert [s.text for s in result.text_elements] == ["abc", "def"]
        retry = build.call_args_list[1]
        assert retry.kwargs["decoding_error"].startswith("Metadata rejected")
        assert len(retry.args) == 2

    def test_missing_root(self):
        result = extract_text_and_metadata(SnapshotRenderTree(None))
        assert result.to_wire() == {"error": "Document body not found."}

    def test_scan_raises_on_missing_root(self):
        with pytest.raises(MissingRootError):
            SegmentWalker(SnapshotRenderTree(None)).scan()

    def test_unterminated_dropped_by_default(self):
        tree = _page(_p(encode_metadata({"g": "x"}) + "abc"))
        assert extract_text_and_metadata(tree).text_elements == []

    def test_unterminated_emitted_when_asked(self):
        tree = _page(_p(encode_metadata({"g": "x"}) + "abc", "def"))
        result = extract_text_and_metadata(
            tree, unterminated_policy=UnterminatedPolicy.EMIT
        )
        seg = result.text_elements[0]
        assert seg.text == "abcdef"
        assert seg.unterminated is True
        assert seg.to_wire()["unterminated"] is True

    def test_scroll_offset_added(self):
        tree = _page(_p(wrap("abc", {"g": "x"})), scroll=(0, 500))
        seg = extract_text_and_metadata(tree).text_elements[0]
        assert seg.geometry == Rect(x=10, y=510, width=24, height=16)

    def test_occluded_segment_has_zero_geometry(self):
        tree = _page(
            _p(wrap("abc", {"g": "x"})),
            {"tag": "div", "rect": [0, 0, 1280, 100]},
        )
        seg = extract_text_and_metadata(tree).text_elements[0]
        assert seg.geometry == ZERO_RECT
        assert seg.text == "abc"

    def test_geometry_failure_reads_as_hidden(self):
        tree = _page(_p(wrap("abc", {"g": "x"})))
        tree.range_rect = MagicMock(side_effect=RuntimeError("layout"))
        seg = extract_text_and_metadata(tree).text_elements[0]
        assert seg.geometry == ZERO_RECT

    def test_style_failure_keeps_node(self):
        tree = _page(_p(wrap("abc", {"g": "x"})))
        walker = SegmentWalker(tree)
        tree.computed_style = MagicMock(side_effect=RuntimeError("detached"))
        segments = walker.scan()
        assert [s.text for s in segments] == ["abc"]

    def test_walk_is_repeatable(self):
        walker = SegmentWalker(_page(_p(wrap("abc", {"g": "x"}))))
        first = walker.walk()
        second = walker.walk()
        assert first == second


# ═══════════════════════════════════════════════════════════════════════════════
# VISIBILITY ORACLE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestVisibilityOracle:
    """Test the visibility decision sequence."""

    def _tree_and_owner(self, *extra, rect=(10, 10, 400, 20), style=None):
        p = _p("text", rect=rect, style=style or {})
        tree = _page(p, *extra)
        owner = tree.root.children[0]
        return tree, owner

    def test_zero_area_rejected(self):
        tree, owner = self._tree_and_owner()
        oracle = VisibilityOracle(tree)
        assert not oracle.is_visible(Rect(x=10, y=10, width=0, height=16), owner)
        assert oracle.explain(ZERO_RECT, owner) == "empty rectangle"

    def test_unclipped_centered_rect_visible(self):
        tree, owner = self._tree_and_owner(rect=(540, 390, 200, 20))
        rect = Rect(x=600, y=392, width=80, height=16)
        assert VisibilityOracle(tree).is_visible(rect, owner)

    def test_unrelated_element_at_corners(self):
        cover = {"tag": "div", "rect": [0, 0, 1280, 800], "z": 5}
        tree, owner = self._tree_and_owner(cover)
        rect = Rect(x=10, y=10, width=24, height=16)
        assert VisibilityOracle(tree).explain(rect, owner) == "corner occluded"

    def test_invisible_cover_does_not_occlude(self):
        cover = {"tag": "div", "rect": [0, 0, 1280, 800], "z": 5,
                 "style": {"visibility": "hidden"}}
        tree, owner = self._tree_and_owner(cover)
        rect = Rect(x=10, y=10, width=24, height=16)
        assert VisibilityOracle(tree).is_visible(rect, owner)

    def test_outside_viewport(self):
        tree, owner = self._tree_and_owner(rect=(0, 900, 400, 20))
        rect = Rect(x=0, y=900, width=40, height=16)
        assert VisibilityOracle(tree).explain(rect, owner) == "outside viewport"

    def test_corner_outside_viewport(self):
        tree, owner = self._tree_and_owner(rect=(0, 790, 400, 20))
        rect = Rect(x=10, y=790, width=40, height=16)
        assert (
            VisibilityOracle(tree).explain(rect, owner)
            == "corner outside viewport"
        )

    def _clipped_tree(self, text_width):
        clip = {
            "tag": "div",
            "rect": [0, 0, 100, 100],
            "style": {"overflow": "hidden"},
            "children": [_p("x" * text_width, rect=(0, 0, 400, 20))],
        }
        tree = _page(clip)
        owner = tree.root.children[0].children[0]
        return tree, owner

    def test_mostly_clipped_rejected(self):
        tree, owner = self._clipped_tree(30)
        rect = Rect(x=0, y=0, width=240, height=16)
        assert (
            VisibilityOracle(tree).explain(rect, owner)
            == "mostly clipped by ancestor"
        )

    def test_half_visible_in_clip_accepted_by_clipping_check(self):
        tree, owner = self._clipped_tree(20)
        rect = Rect(x=0, y=0, width=160, height=16)
        oracle = VisibilityOracle(tree)
        assert oracle._check_clipping(rect, owner) is None

    def test_clip_threshold_configurable(self):
        tree, owner = self._clipped_tree(20)
        rect = Rect(x=0, y=0, width=160, height=16)
        oracle = VisibilityOracle(tree, OracleSettings(clip_threshold=0.9))
        assert oracle._check_clipping(rect, owner) == "mostly clipped by ancestor"

    def test_overflow_axis_clips(self):
        clip = {
            "tag": "div",
            "rect": [0, 0, 100, 100],
            "style": {"overflowX": "scroll"},
            "children": [_p("x", rect=(0, 0, 400, 20))],
        }
        tree = _page(clip)
        owner = tree.root.children[0].children[0]
        rect = Rect(x=200, y=0, width=40, height=16)
        assert (
            VisibilityOracle(tree).explain(rect, owner)
            == "outside clipping ancestor"
        )

    def test_query_failure_reads_as_not_visible(self):
        tree = MagicMock()
        tree.computed_style.side_effect = RuntimeError("layout")
        oracle = VisibilityOracle(tree)
        rect = Rect(x=10, y=10, width=24, height=16)
        assert oracle.is_visible(rect, object()) is False
        assert "geometry query failed" in oracle.explain(rect, object())


# ═══════════════════════════════════════════════════════════════════════════════
# HIGHLIGHT LAYER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestHighlightLayer:
    """Test highlight box construction."""

    def test_padding(self):
        box = highlight_rect(Rect(x=10, y=10, width=24, height=16), LayerSettings())
        assert box == Rect(x=6, y=6, width=32, height=24)

    def test_minimum_size(self):
        box = highlight_rect(Rect(x=10, y=10, width=5, height=4), LayerSettings())
        assert (box.width, box.height) == (28, 24)

    def test_tooltip(self):
        seg = _segment(g="hello", key="v")
        assert tooltip_text(0, seg, LayerSettings()) == (
            "Segment #1\nText: abc\n\nG: hello\nKey: v"
        )

    def test_tooltip_truncation(self):
        seg = _segment(text="t" * 70, g="v" * 50)
        lines = tooltip_text(2, seg, LayerSettings()).split("\n")
        assert lines[0] == "Segment #3"
        assert lines[1] == "Text: " + "t" * 60 + "..."
        assert lines[3] == "G: " + "v" * 40 + "..."

    def test_tooltip_decoding_error(self):
        seg = Segment.build("abc", ZERO_RECT, decoding_error="odd length")
        tooltip = tooltip_text(0, seg, LayerSettings())
        assert tooltip.endswith("Decode Error: odd length")
        assert "DecodingError" not in tooltip

    def test_layer_keyed_by_index(self):
        segments = [
            _segment(g="one").with_match(True),
            _segment(g="two").with_match(False),
            _segment(g=3),
        ]
        layer = build_layer(segments, LayerSettings(), (1280, 2000))

        assert len(layer) == 3
        assert (layer.width, layer.height) == (1280, 2000)
        assert [h.index for h in layer.highlights] == [0, 1, 2]
        assert [h.status for h in layer.highlights] == [
            MatchStatus.MATCHED, MatchStatus.UNMATCHED, MatchStatus.UNKNOWN,
        ]
        assert [h.copy_value for h in layer.highlights] == ["one", "two", None]


# ═══════════════════════════════════════════════════════════════════════════════
# OVERLAY STATE MACHINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestOverlayTransitions:
    """Test the pure overlay transitions."""

    def test_show_from_any_state(self):
        state = show(OverlayState(), [_segment()])
        assert state.phase == OverlayPhase.VISIBLE
        assert len(state.segments) == 1

    def test_hide_reports_previous_visibility(self):
        visible = show(OverlayState(), [_segment()])
        hidden, was_visible = hide_temporarily(visible)
        assert was_visible is True
        assert hidden.phase == OverlayPhase.PEEK_HIDDEN
        assert hidden.segments == visible.segments

        again, was_visible = hide_temporarily(hidden)
        assert was_visible is False
        assert again is hidden

    def test_restore_without_segments_is_noop(self):
        state = OverlayState()
        assert restore(state) is state

    def test_resize_same_count_keeps_annotations(self):
        state = show(OverlayState(), [_segment().with_match(True)])
        moved = _segment(geometry=Rect(x=50, y=60, width=24, height=16))
        new_state, structural = resize(state, [moved])

        assert structural is False
        assert new_state.segments[0].geometry == moved.geometry
        assert new_state.segments[0].matched is True

    def test_resize_count_change_removes(self):
        state = show(OverlayState(), [_segment()])
        new_state, structural = resize(state, [_segment(), _segment()])
        assert structural is True
        assert new_state == OverlayState()

    def test_key_down_ignored_unless_visible(self):
        state = OverlayState()
        assert key_down(state, "Shift", "Shift") is state

    def test_key_up_empty_extraction_removes(self):
        peeking = key_down(
            show(OverlayState(), [_segment().with_match(True)]), "Shift", "Shift"
        )
        assert key_up(peeking, "Shift", "Shift", []) == OverlayState()

    def test_key_up_without_extraction_restores(self):
        shown = show(OverlayState(), [_segment().with_match(True)])
        peeking = key_down(shown, "Shift", "Shift")
        restored = key_up(peeking, "Shift", "Shift", None)
        assert restored.phase == OverlayPhase.VISIBLE
        assert restored.segments == shown.segments


class TestOverlaySyncEngine:
    """Test the overlay controller against a recording painter."""

    def _engine(self, fresh=None, clock=None):
        self.painter = MemoryPainter()
        self.calls = 0
        self.fresh = fresh

        def extractor():
            self.calls += 1
            if isinstance(self.fresh, Exception):
                raise self.fresh
            return ExtractionResult.ok(self.fresh or [])

        self.events = []
        overlay = OverlaySyncEngine(
            self.painter,
            extractor=extractor,
            page_size=lambda: (1280.0, 2000.0),
            clock=clock or FakeClock(),
        )
        overlay.add_listener(self.events.append)
        return overlay

    def _annotated(self):
        return [
            _segment(g="a").with_match(True),
            _segment(g="b", geometry=Rect(x=10, y=40, width=24, height=16))
            .with_match(False),
        ]

    def test_show_renders_layer(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())

        assert overlay.state.phase == OverlayPhase.VISIBLE
        assert self.painter.is_showing
        assert len(self.painter.layer) == 2
        assert self.painter.operations == ["clear", "render"]

    def test_show_disabled_removes(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        overlay.show(False, self._annotated())
        assert overlay.state.phase == OverlayPhase.HIDDEN
        assert self.painter.layer is None

    def test_show_empty_removes(self):
        overlay = self._engine()
        overlay.show(True, [])
        assert overlay.state.phase == OverlayPhase.HIDDEN

    def test_peek_cycle_is_identical(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        before_state = overlay.state
        before_layer = self.painter.layer

        assert overlay.hide_temporarily() is True
        assert not self.painter.is_showing
        assert overlay.state.segments == before_state.segments

        overlay.restore()
        assert overlay.state == before_state
        assert self.painter.layer == before_layer
        assert self.painter.is_showing

    def test_hide_when_hidden(self):
        overlay = self._engine()
        assert overlay.hide_temporarily() is False
        assert self.painter.operations == []

    def test_remove(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        overlay.remove()
        assert overlay.state == OverlayState()
        assert overlay.layer is None
        assert self.painter.layer is None

    def test_resize_same_count_updates_geometry(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        self.fresh = [
            _segment(g="a", geometry=Rect(x=100, y=10, width=24, height=16)),
            _segment(g="b", geometry=Rect(x=100, y=40, width=24, height=16)),
        ]

        overlay.on_resize()
        overlay.flush_resize()

        assert overlay.state.phase == OverlayPhase.VISIBLE
        assert [s.matched for s in overlay.state.segments] == [True, False]
        assert [s.geometry.x for s in overlay.state.segments] == [100, 100]
        assert [h.left for h in self.painter.layer.highlights] == [96, 96]
        assert [h.status for h in self.painter.layer.highlights] == [
            MatchStatus.MATCHED, MatchStatus.UNMATCHED,
        ]
        assert self.painter.operations[-1] == "update"
        assert self.events == []

    def test_resize_count_change_disables_once(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        self.fresh = [_segment()]

        overlay.on_resize()
        overlay.flush_resize()
        overlay.on_resize()
        overlay.flush_resize()

        assert overlay.state.phase == OverlayPhase.HIDDEN
        assert self.painter.layer is None
        assert self.events == [DISABLED_BY_RESIZE]

    def test_resize_walker_failure_keeps_layer(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        before = overlay.state
        self.fresh = RuntimeError("walker gone")

        overlay.flush_resize()

        assert overlay.state == before
        assert self.painter.is_showing
        assert self.events == []

    def test_resize_ignored_when_hidden(self):
        overlay = self._engine()
        overlay.on_resize()
        assert not overlay.debouncer.pending
        overlay.flush_resize()
        assert self.calls == 0

    def test_resize_debounced(self):
        clock = FakeClock()
        overlay = self._engine(clock=clock)
        overlay.show(True, self._annotated())
        self.fresh = self._annotated()

        overlay.on_resize()
        clock.now = 0.1
        assert overlay.poll() is False
        overlay.on_resize()
        clock.now = 0.3
        assert overlay.poll() is False
        clock.now = 0.6
        assert overlay.poll() is True
        assert overlay.poll() is False
        assert self.calls == 1

    def test_key_peek_reattaches_annotations(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        self.fresh = [
            _segment(g="a", geometry=Rect(x=10, y=200, width=24, height=16)),
            _segment(g="b", geometry=Rect(x=10, y=230, width=24, height=16)),
        ]

        overlay.key_down("Shift")
        assert overlay.state.phase == OverlayPhase.PEEK_HIDDEN
        assert self.painter.hidden

        overlay.key_up("Shift")
        assert overlay.state.phase == OverlayPhase.VISIBLE
        assert overlay.state.peek_latched is False
        assert [s.matched for s in overlay.state.segments] == [True, False]
        assert [s.geometry.y for s in overlay.state.segments] == [200, 230]
        assert self.painter.is_showing

    def test_key_down_latched(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        overlay.key_down("Shift")
        ops = list(self.painter.operations)
        latched = overlay.state

        overlay.key_down("Shift")
        assert overlay.state is latched
        assert self.painter.operations == ops

    def test_other_keys_ignored(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        overlay.key_down("Alt")
        overlay.key_up("Alt")
        assert overlay.state.phase == OverlayPhase.VISIBLE
        assert self.calls == 0

    def test_key_up_walker_failure_restores_old_layer(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        before = overlay.state.segments
        self.fresh = RuntimeError("walker gone")

        overlay.key_down("Shift")
        overlay.key_up("Shift")

        assert overlay.state.phase == OverlayPhase.VISIBLE
        assert overlay.state.segments == before
        assert self.painter.is_showing

    def test_key_up_empty_page_removes_overlay(self):
        overlay = self._engine()
        overlay.show(True, self._annotated())
        self.fresh = []

        overlay.key_down("Shift")
        overlay.key_up("Shift")

        assert overlay.state == OverlayState()
        assert overlay.layer is None
        assert self.painter.layer is None
        assert not self.painter.is_showing
        assert self.painter.operations[-1] == "clear"

    def test_listener_failure_does_not_propagate(self):
        overlay = self._engine()
        overlay.add_listener(MagicMock(side_effect=RuntimeError("gone")))
        overlay.show(True, self._annotated())
        self.fresh = [_segment()]
        overlay.flush_resize()
        assert self.events == [DISABLED_BY_RESIZE]


class TestResizeDebouncer:
    """Test the resize debouncer on its own."""

    def test_due_once(self):
        clock = FakeClock()
        debouncer = ResizeDebouncer(0.25, clock)
        assert not debouncer.due()
        debouncer.trigger()
        assert debouncer.pending
        clock.now = 0.25
        assert debouncer.due()
        assert not debouncer.pending
        assert not debouncer.due()

    def test_cancel(self):
        clock = FakeClock()
        debouncer = ResizeDebouncer(0.25, clock)
        debouncer.trigger()
        debouncer.cancel()
        clock.now = 1.0
        assert not debouncer.due()


# ═══════════════════════════════════════════════════════════════════════════════
# REPORT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestReportEngine:
    """Test the extraction report."""

    def test_counts(self):
        segments = [
            _segment(g="a").with_match(True),
            Segment.build("b", ZERO_RECT, decoding_error="bad"),
            Segment.build("c", ZERO_RECT, {"g": "c", "n": 1}, unterminated=True),
        ]
        report = ReportEngine().validate(ExtractionResult.ok(segments))

        assert report.total_segments == 3
        assert report.visible_segments == 1
        assert report.hidden_segments == 2
        assert report.decoding_errors == [1]
        assert report.unterminated_segments == [2]
        assert (report.matched, report.unmatched, report.unknown) == (1, 0, 2)
        assert report.metadata_keys == {"g": 2, "n": 1}
        assert report.visible_rate == 33.33

    def test_failed_result(self):
        report = ReportEngine().validate(ExtractionResult.failed("no body"))
        assert report.error == "no body"
        assert report.total_segments == 0

    def test_empty_result(self):
        report = ReportEngine().validate(ExtractionResult.ok([]))
        assert report.visible_rate == 0.0
        assert "visible_rate" in report.model_dump()

