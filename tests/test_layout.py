"""Page content classification."""
from __future__ import annotations

import pytest

from glyph_engine.layout import PageClassifier, classify_page
from glyph_engine.types import GlyphAttr, GlyphEvent, PageClassification, RenderingMode


def g(ch: str, mode: RenderingMode = RenderingMode.VISIBLE, attrs: GlyphAttr = GlyphAttr.NONE) -> GlyphEvent:
    return GlyphEvent(ord(ch), 0, 10.0, 0.0, 100.0, 5.0, attributes=attrs, rendering_mode=mode)


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFICATION RULES
# ═══════════════════════════════════════════════════════════════════════════════

class TestClassifyPage:
    @pytest.mark.parametrize(
        "visible, invisible, image, expected",
        [
            (False, False, False, PageClassification.EMPTY),
            (False, False, True, PageClassification.IMAGE_ONLY),
            (False, True, False, PageClassification.MIXED),
            (False, True, True, PageClassification.SEARCHABLE_IMAGE),
            (True, False, False, PageClassification.VISIBLE_TEXT),
            (True, False, True, PageClassification.VISIBLE_TEXT),
            (True, True, False, PageClassification.MIXED),
            (True, True, True, PageClassification.MIXED),
        ],
    )
    def test_all_combinations(self, visible, invisible, image, expected):
        assert classify_page(visible, invisible, image) is expected

    def test_searchable_image(self):
        assert classify_page(False, True, True) is PageClassification.SEARCHABLE_IMAGE

    def test_empty(self):
        assert classify_page(False, False, False) is PageClassification.EMPTY

    def test_labels(self):
        assert PageClassification.SEARCHABLE_IMAGE.label == "Searchable image"
        assert PageClassification.EMPTY.label == "No text or raster graphics"


# ═══════════════════════════════════════════════════════════════════════════════
# PAGE CLASSIFIER
# ═══════════════════════════════════════════════════════════════════════════════

class TestPageClassifier:
    def test_ocr_layer_over_scan(self):
        clf = PageClassifier()
        clf.observe_all([g("a", RenderingMode.INVISIBLE), g("b", RenderingMode.INVISIBLE)])
        clf.set_image_present(True)
        assert clf.classify() is PageClassification.SEARCHABLE_IMAGE

    def test_skipped_glyphs_do_not_count_as_text(self):
        clf = PageClassifier()
        clf.observe(g("\u0640", RenderingMode.INVISIBLE))
        clf.observe(g("-", attrs=GlyphAttr.DEHYPHENATION_ARTIFACT))
        clf.set_image_present(True)
        assert clf.glyphs_seen == 0
        assert clf.classify() is PageClassification.IMAGE_ONLY

    def test_mixed_visible_and_invisible(self):
        clf = PageClassifier()
        clf.observe_all([g("a"), g("b", RenderingMode.INVISIBLE)])
        assert clf.classify() is PageClassification.MIXED

    def test_to_dict(self):
        clf = PageClassifier()
        clf.observe(g("a"))
        d = clf.to_dict()
        assert d == {
            "classification": "visible_text",
            "label": "Visible text",
            "has_visible_text": True,
            "has_invisible_text": False,
            "has_image": False,
            "glyphs_seen": 1,
        }
