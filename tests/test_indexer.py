"""Frequency indexes and per-font glyph statistics."""
from __future__ import annotations

import pytest

from glyph_engine.indexer import (
    FontTally,
    FrequencyIndexer,
    collation_key,
    get_collator,
    is_pua,
    locale_collation_key,
    starts_with_ascii_letter,
    starts_with_letter,
)
from glyph_engine.types import GlyphEvent, GlyphKind


def g(cp: int | None, font: int = 0, kind: GlyphKind = GlyphKind.NORMAL) -> GlyphEvent:
    return GlyphEvent(cp, font, 10.0, 0.0, 0.0, 5.0, kind=kind, is_unmapped=cp is None)


# ═══════════════════════════════════════════════════════════════════════════════
# FREQUENCY INDEXER
# ═══════════════════════════════════════════════════════════════════════════════

class TestFrequencyIndexer:
    def test_pages_in_discovery_order_and_count(self):
        idx = FrequencyIndexer()
        for page_no in (3, 1, 2):
            idx.record("glyph", page_no)

        assert idx.pages("glyph") == [3, 1, 2]
        assert idx.count("glyph") == 3
        assert idx.snapshot("count")[0].count == 3

    def test_duplicate_pages_suppressed(self):
        idx = FrequencyIndexer()
        idx.record("word", 1)
        idx.record("word", 1)
        assert idx.pages("word") == [1]
        assert idx.count("word") == 2

    def test_predicate_filters(self):
        idx = FrequencyIndexer(starts_with_letter)
        assert idx.record("word", 1) is True
        assert idx.record("42", 1) is False
        assert "42" not in idx
        assert len(idx) == 1
        assert idx.count("42") == 0
        assert idx.pages("42") == []

    def test_count_order_is_stable(self):
        idx = FrequencyIndexer()
        for w in ["a", "b", "c", "a", "c"]:
            idx.record(w, 1)
        assert [e.key for e in idx.snapshot("count")] == ["a", "c", "b"]

    def test_alpha_order_ignores_case_and_accents(self):
        idx = FrequencyIndexer()
        for w in ["zebra", "Éclair", "apple", "Delta"]:
            idx.record(w, 1)
        assert [e.key for e in idx.snapshot("alpha")] == ["apple", "Delta", "Éclair", "zebra"]

    def test_custom_order(self):
        idx = FrequencyIndexer()
        for w in ["ccc", "a", "bb"]:
            idx.record(w, 1)
        assert [e.key for e in idx.snapshot(lambda e: len(e.key))] == ["a", "bb", "ccc"]

    def test_unknown_order(self):
        with pytest.raises(ValueError):
            FrequencyIndexer().snapshot("random")

    def test_grouped_by_initial(self):
        idx = FrequencyIndexer(starts_with_letter)
        for page_no, w in enumerate(["apple", "Éclair", "avocado", "egg", "zebra"], start=1):
            idx.record(w, page_no)

        groups = idx.grouped_by_initial()
        assert [initial for initial, _ in groups] == ["A", "E", "Z"]
        assert [e.key for e in groups[1][1]] == ["Éclair", "egg"]

    def test_locale_collation(self, monkeypatch):
        # ASCII ordinal order, as in the C locale: capitals first
        monkeypatch.setattr("locale.strxfrm", lambda s: s)
        idx = FrequencyIndexer(collate=get_collator("locale"))
        for page_no, w in enumerate(["apple", "Zebra", "Apricot", "zoo"], start=1):
            idx.record(w, page_no)

        assert [e.key for e in idx.snapshot("alpha")] == ["Apricot", "Zebra", "apple", "zoo"]
        groups = idx.grouped_by_initial()
        assert [initial for initial, _ in groups] == ["A", "Z"]
        assert [e.key for e in groups[0][1]] == ["Apricot", "apple"]

    def test_unknown_collation(self):
        assert get_collator("unicode") is collation_key
        assert get_collator("locale") is locale_collation_key
        with pytest.raises(ValueError):
            get_collator("icu")

    def test_lowercase(self):
        idx = FrequencyIndexer(lowercase=True)
        idx.record("Metadata", 1)
        idx.record("metadata", 2)
        assert idx.count("metadata") == 2
        assert idx.pages("metadata") == [1, 2]

    def test_entry_to_dict(self):
        idx = FrequencyIndexer()
        idx.record("x", 4)
        assert idx.snapshot()[0].to_dict() == {"key": "x", "count": 1, "pages": [4]}


class TestPredicates:
    def test_letters(self):
        assert starts_with_letter("Ärger")
        assert not starts_with_ascii_letter("Ärger")
        assert starts_with_ascii_letter("Zebra")
        assert not starts_with_letter("")
        assert not starts_with_ascii_letter("(x)")

    def test_pua(self):
        assert is_pua(0xE000)
        assert is_pua(0xF8FF)
        assert not is_pua(0xDFFF)
        assert not is_pua(0xF900)
        assert not is_pua(None)

    def test_collation_key(self):
        assert collation_key("Éclair")[0] == "eclair"


# ═══════════════════════════════════════════════════════════════════════════════
# FONT TALLY
# ═══════════════════════════════════════════════════════════════════════════════

class TestFontTally:
    def test_counts(self):
        tally = FontTally()
        tally.record_all(
            [
                g(ord("a")),
                g(ord("f"), kind=GlyphKind.LIGATURE_START),
                g(ord("i"), kind=GlyphKind.LIGATURE_CONTINUATION),
                g(None),
                g(0xF041, font=1),
                g(0xF041, font=1),
                g(0xDC00, kind=GlyphKind.TRAILING_SURROGATE),
                g(0x20, kind=GlyphKind.INSERTED_SEPARATOR),
            ]
        )

        f0 = tally.fonts[0]
        assert (f0.glyph_count, f0.unicode_count, f0.unmapped_count) == (3, 3, 1)
        f1 = tally.fonts[1]
        assert f1.glyph_count == 2
        assert f1.pua == {0xF041: 2}
        assert f1.pua_total == 2
        assert tally.total_glyphs == 5
        assert tally.total_unmapped == 1

    def test_share(self):
        tally = FontTally()
        tally.record_all([g(65, font=0)] * 3 + [g(66, font=1)])
        assert tally.share(0) == pytest.approx(75.0)
        assert tally.share(1) == pytest.approx(25.0)
        assert tally.share(9) == 0.0
        assert [e.font_id for e in tally.by_glyph_count()] == [0, 1]

    def test_share_of_empty_document(self):
        assert FontTally().share(0) == 0.0
