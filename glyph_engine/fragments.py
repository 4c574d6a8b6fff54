"""Word fragment analysis for matches that span line breaks or size changes.

A matched word normally sits on one baseline in one font size. Hyphenated
words, drop caps and the like break it into several rectangles; downstream
consumers (text replacement in particular) have to treat each rectangle
separately and the result is approximate, so every multi-fragment word is
reported through an :class:`AnalysisWarning`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import AnalysisWarning
from .geometry import format_coord
from .segmenter import BASELINE_EPSILON, MetricsLookup, default_metrics
from .types import BBox, GlyphAttr, GlyphEvent, WordFragment

Measure = Callable[[str, float], float]  # (text, font_size) -> width


@dataclass
class WordFragmentAnalyzer:
    metrics: MetricsLookup = default_metrics
    epsilon: float = BASELINE_EPSILON

    def analyze(self, glyphs: Sequence[GlyphEvent]) -> list[WordFragment]:
        fragments: list[WordFragment] = []
        if not glyphs:
            return fragments

        first = glyphs[0]
        m = self.metrics(first.font_id)
        baseline = first.y
        font_size = first.font_size
        llx = first.x
        lly = first.y + m.descender * first.font_size
        urx = first.x + first.width
        ury = first.y + m.ascender * first.font_size

        for g in glyphs[1:]:
            m = self.metrics(g.font_id)
            if abs(baseline - g.y) > self.epsilon or font_size != g.font_size:
                # only the glyph that starts the next fragment decides
                hyphenated = g.has(GlyphAttr.DEHYPHENATION_POST)
                fragments.append(WordFragment(baseline, font_size, BBox(llx, lly, urx, ury), hyphenated))
                baseline = g.y
                font_size = g.font_size
                llx = g.x
                lly = g.y + m.descender * g.font_size
                urx = g.x + g.width
                ury = g.y + m.ascender * g.font_size
            else:
                urx = max(urx, g.x + g.width)
                ury = max(ury, g.y + m.ascender * g.font_size)

        fragments.append(WordFragment(baseline, font_size, BBox(llx, lly, urx, ury), False))
        return fragments


def fragmentation_warning(page_no: int, word: str, fragments: Sequence[WordFragment]) -> AnalysisWarning | None:
    if len(fragments) <= 1:
        return None
    start = fragments[0].bbox
    return AnalysisWarning(
        f'On page {page_no} the word "{word}" extends over {len(fragments)} rectangles, '
        f"starting at x={format_coord(start.llx)}, y={format_coord(start.lly)}, result is questionable.",
        page_no=page_no,
        word=word,
        x=start.llx,
        y=start.lly,
        code="WORD_FRAGMENTED",
    )


def fill_fragments(
    replacement: str,
    fragments: Sequence[WordFragment],
    measure: Measure,
    *,
    page_no: int | None = None,
) -> tuple[list[str], list[AnalysisWarning]]:
    """Distribute ``replacement`` over the rectangles of a fragmented word.

    Every fragment but the last takes at least one character and keeps growing
    while the text (plus a trailing hyphen for hyphenated fragments) still fits
    the fragment width. The last fragment takes whatever is left.
    """
    pieces: list[str] = []
    warnings: list[AnalysisWarning] = []
    pos = 0
    n = len(replacement)

    for i, frag in enumerate(fragments):
        if i == len(fragments) - 1:
            pieces.append(replacement[pos:])
            break
        if pos >= n:
            pieces.append("")
            continue

        suffix = "-" if frag.is_hyphenated else ""
        end = pos + 1
        if measure(replacement[pos:end] + suffix, frag.font_size) > frag.bbox.width:
            warnings.append(
                AnalysisWarning(
                    f'Character "{replacement[pos]}" does not fit into a {format_coord(frag.bbox.width)}pt '
                    f"fragment; placed anyway.",
                    page_no=page_no,
                    word=replacement,
                    x=frag.bbox.llx,
                    y=frag.bbox.lly,
                    code="FRAGMENT_OVERFLOW",
                )
            )
        else:
            while end < n and measure(replacement[pos:end + 1] + suffix, frag.font_size) <= frag.bbox.width:
                end += 1
        pieces.append(replacement[pos:end])
        pos = end

    return pieces, warnings
