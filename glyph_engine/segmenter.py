from __future__ import annotations

from typing import Any, Callable, Hashable, Iterable

from .errors import GeometryError
from .geometry import GeometryAccumulator
from .types import FontMetrics, GlyphAttr, GlyphEvent, GlyphKind, Run

SameUnit = Callable[[GlyphEvent, GlyphEvent], bool]
SkipRule = Callable[[GlyphEvent], bool]
MetricsLookup = Callable[[int], FontMetrics]
RunCallback = Callable[[Run], Any]

U_ARABIC_TATWEEL = 0x640
BASELINE_EPSILON = 0.01


def default_metrics(font_id: int) -> FontMetrics:
    return FontMetrics(name=f"F{font_id}")


def is_iso_control(codepoint: int | None) -> bool:
    if codepoint is None:
        return False
    return codepoint <= 0x1F or 0x7F <= codepoint <= 0x9F


def is_void_glyph(event: GlyphEvent) -> bool:
    """Glyphs that carry no text and must stay invisible to run detection."""
    if event.codepoint == U_ARABIC_TATWEEL:
        return True
    if is_iso_control(event.codepoint):
        return True
    return event.has(GlyphAttr.DEHYPHENATION_ARTIFACT)


def make_skip_rule(*, skip_unmapped: bool = False, skip_separators: bool = False) -> SkipRule:
    def _skip(event: GlyphEvent) -> bool:
        if is_void_glyph(event):
            return True
        if skip_unmapped and event.is_unmapped:
            return True
        if skip_separators and event.kind == GlyphKind.INSERTED_SEPARATOR:
            return True
        return False

    return _skip


# Grouping predicates. The first argument is the glyph that opened the run.

def same_font(anchor: GlyphEvent, event: GlyphEvent) -> bool:
    return anchor.font_id == event.font_id


def baseline_predicate(epsilon: float = BASELINE_EPSILON, *, rendering: bool = False) -> SameUnit:
    def _same(anchor: GlyphEvent, event: GlyphEvent) -> bool:
        if anchor.font_id != event.font_id:
            return False
        if abs(anchor.y - event.y) > epsilon:
            return False
        if rendering and anchor.rendering_mode != event.rendering_mode:
            return False
        return True

    return _same


same_font_and_baseline = baseline_predicate()
same_font_baseline_and_rendering = baseline_predicate(rendering=True)


def key_predicate(key: Callable[[GlyphEvent], Hashable]) -> SameUnit:
    """Adapt a plain key function into a grouping predicate."""
    return lambda anchor, event: key(anchor) == key(event)


class RunSegmenter:
    """Group a page's glyph events into maximal runs sharing a grouping key.

    ``feed`` returns the run that the incoming glyph closed (if any), ``finish``
    flushes the trailing run. Every closed run is also handed to
    ``on_run_closed`` when a callback is given.
    """

    def __init__(
        self,
        same_unit: SameUnit = same_font,
        *,
        metrics: MetricsLookup | None = None,
        skip: SkipRule | None = None,
        on_run_closed: RunCallback | None = None,
    ):
        self.same_unit = same_unit
        self.metrics = metrics or default_metrics
        self.skip = skip or is_void_glyph
        self.on_run_closed = on_run_closed

        self._anchor: GlyphEvent | None = None
        self._geometry = GeometryAccumulator()
        self._text: list[str] = []
        self._glyph_count = 0
        self._unicode_count = 0
        self._unmapped_count = 0
        self._hyphenated = False
        self.runs_closed = 0

    @property
    def has_open_run(self) -> bool:
        return self._anchor is not None

    def feed(self, event: GlyphEvent) -> Run | None:
        if self.skip(event):
            return None

        closed: Run | None = None
        if self._anchor is not None and not self.same_unit(self._anchor, event):
            closed = self._close()

        if self._anchor is None:
            self._anchor = event
        self._accumulate(event)
        return closed

    def finish(self) -> Run | None:
        return self._close()

    def _accumulate(self, event: GlyphEvent) -> None:
        self._geometry.add(event, self.metrics(event.font_id))
        self._text.append(event.char)
        if event.counts_as_glyph:
            self._glyph_count += 1
            if event.is_unmapped:
                self._unmapped_count += 1
            else:
                self._unicode_count += 1
        elif event.kind == GlyphKind.LIGATURE_CONTINUATION:
            self._unicode_count += 1
        if event.has(GlyphAttr.DEHYPHENATION_PRE) or event.has(GlyphAttr.DEHYPHENATION_POST):
            self._hyphenated = True

    def _close(self) -> Run | None:
        anchor = self._anchor
        if anchor is None:
            return None
        try:
            bbox = self._geometry.bbox()
        except GeometryError:
            self._reset()
            return None

        run = Run(
            text="".join(self._text),
            font_id=anchor.font_id,
            bbox=bbox,
            font_size=anchor.font_size,
            x=anchor.x,
            y=anchor.y,
            glyph_count=self._glyph_count,
            unicode_count=self._unicode_count,
            unmapped_count=self._unmapped_count,
            is_hyphenated=self._hyphenated,
            rendering_mode=anchor.rendering_mode,
        )
        self._reset()
        self.runs_closed += 1
        if self.on_run_closed is not None:
            self.on_run_closed(run)
        return run

    def _reset(self) -> None:
        self._anchor = None
        self._geometry.reset()
        self._text = []
        self._glyph_count = 0
        self._unicode_count = 0
        self._unmapped_count = 0
        self._hyphenated = False


def segment(
    events: Iterable[GlyphEvent],
    same_unit: SameUnit = same_font,
    *,
    metrics: MetricsLookup | None = None,
    skip: SkipRule | None = None,
) -> list[Run]:
    runs: list[Run] = []
    seg = RunSegmenter(same_unit, metrics=metrics, skip=skip, on_run_closed=runs.append)
    for ev in events:
        seg.feed(ev)
    seg.finish()
    return runs
