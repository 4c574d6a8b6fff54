from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from .errors import GeometryError
from .types import BBox, FontMetrics, GlyphEvent


@dataclass
class GeometryAccumulator:
    """Bounding box of the run currently being built.

    llx and lly are taken from the first glyph, urx and ury are running
    maxima. All values stay in PDF default space (origin lower-left).
    """

    llx: float = 0.0
    lly: float = 0.0
    urx: float = 0.0
    ury: float = 0.0
    glyphs: int = 0

    @property
    def is_empty(self) -> bool:
        return self.glyphs == 0

    def reset(self) -> None:
        self.llx = self.lly = self.urx = self.ury = 0.0
        self.glyphs = 0

    def add(self, event: GlyphEvent, metrics: FontMetrics) -> None:
        top = event.y + metrics.ascender * event.font_size
        right = event.x + event.width
        if self.glyphs == 0:
            self.llx = event.x
            self.lly = event.y + metrics.descender * event.font_size
            self.urx = right
            self.ury = top
        else:
            self.urx = max(self.urx, right)
            self.ury = max(self.ury, top)
        self.glyphs += 1

    def bbox(self) -> BBox:
        if self.glyphs == 0:
            raise GeometryError("bounding box requested for an empty run")
        return BBox(self.llx, self.lly, self.urx, self.ury)


def union_boxes(boxes: Iterable[BBox]) -> BBox:
    """Overall box of an annotation spanning several runs."""
    arr = np.array([b.as_list() for b in boxes], dtype=np.float64)
    if arr.size == 0:
        raise GeometryError("union of zero boxes")
    return BBox(
        float(arr[:, 0].min()),
        float(arr[:, 1].min()),
        float(arr[:, 2].max()),
        float(arr[:, 3].max()),
    )


def quad_points(box: BBox) -> list[float]:
    """Upper-left, upper-right, lower-left, lower-right corner list for a highlight."""
    return [box.llx, box.ury, box.urx, box.ury, box.llx, box.lly, box.urx, box.lly]


def format_coord(v: float) -> str:
    """At most two fraction digits, no trailing zeros."""
    s = f"{v:.2f}".rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s
