from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .segmenter import SkipRule, is_void_glyph
from .types import GlyphEvent, PageClassification, RenderingMode


def classify_page(has_visible_text: bool, has_invisible_text: bool, has_image: bool) -> PageClassification:
    """First matching rule wins."""
    if has_image and has_invisible_text and not has_visible_text:
        return PageClassification.SEARCHABLE_IMAGE
    if has_visible_text and not has_invisible_text:
        return PageClassification.VISIBLE_TEXT
    if has_visible_text or has_invisible_text:
        return PageClassification.MIXED
    if has_image:
        return PageClassification.IMAGE_ONLY
    return PageClassification.EMPTY


@dataclass
class PageClassifier:
    """Single-pass content classifier for one page's glyph stream."""

    skip: SkipRule = field(default=is_void_glyph)
    has_visible_text: bool = False
    has_invisible_text: bool = False
    has_image: bool = False
    glyphs_seen: int = 0

    def observe(self, event: GlyphEvent) -> None:
        if self.skip(event):
            return
        self.glyphs_seen += 1
        if event.rendering_mode == RenderingMode.INVISIBLE:
            self.has_invisible_text = True
        else:
            self.has_visible_text = True

    def observe_all(self, events: Iterable[GlyphEvent]) -> None:
        for ev in events:
            self.observe(ev)

    def set_image_present(self, present: bool) -> None:
        self.has_image = bool(present)

    def classify(self) -> PageClassification:
        return classify_page(self.has_visible_text, self.has_invisible_text, self.has_image)

    def to_dict(self) -> dict:
        cls = self.classify()
        return {
            "classification": cls.value,
            "label": cls.label,
            "has_visible_text": self.has_visible_text,
            "has_invisible_text": self.has_invisible_text,
            "has_image": self.has_image,
            "glyphs_seen": self.glyphs_seen,
        }
