from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag


class GlyphKind(IntEnum):
    """Glyph record type as reported by the extraction engine."""

    NORMAL = 0
    LIGATURE_START = 1
    LIGATURE_CONTINUATION = 10
    TRAILING_SURROGATE = 11
    INSERTED_SEPARATOR = 12


class GlyphAttr(IntFlag):
    NONE = 0
    SUBSCRIPT = 1 << 0
    SUPERSCRIPT = 1 << 1
    DROPCAP = 1 << 2
    SHADOW = 1 << 3
    DEHYPHENATION_PRE = 1 << 4
    DEHYPHENATION_ARTIFACT = 1 << 5  # hyphen removed by dehyphenation
    DEHYPHENATION_POST = 1 << 6  # first glyph after a joined line break


class RenderingMode(Enum):
    VISIBLE = "visible"
    INVISIBLE = "invisible"

    @classmethod
    def from_pdf(cls, text_render_mode: int) -> "RenderingMode":
        # Tr 3 is "neither fill nor stroke"; everything else paints something.
        return cls.INVISIBLE if int(text_render_mode) == 3 else cls.VISIBLE


class Granularity(str, Enum):
    PAGE = "page"
    WORD = "word"
    GLYPH = "glyph"


class PageClassification(str, Enum):
    EMPTY = "empty"
    IMAGE_ONLY = "image_only"
    SEARCHABLE_IMAGE = "searchable_image"
    VISIBLE_TEXT = "visible_text"
    MIXED = "mixed"

    @property
    def label(self) -> str:
        return _CLASSIFICATION_LABELS[self]


_CLASSIFICATION_LABELS = {
    PageClassification.EMPTY: "No text or raster graphics",
    PageClassification.IMAGE_ONLY: "Image only",
    PageClassification.SEARCHABLE_IMAGE: "Searchable image",
    PageClassification.VISIBLE_TEXT: "Visible text",
    PageClassification.MIXED: "Mixed",
}


@dataclass(frozen=True)
class FontMetrics:
    name: str
    ascender: float = 0.85
    descender: float = -0.25  # negative: below the baseline


@dataclass(frozen=True)
class GlyphEvent:
    codepoint: int | None
    font_id: int
    font_size: float
    x: float  # baseline origin, PDF default space
    y: float
    width: float
    kind: GlyphKind = GlyphKind.NORMAL
    attributes: GlyphAttr = GlyphAttr.NONE
    rendering_mode: RenderingMode = RenderingMode.VISIBLE
    is_unmapped: bool = False

    @property
    def char(self) -> str:
        if self.codepoint is None:
            return ""
        return chr(self.codepoint)

    def has(self, attr: GlyphAttr) -> bool:
        return bool(self.attributes & attr)

    @property
    def counts_as_glyph(self) -> bool:
        """True for records that correspond to a real glyph in the content stream."""
        return self.kind in (GlyphKind.NORMAL, GlyphKind.LIGATURE_START)

    def to_dict(self) -> dict:
        return {
            "codepoint": self.codepoint,
            "font_id": self.font_id,
            "font_size": self.font_size,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "kind": int(self.kind),
            "attributes": int(self.attributes),
            "rendering_mode": self.rendering_mode.value,
            "is_unmapped": self.is_unmapped,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GlyphEvent":
        cp = data.get("codepoint")
        return cls(
            codepoint=None if cp is None else int(cp),
            font_id=int(data.get("font_id", 0)),
            font_size=float(data.get("font_size", 0.0)),
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=float(data.get("width", 0.0)),
            kind=GlyphKind(int(data.get("kind", 0))),
            attributes=GlyphAttr(int(data.get("attributes", 0))),
            rendering_mode=RenderingMode(data.get("rendering_mode", "visible")),
            is_unmapped=bool(data.get("is_unmapped", cp is None)),
        )


@dataclass(frozen=True)
class BBox:
    llx: float
    lly: float
    urx: float
    ury: float

    @property
    def width(self) -> float:
        return self.urx - self.llx

    @property
    def height(self) -> float:
        return self.ury - self.lly

    def union(self, other: "BBox") -> "BBox":
        return BBox(
            min(self.llx, other.llx),
            min(self.lly, other.lly),
            max(self.urx, other.urx),
            max(self.ury, other.ury),
        )

    def to_acrobat(self, page_height: float) -> "BBox":
        """Flip into Acrobat's top-left origin. Presentation only."""
        return BBox(self.llx, page_height - self.ury, self.urx, page_height - self.lly)

    def contains_point(self, x: float, y: float) -> bool:
        return self.llx <= x <= self.urx and self.lly <= y <= self.ury

    def as_list(self) -> list[float]:
        return [self.llx, self.lly, self.urx, self.ury]


@dataclass(frozen=True)
class Run:
    text: str
    font_id: int
    bbox: BBox
    font_size: float
    x: float  # origin of the first glyph
    y: float
    glyph_count: int = 0
    unicode_count: int = 0
    unmapped_count: int = 0
    is_hyphenated: bool = False
    rendering_mode: RenderingMode = RenderingMode.VISIBLE

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "font_id": self.font_id,
            "font_size": self.font_size,
            "x": self.x,
            "y": self.y,
            "bbox": self.bbox.as_list(),
            "glyph_count": self.glyph_count,
            "unicode_count": self.unicode_count,
            "unmapped_count": self.unmapped_count,
            "is_hyphenated": self.is_hyphenated,
            "rendering_mode": self.rendering_mode.value,
        }


@dataclass(frozen=True)
class WordFragment:
    baseline: float
    font_size: float
    bbox: BBox
    is_hyphenated: bool = False

    def to_dict(self) -> dict:
        return {
            "baseline": self.baseline,
            "font_size": self.font_size,
            "bbox": self.bbox.as_list(),
            "is_hyphenated": self.is_hyphenated,
        }


@dataclass(frozen=True)
class TextChunk:
    """A pre-tokenized unit of text together with the glyphs that produced it."""

    text: str
    glyphs: tuple[GlyphEvent, ...] = field(default_factory=tuple)
