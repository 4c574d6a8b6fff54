"""Glyph-stream providers.

The core never talks to a PDF library directly. It consumes the cursor-style
interface below: open a document, open a page at a granularity, walk its text
chunks and, per chunk, its glyph records. ``FitzGlyphProvider`` implements it
on top of PyMuPDF; ``MemoryGlyphProvider`` replays JSON glyph dumps.
"""
from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from PIL import Image

from .errors import EngineError
from .segmenter import BASELINE_EPSILON, is_void_glyph
from .types import (
    BBox,
    FontMetrics,
    GlyphAttr,
    GlyphEvent,
    GlyphKind,
    Granularity,
    RenderingMode,
    TextChunk,
)
from .utils import load_json

HYPHENS = {0x2D, 0xAD, 0x2010}
U_REPLACEMENT_CHARACTER = 0xFFFD


@dataclass
class DocumentHandle:
    source: str
    page_count: int
    fonts: dict[int, FontMetrics] = field(default_factory=dict)
    native: Any = None


@dataclass
class RawPage:
    page_no: int  # 1-based
    width: float
    height: float
    has_image: bool
    glyphs: list[GlyphEvent]


@dataclass
class PageHandle:
    page_no: int
    width: float
    height: float
    has_image: bool
    granularity: Granularity
    chunks: list[TextChunk]
    _chunk_index: int = -1
    _glyph_index: int = 0
    closed: bool = False


def _is_space(g: GlyphEvent) -> bool:
    return g.kind == GlyphKind.INSERTED_SEPARATOR or (g.codepoint is not None and chr(g.codepoint).isspace())


def _chunk_text(glyphs: list[GlyphEvent]) -> str:
    return "".join(g.char for g in glyphs if not is_void_glyph(g))


def is_line_break(last: GlyphEvent, g: GlyphEvent, epsilon: float = BASELINE_EPSILON) -> bool:
    """True when ``g`` starts a new text line after ``last``.

    Superscripts, subscripts and raised or lowered drop caps shift the
    baseline within a line; a new line either moves back to the left or drops
    by more than the larger font size.
    """
    if abs(last.y - g.y) <= epsilon:
        return False
    if g.x < last.x:
        return True
    return abs(last.y - g.y) > max(last.font_size, g.font_size)


def dehyphenate(glyphs: list[GlyphEvent], epsilon: float = BASELINE_EPSILON) -> list[GlyphEvent]:
    """Flag hyphens that break a word across a line end.

    The hyphen becomes a dehyphenation artifact, the glyph before it is marked
    DEHYPHENATION_PRE and the first glyph of the next line DEHYPHENATION_POST.
    Glyphs that already carry dehyphenation flags are left alone.
    """
    out = list(glyphs)
    dh_mask = GlyphAttr.DEHYPHENATION_PRE | GlyphAttr.DEHYPHENATION_ARTIFACT | GlyphAttr.DEHYPHENATION_POST
    for i in range(1, len(out) - 1):
        prev, hyph, nxt = out[i - 1], out[i], out[i + 1]
        if hyph.codepoint not in HYPHENS:
            continue
        if not is_line_break(hyph, nxt, epsilon) or abs(prev.y - hyph.y) > epsilon:
            continue
        if not (prev.char.isalpha() and nxt.char.isalpha()):
            continue
        if (prev.attributes | hyph.attributes | nxt.attributes) & dh_mask:
            continue
        out[i - 1] = dataclasses.replace(prev, attributes=prev.attributes | GlyphAttr.DEHYPHENATION_PRE)
        out[i] = dataclasses.replace(hyph, attributes=hyph.attributes | GlyphAttr.DEHYPHENATION_ARTIFACT)
        out[i + 1] = dataclasses.replace(nxt, attributes=nxt.attributes | GlyphAttr.DEHYPHENATION_POST)
    return out


def chunk_glyphs(
    glyphs: list[GlyphEvent],
    granularity: Granularity,
    *,
    epsilon: float = BASELINE_EPSILON,
) -> list[TextChunk]:
    if not glyphs:
        return []

    if granularity == Granularity.GLYPH:
        return [TextChunk(text=g.char, glyphs=(g,)) for g in glyphs if not is_void_glyph(g)]

    if granularity == Granularity.PAGE:
        parts: list[str] = []
        prev: GlyphEvent | None = None
        for g in glyphs:
            if prev is not None and is_line_break(prev, g, epsilon) and not _is_space(prev):
                parts.append("\n")
            if not is_void_glyph(g):
                parts.append(g.char)
            prev = g
        return [TextChunk(text="".join(parts), glyphs=tuple(glyphs))]

    # word granularity: split at white space, separators and line ends that
    # are not dehyphenated word breaks
    chunks: list[TextChunk] = []
    current: list[GlyphEvent] = []
    for g in dehyphenate(glyphs, epsilon):
        if _is_space(g):
            if current:
                chunks.append(TextChunk(text=_chunk_text(current), glyphs=tuple(current)))
                current = []
            continue
        if current:
            last = current[-1]
            line_break = is_line_break(last, g, epsilon)
            joined = last.has(GlyphAttr.DEHYPHENATION_ARTIFACT) or g.has(GlyphAttr.DEHYPHENATION_POST)
            if line_break and not joined:
                chunks.append(TextChunk(text=_chunk_text(current), glyphs=tuple(current)))
                current = []
        current.append(g)
    if current:
        chunks.append(TextChunk(text=_chunk_text(current), glyphs=tuple(current)))
    return [c for c in chunks if c.text]


class GlyphProvider(ABC):
    """Abstract glyph-stream provider. All failures raise EngineError."""

    @abstractmethod
    def open_document(self, source: str | Path) -> DocumentHandle:
        ...

    @abstractmethod
    def _load_page(self, doc: DocumentHandle, page_no: int) -> RawPage:
        ...

    def page_count(self, doc: DocumentHandle) -> int:
        return doc.page_count

    def open_page(self, doc: DocumentHandle, page_no: int, granularity: Granularity | str) -> PageHandle:
        granularity = Granularity(granularity)
        if page_no < 1 or page_no > doc.page_count:
            raise EngineError(f"page {page_no} out of range 1..{doc.page_count}", code=3500, api="open_page")
        raw = self._load_page(doc, page_no)
        return PageHandle(
            page_no=raw.page_no,
            width=raw.width,
            height=raw.height,
            has_image=raw.has_image,
            granularity=granularity,
            chunks=chunk_glyphs(raw.glyphs, granularity),
        )

    def next_text_chunk(self, page: PageHandle) -> str | None:
        if page.closed:
            raise EngineError("page already closed", code=1, api="next_text_chunk")
        page._chunk_index += 1
        page._glyph_index = 0
        if page._chunk_index >= len(page.chunks):
            return None
        return page.chunks[page._chunk_index].text

    def next_glyph(self, page: PageHandle) -> GlyphEvent | None:
        if page._chunk_index < 0 or page._chunk_index >= len(page.chunks):
            return None
        glyphs = page.chunks[page._chunk_index].glyphs
        if page._glyph_index >= len(glyphs):
            return None
        g = glyphs[page._glyph_index]
        page._glyph_index += 1
        return g

    def page_image_present(self, page: PageHandle) -> bool:
        return page.has_image

    def font_metrics(self, doc: DocumentHandle, font_id: int) -> FontMetrics:
        metrics = doc.fonts.get(font_id)
        if metrics is None:
            raise EngineError(f"unknown font id {font_id}", code=2, api="font_metrics")
        return metrics

    def close_page(self, page: PageHandle) -> None:
        page.closed = True

    def close_document(self, doc: DocumentHandle) -> None:
        doc.native = None

    def region_text(self, doc: DocumentHandle, page_no: int, box: BBox) -> str | None:
        """Text of the glyphs whose origin lies inside ``box`` (PDF default space)."""
        raw = self._load_page(doc, page_no)
        inside = [g for g in raw.glyphs if box.contains_point(g.x, g.y)]
        if not inside:
            return None
        return chunk_glyphs(inside, Granularity.PAGE)[0].text.strip()

    def render_page(self, doc: DocumentHandle, page_no: int, dpi: int = 72) -> Image.Image | None:
        return None


def iter_chunks(provider: GlyphProvider, page: PageHandle) -> Iterator[TextChunk]:
    """Walk the cursor interface and yield each chunk with its glyphs."""
    text = provider.next_text_chunk(page)
    while text is not None:
        glyphs: list[GlyphEvent] = []
        g = provider.next_glyph(page)
        while g is not None:
            glyphs.append(g)
            g = provider.next_glyph(page)
        yield TextChunk(text=text, glyphs=tuple(glyphs))
        text = provider.next_text_chunk(page)


class FitzGlyphProvider(GlyphProvider):
    """PyMuPDF-backed provider.

    Glyphs come from ``page.get_texttrace()`` (content stream order, with the
    text render mode per span). Coordinates are flipped from MuPDF's top-left
    origin into PDF default space.
    """

    def open_document(self, source: str | Path) -> DocumentHandle:
        try:
            import fitz  # PyMuPDF
        except Exception as e:  # pragma: no cover
            raise EngineError("PyMuPDF is required for --type pdf. Install pymupdf.", api="open_document") from e

        try:
            native = fitz.open(str(source))
        except Exception as e:
            raise EngineError(str(e), code=1000, api="open_document") from e
        if not native.is_pdf:
            native.close()
            raise EngineError(f"not a PDF document: {source}", code=1001, api="open_document")
        doc = DocumentHandle(source=str(source), page_count=native.page_count, native=native)
        doc.fonts = {}
        return doc

    def _font_id(self, doc: DocumentHandle, span: dict[str, Any]) -> int:
        name = str(span.get("font") or "")
        for fid, m in doc.fonts.items():
            if m.name == name:
                return fid
        fid = len(doc.fonts)
        ascender = float(span.get("ascender", 0.85) or 0.85)
        descender = float(span.get("descender", -0.25) or -0.25)
        doc.fonts[fid] = FontMetrics(name=name, ascender=ascender, descender=-abs(descender))
        return fid

    def _load_page(self, doc: DocumentHandle, page_no: int) -> RawPage:
        if doc.native is None:
            raise EngineError("document is closed", code=1, api="open_page")
        try:
            page = doc.native.load_page(page_no - 1)
            height = float(page.rect.height)
            width = float(page.rect.width)
            trace = page.get_texttrace()
            has_image = bool(page.get_image_info())
        except Exception as e:
            raise EngineError(str(e), code=2000, api="open_page") from e

        glyphs: list[GlyphEvent] = []
        for span in trace:
            font_id = self._font_id(doc, span)
            size = float(span.get("size", 0.0))
            mode = RenderingMode.from_pdf(int(span.get("type", 0)))
            attrs = GlyphAttr.SUPERSCRIPT if int(span.get("flags", 0)) & 1 else GlyphAttr.NONE
            for ucs, _gid, origin, bbox in span.get("chars", ()):
                unmapped = ucs is None or ucs < 0 or ucs == U_REPLACEMENT_CHARACTER
                glyphs.append(
                    GlyphEvent(
                        codepoint=None if unmapped else int(ucs),
                        font_id=font_id,
                        font_size=size,
                        x=float(origin[0]),
                        y=height - float(origin[1]),
                        width=float(bbox[2]) - float(bbox[0]),
                        kind=GlyphKind.NORMAL,
                        attributes=attrs,
                        rendering_mode=mode,
                        is_unmapped=unmapped,
                    )
                )
        return RawPage(page_no=page_no, width=width, height=height, has_image=has_image, glyphs=glyphs)

    def close_document(self, doc: DocumentHandle) -> None:
        if doc.native is not None:
            doc.native.close()
        doc.native = None

    def render_page(self, doc: DocumentHandle, page_no: int, dpi: int = 72) -> Image.Image | None:
        import fitz  # PyMuPDF
        import numpy as np

        try:
            page = doc.native.load_page(page_no - 1)
            zoom = dpi / 72.0
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        except Exception as e:
            raise EngineError(str(e), code=2100, api="render_page") from e
        arr = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
        return Image.fromarray(arr[:, :, :3]).convert("RGB")


class MemoryGlyphProvider(GlyphProvider):
    """Replays glyph dumps.

    Dump schema::

        {"source": "...",
         "fonts": [{"id": 0, "name": "Helvetica", "ascender": 0.85, "descender": -0.25}],
         "pages": [{"page_no": 1, "width": 612, "height": 792, "has_image": false,
                    "glyphs": [GlyphEvent.to_dict(), ...]}]}

    A page object carrying ``"error"`` instead of glyphs fails to open with an
    EngineError, which lets a dump reproduce a damaged page.
    """

    def open_document(self, source: str | Path | dict[str, Any]) -> DocumentHandle:
        if isinstance(source, dict):
            data = source
            name = str(data.get("source") or "<memory>")
        else:
            try:
                data = load_json(source)
            except Exception as e:
                raise EngineError(str(e), code=1000, api="open_document") from e
            name = str(source)
        if not isinstance(data, dict) or not isinstance(data.get("pages"), list):
            raise EngineError("glyph dump must be an object with a pages list", code=1002, api="open_document")

        fonts: dict[int, FontMetrics] = {}
        for f in data.get("fonts", []) or []:
            fid = int(f.get("id", len(fonts)))
            fonts[fid] = FontMetrics(
                name=str(f.get("name") or f"F{fid}"),
                ascender=float(f.get("ascender", 0.85)),
                descender=float(f.get("descender", -0.25)),
            )
        return DocumentHandle(source=name, page_count=len(data["pages"]), fonts=fonts, native=data)

    def _load_page(self, doc: DocumentHandle, page_no: int) -> RawPage:
        if doc.native is None:
            raise EngineError("document is closed", code=1, api="open_page")
        p = doc.native["pages"][page_no - 1]
        if p.get("error"):
            raise EngineError(str(p["error"]), code=int(p.get("error_code", 2000)), api="open_page")
        glyphs = [GlyphEvent.from_dict(g) for g in p.get("glyphs", []) or []]
        return RawPage(
            page_no=page_no,
            width=float(p.get("width", 612.0)),
            height=float(p.get("height", 792.0)),
            has_image=bool(p.get("has_image", False)),
            glyphs=glyphs,
        )

    def font_metrics(self, doc: DocumentHandle, font_id: int) -> FontMetrics:
        metrics = doc.fonts.get(font_id)
        if metrics is None:
            # dumps written by hand may leave fonts out
            return FontMetrics(name=f"F{font_id}")
        return metrics


def dump_document(provider: GlyphProvider, doc: DocumentHandle) -> dict[str, Any]:
    """Serialize every page's raw glyph stream in the MemoryGlyphProvider schema."""
    pages: list[dict[str, Any]] = []
    for page_no in range(1, provider.page_count(doc) + 1):
        try:
            raw = provider._load_page(doc, page_no)
        except EngineError as e:
            pages.append({"page_no": page_no, "error": e.message, "error_code": e.code})
            continue
        pages.append(
            {
                "page_no": page_no,
                "width": raw.width,
                "height": raw.height,
                "has_image": raw.has_image,
                "glyphs": [g.to_dict() for g in raw.glyphs],
            }
        )
    fonts = [
        {"id": fid, "name": m.name, "ascender": m.ascender, "descender": m.descender}
        for fid, m in sorted(doc.fonts.items())
    ]
    return {"source": doc.source, "fonts": fonts, "pages": pages}


def get_provider(input_type: str) -> GlyphProvider:
    if input_type == "pdf":
        return FitzGlyphProvider()
    if input_type == "glyphs":
        return MemoryGlyphProvider()
    raise ValueError(f"Unknown input_type: {input_type}")
