"""Output PDF documents built with PyMuPDF.

Everything the core hands over is in PDF default space (origin lower-left);
this module is the only place that converts to MuPDF's top-left page space.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import fitz  # PyMuPDF

from .errors import EngineError
from .types import BBox, WordFragment

logger = logging.getLogger(__name__)

DEFAULT_FONTNAME = "helv"


def measure_text(text: str, font_size: float, fontname: str = DEFAULT_FONTNAME) -> float:
    """Advance width of ``text`` in points for one of the base-14 fonts."""
    return float(fitz.get_text_length(text, fontname=fontname, fontsize=font_size))


def to_fitz_rect(box: BBox, page_height: float) -> fitz.Rect:
    return fitz.Rect(box.llx, page_height - box.ury, box.urx, page_height - box.lly)


class OutputDocument:
    """A PDF under construction: a full copy of the input, or pages picked from it."""

    def __init__(self, source_path: str | Path, *, copy_all: bool = False):
        try:
            self.source = fitz.open(str(source_path))
        except Exception as e:
            raise EngineError(str(e), code=1000, api="open_document") from e
        self.doc = fitz.open()
        self.source_path = Path(source_path)
        self._page_map: dict[int, int] = {}
        self._toc: list[list[Any]] = []
        if copy_all:
            self.doc.insert_pdf(self.source)
            self._page_map = {n: n - 1 for n in range(1, self.source.page_count + 1)}

    @property
    def page_count(self) -> int:
        return self.doc.page_count

    def _page(self, page_no: int) -> fitz.Page:
        idx = self._page_map.get(page_no)
        if idx is None:
            raise KeyError(f"page {page_no} not placed in output document")
        return self.doc[idx]

    def place_page(self, page_no: int) -> int:
        """Append source page ``page_no`` (1-based); returns its output page number."""
        self.doc.insert_pdf(self.source, from_page=page_no - 1, to_page=page_no - 1)
        out_idx = self.doc.page_count - 1
        self._page_map.setdefault(page_no, out_idx)
        return out_idx + 1

    def create_annotation(
        self,
        page_no: int,
        boxes: Sequence[BBox],
        contents: str,
        *,
        color: Sequence[float] = (1.0, 1.0, 0.0),
        title: str = "",
    ) -> bool:
        """Highlight annotation covering all ``boxes``; one rectangle per box.

        Zero-area boxes cannot be highlighted and are left out. Returns False
        when nothing was left to annotate.
        """
        page = self._page(page_no)
        height = page.rect.height
        rects = [to_fitz_rect(b, height) for b in boxes if b.width > 0 and b.height > 0]
        if not rects:
            logger.debug("page %d: no highlightable area for %r", page_no, contents)
            return False
        annot = page.add_highlight_annot(rects)
        annot.set_info(content=contents, title=title)
        annot.set_colors(stroke=tuple(color))
        annot.update()
        return True

    def create_bookmark(self, title: str, page_no: int, x: float, y: float, *, level: int = 1) -> None:
        """Outline entry jumping to (x, y) on ``page_no``; y in PDF default space."""
        page = self._page(page_no)
        dest = {"kind": fitz.LINK_GOTO, "to": fitz.Point(x, page.rect.height - y)}
        self._toc.append([level, title, self._page_map[page_no] + 1, dest])

    def paint_replacement(
        self,
        page_no: int,
        fragment: WordFragment,
        text: str,
        *,
        fontname: str = DEFAULT_FONTNAME,
        shrink_limit: float = 0.65,
    ) -> float:
        """Cover ``fragment`` with white and write ``text`` on its baseline.

        Text wider than the fragment is set smaller, down to ``shrink_limit``
        of the original size; anything still wider overflows to the right.
        Returns the font size used.
        """
        page = self._page(page_no)
        height = page.rect.height
        page.draw_rect(to_fitz_rect(fragment.bbox, height), color=None, fill=(1, 1, 1), overlay=True)
        if not text:
            return fragment.font_size

        size = fragment.font_size
        width = measure_text(text, size, fontname)
        if width > fragment.bbox.width > 0:
            size = max(size * fragment.bbox.width / width, size * shrink_limit)
        page.insert_text(
            fitz.Point(fragment.bbox.llx, height - fragment.baseline),
            text,
            fontsize=size,
            fontname=fontname,
            color=(0, 0, 0),
        )
        return size

    def save(self, out_path: str | Path) -> Path:
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        if self._toc:
            self.doc.set_toc(self._toc)
        self.doc.save(str(out_path), garbage=3, deflate=True)
        logger.info("wrote %s (%d pages)", out_path, self.doc.page_count)
        return out_path

    def close(self) -> None:
        self.doc.close()
        self.source.close()
