"""Annotated page images for eyeballing what a task found."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from PIL import Image, ImageDraw

from .page_provider import DocumentHandle, GlyphProvider, PageHandle
from .types import BBox


@dataclass
class OverlayConfig:
    dpi: int = 72
    outline: str = "#FF0000"
    line_width: int = 2

    @classmethod
    def from_dict(cls, data: dict) -> "OverlayConfig":
        return cls(
            dpi=int(data.get("dpi", 72)),
            outline=str(data.get("outline", "#FF0000")),
            line_width=int(data.get("line_width", 2)),
        )


def boxes_to_pixels(boxes: Sequence[BBox], page_height: float, scale: float) -> np.ndarray:
    """(N, 4) array of x0, y0, x1, y1 in image pixels (top-left origin)."""
    if not boxes:
        return np.zeros((0, 4), dtype=np.int32)
    arr = np.array([b.to_acrobat(page_height).as_list() for b in boxes], dtype=np.float64) * scale
    return np.rint(arr).astype(np.int32)


def page_canvas(provider: GlyphProvider, doc: DocumentHandle, page: PageHandle, dpi: int) -> Image.Image:
    img = provider.render_page(doc, page.page_no, dpi)
    if img is None:
        # glyph dumps carry no page content
        scale = dpi / 72.0
        img = Image.new("RGB", (max(1, int(page.width * scale)), max(1, int(page.height * scale))), (255, 255, 255))
    return img


def draw_overlay(
    image: Image.Image,
    boxes: Sequence[BBox],
    *,
    page_height: float,
    dpi: int = 72,
    outline: str = "#FF0000",
    line_width: int = 2,
) -> Image.Image:
    out = image.convert("RGB").copy()
    draw = ImageDraw.Draw(out)
    for x0, y0, x1, y1 in boxes_to_pixels(boxes, page_height, dpi / 72.0):
        draw.rectangle([int(x0), int(y0), max(int(x0), int(x1)), max(int(y0), int(y1))], outline=outline, width=line_width)
    return out


def write_page_overlay(
    provider: GlyphProvider,
    doc: DocumentHandle,
    page: PageHandle,
    boxes: Sequence[BBox],
    debug_dir: Path,
    cfg: OverlayConfig,
) -> Path:
    img = page_canvas(provider, doc, page, cfg.dpi)
    out = draw_overlay(img, boxes, page_height=page.height, dpi=cfg.dpi, outline=cfg.outline, line_width=cfg.line_width)
    path = Path(debug_dir) / f"page_{page.page_no:04d}.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    out.save(path)
    return path
