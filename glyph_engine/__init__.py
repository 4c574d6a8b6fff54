"""Glyph-stream segmentation and classification engine for PDF text.

Turns the per-glyph output of a PDF text extractor into same-font runs,
highlight and replacement regions, page content classes, page routing
decisions and document-wide frequency tables. PDF access goes through a
glyph provider (PyMuPDF or replayed JSON dumps).
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
