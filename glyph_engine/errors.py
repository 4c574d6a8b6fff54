from __future__ import annotations


class EngineError(Exception):
    """The glyph provider (PDF engine) failed.

    Raised at document-open time it is fatal for the document; raised while a
    page is processed it only costs that page.
    """

    def __init__(self, message: str, *, code: int = -1, api: str | None = None):
        super().__init__(message)
        self.code = code
        self.api = api
        self.message = message

    def __str__(self) -> str:
        where = f" in {self.api}()" if self.api else ""
        return f"Error {self.code}{where}: {self.message}"


class GeometryError(ValueError):
    """An empty run was asked for its bounding box."""


class RoutingIncomplete(Exception):
    """The marker or criterion region of a page could not be read."""

    def __init__(self, page_no: int, reason: str):
        super().__init__(f"page {page_no} not routed: {reason}")
        self.page_no = page_no
        self.reason = reason


class AnalysisWarning(UserWarning):
    """Non-fatal analysis finding that must be surfaced to the operator."""

    def __init__(
        self,
        message: str,
        *,
        page_no: int | None = None,
        word: str | None = None,
        x: float | None = None,
        y: float | None = None,
        code: str = "ANALYSIS_WARNING",
    ):
        super().__init__(message)
        self.message = message
        self.page_no = page_no
        self.word = word
        self.x = x
        self.y = y
        self.code = code

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "page_no": self.page_no,
            "word": self.word,
            "x": self.x,
            "y": self.y,
            "message": self.message,
        }
