"""Page routing across a multi-page document.

Pages are appended to per-criterion buckets. A new sequence starts on the
first page and on every page whose marker region carries the marker text; the
criterion region of that page selects (or lazily creates) the bucket that the
following pages go to. Buckets are kept for the whole traversal so that a
criterion seen again later appends to the bucket created for it earlier.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from .errors import EngineError, RoutingIncomplete

P = TypeVar("P")

RegionReader = Callable[[Any], "str | None"]


@dataclass
class Bucket(Generic[P]):
    key: str
    pages: list[P] = field(default_factory=list)
    finalized: bool = False

    @property
    def count(self) -> int:
        return len(self.pages)

    def append(self, page: P) -> None:
        if self.finalized:
            raise RuntimeError(f"bucket {self.key!r} already finalized")
        self.pages.append(page)


def region_equals(read_region: RegionReader, expected: str) -> Callable[[Any], bool]:
    """Marker predicate: the region's text equals ``expected`` exactly.

    No trimming happens here; ``GlyphProvider.region_text`` already drops the
    surrounding whitespace of a region.
    """

    def _matches(page: Any) -> bool:
        text = read_region(page)
        return text == expected

    return _matches


class SequenceRouter(Generic[P]):
    def __init__(
        self,
        is_sequence_start: Callable[[P], bool],
        criterion: Callable[[P], "str | None"],
    ):
        self.is_sequence_start = is_sequence_start
        self.criterion = criterion
        self.buckets: dict[str, Bucket[P]] = {}
        self.current: Bucket[P] | None = None
        self.pages_routed = 0
        self._finalized = False

    @property
    def current_key(self) -> str | None:
        return None if self.current is None else self.current.key

    def route(self, page: P, *, page_no: int | None = None) -> Bucket[P]:
        """Append ``page`` to the bucket it belongs to and return that bucket.

        Raises RoutingIncomplete when the marker or criterion region cannot be
        read; the router state is left untouched in that case.
        """
        if self._finalized:
            raise RuntimeError("router already finalized")
        if page_no is None:
            page_no = page if isinstance(page, int) else -1

        target = self.current
        try:
            starts = target is None or self.is_sequence_start(page)
            if starts:
                key = self.criterion(page)
                if key is None or not str(key).strip():
                    raise RoutingIncomplete(page_no, "empty routing criterion")
                key = str(key).strip()
                target = self.buckets.get(key)
                if target is None:
                    target = Bucket(key=key)
                    self.buckets[key] = target
        except EngineError as e:
            raise RoutingIncomplete(page_no, str(e)) from e

        target.append(page)
        self.current = target
        self.pages_routed += 1
        return target

    def finalize(self, on_bucket: Callable[[Bucket[P]], Any] | None = None) -> list[Bucket[P]]:
        """Close all buckets together, in creation order."""
        out = list(self.buckets.values())
        for b in out:
            if on_bucket is not None:
                on_bucket(b)
            b.finalized = True
        self._finalized = True
        return out

    def snapshot(self) -> dict[str, list[P]]:
        return {k: list(b.pages) for k, b in self.buckets.items()}
