from __future__ import annotations

import locale
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Hashable, Iterable

from .types import GlyphEvent, GlyphKind

PUA_RANGE_START = 0xE000
PUA_RANGE_END = 0xF8FF


def starts_with_letter(word: str) -> bool:
    return bool(word) and word[0].isalpha()


def starts_with_ascii_letter(word: str) -> bool:
    return bool(word) and word[0].lower() in "abcdefghijklmnopqrstuvwxyz"


def is_pua(codepoint: int | None) -> bool:
    return codepoint is not None and PUA_RANGE_START <= codepoint <= PUA_RANGE_END


def collation_key(word: str) -> tuple[str, str]:
    """Locale-independent approximation of dictionary order.

    Accents and case are ignored on the first level and only break ties.
    """
    decomposed = unicodedata.normalize("NFKD", word)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), word


def locale_collation_key(word: str) -> tuple[str, str]:
    """Order of the process locale (LC_COLLATE), falling back to the word itself on ties."""
    return locale.strxfrm(word), word


COLLATORS: dict[str, Callable[[str], object]] = {
    "unicode": collation_key,
    "locale": locale_collation_key,
}


def get_collator(name: str) -> Callable[[str], object]:
    try:
        return COLLATORS[name]
    except KeyError:
        raise ValueError(f"Unknown collation: {name}") from None


@dataclass
class IndexEntry:
    key: Hashable
    count: int = 0
    pages: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"key": self.key, "count": self.count, "pages": list(self.pages)}


class FrequencyIndexer:
    """Occurrence counts and discovery-ordered page lists per key."""

    def __init__(
        self,
        accept: Callable[[Hashable], bool] | None = None,
        *,
        lowercase: bool = False,
        collate: Callable[[str], object] = collation_key,
    ):
        self.accept = accept
        self.lowercase = lowercase
        self.collate = collate
        self._entries: dict[Hashable, IndexEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def record(self, key: Hashable, page_no: int) -> bool:
        """Count ``key`` on ``page_no``. Returns False if the key was filtered out."""
        if self.accept is not None and not self.accept(key):
            return False
        if self.lowercase and isinstance(key, str):
            key = key.lower()
        entry = self._entries.get(key)
        if entry is None:
            entry = IndexEntry(key=key)
            self._entries[key] = entry
        entry.count += 1
        if page_no not in entry.pages:
            entry.pages.append(page_no)
        return True

    def count(self, key: Hashable) -> int:
        entry = self._entries.get(key)
        return 0 if entry is None else entry.count

    def pages(self, key: Hashable) -> list[int]:
        entry = self._entries.get(key)
        return [] if entry is None else list(entry.pages)

    def snapshot(self, order: str | Callable[[IndexEntry], object] = "count") -> list[IndexEntry]:
        entries = list(self._entries.values())
        if order == "count":
            # sorted() is stable: equal counts keep discovery order
            return sorted(entries, key=lambda e: -e.count)
        if order == "alpha":
            return sorted(entries, key=lambda e: self.collate(str(e.key)))
        if callable(order):
            return sorted(entries, key=order)
        raise ValueError(f"Unknown order: {order}")

    def grouped_by_initial(self) -> list[tuple[str, list[IndexEntry]]]:
        # a locale order may interleave initials; each group is listed once
        groups: dict[str, list[IndexEntry]] = {}
        for entry in self.snapshot("alpha"):
            word = str(entry.key)
            initial = collation_key(word[:1])[0].upper() if word else ""
            groups.setdefault(initial, []).append(entry)
        return list(groups.items())


@dataclass
class FontTallyEntry:
    font_id: int
    glyph_count: int = 0
    unicode_count: int = 0
    unmapped_count: int = 0
    pua: dict[int, int] = field(default_factory=dict)

    @property
    def pua_total(self) -> int:
        return sum(self.pua.values())


class FontTally:
    """Per-font glyph statistics over a whole document."""

    def __init__(self) -> None:
        self.fonts: dict[int, FontTallyEntry] = {}
        self.total_glyphs = 0
        self.total_unicode = 0
        self.total_unmapped = 0

    def _entry(self, font_id: int) -> FontTallyEntry:
        entry = self.fonts.get(font_id)
        if entry is None:
            entry = FontTallyEntry(font_id=font_id)
            self.fonts[font_id] = entry
        return entry

    def record(self, event: GlyphEvent) -> None:
        if event.kind in (GlyphKind.TRAILING_SURROGATE, GlyphKind.INSERTED_SEPARATOR):
            return
        entry = self._entry(event.font_id)
        if event.counts_as_glyph:
            entry.glyph_count += 1
            self.total_glyphs += 1
            if event.is_unmapped:
                entry.unmapped_count += 1
                self.total_unmapped += 1
            else:
                entry.unicode_count += 1
                self.total_unicode += 1
        else:
            entry.unicode_count += 1
            self.total_unicode += 1
        if is_pua(event.codepoint):
            entry.pua[event.codepoint] = entry.pua.get(event.codepoint, 0) + 1

    def record_all(self, events: Iterable[GlyphEvent]) -> None:
        for ev in events:
            self.record(ev)

    def share(self, font_id: int) -> float:
        """Percentage of all glyphs set in ``font_id``; 0.0 for an empty document."""
        if self.total_glyphs == 0:
            return 0.0
        entry = self.fonts.get(font_id)
        if entry is None:
            return 0.0
        return 100.0 * entry.glyph_count / self.total_glyphs

    def by_glyph_count(self) -> list[FontTallyEntry]:
        return sorted(self.fonts.values(), key=lambda e: -e.glyph_count)
