"""Document tasks.

Each task is a thin driver around one of the core components. The pipeline
opens every page at the task's granularity and hands over its chunks; the task
returns a JSON-ready page record plus the boxes it found (for debug overlays)
and, at the end, a document summary. Tasks that write PDFs only do so for PDF
input, since a glyph dump carries no page content to copy.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from .builder import OutputDocument, measure_text
from .config import EngineConfig
from .errors import AnalysisWarning
from .fragments import WordFragmentAnalyzer, fill_fragments, fragmentation_warning
from .geometry import quad_points, union_boxes
from .indexer import FontTally, FrequencyIndexer, get_collator, starts_with_ascii_letter, starts_with_letter
from .layout import PageClassifier
from .page_provider import DocumentHandle, GlyphProvider, PageHandle
from .router import SequenceRouter, region_equals
from .segmenter import (
    BASELINE_EPSILON,
    SameUnit,
    key_predicate,
    make_skip_rule,
    same_font,
    same_font_and_baseline,
    segment,
)
from .types import BBox, FontMetrics, GlyphEvent, Granularity, Run, TextChunk
from .utils import parse_box, safe_filename_token

logger = logging.getLogger(__name__)


@dataclass
class TaskContext:
    provider: GlyphProvider
    doc: DocumentHandle
    cfg: EngineConfig
    source_path: Path
    input_type: str
    output_dir: Path
    warnings: list[AnalysisWarning] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    @property
    def can_build(self) -> bool:
        return self.input_type == "pdf"

    def metrics(self, font_id: int) -> FontMetrics:
        return self.provider.font_metrics(self.doc, font_id)

    def font_name(self, font_id: int) -> str:
        return self.metrics(font_id).name

    def warn(self, warning: AnalysisWarning | None) -> None:
        if warning is not None:
            self.warnings.append(warning)

    def output_path(self, suffix: str) -> Path:
        return self.output_dir / f"{self.source_path.stem}_{suffix}.pdf"


@dataclass
class PageOutcome:
    data: dict[str, Any]
    boxes: list[BBox] = field(default_factory=list)


def page_glyphs(chunks: Iterable[TextChunk]) -> list[GlyphEvent]:
    return [g for c in chunks for g in c.glyphs]


def base_font_name(name: str) -> str:
    """Font name without a subset tag such as ``ABCDEF+``."""
    if len(name) > 7 and name[6] == "+" and name[:6].isupper():
        return name[7:]
    return name


def font_filter(include: list[str] | None, ignore: list[str] | None) -> Callable[[str], bool]:
    inc = {base_font_name(n) for n in include or []}
    ign = {base_font_name(n) for n in ignore or []}

    def _accept(name: str) -> bool:
        base = base_font_name(name)
        if inc and base not in inc:
            return False
        return base not in ign

    return _accept


class Task:
    name = ""
    granularity = Granularity.PAGE

    def begin(self, ctx: TaskContext) -> None:
        pass

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        raise NotImplementedError

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        return {}


class FontsTask(Task):
    """Font finder: where does each font start on a page."""

    name = "fonts"

    def begin(self, ctx: TaskContext) -> None:
        seg = ctx.cfg.segment
        self.accept = font_filter(seg.get("include_fonts"), seg.get("ignore_fonts"))
        self.skip = make_skip_rule(skip_unmapped=bool(seg.get("skip_unmapped", True)))
        self.acrobat = seg.get("coordinates", "acrobat") == "acrobat"
        self.run_counts: dict[str, int] = {}

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        runs = segment(page_glyphs(chunks), same_font, metrics=ctx.metrics, skip=self.skip)
        entries: list[dict[str, Any]] = []
        boxes: list[BBox] = []
        for run in runs:
            name = ctx.font_name(run.font_id)
            if not self.accept(name):
                continue
            y = page.height - run.y if self.acrobat else run.y
            entries.append({"font": name, "x": round(run.x, 2), "y": round(y, 2), "run": run.to_dict()})
            boxes.append(run.bbox)
            self.run_counts[name] = self.run_counts.get(name, 0) + 1
        return PageOutcome({"page_no": page.page_no, "runs": entries}, boxes)

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        return {"fonts": [{"font": k, "runs": v} for k, v in self.run_counts.items()]}


class ClassifyTask(Task):
    name = "classify"

    def begin(self, ctx: TaskContext) -> None:
        self.counts: dict[str, int] = {}

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        clf = PageClassifier()
        clf.observe_all(page_glyphs(chunks))
        clf.set_image_present(ctx.provider.page_image_present(page))
        data = clf.to_dict()
        self.counts[data["classification"]] = self.counts.get(data["classification"], 0) + 1
        return PageOutcome({"page_no": page.page_no, **data})

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        return {"classifications": dict(self.counts)}


def merge_consecutive_runs(runs: list[Run]) -> list[list[Run]]:
    """Group consecutive runs of the same font, e.g. one paragraph over several lines."""
    groups: list[list[Run]] = []
    for run in runs:
        if groups and groups[-1][-1].font_id == run.font_id:
            groups[-1].append(run)
        else:
            groups.append([run])
    return groups


class _HighlightTask(Task):
    output_suffix = "highlighted"

    def begin(self, ctx: TaskContext) -> None:
        hl = ctx.cfg.highlight
        self.accept = font_filter(hl.get("include_fonts"), hl.get("ignore_fonts"))
        self.color = tuple(hl.get("color", [1.0, 1.0, 0.0]))
        self.annotations_total = 0
        self.output: OutputDocument | None = None
        if ctx.can_build:
            self.output = OutputDocument(ctx.source_path, copy_all=True)

    def annotate(self, ctx: TaskContext, page_no: int, boxes: list[BBox], contents: str) -> None:
        self.annotations_total += 1
        if self.output is not None:
            self.output.create_annotation(page_no, boxes, contents, color=self.color)

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        if self.output is not None:
            try:
                ctx.outputs.append(str(self.output.save(ctx.output_path(self.output_suffix))))
            finally:
                self.output.close()
        return {"annotations": self.annotations_total}


class HighlightFontsTask(_HighlightTask):
    name = "highlight-fonts"
    output_suffix = "fonts"

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        runs = segment(page_glyphs(chunks), same_font_and_baseline, metrics=ctx.metrics)
        annotations: list[dict[str, Any]] = []
        boxes: list[BBox] = []
        for group in merge_consecutive_runs(runs):
            name = ctx.font_name(group[0].font_id)
            if not self.accept(name):
                continue
            rects = [r.bbox for r in group]
            self.annotate(ctx, page.page_no, rects, name)
            annotations.append(
                {
                    "font": name,
                    "rects": [b.as_list() for b in rects],
                    "quads": [quad_points(b) for b in rects],
                    "bbox": union_boxes(rects).as_list(),
                    "text": " ".join(r.text for r in group),
                }
            )
            boxes.extend(rects)
        return PageOutcome({"page_no": page.page_no, "annotations": annotations}, boxes)


def _same_font_baseline_and_mapping(epsilon: float) -> SameUnit:
    def _same(anchor: GlyphEvent, event: GlyphEvent) -> bool:
        return (
            anchor.font_id == event.font_id
            and anchor.is_unmapped == event.is_unmapped
            and abs(anchor.y - event.y) <= epsilon
        )

    return _same


class HighlightUnmappedTask(_HighlightTask):
    name = "highlight-unmapped"
    output_suffix = "unmapped"

    def begin(self, ctx: TaskContext) -> None:
        super().begin(ctx)
        self.unmapped_total = 0

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        runs = segment(
            page_glyphs(chunks),
            _same_font_baseline_and_mapping(BASELINE_EPSILON),
            metrics=ctx.metrics,
            skip=make_skip_rule(skip_separators=True),
        )
        annotations: list[dict[str, Any]] = []
        boxes: list[BBox] = []
        for run in runs:
            if run.unmapped_count == 0:
                continue
            name = ctx.font_name(run.font_id)
            if not self.accept(name):
                continue
            contents = f"{run.unmapped_count} unmapped glyph(s) in font {name}"
            self.annotate(ctx, page.page_no, [run.bbox], contents)
            self.unmapped_total += run.unmapped_count
            annotations.append({"font": name, "unmapped": run.unmapped_count, "bbox": run.bbox.as_list()})
            boxes.append(run.bbox)
        return PageOutcome({"page_no": page.page_no, "annotations": annotations}, boxes)

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        out = super().finish(ctx)
        out["unmapped_glyphs"] = self.unmapped_total
        return out


class BookmarksTask(Task):
    """Headings set in one font name and size become outline entries."""

    name = "bookmarks"

    def begin(self, ctx: TaskContext) -> None:
        bm = ctx.cfg.bookmarks
        if not bm.get("font_name") or bm.get("font_size") is None:
            raise ValueError("bookmarks task needs bookmarks.font_name and bookmarks.font_size")
        self.font_name = base_font_name(str(bm["font_name"]))
        self.font_size = float(bm["font_size"])
        self.tolerance = float(bm.get("tolerance", 0.01))
        self.level = int(bm.get("level", 1))
        self.entries: list[dict[str, Any]] = []
        self.output: OutputDocument | None = None
        if ctx.can_build:
            self.output = OutputDocument(ctx.source_path, copy_all=True)

    def _is_heading(self, ctx: TaskContext) -> Callable[[GlyphEvent], bool]:
        def _match(g: GlyphEvent) -> bool:
            return (
                base_font_name(ctx.font_name(g.font_id)) == self.font_name
                and abs(g.font_size - self.font_size) <= self.tolerance
            )

        return _match

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        is_heading = self._is_heading(ctx)
        page_entries: list[dict[str, Any]] = []
        boxes: list[BBox] = []
        for chunk in chunks:
            for run in segment(chunk.glyphs, key_predicate(is_heading), metrics=ctx.metrics):
                if not (
                    base_font_name(ctx.font_name(run.font_id)) == self.font_name
                    and abs(run.font_size - self.font_size) <= self.tolerance
                ):
                    continue
                title = run.text.strip()
                if not title:
                    continue
                m = ctx.metrics(run.font_id)
                x, y = run.x, run.y + m.ascender * run.font_size
                entry = {"title": title, "page_no": page.page_no, "x": round(x, 2), "y": round(y, 2)}
                if self.output is not None:
                    self.output.create_bookmark(title, page.page_no, x, y, level=self.level)
                page_entries.append(entry)
                boxes.append(run.bbox)
        self.entries.extend(page_entries)
        return PageOutcome({"page_no": page.page_no, "bookmarks": page_entries}, boxes)

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        if self.output is not None:
            try:
                ctx.outputs.append(str(self.output.save(ctx.output_path("bookmarks"))))
            finally:
                self.output.close()
        return {"bookmarks": len(self.entries)}


class ReplaceTask(Task):
    """Search words by regex and paint a replacement over every fragment."""

    name = "replace"
    granularity = Granularity.WORD

    def begin(self, ctx: TaskContext) -> None:
        rp = ctx.cfg.replace
        self.pattern = re.compile(str(rp.get("pattern", "(?i)metadata")))
        replacement = rp.get("replacement")
        if replacement is None:
            self.repl: Any = lambda m: m.group(0).upper()
        else:
            self.repl = str(replacement)
        self.fontname = str(rp.get("fontname", "helv"))
        self.shrink_limit = float(rp.get("shrink_limit", 0.65))
        self.analyzer = WordFragmentAnalyzer(
            metrics=ctx.metrics,
            epsilon=float(ctx.cfg.fragments.get("baseline_epsilon", BASELINE_EPSILON)),
        )
        self.replaced = 0
        self.output: OutputDocument | None = None
        if ctx.can_build:
            self.output = OutputDocument(ctx.source_path, copy_all=True)

    def _measure(self, text: str, size: float) -> float:
        return measure_text(text, size, self.fontname)

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        replacements: list[dict[str, Any]] = []
        boxes: list[BBox] = []
        for chunk in chunks:
            if not self.pattern.search(chunk.text):
                continue
            new_word = self.pattern.sub(self.repl, chunk.text)
            fragments = self.analyzer.analyze(chunk.glyphs)
            ctx.warn(fragmentation_warning(page.page_no, chunk.text, fragments))
            pieces, fill_warnings = fill_fragments(new_word, fragments, self._measure, page_no=page.page_no)
            for w in fill_warnings:
                ctx.warn(w)

            if self.output is not None:
                for frag, piece in zip(fragments, pieces):
                    text = piece + "-" if frag.is_hyphenated and piece else piece
                    self.output.paint_replacement(
                        page.page_no, frag, text, fontname=self.fontname, shrink_limit=self.shrink_limit
                    )
            self.replaced += 1
            replacements.append(
                {
                    "word": chunk.text,
                    "replacement": new_word,
                    "fragments": [f.to_dict() for f in fragments],
                    "pieces": pieces,
                }
            )
            boxes.extend(f.bbox for f in fragments)
        return PageOutcome({"page_no": page.page_no, "replacements": replacements}, boxes)

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        if self.output is not None:
            try:
                ctx.outputs.append(str(self.output.save(ctx.output_path("replaced"))))
            finally:
                self.output.close()
        return {"replaced": self.replaced}


class BurstTask(Task):
    """Split a document into one file per criterion value."""

    name = "burst"

    def begin(self, ctx: TaskContext) -> None:
        rt = ctx.cfg.route
        marker_box = BBox(*parse_box(rt.get("marker_box", [50, 535, 105, 550])))
        criterion_box = BBox(*parse_box(rt.get("criterion_box", [50, 612, 175, 624])))
        marker_text = str(rt.get("marker_text", "INVOICE"))

        def _read(box: BBox) -> Callable[[int], str | None]:
            return lambda page_no: ctx.provider.region_text(ctx.doc, page_no, box)

        self.router: SequenceRouter[int] = SequenceRouter(region_equals(_read(marker_box), marker_text), _read(criterion_box))

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        # RoutingIncomplete propagates: the pipeline records the page as failed
        bucket = self.router.route(page.page_no, page_no=page.page_no)
        return PageOutcome({"page_no": page.page_no, "bucket": bucket.key})

    def _write_bucket(self, ctx: TaskContext, bucket: Any) -> None:
        out = OutputDocument(ctx.source_path)
        try:
            for page_no in bucket.pages:
                out.place_page(page_no)
            ctx.outputs.append(str(out.save(ctx.output_path(safe_filename_token(bucket.key)))))
        finally:
            out.close()

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        on_bucket = (lambda b: self._write_bucket(ctx, b)) if ctx.can_build else None
        buckets = self.router.finalize(on_bucket)
        return {"buckets": [{"key": b.key, "pages": list(b.pages)} for b in buckets]}


def _indexer_options(ctx: TaskContext) -> dict[str, Any]:
    return {
        "lowercase": bool(ctx.cfg.index.get("lowercase", False)),
        "collate": get_collator(ctx.cfg.index.get("collation", "unicode")),
    }


class ConcordanceTask(Task):
    name = "concordance"
    granularity = Granularity.WORD

    def begin(self, ctx: TaskContext) -> None:
        self.indexer = FrequencyIndexer(starts_with_letter, **_indexer_options(ctx))

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        accepted = sum(1 for c in chunks if self.indexer.record(c.text, page.page_no))
        return PageOutcome({"page_no": page.page_no, "words": len(chunks), "indexed": accepted})

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        limit = ctx.cfg.index.get("limit")
        entries = self.indexer.snapshot("count")
        if limit:
            entries = entries[: int(limit)]
        return {"words": [{"word": e.key, "count": e.count} for e in entries]}


class IndexTask(Task):
    """Back-of-the-book index: every word with the pages it occurs on."""

    name = "index"
    granularity = Granularity.WORD

    def begin(self, ctx: TaskContext) -> None:
        self.indexer = FrequencyIndexer(starts_with_ascii_letter, **_indexer_options(ctx))

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        accepted = sum(1 for c in chunks if self.indexer.record(c.text, page.page_no))
        return PageOutcome({"page_no": page.page_no, "words": len(chunks), "indexed": accepted})

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        groups = [
            {"initial": initial, "entries": [{"word": e.key, "pages": list(e.pages)} for e in entries]}
            for initial, entries in self.indexer.grouped_by_initial()
        ]
        return {"groups": groups}


class FontStatsTask(Task):
    name = "font-stats"

    def begin(self, ctx: TaskContext) -> None:
        self.tally = FontTally()

    def process_page(self, ctx: TaskContext, page: PageHandle, chunks: list[TextChunk]) -> PageOutcome:
        glyphs = page_glyphs(chunks)
        self.tally.record_all(glyphs)
        return PageOutcome({"page_no": page.page_no, "glyphs": len(glyphs)})

    def finish(self, ctx: TaskContext) -> dict[str, Any]:
        fonts = []
        for e in self.tally.by_glyph_count():
            fonts.append(
                {
                    "font": ctx.font_name(e.font_id),
                    "glyphs": e.glyph_count,
                    "unicode": e.unicode_count,
                    "unmapped": e.unmapped_count,
                    "pua": e.pua_total,
                    "pua_codepoints": {f"U+{cp:04X}": n for cp, n in sorted(e.pua.items())},
                    "share": round(self.tally.share(e.font_id), 2),
                }
            )
        return {
            "glyphs_total": self.tally.total_glyphs,
            "unicode_total": self.tally.total_unicode,
            "unmapped_total": self.tally.total_unmapped,
            "fonts": fonts,
        }


TASKS: dict[str, type[Task]] = {
    t.name: t
    for t in (
        FontsTask,
        ClassifyTask,
        HighlightFontsTask,
        HighlightUnmappedTask,
        BookmarksTask,
        ReplaceTask,
        BurstTask,
        ConcordanceTask,
        IndexTask,
        FontStatsTask,
    )
}


def get_task(name: str) -> Task:
    try:
        return TASKS[name]()
    except KeyError:
        raise ValueError(f"Unknown task: {name}") from None
