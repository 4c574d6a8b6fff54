"""End-to-end runs of every task over replayed glyph dumps.

Tests cover:
1. Output contract of a job directory (validate command)
2. Per-page fail-soft and per-document error recovery
3. Task results for the sample document
4. CSV export and debug overlays
"""
from __future__ import annotations

import csv
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any

import pytest

from glyph_engine.cli import main
from glyph_engine.types import GlyphEvent
from glyph_engine.utils import load_json, read_jsonl, write_json

SAMPLE = Path(__file__).resolve().parent.parent / "samples" / "sample_document.glyphs.json"


# ═══════════════════════════════════════════════════════════════════════════════
# TEST FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def workspace_dir() -> Path:
    """Create temporary workspace."""
    tmp = tempfile.mkdtemp()
    yield Path(tmp)
    shutil.rmtree(tmp, ignore_errors=True)


def line(text: str, *, x: float = 72.0, y: float = 700.0, font: int = 0, size: float = 10.0, **kw: Any) -> list[dict]:
    return [GlyphEvent(ord(ch), font, size, x + i * 5.0, y, 5.0, **kw).to_dict() for i, ch in enumerate(text)]


def write_dump(path: Path, pages: list[dict], fonts: list[dict] | None = None) -> Path:
    fonts = fonts or [{"id": 0, "name": "Helvetica"}, {"id": 1, "name": "Symbol"}]
    numbered = [{"page_no": i, "width": 612, "height": 792, **p} for i, p in enumerate(pages, start=1)]
    write_json(path, {"source": path.name, "fonts": fonts, "pages": numbered})
    return path


def run_job(workspace: Path, capsys, task: str, *inputs: Path, extra: list[str] | None = None) -> tuple[int, list[Path]]:
    argv = ["run", "--task", task, "--type", "glyphs", "--workspace", str(workspace), "--input"]
    argv += [str(p) for p in inputs]
    rc = main(argv + (extra or []))
    out = capsys.readouterr().out
    job_dirs = [Path(l) for l in out.splitlines() if l.strip() and Path(l).is_dir()]
    return rc, job_dirs


def run_one(workspace: Path, capsys, task: str, dump: Path, extra: list[str] | None = None) -> tuple[Path, dict]:
    rc, job_dirs = run_job(workspace, capsys, task, dump, extra=extra)
    assert rc == 0
    assert len(job_dirs) == 1
    return job_dirs[0], load_json(job_dirs[0] / "result.json")


# ═══════════════════════════════════════════════════════════════════════════════
# OUTPUT CONTRACT
# ═══════════════════════════════════════════════════════════════════════════════

class TestOutputContract:
    def test_job_layout_and_validate(self, workspace_dir, capsys):
        job_dir, result = run_one(workspace_dir, capsys, "fonts", SAMPLE)

        for f in ("result.json", "metrics.json", "errors.jsonl", "warnings.jsonl"):
            assert (job_dir / f).exists()
        assert (job_dir / "output").is_dir()
        assert len(list((job_dir / "stage" / "pages").glob("page_*.json"))) == 4

        # workspace/jobs/<date>/<time>__<id>
        rel = job_dir.relative_to(workspace_dir / "jobs")
        assert len(rel.parts) == 2 and "__" in rel.parts[1]

        metrics = load_json(job_dir / "metrics.json")
        assert metrics["finished"] is True
        assert metrics["pages_total"] == 4
        assert metrics["pages_processed"] == 4
        assert metrics["pages_failed"] == 0
        assert result["job"]["task"] == "fonts"

        assert main(["validate", "--job-dir", str(job_dir)]) == 0
        assert "OK" in capsys.readouterr().out

    def test_validate_rejects_unfinished_job(self, workspace_dir, capsys):
        job_dir, _ = run_one(workspace_dir, capsys, "fonts", SAMPLE)
        metrics = load_json(job_dir / "metrics.json")
        metrics["finished"] = False
        write_json(job_dir / "metrics.json", metrics)
        assert main(["validate", "--job-dir", str(job_dir)]) == 1

    def test_damaged_page_is_skipped(self, workspace_dir, capsys):
        dump = write_dump(
            workspace_dir / "damaged.json",
            [
                {"glyphs": line("before")},
                {"error": "invalid font dictionary"},
                {"glyphs": line("after")},
            ],
        )
        job_dir, result = run_one(workspace_dir, capsys, "concordance", dump)

        statuses = [(p["page_no"], p["status"]) for p in result["pages"]]
        assert statuses == [(1, "ok"), (2, "failed"), (3, "ok")]
        errors = read_jsonl(job_dir / "errors.jsonl")
        assert len(errors) == 1
        assert errors[0]["page_no"] == 2
        assert errors[0]["stage"] == "concordance"
        assert "invalid font dictionary" in errors[0]["message"]

        metrics = load_json(job_dir / "metrics.json")
        assert (metrics["pages_processed"], metrics["pages_failed"]) == (2, 1)
        assert main(["validate", "--job-dir", str(job_dir)]) == 0

    def test_task_error_on_one_page_keeps_the_rest(self, workspace_dir, capsys, monkeypatch):
        from glyph_engine import tasks

        class BrokenOnPageTwo(tasks.ClassifyTask):
            def process_page(self, ctx, page, chunks):
                if page.page_no == 2:
                    raise ValueError("bad quads entry")
                return super().process_page(ctx, page, chunks)

        monkeypatch.setitem(tasks.TASKS, "classify", BrokenOnPageTwo)
        rc, job_dirs = run_job(workspace_dir, capsys, "classify", SAMPLE, SAMPLE)
        assert rc == 0
        assert len(job_dirs) == 2

        for job_dir in job_dirs:
            result = load_json(job_dir / "result.json")
            assert [p["status"] for p in result["pages"]] == ["ok", "failed", "ok", "ok"]
            assert result["pages"][1]["error"] == "bad quads entry"
            errors = read_jsonl(job_dir / "errors.jsonl")
            assert [(e["page_no"], e["stage"]) for e in errors] == [(2, "classify")]
            assert main(["validate", "--job-dir", str(job_dir)]) == 0
        capsys.readouterr()

    def test_failing_document_does_not_stop_the_batch(self, workspace_dir, capsys, monkeypatch):
        from glyph_engine import tasks

        class BrokenSummary(tasks.ClassifyTask):
            def finish(self, ctx):
                if ctx.source_path.name == "broken.glyphs.json":
                    raise RuntimeError("summary failed")
                return super().finish(ctx)

        monkeypatch.setitem(tasks.TASKS, "classify", BrokenSummary)
        broken = workspace_dir / "broken.glyphs.json"
        shutil.copyfile(SAMPLE, broken)
        rc, job_dirs = run_job(workspace_dir, capsys, "classify", broken, SAMPLE)
        assert rc == 1
        assert len(job_dirs) == 1
        assert load_json(job_dirs[0] / "metrics.json")["finished"] is True

        failed = [d for d in (workspace_dir / "jobs").glob("*/*") if d.is_dir() and d != job_dirs[0]]
        assert len(failed) == 1
        errors = read_jsonl(failed[0] / "errors.jsonl")
        assert [(e["page_no"], e["stage"], e["message"]) for e in errors] == [(None, "document", "summary failed")]

    def test_unopenable_document_does_not_stop_the_batch(self, workspace_dir, capsys):
        missing = workspace_dir / "missing.json"
        rc = main(
            ["run", "--task", "classify", "--type", "glyphs", "--workspace", str(workspace_dir),
             "--input", str(missing), str(SAMPLE)]
        )
        out = capsys.readouterr().out
        assert rc == 1
        assert "missing.json" in out

        job_dirs = sorted(p.parent for p in (workspace_dir / "jobs").glob("*/*/metrics.json"))
        assert len(job_dirs) == 2
        finished = [load_json(d / "metrics.json")["finished"] for d in job_dirs]
        assert sorted(finished) == [False, True]
        failed = [d for d in job_dirs if not load_json(d / "metrics.json")["finished"]][0]
        assert read_jsonl(failed / "errors.jsonl")[0]["stage"] == "open_document"


# ═══════════════════════════════════════════════════════════════════════════════
# TASKS
# ═══════════════════════════════════════════════════════════════════════════════

class TestTasks:
    def test_fonts(self, workspace_dir, capsys):
        _, result = run_one(workspace_dir, capsys, "fonts", SAMPLE)
        page1 = result["pages"][0]["runs"]
        assert [(r["font"], r["x"], r["y"]) for r in page1] == [("Helvetica-Bold", 72.0, 72.0), ("Helvetica", 72.0, 102.0)]
        assert page1[0]["run"]["text"] == "Introduction"
        assert result["pages"][3]["runs"] == []

    def test_fonts_pdf_coordinates_and_filter(self, workspace_dir, capsys):
        _, result = run_one(
            workspace_dir, capsys, "fonts", SAMPLE, extra=["--coordinates", "pdf", "--ignore-font", "Helvetica"]
        )
        page1 = result["pages"][0]["runs"]
        assert [(r["font"], r["y"]) for r in page1] == [("Helvetica-Bold", 720.0)]

    def test_classify(self, workspace_dir, capsys):
        _, result = run_one(workspace_dir, capsys, "classify", SAMPLE)
        assert [p["classification"] for p in result["pages"]] == [
            "visible_text",
            "visible_text",
            "searchable_image",
            "image_only",
        ]
        assert result["summary"]["classifications"]["visible_text"] == 2

    def test_highlight_fonts_merges_lines_of_one_font(self, workspace_dir, capsys):
        _, result = run_one(workspace_dir, capsys, "highlight-fonts", SAMPLE)
        annots = result["pages"][0]["annotations"]
        assert [a["font"] for a in annots] == ["Helvetica-Bold", "Helvetica"]
        assert len(annots[1]["rects"]) == 2
        top, bottom = annots[1]["rects"]
        assert annots[1]["bbox"] == [72.0, bottom[1], max(top[2], bottom[2]), top[3]]
        assert result["summary"]["outputs"] == []

    def test_highlight_unmapped(self, workspace_dir, capsys):
        unmapped = [
            GlyphEvent(None, 1, 10.0, 100.0 + i * 5.0, 700.0, 5.0, is_unmapped=True).to_dict() for i in range(3)
        ]
        sep = GlyphEvent(0x20, 1, 10.0, 115.0, 700.0, 0.0, kind=12).to_dict()
        dump = write_dump(workspace_dir / "unmapped.json", [{"glyphs": line("ok ") + unmapped + [sep] + line("x", x=200)}])
        _, result = run_one(workspace_dir, capsys, "highlight-unmapped", dump)

        annots = result["pages"][0]["annotations"]
        assert len(annots) == 1
        assert annots[0]["font"] == "Symbol"
        assert annots[0]["unmapped"] == 3
        assert result["summary"]["unmapped_glyphs"] == 3

    def test_bookmarks(self, workspace_dir, capsys):
        _, result = run_one(
            workspace_dir, capsys, "bookmarks", SAMPLE, extra=["--heading-font", "Helvetica-Bold", "--heading-size", "18"]
        )
        entries = result["pages"][0]["bookmarks"]
        assert entries == [{"title": "Introduction", "page_no": 1, "x": 72.0, "y": 732.92}]
        assert result["summary"]["bookmarks"] == 1

    def test_bookmarks_need_heading_font(self, workspace_dir, capsys):
        rc, _ = run_job(workspace_dir, capsys, "bookmarks", SAMPLE)
        assert rc == 2

    def test_replace(self, workspace_dir, capsys):
        job_dir, result = run_one(workspace_dir, capsys, "replace", SAMPLE)
        words = [(r["word"], r["replacement"]) for p in result["pages"] if p["status"] == "ok" for r in p["replacements"]]
        assert words == [("metadata", "METADATA"), ("Metadata", "METADATA")]
        assert result["summary"]["replaced"] == 2
        assert read_jsonl(job_dir / "warnings.jsonl") == []

    def test_replace_reports_fragmented_word(self, workspace_dir, capsys):
        hyphen = GlyphEvent(ord("-"), 0, 10.0, 92.0, 700.0, 5.0).to_dict()
        glyphs = line("meta") + [hyphen] + line("data", y=688.0)
        dump = write_dump(workspace_dir / "hyphen.json", [{"glyphs": glyphs}])
        job_dir, result = run_one(workspace_dir, capsys, "replace", dump)

        rep = result["pages"][0]["replacements"][0]
        assert rep["word"] == "metadata"
        assert [f["is_hyphenated"] for f in rep["fragments"]] == [True, False]
        assert "".join(rep["pieces"]) == "METADATA"

        warnings = read_jsonl(job_dir / "warnings.jsonl")
        assert warnings[0]["code"] == "WORD_FRAGMENTED"
        assert warnings[0]["page_no"] == 1
        assert load_json(job_dir / "metrics.json")["warnings_total"] == len(warnings)

    def test_replace_reports_raised_letter(self, workspace_dir, capsys):
        raised = GlyphEvent(ord("a"), 0, 6.0, 107.0, 704.0, 3.0).to_dict()
        dump = write_dump(workspace_dir / "raised.json", [{"glyphs": line("metadat") + [raised]}])
        job_dir, result = run_one(workspace_dir, capsys, "replace", dump)

        rep = result["pages"][0]["replacements"][0]
        assert rep["word"] == "metadata"
        assert [(f["font_size"], f["is_hyphenated"]) for f in rep["fragments"]] == [(10.0, False), (6.0, False)]
        assert read_jsonl(job_dir / "warnings.jsonl")[0]["code"] == "WORD_FRAGMENTED"

    def test_replace_custom_pattern(self, workspace_dir, capsys):
        _, result = run_one(
            workspace_dir, capsys, "replace", SAMPLE, extra=["--pattern", "^XMP", "--replacement", "RDF"]
        )
        reps = [r for p in result["pages"] for r in p.get("replacements", [])]
        assert [(r["word"], r["replacement"]) for r in reps] == [("XMP.", "RDF.")]

    def test_burst(self, workspace_dir, capsys):
        def invoice(country: str | None) -> dict:
            glyphs = line("body text", y=400.0)
            if country:
                glyphs = line("INVOICE", x=55.0, y=540.0) + line(country, x=55.0, y=615.0) + glyphs
            return {"glyphs": glyphs}

        dump = write_dump(workspace_dir / "invoices.json", [invoice("US"), invoice(None), invoice("DE"), invoice("US")])
        _, result = run_one(workspace_dir, capsys, "burst", dump)

        assert [p["bucket"] for p in result["pages"]] == ["US", "US", "DE", "US"]
        assert result["summary"]["buckets"] == [{"key": "US", "pages": [1, 2, 4]}, {"key": "DE", "pages": [3]}]

    def test_burst_first_page_without_criterion_fails(self, workspace_dir, capsys):
        dump = write_dump(workspace_dir / "nocrit.json", [{"glyphs": line("cover page")}, {"glyphs": line("x")}])
        job_dir, result = run_one(workspace_dir, capsys, "burst", dump)
        assert [p["status"] for p in result["pages"]] == ["failed", "failed"]
        assert "empty routing criterion" in read_jsonl(job_dir / "errors.jsonl")[0]["message"]

    def test_concordance(self, workspace_dir, capsys):
        dump = write_dump(
            workspace_dir / "words.json",
            [{"glyphs": line("the cat and the dog 42")}, {"glyphs": line("the end")}],
        )
        _, result = run_one(workspace_dir, capsys, "concordance", dump)
        words = result["summary"]["words"]
        assert words[0] == {"word": "the", "count": 3}
        assert "42" not in [w["word"] for w in words]
        assert [w["word"] for w in words[1:]] == ["cat", "and", "dog", "end"]

    def test_index(self, workspace_dir, capsys):
        dump = write_dump(
            workspace_dir / "index.json",
            [{"glyphs": line("beta alpha")}, {"glyphs": line("alpha")}, {"glyphs": line("beta Zeta")}],
        )
        _, result = run_one(workspace_dir, capsys, "index", dump)
        groups = result["summary"]["groups"]
        assert [g["initial"] for g in groups] == ["A", "B", "Z"]
        assert groups[0]["entries"] == [{"word": "alpha", "pages": [1, 2]}]
        assert groups[1]["entries"] == [{"word": "beta", "pages": [1, 3]}]

    def test_font_stats(self, workspace_dir, capsys):
        _, result = run_one(workspace_dir, capsys, "font-stats", SAMPLE)
        summary = result["summary"]
        assert summary["glyphs_total"] == 116
        fonts = {f["font"]: f for f in summary["fonts"]}
        assert fonts["Helvetica-Bold"]["glyphs"] == 12
        assert fonts["Helvetica-Bold"]["share"] == pytest.approx(10.34)
        assert fonts["Helvetica"]["share"] == pytest.approx(89.66)
        assert summary["fonts"][0]["font"] == "Helvetica"


# ═══════════════════════════════════════════════════════════════════════════════
# EXPORT AND DEBUG
# ═══════════════════════════════════════════════════════════════════════════════

class TestExportAndDebug:
    def test_export_fonts_csv(self, workspace_dir, capsys):
        job_dir, _ = run_one(workspace_dir, capsys, "fonts", SAMPLE)
        out = workspace_dir / "fonts.csv"
        assert main(["export", "--job-dir", str(job_dir), "--format", "csv", "--out", str(out)]) == 0

        with out.open(encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 4
        assert rows[0]["font"] == "Helvetica-Bold"
        assert rows[0]["text"] == "Introduction"

    def test_export_font_stats_csv(self, workspace_dir, capsys):
        job_dir, _ = run_one(workspace_dir, capsys, "font-stats", SAMPLE)
        out = workspace_dir / "stats.csv"
        assert main(["export", "--job-dir", str(job_dir), "--format", "csv", "--out", str(out)]) == 0
        header = out.read_text(encoding="utf-8").splitlines()[0]
        assert header == "font,glyphs,unicode,unmapped,pua,share"

    def test_export_without_table_fails(self, workspace_dir, capsys):
        job_dir, _ = run_one(workspace_dir, capsys, "replace", SAMPLE)
        assert main(["export", "--job-dir", str(job_dir), "--format", "csv", "--out", str(workspace_dir / "x.csv")]) == 1
        assert "export_failed" in capsys.readouterr().out

    def test_debug_overlay(self, workspace_dir, capsys):
        from PIL import Image

        job_dir, _ = run_one(workspace_dir, capsys, "highlight-fonts", SAMPLE, extra=["--debug-overlay"])
        png = job_dir / "debug" / "page_0001.png"
        assert png.exists()
        with Image.open(png) as img:
            assert img.size == (612, 792)
            # the red outline of the first run's box lands on the page
            assert (255, 0, 0) in {img.getpixel((72, y)) for y in range(50, 80)}


def test_config_file_is_valid_json():
    cfg_path = Path(__file__).resolve().parent.parent / "config" / "default.json"
    data = json.loads(cfg_path.read_text(encoding="utf-8"))
    assert data["replace"]["pattern"] == "(?i)metadata"
    assert data["route"]["marker_text"] == "INVOICE"
