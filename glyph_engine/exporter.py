from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .utils import load_json


@dataclass
class ExportStats:
    task: str = ""
    rows_exported: int = 0
    pages_skipped_failed: int = 0


Rows = tuple[list[str], list[dict[str, Any]]]


def _ok_pages(result: dict[str, Any], stats: ExportStats) -> list[dict[str, Any]]:
    out = []
    for p in result.get("pages", []) or []:
        if not isinstance(p, dict):
            continue
        if p.get("status") != "ok":
            stats.pages_skipped_failed += 1
            continue
        out.append(p)
    return out


def _fonts_rows(result: dict[str, Any], stats: ExportStats) -> Rows:
    rows = []
    for p in _ok_pages(result, stats):
        for r in p.get("runs", []):
            rows.append(
                {"page_no": p["page_no"], "font": r["font"], "x": r["x"], "y": r["y"], "text": r["run"]["text"]}
            )
    return ["page_no", "font", "x", "y", "text"], rows


def _classify_rows(result: dict[str, Any], stats: ExportStats) -> Rows:
    fields = ["page_no", "classification", "label", "has_visible_text", "has_invisible_text", "has_image"]
    return fields, [{k: p.get(k) for k in fields} for p in _ok_pages(result, stats)]


def _concordance_rows(result: dict[str, Any], stats: ExportStats) -> Rows:
    words = (result.get("summary") or {}).get("words", [])
    return ["word", "count"], [{"word": w["word"], "count": w["count"]} for w in words]


def _index_rows(result: dict[str, Any], stats: ExportStats) -> Rows:
    rows = []
    for g in (result.get("summary") or {}).get("groups", []):
        for e in g.get("entries", []):
            rows.append({"initial": g["initial"], "word": e["word"], "pages": ";".join(str(n) for n in e["pages"])})
    return ["initial", "word", "pages"], rows


def _font_stats_rows(result: dict[str, Any], stats: ExportStats) -> Rows:
    fields = ["font", "glyphs", "unicode", "unmapped", "pua", "share"]
    fonts = (result.get("summary") or {}).get("fonts", [])
    return fields, [{k: f.get(k) for k in fields} for f in fonts]


EXPORTERS: dict[str, Callable[[dict[str, Any], ExportStats], Rows]] = {
    "fonts": _fonts_rows,
    "classify": _classify_rows,
    "concordance": _concordance_rows,
    "index": _index_rows,
    "font-stats": _font_stats_rows,
}


def export_csv(*, job_dir: str | Path, out_path: str | Path) -> ExportStats:
    """Write the tabular part of a finished job's result.json as CSV.

    Raises RuntimeError for tasks without a tabular report.
    """
    job_dir = Path(job_dir)
    out_path = Path(out_path)

    result = load_json(job_dir / "result.json")
    task = str((result.get("job") or {}).get("task") or "")
    make_rows = EXPORTERS.get(task)
    if make_rows is None:
        raise RuntimeError(f"No tabular export for task {task!r}")

    stats = ExportStats(task=task)
    fieldnames, rows = make_rows(result, stats)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for r in rows:
            writer.writerow(r)
            stats.rows_exported += 1

    return stats
