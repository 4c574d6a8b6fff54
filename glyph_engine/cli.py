from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import EngineConfig, load_config
from .errors import EngineError
from .exporter import export_csv
from .job import create_job_dirs, init_job_outputs, new_job_id, record_error
from .page_provider import FitzGlyphProvider, dump_document
from .pipeline import EnginePipeline, RunOptions
from .tasks import TASKS
from .utils import parse_box, write_json
from .validator import validate_job_dir


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="glyph_engine")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a task over one or more documents (one job per document)")
    run.add_argument("--task", required=True, choices=sorted(TASKS), help="Task to run")
    run.add_argument("--input", required=True, nargs="+", help="Input PDF(s) or glyph dump(s)")
    run.add_argument("--type", default="pdf", choices=["pdf", "glyphs"], help="Input type")
    run.add_argument("--workspace", default="./workspace", help="Workspace root")
    run.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")
    run.add_argument("--debug-overlay", action="store_true", default=None, help="Write annotated page PNGs")

    fonts = run.add_argument_group("font selection (fonts, highlight-fonts, highlight-unmapped)")
    fonts.add_argument("--include-font", action="append", default=None, help="Only report this font (repeatable)")
    fonts.add_argument("--ignore-font", action="append", default=None, help="Never report this font (repeatable)")
    fonts.add_argument("--coordinates", choices=["acrobat", "pdf"], default=None, help="Coordinate system for fonts")

    bm = run.add_argument_group("bookmarks")
    bm.add_argument("--heading-font", default=None, help="Font name of headings")
    bm.add_argument("--heading-size", type=float, default=None, help="Font size of headings")

    rp = run.add_argument_group("replace")
    rp.add_argument("--pattern", default=None, help="Regular expression matched against words")
    rp.add_argument("--replacement", default=None, help="Replacement text (default: uppercase of the match)")

    rt = run.add_argument_group("burst")
    rt.add_argument("--marker-text", default=None, help="Text that starts a new sequence")
    rt.add_argument("--marker-box", default=None, help="llx,lly,urx,ury of the marker region")
    rt.add_argument("--criterion-box", default=None, help="llx,lly,urx,ury of the criterion region")

    dump = sub.add_parser("dump-glyphs", help="Write a PDF's glyph streams as a replayable JSON dump")
    dump.add_argument("--input", required=True, help="Input PDF")
    dump.add_argument("--out", required=True, help="Output JSON path")

    validate = sub.add_parser("validate", help="Validate Output Contract + referenced output files")
    validate.add_argument("--job-dir", required=True, help="Job directory (workspace/jobs/<job_id>)")

    export = sub.add_parser("export", help="Export the tabular report of a completed job")
    export.add_argument("--job-dir", required=True, help="Job directory (workspace/jobs/<job_id>)")
    export.add_argument("--format", required=True, choices=["csv"], help="Export format")
    export.add_argument("--out", required=True, help="Output file path")

    return p


def _apply_overrides(cfg: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    fonts = {"include_fonts": args.include_font, "ignore_fonts": args.ignore_font}
    cfg = cfg.with_overrides("segment", coordinates=args.coordinates, **fonts)
    cfg = cfg.with_overrides("highlight", **fonts)
    cfg = cfg.with_overrides("bookmarks", font_name=args.heading_font, font_size=args.heading_size)
    cfg = cfg.with_overrides("replace", pattern=args.pattern, replacement=args.replacement)
    cfg = cfg.with_overrides(
        "route",
        marker_text=args.marker_text,
        marker_box=list(parse_box(args.marker_box)) if args.marker_box else None,
        criterion_box=list(parse_box(args.criterion_box)) if args.criterion_box else None,
    )
    return cfg


def cmd_run(args: argparse.Namespace) -> int:
    config_path = Path(args.config)
    cfg = load_config(config_path if config_path.exists() else None)
    cfg = _apply_overrides(cfg, args)

    rc = 0
    for input_path in args.input:
        job_id = new_job_id()
        paths = create_job_dirs(args.workspace, job_id)
        init_job_outputs(paths, args.task)
        opts = RunOptions(
            input_path=input_path,
            input_type=args.type,
            task=args.task,
            debug_overlay=args.debug_overlay,
        )
        try:
            EnginePipeline(paths=paths, cfg=cfg, opts=opts).run(job_id=job_id)
        except EngineError as e:
            # the document could not be opened; move on to the next one
            record_error(paths, page_no=None, stage="open_document", message=str(e))
            print(f"{input_path}: {e}")
            rc = 1
            continue
        except ValueError as e:
            record_error(paths, page_no=None, stage="config", message=str(e))
            print(f"config_error: {e}")
            return 2
        except Exception as e:
            record_error(paths, page_no=None, stage="document", message=str(e) or type(e).__name__)
            print(f"{input_path}: run_failed: {e}")
            rc = 1
            continue
        print(str(paths.job_dir))
    return rc


def cmd_dump_glyphs(args: argparse.Namespace) -> int:
    provider = FitzGlyphProvider()
    try:
        doc = provider.open_document(args.input)
    except EngineError as e:
        print(f"dump_failed: {e}")
        return 1
    try:
        data = dump_document(provider, doc)
    finally:
        provider.close_document(doc)
    write_json(args.out, data)
    print(f"pages={len(data['pages'])} fonts={len(data['fonts'])}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    ok, summary = validate_job_dir(args.job_dir)
    print(f"missing_contract_files={summary['missing_contract_files']}")
    print(f"missing_outputs={summary['missing_outputs']}")
    print(f"invalid_pages={summary['invalid_pages']}")
    if not ok:
        for m in summary["errors"]:
            print(m)
        return 1
    print("OK")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    if args.format != "csv":
        raise SystemExit(2)
    try:
        stats = export_csv(job_dir=args.job_dir, out_path=args.out)
        print(f"task={stats.task} exported={stats.rows_exported} skipped_failed_pages={stats.pages_skipped_failed}")
        return 0
    except Exception as e:
        print(f"export_failed: {e}")
        return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    if args.command == "run":
        return cmd_run(args)

    if args.command == "dump-glyphs":
        return cmd_dump_glyphs(args)

    if args.command == "validate":
        return cmd_validate(args)

    if args.command == "export":
        return cmd_export(args)

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
