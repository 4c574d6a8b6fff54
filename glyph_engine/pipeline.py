from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import EngineConfig
from .debug_overlay import OverlayConfig, write_page_overlay
from .job import JobPaths, record_error, record_warning
from .page_provider import get_provider, iter_chunks
from .tasks import TaskContext, get_task
from .utils import utc_now_iso
from .writer import JobWriter

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    input_path: str
    input_type: str
    task: str
    debug_overlay: bool | None = None


class EnginePipeline:
    def __init__(self, paths: JobPaths, cfg: EngineConfig, opts: RunOptions):
        self.paths = paths
        self.cfg = cfg
        self.opts = opts

        self.provider = get_provider(opts.input_type)
        self.task = get_task(opts.task)
        self.writer = JobWriter(paths=paths)

        overlay = opts.debug_overlay
        if overlay is None:
            overlay = bool(cfg.debug.get("overlay", False))
        self.overlay_cfg = OverlayConfig.from_dict(cfg.debug) if overlay else None

    def run(self, job_id: str) -> dict[str, Any]:
        """Process the whole document and write the job outputs.

        An EngineError while opening the document propagates to the caller;
        any error on a single page is recorded and the page is skipped.
        """
        metrics: dict[str, Any] = {
            "created_at": utc_now_iso(),
            "pages_total": 0,
            "pages_processed": 0,
            "pages_failed": 0,
            "glyphs_total": 0,
            "boxes_total": 0,
            "warnings_total": 0,
            "outputs_written": 0,
        }
        job_meta = {
            "job_id": job_id,
            "task": self.task.name,
            "input": {"type": self.opts.input_type, "path": self.opts.input_path},
            "created_at": metrics["created_at"],
        }
        pages: list[dict[str, Any]] = []

        doc = self.provider.open_document(self.opts.input_path)
        logger.info("opened %s (%d pages), task=%s", self.opts.input_path, doc.page_count, self.task.name)
        try:
            ctx = TaskContext(
                provider=self.provider,
                doc=doc,
                cfg=self.cfg,
                source_path=Path(self.opts.input_path),
                input_type=self.opts.input_type,
                output_dir=self.paths.output_dir,
            )
            self.task.begin(ctx)

            for page_no in range(1, self.provider.page_count(doc) + 1):
                metrics["pages_total"] += 1
                try:
                    page = self.provider.open_page(doc, page_no, self.task.granularity)
                    try:
                        chunks = list(iter_chunks(self.provider, page))
                        outcome = self.task.process_page(ctx, page, chunks)
                    finally:
                        self.provider.close_page(page)
                except Exception as e:
                    message = str(e) or type(e).__name__
                    record_error(self.paths, page_no=page_no, stage=self.task.name, message=message)
                    metrics["pages_failed"] += 1
                    pages.append({"page_no": page_no, "status": "failed", "error": message})
                    continue
                finally:
                    for w in ctx.warnings:
                        record_warning(self.paths, w)
                    metrics["warnings_total"] += len(ctx.warnings)
                    ctx.warnings.clear()

                metrics["glyphs_total"] += sum(len(c.glyphs) for c in chunks)
                metrics["boxes_total"] += len(outcome.boxes)
                page_out = {"status": "ok", **outcome.data}
                self.writer.write_page_stage(page_no, page_out)
                pages.append(page_out)
                metrics["pages_processed"] += 1

                if self.overlay_cfg is not None:
                    try:
                        write_page_overlay(self.provider, doc, page, outcome.boxes, self.paths.debug_dir, self.overlay_cfg)
                    except Exception as e:
                        record_error(self.paths, page_no=page_no, stage="debug_overlay", message=str(e))

            summary = self.task.finish(ctx)
            for w in ctx.warnings:
                record_warning(self.paths, w)
            metrics["warnings_total"] += len(ctx.warnings)
            ctx.warnings.clear()
        finally:
            self.provider.close_document(doc)

        metrics["outputs_written"] = len(ctx.outputs)
        summary = {**summary, "outputs": list(ctx.outputs)}
        self.writer.write_final(job_meta=job_meta, pages=pages, summary=summary, metrics=metrics)
        logger.info(
            "done: %d/%d pages, %d failed, %d warnings",
            metrics["pages_processed"],
            metrics["pages_total"],
            metrics["pages_failed"],
            metrics["warnings_total"],
        )
        return metrics
