from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .errors import AnalysisWarning
from .utils import append_jsonl, ensure_dir, utc_now_iso, write_json

logger = logging.getLogger(__name__)


@dataclass
class JobPaths:
    job_dir: Path
    output_dir: Path
    stage_pages_dir: Path
    debug_dir: Path
    result_json: Path
    warnings_jsonl: Path
    metrics_json: Path
    errors_jsonl: Path


def create_job_dirs(workspace: str | Path, job_id: str) -> JobPaths:
    ws = Path(workspace)
    job_dir = ws / "jobs" / job_id

    output_dir = job_dir / "output"
    stage_pages_dir = job_dir / "stage" / "pages"
    debug_dir = job_dir / "debug"

    for p in [output_dir, stage_pages_dir, debug_dir]:
        ensure_dir(p)

    return JobPaths(
        job_dir=job_dir,
        output_dir=output_dir,
        stage_pages_dir=stage_pages_dir,
        debug_dir=debug_dir,
        result_json=job_dir / "result.json",
        warnings_jsonl=job_dir / "warnings.jsonl",
        metrics_json=job_dir / "metrics.json",
        errors_jsonl=job_dir / "errors.jsonl",
    )


def new_job_id() -> str:
    """Timeline job id: ``YYYY-MM-DD/HH-MM-SS__<shortid>``."""
    now = datetime.now(timezone.utc)
    date_part = now.strftime("%Y-%m-%d")
    time_part = now.strftime("%H-%M-%S")
    short_id = uuid.uuid4().hex[:8]
    return f"{date_part}/{time_part}__{short_id}"


def record_error(paths: JobPaths, page_no: int | None, stage: str, message: str) -> None:
    logger.warning("page %s, %s: %s", page_no, stage, message)
    append_jsonl(paths.errors_jsonl, {"page_no": page_no, "stage": stage, "message": message})


def record_warning(paths: JobPaths, warning: AnalysisWarning) -> None:
    logger.warning("%s", warning.message)
    append_jsonl(paths.warnings_jsonl, warning.to_dict())


def init_job_outputs(paths: JobPaths, task: str) -> None:
    # Always create output files, even if empty.
    write_json(paths.result_json, {"job": {"task": task}, "pages": [], "summary": {}})
    write_json(
        paths.metrics_json,
        {
            "created_at": utc_now_iso(),
            "finished": False,
            "completed_at": None,
            "pages_total": 0,
            "pages_processed": 0,
            "pages_failed": 0,
            "glyphs_total": 0,
            "boxes_total": 0,
            "warnings_total": 0,
            "outputs_written": 0,
        },
    )
    for p in (paths.errors_jsonl, paths.warnings_jsonl):
        p.parent.mkdir(parents=True, exist_ok=True)
        p.touch(exist_ok=True)
