from __future__ import annotations

from pathlib import Path
from typing import Any

from .tasks import TASKS
from .utils import load_json, read_jsonl

CONTRACT_FILES = ("result.json", "metrics.json", "errors.jsonl", "warnings.jsonl")


def _validate_pages(result: Any, errors: list[str]) -> int:
    invalid = 0
    pages = (result or {}).get("pages", []) if isinstance(result, dict) else []
    seen: set[int] = set()
    for idx, p in enumerate(pages):
        if not isinstance(p, dict):
            errors.append(f"result.json: invalid page[{idx}]: not an object")
            invalid += 1
            continue
        page_no = p.get("page_no")
        if type(page_no) is not int or page_no < 1:
            errors.append(f"result.json: invalid page[{idx}]: page_no must be a positive int")
            invalid += 1
            continue
        if page_no in seen:
            errors.append(f"result.json: duplicate page_no {page_no}")
            invalid += 1
        seen.add(page_no)
        status = p.get("status")
        if status not in ("ok", "failed"):
            errors.append(f"result.json: invalid page[{idx}]: status={status}")
            invalid += 1
        if status == "failed" and not p.get("error"):
            errors.append(f"result.json: page {page_no} failed without an error message")
            invalid += 1
    return invalid


def _validate_outputs(job_dir: Path, result: Any, errors: list[str]) -> int:
    missing = 0
    summary = (result or {}).get("summary", {}) if isinstance(result, dict) else {}
    for out in summary.get("outputs", []) or []:
        p = Path(out)
        if not p.is_absolute() and not p.exists():
            p = job_dir / p
        if not p.exists():
            errors.append(f"missing output: {out}")
            missing += 1
    return missing


def validate_job_dir(job_dir: str | Path) -> tuple[bool, dict[str, Any]]:
    job_dir = Path(job_dir)
    errors: list[str] = []

    missing_contract_files = 0
    missing_outputs = 0
    invalid_pages = 0

    for f in CONTRACT_FILES:
        p = job_dir / f
        if not p.exists():
            missing_contract_files += 1
            errors.append(f"missing: {p}")

    try:
        result = load_json(job_dir / "result.json")

        job_obj = result.get("job") if isinstance(result, dict) else None
        if not isinstance(job_obj, dict):
            errors.append("result.json: missing/invalid job object")
        else:
            for k in ("job_id", "task", "input", "created_at"):
                if k not in job_obj:
                    errors.append(f"result.json: job missing field {k}")
            if job_obj.get("task") not in TASKS:
                errors.append(f"result.json: unknown task {job_obj.get('task')}")
            if isinstance(job_obj.get("input"), dict):
                for k in ("type", "path"):
                    if k not in job_obj["input"]:
                        errors.append(f"result.json: job.input missing field {k}")
            else:
                errors.append("result.json: job.input must be an object")

        invalid_pages += _validate_pages(result, errors)
        missing_outputs += _validate_outputs(job_dir, result, errors)
    except Exception as e:
        errors.append(f"failed to read result.json: {e}")
        invalid_pages += 1

    try:
        metrics = load_json(job_dir / "metrics.json")
        if not isinstance(metrics, dict):
            errors.append("metrics.json: must be an object")
        else:
            for k in ("created_at", "pages_total", "pages_processed", "pages_failed"):
                if k not in metrics:
                    errors.append(f"metrics.json: missing field {k}")
            if metrics.get("finished") is not True:
                errors.append("metrics.json: job not finished (finished!=true)")
            completed_at = metrics.get("completed_at")
            if not isinstance(completed_at, str) or not completed_at.strip():
                errors.append("metrics.json: missing/invalid completed_at")

            try:
                pt = int(metrics.get("pages_total") or 0)
                pp = int(metrics.get("pages_processed") or 0)
                pf = int(metrics.get("pages_failed") or 0)
                if min(pt, pp, pf) < 0 or pp + pf != pt:
                    errors.append(f"metrics.json: pages_processed + pages_failed != pages_total: {pp}+{pf}/{pt}")
            except (TypeError, ValueError):
                errors.append("metrics.json: page counters must be ints")
    except Exception as e:
        errors.append(f"failed to read metrics.json: {e}")

    try:
        for i, rec in enumerate(read_jsonl(job_dir / "warnings.jsonl")):
            if "code" not in rec or "message" not in rec:
                errors.append(f"warnings.jsonl: record {i} missing code/message")
    except ValueError as e:
        errors.append(f"failed to read warnings.jsonl: {e}")

    summary: dict[str, Any] = {
        "missing_contract_files": missing_contract_files,
        "missing_outputs": missing_outputs,
        "invalid_pages": invalid_pages,
        "errors": errors,
    }

    ok = not errors
    return ok, summary
