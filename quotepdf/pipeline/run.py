from __future__ import annotations

from datetime import datetime
from pathlib import Path
import logging
import shutil
from typing import Iterable, List, Optional
import json

from .. import config
from ..config import ReportOptions
from ..i18n import Localizer
from ..models import ReportRun, RunStatus, get_session, init_db
from ..storage import artifact_path, record_artifacts
from .ingest import load_record_at
from .preview import PreviewResolver
from .render_report import RenderedReport, generate_report


logger = logging.getLogger(__name__)


class RecordError(Exception):
    """The record file could not be turned into a ReportRecord."""


def _write_error(slug: str, message: str) -> None:
    error_path = artifact_path(slug, "error", base_dir=config.OUT_DIR)
    error_path.write_text(message, encoding="utf-8")


def _prepare_temp_dir(slug: str) -> Path:
    temp_dir = config.OUT_DIR / f"{slug}.tmp"
    if temp_dir.exists():
        shutil.rmtree(temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


def _finalize_artifacts(
    temp_dir: Path,
    final_dir: Path,
    artifacts: List[tuple[str, Path]],
) -> List[tuple[str, Path]]:
    if final_dir.exists():
        shutil.rmtree(final_dir)
    temp_dir.replace(final_dir)
    finalized: List[tuple[str, Path]] = []
    for artifact_type, path in artifacts:
        finalized.append((artifact_type, final_dir / path.relative_to(temp_dir)))
    return finalized


def build_manifest(run: ReportRun, report: RenderedReport, options: ReportOptions) -> dict:
    return {
        "record_id": run.record_id,
        "filename": report.filename,
        "page_count": report.page_count,
        "options": options.summary(),
        "appendix": [
            {"id": item.id, "filename": item.filename, "category": item.category, "type": item.type_label}
            for item in report.appendix
        ],
    }


def process_run(
    run: ReportRun,
    options: ReportOptions,
    localizer: Localizer,
    resolver: Optional[PreviewResolver] = None,
    now: Optional[datetime] = None,
) -> tuple[List[tuple[str, Path]], RenderedReport]:
    try:
        record = load_record_at(Path(run.source_path), run.source_index)
    except (KeyError, TypeError, ValueError, IndexError) as exc:
        raise RecordError(f"Invalid record {run.record_id}: {exc!r}") from exc

    temp_dir = _prepare_temp_dir(run.slug)
    try:
        report = generate_report(record, localizer, options, now=now, resolver=resolver)
        pdf_path = report.write(
            artifact_path(run.slug, "pdf", base_dir=temp_dir, include_slug=False, filename=report.filename)
        )
        manifest_path = artifact_path(run.slug, "manifest", base_dir=temp_dir, include_slug=False)
        manifest_path.write_text(json.dumps(build_manifest(run, report, options), indent=2), encoding="utf-8")
    except Exception:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    artifacts = [("pdf", pdf_path), ("manifest", manifest_path)]
    final_dir = config.OUT_DIR / run.slug
    artifacts = _finalize_artifacts(temp_dir, final_dir, artifacts)
    return artifacts, report


def run_pipeline(
    runs: Iterable[ReportRun],
    options: Optional[ReportOptions] = None,
    resolver: Optional[PreviewResolver] = None,
    now: Optional[datetime] = None,
) -> dict[str, list[str]]:
    init_db()
    options = options or ReportOptions.internal()
    localizer = Localizer.load(options.language)
    results: dict[str, list[str]] = {"READY": [], "FAILED": []}
    with get_session() as session:
        for run in runs:
            report: RenderedReport | None = None
            artifacts: List[tuple[str, Path]] = []
            error: Exception | None = None
            try:
                artifacts, report = process_run(run, options, localizer, resolver=resolver, now=now)
            except Exception as exc:
                logger.exception("Report generation failed for %s", run.record_id)
                error = exc

            run.variant = options.variant
            run.language = options.language
            if report is not None:
                run.status = RunStatus.READY
                run.fail_code = None
                run.fail_detail = None
                run.page_count = report.page_count
                run.appendix_count = len(report.appendix)
            else:
                run.status = RunStatus.FAILED
                run.fail_code = "RECORD_INVALID" if isinstance(error, RecordError) else "RENDER_ERROR"
                run.fail_detail = str(error) or error.__class__.__name__
            session.add(run)
            session.commit()
            session.refresh(run)

            if run.status == RunStatus.READY:
                record_artifacts(run, artifacts)
                results["READY"].append(run.slug)
            else:
                _write_error(run.slug, f"{run.fail_code}: {run.fail_detail}")
                results["FAILED"].append(run.slug)
    return results
