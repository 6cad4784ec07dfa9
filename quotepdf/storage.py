from __future__ import annotations

from pathlib import Path
from typing import Iterable

from . import config
from .models import Artifact, ReportRun, get_session


ARTIFACT_NAMES = {
    "pdf": "report.pdf",
    "manifest": "manifest.json",
    "error": "error.log",
}


def run_dir(slug: str, base_dir: Path | None = None, include_slug: bool = True) -> Path:
    root = base_dir or config.OUT_DIR
    path = root / slug if include_slug else root
    path.mkdir(parents=True, exist_ok=True)
    return path


def artifact_path(
    slug: str,
    artifact_type: str,
    base_dir: Path | None = None,
    include_slug: bool = True,
    filename: str | None = None,
) -> Path:
    """Location of one output file; ``filename`` overrides the default name (PDFs are named per record)."""
    name = filename or ARTIFACT_NAMES[artifact_type]
    return run_dir(slug, base_dir=base_dir, include_slug=include_slug) / name


def record_artifacts(run: ReportRun, artifacts: Iterable[tuple[str, Path]]) -> None:
    with get_session() as session:
        for artifact_type, path in artifacts:
            session.add(
                Artifact(
                    run_id=run.id,
                    type=artifact_type,
                    path=str(path.relative_to(config.OUT_DIR)),
                )
            )
        session.commit()
