from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Iterable, List, Tuple

from slugify import slugify

from sqlmodel import select

from ..models import ReportRun, RunStatus, get_session, init_db
from ..record import ReportRecord


def read_payloads(path: Path) -> List[dict]:
    """One JSON file holds a single record object or a list of them."""
    if not path.exists():
        raise FileNotFoundError(f"Record file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data: Any = json.load(handle)
    payloads = data if isinstance(data, list) else [data]
    if not payloads:
        raise ValueError(f"No records in {path}")
    for payload in payloads:
        if not isinstance(payload, dict):
            raise ValueError(f"Record entries must be JSON objects: {path}")
    return payloads


def load_records(paths: Iterable[Path]) -> List[Tuple[Path, int, ReportRecord]]:
    loaded: List[Tuple[Path, int, ReportRecord]] = []
    for path in paths:
        for index, payload in enumerate(read_payloads(path)):
            loaded.append((path, index, ReportRecord.from_dict(payload)))
    return loaded


def load_record_at(path: Path, index: int) -> ReportRecord:
    return ReportRecord.from_dict(read_payloads(path)[index])


def safe_file_token(value: str, fallback: str = "report") -> str:
    """Reduce free text to ``[A-Za-z0-9_-]`` for use in a filename."""
    token = slugify(str(value or ""), lowercase=False)
    token = re.sub(r"[^A-Za-z0-9_-]+", "-", token).strip("-_")
    if not token:
        if value and str(value).strip():
            return hashlib.md5(str(value).encode("utf-8")).hexdigest()[:12]
        return fallback
    if ".." in token or "/" in token or "\\" in token:
        raise ValueError("Invalid file token generated")
    return token


def ingest_records(paths: Iterable[Path]) -> List[ReportRun]:
    init_db()
    seen = set()
    runs: List[ReportRun] = []
    for path, index, record in load_records(paths):
        if record.id in seen:
            raise ValueError(f"Duplicate record id: {record.id}")
        seen.add(record.id)
        runs.append(
            ReportRun(
                record_id=record.id,
                slug=safe_file_token(record.id, "request"),
                source_path=str(path.resolve()),
                source_index=index,
                status=RunStatus.DRAFT,
            )
        )
    with get_session() as session:
        session.add_all(runs)
        session.commit()
        for run in runs:
            session.refresh(run)
    return runs


def list_runs(statuses: Iterable[RunStatus], record_id: str | None = None) -> List[ReportRun]:
    init_db()
    with get_session() as session:
        statement = select(ReportRun)
        if record_id:
            statement = statement.where(ReportRun.record_id == record_id)
        statuses = list(statuses)
        if statuses:
            statement = statement.where(ReportRun.status.in_(statuses))
        return list(session.exec(statement))
