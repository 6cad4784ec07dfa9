from __future__ import annotations

from datetime import datetime
import logging
from enum import Enum
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, SQLModel, create_engine, Session

from . import config

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    DRAFT = "DRAFT"
    READY = "READY"
    FAILED = "FAILED"


class ReportRun(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    record_id: str = Field(index=True)
    slug: str = Field(index=True)
    source_path: str
    source_index: int = 0
    variant: str = "internal"
    language: str = config.DEFAULT_LANGUAGE
    status: RunStatus = Field(default=RunStatus.DRAFT)
    fail_code: Optional[str] = None
    fail_detail: Optional[str] = None
    page_count: Optional[int] = None
    appendix_count: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Artifact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: int = Field(foreign_key="reportrun.id")
    type: str
    path: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


engine = create_engine(f"sqlite:///{config.DB_PATH}")

# columns added after the first release of the ledger
_ADDED_COLUMNS = {
    "page_count": "INTEGER",
    "appendix_count": "INTEGER",
}


def reset_engine() -> None:
    global engine
    engine = create_engine(f"sqlite:///{config.DB_PATH}")


def init_db() -> None:
    config.OUT_DIR.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
    _migrate_db()


def _migrate_db() -> None:
    """Add ledger columns missing from an older database file."""
    try:
        inspector = inspect(engine)
        if "reportrun" not in inspector.get_table_names():
            return
        columns = {col["name"] for col in inspector.get_columns("reportrun")}
        for name, sql_type in _ADDED_COLUMNS.items():
            if name not in columns:
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE reportrun ADD COLUMN {name} {sql_type}"))
    except SQLAlchemyError as exc:
        logger.warning("Run ledger migration skipped: %s", exc)


def get_session() -> Session:
    return Session(engine, expire_on_commit=False)
