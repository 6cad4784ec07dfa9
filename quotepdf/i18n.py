from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

from . import config

logger = logging.getLogger(__name__)

EMPTY_PLACEHOLDER = "-"

_FALLBACK_PATTERNS = {
    "long_date": "{year}-{month_num:02d}-{day:02d}",
    "long_datetime": "{year}-{month_num:02d}-{day:02d} {hour:02d}:{minute:02d}",
    "short_datetime": "{year}-{month_num:02d}-{day:02d} {hour:02d}:{minute:02d}",
}


def _load_table(language: str, locales_dir: Path) -> Dict[str, Any]:
    path = locales_dir / f"{language}.json"
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _lookup(table: Dict[str, Any], key: str) -> Any:
    node: Any = table
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


class Localizer:
    """User-facing strings and option labels for one language.

    Keys are dotted paths into the locale table (``pdf.reportTitle``).
    Missing keys fall back to English and then to the key itself.
    """

    def __init__(
        self,
        table: Dict[str, Any],
        language: str = config.DEFAULT_LANGUAGE,
        fallback: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.table = table
        self.language = language
        self.fallback = fallback or {}

    @classmethod
    def load(cls, language: str = config.DEFAULT_LANGUAGE, locales_dir: Optional[Path] = None) -> "Localizer":
        root = locales_dir or config.LOCALES_DIR
        if language not in config.SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        table = _load_table(language, root)
        fallback = table if language == config.DEFAULT_LANGUAGE else _load_table(config.DEFAULT_LANGUAGE, root)
        return cls(table, language=language, fallback=fallback)

    @property
    def needs_cjk_font(self) -> bool:
        return self.language == "zh"

    def text(self, key: str, default: Optional[str] = None) -> str:
        value = _lookup(self.table, key)
        if value is None:
            value = _lookup(self.fallback, key)
        if value is None:
            return default if default is not None else key
        return str(value)

    def template(self, key: str, default: Optional[str] = None, **values: object) -> str:
        text = self.text(key, default)
        for name, value in values.items():
            text = text.replace("{" + name + "}", str(value))
        return text

    def option(self, code: Optional[str]) -> str:
        if code is None:
            return ""
        raw = str(code)
        if not raw.strip():
            return ""
        value = _lookup(self.table, "options")
        if isinstance(value, dict) and raw in value:
            return str(value[raw])
        return raw

    def status(self, code: str) -> str:
        return self.text(f"statuses.{code}", default=str(code))

    def attachment_type(self, category: Optional[str]) -> str:
        key = str(category or "").strip().lower()
        types = _lookup(self.table, "attachmentTypes") or {}
        if key in types:
            return str(types[key])
        if key:
            logger.debug("Unknown attachment category %r shown as other", category)
        return self.text("attachmentTypes.other", default="Other")

    def source(self, section: str) -> str:
        return self.text(f"sources.{section}", default=section)

    def format_date(self, value: Optional[datetime], pattern: str = "long_date") -> str:
        if value is None:
            return ""
        template = _lookup(self.table, f"dates.{pattern}") or _FALLBACK_PATTERNS[pattern]
        months = _lookup(self.table, "dates.months") or []
        months_short = _lookup(self.table, "dates.monthsShort") or months
        index = value.month - 1
        return str(template).format(
            year=value.year,
            month=months[index] if len(months) == 12 else value.month,
            mon=months_short[index] if len(months_short) == 12 else value.month,
            month_num=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
        )
