from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional

from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFont

from .. import config

logger = logging.getLogger(__name__)

CJK_FONT_NAME = "simhei"
CJK_FALLBACK_FONT_NAME = "STSong-Light"


def _register_ttf_font(font_name: str, font_path: Path) -> bool:
    if font_name in pdfmetrics.getRegisteredFontNames():
        return True
    if not font_path.exists():
        return False
    try:
        pdfmetrics.registerFont(TTFont(font_name, str(font_path)))
        return True
    except Exception as exc:
        logger.warning("Failed to register PDF font %s from %s: %s", font_name, font_path, exc)
        return False


def _load_cjk_font() -> Optional[str]:
    if _register_ttf_font(CJK_FONT_NAME, config.CJK_FONT_PATH):
        return CJK_FONT_NAME
    if CJK_FALLBACK_FONT_NAME in pdfmetrics.getRegisteredFontNames():
        return CJK_FALLBACK_FONT_NAME
    try:
        pdfmetrics.registerFont(UnicodeCIDFont(CJK_FALLBACK_FONT_NAME))
        return CJK_FALLBACK_FONT_NAME
    except Exception as exc:
        logger.warning("Could not load CJK PDF font, using default font: %s", exc)
        return None


def _load_logo(path: Path) -> Optional[ImageReader]:
    if not path.exists():
        logger.info("No brand logo at %s", path)
        return None
    try:
        return ImageReader(str(path))
    except Exception as exc:
        logger.warning("Failed to load brand logo %s: %s", path, exc)
        return None


@dataclass(frozen=True)
class StaticResources:
    """Brand logo and CJK font, loaded once per process and read-only afterwards."""

    logo: Optional[ImageReader]
    cjk_font: Optional[str]

    _instance: ClassVar[Optional["StaticResources"]] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def get(cls) -> "StaticResources":
        instance = cls._instance
        if instance is not None:
            return instance
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls(logo=_load_logo(config.LOGO_PATH), cjk_font=_load_cjk_font())
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None


@dataclass(frozen=True)
class Fonts:
    regular: str
    bold: str


def fonts_for(style: dict, resources: StaticResources, needs_cjk: bool) -> Fonts:
    if needs_cjk and resources.cjk_font:
        return Fonts(regular=resources.cjk_font, bold=resources.cjk_font)
    return Fonts(
        regular=str(style.get("font_name", "Helvetica")),
        bold=str(style.get("font_bold", "Helvetica-Bold")),
    )
