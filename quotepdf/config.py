from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple
import json
import os

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm


BASE_DIR = Path(__file__).resolve().parents[1]
OUT_DIR = BASE_DIR / "out"
DB_PATH = OUT_DIR / "runs.db"
ASSETS_DIR = BASE_DIR / "assets"
STYLE_PRESET_PATH = ASSETS_DIR / "brand" / "report_styles.json"
LOGO_PATH = ASSETS_DIR / "brand" / "logo.png"
CJK_FONT_PATH = ASSETS_DIR / "fonts" / "simhei.ttf"
LOCALES_DIR = ASSETS_DIR / "locales"

SUPPORTED_LANGUAGES = ("en", "fr", "zh")
DEFAULT_LANGUAGE = "en"

# Page geometry (points). One fixed page size for every report.
PAGE_SIZE = A4
MARGIN = 14 * mm
BOTTOM_MARGIN = 16 * mm
HEADER_HEIGHT = 24 * mm
HEADER_GUTTER = 8 * mm
FOOTER_BAND_HEIGHT = 12 * mm

# Attachment previews
MAX_PREVIEW_PAGES = 10
PREVIEW_ZOOM = 1.6
SNIFF_SAMPLE_CHARS = 2048
FETCH_TIMEOUT = float(os.environ.get("QUOTEPDF_FETCH_TIMEOUT", "15"))
ATTACHMENT_BASE_URL = os.environ.get("QUOTEPDF_ATTACHMENT_BASE_URL", "")


def load_style_preset() -> dict:
    with STYLE_PRESET_PATH.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def set_out_dir(path: Path) -> None:
    global OUT_DIR, DB_PATH
    OUT_DIR = path
    DB_PATH = OUT_DIR / "runs.db"


@dataclass(frozen=True)
class CompanyProfile:
    name: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""


def _optional_number(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    return float(text) if text else None


@dataclass(frozen=True)
class OfferLine:
    """One priced row of a client offer."""

    description: str = ""
    specification: str = ""
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    remark: str = ""
    include: bool = True

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "OfferLine":
        return cls(
            description=str(payload.get("description") or ""),
            specification=str(payload.get("specification") or ""),
            quantity=_optional_number(payload.get("quantity")),
            unit_price=_optional_number(payload.get("unitPrice")),
            remark=str(payload.get("remark") or ""),
            include=payload.get("include") is not False,
        )


@dataclass(frozen=True)
class SectionVisibility:
    general: bool = True
    line_items: bool = True
    commercial_terms: bool = True
    delivery_terms: bool = True
    appendix: bool = True

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "SectionVisibility":
        return cls(
            general=payload.get("general") is not False,
            line_items=payload.get("lineItems") is not False,
            commercial_terms=payload.get("commercialTerms") is not False,
            delivery_terms=payload.get("deliveryTerms") is not False,
            appendix=payload.get("appendix") is not False,
        )


def load_offer_settings(path: Path) -> Dict[str, object]:
    """Read an offer configuration file into keyword arguments for ``ReportOptions.client_offer``."""
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path}: offer configuration must be a JSON object")
    settings: Dict[str, object] = {
        "intro_text": str(payload.get("introText") or "").strip(),
        "sections": SectionVisibility.from_dict(payload.get("sectionVisibility") or {}),
        "offer_lines": tuple(OfferLine.from_dict(item) for item in payload.get("lines") or []),
        # the same id picked twice is one appendix entry
        "selected_attachment_ids": tuple(
            dict.fromkeys(str(item).strip() for item in payload.get("selectedAttachmentIds") or [] if str(item).strip())
        ),
    }
    for key, name in (("offerNumber", "offer_number"), ("recipientName", "recipient_name")):
        value = str(payload.get(key) or "").strip()
        if value:
            settings[name] = value
    return settings


@dataclass(frozen=True)
class ReportOptions:
    """Engine configuration. Every report variant is a preset of this.

    The offer fields only apply to the ``client_offer`` variant: an empty
    ``offer_lines`` seeds one line per product, and only attachments named in
    ``selected_attachment_ids`` reach the offer appendix.
    """

    variant: str = "internal"            # internal | client_offer
    branding: str = "standard"           # standard | full
    watermark: bool = False
    appendix_style: str = "indexed"      # indexed | compact
    language: str = DEFAULT_LANGUAGE
    company: CompanyProfile = field(default_factory=CompanyProfile)
    offer_number: Optional[str] = None
    recipient_name: Optional[str] = None
    intro_text: str = ""
    offer_lines: Tuple[OfferLine, ...] = ()
    sections: SectionVisibility = field(default_factory=SectionVisibility)
    selected_attachment_ids: Tuple[str, ...] = ()

    @classmethod
    def internal(cls, language: str = DEFAULT_LANGUAGE, appendix_style: str = "indexed") -> "ReportOptions":
        return cls(language=language, appendix_style=appendix_style)

    @classmethod
    def client_offer(
        cls,
        recipient_name: Optional[str] = None,
        offer_number: Optional[str] = None,
        language: str = DEFAULT_LANGUAGE,
        company: Optional[CompanyProfile] = None,
        watermark: bool = True,
        intro_text: str = "",
        offer_lines: Sequence[OfferLine] = (),
        sections: Optional[SectionVisibility] = None,
        selected_attachment_ids: Sequence[str] = (),
    ) -> "ReportOptions":
        return cls(
            variant="client_offer",
            branding="full",
            watermark=watermark,
            appendix_style="compact",
            language=language,
            company=company or CompanyProfile(),
            offer_number=offer_number,
            recipient_name=recipient_name,
            intro_text=intro_text,
            offer_lines=tuple(offer_lines),
            sections=sections or SectionVisibility(),
            selected_attachment_ids=tuple(selected_attachment_ids),
        )

    @property
    def is_offer(self) -> bool:
        return self.variant == "client_offer"

    @property
    def bottom_margin(self) -> float:
        # the offer footer band sits inside the bottom margin
        if self.is_offer:
            return BOTTOM_MARGIN + FOOTER_BAND_HEIGHT
        return BOTTOM_MARGIN

    def summary(self) -> Dict[str, object]:
        return {
            "variant": self.variant,
            "branding": self.branding,
            "watermark": self.watermark,
            "appendix_style": self.appendix_style,
            "language": self.language,
        }
