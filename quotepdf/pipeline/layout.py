from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .. import config
from .resources import Fonts

logger = logging.getLogger(__name__)

CARD_HEADER_HEIGHT = 9 * mm
CONTINUED_HEADER_HEIGHT = 7 * mm
CARD_HEADER_INSET = 0.8 * mm
CARD_STRIP_WIDTH = 3 * mm
CARD_STRIP_PAD = 1.4 * mm
CARD_RADIUS = 3 * mm
CARD_INNER_PAD = 6 * mm
CARD_CONTENT_PAD = 6 * mm
CARD_BOTTOM_PAD = 4 * mm
CARD_GAP = 7 * mm
CARD_MIN_BODY = 14 * mm
CONTINUED_MIN_BODY = 10 * mm
TITLE_BASELINE = 6.2 * mm
CONTINUED_BASELINE = 5.1 * mm
CONTINUED_MARKER_BASELINE = 5 * mm

LOGO_MAX_HEIGHT = 20 * mm
LOGO_MAX_WIDTH = 92 * mm
BADGE_TOP = 9.2 * mm
BADGE_HEIGHT = 6.6 * mm
BADGE_PAD_X = 3 * mm

WATERMARK_ALPHA = 0.035
WATERMARK_ANGLE = 35


def hex_color(value: Optional[str], default=colors.black) -> colors.Color:
    if not value:
        return default
    try:
        return colors.HexColor("#" + str(value).lstrip("#"))
    except ValueError:
        return default


def line_height(style: dict, size: float) -> float:
    return size * float(style.get("line_height_factor", 1.15))


def truncate_to_width(
    canv: canvas.Canvas, text: str, font_name: str, font_size: float, max_width: float, ellipsis: str = "..."
) -> str:
    if canv.stringWidth(text, font_name, font_size) <= max_width:
        return text
    cut = text
    while cut and canv.stringWidth(cut + ellipsis, font_name, font_size) > max_width:
        cut = cut[:-1]
    return (cut.rstrip() + ellipsis) if cut else ellipsis


@dataclass(frozen=True)
class RowPlacement:
    page: int
    top: float
    height: float
    limit: float


@dataclass(frozen=True)
class FieldPlacement:
    card: Optional[str]
    label: str
    value: str
    page: int


@dataclass(frozen=True)
class CardFragment:
    title: str
    page: int
    top: float
    bottom: float
    continued: bool
    padded: bool


@dataclass(frozen=True)
class AppendixPage:
    item_id: str
    page: int
    title: str


@dataclass
class LayoutTrace:
    """What the engine placed where. Coordinates are points from the page top."""

    rows: List[RowPlacement] = field(default_factory=list)
    fields: List[FieldPlacement] = field(default_factory=list)
    cards: List[CardFragment] = field(default_factory=list)
    appendix_pages: List[AppendixPage] = field(default_factory=list)
    footers: List[str] = field(default_factory=list)

    def card_titles(self) -> List[str]:
        return [fragment.title for fragment in self.cards if not fragment.continued]

    def field_labels(self, card: Optional[str] = None) -> List[str]:
        return [placed.label for placed in self.fields if card is None or placed.card == card]


class ReportCanvas(canvas.Canvas):
    """Canvas that holds finished pages back until ``save`` so footers know the page total."""

    def __init__(self, *args, footer: Optional[Callable[["ReportCanvas", int, int], None]] = None, **kwargs):
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states: List[dict] = []
        self._footer = footer

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    @property
    def page_count(self) -> int:
        return len(self._saved_page_states)

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            if self._footer is not None:
                self._footer(self, self._pageNumber, total)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)


class PageHeader:
    """Header band drawn at the top of every page.

    Standard branding shows the status badge, plus the generation
    timestamp on the first page. Full branding shows the company block.
    """

    def __init__(
        self,
        style: dict,
        fonts: Fonts,
        logo: Optional[ImageReader] = None,
        branding: str = "standard",
        status_label: str = "",
        status_color: Optional[colors.Color] = None,
        generated_text: str = "",
        company_lines: Optional[List[str]] = None,
        contact_lines: Optional[List[str]] = None,
        height: float = config.HEADER_HEIGHT,
    ) -> None:
        self.style = style
        self.fonts = fonts
        self.logo = logo
        self.branding = branding
        self.status_label = status_label
        self.status_color = status_color or hex_color(style.get("status_default_color"), colors.grey)
        self.generated_text = generated_text
        self.company_lines = company_lines or []
        self.contact_lines = contact_lines or []
        self.height = height

    def draw(self, canv: canvas.Canvas, page_number: int, page_w: float, page_h: float) -> None:
        margin = config.MARGIN
        canv.saveState()
        canv.setFillColor(hex_color(self.style.get("header_fill"), colors.whitesmoke))
        canv.rect(0, page_h - self.height, page_w, self.height, stroke=0, fill=1)
        canv.setStrokeColor(hex_color(self.style.get("accent_color"), colors.red))
        canv.setLineWidth(1.2 * mm)
        canv.line(0, page_h - 0.6 * mm, page_w, page_h - 0.6 * mm)

        logo_right = margin
        if self.logo is not None:
            logo_right = self._draw_logo(canv, page_h, margin)

        if self.branding == "full":
            self._draw_company(canv, page_w, page_h, max(logo_right + 6 * mm, margin + 42 * mm))
        elif self.status_label:
            self._draw_badge(canv, page_w, page_h)
            if page_number == 1 and self.generated_text:
                canv.setFont(self.fonts.regular, 9)
                canv.setFillColor(hex_color(self.style.get("muted_color"), colors.grey))
                canv.drawRightString(
                    page_w - margin, page_h - (BADGE_TOP + BADGE_HEIGHT + 5.2 * mm), self.generated_text
                )
        canv.restoreState()

    def _draw_logo(self, canv: canvas.Canvas, page_h: float, margin: float) -> float:
        iw, ih = self.logo.getSize()
        if not iw or not ih:
            return margin
        scale = min(LOGO_MAX_WIDTH / iw, LOGO_MAX_HEIGHT / ih)
        w, h = iw * scale, ih * scale
        top = (self.height - h) / 2
        canv.drawImage(self.logo, margin, page_h - top - h, w, h, mask="auto")
        return margin + w

    def _draw_badge(self, canv: canvas.Canvas, page_w: float, page_h: float) -> None:
        text = self.status_label.upper()
        canv.setFont(self.fonts.bold, 9)
        w = canv.stringWidth(text, self.fonts.bold, 9) + 2 * BADGE_PAD_X
        x = page_w - config.MARGIN - w
        canv.setFillColor(self.status_color)
        canv.roundRect(x, page_h - BADGE_TOP - BADGE_HEIGHT, w, BADGE_HEIGHT, 1.6 * mm, stroke=0, fill=1)
        canv.setFillColor(colors.white)
        canv.drawCentredString(x + w / 2, page_h - BADGE_TOP - BADGE_HEIGHT + 2.1 * mm, text)

    def _draw_company(self, canv: canvas.Canvas, page_w: float, page_h: float, left_x: float) -> None:
        title = hex_color(self.style.get("title_color"))
        muted = hex_color(self.style.get("muted_color"), colors.grey)
        for index, text in enumerate(self.company_lines[:2]):
            canv.setFont(self.fonts.bold if index == 0 else self.fonts.regular, 7 if index == 0 else 8)
            canv.setFillColor(title if index == 0 else muted)
            canv.drawString(left_x, page_h - (9 * mm + index * 4.8 * mm), text)
        canv.setFont(self.fonts.regular, 8)
        canv.setFillColor(muted)
        for index, text in enumerate(self.contact_lines[:3]):
            canv.drawRightString(page_w - config.MARGIN, page_h - (9 * mm + index * 4.5 * mm), text)
        canv.setStrokeColor(hex_color(self.style.get("border_color"), colors.lightgrey))
        canv.setLineWidth(0.6)
        y = page_h - self.height + 1.4 * mm
        canv.line(config.MARGIN, y, page_w - config.MARGIN, y)


class PageFooter:
    """Second-pass decoration: page x of y, the offer band and the watermark."""

    def __init__(
        self,
        style: dict,
        fonts: Fonts,
        page_label: Callable[[int, int], str],
        trailer: str = "",
        band_left: str = "",
        band_center: str = "",
        band: bool = False,
        watermark: Optional[List[str]] = None,
        trace: Optional[LayoutTrace] = None,
    ) -> None:
        self.style = style
        self.fonts = fonts
        self.page_label = page_label
        self.trailer = trailer
        self.band_left = band_left
        self.band_center = band_center
        self.band = band
        self.watermark = watermark or []
        self.trace = trace

    def __call__(self, canv: canvas.Canvas, page_number: int, total: int) -> None:
        page_w, page_h = canv._pagesize
        canv.saveState()
        if self.watermark:
            self._draw_watermark(canv, page_w, page_h)
        label = self.page_label(page_number, total)
        if self.band:
            self._draw_band(canv, page_w, label)
        else:
            text = " | ".join(part for part in (label, self.trailer) if part)
            canv.setFont(self.fonts.regular, float(self.style.get("footer_size", 8)))
            canv.setFillColor(hex_color(self.style.get("footer_color"), colors.grey))
            canv.drawCentredString(page_w / 2, 6 * mm, text)
        canv.restoreState()
        if self.trace is not None:
            self.trace.footers.append(label)

    def _draw_band(self, canv: canvas.Canvas, page_w: float, label: str) -> None:
        band_h = config.FOOTER_BAND_HEIGHT
        canv.setFillColor(hex_color(self.style.get("footer_fill"), colors.whitesmoke))
        canv.rect(0, 0, page_w, band_h, stroke=0, fill=1)
        canv.setStrokeColor(hex_color(self.style.get("border_color"), colors.lightgrey))
        canv.setLineWidth(0.6)
        canv.line(0, band_h, page_w, band_h)
        baseline = 4.6 * mm
        size = float(self.style.get("footer_size", 8))
        canv.setFillColor(hex_color(self.style.get("muted_color"), colors.grey))
        canv.setFont(self.fonts.bold, size)
        canv.drawString(config.MARGIN, baseline, self.band_left)
        canv.setFont(self.fonts.regular, size)
        canv.drawCentredString(page_w / 2, baseline, self.band_center)
        right = " | ".join(part for part in (self.trailer, label) if part)
        canv.drawRightString(page_w - config.MARGIN, baseline, right)

    def _draw_watermark(self, canv: canvas.Canvas, page_w: float, page_h: float) -> None:
        canv.saveState()
        canv.setFillColor(hex_color(self.style.get("title_color")))
        canv.setFillAlpha(WATERMARK_ALPHA)
        canv.translate(page_w / 2, page_h / 2)
        canv.rotate(WATERMARK_ANGLE)
        canv.setFont(self.fonts.bold, 36)
        canv.drawCentredString(0, 0, self.watermark[0])
        if len(self.watermark) > 1 and self.watermark[1]:
            canv.setFont(self.fonts.bold, 18)
            canv.drawCentredString(0, -12 * mm, self.watermark[1])
        canv.restoreState()


class CardState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    CONTINUING = "continuing"


@dataclass
class _Card:
    title: str
    top: float
    continued: bool = False


class CardFrames:
    """Card lifecycle: Closed -> Open -> (Continuing across page breaks)* -> Closed.

    At most one card is active. A page break inside a card closes the
    frame on the old page without bottom padding and reopens it on the
    new page under a compact "(Continued)" header.
    """

    def __init__(self, page: "PageManager", continued_label: str = "(Continued)") -> None:
        self.page = page
        self.continued_label = continued_label
        self.state = CardState.CLOSED
        self._active: Optional[_Card] = None

    @property
    def is_open(self) -> bool:
        return self.state is not CardState.CLOSED

    @property
    def title(self) -> Optional[str]:
        return self._active.title if self._active else None

    def begin(self, title: str) -> None:
        if self.is_open:
            raise RuntimeError(f"Card {self._active.title!r} is still open; cards cannot nest")
        self.page.ensure_space(CARD_HEADER_HEIGHT + CARD_MIN_BODY)
        self._active = _Card(title=title, top=self.page.y)
        self._draw_header(self._active)
        self.state = CardState.OPEN

    def page_break(self) -> None:
        if not self.is_open:
            raise RuntimeError("No open card to continue")
        card = self._active
        self._close_frame(card, padded=False)
        self.page.add_page()
        # a fresh page always has room for the continued header plus CONTINUED_MIN_BODY
        self._active = _Card(title=card.title, top=self.page.y, continued=True)
        self._draw_header(self._active)
        self.state = CardState.CONTINUING

    def end(self) -> None:
        if not self.is_open:
            raise RuntimeError("No open card to end")
        bottom = self._close_frame(self._active, padded=True)
        self.page.y = bottom + CARD_GAP
        self._active = None
        self.state = CardState.CLOSED

    def _close_frame(self, card: _Card, padded: bool) -> float:
        page = self.page
        bottom = page.y + (CARD_BOTTOM_PAD if padded else 0)
        height = bottom - card.top
        canv = page.canv
        canv.saveState()
        canv.setStrokeColor(hex_color(page.style.get("border_color"), colors.lightgrey))
        canv.setLineWidth(0.6)
        canv.roundRect(page.x, page.to_pdf(bottom), page.width, height, CARD_RADIUS, stroke=1, fill=0)
        canv.restoreState()
        page.trace.cards.append(
            CardFragment(
                title=card.title,
                page=page.page_number,
                top=card.top,
                bottom=bottom,
                continued=card.continued,
                padded=padded,
            )
        )
        return bottom

    def _draw_header(self, card: _Card) -> None:
        page = self.page
        canv = page.canv
        style = page.style
        fonts = page.fonts
        header_h = CONTINUED_HEADER_HEIGHT if card.continued else CARD_HEADER_HEIGHT
        x, w, top = page.x, page.width, card.top

        canv.saveState()
        canv.setFillColor(hex_color(style.get("header_fill"), colors.whitesmoke))
        canv.rect(
            x + CARD_HEADER_INSET,
            page.to_pdf(top + header_h),
            w - 2 * CARD_HEADER_INSET,
            header_h - CARD_HEADER_INSET,
            stroke=0,
            fill=1,
        )
        canv.setFillColor(hex_color(style.get("accent_color"), colors.red))
        strip_h = header_h - 2 * CARD_STRIP_PAD
        canv.rect(
            x + CARD_HEADER_INSET,
            page.to_pdf(top + CARD_STRIP_PAD + strip_h),
            CARD_STRIP_WIDTH - CARD_HEADER_INSET,
            strip_h,
            stroke=0,
            fill=1,
        )

        title_x = x + CARD_INNER_PAD
        title_color = hex_color(style.get("title_color"))
        if card.continued:
            marker_size = float(style.get("continued_marker_size", 8))
            title_size = float(style.get("continued_title_size", 10))
            marker_w = canv.stringWidth(self.continued_label, fonts.regular, marker_size)
            marker_x = x + w - CARD_INNER_PAD
            canv.setFont(fonts.regular, marker_size)
            canv.setFillColor(hex_color(style.get("muted_color"), colors.grey))
            canv.drawRightString(marker_x, page.to_pdf(top + CONTINUED_MARKER_BASELINE), self.continued_label)
            available = marker_x - marker_w - 4 * mm - title_x
            text = truncate_to_width(canv, card.title, fonts.regular, title_size, available)
            canv.setFont(fonts.regular, title_size)
            canv.setFillColor(title_color)
            canv.drawString(title_x, page.to_pdf(top + CONTINUED_BASELINE), text)
        else:
            title_size = float(style.get("card_title_size", 11))
            text = truncate_to_width(canv, card.title, fonts.bold, title_size, w - 2 * CARD_INNER_PAD)
            canv.setFont(fonts.bold, title_size)
            canv.setFillColor(title_color)
            canv.drawString(title_x, page.to_pdf(top + TITLE_BASELINE), text)
        canv.restoreState()
        page.y = top + header_h + CARD_CONTENT_PAD


class PageManager:
    """Vertical cursor over a stack of fixed-size pages.

    ``y`` grows downwards from the top of the page; ``to_pdf`` converts it
    to ReportLab's bottom-up coordinate. Every new page redraws the header
    band and moves the cursor below it.
    """

    def __init__(
        self,
        canv: ReportCanvas,
        style: dict,
        fonts: Fonts,
        header: PageHeader,
        bottom_margin: float = config.BOTTOM_MARGIN,
        trace: Optional[LayoutTrace] = None,
        continued_label: str = "(Continued)",
    ) -> None:
        self.canv = canv
        self.style = style
        self.fonts = fonts
        self.header = header
        self.page_w, self.page_h = canv._pagesize
        self.margin = config.MARGIN
        self.bottom_margin = bottom_margin
        self.trace = trace if trace is not None else LayoutTrace()
        self.cards = CardFrames(self, continued_label=continued_label)
        self.page_number = 0
        self.y = 0.0

    @property
    def x(self) -> float:
        return self.margin

    @property
    def width(self) -> float:
        return self.page_w - 2 * self.margin

    @property
    def content_top(self) -> float:
        return self.header.height + config.HEADER_GUTTER

    @property
    def content_bottom(self) -> float:
        return self.page_h - self.bottom_margin

    @property
    def remaining(self) -> float:
        return self.content_bottom - self.y

    @property
    def fresh_room(self) -> float:
        """Height left below the headers right after ``break_page``."""
        top = self.content_top
        if self.cards.is_open:
            top += CONTINUED_HEADER_HEIGHT + CARD_CONTENT_PAD
        return self.content_bottom - top

    def to_pdf(self, y: float) -> float:
        return self.page_h - y

    def start(self) -> None:
        self.page_number = 1
        self._begin_page()

    def add_page(self) -> None:
        self.canv.showPage()
        self.page_number += 1
        self._begin_page()

    def _begin_page(self) -> None:
        self.header.draw(self.canv, self.page_number, self.page_w, self.page_h)
        self.y = self.content_top

    def break_page(self) -> None:
        if self.cards.is_open:
            self.cards.page_break()
        else:
            self.add_page()

    def ensure_space(self, height: float) -> bool:
        """Break the page if ``height`` does not fit; an open card continues on the next page."""
        if self.y + height <= self.content_bottom:
            return False
        self.break_page()
        return True

    def finish(self) -> int:
        if self.cards.is_open:
            raise RuntimeError(f"Card {self.cards.title!r} was never ended")
        self.canv.showPage()
        total = self.canv.page_count
        self.canv.save()
        logger.debug("Laid out %d pages", total)
        return total
