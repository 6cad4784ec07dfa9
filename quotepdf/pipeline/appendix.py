from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader

from ..i18n import EMPTY_PLACEHOLDER, Localizer
from ..record import Attachment
from .flow import draw_note, draw_table, wrap_text
from .layout import AppendixPage, PageManager, hex_color, line_height
from .preview import PreviewKind, PreviewResolver, PreviewResult

logger = logging.getLogger(__name__)

ID_PREFIX = "A."
COMPACT_INDEX_MIN_ITEMS = 4
INDEX_WEIGHTS = [14, 22, 22, 46, 30, 26, 18]

_ID_NUMBER = re.compile(r"^A\.(\d+)$")


@dataclass(frozen=True)
class AppendixItem:
    id: str
    category: str
    type_label: str
    filename: str
    uploaded_by: str
    uploaded_at: str
    size_label: str
    source: Attachment


def estimate_payload_bytes(url: str) -> Optional[int]:
    """Decoded size of an inline base64 payload, from its length alone."""
    text = (url or "").strip()
    if not text or text.startswith(("http://", "https://", "/")):
        return None
    if text.startswith("data:"):
        comma = text.find(",")
        if comma == -1 or ";base64" not in text[:comma].lower():
            return None
        text = text[comma + 1:]
    body = re.sub(r"\s+", "", text)
    if not body:
        return None
    padding = len(body) - len(body.rstrip("="))
    return max(0, len(body) * 3 // 4 - padding)


def format_size(size: Optional[int]) -> str:
    if size is None:
        return EMPTY_PLACEHOLDER
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_id_range(ids: Iterable[str]) -> str:
    """``A.3`` / ``A.1-A.4`` for a sequential run / ``A.1, A.3`` otherwise."""
    unique: List[str] = []
    for item_id in ids:
        if item_id not in unique:
            unique.append(item_id)
    if not unique:
        return ""
    if len(unique) == 1:
        return unique[0]
    numbers = []
    for item_id in unique:
        match = _ID_NUMBER.match(item_id)
        if match is None:
            return ", ".join(unique)
        numbers.append(int(match.group(1)))
    if all(b == a + 1 for a, b in zip(numbers, numbers[1:])):
        return f"{unique[0]}-{unique[-1]}"
    return ", ".join(unique)


class AppendixRegistry:
    """Stable ``A.n`` ids for attachments, assigned in first-reference order."""

    def __init__(self, localizer: Localizer) -> None:
        self.localizer = localizer
        self._by_identity: Dict[Tuple[str, str, str], AppendixItem] = {}
        self._items: List[AppendixItem] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> List[AppendixItem]:
        return list(self._items)

    def register(self, attachments: Iterable[Attachment], section: str) -> List[str]:
        ids: List[str] = []
        for attachment in attachments:
            item = self._by_identity.get(attachment.identity)
            if item is None:
                item = self._new_item(attachment, section)
                self._by_identity[attachment.identity] = item
                self._items.append(item)
            ids.append(item.id)
        return ids

    def cross_reference(self, attachments: Iterable[Attachment], section: str) -> str:
        """Registers the attachments and returns the "See Appendix ..." note, or "" when none."""
        ref = format_id_range(self.register(attachments, section))
        if not ref:
            return ""
        return self.localizer.template("pdf.seeAppendix", "See Appendix {appendix}", appendix=ref)

    def _new_item(self, attachment: Attachment, section: str) -> AppendixItem:
        loc = self.localizer
        return AppendixItem(
            id=f"{ID_PREFIX}{len(self._items) + 1}",
            category=loc.source(section),
            type_label=loc.attachment_type(attachment.category),
            filename=attachment.filename or attachment.id or EMPTY_PLACEHOLDER,
            uploaded_by=attachment.uploaded_by or EMPTY_PLACEHOLDER,
            uploaded_at=loc.format_date(attachment.uploaded_at) or EMPTY_PLACEHOLDER,
            size_label=format_size(estimate_payload_bytes(attachment.url)),
            source=attachment,
        )


def _draw_heading(page: PageManager, text: str, size: float = 16) -> None:
    page.canv.setFont(page.fonts.bold, size)
    page.canv.setFillColor(hex_color(page.style.get("title_color")))
    page.canv.drawString(page.x, page.to_pdf(page.y), text)
    page.y += 8 * mm


def _draw_item_header(page: PageManager, item: AppendixItem, title: str) -> None:
    style = page.style
    size = 12
    lh = line_height(style, size)
    canv = page.canv
    canv.setFont(page.fonts.bold, size)
    canv.setFillColor(hex_color(style.get("title_color")))
    for line in wrap_text(title, page.fonts.bold, size, page.width):
        canv.drawString(page.x, page.to_pdf(page.y), line)
        page.y += lh
    meta = " - ".join(
        part for part in (item.type_label, item.category, item.uploaded_by, item.uploaded_at)
        if part and part != EMPTY_PLACEHOLDER
    )
    if meta:
        canv.setFont(page.fonts.regular, 9)
        canv.setFillColor(hex_color(style.get("muted_color"), colors.grey))
        canv.drawString(page.x, page.to_pdf(page.y), meta)
    page.y += 6 * mm


def _draw_image(page: PageManager, data: bytes) -> bool:
    try:
        reader = ImageReader(BytesIO(data))
        iw, ih = reader.getSize()
    except Exception as exc:
        logger.warning("Preview image could not be decoded: %s", exc)
        return False
    avail_w = page.width
    avail_h = page.remaining
    if not iw or not ih or avail_h <= 0:
        return False
    scale = min(avail_w / iw, avail_h / ih)
    w, h = iw * scale, ih * scale
    page.canv.drawImage(reader, page.x + (avail_w - w) / 2, page.to_pdf(page.y + h), w, h, mask="auto")
    page.y += h
    return True


def _draw_index(page: PageManager, items: List[AppendixItem], loc: Localizer) -> None:
    headers = [
        loc.text("pdf.appendixIdLabel", "ID"),
        loc.text("pdf.categoryLabel", "Section"),
        loc.text("pdf.typeLabel", "Type"),
        loc.text("pdf.fileLabel", "File"),
        loc.text("pdf.uploadedByLabel", "Uploaded by"),
        loc.text("pdf.dateLabel", "Date"),
        loc.text("pdf.sizeLabel", "Size"),
    ]
    rows = [
        [item.id, item.category, item.type_label, item.filename, item.uploaded_by, item.uploaded_at, item.size_label]
        for item in items
    ]
    draw_table(page, headers, rows, INDEX_WEIGHTS)


def show_index(style: str, count: int) -> bool:
    if style == "compact":
        return count >= COMPACT_INDEX_MIN_ITEMS
    return True


def render_appendix(
    page: PageManager,
    registry: AppendixRegistry,
    resolver: PreviewResolver,
    appendix_style: str = "indexed",
) -> int:
    """Index page (per style) then one page per item, or per rasterized PDF page.

    Previews are resolved one at a time in id order. Returns the number of
    appendix pages written.
    """
    items = registry.items
    if not items:
        return 0
    loc = registry.localizer
    title = loc.text("pdf.appendixTitle", "Appendix")
    written = 0
    pending_title = True

    if show_index(appendix_style, len(items)):
        page.add_page()
        _draw_heading(page, title)
        _draw_index(page, items, loc)
        pending_title = False
        written += 1

    for item in items:
        result: PreviewResult = resolver.resolve(item.source)
        pages = list(result.pages) if result.kind is not PreviewKind.NONE else [b""]
        total = len(pages)
        for number, data in enumerate(pages, start=1):
            page.add_page()
            if pending_title:
                _draw_heading(page, title)
                pending_title = False
            header = f"{item.id} - {item.filename}"
            if total > 1:
                header += " " + loc.template(
                    "pdf.pageSuffix", "(page {current}/{total})", current=number, total=total
                )
            _draw_item_header(page, item, header)
            page.trace.appendix_pages.append(AppendixPage(item_id=item.id, page=page.page_number, title=header))
            written += 1
            if result.kind is PreviewKind.NONE:
                draw_note(page, result.note or loc.text("pdf.previewNotAvailable", "Preview not available."))
            elif not _draw_image(page, data):
                draw_note(page, loc.text("pdf.previewNotAvailable", "Preview not available."))
    logger.debug("Appendix: %d items on %d pages", len(items), written)
    return written
