from __future__ import annotations

import math
from typing import Callable, List, Optional, Sequence, Tuple, Union

from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth

from ..i18n import EMPTY_PLACEHOLDER
from .layout import CARD_INNER_PAD, FieldPlacement, PageManager, RowPlacement, hex_color, line_height

Number = Union[int, float]
Field = Tuple[str, object]

CURRENCY_CODES = {"EUR", "USD", "GBP", "CNY", "RMB", "CHF", "JPY"}

LABEL_COLUMN_WIDTH = 44 * mm
COLUMN_GUTTER = 8 * mm
ROW_PAD = 1.5 * mm
LABEL_COLON_GAP = 1.6 * mm
MIN_VALUE_WIDTH = 20 * mm
SUBHEADING_SPACE = 7 * mm
SUBHEADING_ADVANCE = 6 * mm
PARAGRAPH_GAP = 2 * mm
TABLE_HEADER_HEIGHT = 8 * mm
TABLE_PAD_X = 2 * mm
TABLE_PAD_Y = 2.2 * mm
TABLE_BASELINE = 3.2 * mm
TABLE_GAP = 4 * mm


def display_value(value: object) -> Optional[str]:
    """Text for a field value, or None when the field should be left out. 0 is a value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def format_unit(value: Optional[Number], unit: str, decimals: Optional[int] = None) -> str:
    """``EUR 123.45`` for currencies, ``12.5%`` for percentages, ``120 mm`` otherwise."""
    if value is None:
        return ""
    if isinstance(value, (int, float)) and decimals is not None:
        amount = f"{value:.{decimals}f}"
    else:
        amount = display_value(value) or ""
    if not amount:
        return ""
    unit = (unit or "").strip()
    if not unit:
        return amount
    if unit.upper() in CURRENCY_CODES:
        return f"{unit.upper()} {amount}"
    if unit == "%":
        return f"{amount}%"
    return f"{amount} {unit}"


def _break_word(word: str, font_name: str, font_size: float, max_width: float) -> List[str]:
    parts: List[str] = []
    cur = ""
    for ch in word:
        if cur and stringWidth(cur + ch, font_name, font_size) > max_width:
            parts.append(cur)
            cur = ch
        else:
            cur += ch
    if cur:
        parts.append(cur)
    return parts


def wrap_text(text: str, font_name: str, font_size: float, max_width: float) -> List[str]:
    """Word wrap that keeps explicit newlines and splits words wider than the line."""
    lines: List[str] = []
    for raw_line in str(text or "").splitlines() or [""]:
        words = raw_line.split()
        if not words:
            lines.append("")
            continue
        cur: List[str] = []
        for w in words:
            test = " ".join(cur + [w])
            if stringWidth(test, font_name, font_size) <= max_width:
                cur.append(w)
                continue
            if cur:
                lines.append(" ".join(cur))
                cur = []
            if stringWidth(w, font_name, font_size) <= max_width:
                cur = [w]
            else:
                pieces = _break_word(w, font_name, font_size, max_width)
                lines.extend(pieces[:-1])
                cur = [pieces[-1]]
        if cur:
            lines.append(" ".join(cur))
    return lines or [""]


def draw_title(page: PageManager, text: str) -> None:
    size = float(page.style.get("title_size", 18))
    page.ensure_space(18 * mm)
    canv = page.canv
    canv.setFont(page.fonts.bold, size)
    canv.setFillColor(hex_color(page.style.get("title_color")))
    canv.drawString(page.x, page.to_pdf(page.y), text)
    page.y += 10 * mm


def draw_subheading(page: PageManager, text: str) -> None:
    page.ensure_space(SUBHEADING_SPACE)
    canv = page.canv
    canv.setFont(page.fonts.bold, float(page.style.get("subheading_size", 10)))
    canv.setFillColor(hex_color(page.style.get("title_color")))
    canv.drawString(page.x + CARD_INNER_PAD, page.to_pdf(page.y), text)
    page.y += SUBHEADING_ADVANCE


def draw_note(page: PageManager, text: str) -> None:
    """One muted line (cross references, preview notes)."""
    size = float(page.style.get("note_size", 9))
    inner_w = page.width - 2 * CARD_INNER_PAD
    lh = line_height(page.style, size)
    for line in wrap_text(text, page.fonts.regular, size, inner_w):
        page.ensure_space(lh + 1 * mm)
        page.canv.setFont(page.fonts.regular, size)
        page.canv.setFillColor(hex_color(page.style.get("muted_color"), colors.grey))
        page.canv.drawString(page.x + CARD_INNER_PAD, page.to_pdf(page.y), line)
        page.y += lh
    page.y += PARAGRAPH_GAP


def draw_paragraph(page: PageManager, text: str, size: Optional[float] = None) -> None:
    """Wrapped text emitted in chunks that each fit the current page."""
    if display_value(text) is None:
        return
    size = float(size or page.style.get("value_size", 10))
    lh = line_height(page.style, size)
    inner_w = page.width - 2 * CARD_INNER_PAD
    lines = wrap_text(text, page.fonts.regular, size, inner_w)

    index = 0
    while index < len(lines):
        page.ensure_space(lh + PARAGRAPH_GAP)
        max_lines = max(1, math.floor((page.remaining - 1 * mm) / lh))
        chunk = lines[index:index + max_lines]
        canv = page.canv
        canv.setFont(page.fonts.regular, size)
        canv.setFillColor(hex_color(page.style.get("title_color")))
        for offset, line in enumerate(chunk):
            canv.drawString(page.x + CARD_INNER_PAD, page.to_pdf(page.y + offset * lh), line)
        page.y += len(chunk) * lh + PARAGRAPH_GAP
        index += len(chunk)


def visible_fields(fields: Sequence[Field]) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    for label, value in fields:
        text = display_value(value)
        if text is not None:
            out.append((label, text))
    return out


def _lines_that_fit(page: PageManager, lh: float, pad: float) -> int:
    return max(1, math.floor((page.remaining - pad) / lh))


def draw_key_values(page: PageManager, fields: Sequence[Field], columns: int = 2) -> int:
    """Lay non-empty fields out in ``columns`` columns; returns how many were drawn.

    A row taller than a whole page is split between lines; the labels stay
    on its first piece.
    """
    items = visible_fields(fields)
    if not items:
        return 0

    style = page.style
    fonts = page.fonts
    label_size = float(style.get("label_size", 9))
    value_size = float(style.get("value_size", 10))
    lh = line_height(style, value_size)
    inner_x = page.x + CARD_INNER_PAD
    inner_w = page.width - 2 * CARD_INNER_PAD
    columns = max(1, columns)
    col_w = (inner_w - (columns - 1) * COLUMN_GUTTER) / columns

    def draw_row(cells, pieces, with_labels: bool) -> float:
        row_h = max(len(lines) for lines in pieces) * lh + ROW_PAD
        canv = page.canv
        for col, ((label, value, label_w, value_x_offset, _), lines) in enumerate(zip(cells, pieces)):
            x = inner_x + col * (col_w + COLUMN_GUTTER)
            if with_labels:
                canv.setFont(fonts.bold, label_size)
                canv.setFillColor(hex_color(style.get("label_color"), colors.grey))
                canv.drawString(x, page.to_pdf(page.y), label)
                canv.drawString(x + label_w + LABEL_COLON_GAP, page.to_pdf(page.y), ":")
                page.trace.fields.append(
                    FieldPlacement(card=page.cards.title, label=label, value=value, page=page.page_number)
                )
            canv.setFont(fonts.regular, value_size)
            canv.setFillColor(hex_color(style.get("title_color")))
            for offset, line in enumerate(lines):
                canv.drawString(x + value_x_offset, page.to_pdf(page.y + offset * lh), line)
        page.y += row_h
        return row_h

    for start in range(0, len(items), columns):
        row = items[start:start + columns]
        cells = []
        for label, value in row:
            label_w = stringWidth(label, fonts.bold, label_size)
            value_x_offset = max(LABEL_COLUMN_WIDTH, label_w + 3 * mm)
            value_w = max(MIN_VALUE_WIDTH, col_w - value_x_offset)
            lines = wrap_text(value, fonts.regular, value_size, value_w)
            cells.append((label, value, label_w, value_x_offset, lines))

        pending = [cell[4] for cell in cells]
        first = True
        fresh = False
        while any(pending):
            row_h = max(len(lines) for lines in pending) * lh + ROW_PAD
            if row_h <= page.remaining:
                draw_row(cells, pending, first)
                break
            if not fresh and (row_h <= page.fresh_room or page.remaining < lh + ROW_PAD):
                page.break_page()
                fresh = True
                continue
            fit = _lines_that_fit(page, lh, ROW_PAD)
            draw_row(cells, [lines[:fit] for lines in pending], first)
            pending = [lines[fit:] for lines in pending]
            first = False
            page.break_page()
            fresh = True
    return len(items)


def _cell_text(value: object) -> str:
    text = display_value(value)
    return EMPTY_PLACEHOLDER if text is None else text


def draw_table(
    page: PageManager,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    weights: Sequence[float],
    on_page_break: Optional[Callable[[], None]] = None,
) -> int:
    """Header row plus zebra rows. A row never straddles a page; the header repeats after a break.

    A row too tall for any page is cut between lines into pieces, each
    drawn as its own row under the repeated header.
    """
    style = page.style
    fonts = page.fonts
    size = float(style.get("table_size", 9))
    lh = line_height(style, size)
    x = page.x + CARD_INNER_PAD
    w = page.width - 2 * CARD_INNER_PAD
    total = max(1e-6, sum(weights))
    col_w = [w * (vw / total) for vw in weights]
    border = hex_color(style.get("border_color"), colors.lightgrey)
    min_row_h = lh + 2 * TABLE_PAD_Y

    def row_height(cells: Sequence[List[str]]) -> float:
        return max(len(lines) for lines in cells) * lh + 2 * TABLE_PAD_Y

    wrapped_rows = [
        [
            wrap_text(_cell_text(value), fonts.regular, size, max(1.0, col_w[i] - 2 * TABLE_PAD_X))
            for i, value in enumerate(row)
        ]
        for row in rows
    ]

    def draw_header() -> None:
        canv = page.canv
        canv.setFillColor(hex_color(style.get("header_fill"), colors.whitesmoke))
        canv.setStrokeColor(border)
        canv.setLineWidth(0.5)
        canv.rect(x, page.to_pdf(page.y + TABLE_HEADER_HEIGHT), w, TABLE_HEADER_HEIGHT, stroke=1, fill=1)
        canv.setFont(fonts.bold, size)
        canv.setFillColor(hex_color(style.get("label_color"), colors.grey))
        cx = x
        for i, label in enumerate(headers):
            canv.drawString(cx + TABLE_PAD_X, page.to_pdf(page.y + 5.4 * mm), str(label))
            cx += col_w[i]
        page.y += TABLE_HEADER_HEIGHT

    def next_page() -> None:
        page.break_page()
        if on_page_break is not None:
            on_page_break()
        draw_header()

    def draw_row(index: int, cells: Sequence[List[str]]) -> None:
        height = row_height(cells)
        canv = page.canv
        top = page.y
        canv.setStrokeColor(border)
        canv.setLineWidth(0.5)
        if index % 2 == 1:
            canv.setFillColor(hex_color(style.get("zebra_fill"), colors.whitesmoke))
            canv.rect(x, page.to_pdf(top + height), w, height, stroke=1, fill=1)
        else:
            canv.rect(x, page.to_pdf(top + height), w, height, stroke=1, fill=0)
        cx = x
        for i, lines in enumerate(cells):
            if i > 0:
                canv.line(cx, page.to_pdf(top), cx, page.to_pdf(top + height))
            canv.setFont(fonts.regular, size)
            canv.setFillColor(hex_color(style.get("title_color")))
            for offset, line in enumerate(lines):
                canv.drawString(
                    cx + TABLE_PAD_X, page.to_pdf(top + TABLE_PAD_Y + TABLE_BASELINE + offset * lh), line
                )
            cx += col_w[i]
        page.trace.rows.append(
            RowPlacement(page=page.page_number, top=top, height=height, limit=page.content_bottom)
        )
        page.y = top + height

    # room for one row under a header repeated on a fresh page
    room = page.fresh_room - TABLE_HEADER_HEIGHT
    if wrapped_rows:
        first_h = row_height(wrapped_rows[0])
        page.ensure_space(TABLE_HEADER_HEIGHT + (first_h if first_h <= room else min_row_h))
    draw_header()

    for index, cells in enumerate(wrapped_rows):
        fresh = False
        while any(cells):
            height = row_height(cells)
            if height <= page.remaining:
                draw_row(index, cells)
                break
            if not fresh and (height <= room or page.remaining < min_row_h):
                next_page()
                fresh = True
                continue
            fit = _lines_that_fit(page, lh, 2 * TABLE_PAD_Y)
            draw_row(index, [lines[:fit] for lines in cells])
            cells = [lines[fit:] for lines in cells]
            next_page()
            fresh = True
    page.y += TABLE_GAP
    return len(wrapped_rows)
