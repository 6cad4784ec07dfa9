from __future__ import annotations

from io import BytesIO

import fitz
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth

from quotepdf.pipeline.flow import (
    display_value,
    draw_key_values,
    draw_paragraph,
    draw_table,
    format_unit,
    wrap_text,
)

from conftest import make_page


def test_format_unit() -> None:
    assert format_unit(123.45, "EUR", 2) == "EUR 123.45"
    assert format_unit(100, "usd", 2) == "USD 100.00"
    assert format_unit(12.5, "%") == "12.5%"
    assert format_unit(12.345, "%", 1) == "12.3%"
    assert format_unit(120, "mm") == "120 mm"
    assert format_unit("1200/1500", "kg") == "1200/1500 kg"
    assert format_unit(0, "mm") == "0 mm"
    assert format_unit(None, "mm") == ""
    assert format_unit("", "kg") == ""


def test_display_value_keeps_zero() -> None:
    assert display_value(0) == "0"
    assert display_value(0.0) == "0"
    assert display_value(2.5) == "2.5"
    assert display_value("  ") is None
    assert display_value("") is None
    assert display_value(None) is None


def test_wrap_text_respects_width_and_newlines() -> None:
    text = "alpha beta gamma delta epsilon zeta eta theta iota kappa lambda mu"
    lines = wrap_text(text, "Helvetica", 10, 80)
    assert len(lines) > 1
    assert all(stringWidth(line, "Helvetica", 10) <= 80 for line in lines)
    assert " ".join(lines) == text
    assert wrap_text("one\ntwo", "Helvetica", 10, 500) == ["one", "two"]


def test_wrap_text_breaks_overlong_words() -> None:
    lines = wrap_text("X" * 200, "Helvetica", 10, 60)
    assert len(lines) > 1
    assert "".join(lines) == "X" * 200
    assert all(stringWidth(line, "Helvetica", 10) <= 60 for line in lines)


def test_key_values_drop_empty_fields_but_keep_zero() -> None:
    page = make_page()
    page.cards.begin("Details")
    drawn = draw_key_values(
        page,
        [
            ("Blank", ""),
            ("Zero", 0),
            ("Missing", None),
            ("Filled", "value"),
            ("Spaces", "   "),
            ("Float zero", 0.0),
        ],
    )
    page.cards.end()
    assert drawn == 3
    assert page.trace.field_labels("Details") == ["Zero", "Filled", "Float zero"]


def test_key_values_nothing_to_draw() -> None:
    page = make_page()
    y = page.y
    assert draw_key_values(page, [("A", ""), ("B", None)]) == 0
    assert page.y == y
    assert page.trace.fields == []


def test_table_rows_never_cross_the_bottom_boundary() -> None:
    page = make_page()
    rows = [[str(i), "Comment " * (i % 7 + 1), f"{i}%"] for i in range(120)]
    breaks = []
    page.cards.begin("Long table")
    drawn = draw_table(
        page, ["#", "Text", "Share"], rows, [1, 6, 2], on_page_break=lambda: breaks.append(page.page_number)
    )
    page.cards.end()

    assert drawn == 120
    assert len(page.trace.rows) == 120
    assert page.page_number > 1
    assert breaks
    for row in page.trace.rows:
        assert row.top + row.height <= row.limit
    assert {row.page for row in page.trace.rows} == set(range(1, page.page_number + 1))


def test_long_paragraph_spans_pages_without_overflow() -> None:
    page = make_page()
    page.cards.begin("Notes")
    draw_paragraph(page, "\n".join(f"Line {i} of the design notes" for i in range(150)))
    page.cards.end()
    assert page.page_number >= 2
    split = [fragment for fragment in page.trace.cards if not fragment.padded]
    assert split
    # only the trailing paragraph gap may reach past the boundary
    for fragment in split:
        assert fragment.bottom <= page.content_bottom + 1 * mm + 0.01


def _numbered_words(count: int) -> str:
    return " ".join(f"w{n}" for n in range(1, count + 1))


def _pdf_text(buffer: BytesIO) -> str:
    with fitz.open(stream=buffer.getvalue(), filetype="pdf") as doc:
        return "".join(doc.load_page(index).get_text() for index in range(doc.page_count))


def test_table_row_taller_than_a_page_is_split_into_pieces() -> None:
    buffer = BytesIO()
    page = make_page(buffer=buffer)
    page.cards.begin("Status History")
    drawn = draw_table(
        page,
        ["Status", "Date", "By", "Comment"],
        [["submitted", "2024-01-01", "Sam", _numbered_words(1500)], ["draft", "2024-01-02", "Kim", "ok"]],
        [32, 34, 30, 60],
    )
    page.cards.end()
    last_page = page.page_number
    page.finish()

    assert drawn == 2
    assert last_page > 2
    rows = page.trace.rows
    assert len(rows) > 2
    for row in rows:
        assert row.top + row.height <= row.limit
    # every page carries table rows, none holds only a header
    assert {row.page for row in rows} == set(range(1, last_page + 1))
    text = _pdf_text(buffer)
    assert "w750" in text
    assert "w1500" in text


def test_oversized_first_row_does_not_leave_an_empty_page() -> None:
    page = make_page()
    page.cards.begin("Status History")
    page.y = page.content_bottom - 12 * mm
    draw_table(page, ["Status", "Comment"], [["submitted", _numbered_words(1500)]], [1, 2])
    page.cards.end()

    rows = page.trace.rows
    assert rows[0].page == 2
    assert {row.page for row in rows} == set(range(2, page.page_number + 1))
    assert all(row.top + row.height <= row.limit for row in rows)


def test_key_value_row_taller_than_a_page_is_split() -> None:
    buffer = BytesIO()
    page = make_page(buffer=buffer)
    page.cards.begin("Sales Follow-up")
    draw_key_values(page, [("Feedback", _numbered_words(2500)), ("Margin", "12.5%")], columns=1)
    page.cards.end()
    page.finish()

    assert page.trace.field_labels("Sales Follow-up") == ["Feedback", "Margin"]
    split = [fragment for fragment in page.trace.cards if not fragment.padded]
    assert split
    for fragment in split:
        assert fragment.bottom <= page.content_bottom
    text = _pdf_text(buffer)
    assert "w2500" in text
    assert "Margin" in text
