from __future__ import annotations

from io import BytesIO
import unittest

import fitz
from reportlab.lib.units import mm

from quotepdf import config
from quotepdf.config import load_style_preset
from quotepdf.pipeline.flow import draw_key_values
from quotepdf.pipeline.layout import (
    CARD_BOTTOM_PAD,
    CARD_GAP,
    CardState,
    LayoutTrace,
    PageFooter,
    PageHeader,
    PageManager,
    ReportCanvas,
    truncate_to_width,
)
from quotepdf.pipeline.resources import Fonts

from conftest import make_page


class CardFrameTests(unittest.TestCase):
    def test_begin_and_end_pad_and_advance(self) -> None:
        page = make_page()
        start = page.y
        page.cards.begin("Summary")
        self.assertIs(page.cards.state, CardState.OPEN)
        draw_key_values(page, [("Status", "Submitted")])
        content_end = page.y
        page.cards.end()

        self.assertIs(page.cards.state, CardState.CLOSED)
        fragment = page.trace.cards[0]
        self.assertEqual(fragment.top, start)
        self.assertTrue(fragment.padded)
        self.assertAlmostEqual(fragment.bottom, content_end + CARD_BOTTOM_PAD)
        self.assertAlmostEqual(page.y, fragment.bottom + CARD_GAP)

    def test_cards_do_not_nest(self) -> None:
        page = make_page()
        page.cards.begin("Outer")
        with self.assertRaises(RuntimeError):
            page.cards.begin("Inner")

    def test_end_without_begin_is_an_error(self) -> None:
        page = make_page()
        with self.assertRaises(RuntimeError):
            page.cards.end()

    def test_finish_with_open_card_is_an_error(self) -> None:
        page = make_page()
        page.cards.begin("Dangling")
        with self.assertRaises(RuntimeError):
            page.finish()

    def test_begin_breaks_page_when_header_does_not_fit(self) -> None:
        page = make_page()
        page.y = page.content_bottom - 5 * mm
        page.cards.begin("Late card")
        self.assertEqual(page.page_number, 2)
        self.assertFalse(page.trace.cards)
        page.cards.end()
        self.assertEqual(page.trace.cards[0].page, 2)
        self.assertFalse(page.trace.cards[0].continued)

    def test_overflowing_card_splits_into_continuation(self) -> None:
        page = make_page()
        title = "Technical Information - Product 1"
        page.cards.begin(title)
        draw_key_values(page, [(f"Field {i}", f"value {i}") for i in range(120)], columns=2)
        self.assertIs(page.cards.state, CardState.CONTINUING)
        page.cards.end()

        fragments = page.trace.cards
        self.assertGreaterEqual(len(fragments), 2)
        first, last = fragments[0], fragments[-1]
        self.assertFalse(first.continued)
        self.assertFalse(first.padded)
        self.assertLessEqual(first.bottom, page.content_bottom)
        self.assertTrue(all(fragment.continued for fragment in fragments[1:]))
        self.assertTrue(last.padded)
        self.assertTrue(all(fragment.title == title for fragment in fragments))
        self.assertEqual([fragment.page for fragment in fragments], list(range(1, len(fragments) + 1)))
        self.assertEqual(len(page.trace.field_labels(title)), 120)

    def test_ensure_space_without_card_is_a_plain_page_break(self) -> None:
        page = make_page()
        self.assertFalse(page.ensure_space(10 * mm))
        page.y = page.content_bottom - 1
        self.assertTrue(page.ensure_space(10 * mm))
        self.assertEqual(page.page_number, 2)
        self.assertEqual(page.y, page.content_top)
        self.assertFalse(page.trace.cards)


def test_continued_header_truncates_long_titles() -> None:
    buffer = BytesIO()
    page = make_page(buffer=buffer)
    title = "Technical Information - " + "Extremely Long Product Designation " * 6
    page.cards.begin(title)
    draw_key_values(page, [(f"Field {i}", "x") for i in range(120)])
    page.cards.end()
    page.finish()

    with fitz.open(stream=buffer.getvalue(), filetype="pdf") as doc:
        second = doc.load_page(1).get_text()
    assert "(Continued)" in second
    assert "..." in second


def test_truncate_to_width() -> None:
    canv = ReportCanvas(BytesIO())
    assert truncate_to_width(canv, "Short", "Helvetica", 10, 200) == "Short"
    cut = truncate_to_width(canv, "A very long card title " * 5, "Helvetica", 10, 120)
    assert cut.endswith("...")
    assert canv.stringWidth(cut, "Helvetica", 10) <= 120


def test_footer_pass_stamps_final_page_total() -> None:
    style = load_style_preset()
    fonts = Fonts(regular="Helvetica", bold="Helvetica-Bold")
    trace = LayoutTrace()
    buffer = BytesIO()
    footer = PageFooter(
        style, fonts, lambda current, total: f"Page {current} of {total}", trailer="REQ-9", trace=trace
    )
    canv = ReportCanvas(buffer, pagesize=config.PAGE_SIZE, footer=footer)
    page = PageManager(canv, style, fonts, PageHeader(style, fonts), trace=trace)
    page.start()
    page.add_page()
    page.add_page()
    assert page.finish() == 3

    assert trace.footers == ["Page 1 of 3", "Page 2 of 3", "Page 3 of 3"]
    with fitz.open(stream=buffer.getvalue(), filetype="pdf") as doc:
        assert doc.page_count == 3
        assert "Page 3 of 3 | REQ-9" in doc.load_page(2).get_text()


if __name__ == "__main__":
    unittest.main()
