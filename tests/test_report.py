from __future__ import annotations

import base64

import fitz

from quotepdf.config import CompanyProfile, OfferLine, ReportOptions, SectionVisibility
from quotepdf.i18n import Localizer
from quotepdf.pipeline.render_report import collapse_history, generate_report, report_filename
from quotepdf.record import ReportRecord, StatusHistoryEntry

from conftest import FROZEN_NOW, offline_resolver, pdf_attachment, png_attachment


def _render(payload: dict, localizer: Localizer, options: ReportOptions | None = None):
    record = ReportRecord.from_dict(payload)
    return generate_report(record, localizer, options, now=FROZEN_NOW, resolver=offline_resolver(localizer))


def _page_texts(pdf: bytes) -> list[str]:
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        return [doc.load_page(index).get_text() for index in range(doc.page_count)]


def _full_record() -> dict:
    return {
        "id": "REQ-2024-017",
        "status": "in_costing",
        "clientName": "Nordic Trailers AB",
        "clientContact": "Eva Lind",
        "createdByName": "Sam",
        "createdAt": "2024-04-02T10:15:00Z",
        "country": "Sweden",
        "expectedQty": 0,
        "applicationVehicle": "other",
        "applicationVehicleOther": "Forestry trailer",
        "products": [
            {
                "axleLocation": "rear",
                "articulationType": "steering_axle",
                "configurationType": "tandem",
                "quantity": 4,
                "loadsKg": 9000,
                "trackMm": 1850,
                "wheelBase": "3200",
                "brakeType": "drum",
                "brakeSize": "420x180",
                "studsPcdStandardSelections": ["STD_10_M22_335_281"],
                "productComments": "Galvanised finish required.",
            }
        ],
        "designNotes": "Use the reinforced beam.",
        "sellingPrice": 1234.5,
        "sellingCurrency": "EUR",
        "calculatedMargin": 12.5,
        "vatMode": "with",
        "vatRate": 20,
        "salesPaymentTerms": [
            {"paymentNumber": 1, "paymentName": "Deposit", "paymentPercent": 30},
            {"paymentNumber": 2, "paymentName": "", "paymentPercent": None, "comments": ""},
            {"paymentNumber": 3, "paymentName": "Balance", "paymentPercent": 70, "comments": "Before shipment"},
        ],
        "history": [
            {"status": "submitted", "timestamp": "2024-04-02T10:15:00Z", "userName": "Sam"},
            {"status": "submitted", "timestamp": "2024-04-02T10:20:00Z", "userName": "Sam"},
            {"status": "in_costing", "timestamp": "2024-04-03T08:00:00Z", "userName": "Kim", "comment": "Go"},
        ],
    }


def test_minimal_record_is_one_page(localizer) -> None:
    report = _render({"id": "REQ-1", "status": "submitted", "clientName": "Acme"}, localizer)

    assert report.page_count == 1
    assert report.appendix == []
    assert report.trace.card_titles() == ["Request: REQ-1", "General Information"]
    assert report.trace.appendix_pages == []
    assert report.trace.footers == ["Page 1 of 1"]
    text = _page_texts(report.pdf)[0]
    assert "Customer Request Report" in text
    assert "Page 1 of 1" in text
    assert "Acme" in text


def test_three_products_with_two_attachments_each(localizer) -> None:
    products = [
        {
            "quantity": 2,
            "attachments": [
                png_attachment(f"p{n}a", f"product{n}-front.png"),
                png_attachment(f"p{n}b", f"product{n}-side.png"),
            ],
        }
        for n in range(1, 4)
    ]
    report = _render({"id": "REQ-2", "status": "submitted", "products": products}, localizer)

    titles = report.trace.card_titles()
    technical = [title for title in titles if title.startswith("Technical Information")]
    assert technical == [f"Technical Information - Product {n}" for n in range(1, 4)]
    assert [item.id for item in report.appendix] == [f"A.{n}" for n in range(1, 7)]
    pages = report.trace.appendix_pages
    assert [entry.item_id for entry in pages] == [f"A.{n}" for n in range(1, 7)]
    assert len({entry.page for entry in pages}) == 6
    # one index page directly in front of the item pages
    assert pages[0].page == report.page_count - 5
    texts = _page_texts(report.pdf)
    index_text = texts[pages[0].page - 2]
    assert "Appendix" in index_text
    assert "A.6" in index_text
    assert "See Appendix A.1-A.2" in "".join(texts)
    assert "See Appendix A.5-A.6" in "".join(texts)


def test_pdf_and_unknown_attachments_in_appendix(localizer) -> None:
    unknown = {
        "id": "u1",
        "filename": "notes.bin",
        "category": "other",
        "url": base64.b64encode(b"plain text, not a drawing").decode("ascii"),
    }
    payload = {
        "id": "REQ-3",
        "status": "submitted",
        "attachments": [pdf_attachment("d1", "rim.pdf", pages=2), unknown],
    }
    report = _render(payload, localizer)

    pages = report.trace.appendix_pages
    assert [entry.item_id for entry in pages] == ["A.1", "A.1", "A.2"]
    assert pages[0].title.endswith("(page 1/2)")
    assert pages[1].title.endswith("(page 2/2)")
    assert "(page" not in pages[2].title
    texts = _page_texts(report.pdf)
    assert "Preview not available for this file type." in texts[pages[2].page - 1]


def test_empty_string_omitted_zero_shown(localizer) -> None:
    report = _render(
        {"id": "REQ-4", "status": "draft", "clientName": "", "clientContact": "Lee", "expectedQty": 0},
        localizer,
    )
    labels = report.trace.field_labels("General Information")
    assert "Client Name" not in labels
    assert "Client Contact" in labels
    assert "Expected Quantity" in labels
    placed = {field.label: field.value for field in report.trace.fields}
    assert placed["Expected Quantity"] == "0"


def test_collapse_history() -> None:
    history = [
        StatusHistoryEntry("submitted", user_name="Sam"),
        StatusHistoryEntry("submitted", user_name="Sam"),
        StatusHistoryEntry("submitted", user_name="Kim"),
        StatusHistoryEntry("submitted", user_name="Kim", comment="Please check"),
        StatusHistoryEntry("submitted", user_name="Kim"),
    ]
    collapsed = collapse_history(history)
    assert [(entry.user_name, entry.comment) for entry in collapsed] == [
        ("Sam", ""),
        ("Kim", ""),
        ("Kim", "Please check"),
        ("Kim", ""),
    ]


def test_full_record_sections_and_history(localizer) -> None:
    report = _render(_full_record(), localizer)

    assert report.trace.card_titles() == [
        "Request: REQ-2024-017",
        "General Information",
        "Technical Information - Product 1",
        "Design Result",
        "Costing Information",
        "Sales Follow-up",
        "Status History",
    ]
    placed = {field.label: field.value for field in report.trace.fields}
    assert placed["Selling Price"] == "EUR 1234.50"
    assert placed["Margin"] == "12.5%"
    assert placed["VAT"] == "With VAT (20%)"
    assert placed["Track"] == "1850 mm"
    assert placed["Product Type"] == "Rear / Steering Axle / Tandem"
    assert placed["Wheel Base"] == "3200"
    assert placed["Studs / PCD"] == "10 x M22 studs - PCD 335/281"
    assert placed["Application Vehicle"] == "Forestry trailer"
    assert placed["Expected Quantity"] == "0"
    # two payment terms plus two collapsed history rows
    assert len(report.trace.rows) == 4
    text = "".join(_page_texts(report.pdf))
    assert "Balance" in text
    assert "Not provided" in text


def test_generation_is_deterministic(localizer) -> None:
    payload = _full_record()
    payload["attachments"] = [png_attachment("g1", "site.png"), pdf_attachment("g2", "drawing.pdf", pages=3)]
    first = _render(payload, localizer)
    second = _render(payload, localizer)
    assert first.page_count == second.page_count
    assert [item.id for item in first.appendix] == [item.id for item in second.appendix]
    assert first.trace.cards == second.trace.cards


def test_footer_labels_are_contiguous(localizer) -> None:
    payload = _full_record()
    payload["designNotes"] = "\n".join(f"Design note line {i}" for i in range(160))
    report = _render(payload, localizer)
    total = report.page_count
    assert total > 2
    assert report.trace.footers == [f"Page {n} of {total}" for n in range(1, total + 1)]
    assert any(fragment.continued for fragment in report.trace.cards)


def test_client_offer_variant(localizer) -> None:
    options = ReportOptions.client_offer(
        recipient_name="Nordic Trailers AB",
        offer_number="OF-2024/31",
        company=CompanyProfile(name="Wheel Works", phone="+33 1 23 45 67 89"),
    )
    report = _render(_full_record(), localizer, options)
    assert report.filename == "OF-2024-31_Nordic-Trailers-AB.pdf"
    assert report.trace.card_titles()[0] == "Offer: OF-2024/31"
    text = _page_texts(report.pdf)[0]
    assert "Client Offer" in text
    assert "OF-2024/31 | Page 1 of" in text
    assert "PROPERTY OF WHEEL WORKS" in text


def test_french_labels() -> None:
    localizer = Localizer.load("fr")
    report = _render({"id": "REQ-5", "status": "submitted", "clientName": "Acme"}, localizer)
    assert report.page_count == 1
    assert report.trace.footers == [localizer.template("pdf.pageOfLabel", current=1, total=1)]


def test_report_filename_internal() -> None:
    record = ReportRecord.from_dict({"id": "REQ 2024/001", "status": "draft"})
    assert report_filename(record, ReportOptions.internal()) == "REQ-2024-001_report.pdf"


def test_chinese_report_renders_with_cjk_font() -> None:
    localizer = Localizer.load("zh")
    report = _render({"id": "REQ-6", "status": "submitted", "clientName": "上海重工"}, localizer)
    assert report.page_count == 1
    assert report.trace.footers == ["第 1 页，共 1 页"]


def test_summary_card_skipped_without_fields(localizer) -> None:
    report = _render({"id": "REQ-8", "status": ""}, localizer)
    assert report.trace.card_titles() == []
    assert report.page_count == 1

    report = _render({"id": "REQ-9", "status": "", "clientName": "Acme"}, localizer)
    assert report.trace.card_titles() == ["General Information"]


def _offer(**values) -> ReportOptions:
    return ReportOptions.client_offer(
        recipient_name="Nordic Trailers AB",
        offer_number="OF-2024/31",
        company=CompanyProfile(name="Wheel Works"),
        **values,
    )


def test_offer_body_replaces_internal_cards(localizer) -> None:
    report = _render(_full_record(), localizer, _offer())

    assert report.trace.card_titles() == ["Offer: OF-2024/31", "General Information", "Line Items", "Commercial Terms"]
    assert report.trace.field_labels("Offer: OF-2024/31") == ["Offer Date", "Recipient", "Request ID", "Country"]
    placed = {field.label: field.value for field in report.trace.fields}
    assert placed["Offer Date"] == localizer.format_date(FROZEN_NOW, "long_date")
    assert placed["Payment Terms"] == "Deposit (30%); Balance (70%)"
    # one seeded, unpriced line per product and no totals block
    assert len(report.trace.rows) == 1
    assert "Subtotal" not in placed
    text = "".join(_page_texts(report.pdf))
    assert "Thank you for your enquiry." in text
    assert "Costing Information" not in text
    assert "Status History" not in text


def test_offer_priced_lines_and_vat_totals(localizer) -> None:
    payload = _full_record()
    payload.update({"salesCurrency": "USD", "salesVatMode": "with", "salesVatRate": 20})
    lines = [
        OfferLine(description="Steering axle", quantity=4, unit_price=1000),
        OfferLine(description="Spare hub", quantity=2, unit_price=125.5, remark="Optional"),
        OfferLine(description="Old quote line", quantity=1, unit_price=99, include=False),
    ]
    report = _render(payload, localizer, _offer(offer_lines=lines, intro_text="Dear Eva, here is our offer."))

    assert len(report.trace.rows) == 2
    placed = {field.label: field.value for field in report.trace.fields}
    assert placed["Subtotal"] == "USD 4251.00"
    assert placed["Discount"] == "USD 0.00"
    assert placed["Taxes"] == "USD 850.20"
    assert placed["Total"] == "USD 5101.20"
    text = "".join(_page_texts(report.pdf))
    assert "Dear Eva, here is our offer." in text
    assert "Thank you for your enquiry." not in text
    assert "Old quote line" not in text


def test_offer_section_toggles_hide_cards(localizer) -> None:
    payload = _full_record()
    payload["salesIncoterm"] = "FCA"
    sections = SectionVisibility(general=False, line_items=False, commercial_terms=False)
    report = _render(payload, localizer, _offer(sections=sections))

    assert report.trace.card_titles() == ["Offer: OF-2024/31", "Delivery Terms"]
    assert report.trace.rows == []


def test_offer_appendix_holds_only_selected_attachments(localizer) -> None:
    payload = _full_record()
    payload["attachments"] = [png_attachment("g1", "site.png"), png_attachment("g2", "plan.png")]
    payload["products"][0]["attachments"] = [png_attachment("t1", "axle.png")]
    payload["salesAttachments"] = [png_attachment("s1", "quote.png")]

    report = _render(payload, localizer, _offer(selected_attachment_ids=["s1", "g2", "missing"]))

    assert [(item.id, item.filename, item.category) for item in report.appendix] == [
        ("A.1", "plan.png", "General"),
        ("A.2", "quote.png", "Sales"),
    ]
    assert "See Appendix" not in "".join(_page_texts(report.pdf))

    hidden = _render(payload, localizer, _offer(
        selected_attachment_ids=["s1"], sections=SectionVisibility(appendix=False)
    ))
    assert hidden.appendix == []
    assert _render(payload, localizer, _offer()).appendix == []
