from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from reportlab.lib import colors

from .. import config
from ..config import ReportOptions, load_style_preset
from ..i18n import Localizer
from ..record import (
    Attachment,
    ProductSpec,
    ReportRecord,
    StatusHistoryEntry,
    resolve_other,
)
from .appendix import AppendixItem, AppendixRegistry, render_appendix
from .flow import (
    draw_key_values,
    draw_note,
    draw_paragraph,
    draw_subheading,
    draw_table,
    draw_title,
    format_unit,
    visible_fields,
)
from .ingest import safe_file_token
from .labels import BRAKE_NOT_APPLICABLE, brake_type_label, product_type_label, studs_label, vat_label
from .layout import LayoutTrace, PageFooter, PageHeader, PageManager, ReportCanvas, hex_color
from .offer import (
    collect_offer_attachments,
    line_item_rows,
    line_total,
    offer_lines,
    offer_totals,
    payment_terms_summary,
)
from .preview import PreviewResolver
from .resources import StaticResources, fonts_for

logger = logging.getLogger(__name__)

PAYMENT_WEIGHTS = [10, 44, 20, 60]
HISTORY_WEIGHTS = [32, 34, 30, 60]
LINE_ITEM_WEIGHTS = [8, 30, 50, 12, 22, 22, 30]


@dataclass
class RenderedReport:
    pdf: bytes
    filename: str
    page_count: int
    appendix: List[AppendixItem]
    trace: LayoutTrace

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.pdf)
        return path


def collapse_history(history: Sequence[StatusHistoryEntry]) -> List[StatusHistoryEntry]:
    """Drop an entry that repeats the previous one's status and user when neither has a comment."""
    out: List[StatusHistoryEntry] = []
    prev: Optional[StatusHistoryEntry] = None
    for entry in history:
        if (
            prev is not None
            and entry.status == prev.status
            and entry.user_name == prev.user_name
            and not entry.comment.strip()
            and not prev.comment.strip()
        ):
            prev = entry
            continue
        out.append(entry)
        prev = entry
    return out


def status_color(style: dict, status: str) -> colors.Color:
    code = (status or "").lower()
    for keyword, value in (style.get("status_colors") or {}).items():
        if keyword in code:
            return hex_color(value)
    return hex_color(style.get("status_default_color"), colors.grey)


def report_filename(record: ReportRecord, options: ReportOptions) -> str:
    if options.is_offer:
        offer = safe_file_token(options.offer_number or record.offer_number or record.id, "offer")
        recipient = safe_file_token(options.recipient_name or record.recipient_name or record.client_name, "client")
        return f"{offer}_{recipient}.pdf"
    return f"{safe_file_token(record.id, 'request')}_report.pdf"


class ReportAssembler:
    """Walks the record in its fixed section order and lays every card out on ``page``.

    The client offer has its own body: summary, introduction, line items,
    commercial and delivery terms, and only the attachments it selects.
    """

    def __init__(
        self,
        record: ReportRecord,
        page: PageManager,
        loc: Localizer,
        options: ReportOptions,
        registry: AppendixRegistry,
        now: Optional[datetime] = None,
    ) -> None:
        self.record = record
        self.page = page
        self.loc = loc
        self.options = options
        self.registry = registry
        self.now = now or datetime.now()

    def t(self, key: str, default: Optional[str] = None) -> str:
        return self.loc.text(key, default)

    def build(self) -> None:
        self.title_block()
        self.summary_card()
        if self.options.is_offer:
            self.offer_body()
            return
        self.general_card()
        for number, product in enumerate(self.record.products, start=1):
            self.product_card(number, product)
        self.design_card()
        self.costing_card()
        self.sales_card()
        self.history_card()

    def offer_body(self) -> None:
        sections = self.options.sections
        if sections.general:
            self.offer_intro_card()
        if sections.line_items:
            self.line_items_card()
        if sections.commercial_terms:
            self.commercial_terms_card()
        if sections.delivery_terms:
            self.delivery_terms_card()
        if sections.appendix:
            self.offer_appendix()

    def _xref(self, attachments: Sequence[Attachment], section: str) -> None:
        note = self.registry.cross_reference(attachments, section)
        if note:
            draw_subheading(self.page, self.t("request.attachments", "Attachments"))
            draw_note(self.page, note)

    def _group(self, title: str, fields: Sequence[Tuple[str, object]]) -> None:
        if visible_fields(fields):
            draw_subheading(self.page, title)
            draw_key_values(self.page, fields, 2)

    def title_block(self) -> None:
        key = "pdf.offerTitle" if self.options.is_offer else "pdf.reportTitle"
        draw_title(self.page, self.t(key))

    def summary_card(self) -> None:
        rec = self.record
        if self.options.is_offer:
            title = f"{self.t('pdf.offerLabel', 'Offer')}: {self.options.offer_number or rec.offer_number or rec.id}"
            fields = [
                (self.t("clientOffer.offerDate", "Offer Date"), self.loc.format_date(self.now, "long_date")),
                (self.t("clientOffer.recipientName", "Recipient"),
                 self.options.recipient_name or rec.recipient_name or rec.client_name),
                (self.t("clientOffer.requestId", "Request ID"), rec.id),
                (self.t("request.country", "Country"), self.loc.option(resolve_other(rec.country, rec.country_other))),
            ]
        else:
            title = f"{self.t('pdf.requestLabel', 'Request')}: {rec.id}"
            fields = [
                (self.t("common.status", "Status"), self.loc.status(rec.status)),
                (self.t("request.createdBy", "Created by"), rec.created_by_name),
                (self.t("pdf.createdAtLabel", "Created"), self.loc.format_date(rec.created_at, "long_datetime")),
            ]
        if not visible_fields(fields):
            return
        self.page.cards.begin(title)
        draw_key_values(self.page, fields, 2)
        self.page.cards.end()

    def general_card(self) -> None:
        rec = self.record
        loc = self.loc
        country = resolve_other(rec.country, rec.country_other)
        base = [
            (self.t("request.clientName"), rec.client_name),
            (self.t("request.clientContact"), rec.client_contact),
            (self.t("request.applicationVehicle"),
             loc.option(resolve_other(rec.application_vehicle, rec.application_vehicle_other))),
            (self.t("request.country"), loc.option(country)),
            (self.t("request.city"), rec.city if country.strip().lower() == "china" else ""),
            (self.t("request.repeatability"), loc.option(rec.repeatability)),
            (self.t("request.expectedQty"), rec.expected_qty),
        ]
        delivery = [
            (self.t("pdf.deliverablesLabel"), "; ".join(loc.option(s) for s in rec.expected_delivery_selections)),
            (self.t("request.clientExpectedDeliveryDate"), rec.client_expected_delivery_date),
        ]
        application = [
            (self.t("request.workingCondition"),
             loc.option(resolve_other(rec.working_condition, rec.working_condition_other))),
            (self.t("request.usageType"), loc.option(resolve_other(rec.usage_type, rec.usage_type_other))),
            (self.t("request.environment"), loc.option(resolve_other(rec.environment, rec.environment_other))),
        ]
        if not (visible_fields(base) or visible_fields(delivery) or visible_fields(application) or rec.attachments):
            return
        self.page.cards.begin(self.t("request.generalInfo", "General Information"))
        draw_key_values(self.page, base, 2)
        self._group(self.t("request.expectedDelivery"), delivery)
        self._group(self.t("request.clientApplication"), application)
        self._xref(rec.attachments, "general")
        self.page.cards.end()

    def product_card(self, number: int, product: ProductSpec) -> None:
        loc = self.loc
        show_wheel_base = "steering" in product.articulation_type.lower()
        brake_na = product.brake_type.strip().lower() in BRAKE_NOT_APPLICABLE
        groups = [
            (self.t("pdf.axlePerformanceTitle"), [
                (self.t("request.productType"), product_type_label(product, loc)),
                (self.t("request.quantity"), product.quantity),
                (self.t("pdf.loadsKgLabel"), format_unit(product.loads_kg, "kg")),
                (self.t("pdf.speedsKmhLabel"), format_unit(product.speeds_kmh, "km/h")),
            ]),
            (self.t("pdf.wheelsGeometryTitle"), [
                (self.t("request.tyreSize"), product.tyre_size),
                (self.t("pdf.trackMmLabel"), format_unit(product.track_mm, "mm")),
            ] + ([(self.t("request.wheelBase"), product.wheel_base)] if show_wheel_base else [])),
            (self.t("pdf.brakingSuspensionTitle"), [
                (self.t("request.brakeType"), brake_type_label(product.brake_type, loc)),
            ] + ([] if brake_na else [(self.t("request.brakeSize"), loc.option(product.brake_size))]) + [
                (self.t("request.brakePowerType"), loc.option(product.brake_power_type)),
                (self.t("request.brakeCertificate"), loc.option(product.brake_certificate)),
                (self.t("request.suspension"), loc.option(product.suspension)),
            ]),
            (self.t("pdf.finishInterfaceTitle"), [
                (self.t("request.finish"), loc.option(product.finish)),
                (self.t("request.studsPcd"), studs_label(product, loc)),
                (self.t("request.mainBodySectionType"), loc.option(product.main_body_section_type)),
                (self.t("request.clientSealingRequest"), loc.option(product.client_sealing_request)),
                (self.t("request.cupLogo"), loc.option(product.cup_logo)),
            ]),
        ]
        has_comments = bool(product.product_comments.strip())
        if not (any(visible_fields(fields) for _, fields in groups) or has_comments or product.attachments):
            return

        product_label = f"{self.t('request.productLabel', 'Product')} {number}"
        self.page.cards.begin(f"{self.t('request.technicalInfo')} - {product_label}")
        for title, fields in groups:
            self._group(title, fields)
        if has_comments:
            draw_subheading(self.page, self.t("request.productComments"))
            draw_paragraph(self.page, product.product_comments)
        self._xref(product.attachments, "technical")
        self.page.cards.end()

    def design_card(self) -> None:
        rec = self.record
        notes = rec.design_notes.strip()
        comments = rec.design_result_comments.strip()
        if not (notes or comments or rec.design_result_attachments):
            return
        self.page.cards.begin(self.t("panels.designResult", "Design Result"))
        if notes:
            draw_subheading(self.page, self.t("pdf.designNotesTitle"))
            draw_paragraph(self.page, rec.design_notes)
        if comments:
            draw_subheading(self.page, self.t("panels.designResultComments"))
            draw_paragraph(self.page, rec.design_result_comments)
        self._xref(rec.design_result_attachments, "design")
        self.page.cards.end()

    def costing_card(self) -> None:
        rec = self.record
        fields = [
            (self.t("panels.sellingPrice"), format_unit(rec.selling_price, rec.selling_currency, 2)),
            (self.t("panels.margin"), format_unit(rec.calculated_margin, "%", 1)),
            (self.t("panels.deliveryLeadtime"), rec.delivery_leadtime),
            (self.t("panels.incoterm"), self.loc.option(resolve_other(rec.incoterm, rec.incoterm_other))),
            (self.t("panels.vatMode"), vat_label(rec.vat_mode, rec.vat_rate, self.loc)),
        ]
        notes = rec.costing_notes.strip()
        if not (visible_fields(fields) or notes or rec.costing_attachments):
            return
        self.page.cards.begin(self.t("pdf.costingInformationTitle", "Costing Information"))
        draw_key_values(self.page, fields, 2)
        if notes:
            draw_subheading(self.page, self.t("panels.costingNotes"))
            draw_paragraph(self.page, rec.costing_notes)
        self._xref(rec.costing_attachments, "costing")
        self.page.cards.end()

    def sales_card(self) -> None:
        rec = self.record
        fields = [
            (self.t("panels.salesFinalPrice"), format_unit(rec.sales_final_price, rec.sales_currency, 2)),
            (self.t("panels.salesMargin"), format_unit(rec.sales_margin, "%", 2)),
            (self.t("panels.warrantyPeriod"), rec.sales_warranty_period),
            (self.t("panels.offerValidityPeriod"), rec.sales_offer_validity_period),
            (self.t("panels.salesExpectedDeliveryDate"), rec.sales_expected_delivery_date),
            (self.t("panels.incoterm"),
             self.loc.option(resolve_other(rec.sales_incoterm, rec.sales_incoterm_other))),
            (self.t("panels.vatMode"), vat_label(rec.sales_vat_mode, rec.sales_vat_rate, self.loc)),
        ]
        terms = [term for term in rec.sales_payment_terms if not term.is_blank]
        feedback = rec.sales_feedback_comment.strip()
        if not (visible_fields(fields) or terms or feedback or rec.sales_attachments):
            return
        self.page.cards.begin(self.t("panels.salesFollowup", "Sales Follow-up"))
        draw_key_values(self.page, fields, 2)
        if feedback:
            draw_subheading(self.page, self.t("panels.salesFeedback"))
            draw_paragraph(self.page, rec.sales_feedback_comment)
        if terms:
            draw_subheading(self.page, self.t("panels.paymentTerms"))
            headers = [
                self.t("panels.paymentNumber", "#"),
                self.t("panels.paymentName"),
                self.t("panels.paymentPercent"),
                self.t("panels.paymentComments"),
            ]
            rows = [
                [term.number if term.number is not None else index, term.name,
                 format_unit(term.percent, "%"), term.comments]
                for index, term in enumerate(terms, start=1)
            ]
            draw_table(self.page, headers, rows, PAYMENT_WEIGHTS)
        self._xref(rec.sales_attachments, "sales")
        self.page.cards.end()

    def history_card(self) -> None:
        entries = collapse_history(self.record.history)
        if not entries:
            return
        missing = self.t("pdf.notProvided", "Not provided")
        headers = [
            self.t("common.status", "Status"),
            self.t("common.date", "Date"),
            self.t("pdf.byLabel", "By"),
            self.t("pdf.commentLabel", "Comment"),
        ]
        rows = [
            [
                self.loc.status(entry.status),
                self.loc.format_date(entry.timestamp, "short_datetime"),
                entry.user_name.strip() or missing,
                entry.comment.strip() or missing,
            ]
            for entry in entries
        ]
        self.page.cards.begin(self.t("pdf.statusHistoryTitle", "Status History"))
        draw_table(self.page, headers, rows, HISTORY_WEIGHTS)
        self.page.cards.end()

    def offer_intro_card(self) -> None:
        intro = self.options.intro_text.strip() or self.t("clientOffer.defaultIntro")
        self.page.cards.begin(self.t("clientOffer.generalInformation", "General Information"))
        draw_paragraph(self.page, intro)
        self.page.cards.end()

    def line_items_card(self) -> None:
        rec = self.record
        lines = offer_lines(rec, self.options, self.loc)
        if not lines:
            return
        headers = [
            self.t("clientOffer.item", "Item"),
            self.t("clientOffer.description", "Description"),
            self.t("clientOffer.specification", "Specification"),
            self.t("clientOffer.quantity", "Qty"),
            self.t("clientOffer.unitPrice", "Unit Price"),
            self.t("clientOffer.lineTotal", "Line Total"),
            self.t("clientOffer.remark", "Remark"),
        ]
        self.page.cards.begin(self.t("clientOffer.lineItemsTitle", "Line Items"))
        draw_table(self.page, headers, line_item_rows(lines, rec.sales_currency), LINE_ITEM_WEIGHTS)
        if any(line_total(line) is not None for line in lines):
            totals = offer_totals(lines, rec)
            currency = rec.sales_currency
            draw_key_values(self.page, [
                (self.t("clientOffer.subtotal", "Subtotal"), format_unit(totals.subtotal, currency, 2)),
                (self.t("clientOffer.discount", "Discount"), format_unit(totals.discount, currency, 2)),
                (self.t("clientOffer.taxes", "Taxes"), format_unit(totals.tax, currency, 2)),
                (self.t("clientOffer.total", "Total"), format_unit(totals.total, currency, 2)),
            ], 2)
        self.page.cards.end()

    def _terms_card(self, title: str, fields: Sequence[Tuple[str, object]]) -> None:
        if not visible_fields(fields):
            return
        self.page.cards.begin(title)
        draw_key_values(self.page, fields, 2)
        self.page.cards.end()

    def commercial_terms_card(self) -> None:
        rec = self.record
        terms = [term for term in rec.sales_payment_terms if not term.is_blank]
        self._terms_card(self.t("clientOffer.commercialTermsTitle", "Commercial Terms"), [
            (self.t("panels.offerValidityPeriod"), rec.sales_offer_validity_period),
            (self.t("panels.paymentTerms"), payment_terms_summary(terms)),
        ])

    def delivery_terms_card(self) -> None:
        rec = self.record
        self._terms_card(self.t("clientOffer.deliveryTermsTitle", "Delivery Terms"), [
            (self.t("panels.salesExpectedDeliveryDate"), rec.sales_expected_delivery_date),
            (self.t("panels.incoterm"), self.loc.option(resolve_other(rec.sales_incoterm, rec.sales_incoterm_other))),
            (self.t("panels.warrantyPeriod"), rec.sales_warranty_period),
        ])

    def offer_appendix(self) -> None:
        for attachment, section in collect_offer_attachments(self.record, self.options.selected_attachment_ids):
            self.registry.register([attachment], section)


def _header_for(
    record: ReportRecord, options: ReportOptions, loc: Localizer, style: dict, resources: StaticResources, fonts, now: datetime
) -> PageHeader:
    company = options.company
    contact_lines = [
        f"{loc.text('pdf.contactLabel', 'Contact')}: {record.created_by_name}" if record.created_by_name else "",
        f"{loc.text('pdf.phoneLabel', 'Phone')}: {company.phone}" if company.phone else "",
        f"{loc.text('pdf.emailLabel', 'Email')}: {company.email}" if company.email else "",
    ]
    return PageHeader(
        style,
        fonts,
        logo=resources.logo,
        branding=options.branding,
        status_label=loc.status(record.status),
        status_color=status_color(style, record.status),
        generated_text=f"{loc.text('pdf.generatedLabel', 'Generated')}: {loc.format_date(now, 'long_datetime')}",
        company_lines=[line for line in (company.name.upper(), company.address) if line],
        contact_lines=[line for line in contact_lines if line],
    )


def _footer_for(
    record: ReportRecord, options: ReportOptions, loc: Localizer, style: dict, fonts, trace: LayoutTrace
) -> PageFooter:
    def page_label(current: int, total: int) -> str:
        return loc.template("pdf.pageOfLabel", "Page {current} of {total}", current=current, total=total)

    if not options.is_offer:
        return PageFooter(
            style,
            fonts,
            page_label,
            trailer=f"{loc.text('pdf.reportTitle')} | {record.id}",
            trace=trace,
        )
    company = options.company.name or ""
    watermark = None
    if options.watermark:
        watermark = [loc.text("pdf.confidential", "CONFIDENTIAL"), company.upper()]
    return PageFooter(
        style,
        fonts,
        page_label,
        trailer=options.offer_number or record.offer_number or record.id,
        band_left=loc.text("pdf.confidential", "CONFIDENTIAL"),
        band_center=loc.template("pdf.propertyOf", "PROPERTY OF {company}", company=company.upper()) if company else "",
        band=True,
        watermark=watermark,
        trace=trace,
    )


def generate_report(
    record: ReportRecord,
    localizer: Optional[Localizer] = None,
    options: Optional[ReportOptions] = None,
    now: Optional[datetime] = None,
    resolver: Optional[PreviewResolver] = None,
) -> RenderedReport:
    """Lay out one record into a paginated PDF.

    Layout runs synchronously on call-local state. Previews are resolved one
    by one in appendix order; page numbers are stamped after layout.
    """
    options = options or ReportOptions.internal()
    loc = localizer or Localizer.load(options.language)
    resolver = resolver or PreviewResolver(localizer=loc)
    now = now or datetime.now()

    style = load_style_preset()
    resources = StaticResources.get()
    fonts = fonts_for(style, resources, loc.needs_cjk_font)
    trace = LayoutTrace()

    buffer = BytesIO()
    canv = ReportCanvas(
        buffer,
        pagesize=config.PAGE_SIZE,
        footer=_footer_for(record, options, loc, style, fonts, trace),
    )
    canv.setTitle(f"{loc.text('pdf.reportTitle')} {record.id}")
    header = _header_for(record, options, loc, style, resources, fonts, now)
    page = PageManager(
        canv,
        style,
        fonts,
        header,
        bottom_margin=options.bottom_margin,
        trace=trace,
        continued_label=f"({loc.text('pdf.continuedLabel', 'Continued')})",
    )
    registry = AppendixRegistry(loc)

    page.start()
    ReportAssembler(record, page, loc, options, registry, now).build()
    render_appendix(page, registry, resolver, options.appendix_style)
    page_count = page.finish()

    logger.info("Rendered %s: %d pages, %d appendix items", record.id, page_count, len(registry))
    return RenderedReport(
        pdf=buffer.getvalue(),
        filename=report_filename(record, options),
        page_count=page_count,
        appendix=registry.items,
        trace=trace,
    )
