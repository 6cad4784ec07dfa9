from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config import OfferLine, ReportOptions
from ..i18n import Localizer
from ..record import Attachment, Number, PaymentTerm, ProductSpec, ReportRecord, resolve_other
from .flow import display_value, format_unit
from .labels import product_type_label

logger = logging.getLogger(__name__)

SPEC_SEPARATOR = "|"
SPEC_BULLET = "•"


def normalize_amount(value: Optional[Number]) -> Optional[float]:
    """Two-decimal amount; negatives are clamped to 0."""
    if value is None:
        return None
    return round(max(0.0, float(value)), 2)


def line_total(line: OfferLine) -> Optional[float]:
    quantity = normalize_amount(line.quantity)
    unit_price = normalize_amount(line.unit_price)
    if quantity is None or unit_price is None:
        return None
    return round(quantity * unit_price, 2)


@dataclass(frozen=True)
class OfferTotals:
    subtotal: float
    discount: float
    tax: float
    total: float


def offer_totals(lines: Sequence[OfferLine], record: ReportRecord) -> OfferTotals:
    subtotal = round(sum(line_total(line) or 0.0 for line in lines), 2)
    discount = 0.0
    rate = normalize_amount(record.sales_vat_rate) if record.sales_vat_mode == "with" else 0.0
    tax = round((subtotal - discount) * (rate or 0.0) / 100, 2)
    return OfferTotals(subtotal=subtotal, discount=discount, tax=tax, total=round(subtotal - discount + tax, 2))


def _product_description(product: ProductSpec, record: ReportRecord, loc: Localizer, number: int) -> str:
    label = product_type_label(product, loc)
    if label:
        return label
    vehicle = loc.option(resolve_other(record.application_vehicle, record.application_vehicle_other))
    return vehicle or loc.template("clientOffer.itemFallback", "Item {number}", number=number)


def _spec_parts(product: ProductSpec, loc: Localizer) -> List[str]:
    parts = [
        ("clientOffer.specTyre", "Tyre", product.tyre_size),
        ("clientOffer.specLoads", "Loads", display_value(product.loads_kg)),
        ("clientOffer.specSpeed", "Speed", display_value(product.speeds_kmh)),
        ("clientOffer.specTrack", "Track", display_value(product.track_mm)),
        ("clientOffer.specBrake", "Brake", loc.option(product.brake_type)),
        ("clientOffer.specSuspension", "Suspension", loc.option(product.suspension)),
    ]
    return [f"{loc.text(key, default)}: {value}" for key, default, value in parts if value and str(value).strip()]


def seed_offer_lines(record: ReportRecord, loc: Localizer) -> List[OfferLine]:
    """One unpriced offer line per product of the request."""
    lines = []
    for number, product in enumerate(record.products, start=1):
        quantity = product.quantity if isinstance(product.quantity, (int, float)) else None
        lines.append(
            OfferLine(
                description=_product_description(product, record, loc, number),
                specification=f" {SPEC_SEPARATOR} ".join(_spec_parts(product, loc)),
                quantity=quantity,
            )
        )
    return lines


def offer_lines(record: ReportRecord, options: ReportOptions, loc: Localizer) -> List[OfferLine]:
    lines = list(options.offer_lines) or seed_offer_lines(record, loc)
    return [line for line in lines if line.include]


def specification_text(specification: str) -> str:
    parts = [part.strip() for part in specification.split(SPEC_SEPARATOR) if part.strip()]
    return "\n".join(f"{SPEC_BULLET} {part}" for part in parts)


def line_item_rows(lines: Sequence[OfferLine], currency: str) -> List[List[object]]:
    rows: List[List[object]] = []
    for number, line in enumerate(lines, start=1):
        quantity = normalize_amount(line.quantity)
        rows.append(
            [
                number,
                line.description,
                specification_text(line.specification),
                int(quantity) if quantity is not None else None,
                format_unit(normalize_amount(line.unit_price), currency, 2),
                format_unit(line_total(line), currency, 2),
                line.remark,
            ]
        )
    return rows


def payment_terms_summary(terms: Sequence[PaymentTerm]) -> str:
    parts = []
    for term in terms:
        if not term.name.strip() and term.percent is None:
            continue
        percent = format_unit(term.percent, "%") if term.percent is not None else "-"
        parts.append(f"{term.name.strip() or '-'} ({percent})")
    return "; ".join(parts)


def collect_offer_attachments(record: ReportRecord, selected_ids: Sequence[str]) -> List[Tuple[Attachment, str]]:
    """Selected attachments with the section they come from, in section order, one entry per id."""
    wanted = set(selected_ids)
    sources: List[Tuple[Sequence[Attachment], str]] = [(record.attachments, "general")]
    sources += [(product.attachments, "technical") for product in record.products]
    sources += [
        (record.design_result_attachments, "design"),
        (record.costing_attachments, "costing"),
        (record.sales_attachments, "sales"),
    ]
    out: List[Tuple[Attachment, str]] = []
    seen = set()
    for attachments, section in sources:
        for attachment in attachments:
            key = attachment.id.strip()
            if not key or key in seen:
                continue
            seen.add(key)
            if key in wanted:
                out.append((attachment, section))
    missing = wanted - seen
    if missing:
        logger.warning("Offer selects unknown attachment ids: %s", ", ".join(sorted(missing)))
    return out
