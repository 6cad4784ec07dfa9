from __future__ import annotations

from typing import Optional

from ..i18n import Localizer
from ..record import Number, ProductSpec, format_studs_selection, resolve_other
from .flow import format_unit

EXCLUDED_TYPE_PARTS = {"n/a", "na", "-", ""}
BRAKE_NOT_APPLICABLE = {"na", "n/a", "n.a"}


def product_type_label(product: ProductSpec, loc: Localizer) -> str:
    parts = [
        loc.option(resolve_other(product.axle_location, product.axle_location_other)),
        loc.option(resolve_other(product.articulation_type, product.articulation_type_other)),
        loc.option(resolve_other(product.configuration_type, product.configuration_type_other)),
    ]
    return " / ".join(part for part in parts if part.strip().lower() not in EXCLUDED_TYPE_PARTS)


def studs_label(product: ProductSpec, loc: Localizer) -> str:
    if product.studs_pcd_mode == "special":
        return product.studs_pcd_special_text
    labels = []
    for selection in product.studs_pcd_standard_selections:
        label = loc.option(selection)
        labels.append(format_studs_selection(selection) if label == selection else label)
    return "; ".join(labels)


def brake_type_label(code: str, loc: Localizer) -> str:
    key = (code or "").strip().lower()
    if key in ("drum", "disk"):
        return loc.text(f"request.{key}", code)
    if key in BRAKE_NOT_APPLICABLE:
        return loc.text("request.na", "N/A")
    return loc.option(code)


def vat_label(mode: str, rate: Optional[Number], loc: Localizer) -> str:
    if mode == "with":
        label = loc.text("panels.withVat", "With VAT")
        return f"{label} ({format_unit(rate, '%')})" if rate is not None else label
    if mode == "without":
        return loc.text("panels.withoutVat", "Without VAT")
    return ""
