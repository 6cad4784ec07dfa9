from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

Number = Union[int, float]
Scalar = Union[str, int, float, None]


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _number(value: Any) -> Optional[Number]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise TypeError("Boolean is not a number")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    return float(text) if "." in text else int(text)


def _scalar(value: Any) -> Scalar:
    # numbers stay numbers so that 0 is rendered, not dropped
    if value is None or isinstance(value, (int, float, str)):
        return value
    raise TypeError(f"Unsupported field value: {value!r}")


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Attachment:
    id: str
    filename: str
    category: str
    url: str
    uploaded_by: str = ""
    uploaded_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Attachment":
        return cls(
            id=str(payload.get("id", "")),
            filename=_text(payload, "filename"),
            # "type" is the legacy name of the category field
            category=_text(payload, "category") or _text(payload, "type"),
            url=_text(payload, "url"),
            uploaded_by=_text(payload, "uploadedBy"),
            uploaded_at=parse_timestamp(payload.get("uploadedAt")),
        )

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.category, self.filename, self.url)


def _attachments(payload: Dict[str, Any], key: str) -> Tuple[Attachment, ...]:
    return tuple(Attachment.from_dict(item) for item in payload.get(key) or [])


@dataclass(frozen=True)
class ProductSpec:
    axle_location: str = ""
    axle_location_other: str = ""
    articulation_type: str = ""
    articulation_type_other: str = ""
    configuration_type: str = ""
    configuration_type_other: str = ""
    quantity: Scalar = None
    loads_kg: Scalar = None
    speeds_kmh: Scalar = None
    tyre_size: str = ""
    track_mm: Scalar = None
    studs_pcd_mode: str = "standard"
    studs_pcd_standard_selections: Tuple[str, ...] = ()
    studs_pcd_special_text: str = ""
    wheel_base: str = ""
    finish: str = ""
    brake_type: str = ""
    brake_size: str = ""
    brake_power_type: str = ""
    brake_certificate: str = ""
    main_body_section_type: str = ""
    client_sealing_request: str = ""
    cup_logo: str = ""
    suspension: str = ""
    product_comments: str = ""
    attachments: Tuple[Attachment, ...] = ()

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProductSpec":
        return cls(
            axle_location=_text(payload, "axleLocation"),
            axle_location_other=_text(payload, "axleLocationOther"),
            articulation_type=_text(payload, "articulationType"),
            articulation_type_other=_text(payload, "articulationTypeOther"),
            configuration_type=_text(payload, "configurationType"),
            configuration_type_other=_text(payload, "configurationTypeOther"),
            quantity=_scalar(payload.get("quantity")),
            loads_kg=_scalar(payload.get("loadsKg")),
            speeds_kmh=_scalar(payload.get("speedsKmh")),
            tyre_size=_text(payload, "tyreSize"),
            track_mm=_scalar(payload.get("trackMm")),
            studs_pcd_mode=_text(payload, "studsPcdMode") or "standard",
            studs_pcd_standard_selections=tuple(
                str(item) for item in payload.get("studsPcdStandardSelections") or []
            ),
            studs_pcd_special_text=_text(payload, "studsPcdSpecialText"),
            wheel_base=_text(payload, "wheelBase"),
            finish=_text(payload, "finish"),
            brake_type=_text(payload, "brakeType"),
            brake_size=_text(payload, "brakeSize"),
            brake_power_type=_text(payload, "brakePowerType"),
            brake_certificate=_text(payload, "brakeCertificate"),
            main_body_section_type=_text(payload, "mainBodySectionType"),
            client_sealing_request=_text(payload, "clientSealingRequest"),
            cup_logo=_text(payload, "cupLogo"),
            suspension=_text(payload, "suspension"),
            product_comments=_text(payload, "productComments"),
            attachments=_attachments(payload, "attachments"),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: str
    timestamp: Optional[datetime] = None
    user_name: str = ""
    comment: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            status=str(payload["status"]),
            timestamp=parse_timestamp(payload.get("timestamp")),
            user_name=_text(payload, "userName"),
            comment=_text(payload, "comment"),
        )


@dataclass(frozen=True)
class PaymentTerm:
    number: Optional[int] = None
    name: str = ""
    percent: Optional[Number] = None
    comments: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PaymentTerm":
        number = _number(payload.get("paymentNumber"))
        return cls(
            number=int(number) if number is not None else None,
            name=_text(payload, "paymentName"),
            percent=_number(payload.get("paymentPercent")),
            comments=_text(payload, "comments"),
        )

    @property
    def is_blank(self) -> bool:
        return not (self.name.strip() or self.percent is not None or self.comments.strip())


@dataclass(frozen=True)
class ReportRecord:
    """A finished, validated customer request as handed over by the workflow layer."""

    id: str
    status: str
    client_name: str = ""
    client_contact: str = ""
    created_by_name: str = ""
    created_at: Optional[datetime] = None

    application_vehicle: str = ""
    application_vehicle_other: str = ""
    country: str = ""
    country_other: str = ""
    city: str = ""
    repeatability: str = ""
    expected_qty: Scalar = None
    expected_delivery_selections: Tuple[str, ...] = ()
    client_expected_delivery_date: str = ""

    working_condition: str = ""
    working_condition_other: str = ""
    usage_type: str = ""
    usage_type_other: str = ""
    environment: str = ""
    environment_other: str = ""

    products: Tuple[ProductSpec, ...] = ()
    attachments: Tuple[Attachment, ...] = ()

    design_notes: str = ""
    design_result_comments: str = ""
    design_result_attachments: Tuple[Attachment, ...] = ()

    costing_notes: str = ""
    selling_price: Optional[Number] = None
    selling_currency: str = "EUR"
    calculated_margin: Optional[Number] = None
    incoterm: str = ""
    incoterm_other: str = ""
    vat_mode: str = ""
    vat_rate: Optional[Number] = None
    delivery_leadtime: str = ""
    costing_attachments: Tuple[Attachment, ...] = ()

    sales_final_price: Optional[Number] = None
    sales_currency: str = "EUR"
    sales_margin: Optional[Number] = None
    sales_warranty_period: str = ""
    sales_offer_validity_period: str = ""
    sales_expected_delivery_date: str = ""
    sales_incoterm: str = ""
    sales_incoterm_other: str = ""
    sales_vat_mode: str = ""
    sales_vat_rate: Optional[Number] = None
    sales_payment_terms: Tuple[PaymentTerm, ...] = ()
    sales_feedback_comment: str = ""
    sales_attachments: Tuple[Attachment, ...] = ()

    history: Tuple[StatusHistoryEntry, ...] = field(default_factory=tuple)

    offer_number: str = ""
    recipient_name: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ReportRecord":
        return cls(
            id=str(payload["id"]),
            status=str(payload["status"]),
            client_name=_text(payload, "clientName"),
            client_contact=_text(payload, "clientContact"),
            created_by_name=_text(payload, "createdByName"),
            created_at=parse_timestamp(payload.get("createdAt")),
            application_vehicle=_text(payload, "applicationVehicle"),
            application_vehicle_other=_text(payload, "applicationVehicleOther"),
            country=_text(payload, "country"),
            country_other=_text(payload, "countryOther"),
            city=_text(payload, "city"),
            repeatability=_text(payload, "repeatability"),
            expected_qty=_scalar(payload.get("expectedQty")),
            expected_delivery_selections=tuple(
                str(item) for item in payload.get("expectedDeliverySelections") or []
            ),
            client_expected_delivery_date=_text(payload, "clientExpectedDeliveryDate"),
            working_condition=_text(payload, "workingCondition"),
            working_condition_other=_text(payload, "workingConditionOther"),
            usage_type=_text(payload, "usageType"),
            usage_type_other=_text(payload, "usageTypeOther"),
            environment=_text(payload, "environment"),
            environment_other=_text(payload, "environmentOther"),
            products=tuple(ProductSpec.from_dict(item) for item in payload.get("products") or []),
            attachments=_attachments(payload, "attachments"),
            design_notes=_text(payload, "designNotes"),
            design_result_comments=_text(payload, "designResultComments"),
            design_result_attachments=_attachments(payload, "designResultAttachments"),
            costing_notes=_text(payload, "costingNotes"),
            selling_price=_number(payload.get("sellingPrice")),
            selling_currency=_text(payload, "sellingCurrency") or "EUR",
            calculated_margin=_number(payload.get("calculatedMargin")),
            incoterm=_text(payload, "incoterm"),
            incoterm_other=_text(payload, "incotermOther"),
            vat_mode=_text(payload, "vatMode"),
            vat_rate=_number(payload.get("vatRate")),
            delivery_leadtime=_text(payload, "deliveryLeadtime"),
            costing_attachments=_attachments(payload, "costingAttachments"),
            sales_final_price=_number(payload.get("salesFinalPrice")),
            sales_currency=_text(payload, "salesCurrency") or "EUR",
            sales_margin=_number(payload.get("salesMargin")),
            sales_warranty_period=_text(payload, "salesWarrantyPeriod"),
            sales_offer_validity_period=_text(payload, "salesOfferValidityPeriod"),
            sales_expected_delivery_date=_text(payload, "salesExpectedDeliveryDate"),
            sales_incoterm=_text(payload, "salesIncoterm"),
            sales_incoterm_other=_text(payload, "salesIncotermOther"),
            sales_vat_mode=_text(payload, "salesVatMode"),
            sales_vat_rate=_number(payload.get("salesVatRate")),
            sales_payment_terms=tuple(
                PaymentTerm.from_dict(item) for item in payload.get("salesPaymentTerms") or []
            ),
            sales_feedback_comment=_text(payload, "salesFeedbackComment"),
            sales_attachments=_attachments(payload, "salesAttachments"),
            history=tuple(StatusHistoryEntry.from_dict(item) for item in payload.get("history") or []),
            offer_number=_text(payload, "offerNumber"),
            recipient_name=_text(payload, "recipientName"),
        )


def resolve_other(value: str, other: str) -> str:
    if not value:
        return ""
    if value == "other":
        return other.strip()
    return value


STUDS_PATTERN_PARTS = 5


def format_studs_selection(selection: str) -> str:
    """``STD_4_M10_84_115`` -> ``4 x M10 studs - PCD 84/115``."""
    parts = selection.split("_")
    if len(parts) == STUDS_PATTERN_PARTS and parts[0] == "STD" and parts[2].startswith("M"):
        count, bolt, pcd1, pcd2 = parts[1], parts[2][1:], parts[3], parts[4]
        if count.isdigit() and bolt.isdigit() and pcd1.isdigit() and pcd2.isdigit():
            return f"{count} x M{bolt} studs - PCD {pcd1}/{pcd2}"
    if selection.startswith("STD_"):
        return selection.replace("_", " ")
    return selection
