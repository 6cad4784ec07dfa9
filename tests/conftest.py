from __future__ import annotations

import base64
from datetime import datetime
from io import BytesIO
from pathlib import Path

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from quotepdf import config
from quotepdf.config import load_style_preset
from quotepdf.i18n import Localizer
from quotepdf.models import reset_engine
from quotepdf.pipeline.layout import LayoutTrace, PageHeader, PageManager, ReportCanvas
from quotepdf.pipeline.preview import PreviewResolver
from quotepdf.pipeline.resources import Fonts

# 1x1 transparent PNG
PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
FROZEN_NOW = datetime(2024, 5, 17, 9, 30)


def make_pdf_bytes(pages: int = 1) -> bytes:
    buffer = BytesIO()
    canv = canvas.Canvas(buffer, pagesize=A4)
    for number in range(1, pages + 1):
        canv.drawString(72, 720, f"Drawing sheet {number}")
        canv.showPage()
    canv.save()
    return buffer.getvalue()


def make_page(bottom_margin: float = config.BOTTOM_MARGIN, buffer: BytesIO | None = None) -> PageManager:
    style = load_style_preset()
    fonts = Fonts(regular="Helvetica", bold="Helvetica-Bold")
    trace = LayoutTrace()
    canv = ReportCanvas(buffer if buffer is not None else BytesIO(), pagesize=config.PAGE_SIZE)
    page = PageManager(canv, style, fonts, PageHeader(style, fonts), bottom_margin=bottom_margin, trace=trace)
    page.start()
    return page


def offline_resolver(localizer: Localizer) -> PreviewResolver:
    def no_network(url: str):
        raise AssertionError(f"unexpected fetch of {url}")

    return PreviewResolver(localizer=localizer, fetcher=no_network, base_url="")


def png_attachment(attachment_id: str, filename: str, category: str = "picture") -> dict:
    return {
        "id": attachment_id,
        "filename": filename,
        "category": category,
        "url": f"data:image/png;base64,{PNG_BASE64}",
        "uploadedBy": "Dana",
        "uploadedAt": "2024-05-01T08:00:00Z",
    }


def pdf_attachment(attachment_id: str, filename: str, pages: int = 1) -> dict:
    return {
        "id": attachment_id,
        "filename": filename,
        "category": "rim_drawing",
        "url": base64.b64encode(make_pdf_bytes(pages)).decode("ascii"),
    }


@pytest.fixture
def localizer() -> Localizer:
    return Localizer.load("en")


@pytest.fixture
def out_dir(tmp_path: Path):
    previous = config.OUT_DIR
    config.set_out_dir(tmp_path / "out")
    reset_engine()
    yield config.OUT_DIR
    config.set_out_dir(previous)
    reset_engine()
