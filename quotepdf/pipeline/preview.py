from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote_to_bytes, urljoin

import fitz  # PyMuPDF
import httpx

from .. import config
from ..i18n import Localizer
from ..record import Attachment
from .sniff import ContentKind, clean_base64, kind_from_mime, sniff_base64, sniff_bytes

logger = logging.getLogger(__name__)

Rasterizer = Callable[[bytes, int, float], List[bytes]]


class PreviewKind(str, Enum):
    IMAGE = "image"
    PDF_PAGES = "pdfPages"
    NONE = "none"


@dataclass(frozen=True)
class PreviewResult:
    kind: PreviewKind
    pages: Tuple[bytes, ...] = ()
    note: str = ""

    @classmethod
    def image(cls, data: bytes) -> "PreviewResult":
        return cls(PreviewKind.IMAGE, (data,))

    @classmethod
    def pdf_pages(cls, pages: List[bytes]) -> "PreviewResult":
        return cls(PreviewKind.PDF_PAGES, tuple(pages))

    @classmethod
    def none(cls, note: str) -> "PreviewResult":
        return cls(PreviewKind.NONE, (), note)


@dataclass(frozen=True)
class DataUrl:
    mime: str
    is_base64: bool
    body: str

    def decode(self) -> bytes:
        if self.is_base64:
            return base64.b64decode(clean_base64(self.body), validate=False)
        return unquote_to_bytes(self.body)


def parse_data_url(url: str) -> Optional[DataUrl]:
    if not url.startswith("data:"):
        return None
    comma = url.find(",")
    if comma == -1:
        return None
    header = url[5:comma]
    params = [part.strip() for part in header.split(";")]
    mime = params[0].lower() if params else ""
    is_base64 = any(part.lower() == "base64" for part in params[1:])
    return DataUrl(mime=mime, is_base64=is_base64, body=url[comma + 1:])


def is_bare_base64(url: str) -> bool:
    return bool(url) and not url.startswith(("data:", "http://", "https://", "/"))


def rasterize_pdf(data: bytes, max_pages: int, zoom: float) -> List[bytes]:
    """Render up to ``max_pages`` PDF pages into PNG bytes, in page order."""
    pages: List[bytes] = []
    matrix = fitz.Matrix(zoom, zoom)
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page_index in range(min(doc.page_count, max_pages)):
            page = doc.load_page(page_index)
            pix = page.get_pixmap(matrix=matrix, alpha=False)
            pages.append(pix.tobytes("png"))
    return pages


def fetch_attachment(url: str) -> httpx.Response:
    return httpx.get(url, timeout=config.FETCH_TIMEOUT, follow_redirects=True)


class PreviewResolver:
    """Turns an attachment reference into preview images.

    ``resolve`` never raises; every failure becomes ``PreviewResult.none``
    with a readable note. Each attachment gets one fetch attempt.
    """

    def __init__(
        self,
        localizer: Optional[Localizer] = None,
        rasterizer: Optional[Rasterizer] = None,
        fetcher: Optional[Callable[[str], httpx.Response]] = None,
        base_url: Optional[str] = None,
        max_pages: int = config.MAX_PREVIEW_PAGES,
        zoom: float = config.PREVIEW_ZOOM,
    ) -> None:
        self.localizer = localizer
        self.rasterizer = rasterizer or rasterize_pdf
        self.fetcher = fetcher or fetch_attachment
        self.base_url = config.ATTACHMENT_BASE_URL if base_url is None else base_url
        self.max_pages = max_pages
        self.zoom = zoom

    def _note(self, key: str, default: str, **values: object) -> str:
        if self.localizer is None:
            text = default
            for name, value in values.items():
                text = text.replace("{" + name + "}", str(value))
            return text
        return self.localizer.template(f"pdf.{key}", default, **values)

    def resolve(self, attachment: Attachment) -> PreviewResult:
        try:
            return self._resolve(attachment.url.strip())
        except Exception as exc:
            logger.warning("Preview failed for %s: %s", attachment.filename or attachment.id, exc)
            return PreviewResult.none(
                self._note("attachmentLoadFailed", "Failed to load attachment for preview.")
            )

    def _resolve(self, url: str) -> PreviewResult:
        if not url:
            return PreviewResult.none(self._note("previewNotAvailable", "Preview not available."))

        parsed = parse_data_url(url)
        if parsed is not None:
            if parsed.mime.startswith("image/"):
                return PreviewResult.image(parsed.decode())
            if parsed.mime == "application/pdf":
                if not parsed.is_base64:
                    return PreviewResult.none(
                        self._note("previewPdfNotBase64", "PDF preview not available (not base64).")
                    )
                return self._from_pdf(parsed.decode())
            data = parsed.decode()
            return self._dispatch(sniff_bytes(data), data)

        if is_bare_base64(url):
            kind = sniff_base64(url)
            if kind is ContentKind.UNKNOWN:
                return PreviewResult.none(
                    self._note("previewUnsupported", "Preview not available for this file type.")
                )
            return self._dispatch(kind, base64.b64decode(clean_base64(url), validate=False))

        return self._from_remote(url)

    def _from_remote(self, url: str) -> PreviewResult:
        target = url
        if url.startswith("/"):
            if not self.base_url:
                return PreviewResult.none(
                    self._note("attachmentLoadFailed", "Failed to load attachment for preview.")
                )
            target = urljoin(self.base_url, url)
        try:
            response = self.fetcher(target)
        except httpx.HTTPError as exc:
            logger.warning("Attachment fetch failed for %s: %s", target, exc)
            return PreviewResult.none(
                self._note("attachmentLoadFailed", "Failed to load attachment for preview.")
            )
        if response.status_code >= 400:
            return PreviewResult.none(
                self._note(
                    "attachmentFetchFailed",
                    "Failed to fetch attachment ({status}).",
                    status=response.status_code,
                )
            )
        data = response.content
        mime = (response.headers.get("content-type") or "").lower()
        if mime.startswith("image/"):
            return PreviewResult.image(data)
        kind = kind_from_mime(mime)
        if kind is ContentKind.UNKNOWN:
            kind = sniff_bytes(data)
        return self._dispatch(kind, data)

    def _dispatch(self, kind: ContentKind, data: bytes) -> PreviewResult:
        if kind.is_image:
            return PreviewResult.image(data)
        if kind is ContentKind.PDF:
            return self._from_pdf(data)
        return PreviewResult.none(
            self._note("previewUnsupported", "Preview not available for this file type.")
        )

    def _from_pdf(self, data: bytes) -> PreviewResult:
        try:
            pages = self.rasterizer(data, self.max_pages, self.zoom)
        except (RuntimeError, ValueError, binascii.Error) as exc:
            logger.warning("PDF rasterization failed: %s", exc)
            pages = []
        if not pages:
            return PreviewResult.none(
                self._note("previewRasterFailed", "PDF preview could not be rendered.")
            )
        return PreviewResult.pdf_pages(pages)
