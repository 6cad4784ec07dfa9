from __future__ import annotations

import base64
import binascii
import re
from enum import Enum
from typing import Optional

from ..config import SNIFF_SAMPLE_CHARS

# Every signature fits in the first 8 bytes; callers only need to pass a prefix.
SNIFF_SAMPLE_BYTES = 8

PDF_SIGNATURE = b"%PDF"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8"

_WHITESPACE = re.compile(r"\s+")


class ContentKind(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    PDF = "pdf"
    UNKNOWN = "unknown"

    @property
    def mime(self) -> Optional[str]:
        return _MIME_BY_KIND.get(self)

    @property
    def is_image(self) -> bool:
        return self in (ContentKind.PNG, ContentKind.JPEG)


_MIME_BY_KIND = {
    ContentKind.PNG: "image/png",
    ContentKind.JPEG: "image/jpeg",
    ContentKind.PDF: "application/pdf",
}


def sniff_bytes(data: Optional[bytes]) -> ContentKind:
    """Classify raw bytes by magic signature. Never raises."""
    if not data:
        return ContentKind.UNKNOWN
    sample = bytes(data[:SNIFF_SAMPLE_BYTES])
    if sample.startswith(PDF_SIGNATURE):
        return ContentKind.PDF
    if sample.startswith(PNG_SIGNATURE):
        return ContentKind.PNG
    if sample.startswith(JPEG_SIGNATURE):
        return ContentKind.JPEG
    return ContentKind.UNKNOWN


def clean_base64(payload: str) -> str:
    return _WHITESPACE.sub("", payload or "")


def sniff_base64(payload: str, sample_chars: int = SNIFF_SAMPLE_CHARS) -> ContentKind:
    """Sniff a base64 payload by decoding only its first ``sample_chars`` characters."""
    cleaned = clean_base64(payload)
    if not cleaned:
        return ContentKind.UNKNOWN
    prefix_len = min(len(cleaned), sample_chars)
    # keep whole 4-char quanta so the sample decodes without padding
    slice_len = max(4, prefix_len - prefix_len % 4)
    try:
        sample = base64.b64decode(cleaned[:slice_len], validate=False)
    except (binascii.Error, ValueError):
        return ContentKind.UNKNOWN
    return sniff_bytes(sample)


def kind_from_mime(mime: Optional[str]) -> ContentKind:
    value = (mime or "").split(";", 1)[0].strip().lower()
    if value in ("image/png",):
        return ContentKind.PNG
    if value in ("image/jpeg", "image/jpg", "image/pjpeg"):
        return ContentKind.JPEG
    if "pdf" in value:
        return ContentKind.PDF
    return ContentKind.UNKNOWN
