"""Helpers for attachments inlined as data URLs."""

import re
from typing import Optional

DEFAULT_MIME_TYPE = "application/octet-stream"

_DATA_URL_HEADER = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?[^,]*,", re.IGNORECASE)


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-case a MIME type and strip parameters such as `;charset=utf-8`."""
    return (mime_type or "").lower().split(";", 1)[0].strip()


def mime_type_from_data_url(data_url: str) -> Optional[str]:
    """Return the MIME type declared in a data URL header, if any."""
    match = _DATA_URL_HEADER.match((data_url or "").strip())
    if match is None or not match.group("mime"):
        return None
    return normalize_mime_type(match.group("mime"))


def resolve_mime_type(declared: Optional[str], data_url: str) -> str:
    """Prefer the client-declared type, then the data URL header, then a generic binary type."""
    mime = normalize_mime_type(declared)
    if mime:
        return mime
    return mime_type_from_data_url(data_url) or DEFAULT_MIME_TYPE


def is_image_mime(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type).startswith("image/")
