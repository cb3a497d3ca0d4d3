"""Shared validation and normalization helpers.

Scope:
    Small, side-effect-free checks used by the resolver, the poller, the record
    store and the tool argument models. Every failure raises
    `InvalidRequestError` with the offending field name in the message.

Base64 handling:
    Inline payloads may arrive as bare base64 or as `data:<mime>;base64,...`
    URLs. `normalize_base64` strips the prefix and whitespace and checks that
    the remainder decodes, but otherwise returns the caller's text unchanged so
    uploads forward exactly what was supplied.

Image sniffing:
    `sniff_mime_type` uses Pillow to identify the encoded format. It is only a
    hint for file extensions and response mime types; unknown formats are not
    rejected because the remote service is the authority on decoding.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from ai_image_mcp.errors import InvalidRequestError


DEFAULT_MIME_TYPE = "image/png"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}


# ============================================================
# Text inputs
# ============================================================

def require_text(value: Any, field: str = "prompt") -> str:
    """Return stripped text or raise when missing/blank."""
    if value is None or not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"'{field}' is required and must be a non-empty string")
    return value.strip()


def optional_text(value: Any) -> str | None:
    """Return stripped text, or `None` for missing/blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_http_url(url: Any, field: str = "url") -> str:
    """Accept only absolute http(s) URLs with a host."""
    text = require_text(url, field)
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https"):
        raise InvalidRequestError(f"'{field}' must use http or https, got scheme {parsed.scheme!r}")
    if not parsed.netloc:
        raise InvalidRequestError(f"'{field}' must include a host")
    return text


# ============================================================
# Base64 payloads
# ============================================================

def split_data_url(value: str) -> tuple[str, str | None]:
    """Split an optional data-URL prefix from a base64 payload.

    Returns:
        `(payload, mime_type)`; `mime_type` is `None` without a prefix.
    """
    match = _DATA_URL_RE.match(value)
    if not match:
        return value, None
    mime = match.group("mime")
    return value[match.end():], mime.lower() if mime else None


def normalize_base64(value: Any, field: str = "image_base64") -> str:
    """Validate an inline base64 payload and return its canonical text.

    Edge cases:
        - Data-URL prefixes and embedded whitespace/newlines are removed.
        - Missing padding is tolerated during validation but not added to the
          returned text.
    """
    text = require_text(value, field)
    payload, _ = split_data_url(text)
    payload = _WHITESPACE_RE.sub("", payload)
    if not payload:
        raise InvalidRequestError(f"'{field}' contains no data")
    decode_base64(payload, field)
    return payload


def decode_base64(value: str, field: str = "image_base64") -> bytes:
    """Strictly decode base64 text, padding it when necessary."""
    padded = value + "=" * (-len(value) % 4)
    try:
        data = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequestError(f"'{field}' is not valid base64 data") from None
    if not data:
        raise InvalidRequestError(f"'{field}' decodes to an empty payload")
    return data


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sniff_mime_type(data: bytes) -> str | None:
    """Identify the image format of raw bytes with Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return Image.MIME.get(image.format or "")
    except (UnidentifiedImageError, OSError):
        return None


def extension_for_mime(mime_type: str | None) -> str:
    return _EXTENSIONS.get((mime_type or "").lower(), "png")


# ============================================================
# Numeric bounds
# ============================================================

def bounded_number(
    value: Any,
    *,
    field: str,
    minimum: float,
    maximum: float,
    default: float,
) -> float:
    """Return `value` (or `default`) after an inclusive range check."""
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidRequestError(f"'{field}' must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"'{field}' must be a number, got {value!r}") from None
    if not minimum <= number <= maximum:
        raise InvalidRequestError(f"'{field}' must be between {minimum:g} and {maximum:g}, got {number:g}")
    return number


def clamp_int(value: Any, *, minimum: int, maximum: int, default: int) -> int:
    """Coerce to int and clamp into range; non-numeric input yields `default`."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(minimum, min(maximum, number))


def validate_dimension(value: int | None, field: str = "width") -> int | None:
    """Image-to-image sizes: multiples of 64 within 256-2048."""
    if value is None:
        return None
    if not 256 <= value <= 2048:
        raise InvalidRequestError(f"'{field}' must be between 256 and 2048, got {value}")
    if value % 64:
        raise InvalidRequestError(f"'{field}' must be a multiple of 64, got {value}")
    return value


# ============================================================
# Timestamps / mappings
# ============================================================

def parse_timestamp(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    text = require_text(value, field)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidRequestError(f"Invalid \"{field}\" timestamp: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def compact(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is `None` or an empty string."""
    return {key: value for key, value in mapping.items() if value is not None and value != ""}
