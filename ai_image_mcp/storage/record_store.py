"""Flat, append-only local cache of generated images.

Persistence layout (under `root`):
    - `images/<uuid>.<ext>`: one binary file per image (mode 0600).
    - `metadata.json`: JSON array of records, newest first.

Record lifecycle:
    Records are written once by `save_image` and never mutated. A later
    transformation of the same image produces a new record.

Concurrency:
    Every save is a whole-file read-modify-write of `metadata.json`. Writes
    are atomic (a private temp file per writer, then `os.replace`), but
    concurrent saves from overlapping requests are not serialized: the last
    writer wins and may drop a record written in between. This is a known
    limitation for the expected single-operator usage.

Determinism:
    Record ids are random UUID4 values and timestamps are wall-clock UTC.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ai_image_mcp.core.validation import (
    DEFAULT_MIME_TYPE,
    clamp_int,
    decode_base64,
    encode_base64,
    extension_for_mime,
    optional_text,
    parse_timestamp,
    sniff_mime_type,
    utc_now_iso,
)
from ai_image_mcp.errors import BinaryUnavailableError, InvalidRequestError


logger = logging.getLogger(__name__)

RESOURCE_URI_PREFIX = "resource://ai-image-api/image/"
DIRECTORY_PERMISSIONS = 0o700
FILE_PERMISSIONS = 0o600

SEARCH_DEFAULT_LIMIT = 5
SEARCH_MAX_LIMIT = 20

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class LocalRecord:
    """One cached image.

    JSON keys are camelCase so existing `metadata.json` files stay readable.
    """

    id: str
    filename: str
    prompt: str
    model: str
    created_at: str
    params: dict[str, Any] = field(default_factory=dict)
    image_token: str | None = None
    metadata: dict[str, Any] | None = None
    download_url: str | None = None
    mime_type: str = DEFAULT_MIME_TYPE

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "filename": self.filename,
            "prompt": self.prompt,
            "model": self.model,
            "createdAt": self.created_at,
            "params": self.params,
            "imageToken": self.image_token,
            "metadata": self.metadata,
            "downloadUrl": self.download_url,
            "mimeType": self.mime_type,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalRecord":
        return cls(
            id=str(data["id"]),
            filename=str(data["filename"]),
            prompt=str(data.get("prompt") or ""),
            model=str(data.get("model") or ""),
            created_at=str(data.get("createdAt") or ""),
            params=dict(data.get("params") or {}),
            image_token=data.get("imageToken"),
            metadata=data.get("metadata"),
            download_url=data.get("downloadUrl"),
            mime_type=data.get("mimeType") or DEFAULT_MIME_TYPE,
        )

    @property
    def created_datetime(self) -> datetime | None:
        try:
            return parse_timestamp(self.created_at, "createdAt")
        except InvalidRequestError:
            return None


@dataclass
class SaveImageInfo:
    """Descriptive fields supplied by the caller of `RecordStore.save_image`."""

    prompt: str
    model: str
    params: dict[str, Any] = field(default_factory=dict)
    image_token: str | None = None
    metadata: dict[str, Any] | None = None
    download_url: str | None = None
    mime_type: str | None = None


@dataclass
class SearchResult:
    records: list[LocalRecord]
    total_matches: int

    @property
    def truncated(self) -> bool:
        return self.total_matches > len(self.records)


def resource_uri(record_id: str) -> str:
    return f"{RESOURCE_URI_PREFIX}{record_id}"


def extract_resource_id(uri: str) -> str:
    """Return the record id addressed by a resource URI.

    Raises:
        InvalidRequestError: Unsupported prefix or empty id.
    """
    if not isinstance(uri, str) or not uri.startswith(RESOURCE_URI_PREFIX):
        raise InvalidRequestError(f"Unsupported resource URI: {uri}")
    resource_id = uri[len(RESOURCE_URI_PREFIX):].strip()
    if not resource_id:
        raise InvalidRequestError("Resource ID is missing")
    return resource_id


class RecordStore:
    """JSON-backed record store rooted at a single directory."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(os.path.expanduser(root))
        self.images_dir = os.path.join(self.root, "images")
        self.metadata_file = os.path.join(self.root, "metadata.json")

    # ============================================================
    # File helpers
    # ============================================================

    def _ensure_directories(self) -> None:
        os.makedirs(self.images_dir, mode=DIRECTORY_PERMISSIONS, exist_ok=True)

    def _read_metadata(self) -> list[dict[str, Any]]:
        try:
            with open(self.metadata_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, NotADirectoryError):
            return []
        except json.JSONDecodeError:
            logger.error("Metadata file %s is not valid JSON", self.metadata_file)
            raise
        if not isinstance(data, list):
            logger.warning("Metadata file %s does not hold a list; treating as empty", self.metadata_file)
            return []
        return [entry for entry in data if isinstance(entry, dict) and entry.get("id")]

    def _write_metadata(self, entries: list[dict[str, Any]]) -> None:
        self._ensure_directories()
        # One temp file per writer; concurrent saves never share it.
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.root, prefix="metadata.", suffix=".tmp", delete=False
        ) as f:
            json.dump(entries, f, indent=2, ensure_ascii=False)
        os.chmod(f.name, FILE_PERMISSIONS)
        os.replace(f.name, self.metadata_file)

    def _image_path(self, record: LocalRecord) -> str:
        return os.path.join(self.images_dir, os.path.basename(record.filename))

    # ============================================================
    # Public API
    # ============================================================

    def save_image(self, image_base64: str, info: SaveImageInfo) -> LocalRecord:
        """Write image bytes plus a new record and return the record.

        Args:
            image_base64: Base64 image payload (no data-URL prefix).
            info: Prompt/model/token/metadata describing the image.

        Raises:
            InvalidRequestError: When `image_base64` does not decode.
        """
        data = decode_base64(image_base64)
        mime_type = optional_text(info.mime_type) or sniff_mime_type(data) or DEFAULT_MIME_TYPE

        self._ensure_directories()
        record_id = str(uuid.uuid4())
        filename = f"{record_id}.{extension_for_mime(mime_type)}"

        fd = os.open(
            os.path.join(self.images_dir, filename),
            os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
            FILE_PERMISSIONS,
        )
        with os.fdopen(fd, "wb") as f:
            f.write(data)

        record = LocalRecord(
            id=record_id,
            filename=filename,
            prompt=info.prompt,
            model=info.model,
            created_at=utc_now_iso(),
            params=dict(info.params or {}),
            image_token=info.image_token,
            metadata=info.metadata,
            download_url=info.download_url,
            mime_type=mime_type,
        )

        entries = self._read_metadata()
        entries.insert(0, record.to_dict())
        self._write_metadata(entries)

        logger.info("Saved image record %s (token=%s)", record_id, info.image_token or "n/a")
        return record

    def list_images(self) -> list[LocalRecord]:
        return [LocalRecord.from_dict(entry) for entry in self._read_metadata()]

    def get_record(self, record_id: str) -> LocalRecord | None:
        for record in self.list_images():
            if record.id == record_id:
                return record
        return None

    def get_record_by_token(self, image_token: str) -> LocalRecord | None:
        """Return the newest record carrying `image_token`, if any."""
        if not image_token:
            return None
        for record in self.list_images():
            if record.image_token == image_token:
                return record
        return None

    def read_image_bytes(self, record: LocalRecord) -> bytes:
        try:
            with open(self._image_path(record), "rb") as f:
                return f.read()
        except OSError:
            raise BinaryUnavailableError(
                f"Cached image file for record {record.id} is not readable",
                reference=record.id,
            ) from None

    def read_image_base64(self, record: LocalRecord) -> str:
        return encode_base64(self.read_image_bytes(record))

    def has_image_file(self, record: LocalRecord) -> bool:
        return os.path.isfile(self._image_path(record))

    def search(
        self,
        query: str | None = None,
        model: str | None = None,
        before: str | None = None,
        after: str | None = None,
        limit: Any = None,
    ) -> SearchResult:
        """Filter cached records.

        Matching:
            - `query`: case-insensitive substring of the prompt or params JSON.
            - `model`: case-insensitive exact match.
            - `after`/`before`: inclusive ISO-8601 bounds on `createdAt`.

        Returns:
            Newest-first records, capped at `limit` (clamped to 1-20, default 5).

        Raises:
            InvalidRequestError: On unparsable `before`/`after`.
        """
        normalized_limit = clamp_int(limit, minimum=1, maximum=SEARCH_MAX_LIMIT, default=SEARCH_DEFAULT_LIMIT)
        before_time = parse_timestamp(before, "before") if optional_text(before) else None
        after_time = parse_timestamp(after, "after") if optional_text(after) else None

        records = self.list_images()

        query_lower = (optional_text(query) or "").lower()
        if query_lower:
            records = [
                r for r in records
                if query_lower in r.prompt.lower()
                or query_lower in json.dumps(r.params, ensure_ascii=False).lower()
            ]

        model_lower = (optional_text(model) or "").lower()
        if model_lower:
            records = [r for r in records if r.model.lower() == model_lower]

        if after_time is not None or before_time is not None:
            bounded = []
            for record in records:
                created = record.created_datetime
                if created is None:
                    continue
                if after_time is not None and created < after_time:
                    continue
                if before_time is not None and created > before_time:
                    continue
                bounded.append(record)
            records = bounded

        records.sort(key=lambda r: r.created_datetime or _EPOCH, reverse=True)
        return SearchResult(records=records[:normalized_limit], total_matches=len(records))
