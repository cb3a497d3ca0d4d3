"""Image reference resolution.

Architectural role:
    Turns one of three caller-supplied image references into a single
    `ResolvedReference` that downstream remote calls can use:

    - resource handle: a local record id (or its `resource://` URI), looked up
      in the `RecordStore`;
    - remote token: an opaque id already known to the remote service;
    - inline bytes: a base64 payload supplied directly.

Resolution order (first match wins):
    1. Resource handle -> record must exist (`NotFoundError` otherwise); its
       remote token is adopted when present.
    2. Remote token -> best-effort local lookup by token; a cache miss is fine.
    3. Inline bytes -> validated payload, no token yet.
    4. Nothing given -> `InvalidRequestError`.

Token requirement:
    When the operation needs a remote token and none was derived, the resolver
    either fails (`upload_if_needed=False`) or uploads the available bytes
    exactly once and adopts the returned token.

Byte materialization:
    Resolution is lazy about bytes. `materialize_base64` is called only when a
    caller actually needs them; it tries inline data, then the local file,
    then a best-effort remote fetch by token. A failed remote fetch is logged
    and reported as "unavailable" rather than raised.

Side effects:
    At most one remote upload per `resolve`. The record store is never written
    here; persisting results is the caller's job once the whole operation has
    succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping

from ai_image_mcp.core.validation import normalize_base64, optional_text
from ai_image_mcp.errors import (
    BinaryUnavailableError,
    ImageGatewayError,
    InvalidRequestError,
    NotFoundError,
    RemoteServiceError,
)
from ai_image_mcp.remote.schemas import ImageResult, StoreImageRequest
from ai_image_mcp.storage.record_store import RESOURCE_URI_PREFIX, LocalRecord, RecordStore


MISSING_REFERENCE_MESSAGE = "Provide at least one of resource_uri, image_token, or image_base64"


@dataclass(frozen=True)
class ImageReference:
    """Caller-supplied image reference; at least one field must be set."""

    resource_handle: str | None = None
    remote_token: str | None = None
    inline_base64: str | None = None

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "ImageReference":
        """Build a reference from tool arguments.

        Recognized keys: `resource_uri` / `resource_id`, `image_token`,
        `image_base64`. Blank strings count as absent.
        """
        return cls(
            resource_handle=optional_text(arguments.get("resource_uri") or arguments.get("resource_id")),
            remote_token=optional_text(arguments.get("image_token")),
            inline_base64=optional_text(arguments.get("image_base64")),
        )


@dataclass(frozen=True)
class ResolveOptions:
    """Operation context for one resolution.

    Attributes:
        require_token: The downstream call needs a remote token.
        upload_if_needed: Upload available bytes when no token was derived.
        upload_source: `source` label attached to an upload.
        derived_from: Lineage tokens attached to an upload.
        prompt_hint: Prompt text attached to an upload.
    """

    require_token: bool = True
    upload_if_needed: bool = False
    upload_source: str | None = None
    derived_from: tuple[str, ...] = ()
    prompt_hint: str | None = None


@dataclass(frozen=True)
class ResolvedReference:
    """Result of resolution.

    `remote_token` is always set when the options required a token; it may be
    `None` only for operations that accept raw bytes.
    """

    remote_token: str | None
    record: LocalRecord | None = None
    raw_base64: str | None = None
    origin: str = "token"
    uploaded: bool = False

    @property
    def label(self) -> str:
        if self.record is not None:
            return f"resource {self.record.id}"
        if self.remote_token:
            return f"token {self.remote_token}"
        return "inline image"


def _handle_to_record_id(handle: str) -> str:
    if handle.startswith(RESOURCE_URI_PREFIX):
        return handle[len(RESOURCE_URI_PREFIX):].strip()
    return handle.strip()


class ImageReferenceResolver:
    """Resolves references against the local store and the remote service."""

    def __init__(self, client: Any, store: RecordStore, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    async def resolve(self, reference: ImageReference, options: ResolveOptions | None = None) -> ResolvedReference:
        """Resolve `reference` into a usable token and/or payload.

        Raises:
            InvalidRequestError: No reference given; malformed inline data; a
                token was required but could not be derived or uploaded.
            NotFoundError: The resource handle names no local record.
            RemoteServiceError / OperationTimeoutError: The upload failed.
        """
        options = options or ResolveOptions()
        resolved = self._resolve_local(reference)

        if resolved.remote_token or not options.require_token:
            return resolved

        if not options.upload_if_needed:
            raise InvalidRequestError(
                f"The {resolved.label} has no remote image token; pass image_token or allow upload"
            )

        return await self._upload(resolved, options)

    def _resolve_local(self, reference: ImageReference) -> ResolvedReference:
        if reference.resource_handle:
            record_id = _handle_to_record_id(reference.resource_handle)
            record = self.store.get_record(record_id) if record_id else None
            if record is None:
                raise NotFoundError(f"Resource not found: {reference.resource_handle}")
            return ResolvedReference(
                remote_token=record.image_token or None,
                record=record,
                origin="resource",
            )

        if reference.remote_token:
            return ResolvedReference(
                remote_token=reference.remote_token,
                record=self._cached_record_for_token(reference.remote_token),
                origin="token",
            )

        if reference.inline_base64:
            return ResolvedReference(
                remote_token=None,
                raw_base64=normalize_base64(reference.inline_base64),
                origin="inline",
            )

        raise InvalidRequestError(MISSING_REFERENCE_MESSAGE)

    def _cached_record_for_token(self, token: str) -> LocalRecord | None:
        try:
            return self.store.get_record_by_token(token)
        except (OSError, ValueError) as exc:
            self.logger.warning("Local lookup for token %s failed: %s", token, exc)
            return None

    async def _upload(self, resolved: ResolvedReference, options: ResolveOptions) -> ResolvedReference:
        payload = resolved.raw_base64
        if payload is None and resolved.record is not None:
            try:
                payload = await asyncio.to_thread(self.store.read_image_base64, resolved.record)
            except BinaryUnavailableError:
                payload = None
        if payload is None:
            raise InvalidRequestError(
                f"The {resolved.label} has no remote token and no readable image bytes to upload"
            )

        request = StoreImageRequest(
            image_base64=payload,
            source=options.upload_source,
            prompt=options.prompt_hint or (resolved.record.prompt if resolved.record else None),
            derived_from=list(options.derived_from) or None,
            filename=resolved.record.filename if resolved.record else None,
        )
        self.logger.info("Uploading %s to obtain a remote token", resolved.label)
        stored = await self.client.store_from_bytes(request)
        if not stored.image_token:
            raise RemoteServiceError(
                "Failed to upload image",
                remote_category="remote_error",
                detail="response did not include an image_token",
            )
        return replace(resolved, remote_token=stored.image_token, raw_base64=payload, uploaded=True)

    # ============================================================
    # Byte materialization
    # ============================================================

    async def fetch_remote_image(self, token: str) -> ImageResult | None:
        """Best-effort remote lookup of an image with its bytes.

        Returns:
            The remote result, or `None` when the lookup failed. Failures are
            logged, never raised.
        """
        try:
            return await self.client.fetch_by_token(token, include_base64=True)
        except ImageGatewayError as exc:
            self.logger.warning("Could not fetch image bytes for token %s: %s", token, exc)
            return None

    async def materialize_base64(self, resolved: ResolvedReference, *, required: bool = True) -> str | None:
        """Return base64 image bytes for a resolved reference.

        Order: inline/uploaded payload, local cached file, remote fetch.

        Raises:
            BinaryUnavailableError: When `required` and no source had bytes.
        """
        if resolved.raw_base64:
            return resolved.raw_base64

        if resolved.record is not None and self.store.has_image_file(resolved.record):
            try:
                return await asyncio.to_thread(self.store.read_image_base64, resolved.record)
            except BinaryUnavailableError as exc:
                self.logger.warning("%s", exc)

        if resolved.remote_token:
            result = await self.fetch_remote_image(resolved.remote_token)
            if result is not None and result.image_base64:
                return result.image_base64

        if required:
            raise BinaryUnavailableError(
                f"Image bytes are unavailable for {resolved.label}",
                reference=resolved.remote_token or (resolved.record.id if resolved.record else None),
            )
        return None
