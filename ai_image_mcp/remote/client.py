"""Async HTTP client for the remote image service.

Processing flow:
    1. Build the URL of one remote function from `GatewayConfig`.
    2. Serialize a `schemas.*Request` model (unset fields dropped).
    3. Send it over a shared `httpx.AsyncClient` with the bearer key attached.
    4. Translate transport/status failures into the `errors` taxonomy.
    5. Parse the JSON body into the matching response model.

Retry behavior:
    None. Each call is attempted once. Recovery from transient failures is the
    caller's decision (only `core.job_polling` retries, inside its poll loop).

Error handling strategy:
    - httpx timeout -> `OperationTimeoutError`.
    - Other transport failures -> `RemoteServiceError` (category `unavailable`).
    - Status >= 400 -> `RemoteServiceError` enriched with the status category
      and the upstream `detail` field when present.
    - Non-JSON or mis-shaped bodies -> `RemoteServiceError` (`remote_error`).

Security considerations:
    Request bodies may carry base64 images; they are never logged. The API key
    only travels in the `Authorization` header.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from ai_image_mcp.errors import (
    ImageGatewayError,
    NotFoundError,
    OperationTimeoutError,
    RemoteServiceError,
)
from ai_image_mcp.provider_config import GatewayConfig
from ai_image_mcp.remote.schemas import (
    CaptionRequest,
    CaptionResult,
    GenerateRequest,
    ImageResult,
    ImageToImageRequest,
    JobResult,
    JobStatus,
    JobSubmission,
    MetadataPatch,
    MetadataResult,
    ModelConfig,
    ModelList,
    OptimizationResult,
    OptimizeRequest,
    RemoteRequest,
    RemoteResponse,
    StoredImage,
    StoreImageRequest,
    StoreUrlRequest,
    UpscaleRequest,
)


ResponseT = TypeVar("ResponseT", bound=RemoteResponse)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _extract_detail(response: httpx.Response) -> str | None:
    """Pull a human-readable error detail out of an error response."""
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or None

    if isinstance(data, dict):
        for key in ("detail", "error", "message"):
            value = data.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return None


class RemoteServiceClient:
    """Black-box RPC boundary to the remote image service.

    Usage:
        async with RemoteServiceClient(config) as client:
            result = await client.generate(GenerateRequest(prompt="a cat"))

    An externally created `httpx.AsyncClient` can be injected (tests pass one
    built on `httpx.MockTransport`); it is then not closed by this object.
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            follow_redirects=True,
        )

    async def __aenter__(self) -> "RemoteServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ============================================================
    # Transport
    # ============================================================

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        body: RemoteRequest | dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = body.to_payload() if isinstance(body, RemoteRequest) else body
        if self.config.debug:
            self.logger.debug("%s -> %s %s params=%s", operation, method, url, params)

        try:
            response = await self._http.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(),
            )
        except httpx.TimeoutException:
            raise OperationTimeoutError(
                f"{operation}: Request timeout after {self.config.request_timeout_seconds:g} seconds "
                "(image generation can take several minutes)",
                timeout_seconds=self.config.request_timeout_seconds,
            ) from None
        except httpx.RequestError as exc:
            raise RemoteServiceError(
                operation,
                remote_category="unavailable",
                detail=str(exc) or exc.__class__.__name__,
            ) from exc

        if response.status_code >= 400:
            raise RemoteServiceError(
                operation,
                status_code=response.status_code,
                detail=_extract_detail(response),
            )

        try:
            data = response.json()
        except ValueError:
            raise RemoteServiceError(
                operation,
                status_code=response.status_code,
                remote_category="remote_error",
                detail="Response body is not valid JSON",
            ) from None

        if not isinstance(data, dict):
            raise RemoteServiceError(
                operation,
                status_code=response.status_code,
                remote_category="remote_error",
                detail=f"Expected a JSON object, got {type(data).__name__}",
            )
        return data

    @staticmethod
    def _parse(model: type[ResponseT], data: dict[str, Any], operation: str) -> ResponseT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise RemoteServiceError(
                operation,
                remote_category="remote_error",
                detail=f"Unexpected response shape: {exc.error_count()} validation error(s)",
            ) from exc

    async def _post(self, endpoint: str, model: type[ResponseT], body: Any, operation: str, params=None) -> ResponseT:
        url = self.config.endpoint_url(endpoint)
        data = await self._request("POST", url, operation=operation, body=body, params=params)
        return self._parse(model, data, operation)

    async def _get(self, endpoint: str, model: type[ResponseT], operation: str, params=None) -> ResponseT:
        url = self.config.endpoint_url(endpoint)
        data = await self._request("GET", url, operation=operation, params=params)
        return self._parse(model, data, operation)

    # ============================================================
    # Images
    # ============================================================

    async def generate(self, request: GenerateRequest) -> ImageResult:
        """Text-to-image generation."""
        self.logger.info("Generating image with model=%s", request.model or "default")
        return await self._post("text-to-image", ImageResult, request, "Failed to generate image")

    async def store_from_bytes(self, request: StoreImageRequest) -> StoredImage:
        """Upload inline base64 bytes and receive a remote token."""
        self.logger.info("Uploading inline image (source=%s)", request.source or "n/a")
        return await self._post("upload-image", StoredImage, request, "Failed to upload image")

    async def store_from_url(self, request: StoreUrlRequest) -> StoredImage:
        """Ask the remote service to download and register an image URL."""
        self.logger.info("Registering image from URL %s", request.url)
        return await self._post("upload-image-url", StoredImage, request, "Failed to upload image from URL")

    async def fetch_by_token(self, image_token: str, include_base64: bool = True) -> ImageResult:
        """Look up an image (and optionally its bytes) by remote token."""
        params = {"image_token": image_token, "include_base64": _flag(include_base64)}
        return await self._get("get-image", ImageResult, f"Failed to fetch image {image_token}", params)

    async def caption(self, request: CaptionRequest) -> CaptionResult:
        """Caption an image given by token or inline bytes."""
        return await self._post("caption-image", CaptionResult, request, "Failed to caption image")

    async def patch_metadata(self, image_token: str, patch: MetadataPatch) -> MetadataResult:
        """Merge a metadata patch into a remote image record."""
        body = {"image_token": image_token, "patch": patch.to_payload()}
        return await self._post(
            "update-image-metadata", MetadataResult, body, f"Failed to update metadata for {image_token}"
        )

    # ============================================================
    # Jobs
    # ============================================================

    async def upscale(self, request: UpscaleRequest) -> JobSubmission:
        """Submit an asynchronous upscale job."""
        self.logger.info("Submitting upscale job for token=%s scale=%s", request.image_token, request.scale)
        return await self._post("upscale-image", JobSubmission, request, "Failed to submit upscale job")

    async def image_to_image_sync(self, request: ImageToImageRequest, include_base64: bool = True) -> ImageResult:
        """Run image-to-image and wait for the result in a single call."""
        params = {"include_base64": _flag(include_base64)}
        return await self._post(
            "image-to-image", ImageResult, request, "Failed to run image-to-image", params=params
        )

    async def image_to_image_job(self, request: ImageToImageRequest) -> JobSubmission:
        """Submit an asynchronous image-to-image job."""
        self.logger.info("Submitting image-to-image job for init token=%s", request.init_image_token)
        return await self._post(
            "image-to-image-job", JobSubmission, request, "Failed to submit image-to-image job"
        )

    async def job_status(self, job_id: str) -> JobStatus:
        return await self._get("job-status", JobStatus, f"Failed to get status of job {job_id}", {"job_id": job_id})

    async def job_result(self, job_id: str, include_base64: bool = True) -> JobResult:
        params = {"job_id": job_id, "include_base64": _flag(include_base64)}
        return await self._get("job-result", JobResult, f"Failed to get result of job {job_id}", params)

    # ============================================================
    # Models / optimization
    # ============================================================

    async def get_models(self) -> ModelList:
        return await self._get("get-model-configs", ModelList, "Failed to get models")

    async def get_model_detail(self, model_name: str) -> ModelConfig:
        """Return one model's configuration.

        The service has no per-model endpoint; the full listing is fetched and
        filtered locally.

        Raises:
            NotFoundError: When `model_name` is not in the listing.
        """
        models = await self.get_models()
        config = models.models.get(model_name)
        if config is None:
            raise NotFoundError(f'Failed to get model detail for {model_name}: Model "{model_name}" not found')
        return config

    async def optimize_via_job_manager(self, request: OptimizeRequest) -> OptimizationResult:
        """Prompt optimization through the optional job manager."""
        url = self.config.optimize_url()
        operation = "Failed to optimize parameters via job manager"
        if url is None:
            raise RemoteServiceError(operation, remote_category="unavailable", detail="job manager not configured")
        data = await self._request("POST", url, operation=operation, body=request)
        return self._parse(OptimizationResult, data, operation)

    async def optimize_direct(self, request: OptimizeRequest) -> OptimizationResult:
        """Prompt optimization through the service's own endpoint."""
        return await self._post("optimize-params", OptimizationResult, request, "Failed to optimize parameters")

    async def test_connection(self) -> bool:
        """Probe connectivity with a model listing; never raises."""
        try:
            await self.get_models()
        except ImageGatewayError as exc:
            self.logger.warning("Connection test failed: %s", exc)
            return False
        return True
