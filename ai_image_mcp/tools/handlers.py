"""Tool dispatch layer.

Architectural role:
    Implements every published tool on top of the remote client, the record
    store, the reference resolver and the job poller. Protocol adapters
    (`api.mcp_server`, `api.http_api`) only translate transport framing and
    errors; all tool semantics live here.

Request lifecycle (per tool call):
    1. Parse and validate arguments (`tools.arguments`), before any remote call.
    2. Resolve image references when the tool consumes an existing image.
    3. Issue the remote call(s); for jobs, submit then poll to completion.
    4. Materialize result bytes when the response omitted them.
    5. Persist a `LocalRecord` only after every previous step succeeded.
    6. Return content entries (`text` / `image`).

Error handling strategy:
    Typed errors from `errors` propagate unchanged to the adapter. Handlers do
    not catch and downgrade failures, except where a documented fallback chain
    (`core.strategies`) promotes to the next remote path.

Side effects:
    Remote uploads, remote metadata patches and local record writes. Record
    writes are the last step of each operation, so a failed call leaves no
    partial record behind.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from typing import Any, Awaitable, Callable, Mapping

from pydantic import ValidationError

from ai_image_mcp.core.job_polling import JobOutcome, JobPoller, PollOptions
from ai_image_mcp.core.resolver import ImageReferenceResolver, ResolvedReference, ResolveOptions
from ai_image_mcp.core.strategies import (
    DEFAULT_MODEL,
    Strategy,
    StrategyChain,
    optimize_parameters,
    submission_promotable,
)
from ai_image_mcp.core.validation import (
    DEFAULT_MIME_TYPE,
    compact,
    normalize_base64,
    optional_text,
    split_data_url,
)
from ai_image_mcp.errors import (
    InvalidRequestError,
    NotFoundError,
    RemoteServiceError,
    UnknownToolError,
)
from ai_image_mcp.remote.schemas import (
    CaptionRequest,
    GenerateRequest,
    ImageResult,
    ImageToImageRequest,
    JobSubmission,
    MetadataPatch,
    OptimizeRequest,
    RemoteRequest,
    StoreImageRequest,
    StoreUrlRequest,
    UpscaleRequest,
)
from ai_image_mcp.storage.record_store import (
    LocalRecord,
    RecordStore,
    SaveImageInfo,
    extract_resource_id,
    resource_uri,
)
from ai_image_mcp.tools import formatting as fmt
from ai_image_mcp.tools.arguments import (
    CaptionImageArgs,
    GenerateImageArgs,
    ImageByTokenArgs,
    ImageToImageArgs,
    JobStatusArgs,
    ModelDetailArgs,
    OptimizeAndGenerateArgs,
    OptimizePromptArgs,
    SearchImagesArgs,
    UpdateMetadataArgs,
    UploadImageArgs,
    UploadImageUrlArgs,
    UpscaleImageArgs,
    parse_arguments,
)


QUALITY_PRESETS = {
    "draft": {"steps": 10, "guidance_scale": 5.0},
    "standard": {"steps": 20, "guidance_scale": 7.5},
    "premium": {"steps": 30, "guidance_scale": 9.0},
}

SIZE_PRESETS = {
    "small": {"width": 512, "height": 512},
    "medium": {"width": 768, "height": 768},
    "large": {"width": 1024, "height": 1024},
}

PREMIUM_SUFFIX = ", high quality, detailed, masterpiece"
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, bad anatomy, distorted"
EXPERIMENTAL_MODEL = "sdxl"
SEED_UPPER_BOUND = 2147483647

UPSCALE_TIMEOUT_SECONDS = 600.0
IMAGE_TO_IMAGE_TIMEOUT_SECONDS = 300.0

Content = list[dict[str, Any]]


def _pick_number(*values: Any) -> float | None:
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return value
    return None


def _pick_int(*values: Any) -> int | None:
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    return None


def _build(model: type[RemoteRequest], /, **fields: Any) -> Any:
    """Construct a request model, reporting bad values as caller errors."""
    try:
        return model(**fields)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
        )
        raise InvalidRequestError(f"Invalid {model.__name__} - {problems}") from None


def _without_none(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


class ImageToolHandlers:
    """All tool implementations plus resource listing and reading.

    Args:
        client: `RemoteServiceClient` (or a test double with the same methods).
        store: Local record store.
        resolver: Optional pre-built resolver; one is created otherwise.
        poller: Optional pre-built job poller; tests inject a fake clock here.
        rng: Random source for generation seeds.
    """

    def __init__(
        self,
        client: Any,
        store: RecordStore,
        *,
        resolver: ImageReferenceResolver | None = None,
        poller: JobPoller | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = resolver or ImageReferenceResolver(client, store, logger=self.logger)
        self.poller = poller or JobPoller(client, logger=self.logger)
        self.rng = rng or random.Random()

        self._tools: dict[str, Callable[[Mapping[str, Any]], Awaitable[Content]]] = {
            "generate_image": self.generate_image,
            "optimize_prompt": self.optimize_prompt,
            "optimize_and_generate": self.optimize_and_generate,
            "get_available_models": self.get_available_models,
            "get_model_detail": self.get_model_detail,
            "search_images": self.search_images,
            "get_image_by_token": self.get_image_by_token,
            "upload_image": self.upload_image,
            "upload_image_from_url": self.upload_image_from_url,
            "caption_image": self.caption_image,
            "update_image_metadata": self.update_image_metadata,
            "upscale_image": self.upscale_image,
            "image_to_image": self.image_to_image,
            "get_job_status": self.get_job_status,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def dispatch(self, name: str, arguments: Mapping[str, Any] | None = None) -> Content:
        """Run one tool by name.

        Raises:
            UnknownToolError: `name` is not a registered tool.
        """
        handler = self._tools.get(name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        self.logger.info("Tool call: %s", name)
        return await handler(arguments or {})

    # ============================================================
    # Shared steps
    # ============================================================

    def _random_seed(self) -> int:
        return self.rng.randrange(0, SEED_UPPER_BOUND)

    async def _result_bytes(self, token: str | None, inline: str | None) -> str:
        """Bytes from a remote response, fetched by token when omitted."""
        if inline:
            inline, _ = split_data_url(inline)
        return await self.resolver.materialize_base64(ResolvedReference(remote_token=token, raw_base64=inline))

    async def _generate_and_save(
        self,
        request: GenerateRequest,
        extra_params: Mapping[str, Any] | None = None,
    ) -> tuple[LocalRecord, str, ImageResult]:
        self.logger.info("Generating image (model=%s, seed=%s)", request.model, request.seed)
        result = await self.client.generate(request)
        image_base64 = await self._result_bytes(result.image_token, result.image_base64)

        params = request.to_payload()
        params["used_params"] = result.used_params or {}
        params["job_id"] = result.job_id
        params.update(extra_params or {})

        record = await asyncio.to_thread(
            self.store.save_image,
            image_base64,
            SaveImageInfo(
                prompt=request.prompt,
                model=request.model or DEFAULT_MODEL,
                params=compact(params),
                image_token=result.image_token,
                metadata=result.metadata or None,
                download_url=result.download_url,
                mime_type=result.mime_type,
            ),
        )
        return record, image_base64, result

    async def _save_job_outcome(
        self,
        outcome: JobOutcome,
        *,
        prompt: str,
        model: str,
        params: Mapping[str, Any],
        lineage: Mapping[str, Any],
    ) -> tuple[LocalRecord, str]:
        if not outcome.remote_token:
            raise RemoteServiceError(
                f"Job {outcome.job_id or 'n/a'} result",
                remote_category="remote_error",
                detail="succeeded without an image_token",
            )
        image_base64 = await self._result_bytes(outcome.remote_token, outcome.image_base64)
        metadata = {**(outcome.metadata or {}), **lineage}
        record = await asyncio.to_thread(
            self.store.save_image,
            image_base64,
            SaveImageInfo(
                prompt=prompt,
                model=model,
                params=compact(params),
                image_token=outcome.remote_token,
                metadata=metadata,
                download_url=metadata.get("download_url"),
                mime_type=metadata.get("mime_type"),
            ),
        )
        return record, image_base64

    # ============================================================
    # Generation / optimization
    # ============================================================

    async def generate_image(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(GenerateImageArgs, arguments)

        prompt = args.prompt
        style_hint = optional_text(args.style_hint)
        if style_hint:
            prompt = f"{prompt}, {style_hint}"
        if args.quality_tier == "premium":
            prompt += PREMIUM_SUFFIX

        request = _build(
            GenerateRequest,
            prompt=prompt,
            negative_prompt=optional_text(args.negative_prompt) or DEFAULT_NEGATIVE_PROMPT,
            model=EXPERIMENTAL_MODEL if args.experimental else DEFAULT_MODEL,
            seed=args.seed if args.seed is not None else self._random_seed(),
            **QUALITY_PRESETS[args.quality_tier],
            **SIZE_PRESETS[args.size_preference],
        )
        record, image_base64, result = await self._generate_and_save(request)
        summary = fmt.generation_summary("Image generated.", request.to_payload(), result.job_id, record)
        return [fmt.image_content(image_base64, record.mime_type), fmt.text_content(summary)]

    async def optimize_prompt(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(OptimizePromptArgs, arguments)
        self.logger.info("Optimizing prompt (target_model=%s)", args.target_model or "any")

        outcome = await optimize_parameters(
            self.client, OptimizeRequest(query=args.query, model=optional_text(args.target_model)), self.logger
        )
        lines = fmt.optimization_lines(outcome.value, args.target_model)
        lines.extend(["", f"Optimizer: {outcome.strategy}"])
        return [fmt.text_content("\n".join(lines))]

    async def optimize_and_generate(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(OptimizeAndGenerateArgs, arguments)
        target_model = optional_text(args.target_model)

        outcome = await optimize_parameters(
            self.client, OptimizeRequest(query=args.query, model=target_model), self.logger
        )
        optimization = outcome.value
        recommended = optimization.recommended
        overrides = args.generation_overrides.model_dump(exclude_none=True) if args.generation_overrides else {}
        quality = QUALITY_PRESETS[args.quality_tier]
        size = SIZE_PRESETS[args.size_preference]
        fallback_model = EXPERIMENTAL_MODEL if args.experimental else DEFAULT_MODEL

        base_prompt = optimization.prompt or args.query
        style_hint = optional_text(args.style_hint)
        final_prompt = f"{base_prompt}, {style_hint}" if style_hint else base_prompt
        suggested_model = optimization.model or optimization.suggested_model or target_model or fallback_model

        seed = _pick_int(overrides.get("seed"), recommended.get("seed"), optimization.seed)
        scheduler = overrides.get("scheduler") or recommended.get("scheduler")
        request = _build(
            GenerateRequest,
            prompt=final_prompt,
            negative_prompt=(
                overrides.get("negative_prompt")
                or optional_text(optimization.negative_prompt)
                or DEFAULT_NEGATIVE_PROMPT
            ),
            model=overrides.get("model") or suggested_model,
            guidance_scale=_pick_number(
                overrides.get("guidance_scale"),
                recommended.get("guidance_scale"),
                optimization.guidance_scale,
                quality["guidance_scale"],
            ),
            steps=_pick_int(overrides.get("steps"), recommended.get("steps"), optimization.steps, quality["steps"]),
            width=_pick_int(overrides.get("width"), recommended.get("width"), optimization.width, size["width"]),
            height=_pick_int(overrides.get("height"), recommended.get("height"), optimization.height, size["height"]),
            seed=seed if seed is not None else self._random_seed(),
            scheduler=scheduler if isinstance(scheduler, str) else None,
        )

        optimization_record = {
            "request": compact(
                {
                    "query": args.query,
                    "target_model": target_model,
                    "quality_tier": args.quality_tier,
                    "size_preference": args.size_preference,
                    "experimental": args.experimental,
                    "style_hint": style_hint,
                    "generation_overrides": overrides or None,
                }
            ),
            "response": optimization.model_dump(exclude_none=True),
            "strategy": outcome.strategy,
        }
        record, image_base64, result = await self._generate_and_save(request, {"optimization": optimization_record})

        summary = fmt.generation_summary(
            f"**Final prompt:**\n{final_prompt}", request.to_payload(), result.job_id, record
        )
        optimization_text = "\n".join(
            ["**Optimization:**", f"Optimizer: {outcome.strategy}", *fmt.optimization_lines(optimization, suggested_model)]
        )
        return [
            fmt.image_content(image_base64, record.mime_type),
            fmt.text_content(f"{summary}\n\n{optimization_text}"),
        ]

    # ============================================================
    # Models / search / lookup
    # ============================================================

    async def get_available_models(self, arguments: Mapping[str, Any]) -> Content:
        models = await self.client.get_models()
        return [fmt.text_content(fmt.model_list_text(models.models))]

    async def get_model_detail(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(ModelDetailArgs, arguments)
        config = await self.client.get_model_detail(args.model_name)
        return [fmt.text_content(fmt.model_detail_text(args.model_name, config))]

    async def search_images(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(SearchImagesArgs, arguments)
        result = await asyncio.to_thread(
            self.store.search,
            query=args.query,
            model=args.model,
            before=args.before,
            after=args.after,
            limit=args.limit,
        )
        return [fmt.text_content(fmt.search_results_text(result.records, result.total_matches))]

    async def get_image_by_token(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(ImageByTokenArgs, arguments)
        token = args.image_token

        record = self.store.get_record_by_token(token)
        if record is not None and self.store.has_image_file(record):
            lines = ["Image found in local cache.", f"- Prompt: {record.prompt}", *fmt.record_summary_lines(record)]
            content = [fmt.text_content("\n".join(lines))]
            if args.include_image:
                image_base64 = await asyncio.to_thread(self.store.read_image_base64, record)
                content.insert(0, fmt.image_content(image_base64, record.mime_type))
            return content

        try:
            result = await self.client.fetch_by_token(token, include_base64=args.include_image)
        except RemoteServiceError as exc:
            if exc.remote_category == "not_found":
                raise NotFoundError(f"Image token not found: {token}", detail=exc.detail) from exc
            raise

        lines = ["Image fetched from the remote service.", f"- Image Token: {result.image_token}"]
        if result.download_url:
            lines.append(f"- Download URL: {result.download_url}")
        if result.metadata:
            lines.extend(["", "**Metadata:**", fmt.json_text(result.metadata)])

        content = []
        if args.include_image:
            if result.image_base64:
                inline, mime = split_data_url(result.image_base64)
                content.append(fmt.image_content(inline, result.mime_type or mime or DEFAULT_MIME_TYPE))
            else:
                lines.append("- Image bytes were not returned by the remote service.")
        content.append(fmt.text_content("\n".join(lines)))
        return content

    # ============================================================
    # Upload / metadata
    # ============================================================

    async def upload_image(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(UploadImageArgs, arguments)
        _, mime_type = split_data_url(args.image_base64)
        payload = normalize_base64(args.image_base64)

        source = optional_text(args.source) or "mcp-upload"
        stored = await self.client.store_from_bytes(
            _build(
                StoreImageRequest,
                image_base64=payload,
                source=source,
                prompt=optional_text(args.prompt),
                negative_prompt=optional_text(args.negative_prompt),
                tags=args.tags,
                filename=optional_text(args.filename),
            )
        )
        record = await asyncio.to_thread(
            self.store.save_image,
            payload,
            SaveImageInfo(
                prompt=args.prompt or "",
                model="upload",
                params=compact({"source": source, "tags": args.tags, "filename": args.filename}),
                image_token=stored.image_token,
                metadata=stored.metadata or None,
                mime_type=mime_type,
            ),
        )
        lines = ["Image uploaded.", *fmt.record_summary_lines(record)]
        return [fmt.text_content("\n".join(lines))]

    async def upload_image_from_url(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(UploadImageUrlArgs, arguments)
        url = args.checked_url()
        source = optional_text(args.source) or "url"

        stored = await self.client.store_from_url(
            _build(
                StoreUrlRequest,
                url=url,
                source=source,
                prompt=optional_text(args.prompt),
                negative_prompt=optional_text(args.negative_prompt),
                tags=args.tags,
                filename=optional_text(args.filename),
                timeout=args.timeout,
                max_bytes=args.max_bytes,
            )
        )
        lines = ["Image registered from URL.", f"- URL: {url}"]

        fetched = await self.resolver.fetch_remote_image(stored.image_token)
        if fetched is not None and fetched.image_base64:
            inline, mime = split_data_url(fetched.image_base64)
            record = await asyncio.to_thread(
                self.store.save_image,
                inline,
                SaveImageInfo(
                    prompt=args.prompt or "",
                    model="upload",
                    params=compact({"source": source, "source_url": url, "tags": args.tags}),
                    image_token=stored.image_token,
                    metadata=fetched.metadata or stored.metadata or None,
                    download_url=fetched.download_url,
                    mime_type=fetched.mime_type or mime,
                ),
            )
            lines.extend(fmt.record_summary_lines(record))
        else:
            lines.append(f"- Image Token: {stored.image_token}")
            lines.append("- Local cache: skipped, image bytes unavailable")
        return [fmt.text_content("\n".join(lines))]

    async def update_image_metadata(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(UpdateMetadataArgs, arguments)
        patch = _build(MetadataPatch, **args.model_dump(exclude={"image_token"}, exclude_none=True))
        if not patch.to_payload():
            raise InvalidRequestError("No metadata fields to update")

        result = await self.client.patch_metadata(args.image_token, patch)
        text = f"Metadata updated for image token {args.image_token}.\n\n{fmt.json_text(result.metadata)}"
        return [fmt.text_content(text)]

    # ============================================================
    # Image operations
    # ============================================================

    async def caption_image(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(CaptionImageArgs, arguments)
        resolved = await self.resolver.resolve(args.reference(), ResolveOptions(require_token=False))
        if args.save_caption and not resolved.remote_token:
            raise InvalidRequestError("save_caption requires an image token; pass image_token or a cached resource")

        fields = args.model_dump(
            include={
                "prompt",
                "max_new_tokens",
                "temperature",
                "top_p",
                "use_nucleus_sampling",
                "repetition_penalty",
                "model_id",
            },
            exclude_none=True,
        )
        if resolved.remote_token:
            request = _build(CaptionRequest, image_token=resolved.remote_token, **fields)
        else:
            request = _build(CaptionRequest, image_base64=await self.resolver.materialize_base64(resolved), **fields)

        result = await self.client.caption(request)
        lines = ["**Caption:**", result.caption, ""]
        lines.extend(
            fmt.parameter_lines(
                {
                    "Model": result.model_id,
                    "Device": result.device,
                    "Dtype": result.dtype,
                    "Image Token": resolved.remote_token or result.image_token,
                }
            )
        )

        if args.save_caption:
            patch = MetadataPatch(
                caption=result.caption,
                caption_model_id=result.model_id or args.model_id,
                captioned_at=time.time(),
            )
            await self.client.patch_metadata(resolved.remote_token, patch)
            lines.append("- Caption saved to image metadata")
        return [fmt.text_content("\n".join(lines))]

    async def upscale_image(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(UpscaleImageArgs, arguments)
        options = PollOptions.create(
            args.poll_interval_seconds, args.timeout_seconds, default_timeout=UPSCALE_TIMEOUT_SECONDS
        )
        resolved = await self.resolver.resolve(
            args.reference(),
            ResolveOptions(require_token=True, upload_if_needed=True, upload_source="upscale-input"),
        )
        source_token = resolved.remote_token

        submission = await self.client.upscale(UpscaleRequest(image_token=source_token, scale=args.scale))
        outcome = await self.poller.wait(submission.job_id, options)

        remote_meta = outcome.metadata or {}
        prompt = resolved.record.prompt if resolved.record else str(remote_meta.get("prompt") or "")
        record, image_base64 = await self._save_job_outcome(
            outcome,
            prompt=prompt,
            model=str(remote_meta.get("model") or "upscaler"),
            params={"scale": args.scale, "source_token": source_token, "job_id": outcome.job_id},
            lineage={"upscaled_from": source_token, "upscale_scale": args.scale},
        )

        lines = [
            f"Image upscaled x{args.scale}.",
            f"- Source token: {source_token}",
            f"- Job ID: {outcome.job_id}",
            *fmt.record_summary_lines(record),
        ]
        return [fmt.image_content(image_base64, record.mime_type), fmt.text_content("\n".join(lines))]

    async def image_to_image(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(ImageToImageArgs, arguments)
        options = PollOptions.create(
            args.poll_interval_seconds, args.timeout_seconds, default_timeout=IMAGE_TO_IMAGE_TIMEOUT_SECONDS
        )
        resolved = await self.resolver.resolve(
            args.reference(),
            ResolveOptions(
                require_token=True,
                upload_if_needed=True,
                upload_source="image-to-image-input",
                prompt_hint=args.prompt,
            ),
        )
        init_token = resolved.remote_token

        request = _build(
            ImageToImageRequest,
            prompt=args.prompt,
            init_image_token=init_token,
            **args.model_dump(
                include={"strength", "negative_prompt", "model", "guidance_scale", "steps", "width", "height", "seed"},
                exclude_none=True,
            ),
        )

        job = Strategy("job", lambda: self.client.image_to_image_job(request))
        sync = Strategy("sync", lambda: self.client.image_to_image_sync(request, include_base64=True))
        order = {"job": [job], "sync": [sync], "auto": [job, sync]}[args.mode]
        submitted = await StrategyChain("image_to_image", order, submission_promotable, self.logger).run()

        value = submitted.value
        if isinstance(value, JobSubmission):
            outcome = await self.poller.wait(value.job_id, options)
        else:
            outcome = JobOutcome(
                job_id=value.job_id or "",
                status="completed",
                image_base64=value.image_base64,
                remote_token=value.image_token,
                metadata={
                    **value.metadata,
                    **_without_none({"download_url": value.download_url, "mime_type": value.mime_type}),
                },
            )

        params = request.to_payload()
        params.update(mode=submitted.strategy, job_id=outcome.job_id or None)
        record, image_base64 = await self._save_job_outcome(
            outcome,
            prompt=args.prompt,
            model=request.model or str((outcome.metadata or {}).get("model") or DEFAULT_MODEL),
            params=params,
            lineage={"derived_from": [init_token]},
        )

        lines = [
            "Image transformed.",
            f"- Mode: {submitted.strategy}",
            f"- Init token: {init_token}",
            f"- Job ID: {outcome.job_id or 'N/A'}",
            *fmt.record_summary_lines(record),
        ]
        return [fmt.image_content(image_base64, record.mime_type), fmt.text_content("\n".join(lines))]

    async def get_job_status(self, arguments: Mapping[str, Any]) -> Content:
        args = parse_arguments(JobStatusArgs, arguments)
        status = await self.client.job_status(args.job_id)
        lines = [f"Job {args.job_id}", *fmt.parameter_lines(status.model_dump(exclude_none=True))]
        return [fmt.text_content("\n".join(lines))]

    # ============================================================
    # Resources
    # ============================================================

    def list_resources(self) -> list[dict[str, Any]]:
        return [
            {
                "uri": resource_uri(record.id),
                "name": f"generated-{record.id}",
                "mimeType": record.mime_type,
                "description": f"{record.created_at} | {record.model} | {fmt.prompt_preview(record.prompt)}",
            }
            for record in self.store.list_images()
        ]

    def read_resource(self, uri: str) -> list[dict[str, Any]]:
        """Blob entry plus a JSON description entry for one cached record.

        Raises:
            InvalidRequestError: Malformed URI.
            NotFoundError: No such record.
            BinaryUnavailableError: The image file is gone.
        """
        record = self.store.get_record(extract_resource_id(uri))
        if record is None:
            raise NotFoundError(f"Resource not found: {uri}")

        blob = self.store.read_image_base64(record)
        details = _without_none(
            {
                "id": record.id,
                "prompt": record.prompt,
                "model": record.model,
                "created_at": record.created_at,
                "image_token": record.image_token,
                "download_url": record.download_url,
                "mime_type": record.mime_type,
                "params": record.params,
                "metadata": record.metadata,
            }
        )
        return [
            _without_none({"uri": uri, "mimeType": record.mime_type, "blob": blob, "downloadUrl": record.download_url}),
            {"uri": uri, "mimeType": "application/json", "text": fmt.json_text(details)},
        ]
