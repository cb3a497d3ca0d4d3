"""Typed tool arguments.

Each tool parses its raw argument mapping into one of the models below with
`parse_arguments`. Field descriptions double as the published input schema
(see `tools.definitions`). Unknown keys are ignored so older and newer
clients keep working; known keys are validated strictly and surface as
`InvalidRequestError` before any remote call is made.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from ai_image_mcp.core.resolver import ImageReference
from ai_image_mcp.core.validation import validate_http_url
from ai_image_mcp.errors import InvalidRequestError
from ai_image_mcp.remote.schemas import (
    Dimension,
    MaxNewTokens,
    RepetitionPenalty,
    Seed,
    Strength,
    Temperature,
    TopP,
    UpscaleScale,
)


NonEmptyText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
QualityTier = Literal["draft", "standard", "premium"]
SizePreference = Literal["small", "medium", "large"]

ArgsT = TypeVar("ArgsT", bound="ToolArguments")


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore", protected_namespaces=())


def parse_arguments(model: type[ArgsT], arguments: Mapping[str, Any] | None) -> ArgsT:
    """Validate raw tool arguments.

    Raises:
        InvalidRequestError: With one `field: message` entry per problem.
    """
    try:
        return model.model_validate(dict(arguments or {}))
    except ValidationError as exc:
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
            problems.append(f"{location}: {error.get('msg')}")
        raise InvalidRequestError("Invalid arguments - " + "; ".join(problems)) from None


# ============================================================
# Shared argument groups
# ============================================================

class ImageReferenceArgs(ToolArguments):
    resource_uri: str | None = Field(
        default=None, description="Local resource URI (resource://ai-image-api/image/<id>) or record id"
    )
    image_token: str | None = Field(default=None, description="Remote image token")
    image_base64: str | None = Field(default=None, description="Inline image bytes (base64 or data URL)")

    def reference(self) -> ImageReference:
        return ImageReference.from_arguments(self.model_dump())


class PollingArgs(ToolArguments):
    poll_interval_seconds: float | None = Field(
        default=None, ge=1, le=60, description="Seconds between job status checks (1-60, default 5)"
    )
    timeout_seconds: float | None = Field(
        default=None, ge=1, le=1800, description="Maximum seconds to wait for the job (1-1800)"
    )


# ============================================================
# Generation / optimization
# ============================================================

class GenerateImageArgs(ToolArguments):
    prompt: NonEmptyText = Field(description="Natural-language prompt for the image")
    quality_tier: QualityTier = Field(default="standard", description="Quality / cost / speed trade-off")
    style_hint: str | None = Field(default=None, description="Optional style hint appended to the prompt")
    size_preference: SizePreference = Field(default="medium", description="Square output size")
    experimental: bool = Field(default=False, description="Use the experimental model (sdxl)")
    negative_prompt: str | None = Field(default=None, description="Things to avoid in the image")
    seed: Seed | None = Field(default=None, description="Fixed seed; random when omitted")


class OptimizePromptArgs(ToolArguments):
    query: NonEmptyText = Field(description="Prompt or image description to optimize")
    target_model: str | None = Field(default=None, description="Model to optimize for (optional)")


class GenerationOverrides(ToolArguments):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    model: str | None = None
    negative_prompt: str | None = None
    guidance_scale: float | None = Field(default=None, gt=0)
    steps: int | None = Field(default=None, ge=1, le=150)
    width: int | None = Field(default=None, ge=64, le=2048)
    height: int | None = Field(default=None, ge=64, le=2048)
    seed: Seed | None = None
    scheduler: str | None = None


class OptimizeAndGenerateArgs(ToolArguments):
    query: NonEmptyText = Field(description="Description of the image to create")
    target_model: str | None = Field(default=None, description="Preferred model (optional)")
    quality_tier: QualityTier = Field(
        default="standard", description="Quality preset; optimized parameters may override it"
    )
    size_preference: SizePreference = Field(
        default="medium", description="Output size preset; optimized parameters may override it"
    )
    experimental: bool = Field(default=False, description="Prefer experimental models such as sdxl")
    style_hint: str | None = Field(default=None, description="Extra style or mood (optional)")
    generation_overrides: GenerationOverrides | None = Field(
        default=None, description="Explicit generation parameters that win over every suggestion"
    )


# ============================================================
# Models / search / lookup
# ============================================================

class ModelDetailArgs(ToolArguments):
    model_name: NonEmptyText = Field(description="Model name to describe")


class SearchImagesArgs(ToolArguments):
    query: str | None = Field(default=None, description="Keyword contained in the prompt (substring match)")
    model: str | None = Field(default=None, description="Filter by generation model name")
    limit: int | None = Field(default=None, description="Maximum number of results (1-20, default 5)")
    before: str | None = Field(default=None, description="Only images created at or before this ISO 8601 time")
    after: str | None = Field(default=None, description="Only images created at or after this ISO 8601 time")


class ImageByTokenArgs(ToolArguments):
    image_token: NonEmptyText = Field(description="Remote image token")
    include_image: bool = Field(default=True, description="Return the image bytes as well as the summary")


# ============================================================
# Upload / metadata
# ============================================================

class UploadImageArgs(ToolArguments):
    image_base64: NonEmptyText = Field(description="Image bytes (base64 or data URL)")
    source: str | None = Field(default=None, description="Origin label stored with the image")
    prompt: str | None = Field(default=None, description="Prompt describing the image")
    negative_prompt: str | None = None
    tags: list[str] | None = Field(default=None, description="Free-form tags")
    filename: str | None = None


class UploadImageUrlArgs(ToolArguments):
    url: NonEmptyText = Field(description="http(s) URL the remote service downloads")
    source: str | None = Field(default=None, description="Origin label stored with the image")
    prompt: str | None = Field(default=None, description="Prompt describing the image")
    negative_prompt: str | None = None
    tags: list[str] | None = Field(default=None, description="Free-form tags")
    filename: str | None = None
    timeout: float | None = Field(default=None, gt=0, description="Remote download timeout in seconds")
    max_bytes: int | None = Field(default=None, gt=0, description="Maximum accepted download size")

    def checked_url(self) -> str:
        return validate_http_url(self.url)


class UpdateMetadataArgs(ToolArguments):
    image_token: NonEmptyText = Field(description="Remote image token to update")
    prompt: str | None = None
    negative_prompt: str | None = None
    tags: list[str] | None = None
    caption: str | None = None
    parameters: dict[str, Any] | None = None
    extra: dict[str, Any] | None = Field(default=None, description="Additional metadata merged into the record")


# ============================================================
# Image operations
# ============================================================

class CaptionImageArgs(ImageReferenceArgs):
    prompt: str | None = Field(default=None, description="Optional captioning prompt")
    max_new_tokens: MaxNewTokens | None = Field(default=None, description="1-512")
    temperature: Temperature | None = Field(default=None, description="0-2")
    top_p: TopP | None = Field(default=None, description="0-1")
    use_nucleus_sampling: bool | None = None
    repetition_penalty: RepetitionPenalty | None = Field(default=None, description="0.5-2")
    model_id: str | None = Field(default=None, description="Captioning model override")
    save_caption: bool = Field(default=False, description="Store the caption in the remote image metadata")


class UpscaleImageArgs(ImageReferenceArgs, PollingArgs):
    scale: UpscaleScale = Field(default=2, description="Upscale factor (1-8)")


class ImageToImageArgs(ImageReferenceArgs, PollingArgs):
    prompt: NonEmptyText = Field(description="Prompt guiding the transformation")
    strength: Strength | None = Field(default=None, description="0-1; higher departs further from the input")
    negative_prompt: str | None = None
    model: str | None = None
    guidance_scale: float | None = Field(default=None, gt=0)
    steps: int | None = Field(default=None, ge=1, le=150)
    width: Dimension | None = Field(default=None, description="Multiple of 64 in 256-2048")
    height: Dimension | None = Field(default=None, description="Multiple of 64 in 256-2048")
    seed: Seed | None = None
    mode: Literal["auto", "job", "sync"] = Field(
        default="auto", description="job: submit and poll; sync: single call; auto: job, falling back to sync"
    )


class JobStatusArgs(ToolArguments):
    job_id: NonEmptyText = Field(description="Remote job id")
