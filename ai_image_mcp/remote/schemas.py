"""Wire shapes for the remote image service.

Request models:
    Each request declares the fields the remote service understands plus one
    `additional_fields` map. `to_payload()` drops unset optional fields and
    merges `additional_fields` underneath the known ones, so forward-compatible
    parameters pass through without weakening validation of the known fields.

Response models:
    Responses allow unknown keys (`extra="allow"`); the service adds fields
    over time and callers only depend on the declared ones.

Range constraints:
    The annotated numeric types below are the single source of truth for
    parameter bounds and are reused by `tools.arguments`.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from ai_image_mcp.core.validation import validate_dimension


MaxNewTokens = Annotated[int, Field(ge=1, le=512)]
Temperature = Annotated[float, Field(ge=0.0, le=2.0)]
TopP = Annotated[float, Field(ge=0.0, le=1.0)]
RepetitionPenalty = Annotated[float, Field(ge=0.5, le=2.0)]
UpscaleScale = Annotated[int, Field(ge=1, le=8)]
Strength = Annotated[float, Field(ge=0.0, le=1.0)]
Dimension = Annotated[int, AfterValidator(validate_dimension)]
Seed = Annotated[int, Field(ge=0)]


class RemoteRequest(BaseModel):
    """Base for outbound request bodies."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    additional_fields: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        known = self.model_dump(exclude_none=True, exclude={"additional_fields"})
        return {**self.additional_fields, **known}


class RemoteResponse(BaseModel):
    model_config = ConfigDict(extra="allow", protected_namespaces=())


# ============================================================
# Requests
# ============================================================

class GenerateRequest(RemoteRequest):
    prompt: str = Field(min_length=1)
    model: str | None = None
    negative_prompt: str | None = None
    guidance_scale: float | None = Field(default=None, gt=0)
    steps: int | None = Field(default=None, ge=1, le=150)
    width: int | None = Field(default=None, ge=64, le=2048)
    height: int | None = Field(default=None, ge=64, le=2048)
    seed: Seed | None = None
    scheduler: str | None = None
    include_base64: bool | None = None
    include_metadata: bool | None = None


class StoreImageRequest(RemoteRequest):
    image_base64: str = Field(min_length=1)
    source: str | None = None
    prompt: str | None = None
    negative_prompt: str | None = None
    parameters: dict[str, Any] | None = None
    derived_from: list[str] | None = None
    tags: list[str] | None = None
    extra: dict[str, Any] | None = None
    filename: str | None = None


class StoreUrlRequest(RemoteRequest):
    url: str = Field(min_length=1)
    source: str | None = None
    prompt: str | None = None
    negative_prompt: str | None = None
    parameters: dict[str, Any] | None = None
    derived_from: list[str] | None = None
    tags: list[str] | None = None
    extra: dict[str, Any] | None = None
    filename: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    max_bytes: int | None = Field(default=None, gt=0)


class CaptionRequest(RemoteRequest):
    image_token: str | None = None
    image_base64: str | None = None
    prompt: str | None = None
    max_new_tokens: MaxNewTokens | None = None
    temperature: Temperature | None = None
    top_p: TopP | None = None
    use_nucleus_sampling: bool | None = None
    repetition_penalty: RepetitionPenalty | None = None
    model_id: str | None = None


class MetadataPatch(RemoteRequest):
    prompt: str | None = None
    negative_prompt: str | None = None
    parameters: dict[str, Any] | None = None
    tags: list[str] | None = None
    derived_from: list[str] | None = None
    caption: str | None = None
    caption_model_id: str | None = None
    captioned_at: float | None = None
    embedding: dict[str, Any] | None = None
    extra: dict[str, Any] | None = None


class UpscaleRequest(RemoteRequest):
    image_token: str = Field(min_length=1)
    scale: UpscaleScale | None = None


class ImageToImageRequest(RemoteRequest):
    prompt: str = Field(min_length=1)
    init_image_token: str = Field(min_length=1)
    negative_prompt: str | None = None
    model: str | None = None
    guidance_scale: float | None = Field(default=None, gt=0)
    steps: int | None = Field(default=None, ge=1, le=150)
    width: Dimension | None = None
    height: Dimension | None = None
    seed: Seed | None = None
    strength: Strength | None = None


class OptimizeRequest(RemoteRequest):
    query: str = Field(min_length=1)
    model: str | None = None


# ============================================================
# Responses
# ============================================================

class ImageResult(RemoteResponse):
    """Generation, fetch-by-token and synchronous image-to-image result."""

    image_token: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    image_base64: str | None = None
    download_url: str | None = None
    mime_type: str | None = None
    used_params: dict[str, Any] | None = None
    job_id: str | None = None


class StoredImage(RemoteResponse):
    image_token: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class CaptionResult(RemoteResponse):
    caption: str
    model_id: str | None = None
    device: str | None = None
    dtype: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    image_token: str | None = None
    image_metadata: dict[str, Any] | None = None


class MetadataResult(RemoteResponse):
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobSubmission(RemoteResponse):
    job_id: str = Field(min_length=1)
    status: str | None = None


class JobStatus(RemoteResponse):
    status: str | None = None
    progress: float | None = None
    eta: float | None = None


class JobResult(RemoteResponse):
    status: str | None = None
    image_token: str | None = None
    metadata: dict[str, Any] | None = None
    image_base64: str | None = None
    error: str | None = None


class ModelConfig(RemoteResponse):
    repo: str | None = None
    prompt_token_limit: int | None = None
    recommended_scheduler: str | None = None
    recommended_guidance_scale: float | None = None
    description: str | None = None
    recommended_prompt: str | None = None
    recommended_negative_prompt: str | None = None
    recommended_parameter_guideline: str | None = None


class ModelList(RemoteResponse):
    models: dict[str, ModelConfig] = Field(default_factory=dict)


class OptimizationResult(RemoteResponse):
    prompt: str
    negative_prompt: str | None = None
    model: str | None = None
    suggested_model: str | None = None
    guidance_scale: float | None = None
    steps: int | None = None
    width: int | None = None
    height: int | None = None
    seed: int | None = None
    reason: str | None = None
    recommended_params: dict[str, Any] | None = None
    recommended_parameters: dict[str, Any] | None = None

    @property
    def recommended(self) -> dict[str, Any]:
        """Recommended parameters under either spelling the service uses."""
        return dict(self.recommended_params or self.recommended_parameters or {})
