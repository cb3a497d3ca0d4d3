"""Shared fixtures: in-memory remote client, temporary record store, fake clock."""

from __future__ import annotations

import base64
import io
import random
from typing import Any

import pytest
from PIL import Image

from ai_image_mcp.core.job_polling import JobPoller
from ai_image_mcp.errors import NotFoundError, RemoteServiceError
from ai_image_mcp.remote.schemas import (
    CaptionResult,
    ImageResult,
    JobResult,
    JobStatus,
    JobSubmission,
    MetadataResult,
    ModelConfig,
    ModelList,
    OptimizationResult,
    StoredImage,
)
from ai_image_mcp.storage.record_store import RecordStore
from ai_image_mcp.tools.handlers import ImageToolHandlers


def make_png_base64(color: tuple[int, int, int] = (255, 0, 0), size: tuple[int, int] = (2, 2)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


PNG_BASE64 = make_png_base64()
UPSCALED_PNG_BASE64 = make_png_base64((0, 0, 255), (4, 4))


def _resolve(value: Any) -> Any:
    if isinstance(value, BaseException):
        raise value
    return value


class FakeClock:
    """Monotonic clock whose `sleep` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRemoteClient:
    """In-memory stand-in for `RemoteServiceClient` that records every call.

    Attributes hold the canned response (or exception) of each method; tests
    replace them to script a scenario.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.generate_result: Any = ImageResult(
            image_token="gen-token",
            image_base64=PNG_BASE64,
            job_id="gen-job",
            used_params={"steps": 20},
            metadata={"model": "dreamshaper8"},
        )
        self.stored_token = "uploaded-token"
        self.store_error: Exception | None = None
        self.remote_images: dict[str, ImageResult] = {}
        self.caption_result: Any = CaptionResult(caption="a red square", model_id="blip-base", device="cpu")
        self.upscale_result: Any = JobSubmission(job_id="j1", status="queued")
        self.image_to_image_job_result: Any = JobSubmission(job_id="i2i-job", status="queued")
        self.image_to_image_sync_result: Any = ImageResult(
            image_token="i2i-sync-token", image_base64=UPSCALED_PNG_BASE64, metadata={"model": "dreamshaper8"}
        )
        self.job_results: list[Any] = []
        self.job_status_result: Any = JobStatus(status="running", progress=0.5)
        self.models: Any = ModelList(
            models={
                "dreamshaper8": ModelConfig(repo="Lykon/dreamshaper-8", description="Versatile SD 1.5 model"),
                "sdxl": ModelConfig(repo="stabilityai/sdxl", description="SDXL base", prompt_token_limit=77),
            }
        )
        self.job_manager_optimization: Any = OptimizationResult(
            prompt="a cat, studio lighting",
            negative_prompt="lowres",
            suggested_model="sdxl",
            recommended_params={"guidance_scale": 6.0, "steps": 28, "width": 1024, "height": 1024, "seed": 42},
        )
        self.direct_optimization: Any = OptimizationResult(prompt="a cat, direct", suggested_model="dreamshaper8")

    def _record(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))

    def calls_to(self, name: str) -> list[Any]:
        return [payload for call, payload in self.calls if call == name]

    async def generate(self, request):
        self._record("generate", request)
        return _resolve(self.generate_result)

    async def store_from_bytes(self, request):
        self._record("store_from_bytes", request)
        if self.store_error is not None:
            raise self.store_error
        return StoredImage(image_token=self.stored_token)

    async def store_from_url(self, request):
        self._record("store_from_url", request)
        return StoredImage(image_token=self.stored_token)

    async def fetch_by_token(self, image_token, include_base64=True):
        self._record("fetch_by_token", image_token)
        if image_token in self.remote_images:
            return self.remote_images[image_token]
        raise RemoteServiceError(f"Failed to fetch image {image_token}", status_code=404)

    async def caption(self, request):
        self._record("caption", request)
        return _resolve(self.caption_result)

    async def patch_metadata(self, image_token, patch):
        self._record("patch_metadata", (image_token, patch))
        return MetadataResult(metadata=patch.to_payload())

    async def upscale(self, request):
        self._record("upscale", request)
        return _resolve(self.upscale_result)

    async def image_to_image_sync(self, request, include_base64=True):
        self._record("image_to_image_sync", request)
        return _resolve(self.image_to_image_sync_result)

    async def image_to_image_job(self, request):
        self._record("image_to_image_job", request)
        return _resolve(self.image_to_image_job_result)

    async def job_status(self, job_id):
        self._record("job_status", job_id)
        return _resolve(self.job_status_result)

    async def job_result(self, job_id, include_base64=True):
        self._record("job_result", job_id)
        if not self.job_results:
            return JobResult(status="running")
        return _resolve(self.job_results.pop(0))

    async def get_models(self):
        self._record("get_models")
        return _resolve(self.models)

    async def get_model_detail(self, model_name):
        self._record("get_model_detail", model_name)
        models = _resolve(self.models)
        if model_name not in models.models:
            raise NotFoundError(f'Model "{model_name}" not found')
        return models.models[model_name]

    async def optimize_via_job_manager(self, request):
        self._record("optimize_via_job_manager", request)
        return _resolve(self.job_manager_optimization)

    async def optimize_direct(self, request):
        self._record("optimize_direct", request)
        return _resolve(self.direct_optimization)


@pytest.fixture
def store(tmp_path) -> RecordStore:
    return RecordStore(str(tmp_path / "cache"))


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(fake_client, fake_clock) -> JobPoller:
    return JobPoller(fake_client, clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def handlers(fake_client, store, poller) -> ImageToolHandlers:
    return ImageToolHandlers(fake_client, store, poller=poller, rng=random.Random(7))
