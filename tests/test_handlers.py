"""Tests for the tool handlers against the in-memory remote client."""

import json
import threading

import pytest
from conftest import PNG_BASE64, UPSCALED_PNG_BASE64

from ai_image_mcp.errors import (
    BinaryUnavailableError,
    InvalidRequestError,
    JobFailedError,
    NotFoundError,
    RemoteServiceError,
    UnknownToolError,
)
from ai_image_mcp.remote.schemas import ImageResult, JobResult
from ai_image_mcp.storage.record_store import SaveImageInfo, resource_uri
from ai_image_mcp.tools.definitions import TOOLS_BY_NAME


def _text(content) -> str:
    return "\n".join(entry["text"] for entry in content if entry["type"] == "text")


def _cached(store, token=None, prompt="cached cat"):
    return store.save_image(PNG_BASE64, SaveImageInfo(prompt=prompt, model="dreamshaper8", image_token=token))


class TestDispatch:
    def test_every_published_tool_has_a_handler(self, handlers) -> None:
        assert set(handlers.tool_names) == set(TOOLS_BY_NAME)

    @pytest.mark.asyncio
    async def test_unknown_tool(self, handlers) -> None:
        with pytest.raises(UnknownToolError, match="Unknown tool: nope"):
            await handlers.dispatch("nope", {})

    @pytest.mark.asyncio
    async def test_validation_happens_before_remote_calls(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="prompt"):
            await handlers.dispatch("generate_image", {"prompt": "   "})

        assert fake_client.calls == []


class TestGeneration:
    @pytest.mark.asyncio
    async def test_generate_image_presets_and_record(self, handlers, fake_client, store) -> None:
        content = await handlers.dispatch(
            "generate_image",
            {"prompt": "a fox", "quality_tier": "premium", "size_preference": "large", "style_hint": "watercolor"},
        )

        request = fake_client.calls_to("generate")[0]
        assert request.prompt == "a fox, watercolor, high quality, detailed, masterpiece"
        assert (request.steps, request.guidance_scale) == (30, 9.0)
        assert (request.width, request.height) == (1024, 1024)
        assert request.model == "dreamshaper8"
        assert 0 <= request.seed < 2147483647

        record = store.list_images()[0]
        assert record.image_token == "gen-token"
        assert record.params["used_params"] == {"steps": 20}
        assert content[0] == {"type": "image", "data": PNG_BASE64, "mimeType": "image/png"}
        assert resource_uri(record.id) in _text(content)

    @pytest.mark.asyncio
    async def test_experimental_uses_sdxl(self, handlers, fake_client) -> None:
        await handlers.dispatch("generate_image", {"prompt": "a fox", "experimental": True, "seed": 5})

        request = fake_client.calls_to("generate")[0]
        assert request.model == "sdxl"
        assert request.seed == 5

    @pytest.mark.asyncio
    async def test_missing_bytes_are_fetched_by_token(self, handlers, fake_client, store) -> None:
        fake_client.generate_result = ImageResult(image_token="no-bytes")
        fake_client.remote_images["no-bytes"] = ImageResult(image_token="no-bytes", image_base64=PNG_BASE64)

        await handlers.dispatch("generate_image", {"prompt": "a fox"})

        assert store.get_record_by_token("no-bytes") is not None

    @pytest.mark.asyncio
    async def test_unavailable_bytes_leave_no_record(self, handlers, fake_client, store) -> None:
        fake_client.generate_result = ImageResult(image_token="no-bytes")

        with pytest.raises(BinaryUnavailableError):
            await handlers.dispatch("generate_image", {"prompt": "a fox"})

        assert store.list_images() == []

    @pytest.mark.asyncio
    async def test_optimize_prompt_reports_optimizer(self, handlers, fake_client) -> None:
        fake_client.job_manager_optimization = RemoteServiceError("optimize", remote_category="unavailable")
        fake_client.direct_optimization = RemoteServiceError("optimize", status_code=404)

        content = await handlers.dispatch("optimize_prompt", {"query": "a cat"})

        text = _text(content)
        assert "a cat, high quality, detailed" in text
        assert "Optimizer: heuristic" in text

    @pytest.mark.asyncio
    async def test_optimize_and_generate_uses_recommendations(self, handlers, fake_client) -> None:
        await handlers.dispatch("optimize_and_generate", {"query": "a cat", "quality_tier": "draft"})

        request = fake_client.calls_to("generate")[0]
        assert request.prompt == "a cat, studio lighting"
        assert request.negative_prompt == "lowres"
        assert request.model == "sdxl"
        assert (request.guidance_scale, request.steps) == (6.0, 28)
        assert (request.width, request.height, request.seed) == (1024, 1024, 42)

    @pytest.mark.asyncio
    async def test_overrides_win(self, handlers, fake_client, store) -> None:
        await handlers.dispatch(
            "optimize_and_generate",
            {"query": "a cat", "generation_overrides": {"steps": 12, "model": "dreamshaper8", "width": 640}},
        )

        request = fake_client.calls_to("generate")[0]
        assert (request.steps, request.model, request.width) == (12, "dreamshaper8", 640)
        assert store.list_images()[0].params["optimization"]["strategy"] == "job_manager"

    @pytest.mark.asyncio
    async def test_presets_fill_gaps(self, handlers, fake_client) -> None:
        fake_client.job_manager_optimization = fake_client.direct_optimization

        await handlers.dispatch("optimize_and_generate", {"query": "a cat", "size_preference": "small"})

        request = fake_client.calls_to("generate")[0]
        assert (request.steps, request.guidance_scale) == (20, 7.5)
        assert (request.width, request.height) == (512, 512)
        assert request.negative_prompt == "blurry, low quality, bad anatomy, distorted"


class TestLookupTools:
    @pytest.mark.asyncio
    async def test_models(self, handlers) -> None:
        listing = _text(await handlers.dispatch("get_available_models"))
        detail = _text(await handlers.dispatch("get_model_detail", {"model_name": "sdxl"}))

        assert "dreamshaper8" in listing and "2 model(s)" in listing
        assert "stabilityai/sdxl" in detail
        with pytest.raises(NotFoundError):
            await handlers.dispatch("get_model_detail", {"model_name": "nope"})

    @pytest.mark.asyncio
    async def test_search_images(self, handlers, store) -> None:
        _cached(store, prompt="a red fox")
        _cached(store, prompt="a blue whale")

        text = _text(await handlers.dispatch("search_images", {"query": "FOX"}))

        assert "a red fox" in text
        assert "whale" not in text

    @pytest.mark.asyncio
    async def test_image_by_token_prefers_cache(self, handlers, store, fake_client) -> None:
        _cached(store, token="tok-1")

        content = await handlers.dispatch("get_image_by_token", {"image_token": "tok-1"})

        assert content[0]["type"] == "image"
        assert "Image Token: tok-1" in _text(content)
        assert fake_client.calls_to("fetch_by_token") == []

    @pytest.mark.asyncio
    async def test_image_by_token_falls_back_to_remote(self, handlers, fake_client) -> None:
        fake_client.remote_images["tok-2"] = ImageResult(
            image_token="tok-2", image_base64=PNG_BASE64, download_url="https://cdn.test/2.png"
        )

        content = await handlers.dispatch("get_image_by_token", {"image_token": "tok-2"})

        assert content[0]["data"] == PNG_BASE64
        assert "Image Token: tok-2" in _text(content)
        assert "https://cdn.test/2.png" in _text(content)

    @pytest.mark.asyncio
    async def test_image_by_token_not_found(self, handlers) -> None:
        with pytest.raises(NotFoundError, match="missing"):
            await handlers.dispatch("get_image_by_token", {"image_token": "missing"})

    @pytest.mark.asyncio
    async def test_job_status_passthrough(self, handlers) -> None:
        text = _text(await handlers.dispatch("get_job_status", {"job_id": "j1"}))

        assert "status: running" in text
        assert "progress: 0.5" in text


class TestUploadAndMetadata:
    @pytest.mark.asyncio
    async def test_upload_image_caches_locally(self, handlers, fake_client, store) -> None:
        content = await handlers.dispatch(
            "upload_image", {"image_base64": "data:image/png;base64," + PNG_BASE64, "tags": ["a"]}
        )

        upload = fake_client.calls_to("store_from_bytes")[0]
        assert upload.image_base64 == PNG_BASE64
        assert upload.source == "mcp-upload"
        record = store.get_record_by_token("uploaded-token")
        assert record is not None and record.params["tags"] == ["a"]
        assert "Image Token: uploaded-token" in _text(content)

    @pytest.mark.asyncio
    async def test_upload_from_url_rejects_other_schemes(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="http or https"):
            await handlers.dispatch("upload_image_from_url", {"url": "file:///etc/passwd"})

        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_upload_from_url_caches_when_bytes_available(self, handlers, fake_client, store) -> None:
        fake_client.remote_images["uploaded-token"] = ImageResult(image_token="uploaded-token", image_base64=PNG_BASE64)

        await handlers.dispatch("upload_image_from_url", {"url": "https://example.com/cat.png"})

        assert fake_client.calls_to("store_from_url")[0].url == "https://example.com/cat.png"
        assert store.get_record_by_token("uploaded-token").params["source_url"] == "https://example.com/cat.png"

    @pytest.mark.asyncio
    async def test_upload_from_url_without_bytes_still_reports_token(self, handlers, store) -> None:
        content = await handlers.dispatch("upload_image_from_url", {"url": "https://example.com/cat.png"})

        assert "Image Token: uploaded-token" in _text(content)
        assert store.list_images() == []

    @pytest.mark.asyncio
    async def test_update_metadata(self, handlers, fake_client) -> None:
        content = await handlers.dispatch(
            "update_image_metadata", {"image_token": "tok", "tags": ["x"], "extra": {"rating": 5}}
        )

        token, patch = fake_client.calls_to("patch_metadata")[0]
        assert token == "tok"
        assert patch.to_payload() == {"tags": ["x"], "extra": {"rating": 5}}
        assert '"rating": 5' in _text(content)

    @pytest.mark.asyncio
    async def test_update_metadata_requires_a_field(self, handlers) -> None:
        with pytest.raises(InvalidRequestError, match="No metadata fields"):
            await handlers.dispatch("update_image_metadata", {"image_token": "tok"})


class TestCaption:
    @pytest.mark.asyncio
    async def test_caption_by_token_and_save(self, handlers, fake_client) -> None:
        content = await handlers.dispatch(
            "caption_image", {"image_token": "tok", "temperature": 0.7, "save_caption": True}
        )

        request = fake_client.calls_to("caption")[0]
        assert request.image_token == "tok"
        assert request.image_base64 is None
        assert request.temperature == 0.7
        token, patch = fake_client.calls_to("patch_metadata")[0]
        assert token == "tok"
        assert patch.caption == "a red square"
        assert patch.caption_model_id == "blip-base"
        assert patch.captioned_at is not None
        assert "a red square" in _text(content)

    @pytest.mark.asyncio
    async def test_inline_bytes_are_sent_without_upload(self, handlers, fake_client) -> None:
        await handlers.dispatch("caption_image", {"image_base64": PNG_BASE64})

        assert fake_client.calls_to("caption")[0].image_base64 == PNG_BASE64
        assert fake_client.calls_to("store_from_bytes") == []

    @pytest.mark.asyncio
    async def test_save_caption_needs_token(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="save_caption"):
            await handlers.dispatch("caption_image", {"image_base64": PNG_BASE64, "save_caption": True})

        assert fake_client.calls_to("caption") == []

    @pytest.mark.asyncio
    async def test_out_of_range_parameter(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="max_new_tokens"):
            await handlers.dispatch("caption_image", {"image_token": "tok", "max_new_tokens": 1000})


class TestUpscale:
    @pytest.mark.asyncio
    async def test_upscale_flow(self, handlers, fake_client, fake_clock, store) -> None:
        source = _cached(store, token="orig-token")
        fake_client.job_results = [
            JobResult(status="running"),
            JobResult(status="succeeded", image_token="up-token", image_base64=UPSCALED_PNG_BASE64),
        ]

        content = await handlers.dispatch("upscale_image", {"resource_uri": resource_uri(source.id)})

        assert fake_client.calls_to("upscale")[0].scale == 2
        assert fake_client.calls_to("job_result") == ["j1", "j1"]
        assert fake_clock.sleeps == [5.0]
        record = store.get_record_by_token("up-token")
        assert record.metadata["upscaled_from"] == "orig-token"
        assert record.metadata["upscale_scale"] == 2
        assert record.prompt == "cached cat"
        assert content[0]["data"] == UPSCALED_PNG_BASE64

    @pytest.mark.asyncio
    async def test_upscale_uploads_inline_bytes_first(self, handlers, fake_client, store) -> None:
        fake_client.job_results = [JobResult(status="completed", image_token="up", image_base64=UPSCALED_PNG_BASE64)]

        await handlers.dispatch("upscale_image", {"image_base64": PNG_BASE64, "scale": 4})

        assert fake_client.calls_to("store_from_bytes")[0].source == "upscale-input"
        assert fake_client.calls_to("upscale")[0].image_token == "uploaded-token"
        assert store.get_record_by_token("up").metadata["upscale_scale"] == 4

    @pytest.mark.asyncio
    async def test_failed_job_saves_nothing(self, handlers, fake_client, store) -> None:
        fake_client.job_results = [JobResult(status="failed", error="bad input")]

        with pytest.raises(JobFailedError):
            await handlers.dispatch("upscale_image", {"image_token": "tok"})

        assert store.list_images() == []

    @pytest.mark.asyncio
    async def test_scale_out_of_range(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="scale"):
            await handlers.dispatch("upscale_image", {"image_token": "tok", "scale": 9})

        assert fake_client.calls == []


class TestImageToImage:
    @pytest.mark.asyncio
    async def test_job_mode(self, handlers, fake_client, store) -> None:
        fake_client.job_results = [JobResult(status="succeeded", image_token="i2i-out", image_base64=UPSCALED_PNG_BASE64)]

        content = await handlers.dispatch(
            "image_to_image", {"image_token": "init", "prompt": "make it blue", "strength": 0.3, "mode": "job"}
        )

        request = fake_client.calls_to("image_to_image_job")[0]
        assert (request.init_image_token, request.strength) == ("init", 0.3)
        record = store.get_record_by_token("i2i-out")
        assert record.metadata["derived_from"] == ["init"]
        assert record.params["mode"] == "job"
        assert "Mode: job" in _text(content)

    @pytest.mark.asyncio
    async def test_auto_falls_back_to_sync_when_job_endpoint_missing(self, handlers, fake_client, store) -> None:
        fake_client.image_to_image_job_result = RemoteServiceError("submit", status_code=404)

        await handlers.dispatch("image_to_image", {"image_token": "init", "prompt": "make it blue"})

        assert len(fake_client.calls_to("image_to_image_sync")) == 1
        record = store.get_record_by_token("i2i-sync-token")
        assert record.params["mode"] == "sync"
        assert record.metadata["derived_from"] == ["init"]

    @pytest.mark.asyncio
    async def test_auto_does_not_fall_back_on_server_error(self, handlers, fake_client) -> None:
        fake_client.image_to_image_job_result = RemoteServiceError("submit", status_code=500)

        with pytest.raises(RemoteServiceError):
            await handlers.dispatch("image_to_image", {"image_token": "init", "prompt": "x"})

        assert fake_client.calls_to("image_to_image_sync") == []

    @pytest.mark.asyncio
    async def test_job_is_never_resubmitted(self, handlers, fake_client) -> None:
        fake_client.job_results = [JobResult(status="failed")]

        with pytest.raises(JobFailedError):
            await handlers.dispatch("image_to_image", {"image_token": "init", "prompt": "x"})

        assert len(fake_client.calls_to("image_to_image_job")) == 1
        assert fake_client.calls_to("image_to_image_sync") == []

    @pytest.mark.asyncio
    async def test_dimension_validation(self, handlers, fake_client) -> None:
        with pytest.raises(InvalidRequestError, match="multiple of 64"):
            await handlers.dispatch("image_to_image", {"image_token": "init", "prompt": "x", "width": 500})

        assert fake_client.calls == []


class TestStoreAccess:
    @pytest.mark.asyncio
    async def test_record_file_io_runs_off_the_event_loop(self, handlers, store, monkeypatch) -> None:
        loop_thread = threading.get_ident()
        threads = {}

        def tracked(name):
            method = getattr(store, name)

            def wrapper(*args, **kwargs):
                threads.setdefault(name, threading.get_ident())
                return method(*args, **kwargs)

            return wrapper

        for name in ("save_image", "read_image_base64", "search"):
            monkeypatch.setattr(store, name, tracked(name))

        await handlers.dispatch("generate_image", {"prompt": "a fox"})
        await handlers.dispatch("get_image_by_token", {"image_token": "gen-token"})
        await handlers.dispatch("search_images", {"query": "fox"})

        assert set(threads) == {"save_image", "read_image_base64", "search"}
        assert loop_thread not in threads.values()


class TestResources:
    def test_list_resources(self, handlers, store) -> None:
        record = _cached(store, prompt="p" * 80)

        [entry] = handlers.list_resources()

        assert entry["uri"] == resource_uri(record.id)
        assert entry["mimeType"] == "image/png"
        assert entry["description"] == f"{record.created_at} | dreamshaper8 | {'p' * 57}..."

    def test_read_resource(self, handlers, store) -> None:
        record = _cached(store, token="tok")

        blob, details = handlers.read_resource(resource_uri(record.id))

        assert blob == {"uri": resource_uri(record.id), "mimeType": "image/png", "blob": PNG_BASE64}
        assert details["mimeType"] == "application/json"
        data = json.loads(details["text"])
        assert data["image_token"] == "tok"
        assert "download_url" not in data
        assert None not in data.values()

    def test_read_missing_resource(self, handlers) -> None:
        with pytest.raises(NotFoundError):
            handlers.read_resource(resource_uri("nope"))
