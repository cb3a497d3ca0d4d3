"""Published tool catalog.

Names, descriptions and input schemas for every tool. Schemas are generated
from the argument models in `tools.arguments`, so validation and the
advertised contract cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ai_image_mcp.tools import arguments as args


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    arguments: type[args.ToolArguments] | None = None

    def input_schema(self) -> dict[str, Any]:
        if self.arguments is None:
            return {"type": "object", "properties": {}}
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema()}


TOOL_DEFINITIONS = (
    ToolDefinition(
        "generate_image",
        "Generate an image from a natural-language prompt using the remote Stable Diffusion service.",
        args.GenerateImageArgs,
    ),
    ToolDefinition(
        "optimize_prompt",
        "Optimize a prompt for image generation and suggest parameters.",
        args.OptimizePromptArgs,
    ),
    ToolDefinition(
        "optimize_and_generate",
        "Optimize a prompt and generate an image from the result in one step.",
        args.OptimizeAndGenerateArgs,
    ),
    ToolDefinition(
        "get_available_models",
        "List the image generation models available on the remote service.",
    ),
    ToolDefinition(
        "get_model_detail",
        "Show the configuration and recommendations of one model.",
        args.ModelDetailArgs,
    ),
    ToolDefinition(
        "search_images",
        "Search locally cached images by prompt keyword, model or creation time.",
        args.SearchImagesArgs,
    ),
    ToolDefinition(
        "get_image_by_token",
        "Look up an image by remote image token, using the local cache first.",
        args.ImageByTokenArgs,
    ),
    ToolDefinition(
        "upload_image",
        "Upload base64 image bytes to the remote service and cache them locally.",
        args.UploadImageArgs,
    ),
    ToolDefinition(
        "upload_image_from_url",
        "Have the remote service download an image URL and register it.",
        args.UploadImageUrlArgs,
    ),
    ToolDefinition(
        "caption_image",
        "Describe an image given by resource URI, image token or inline bytes.",
        args.CaptionImageArgs,
    ),
    ToolDefinition(
        "update_image_metadata",
        "Merge prompt, tags, caption or extra fields into a remote image's metadata.",
        args.UpdateMetadataArgs,
    ),
    ToolDefinition(
        "upscale_image",
        "Upscale an image with a remote job and wait for the result.",
        args.UpscaleImageArgs,
    ),
    ToolDefinition(
        "image_to_image",
        "Transform an existing image guided by a prompt.",
        args.ImageToImageArgs,
    ),
    ToolDefinition(
        "get_job_status",
        "Report the current status of a remote job.",
        args.JobStatusArgs,
    ),
)

TOOLS_BY_NAME = {tool.name: tool for tool in TOOL_DEFINITIONS}


def tool_definitions() -> list[dict[str, Any]]:
    return [tool.to_dict() for tool in TOOL_DEFINITIONS]
