"""Response content builders shared by the tool handlers."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from ai_image_mcp.remote.schemas import ModelConfig, OptimizationResult
from ai_image_mcp.storage.record_store import LocalRecord, resource_uri


PREVIEW_LENGTH = 60


def text_content(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_content(data: str, mime_type: str) -> dict[str, Any]:
    return {"type": "image", "data": data, "mimeType": mime_type}


def prompt_preview(prompt: str, length: int = PREVIEW_LENGTH) -> str:
    if len(prompt) <= length:
        return prompt
    return prompt[: length - 3] + "..."


def parameter_lines(params: Mapping[str, Any], indent: str = "- ") -> list[str]:
    """`key: value` bullet lines, skipping empty values."""
    return [f"{indent}{key}: {value}" for key, value in params.items() if value is not None and value != ""]


def record_summary_lines(record: LocalRecord) -> list[str]:
    lines = [
        f"- Resource URI: {resource_uri(record.id)}",
        f"- Created: {record.created_at}",
        f"- Model: {record.model}",
    ]
    if record.image_token:
        lines.append(f"- Image Token: {record.image_token}")
    if record.download_url:
        lines.append(f"- Download URL: {record.download_url}")
    return lines


def generation_summary(title: str, request: Mapping[str, Any], job_id: str | None, record: LocalRecord) -> str:
    lines = [
        title,
        "",
        "**Parameters:**",
        f"- Prompt: {request.get('prompt')}",
        f"- Model: {request.get('model')}",
        f"- Steps: {request.get('steps')}",
        f"- Guidance scale: {request.get('guidance_scale')}",
        f"- Size: {request.get('width')}x{request.get('height')}",
        f"- Seed: {request.get('seed')}",
        f"- Job ID: {job_id or 'N/A'}",
    ]
    lines.extend(record_summary_lines(record))
    return "\n".join(lines)


def optimization_lines(result: OptimizationResult, fallback_model: str | None = None) -> list[str]:
    suggested = result.suggested_model or result.model or fallback_model or "unspecified"
    lines = [
        f"**Optimized prompt:**\n{result.prompt}",
        "",
        f"**Negative prompt:**\n{result.negative_prompt or 'none'}",
        "",
        f"**Suggested model:** {suggested}",
    ]
    if result.reason:
        lines.extend(["", f"**Reason:**\n{result.reason}"])

    recommended = result.recommended or {
        "guidance_scale": result.guidance_scale,
        "steps": result.steps,
        "width": result.width,
        "height": result.height,
        "seed": result.seed,
    }
    params = parameter_lines(recommended)
    if params:
        lines.extend(["", "**Recommended parameters:**", *params])
    return lines


def model_list_text(models: Mapping[str, ModelConfig]) -> str:
    entries = [
        f"- **{name}**: {config.description or 'no description'}"
        + (f" ({config.repo})" if config.repo else "")
        for name, config in models.items()
    ]
    return "\n".join(
        ["Available image generation models:", "", *entries, "", f"{len(models)} model(s) available."]
    )


def model_detail_text(name: str, config: ModelConfig) -> str:
    lines = [
        f"**Model:** {name}",
        f"**Repository:** {config.repo or 'n/a'}",
        f"**Description:** {config.description or 'n/a'}",
        f"**Recommended scheduler:** {config.recommended_scheduler or 'n/a'}",
        f"**Recommended guidance scale:** {config.recommended_guidance_scale if config.recommended_guidance_scale is not None else 'n/a'}",
        f"**Prompt limit:** {config.prompt_token_limit if config.prompt_token_limit is not None else 'n/a'} tokens",
    ]
    for label, value in (
        ("Recommended prompt", config.recommended_prompt),
        ("Recommended negative prompt", config.recommended_negative_prompt),
        ("Parameter guideline", config.recommended_parameter_guideline),
    ):
        if value:
            lines.extend(["", f"**{label}:**", value])
    return "\n".join(lines)


def search_results_text(records: Iterable[LocalRecord], total: int) -> str:
    records = list(records)
    if not records:
        return "No cached images matched the search."
    lines = [f"Found {total} cached image(s); showing {len(records)}:", ""]
    for index, record in enumerate(records, start=1):
        lines.append(f"{index}. {record.created_at} | {record.model}")
        lines.append(f"   Prompt: {prompt_preview(record.prompt)}")
        lines.append(f"   URI: {resource_uri(record.id)}")
        if record.image_token:
            lines.append(f"   Image Token: {record.image_token}")
    return "\n".join(lines)


def json_text(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)
