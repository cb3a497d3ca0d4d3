"""Runtime configuration for the remote image service and the local cache.

Architectural role:
    Centralizes endpoint selection, credential lookup and storage location for
    `remote.client`, `storage.record_store` and the tool handlers.

Resolution model:
    `load_config()` is the only place that reads the process environment. It
    returns an immutable `GatewayConfig` which entrypoints pass into
    constructors. No module reads environment variables at import time.

Endpoint layout:
    The remote service deploys one HTTP function per operation. URLs are built
    from `endpoint_template` (`{endpoint}` placeholder) unless a per-endpoint
    override `AI_IMAGE_API_URL_<NAME>` is set.

Failure behavior:
    Non-numeric numeric settings raise `InvalidRequestError`. Missing key
    material is represented as `None`; requests are then sent unauthenticated.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from dotenv import load_dotenv

from ai_image_mcp.errors import InvalidRequestError


DEFAULT_ENDPOINT_TEMPLATE = "https://mako10k--ai-image-api-{endpoint}.modal.run"
DEFAULT_JOB_MANAGER_URL = "http://localhost:8099"
DEFAULT_KEY_FILE = "config/ai_image_api.key"
DEFAULT_STORAGE_ROOT = os.path.join("~", ".cache", "ai-image-api-mcp")

# Checked in order; first non-empty value wins.
API_KEY_ENV_VARS = ("AI_IMAGE_API_KEY", "IMAGE_API_KEY", "MODAL_API_KEY")

ENDPOINTS = (
    "text-to-image",
    "image-to-image",
    "image-to-image-job",
    "upscale-image",
    "caption-image",
    "upload-image",
    "upload-image-url",
    "get-image",
    "update-image-metadata",
    "job-status",
    "job-result",
    "get-model-configs",
    "optimize-params",
)


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable runtime configuration.

    Attributes:
        endpoint_template: URL template containing `{endpoint}`.
        endpoint_overrides: Explicit URL per endpoint name.
        job_manager_url: Base URL of the optional job manager.
        api_key: Pre-shared key forwarded as a bearer token.
        request_timeout_seconds: Per-request HTTP timeout.
        storage_root: Root directory of the local record store.
        log_level: Logging level name for entrypoints.
        debug: Enables verbose request logging (never includes payloads).
    """

    endpoint_template: str = DEFAULT_ENDPOINT_TEMPLATE
    endpoint_overrides: Mapping[str, str] = field(default_factory=dict)
    job_manager_url: str | None = DEFAULT_JOB_MANAGER_URL
    api_key: str | None = None
    request_timeout_seconds: float = 300.0
    storage_root: str = DEFAULT_STORAGE_ROOT
    log_level: str = "INFO"
    debug: bool = False

    def endpoint_url(self, endpoint: str) -> str:
        """Return the URL of one remote function."""
        override = self.endpoint_overrides.get(endpoint)
        if override:
            return override
        return self.endpoint_template.format(endpoint=endpoint)

    def optimize_url(self) -> str | None:
        """Return the job-manager optimization URL, or `None` when disabled."""
        if not self.job_manager_url:
            return None
        return f"{self.job_manager_url.rstrip('/')}/api/optimize_params"


def load_key(path: str | None, environ: Mapping[str, str] | None = None) -> str | None:
    """Load the API key from environment variables or a key file.

    Resolution order:
        1. `AI_IMAGE_API_KEY`, `IMAGE_API_KEY`, `MODAL_API_KEY`.
        2. Raw file contents at `path`.

    Returns:
        Key string, or `None` when unavailable.
    """
    env = os.environ if environ is None else environ
    for name in API_KEY_ENV_VARS:
        value = (env.get(name) or "").strip()
        if value:
            return value
    if not path:
        return None
    path = os.path.expanduser(path)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip() or None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise InvalidRequestError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise InvalidRequestError(f"{name} must be positive, got {raw!r}")
    return value


def _endpoint_overrides(env: Mapping[str, str]) -> dict[str, str]:
    overrides = {}
    for endpoint in ENDPOINTS:
        name = "AI_IMAGE_API_URL_" + endpoint.upper().replace("-", "_")
        value = (env.get(name) or "").strip()
        if value:
            overrides[endpoint] = value
    return overrides


def load_config(environ: Mapping[str, str] | None = None, *, use_dotenv: bool = True) -> GatewayConfig:
    """Build a `GatewayConfig` from the environment.

    Args:
        environ: Explicit mapping to read instead of `os.environ`.
        use_dotenv: Load `.env` into the process environment first. Ignored
            when `environ` is given.

    Returns:
        Frozen configuration object.

    Raises:
        InvalidRequestError: On malformed numeric settings or a template
            missing the `{endpoint}` placeholder.
    """
    if environ is None:
        if use_dotenv:
            load_dotenv()
        environ = os.environ

    template = (environ.get("AI_IMAGE_API_ENDPOINT_TEMPLATE") or DEFAULT_ENDPOINT_TEMPLATE).strip()
    if "{endpoint}" not in template:
        raise InvalidRequestError("AI_IMAGE_API_ENDPOINT_TEMPLATE must contain '{endpoint}'")

    job_manager_url = environ.get("AI_IMAGE_JOB_MANAGER_URL", DEFAULT_JOB_MANAGER_URL).strip() or None
    storage_root = (environ.get("AI_IMAGE_API_MCP_STORAGE_ROOT") or "").strip() or DEFAULT_STORAGE_ROOT
    key_file = (environ.get("AI_IMAGE_API_KEY_FILE") or DEFAULT_KEY_FILE).strip()

    return GatewayConfig(
        endpoint_template=template,
        endpoint_overrides=_endpoint_overrides(environ),
        job_manager_url=job_manager_url,
        api_key=load_key(key_file, environ),
        request_timeout_seconds=_env_float(environ, "AI_IMAGE_API_TIMEOUT_SECONDS", 300.0),
        storage_root=os.path.abspath(os.path.expanduser(storage_root)),
        log_level=(environ.get("AI_IMAGE_LOG_LEVEL") or "INFO").strip().upper(),
        debug=environ.get("DEBUG") == "true",
    )
