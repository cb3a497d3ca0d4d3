"""Tool-protocol adapter for a remote AI image service.

Architectural role:
    Exposes image generation, captioning, upscaling, image-to-image and local
    cache search as protocol "tools". All pixel work happens on the remote
    service; this package only resolves image references, drives remote jobs to
    completion and caches the results on disk.

Package split:
    - `provider_config`: environment-driven, immutable runtime configuration.
    - `errors`: typed failure taxonomy shared by every layer.
    - `remote`: HTTP client and wire schemas for the remote service.
    - `storage`: append-only local record store.
    - `core`: reference resolution, job polling and fallback strategies.
    - `tools`: tool arguments, definitions, handlers and response formatting.
    - `api`: stdio protocol server, HTTP adapter and CLI entrypoints.
"""

__version__ = "1.0.0"
