"""Entrypoint adapters.

Composition:
    - `mcp_server`: Tool-protocol server over stdio.
    - `http_api`: FastAPI surface exposing the same tools over HTTP.
    - `cli`: `ai-image-mcp` command line entrypoint.
"""
