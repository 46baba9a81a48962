"""Ollama Gateway — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, request normalization and the streaming relay.

Modules
-------
main
    FastAPI application factory, all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response validation.
normalizer
    JSON / form body normalization into a ``GenerationRequest``.
relay
    Chunk-by-chunk passthrough of upstream NDJSON streams.
"""
