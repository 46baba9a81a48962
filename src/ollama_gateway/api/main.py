"""Ollama Gateway — FastAPI Application.

This module is the single entry point for the gateway server.  It defines the
``create_app()`` factory, the module-level ``app`` instance, all REST routes,
and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Access control** is delegated to
  :class:`~ollama_gateway.core.access.ProjectRegistry` (``projects.json``).
  Generation callers authenticate with ``X-API-Key``; model-management
  routes require ``Authorization: Bearer <admin_token>``.
- **Request normalization** accepts JSON or form bodies
  (:mod:`ollama_gateway.api.normalizer`).
- **Upstream calls** go through one
  :class:`~ollama_gateway.core.dispatcher.UpstreamDispatcher` whose
  ``httpx.AsyncClient`` is created in the lifespan and closed on shutdown.
- **Streaming replies** are relayed chunk-by-chunk
  (:mod:`ollama_gateway.api.relay`).
- **Errors** are all :class:`~ollama_gateway.core.errors.GatewayError`
  subclasses, turned into ``{"error", "message"}`` bodies by one handler.

Endpoints
---------
========  ==============================  ==================================
Method    Path                            Purpose
========  ==============================  ==================================
GET       ``/api/health``                 Liveness check
GET       ``/api/validate_key``           Check a project API key
POST      ``/api/ollama/generate``        Generate text (JSON or stream)
GET       ``/api/ollama/models``          Installed engine models (admin)
GET       ``/api/ollama/models/running``  Loaded engine models (admin)
POST      ``/api/ollama/models/pull``     Pull a model, streamed (admin)
DELETE    ``/api/ollama/models/delete``   Delete a model (admin)
========  ==============================  ==================================

Usage
-----
CLI (installed entry point)::

    ollama-gateway

Direct invocation::

    python -m ollama_gateway.api.main
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
import httpx
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ollama_gateway import __version__
from ollama_gateway.api.models import (
    ErrorResponse,
    GenerateBody,
    ModelNameRequest,
    ValidateKeyResponse,
)
from ollama_gateway.api.normalizer import normalize_request
from ollama_gateway.api.relay import RelayPassthrough
from ollama_gateway.core.access import ProjectRegistry, authorize, raise_for_decision
from ollama_gateway.core.config import GatewayConfig, config
from ollama_gateway.core.dispatcher import UpstreamDispatcher
from ollama_gateway.core.errors import AuthError, GatewayError, ValidationError

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

# ---------------------------------------------------------------------------
# Application lifecycle: upstream client setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the dispatcher and project registry for the app's lifetime.

    On startup:
        Builds an ``httpx.AsyncClient`` (unless one was injected through
        :func:`create_app`), wraps it in an :class:`UpstreamDispatcher`, and
        stores both the dispatcher and a :class:`ProjectRegistry` on
        ``app.state``.

    On shutdown:
        Closes the client if this lifespan created it.  Injected clients are
        left to their owner.
    """
    settings: GatewayConfig = app.state.settings
    injected: httpx.AsyncClient | None = app.state.http_client
    client = injected or httpx.AsyncClient()

    app.state.dispatcher = UpstreamDispatcher.from_config(client, settings)
    app.state.registry = ProjectRegistry(settings.projects_file)
    logger.info(f"Gateway ready: upstream={settings.ollama_base_url}")

    try:
        yield
    finally:
        if injected is None:
            await client.aclose()
            logger.info("Upstream HTTP client closed on shutdown.")


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_dispatcher(request: Request) -> UpstreamDispatcher:
    return request.app.state.dispatcher


def get_registry(request: Request) -> ProjectRegistry:
    return request.app.state.registry


async def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> str:
    """Return the caller's project API key.

    Raises:
        AuthError: If the ``X-API-Key`` header is missing or blank.
    """
    if not x_api_key or not x_api_key.strip():
        raise AuthError("API key not found in request", title="Missing API key")
    return x_api_key.strip()


async def require_admin(
    request: Request,
    authorization: str | None = Header(default=None),
) -> None:
    """Guard model-management routes with the configured admin token.

    Raises:
        AuthError: If no admin token is configured, the header is missing or
            malformed, or the token does not match.
    """
    expected = request.app.state.settings.admin_token
    if not expected:
        raise AuthError("Admin access is not configured", title="Unauthorized")
    if not authorization:
        raise AuthError("Missing authorization header", title="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Invalid authorization header format", title="Unauthorized")
    if not secrets.compare_digest(token.strip().encode(), expected.encode()):
        raise AuthError("Invalid or expired token", title="Unauthorized")


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict:
    """Liveness check."""
    return {"status": "ok", "version": __version__}


@router.get("/validate_key", response_model=ValidateKeyResponse, responses=_ERROR_RESPONSES)
async def validate_key(
    api_key: str = Depends(require_api_key),
    registry: ProjectRegistry = Depends(get_registry),
) -> dict:
    """Check whether an API key belongs to an active project.

    Returns:
        ``{"valid": true, "project": {"id", "name"}}``.

    Raises:
        AuthError: 401 for an unknown key.
        AuthorizationError: 403 for an inactive project.
    """
    project = await anyio.to_thread.run_sync(registry.lookup, api_key)
    raise_for_decision(authorize(project))
    return {"valid": True, "project": {"id": project.id, "name": project.name}}


@router.post(
    "/ollama/generate",
    responses=_ERROR_RESPONSES,
    openapi_extra={
        "requestBody": {
            "content": {
                "application/json": {"schema": GenerateBody.model_json_schema()},
                "multipart/form-data": {
                    "schema": {
                        "type": "object",
                        "properties": {
                            "model": {"type": "string"},
                            "prompt": {"type": "string"},
                            "stream": {"type": "string"},
                            "attachments": {
                                "type": "array",
                                "items": {"type": "string", "format": "binary"},
                            },
                        },
                        "required": ["model", "prompt"],
                    }
                },
            }
        }
    },
)
async def generate(
    request: Request,
    api_key: str = Depends(require_api_key),
    registry: ProjectRegistry = Depends(get_registry),
    dispatcher: UpstreamDispatcher = Depends(get_dispatcher),
):
    """Generate text with the engine on behalf of a project.

    The checks run in this order and each fails fast, before any upstream
    call:

    1. The API key must belong to a project (401) that is active (403).
    2. The body must normalize to a request with ``model`` and ``prompt``
       (400).
    3. The requested model must be assigned to the project (403).

    ``projects.json`` is read once per request, in a worker thread; the
    model check reuses the project found in step 1.

    With ``stream=true`` the engine's NDJSON is relayed as it arrives, with
    the engine's content type.  Otherwise the single parsed record is
    returned as JSON.

    Raises:
        UpstreamUnavailable: 502 when the engine cannot be reached.
        UpstreamError: The engine's own status when it rejects the call.
    """
    project = await anyio.to_thread.run_sync(registry.lookup, api_key)
    raise_for_decision(authorize(project))
    gen_request = await normalize_request(request)
    raise_for_decision(authorize(project, gen_request.model), gen_request.model)

    if gen_request.stream:
        upstream = await dispatcher.open_stream(gen_request)
        return RelayPassthrough(upstream).to_response()

    record = await dispatcher.generate(gen_request)
    return record.model_dump(exclude_none=True)


@router.get("/ollama/models", dependencies=[Depends(require_admin)], responses=_ERROR_RESPONSES)
async def list_models(dispatcher: UpstreamDispatcher = Depends(get_dispatcher)) -> dict:
    """Return the models installed on the engine."""
    return await dispatcher.list_models()


@router.get(
    "/ollama/models/running", dependencies=[Depends(require_admin)], responses=_ERROR_RESPONSES
)
async def list_running_models(dispatcher: UpstreamDispatcher = Depends(get_dispatcher)) -> dict:
    """Return the models currently loaded by the engine."""
    return await dispatcher.running_models()


@router.post("/ollama/models/pull", dependencies=[Depends(require_admin)], responses=_ERROR_RESPONSES)
async def pull_model(
    req: ModelNameRequest,
    dispatcher: UpstreamDispatcher = Depends(get_dispatcher),
):
    """Pull a model; the engine's NDJSON progress is relayed as it arrives."""
    if not req.name.strip():
        raise ValidationError("Model name is required")
    upstream = await dispatcher.pull_model(req.name.strip())
    return RelayPassthrough(upstream).to_response()


@router.delete(
    "/ollama/models/delete", dependencies=[Depends(require_admin)], responses=_ERROR_RESPONSES
)
async def delete_model(
    req: ModelNameRequest,
    dispatcher: UpstreamDispatcher = Depends(get_dispatcher),
) -> dict:
    """Delete a model from the engine."""
    if not req.name.strip():
        raise ValidationError("Model name is required")
    return await dispatcher.delete_model(req.name.strip())


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: GatewayConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        http_client: Upstream HTTP client to use instead of creating one.
            The caller keeps ownership and must close it.

    Returns:
        The configured application.
    """
    settings = settings or config

    app = FastAPI(
        title="Ollama Gateway",
        description="API-key gated relay for Ollama text generation.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_client = http_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~ollama_gateway.core.config.config`
    (``OLLAMA_GATEWAY_SERVER_HOST``, ``OLLAMA_GATEWAY_SERVER_PORT``,
    ``OLLAMA_GATEWAY_LOG_LEVEL``).  Defaults to ``0.0.0.0:8080``.

    This function is registered as the ``ollama-gateway`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "ollama_gateway.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
