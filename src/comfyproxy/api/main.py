"""Comfy Proxy - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, its routes, and the ``main()`` CLI function
that launches the uvicorn server.

Architecture
------------
The proxy is a thin HTTP boundary in front of
:class:`~comfyproxy.core.pipeline.WorkflowPipeline`:

- **Configuration** comes from ``COMFY_*`` environment variables
  (:mod:`comfyproxy.core.config`).
- **Outbound HTTP** shares one ``httpx.AsyncClient`` for the lifetime of the
  process.
- **Completion detection** uses either one supervised, shared WebSocket
  (``COMFY_SHARED_CHANNEL=true``, the default) or a WebSocket per request.
- **Failures** of any pipeline step are reported as a single 500 response
  carrying the underlying cause.  Nothing partial is ever returned.

Endpoints
---------
========  ==============  ==============================================
Method    Path            Purpose
========  ==============  ==============================================
POST      ``/generate``   Run a templated workflow, return base64 image
GET       ``/health``     Version, output mode, event channel liveness
========  ==============  ==============================================

Usage
-----
CLI (installed entry point)::

    comfyproxy

Direct invocation::

    python -m comfyproxy.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request

from comfyproxy import __version__
from comfyproxy.api.models import (
    ChannelStatus,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
)
from comfyproxy.core.assets import AssetStager
from comfyproxy.core.client import ComfyClient
from comfyproxy.core.config import ProxyConfig, config
from comfyproxy.core.pipeline import WorkflowPipeline
from comfyproxy.core.progress import EventChannel, ProgressWatcher
from comfyproxy.core.results import build_retriever

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pipeline assembly.
# ---------------------------------------------------------------------------


def build_pipeline(
    cfg: ProxyConfig,
    http: httpx.AsyncClient,
) -> tuple[WorkflowPipeline, EventChannel | ProgressWatcher]:
    """Wire the pipeline components for *cfg*.

    The shared event channel is only used when it is enabled and a WebSocket
    URL is configured.  Without a URL the per-request watcher is used, which
    fails each request with a configuration error before any connection is
    attempted.

    Args:
        cfg: Proxy configuration.
        http: Shared outbound HTTP client.

    Returns:
        Tuple of ``(pipeline, waiter)``.  The caller starts and stops the
        waiter if it is an :class:`EventChannel`.
    """
    client = ComfyClient(cfg, http)
    stager = AssetStager(
        client,
        category=cfg.input_category,
        overwrite=cfg.upload_overwrite,
        default_name=cfg.default_asset_name,
    )

    waiter: EventChannel | ProgressWatcher
    if cfg.shared_channel and cfg.ws_url:
        waiter = EventChannel(cfg)
    else:
        if not cfg.ws_url:
            logger.warning("COMFY_WS_URL is not set; generate requests will fail.")
        waiter = ProgressWatcher(cfg)

    pipeline = WorkflowPipeline(
        client,
        stager,
        waiter,
        build_retriever(cfg, client),
        settle_delay=cfg.settle_delay,
        completion_timeout=cfg.completion_timeout,
    )
    return pipeline, waiter


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Opens the shared ``httpx.AsyncClient``, builds the pipeline, and
        starts the shared event channel when one is used.

    On shutdown:
        Stops the event channel (failing any outstanding waits) and closes
        the HTTP client.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    http = httpx.AsyncClient(timeout=config.http_timeout)
    pipeline, waiter = build_pipeline(config, http)
    if isinstance(waiter, EventChannel):
        waiter.start()
    app.state.pipeline = pipeline
    app.state.waiter = waiter
    logger.info(
        "Comfy proxy ready (engine %s, output mode %s, shared channel %s).",
        config.api_url,
        config.output_mode,
        isinstance(waiter, EventChannel),
    )

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    if isinstance(waiter, EventChannel):
        await waiter.stop()
    await http.aclose()
    logger.info("Comfy proxy stopped.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Comfy Proxy",
    description="Runs templated ComfyUI workflows and returns the resulting image.",
    version=__version__,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.post("/generate", response_model=GenerateResponse)
async def generate(req: GenerateRequest, request: Request) -> GenerateResponse:
    """Run a workflow template with the given values and return the image.

    This endpoint:

    1. Rejects requests missing ``workflow`` or ``workflowValues``.
    2. Stages every URL value as an engine input image.
    3. Substitutes the values into the workflow and submits it.
    4. Waits for the engine to report completion.
    5. Returns the output image as base64.

    Args:
        req: Validated :class:`GenerateRequest` payload.
        request: The incoming request (for access to ``app.state``).

    Returns:
        :class:`GenerateResponse` serialised as ``{"base64Img": "..."}``.

    Raises:
        HTTPException: 400 for a missing field, 500 for any failure while
            running the workflow.
    """
    # --- Validate presence -------------------------------------------------
    if req.workflow is None or req.workflow == "":
        raise HTTPException(status_code=400, detail="Missing workflow")
    if req.workflow_values is None:
        raise HTTPException(status_code=400, detail="Missing workflowValues")

    # --- Run the pipeline --------------------------------------------------
    pipeline: WorkflowPipeline = request.app.state.pipeline
    try:
        base64_img = await pipeline.generate(req.workflow, req.workflow_values)
    except Exception as exc:
        logger.exception("Workflow execution failed")
        raise HTTPException(
            status_code=500,
            detail=f"Error generating comfy: {exc}",
        ) from exc

    return GenerateResponse(base64_img=base64_img)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Report version, output mode and event channel liveness.

    ``event_channel.available`` is the shared channel's connection state, or
    whether a channel URL is configured when channels are per request.
    """
    waiter = request.app.state.waiter
    return HealthResponse(
        version=__version__,
        output_mode=config.output_mode,
        event_channel=ChannelStatus(
            shared=isinstance(waiter, EventChannel),
            available=waiter.available,
        ),
    )


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~comfyproxy.core.config.config` (which
    loads from ``COMFY_SERVER_HOST`` and ``COMFY_SERVER_PORT`` environment
    variables).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``comfyproxy`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "comfyproxy.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
