"""imgtransform - FastAPI Application.

This module defines the FastAPI ``app`` instance, the HTTP routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
The application is stateless between requests:

- **Configuration** comes from :class:`~imgtransform.core.config.TransformConfig`.
- **Source files** are read from ``config.public_dir`` through a
  :class:`~imgtransform.core.source.SourceResolver`.
- **Transformation** is delegated to one of two
  :class:`~imgtransform.core.pipeline.TransformPipeline` strategies, one per
  route, built once in :func:`create_app` and stored on ``app.state``.
- **Instrumentation** uses a fresh :class:`~imgtransform.core.memory.MemoryProbe`
  per request.

Endpoints
---------
========  ===============  ===========================================
Method    Path             Purpose
========  ===============  ===========================================
GET       ``/img``         Transform with the buffered strategy
GET       ``/img-stream``  Transform with the streaming strategy
GET       ``/health``      Liveness and current process memory
========  ===============  ===========================================

Both transform routes accept ``src`` (required), ``w``, ``h`` and
``format`` (``webp`` or ``avif``) query parameters.

Usage
-----
CLI (installed entry point)::

    imgtransform

Direct invocation::

    python -m imgtransform.api.main
"""

from __future__ import annotations

import logging
from functools import partial

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from imgtransform import __version__
from imgtransform.api.responses import build_response
from imgtransform.core.codec import EncoderSettings
from imgtransform.core.config import TransformConfig, config
from imgtransform.core.memory import MemoryProbe, MemorySnapshot, process_memory_snapshot
from imgtransform.core.pipeline import BufferedPipeline, StreamingPipeline
from imgtransform.core.service import transform_image
from imgtransform.core.source import SourceResolver

logger = logging.getLogger(__name__)


def create_app(
    cfg: TransformConfig | None = None,
    *,
    memory_snapshot: MemorySnapshot = process_memory_snapshot,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        cfg: Configuration to use.  Defaults to the global ``config``.
        memory_snapshot: Callable returning current process memory in bytes.
            Tests pass a deterministic stub.

    Returns:
        The configured application.
    """
    cfg = cfg or config

    app = FastAPI(
        title="imgtransform",
        description="On-demand image resizing and transcoding.",
        version=__version__,
    )

    # The demo page is served from a different origin during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Memory-Usage"],
    )

    encoder = EncoderSettings(webp_quality=cfg.webp_quality, avif_quality=cfg.avif_quality)
    app.state.resolver = SourceResolver(cfg.public_dir)
    app.state.memory_snapshot = memory_snapshot
    app.state.buffered_pipeline = BufferedPipeline(encoder)
    app.state.streaming_pipeline = StreamingPipeline(
        encoder,
        chunk_size=cfg.stream_chunk_size,
        queue_size=cfg.stream_queue_size,
    )
    app.state.buffered_probe = partial(
        MemoryProbe, memory_snapshot, collect_garbage=cfg.gc_before_buffered_snapshot
    )
    app.state.streaming_probe = partial(
        MemoryProbe, memory_snapshot, collect_garbage=cfg.gc_before_streaming_snapshot
    )

    logger.info(f"imgtransform {__version__} serving images from {app.state.resolver.root}")

    # -----------------------------------------------------------------------
    # Routes.
    # -----------------------------------------------------------------------

    @app.get("/img")
    async def transform_buffered(request: Request) -> Response:
        """Transform an image, materialising source and result in memory.

        Returns:
            The image with ``Content-Type`` and ``X-Memory-Usage`` headers,
            or a plain-text 400/404/500 response.
        """
        state = request.app.state
        outcome = await transform_image(
            request.query_params,
            pipeline=state.buffered_pipeline,
            resolver=state.resolver,
            probe=state.buffered_probe(),
        )
        return build_response(outcome)

    @app.get("/img-stream")
    async def transform_streaming(request: Request) -> Response:
        """Transform an image, streaming bytes from file to client.

        Returns:
            A chunked image response, or a plain-text 400/404/500 response.
        """
        state = request.app.state
        outcome = await transform_image(
            request.query_params,
            pipeline=state.streaming_pipeline,
            resolver=state.resolver,
            probe=state.streaming_probe(),
        )
        return build_response(outcome)

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """Report liveness and the current process memory figure."""
        return {
            "status": "healthy",
            "version": __version__,
            "memory": {"rss_bytes": request.app.state.memory_snapshot()},
        }

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~imgtransform.core.config.config`
    (``IMGTRANSFORM_SERVER_HOST``, ``IMGTRANSFORM_SERVER_PORT``,
    ``IMGTRANSFORM_LOG_LEVEL``).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``imgtransform`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "imgtransform.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
