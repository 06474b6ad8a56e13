"""FastAPI application factory.

Lifespan
--------
On startup the app initialises the schema once.  Requests then open their own
SQLite connection through :func:`depthwise.api.deps.get_db`, so each request
is one unit of work.

Routers
-------
    /create-session, /expand-node, /migrate-session   tree growth
    /sessions, /share                                 reading, deleting, sharing
    /user/usage, /health                              account usage and liveness

Errors
------
Every :class:`~depthwise.errors.DepthwiseError` is returned as
``{"error", "code", ...}`` with its status code.  Request validation
failures become ``400 INVALID_INPUT``; anything else is logged and returned
as a generic ``500 SERVER_ERROR``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from depthwise import __version__
from depthwise.api.ratelimit import SlidingWindowLimiter
from depthwise.api.routers import explore as explore_router
from depthwise.api.routers import sessions as sessions_router
from depthwise.api.routers import usage as usage_router
from depthwise.config import configure_logging, settings
from depthwise.db import get_connection, init_db
from depthwise.errors import DepthwiseError, InvalidInput, ServerError
from depthwise.generator.client import ContentGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create or migrate the schema before the first request."""
    conn = get_connection(app.state.db_path)
    try:
        init_db(conn)
    finally:
        conn.close()
    logger.info("Depthwise API ready (db=%s)", app.state.db_path)
    yield


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def depthwise_error_handler(request: Request, exc: DepthwiseError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request body"
    return await depthwise_error_handler(request, InvalidInput(message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=ServerError().to_payload())


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_app(
    generator: Optional[ContentGenerator] = None,
    db_path: Optional[Path] = None,
    rate_limiter: Optional[SlidingWindowLimiter] = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        generator: Content generator; defaults to the configured LLM provider,
            built on first use.
        db_path: SQLite file; defaults to ``settings.db_path``.
        rate_limiter: Request limiter; defaults to one sized by settings.
    """
    configure_logging()
    app = FastAPI(
        title="Depthwise API",
        description=(
            "Grow an explorable tree of AI-generated explanations from one "
            "question: session creation, node expansion, anonymous-to-account "
            "migration, sharing and usage."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.db_path = db_path or settings.db_path
    app.state.generator = generator
    app.state.rate_limiter = rate_limiter or SlidingWindowLimiter(settings.rate_limit_window)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DepthwiseError, depthwise_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(explore_router.router, tags=["explore"])
    app.include_router(sessions_router.router, tags=["sessions"])
    app.include_router(usage_router.router, tags=["usage"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn depthwise.api.app:app --reload
app = create_app()
