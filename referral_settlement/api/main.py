"""
FastAPI application for referral checkout and settlement.

The lifespan owns the service graph: it creates the schema, wires
``Services`` and runs the cache invalidation worker for as long as the app
serves requests. On shutdown the worker drains its queue and pending
settlement e-mails are awaited before the database engine is disposed.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from referral_settlement import __version__
from referral_settlement.config import Settings, get_settings
from referral_settlement.core.errors import SettlementError
from referral_settlement.database.connection import close_db, get_session_factory, init_db
from referral_settlement.monitoring.logging import bind_request_context, setup_logging

from .dependencies import build_services
from .routes import admin_router, ambassador_router, checkout_router, monitoring_router

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        stripe_test_mode=settings.is_test_mode,
        idempotent_completion=settings.idempotent_completion,
    )

    await init_db()
    services = build_services(settings, get_session_factory())
    services.invalidation_worker.start()
    app.state.services = services

    yield

    logger.info("application_shutdown", pending_invalidations=services.invalidation_worker.pending)
    try:
        await services.shutdown()
    except Exception as e:
        logger.error("services_shutdown_error", error=str(e))
    finally:
        await close_db()


async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """Tag every log line of a request with its id; echo the id as X-Request-ID."""
    request_id = str(uuid.uuid4())
    start_time = time.time()
    bind_request_context(request_id, request.method, request.url.path)

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("request_failed", error=str(e), duration_seconds=time.time() - start_time)
        raise
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed",
        request_id=request_id,
        status_code=response.status_code,
        duration_seconds=time.time() - start_time,
    )
    return response


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    """Domain errors that escape a route keep their status and error code."""
    logger.warning("settlement_error", error_code=exc.error_code, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()["error"]})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Referral Settlement Service",
        description=(
            "Checkout through ambassador referral links, settlement of paid orders, "
            "ambassador revenue and rankings."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    for router in (checkout_router, admin_router, ambassador_router, monitoring_router):
        app.include_router(router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": __version__,
            "environment": settings.app_env,
            "stripe_test_mode": settings.is_test_mode,
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "referral_settlement.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
