#!/usr/bin/env python3
"""
preview-builder: FastAPI service that builds submitted front-end
projects and serves their output as static previews.
"""
import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from preview_builder import __version__
from preview_builder.api.build import router as build_router
from preview_builder.api.health import router as health_router
from preview_builder.api.metrics import router as metrics_router
from preview_builder.config import PreviewConfig, get_config
from preview_builder.core.builder import PreviewBuilder
from preview_builder.core.errors import PreviewError
from preview_builder.core.logging import setup_logging
from preview_builder.core.request_context import get_request_id
from preview_builder.core.request_logging import RequestLoggingMiddleware
from preview_builder.core.sweeper import RetentionSweeper

logger = logging.getLogger("preview.server")


def _error_body(kind: str, message: str, **extra) -> dict:
    error = {
        "kind": kind,
        "message": message,
        "request_id": get_request_id() or "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    error.update({k: v for k, v in extra.items() if v is not None})
    return {"success": False, "error": error}


class PreviewStaticFiles(StaticFiles):
    """Static previews: HTML is always revalidated, assets cached for an hour."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        if path.endswith(".html") or path.endswith("/") or "." not in path.rsplit("/", 1)[-1]:
            response.headers["Cache-Control"] = "no-cache"
        else:
            response.headers["Cache-Control"] = "public, max-age=3600"
        return response


def create_app(config: Optional[PreviewConfig] = None) -> FastAPI:
    """Build the ASGI app around one configuration instance."""
    config = config or get_config()

    config.previews_dir.mkdir(parents=True, exist_ok=True)
    config.logs_dir.mkdir(parents=True, exist_ok=True)

    builder = PreviewBuilder(config)
    sweeper = RetentionSweeper(config, builder.workspaces)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Run cleanup at startup (safe, won't crash)
        try:
            sweeper.sweep_once()
        except Exception:
            logger.exception("startup_sweep_failed")
        sweeper.start()
        logger.info(
            f"server_started previews_dir={config.previews_dir} "
            f"package_manager={config.primary_package_manager}"
        )
        yield
        await sweeper.stop()
        logger.info("server_stopped")

    app = FastAPI(
        title="preview-builder",
        description="Builds front-end projects and serves static previews",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.builder = builder
    app.state.sweeper = sweeper

    @app.exception_handler(PreviewError)
    async def preview_error_handler(request: Request, exc: PreviewError):
        extra = exc.to_dict()
        extra.pop("kind")
        extra.pop("message")
        if config.is_development:
            extra["stack"] = "".join(traceback.format_exception(exc))
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.kind, exc.message, **extra),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        message = first.get("msg", "Invalid request body")
        return JSONResponse(
            status_code=400,
            content=_error_body("validation", f"Validation error: {message}"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            f"unhandled_error path={request.url.path} error={type(exc).__name__}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("internal", "Internal server error"),
        )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(build_router)
    app.include_router(metrics_router)

    app.mount(
        "/preview",
        PreviewStaticFiles(directory=str(config.previews_dir), html=True),
        name="preview",
    )
    return app


# Setup structured JSON logging
_config = get_config()
setup_logging(_config.log_level)

app = create_app(_config)


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.environ.get("LISTEN_HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "3001")),
    )
