"""Main entry point for the keyserver service."""

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import make_asgi_app
from starlette.status import HTTP_401_UNAUTHORIZED

from keyserver.rotation.loop import PrometheusOutcomeSink, RotationLoop
from keyserver.utils.config import get_settings
from keyserver.utils.logging_utils import redact_sensitive_data, setup_json_logging

settings = get_settings()
setup_json_logging(settings.log_level, settings.log_output, settings.log_file_path)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """
    Start the rotation loop with the service and stop it on shutdown.

    Args:
        app: The FastAPI application instance

    Yields:
        None
    """
    logger.info("Starting keyserver...")
    rotation_loop = None
    task = None
    if settings.rotation_enabled:
        try:
            fleet = settings.fleet_config()
        except ValueError as e:
            logger.error(f"Config issue, rotation loop not started: {e}")
        else:
            rotation_loop = RotationLoop(
                fleet,
                PrometheusOutcomeSink(),
                period_seconds=settings.cycle_period_seconds,
            )
            task = asyncio.create_task(rotation_loop.run())
    app.state.rotation_loop = rotation_loop

    yield

    logger.info("Shutting down keyserver...")
    if rotation_loop is not None:
        rotation_loop.stop()
        await task


class MetricsAuthMiddleware:
    def __init__(self, app, username, password):
        self.app = app
        self.username = username
        self.password = password

    async def _reject(self, scope, receive, send):
        response = Response(
            status_code=HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Basic"},
        )
        await response(scope, receive, send)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            headers = dict(scope.get("headers") or [])
            auth_header = headers.get(b"authorization")
            if not auth_header or not auth_header.startswith(b"Basic "):
                await self._reject(scope, receive, send)
                return
            try:
                encoded = auth_header.split(b" ", 1)[1]
                decoded = base64.b64decode(encoded).decode()
                username, password = decoded.split(":", 1)
            except (ValueError, UnicodeDecodeError):
                await self._reject(scope, receive, send)
                return
            if username != self.username or password != self.password:
                await self._reject(scope, receive, send)
                return
        await self.app(scope, receive, send)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application
    """
    app = FastAPI(
        title="Keyserver",
        description="Fleet-wide key-chain rotation for Junos devices",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.rotation_loop = None

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Health status
        """
        logger.info("Health check endpoint called", extra={"endpoint": "/health"})
        return {"status": "healthy", "service": "keyserver"}

    @app.get("/status")
    async def rotation_status(request: Request) -> Dict[str, Any]:
        """
        Report the most recent rotation cycle.

        Returns:
            dict: Loop state and the last cycle report, if any
        """
        rotation_loop = request.app.state.rotation_loop
        if rotation_loop is None:
            return {"status": "disabled", "last_cycle": None}
        report = rotation_loop.last_report
        return {
            "status": "stopped" if rotation_loop.stopped else "running",
            "last_cycle": report.model_dump(mode="json") if report else None,
        }

    # Mount the Prometheus metrics endpoint, behind basic auth when configured
    metrics_app = make_asgi_app()
    if settings.metrics_user and settings.metrics_pass:
        metrics_app = MetricsAuthMiddleware(metrics_app, settings.metrics_user, settings.metrics_pass.get_secret_value())
    app.mount("/metrics", metrics_app)

    # Global exception handler to prevent leaking sensitive data
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        detail = str(exc)
        if isinstance(exc, HTTPException):
            detail = exc.detail
        safe_detail = redact_sensitive_data(detail) if isinstance(detail, (dict, list)) else detail
        return JSONResponse(
            status_code=getattr(exc, 'status_code', 500),
            content={
                "status": "error",
                "message": safe_detail,
            },
        )

    return app


app = create_app()


def run() -> None:
    """Serve the app and its rotation loop; the `keyserver` console script."""
    import uvicorn

    uvicorn.run(
        "keyserver.main:app",
        host="0.0.0.0",
        port=settings.metrics_port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    run()
