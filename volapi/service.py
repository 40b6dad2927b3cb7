"""
VOLAPI Service Entrypoint

FastAPI application for the volumes API.
Includes all API routers, error rendering, and startup initialization.
"""

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.logging_config import bind_request_id, reset_request_id, setup_logging
from volapi.api import ping, reservations, volumes
from volapi.config import VolapiConfig, load_config
from volapi.context import VolapiContext, build_context
from volapi.errors import InternalError, ValidationError, VolapiError

logger = logging.getLogger(__name__)

API_VERSION_PREFIX = "/v1"
REQUEST_ID_HEADER = "x-request-id"


def _validation_causes(exc: RequestValidationError):
    causes = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        causes.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return causes


def create_app(config: Optional[VolapiConfig] = None, context: Optional[VolapiContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Service configuration, read from the environment when omitted
        context: Prebuilt collaborators; built from config at startup when omitted
    """
    config = config or (context.config if context else load_config())
    app = FastAPI(title="VOLAPI")
    app.state.context = context

    # Include all API routers, unversioned and under the version prefix
    for router in (ping.router, volumes.router, reservations.router):
        app.include_router(router)
        app.include_router(router, prefix=API_VERSION_PREFIX)

    @app.exception_handler(VolapiError)
    def handle_volapi_error(request: Request, exc: VolapiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.middleware("http")
    async def tag_request_id(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = bind_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    def handle_request_validation_error(request: Request, exc: RequestValidationError):
        error = ValidationError(_validation_causes(exc))
        return JSONResponse(status_code=error.status_code, content=error.body())

    @app.exception_handler(Exception)
    def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        error = InternalError(str(exc))
        return JSONResponse(status_code=error.status_code, content=error.body())

    @app.on_event("startup")
    def startup_init():
        """Configure logging and build the service context"""
        setup_logging("volapi", level=config.log_level, log_file=config.log_file)
        if app.state.context is None:
            app.state.context = build_context(config)
        logger.info("VOLAPI service startup complete")

    @app.on_event("shutdown")
    def shutdown_cleanup():
        """Release clients and database connections"""
        if app.state.context is not None:
            app.state.context.close()
        logger.info("VOLAPI service shutdown complete")

    return app


app = create_app()
