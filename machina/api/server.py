"""FastAPI server factory and application setup."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from machina._package import DESCRIPTION, PACKAGE_NAME, __version__
from machina.api.middleware import LoggingMiddleware
from machina.bootstrap import Application
from machina.config.schemas.server_schema import ServerConfig
from machina.domain.core.exceptions import MachinaError
from machina.infrastructure.logging.logger import get_logger

ERROR_STATUS = {
    "VALIDATION_ERROR": 400,
    "INVALID_CREDENTIALS": 400,
    "INVALID_STATE": 400,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "UNSUPPORTED_PROVIDER": 501,
    "PROVIDER_ERROR": 502,
    "EXECUTION_FAILED": 502,
    "DECRYPTION_FAILED": 500,
    "CONFIGURATION_ERROR": 500,
    "STORAGE_ERROR": 500,
    "INFRASTRUCTURE_ERROR": 500,
    "INTERNAL_ERROR": 500,
}


def _error_response(request: Request, status_code: int, code: str, message: str,
                    details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message, "details": details or {}},
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


def create_fastapi_app(server_config: ServerConfig,
                       application: Application,
                       manage_lifecycle: bool = False) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        server_config: Server configuration
        application: Wired services the routes delegate to
        manage_lifecycle: Start and shut down the application with the server

    Returns:
        Configured FastAPI application
    """
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if manage_lifecycle:
            application.start()
        yield
        if manage_lifecycle:
            application.shutdown()

    app = FastAPI(
        title="Machina Orchestrator API",
        description=DESCRIPTION,
        version=__version__,
        docs_url=server_config.docs_url if server_config.docs_enabled else None,
        redoc_url=server_config.redoc_url if server_config.docs_enabled else None,
        openapi_url=server_config.openapi_url if server_config.docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.application = application

    # Add trusted host middleware if configured
    if server_config.trusted_hosts and server_config.trusted_hosts != ["*"]:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=server_config.trusted_hosts)

    if server_config.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=server_config.cors.origins,
            allow_credentials=server_config.cors.credentials,
            allow_methods=server_config.cors.methods,
            allow_headers=server_config.cors.headers,
        )
        logger.info("CORS middleware enabled")

    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(MachinaError)
    async def machina_error_handler(request: Request, exc: MachinaError):
        status_code = ERROR_STATUS.get(exc.code, 500)
        if status_code >= 500:
            logger.error("Request failed", error_code=exc.code, error=exc.message, path=request.url.path)
        return _error_response(request, status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return _error_response(request, 400, "VALIDATION_ERROR", "Request validation failed", {"errors": errors})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for all unhandled exceptions."""
        logger.exception("Unhandled error", path=request.url.path, error=str(exc))
        return _error_response(request, 500, "INTERNAL_ERROR", "An internal server error occurred")

    @app.get("/health", tags=["System"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": PACKAGE_NAME, "version": __version__}

    @app.get("/info", tags=["System"])
    def info():
        """Service information endpoint."""
        return {
            "service": PACKAGE_NAME,
            "version": __version__,
            "description": DESCRIPTION,
            "environment": application.config.environment,
            "providers": [t.value for t in application.providers.supported_types()],
        }

    _register_routers(app)

    logger.info("FastAPI application created", routes=len(app.routes))
    return app


def _register_routers(app: FastAPI) -> None:
    from machina.api.routers import audit, deployments, machines, providers

    app.include_router(machines.router, prefix="/api/v1")
    app.include_router(deployments.router, prefix="/api/v1")
    app.include_router(providers.router, prefix="/api/v1")
    app.include_router(audit.router, prefix="/api/v1")
