"""Main FastAPI application"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import logging
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from account_api.api.v1 import auth, users
from account_api.config import Settings, get_settings
from account_api.core.database import Database
from account_api.core.exceptions import BaseAPIException
from account_api.schemas.response import ErrorResponse, HealthResponse
from account_api.services.media_service import MediaService
from account_api.services.token_service import TokenService
from account_api.services.user_service import UserService

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "account_api_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "account_api_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)


def configure_logging(settings: Settings) -> None:
    """Configure root logging - ensure log directory exists"""
    log_file = settings.get_log_file()
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def _error_body(request: Request, error: str, details=None) -> dict:
    return ErrorResponse(
        error=error,
        details=details or {},
        path=request.url.path,
    ).model_dump()


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy to HTTP responses"""

    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions"""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"API Exception: {exc.message}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method
            }
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        logger.warning(
            f"Validation error: {errors}",
            extra={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(request, "Validation failed", errors)
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle database errors"""
        logger.error(
            f"Database error: {exc}",
            exc_info=exc,
            extra={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "A database error occurred. Please try again later.")
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions"""
        logger.critical(
            f"Unhandled exception: {exc}",
            exc_info=exc,
            extra={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "An unexpected error occurred.")
        )


def create_app(
    settings: Optional[Settings] = None,
    *,
    media_service: Optional[MediaService] = None,
) -> FastAPI:
    """
    Build the application and its services

    Args:
        settings: Configuration; read from the environment when omitted
        media_service: Media client; a Cloudinary client is built when omitted

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    configure_logging(settings)

    database = Database(settings)
    token_service = TokenService(settings)
    media_service = media_service or MediaService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.validate_security_settings()
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        try:
            database.init_db()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise
        yield
        database.dispose()
        logger.info(f"Shutting down {settings.APP_NAME}")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.token_service = token_service
    app.state.user_service = UserService(token_service, media_service)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_headers_and_timing(request: Request, call_next):
        """Add security headers and log slow requests"""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Request-ID"] = request_id

        REQUEST_COUNT.labels(request.method, request.url.path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(request.method, request.url.path).observe(duration)

        if duration > 1.0:
            logger.warning(
                "Slow request: %s %s took %.2fs request_id=%s",
                request.method,
                request.url.path,
                duration,
                request_id,
            )

        return response

    register_exception_handlers(app)

    @app.get(f"{settings.API_PREFIX}/healthcheck", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""
        db_ok = True
        db_error = None
        try:
            database.ping()
        except Exception as exc:
            db_ok = False
            db_error = str(exc)

        return HealthResponse(
            status="OK" if db_ok else "degraded",
            version=settings.APP_VERSION,
            database={"ok": db_ok, "error": db_error},
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Include routers
    users_prefix = f"{settings.API_PREFIX}/users"
    app.include_router(auth.router, prefix=users_prefix, tags=["Authentication"])
    app.include_router(users.router, prefix=users_prefix, tags=["Users"])

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "account_api.main:create_app",
        factory=True,
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.DEBUG,
        workers=1 if _settings.DEBUG else _settings.WORKERS
    )
