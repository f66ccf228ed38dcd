"""
Billing Service

Billing records with computed totals, PDF invoices and email delivery.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import bootstrap_admin
from .core.config import Settings, get_settings
from .core.logging import setup_logging
from .database import Database
from .email_service import EmailService
from .errors import AuthError, BillingServiceError, ValidationError
from .pdf_generator import PDFGenerator
from .routers import all_routers

logger = logging.getLogger(__name__)


def _describe_request_error(error: Dict[str, Any]) -> str:
    location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    if location == ["items"] and error.get("type") == "list_type":
        return "Items must be an array"
    if not location:
        return error.get("msg", "Invalid request")
    return f"{'.'.join(location)}: {error.get('msg')}"


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Every error leaves the API in the {success: false, message, errors?} envelope"""

    @app.exception_handler(BillingServiceError)
    async def billing_service_error_handler(request: Request, exc: BillingServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        content: Dict[str, Any] = {"success": False, "message": exc.message}
        if isinstance(exc, ValidationError):
            content["errors"] = exc.errors
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [_describe_request_error(error) for error in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Validation failed", "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        content = {"success": False, "message": "Internal server error"}
        if settings.DEBUG:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)


def create_app(
    settings: Optional[Settings] = None,
    pdf_generator: Optional[Any] = None,
    email_service: Optional[Any] = None,
) -> FastAPI:
    """Build the application; collaborators can be swapped for test doubles"""
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION}")
        database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        app.state.database = database
        try:
            if settings.AUTO_CREATE_TABLES:
                await database.create_all()
            if settings.BOOTSTRAP_ADMIN:
                await bootstrap_admin(database, settings)
            logger.info(f"{settings.APP_NAME} started successfully")
            yield
        except Exception as e:
            logger.error(f"Failed to start {settings.APP_NAME}: {e}")
            raise
        finally:
            logger.info(f"Shutting down {settings.APP_NAME}")
            await database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Billing records, PDF invoices and email delivery",
        version=settings.VERSION,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "auth", "description": "Registration, login and profile"},
            {"name": "billings", "description": "Billing CRUD, PDF generation and email delivery"},
            {"name": "drafts", "description": "Unsubmitted billing drafts"},
            {"name": "analytics", "description": "Billing analytics and reporting"},
            {"name": "admin", "description": "User administration"},
            {"name": "email", "description": "Email configuration checks"},
        ],
    )

    app.state.settings = settings
    app.state.pdf_generator = pdf_generator or PDFGenerator(settings)
    app.state.email_service = email_service or EmailService(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, settings)

    for router in all_routers:
        app.include_router(router, prefix="/api")

    @app.get("/health", tags=["health"])
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint"""
        return {
            "status": "ok",
            "service": settings.APP_NAME,
            "version": settings.VERSION,
            "emailConfigured": settings.email_configured,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "billing_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
