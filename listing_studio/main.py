from fastapi import FastAPI, Request, status, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Optional
import time
from listing_studio.config import get_settings
from listing_studio.dependencies import Services, get_services
from listing_studio.routes import generations, credits, payments
from listing_studio.utils.logger import get_logger, log_to_database, set_log_sink
from listing_studio.utils.exceptions import BaseAPIException
from listing_studio.utils.responses import error_response

# Initialize settings and logger
settings = get_settings()
logger = get_logger(__name__)

API_VERSION = "1.0.0"


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built collaborators; built from settings on first use when omitted
    """
    app = FastAPI(
        title="Listing Studio API",
        description="AI-generated marketplace listing images, paid per image with credits",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.services = services
    if services is not None:
        set_log_sink(services.system_logs.insert_log)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url] if settings.app_env == "production" else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==============================================================
    # Middleware
    # ==============================================================
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time to response headers."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # ==============================================================
    # Exception Handlers
    # ==============================================================
    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.detail),
            headers=exc.headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_response("Validation error", jsonable_errors(exc))
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(f"Unexpected error: {str(exc)}")
        await log_to_database("api", "error", f"Unexpected error: {str(exc)}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response(
                "Internal server error",
                str(exc) if settings.app_env == "development" else None)
        )

    # ==============================================================
    # Routers
    # ==============================================================
    app.include_router(generations.router, prefix="/api/v1")
    app.include_router(credits.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")

    # ==============================================================
    # Health Check Endpoints
    # ==============================================================
    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "success": True,
            "message": "Listing Studio API",
            "version": API_VERSION,
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check():
        """Basic health check."""
        return {
            "success": True,
            "status": "healthy",
            "environment": settings.app_env
        }

    @app.get("/api/v1/health")
    async def api_health_check(services: Services = Depends(get_services)):
        """API + Database health check."""
        try:
            services.pipeline.list_generations("00000000-0000-0000-0000-000000000000", limit=1)

            return {
                "success": True,
                "status": "healthy",
                "database": "connected",
                "environment": settings.app_env
            }
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "success": False,
                    "status": "unhealthy",
                    "database": "disconnected",
                    "error": str(e)
                }
            )

    # ==============================================================
    # Startup / Shutdown Events
    # ==============================================================
    @app.on_event("startup")
    async def startup_event():
        """Run on app startup."""
        logger.info(f"Starting Listing Studio API v{API_VERSION} - Environment: {settings.app_env}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on app shutdown."""
        logger.info("Shutting down Listing Studio API")

    return app


def jsonable_errors(exc: RequestValidationError):
    """Validation errors without the raw input, which may hold image data."""
    return [{key: value for key, value in error.items() if key in ("loc", "msg", "type")}
            for error in exc.errors()]


app = create_app()

# ==============================================================
# Entry Point
# ==============================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "listing_studio.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "development"
    )
