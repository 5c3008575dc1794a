from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from sr_integration.core.config import get_settings
from sr_integration.core.errors import (
    SRIntegrationError,
    PayloadError,
    SaleValidationError,
    SecurityError,
    SaleNotFoundError,
    InvalidSaleStateError,
    StorageError,
)
from sr_integration.routers.health import router as health_router
from sr_integration.routers.inventory import router as inventory_router
from sr_integration.routers.soft_restaurant import router as soft_restaurant_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Soft Restaurant POS integration - idempotent sale ingestion, recipe-based inventory deduction and low-stock alerts.",
    version="0.1.0",
)

# Integration error -> HTTP status
ERROR_STATUS_CODES = {
    PayloadError: 400,
    SaleValidationError: 422,
    SecurityError: 403,
    SaleNotFoundError: 404,
    InvalidSaleStateError: 409,
    StorageError: 503,
}


@app.exception_handler(SRIntegrationError)
async def integration_error_handler(request: Request, exc: SRIntegrationError):
    """Translate integration errors raised by the services into structured responses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        400,
    )
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
    )


# Global exception handler for unhandled errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected server errors with structured response."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": request.headers.get("X-Request-ID"),
        }
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(soft_restaurant_router, prefix="/api")
app.include_router(inventory_router, prefix="/api")


@app.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health"
    }
