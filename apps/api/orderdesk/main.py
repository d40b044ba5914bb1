from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import (
    InvalidOrderStateError,
    LimitExceededError,
    NotFoundError,
    OfferNotApplicableError,
    OrderDeskError,
    UnsupportedEventError,
)
from orderdesk.routers.auth import router as auth_router
from orderdesk.routers.health import router as health_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Restaurant order management API - Event-sourced orders with time travel, and a discount engine for offers and promotions.",
    version="0.1.0",
)

# Domain exception -> HTTP status
ERROR_STATUS = {
    InvalidOrderStateError: 409,
    LimitExceededError: 409,
    OfferNotApplicableError: 422,
    UnsupportedEventError: 422,
    NotFoundError: 404,
}


@app.exception_handler(OrderDeskError)
async def orderdesk_exception_handler(request: Request, exc: OrderDeskError):
    """Map business-rule violations to form-style JSON errors."""
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    content = {"detail": exc.message, "code": exc.code}
    if exc.context:
        content["context"] = exc.context
    if isinstance(exc, OfferNotApplicableError):
        content["issues"] = exc.issues
        content["suggestions"] = exc.suggestions

    logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content)


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

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from orderdesk.routers.items import router as items_router
from orderdesk.routers.offers import router as offers_router
from orderdesk.routers.orders import router as orders_router

app.include_router(health_router)
app.include_router(auth_router, prefix="/api")
app.include_router(items_router, prefix="/api")
app.include_router(offers_router, prefix="/api")
app.include_router(orders_router, prefix="/api")

@app.get("/")
def read_root():
    return {
        "message": "Welcome to OrderDesk API",
        "docs": "/docs",
        "health": "/health"
    }
