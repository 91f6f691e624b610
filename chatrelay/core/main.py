"""
Chat relay - Main FastAPI application.

Keeps a realtime connection to Rocket.Chat, auto-acknowledges and closes
support sessions, and exposes a small REST surface for admin calls.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
import logging

from chatrelay.core.config import settings
from chatrelay.core.errors import RocketChatError
from chatrelay.core.api import chat, health
from chatrelay.core.services.relay import start_relay, stop_relay

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan event handlers
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info(
        "Chat relay binding on %s:%s (Rocket.Chat at %s)",
        settings.api_host,
        settings.api_port,
        settings.rocketchat_base_url,
    )
    relay = await start_relay()

    yield

    if relay:
        await stop_relay()
    logger.info("Chat relay shutting down")


# Create FastAPI app
app = FastAPI(
    title="Chat Relay",
    description="Rocket.Chat realtime relay with session auto-replies",
    version="1.0.0",
    lifespan=lifespan,
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests. Health checks at DEBUG to reduce log spam."""
    path = request.url.path
    level = logger.debug if path == "/health" else logger.info
    level("%s %s", request.method, path)
    response = await call_next(request)
    level("%s %s - %s", request.method, path, response.status_code)
    return response


def _error_body(message: str, status_code: int, error: str) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
        "error": error,
        "message": message,
    }


# Error handlers
@app.exception_handler(RocketChatError)
async def rocketchat_exception_handler(request: Request, exc: RocketChatError):
    """Upstream Rocket.Chat failures map to 502."""
    logger.error("RocketChatError: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body(str(exc), status.HTTP_502_BAD_GATEWAY, "Bad Gateway"),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
        ),
    )


# Include routers
app.include_router(health.router)
app.include_router(chat.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chatrelay.core.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
