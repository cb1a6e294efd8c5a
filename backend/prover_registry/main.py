"""Main FastAPI application entry point"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException

from prover_registry import __version__
from prover_registry.api import api_router
from prover_registry.core.cache import core_cache
from prover_registry.core.config import settings
from prover_registry.core.exceptions import CacheError, EndpointValidationError
from prover_registry.core.logging import setup_logging
from prover_registry.db.database import close_db, init_db
from prover_registry.services.prover_probe import prover_probe
from prover_registry.services.refresh import refresh_coordinator

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler
    """
    logger.info("Starting prover registry...")

    # Reads degrade to empty lists and registrations fail while Redis is down
    try:
        await core_cache.initialize()
    except Exception as e:
        logger.warning(f"Core cache service initialization failed: {e}")

    await init_db()

    logger.info("Prover registry started successfully")

    try:
        yield
    finally:
        logger.info("Shutting down prover registry...")

        # Dispatched refreshes run to completion
        await refresh_coordinator.drain()
        await prover_probe.close()
        await core_cache.cleanup()
        await close_db()

        logger.info("Prover registry shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Valid prover endpoints per network, served from a revalidating cache",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
def error_response(status_code: int, error: str, message, **extra) -> JSONResponse:
    """JSON error body shared by all handlers"""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, **extra},
    )


@app.exception_handler(EndpointValidationError)
async def endpoint_validation_exception_handler(request, exc: EndpointValidationError):
    logger.info(f"Rejected prover endpoint: {exc}")
    return error_response(400, "VALIDATION_ERROR", str(exc))


@app.exception_handler(CacheError)
async def cache_exception_handler(request, exc: CacheError):
    logger.error(f"Cache unavailable: {exc}")
    return error_response(503, "CACHE_UNAVAILABLE", "The prover cache is temporarily unavailable")


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return error_response(exc.status_code, "HTTP_ERROR", exc.detail)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request, exc: RequestValidationError):
    """Report invalid request fields without echoing the submitted values"""
    details = [
        {
            "type": error.get("type", ""),
            "location": list(error.get("loc", [])),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return error_response(422, "VALIDATION_ERROR", "Invalid request data", details=details)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return error_response(500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred")


app.include_router(api_router)

# Static files are mounted last so API routes take precedence
if os.path.isdir(settings.STATIC_DIR):
    app.mount("/", StaticFiles(directory=settings.STATIC_DIR), name="static")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "prover_registry.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_DEBUG,
        log_level=settings.APP_LOG_LEVEL.lower(),
    )
