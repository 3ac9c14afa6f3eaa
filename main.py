# main.py
"""Main application with background job cleanup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import settings
from core.domain import ErrorCode, ServiceError
from services.logger_config import setup_logging
from database.session import async_engine, init_db
from api.endpoints import router
from services.async_processor import job_processor

setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)

STATUS_BY_ERROR_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.INVALID_TOKEN: 403,
    ErrorCode.INVALID_FORMAT: 415,
    ErrorCode.UNSUPPORTED_MEDIA_TYPE: 415,
    ErrorCode.FILE_TOO_LARGE: 413,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting application...")

    await init_db()

    logger.info("Services initialized")
    yield

    # Cancel background jobs on shutdown
    logger.info("Shutting down background jobs...")
    await job_processor.shutdown()
    await async_engine.dispose()

    logger.info("Application shutdown complete")

app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = STATUS_BY_ERROR_CODE.get(exc.error_code, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "errorCode": exc.error_code.value},
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return JSONResponse(
        status_code=400,
        content={
            "detail": f"{location}: {first.get('msg', 'invalid request')}",
            "errorCode": ErrorCode.VALIDATION_ERROR.value,
        },
    )

@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": settings.APP_VERSION}

app.include_router(router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
