"""
FastAPI application.

Thin HTTP adapter over the pipeline controller. Run with:
    uvicorn api_gateway.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.config import settings
from shared.errors import JobImmutableError, JobNotFoundError, QuotaExceededError, ValidationError
from shared.logging import get_logger
from api_gateway.pipeline_controller import PipelineController
from api_gateway.routes.jobs import router as jobs_router

logger = get_logger(__name__)


def _error_body(error) -> dict:
    return {"detail": error.message, "error_kind": error.kind, "code": error.code}


def create_app(controller: Optional[PipelineController] = None) -> FastAPI:
    """
    Build the app. A controller is created at startup unless one is given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.controller = controller or PipelineController()
        logger.info("API started", extra={"environment": settings.environment})
        try:
            yield
        finally:
            await app.state.controller.shutdown()
            logger.info("API stopped")

    app = FastAPI(title="reelsmith", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(exc))

    @app.exception_handler(JobNotFoundError)
    async def not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_body(exc))

    @app.exception_handler(JobImmutableError)
    async def immutable_handler(request: Request, exc: JobImmutableError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body(exc))

    @app.exception_handler(QuotaExceededError)
    async def quota_handler(request: Request, exc: QuotaExceededError):
        return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=_error_body(exc))

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(jobs_router)
    return app


app = create_app()
