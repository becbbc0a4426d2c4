import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1 import api_router
from app.core.config import settings
from app.core.logging_config import configure_logging
from app.core.redis_client import close_redis
from app.core.sentry import init_sentry
from app.middleware.request_log import RequestLoggingMiddleware
from app.schemas.error import ErrorResponse
from app.services.redemption_errors import RedemptionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_redis()


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "promo-codes", "description": "Promo code redemption"},
        {"name": "health", "description": "Liveness and in-process counters"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(RedemptionError)
    async def redemption_exception_handler(request: Request, exc: RedemptionError):
        payload = ErrorResponse(detail=exc.message, code=exc.code, state=exc.state.value)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump())

    @app.exception_handler(SQLAlchemyError)
    async def store_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("transaction_failure", extra={"path": request.url.path})
        payload = ErrorResponse(detail="The store could not complete the operation", code="transaction_failure")
        return JSONResponse(status_code=503, content=payload.model_dump())

    @app.exception_handler(TimeoutError)
    async def timeout_exception_handler(request: Request, exc: TimeoutError):
        logger.warning("transaction_timeout", extra={"path": request.url.path})
        payload = ErrorResponse(detail="The operation timed out and was rolled back", code="transaction_failure")
        return JSONResponse(status_code=503, content=payload.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
