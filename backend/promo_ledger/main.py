import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from promo_ledger.api.v1 import api_router
from promo_ledger.core.config import settings
from promo_ledger.core.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from promo_ledger.core.logging_config import configure_logging
from promo_ledger.middleware import RequestLoggingMiddleware
from promo_ledger.schemas.error import ErrorResponse

logger = logging.getLogger(__name__)


def ledger_error_status(exc: LedgerError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, TransientStoreError):
        return 503
    return 400


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "auth", "description": "Admin authentication"},
        {"name": "promo-codes", "description": "Promo code ledger: admin CRUD, evaluation and redemption"},
        {"name": "health", "description": "Liveness and readiness probes"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
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

    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError):
        status_code = ledger_error_status(exc)
        if status_code >= 500:
            logger.warning("store_unavailable", extra={"path": request.url.path, "error": exc.message})
        payload = ErrorResponse(detail=exc.detail(), code=exc.code)
        return JSONResponse(status_code=status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump()),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
