import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from finsight.api.routes import router
from finsight.core.config import settings
from finsight.core.exceptions import AuthenticationError
from finsight.core.exceptions import ConfigurationError
from finsight.core.exceptions import DocumentReadError
from finsight.core.exceptions import EmptyDocumentError
from finsight.core.exceptions import FinSightError
from finsight.core.exceptions import GenerationTimeoutError
from finsight.core.exceptions import GenerationUnavailableError
from finsight.core.exceptions import MalformedResponseError
from finsight.core.exceptions import NoReportError
from finsight.core.exceptions import SessionBusyError
from finsight.core.exceptions import SessionNotFoundError
from finsight.core.exceptions import UnsupportedFormatError
from finsight.core.exceptions import UploadLimitError
from finsight.core.logging import setup_logging
from finsight.generation_logic.session import SessionStore

logger = logging.getLogger(__name__)

# Most specific first: GenerationTimeoutError before GenerationUnavailableError
ERROR_STATUS: list[tuple[type[FinSightError], int, str]] = [
    (UnsupportedFormatError, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, "unsupported_format"),
    (EmptyDocumentError, status.HTTP_422_UNPROCESSABLE_ENTITY, "empty_document"),
    (DocumentReadError, status.HTTP_422_UNPROCESSABLE_ENTITY, "unreadable_document"),
    (UploadLimitError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "upload_limit"),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED, "missing_api_key"),
    (GenerationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT, "generation_timeout"),
    (GenerationUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "generation_unavailable"),
    (MalformedResponseError, status.HTTP_502_BAD_GATEWAY, "malformed_response"),
    (SessionBusyError, status.HTTP_409_CONFLICT, "session_busy"),
    (NoReportError, status.HTTP_409_CONFLICT, "no_report"),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND, "session_not_found"),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error"),
]


def _classify(exc: FinSightError) -> tuple[int, str]:
    for exc_type, status_code, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"


async def finsight_exception_handler(_request: Request, exc: FinSightError) -> JSONResponse:
    status_code, code = _classify(exc)
    logger.error("%s (%s): %s", type(exc).__name__, status_code, str(exc))
    return JSONResponse({"error": str(exc), "code": code}, status_code=status_code)


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error(f"HTTP exception: {exc.detail} (status: {exc.status_code})")
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": exc.errors()},
        status_code=422,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Application startup - FinSight report service ready")
    yield
    # Closes the shared generation client and drops in-memory sessions
    await app.state.session_store.aclose()
    logger.info("Application shutdown - sessions and clients released")


def create_app(store: SessionStore | None = None) -> FastAPI:
    app = FastAPI(title="FinSight Report Service", lifespan=lifespan)
    app.state.session_store = store or SessionStore()

    app.add_exception_handler(FinSightError, finsight_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    @app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
    async def health_check() -> dict[str, str]:
        logger.info("Health check endpoint called")
        return {"status": "ok"}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


setup_logging()

app = create_app()
