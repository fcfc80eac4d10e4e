"""
API Exceptions and Error Handlers.
"""
import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storystudio.providers.exceptions import (
    AssemblyError,
    ConfigurationError,
    ContentPolicyError,
    NotFoundError,
    ParseError,
    PreconditionError,
    ProviderError,
    StoryStudioError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str
    detail: Optional[str] = None
    code: str
    status_code: int
    missing: Optional[list] = None


class APIError(Exception):
    """Base API exception."""

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.message,
            detail=self.detail,
            code=self.code,
            status_code=self.status_code,
        )


class ValidationError(APIError):
    """400 - Bad Request / Validation Error."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


# Most specific classes first
DOMAIN_ERROR_MAP = (
    (NotFoundError, "NOT_FOUND", status.HTTP_404_NOT_FOUND),
    (PreconditionError, "PRECONDITION_FAILED", status.HTTP_409_CONFLICT),
    (ConfigurationError, "NOT_CONFIGURED", status.HTTP_503_SERVICE_UNAVAILABLE),
    (ParseError, "UNPARSEABLE_MODEL_OUTPUT", status.HTTP_502_BAD_GATEWAY),
    (ContentPolicyError, "CONTENT_BLOCKED", status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransientServiceError, "SERVICE_UNAVAILABLE", status.HTTP_503_SERVICE_UNAVAILABLE),
    (ProviderError, "PROVIDER_ERROR", status.HTTP_502_BAD_GATEWAY),
    (AssemblyError, "ASSEMBLY_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def domain_error_response(exc: StoryStudioError) -> ErrorResponse:
    for error_class, code, status_code in DOMAIN_ERROR_MAP:
        if isinstance(exc, error_class):
            break
    else:
        code, status_code = "INTERNAL_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR

    return ErrorResponse(
        error=str(exc),
        code=code,
        status_code=status_code,
        missing=getattr(exc, "missing", None) or None,
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


async def domain_error_handler(request: Request, exc: StoryStudioError) -> JSONResponse:
    """Translate pipeline errors into HTTP responses."""
    response = domain_error_response(exc)
    if response.status_code >= 500:
        logger.error(f"[API] {response.code}: {exc}")
    return JSONResponse(status_code=response.status_code, content=response.model_dump())


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationError(str(exc)).to_response().model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"[API] Unhandled error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if request.app.debug else None,
            "code": "INTERNAL_ERROR",
            "status_code": 500,
        },
    )
