from datetime import datetime
from typing import Optional, Generic, TypeVar, Any, Dict
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    MONGO_DB: str = "orders_db"
    ORDERS_API_URL: str = "http://localhost:8003"
    ORDERS_WS_URL: str = "ws://localhost:8003/ws"
    REQUEST_TIMEOUT: float = 10.0

    # Pricing
    HANDLING_FEE: int = 2500
    UNIQUE_CODE_MIN: int = 100
    UNIQUE_CODE_MAX: int = 999

    # Lifecycle
    STRICT_STATUS_TRANSITIONS: bool = True
    CHECKOUT_FAILURE_POLICY: str = "compensate"  # compensate | best_effort

    # Push channel
    PUSH_MAX_RECONNECT_ATTEMPTS: int = 5
    PUSH_RECONNECT_BASE_DELAY: float = 1.0
    PUSH_RECONNECT_MAX_DELAY: float = 30.0

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT: str = "120/minute"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_code: Optional[str] = None
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    """Base for every structured error raised by the order pipeline.

    Carries the HTTP status, a user-facing (Indonesian) message, a stable
    machine-readable ``error_code`` and optional logging ``context``.
    """

    default_error_code = "E_APP"

    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or self.default_error_code
        self.context = dict(context) if context else {}

    def __str__(self) -> str:
        return str(self.detail)

    @property
    def message(self) -> str:
        return str(self.detail)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.message,
            error_code=self.error_code,
            details=self.context or None,
        )

class ValidationException(AppException):
    default_error_code = "E_VALIDATION_FAILED"

    def __init__(self, detail: str = "Data tidak valid", context: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail, context=context)

class NotFoundException(AppException):
    default_error_code = "E_RESOURCE_NOT_FOUND"

    def __init__(self, detail: str = "Resource not found", context: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail, context=context)

class IllegalTransitionException(AppException):
    default_error_code = "E_ILLEGAL_TRANSITION"

    def __init__(self, detail: str = "Perubahan status tidak diizinkan", context: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail, context=context)

class ConcurrentUpdateException(AppException):
    default_error_code = "E_CONCURRENT_UPDATE"

    def __init__(
        self,
        detail: str = "Pesanan sedang diubah oleh proses lain. Silakan coba lagi.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail, context=context)

class InternalServerException(AppException):
    default_error_code = "E_INTERNAL_SERVER"

    def __init__(
        self,
        detail: str = "Terjadi kesalahan internal pada server.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail, context=context)


EXCEPTIONS_BY_CODE = {
    ValidationException.default_error_code: ValidationException,
    NotFoundException.default_error_code: NotFoundException,
    IllegalTransitionException.default_error_code: IllegalTransitionException,
    ConcurrentUpdateException.default_error_code: ConcurrentUpdateException,
    InternalServerException.default_error_code: InternalServerException,
}

EXCEPTIONS_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: ValidationException,
    422: ValidationException,
    status.HTTP_404_NOT_FOUND: NotFoundException,
    status.HTTP_409_CONFLICT: IllegalTransitionException,
}

NOT_FOUND_MARKERS = ("not found", "tidak ditemukan")
VALIDATION_MARKERS = ("validation", "invalid", "tidak valid")


def classify_error_message(message: str) -> type:
    """Last-resort classification of an opaque upstream error message."""
    lowered = (message or "").lower()
    if any(marker in lowered for marker in NOT_FOUND_MARKERS):
        return NotFoundException
    if any(marker in lowered for marker in VALIDATION_MARKERS):
        return ValidationException
    return InternalServerException


def build_exception(
    message: str,
    status_code: Optional[int] = None,
    error_code: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> AppException:
    """Map an upstream failure to one of the pipeline exception kinds.

    Precedence: the typed ``error_code``, then the HTTP status, then the
    message heuristic.
    """
    exc_class = None
    if error_code:
        exc_class = EXCEPTIONS_BY_CODE.get(error_code)
    if exc_class is None and status_code is not None:
        exc_class = EXCEPTIONS_BY_STATUS.get(status_code)
    if exc_class is None:
        exc_class = classify_error_message(message)
    return exc_class(message or "Terjadi kesalahan internal pada server.", context=context)
