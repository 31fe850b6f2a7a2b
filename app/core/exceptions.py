"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

class MetchiException(HTTPException):
    """Base exception class for Metchi application"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(MetchiException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class UnauthorizedException(MetchiException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(MetchiException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(MetchiException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(MetchiException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class ValidationException(MetchiException):
    """422 Unprocessable Entity"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )

class BadGatewayException(MetchiException):
    """502 Bad Gateway"""

    def __init__(
        self,
        detail: str = "Upstream provider error",
        error_code: str = "BAD_GATEWAY"
    ):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            error_code=error_code
        )

class ServiceUnavailableException(MetchiException):
    """503 Service Unavailable"""

    def __init__(
        self,
        detail: str = "Service temporarily unavailable",
        error_code: str = "SERVICE_UNAVAILABLE"
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code
        )

# Business logic exceptions
class InsufficientBalanceException(BadRequestException):
    """Wallet debit exceeds available funds"""

    def __init__(self, detail: str = "insufficient wallet balance"):
        super().__init__(
            detail=detail,
            error_code="INSUFFICIENT_BALANCE"
        )

class InvalidStateTransitionException(ConflictException):
    """Interaction or payment is not in a state that allows the action"""

    def __init__(self, detail: str):
        super().__init__(
            detail=detail,
            error_code="INVALID_STATE_TRANSITION"
        )

class ProviderErrorException(BadGatewayException):
    """External payment rail call failed"""

    def __init__(self, provider: str, detail: str):
        super().__init__(
            detail=f"{provider}: {detail}",
            error_code="PROVIDER_ERROR"
        )
        self.provider = provider

class MalformedWebhookException(BadRequestException):
    """Webhook body could not be parsed or has no correlation id"""

    def __init__(self, detail: str):
        super().__init__(
            detail=detail,
            error_code="MALFORMED_WEBHOOK"
        )

class InvalidWebhookSignatureException(UnauthorizedException):
    """Webhook signature verification failed"""

    def __init__(self):
        super().__init__(
            detail="Invalid webhook signature",
            error_code="INVALID_SIGNATURE"
        )

async def metchi_exception_handler(request: Request, exc: MetchiException) -> JSONResponse:
    """Render application errors with their error code"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )
