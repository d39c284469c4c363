"""
HTTP translation of domain and store errors.

Domain errors carry a user-facing message that is returned as-is. Store
failures get a generic "try again" message; details only go to the log.
"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..services import errors

logger = logging.getLogger(__name__)

GENERIC_RETRY_MESSAGE = "No se pudo completar la operación. Inténtalo de nuevo en unos segundos."

ERROR_STATUS = {
    errors.NoStockError: status.HTTP_409_CONFLICT,
    errors.InsufficientStockError: status.HTTP_409_CONFLICT,
    errors.LinkInvalidError: status.HTTP_404_NOT_FOUND,
    errors.LinkInactiveError: status.HTTP_410_GONE,
    errors.LinkAlreadyUsedError: status.HTTP_410_GONE,
    errors.BookingNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.InvalidAccessTokenError: status.HTTP_403_FORBIDDEN,
    errors.PaymentRequiredError: status.HTTP_409_CONFLICT,
    errors.AlreadySignedError: status.HTTP_409_CONFLICT,
    errors.AlreadyRefundedError: status.HTTP_409_CONFLICT,
    errors.BookingStateError: status.HTTP_409_CONFLICT,
    errors.InvalidBookingRequest: status.HTTP_400_BAD_REQUEST,
    errors.InvalidRefundAmount: status.HTTP_400_BAD_REQUEST,
    errors.InvalidCommissionPayment: status.HTTP_400_BAD_REQUEST,
    errors.InvalidStockValue: status.HTTP_400_BAD_REQUEST,
    errors.ProvisioningBatchTooLarge: status.HTTP_400_BAD_REQUEST,
    errors.PaymentGatewayNotConfigured: status.HTTP_503_SERVICE_UNAVAILABLE,
    errors.PaymentGatewayError: status.HTTP_502_BAD_GATEWAY,
    errors.TransactionConflictError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: errors.BookingError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(errors.BookingError)
    async def booking_error_handler(request: Request, exc: errors.BookingError):
        code = status_for(exc)
        if code >= 500:
            logger.warning(f"{request.method} {request.url.path}: {exc.__class__.__name__}: {exc}")
        return JSONResponse(status_code=code, content={"detail": exc.message})

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"{request.method} {request.url.path}: database error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": GENERIC_RETRY_MESSAGE}
        )
