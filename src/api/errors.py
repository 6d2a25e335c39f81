"""Mapping of service errors to HTTP errors."""

from fastapi import HTTPException, status

from src.services.exceptions import (
    CannotDeleteActive,
    ConfigInvalid,
    ConfigNotFound,
    ConfigValidationError,
    DeliveryNotDelivered,
    DeliveryNotFound,
    DriverNotFound,
    EarningsError,
)

_STATUS_CODES = {
    ConfigNotFound: status.HTTP_404_NOT_FOUND,
    DeliveryNotFound: status.HTTP_404_NOT_FOUND,
    DriverNotFound: status.HTTP_404_NOT_FOUND,
    ConfigValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConfigInvalid: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CannotDeleteActive: status.HTTP_409_CONFLICT,
    DeliveryNotDelivered: status.HTTP_409_CONFLICT,
}


def http_error(error: EarningsError) -> HTTPException:
    """HTTPException for a service error. Use as `raise http_error(e) from e`."""
    return HTTPException(
        status_code=_STATUS_CODES.get(type(error), status.HTTP_400_BAD_REQUEST),
        detail=error.message,
    )
