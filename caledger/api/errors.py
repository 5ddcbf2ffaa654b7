"""Mapping of service exceptions to HTTP responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from caledger.exceptions import (
    AlreadyRevoked,
    CALedgerError,
    ChainBroken,
    IssuanceCancelled,
    LedgerIntegrityError,
    NotFound,
    PolicyViolation,
    SigningFailed,
)

logger = logging.getLogger("caledger")

# Checked in order; the first matching class wins
_STATUS_CODES = [
    (PolicyViolation, 400),
    (NotFound, 404),
    (AlreadyRevoked, 409),
    (ChainBroken, 409),
    (IssuanceCancelled, 409),
    (SigningFailed, 502),
    (LedgerIntegrityError, 500),
]


def status_for(exc: Exception) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def caledger_error_handler(request: Request, exc: CALedgerError) -> JSONResponse:
    """Render a CALedgerError as a JSON error body."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")

    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, PolicyViolation):
        content["kind"] = exc.kind
        content["field"] = exc.field
    serial_number = getattr(exc, "serial_number", None)
    if serial_number is not None:
        content["serial_number"] = format(serial_number, "X")
    return JSONResponse(status_code=status_code, content=content)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})
