"""HTTP mapping for domain errors.

Protean's handlers cover the generic cases (ValidationError 400,
ObjectNotFoundError 404). The commerce errors get their own status codes;
Starlette resolves handlers along the exception's MRO, so these win over
the generic ones for the subclasses they name.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers

from commerce.errors import (
    ConcurrencyExhaustedError,
    DuplicateReservationError,
    FraudBlockedError,
    IllegalTransitionError,
    InsufficientStockError,
    InvalidStateError,
)

RETRY_AFTER_SECONDS = "1"


async def _insufficient_stock(request: Request, exc: InsufficientStockError):
    return JSONResponse(
        status_code=409,
        content={
            "error": exc.messages,
            "unit_id": exc.unit_id,
            "requested": exc.requested,
            "available": exc.available,
        },
    )


async def _conflict(request: Request, exc: Exception):
    messages = getattr(exc, "messages", None) or str(exc)
    return JSONResponse(status_code=409, content={"error": messages})


async def _fraud_blocked(request: Request, exc: FraudBlockedError):
    return JSONResponse(status_code=403, content={"error": exc.messages})


async def _concurrency_exhausted(request: Request, exc: ConcurrencyExhaustedError):
    return JSONResponse(
        status_code=503,
        content={"error": "The system is busy, please try again"},
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.messages})


async def _not_found(request: Request, exc: ObjectNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


def register_commerce_exception_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(ObjectNotFoundError, _not_found)
    app.add_exception_handler(InsufficientStockError, _insufficient_stock)
    app.add_exception_handler(IllegalTransitionError, _conflict)
    app.add_exception_handler(DuplicateReservationError, _conflict)
    app.add_exception_handler(InvalidStateError, _conflict)
    app.add_exception_handler(FraudBlockedError, _fraud_blocked)
    app.add_exception_handler(ConcurrencyExhaustedError, _concurrency_exhausted)
