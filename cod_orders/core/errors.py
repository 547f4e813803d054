# cod_orders/core/errors.py
"""
Domain errors for the COD order lifecycle.

Services raise these; `register_exception_handlers` maps them to HTTP
responses so routers stay free of try/except.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CODServiceError(Exception):
    """Base exception for all order lifecycle failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CODServiceError):
    """Missing or malformed required input. No state change."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CODServiceError):
    """Referenced order, assignment, seller or rider does not resolve."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(CODServiceError):
    """Transition attempted from a status that does not permit it."""

    status_code = status.HTTP_409_CONFLICT


class AuthorizationError(CODServiceError):
    """Actor is not the party allowed to drive this transition."""

    status_code = status.HTTP_403_FORBIDDEN


class DependencyError(CODServiceError):
    """A collaborator (stock ledger, notification, audit) failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


class StockLedgerError(DependencyError):
    """Stock reservation, release or fulfilment could not be applied."""


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain errors into JSON error responses."""

    @app.exception_handler(CODServiceError)
    async def _handle_domain_error(request: Request, exc: CODServiceError):
        if isinstance(exc, DependencyError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
        )
