"""Rendering of ledger errors as JSON responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hoa_ledger.api.schemas import ErrorBody, ErrorResponse
from hoa_ledger.services.errors import LedgerError

logger = logging.getLogger(__name__)


def error_response(error: LedgerError) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=error.code, message=error.message))
    return JSONResponse(status_code=error.http_status, content=body.model_dump())


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)


__all__ = ["error_response", "ledger_error_handler", "register_error_handlers"]
