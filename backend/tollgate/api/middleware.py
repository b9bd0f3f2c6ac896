"""Middleware for the FastAPI application.

This module contains middleware that process requests and responses, and the
exception handlers that turn billing errors into HTTP responses.
"""

import time
import traceback
import uuid
from typing import Callable, Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tollgate.core.config import settings
from tollgate.core.exceptions import (
    BillingOperationError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundException,
    unpack_validation_error,
)
from tollgate.core.logging import logger

# Status codes of the errors raised by the billing layer
ERROR_STATUS_CODES = {
    NotFoundException: 404,
    InvalidStateError: 400,
    ExternalServiceError: 502,
    ValidationError: 422,
}


async def add_request_id(request: Request, call_next: Callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Args:
    ----
        request (Request): The incoming request.
        call_next (Callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    request.state.request_id = str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


async def log_requests(request: Request, call_next: Callable) -> Response:
    """Middleware to log incoming requests.

    Args:
    ----
        request (Request): The incoming request.
        call_next (Callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.with_context(request_id=getattr(request.state, "request_id", None)).info(
        f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
        f"Response code: {response.status_code}"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Middleware to log unhandled exceptions.

    Args:
    ----
        request (Request): The incoming request.
        call_next (Callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response to the incoming request.

    """
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        response_content = {"detail": f"Internal Server Error: {exc.__class__.__name__}"}
        if settings.DEBUG:
            response_content["trace"] = traceback.format_exc()

        return JSONResponse(status_code=500, content=response_content)


# Exception handlers
async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Exception handler for validation errors that occur during request processing.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (Union[RequestValidationError, ValidationError]): The exception object that was raised.

    Returns:
    -------
        JSONResponse: A 422 Unprocessable Entity response listing the invalid fields, e.g.
            {"errors": [{"body.plan": "Field required"}]}

    """
    error_messages = unpack_validation_error(exc)
    logger.error(f"Validation error: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Exception handler for NotFoundException.

    Returns:
    -------
        JSONResponse: A 404 Not Found status response that details the error message.

    """
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def invalid_state_exception_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    """Exception handler for InvalidStateError.

    Returns:
    -------
        JSONResponse: A 400 Bad Request status response that details the error message.

    """
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def external_service_exception_handler(
    request: Request, exc: ExternalServiceError
) -> JSONResponse:
    """Exception handler for ExternalServiceError.

    Returns:
    -------
        JSONResponse: A 502 Bad Gateway status response that details the error message.

    """
    return JSONResponse(status_code=502, content={"detail": str(exc)})


async def billing_operation_exception_handler(
    request: Request, exc: BillingOperationError
) -> JSONResponse:
    """Exception handler for BillingOperationError.

    The status code follows the error the operation failed with, unknown causes map to 500.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (BillingOperationError): The exception object that was raised.

    Returns:
    -------
        JSONResponse: HTTP response with the status code of the root cause.

    """
    root_cause = exc.root_cause
    status_code = next(
        (
            code
            for error_type, code in ERROR_STATUS_CODES.items()
            if isinstance(root_cause, error_type)
        ),
        500,
    )
    if status_code == 500:
        logger.error(f"Billing operation failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})
