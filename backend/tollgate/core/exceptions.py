"""Exceptions shared by the billing layer and the API."""

from typing import Optional

from pydantic import ValidationError


class TollgateException(Exception):
    """Base exception for Tollgate services.

    Subclasses declare a default message; ``message`` always holds the text the
    exception was raised with.
    """

    default_message = "Billing error"

    def __init__(self, message: Optional[str] = None):
        """Create a new exception, falling back to the class default message."""
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundException(TollgateException):
    """Raised when a customer, plan, price or subscription cannot be resolved.

    Billing lookups prefix the message with a code such as ``CUSTOMER_NOT_FOUND:``
    so callers that only see the text can still tell the cases apart.
    """

    default_message = "Object not found"


class InvalidStateError(TollgateException):
    """Raised when collaborators disagree with each other.

    E.g. a customer without an active subscription, or a paid default plan without a trial.
    """

    default_message = "Object is in an invalid state"


class ExternalServiceError(TollgateException):
    """Raised when the payment vendor rejects or fails a call."""

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}")


class BillingOperationError(TollgateException):
    """Raised by the payment facade when one of its operations fails.

    The message reads ``Failed to <operation>: <cause>``; the original exception is
    kept on ``cause`` and chained as ``__cause__``.
    """

    def __init__(self, operation: str, cause: Exception):
        """Wrap ``cause`` as the failure of ``operation``."""
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}")

    @property
    def root_cause(self) -> Exception:
        """Unwrap nested facade errors down to the original exception."""
        cause = self.cause
        while isinstance(cause, BillingOperationError):
            cause = cause.cause
        return cause


def unpack_validation_error(exc: ValidationError) -> dict:
    """Flatten a pydantic validation error into ``{"errors": [{"<loc>": "<msg>"}]}``.

    Args:
    ----
        exc (ValidationError): The pydantic validation error.

    Returns:
    -------
        dict: One entry per invalid field, keyed by its dotted location.

    """
    return {
        "errors": [
            {".".join(str(part) for part in error["loc"]): error["msg"]} for error in exc.errors()
        ]
    }
