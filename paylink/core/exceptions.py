"""
PayLink error types.

Every error knows its HTTP status, so one FastAPI handler serves them all.
`to_dict()` is the full record written to logs; `to_safe_dict()` is what a
client sees. Subclasses control the client view with two class attributes:
`safe_message` replaces the message entirely, and `exposed_fields` lists
context keys that may be shown.
"""

from typing import Any, Dict, Optional, Tuple


class BaseAppError(Exception):
    """Root of all PayLink errors"""

    http_status_code: int = 500
    safe_message: Optional[str] = None
    exposed_fields: Tuple[str, ...] = ()

    def __init__(self, message: str, details: Optional[str] = None, **context: Any):
        self.message = message
        self.details = details
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "context": self.context,
        }

    def to_safe_dict(self) -> Dict[str, Any]:
        result = {
            "error": type(self).__name__,
            "message": self.safe_message or self.message,
        }
        for key in self.exposed_fields:
            if key in self.context:
                result[key] = self.context[key]
        return result


# 4xx: caller mistakes

class PaymentValidationError(BaseAppError):
    """Business validation failure on a single field"""

    http_status_code = 400
    exposed_fields = ("field",)

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(
            message,
            f"Rejected value for {field}" if field else None,
            field=field,
            invalid_value=None if value is None else str(value),
        )


class InvalidAmountError(PaymentValidationError):
    def __init__(self, value: Any = None, reason: str = "Payment amount must be positive"):
        super().__init__(reason, "amount", value)


class UnsupportedProviderError(PaymentValidationError):
    def __init__(self, provider: Any = None):
        super().__init__("Unsupported payment type", "pay_type", provider)


class InvalidStatusError(PaymentValidationError):
    """Only success and failed may be reported from outside"""

    def __init__(self, status: Any = None):
        super().__init__("Reported status must be 'success' or 'failed'", "status", status)


class InvalidSignatureError(BaseAppError):
    """Presented signature does not match the stored payload"""

    http_status_code = 400

    def __init__(self, tx_id: str):
        self.tx_id = tx_id
        super().__init__("Invalid signature", "Payload signature mismatch", tx_id=tx_id)


class NotFoundError(BaseAppError):
    http_status_code = 404

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            f"{resource} not found",
            f"No {resource.lower()} with id '{identifier}'",
            resource=resource,
            identifier=identifier,
        )


class SecurityError(BaseAppError):
    """Webhook or monitoring authentication failure"""

    http_status_code = 401

    def __init__(self, message: str, security_context: Optional[str] = None):
        super().__init__(message, "Authentication rejected", security_context=security_context)


class AlreadyResolvedError(BaseAppError):
    """
    The transaction already left pending.

    Not a failure from the caller's point of view: the service layer answers
    with the existing terminal status carried here.
    """

    http_status_code = 409
    exposed_fields = ("tx_id", "status")

    def __init__(self, tx_id: str, status: str, transaction: Any = None):
        self.tx_id = tx_id
        self.status = status
        self.transaction = transaction
        super().__init__(f"Transaction already {status}", tx_id=tx_id, status=status)


class DuplicateIdError(BaseAppError):
    """Generated tx_id hit the unique index; retried once by the store"""

    http_status_code = 409
    safe_message = "Transaction id collision, please retry"

    def __init__(self, tx_id: str):
        self.tx_id = tx_id
        super().__init__(f"Duplicate tx_id {tx_id}", tx_id=tx_id)


# 5xx: our side

class DatabaseError(BaseAppError):
    http_status_code = 500
    safe_message = "An internal error occurred. Please try again later."

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message, f"Database operation {operation} failed" if operation else None, operation=operation)


class ConfigurationError(BaseAppError):
    """Missing or invalid environment configuration"""

    http_status_code = 500
    safe_message = "A server configuration error occurred."

    def __init__(self, message: str, config_key: Optional[str] = None, expected_value: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message, config_key=config_key, expected_value=expected_value)


class ConfigurationUnavailableError(ConfigurationError):
    """Merchant settings could not be read or are incomplete"""

    http_status_code = 503
    safe_message = "Payment configuration is temporarily unavailable."

    def __init__(self, message: str = "Merchant configuration unavailable", config_key: Optional[str] = None):
        super().__init__(message, config_key=config_key)
