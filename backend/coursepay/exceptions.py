"""
Payment Exceptions - Error taxonomy for the payment core.

Every failure that can leave the service is one of these. Gateway and storage
errors are translated at the component that talks to them, so routes never see
raw ``httpx`` or SQLAlchemy exceptions. Each class carries the HTTP status it
maps to and whether the caller may retry the same request.

There is no "already finalized" error: both reconciliation paths return a
terminal record unchanged as a successful no-op.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for all payment core errors.

    Attributes:
        message: Human-readable description, safe to show the end user.
        status_code: HTTP status the boundary layer responds with.
        error_code: Stable machine-readable identifier.
        retryable: Whether repeating the same call may succeed.
        details: Extra context for logs (never secrets).
    """

    status_code: int = 400
    error_code: str = "payment_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.error_code,
            "retryable": self.retryable,
        }


class ValidationError(PaymentError):
    """Malformed request to the initiation or verify endpoints, or a malformed webhook body."""

    status_code = 400
    error_code = "validation_error"


class AuthError(PaymentError):
    """Missing or invalid caller identity (401), or identity not allowed here (403)."""

    status_code = 401
    error_code = "auth_error"


class GatewayUnavailable(PaymentError):
    """Transport-level failure talking to the payment gateway."""

    status_code = 503
    error_code = "gateway_unavailable"
    retryable = True


class GatewayRejected(PaymentError):
    """The gateway understood the request and refused it."""

    status_code = 402
    error_code = "gateway_rejected"


class SignatureInvalid(PaymentError):
    """Webhook signature missing or not matching the raw body."""

    status_code = 400
    error_code = "signature_invalid"


class ReferenceNotFound(PaymentError):
    """A verify call or webhook names a payment that was never initiated."""

    status_code = 404
    error_code = "reference_not_found"

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"No payment found for reference '{reference}'",
            details={"reference": reference},
        )
        self.reference = reference


class StorageUnavailable(PaymentError):
    """The database could not be reached or timed out."""

    status_code = 503
    error_code = "storage_unavailable"
    retryable = True
