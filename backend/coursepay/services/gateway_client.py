"""
Gateway Client - Paystack transaction API and webhook signatures.

All outbound HTTP to the payment gateway goes through ``PaystackClient``.
Failures are split in two:

- ``GatewayUnavailable``: the call did not produce a usable answer (timeout,
  connection error, 5xx, 429, non-JSON body). The caller may retry.
- ``GatewayRejected``: the gateway answered and said no (``status: false``).
  Retrying the same request will fail the same way.

Webhook signatures are HMAC-SHA512 over the exact raw request body, emitted by
Paystack as lowercase hex in the ``x-paystack-signature`` header. The body must
be hashed before any JSON parsing.
"""
import enum
import hmac
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from coursepay.config import Settings
from coursepay.exceptions import GatewayRejected, GatewayUnavailable
from coursepay.utils.hashing import hmac_sha512_hex
from coursepay.utils.logger import get_logger
from coursepay.utils.validators import to_minor_units

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


class GatewayOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"      # Not resolved yet at the gateway


_SUCCESS_STATUSES = {"success"}
_FAILURE_STATUSES = {"failed", "reversed"}


def outcome_from_status(gateway_status: Optional[str]) -> GatewayOutcome:
    """Map a Paystack transaction status onto the closed outcome set.

    ``abandoned``, ``ongoing``, ``pending``, ``processing``, ``queued`` and
    anything unrecognised stay PENDING so they never finalize a payment.
    """
    status = (gateway_status or "").strip().lower()
    if status in _SUCCESS_STATUSES:
        return GatewayOutcome.SUCCESS
    if status in _FAILURE_STATUSES:
        return GatewayOutcome.FAILURE
    return GatewayOutcome.PENDING


class InitializedTransaction(BaseModel):
    authorization_url: str
    gateway_reference: str
    access_code: Optional[str] = None


class TransactionReport(BaseModel):
    """The gateway's account of one transaction, from a verify call or a webhook."""

    reference: str
    outcome: GatewayOutcome
    gateway_status: Optional[str] = None
    amount: Optional[int] = None           # Minor units
    currency: Optional[str] = None
    raw_payload: Dict[str, Any] = {}

    @classmethod
    def from_gateway_data(cls, data: Dict[str, Any], reference: Optional[str] = None) -> "TransactionReport":
        amount = data.get("amount")
        return cls(
            reference=str(data.get("reference") or reference or ""),
            outcome=outcome_from_status(data.get("status")),
            gateway_status=data.get("status"),
            amount=amount if isinstance(amount, int) else None,
            currency=data.get("currency"),
            raw_payload=data,
        )


class PaystackClient:
    """Synchronous wrapper for the Paystack transaction endpoints."""

    BASE_URL = "https://api.paystack.co"

    def __init__(
        self,
        secret_key: str,
        base_url: str = BASE_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY not configured")

        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "PaystackClient":
        return cls(
            settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PaystackClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request and return the envelope's ``data`` object."""
        try:
            response = self._client.request(method, endpoint, json=payload)
        except httpx.TimeoutException as e:
            logger.error("Paystack timeout on %s: %s", endpoint, e)
            raise GatewayUnavailable("Payment gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error("Paystack transport error on %s: %s", endpoint, e)
            raise GatewayUnavailable("Payment gateway is unreachable") from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.error("Paystack %s returned HTTP %s", endpoint, response.status_code)
            raise GatewayUnavailable(
                f"Payment gateway error (HTTP {response.status_code})",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.error("Paystack %s returned a non-JSON body (HTTP %s)", endpoint, response.status_code)
            raise GatewayUnavailable("Payment gateway returned an unreadable response")

        if response.is_error or body.get("status") is not True:
            message = body.get("message") or f"Payment gateway rejected the request (HTTP {response.status_code})"
            logger.warning("Paystack rejected %s: %s", endpoint, message)
            raise GatewayRejected(message, details={"status_code": response.status_code})

        data = body.get("data")
        if not isinstance(data, dict):
            logger.error("Paystack %s response has no data object", endpoint)
            raise GatewayUnavailable("Payment gateway returned an incomplete response")
        return data

    def initialize_transaction(
        self,
        amount,
        currency: str,
        reference: str,
        customer_email: str,
        callback_url: str,
    ) -> InitializedTransaction:
        """Start a checkout; ``amount`` is in major units and is sent as minor units."""
        data = self._request(
            "POST",
            "/transaction/initialize",
            {
                "email": customer_email,
                "amount": to_minor_units(amount),
                "currency": currency,
                "reference": reference,
                "callback_url": callback_url,
            },
        )
        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise GatewayUnavailable("Payment gateway did not return an authorization URL")

        return InitializedTransaction(
            authorization_url=authorization_url,
            gateway_reference=data.get("reference") or reference,
            access_code=data.get("access_code"),
        )

    def verify_transaction(self, reference: str) -> TransactionReport:
        """Ask the gateway for the authoritative state of a transaction."""
        data = self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        return TransactionReport.from_gateway_data(data, reference=reference)

    @staticmethod
    def compute_signature(raw_body: bytes, secret: str) -> str:
        return hmac_sha512_hex(raw_body, secret)

    @staticmethod
    def verify_signature(raw_body: bytes, provided_signature: Optional[str], secret: str) -> bool:
        """Constant-time comparison of the expected digest with the header value."""
        if not provided_signature or not secret:
            return False
        expected = hmac_sha512_hex(raw_body, secret)
        return hmac.compare_digest(expected.encode("ascii"), provided_signature.encode("utf-8"))
