"""
Pydantic Schemas - Request & Response models for API validation,
plus the parsed shape of gateway webhook events.
"""
from datetime import datetime
from typing import Optional, Dict, List, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from coursepay.models.payment import ContentType, PaymentStatus
from coursepay.utils.validators import validate_amount, validate_content_id, validate_email


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case is accepted on input too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────── Payment ────────────────

class PaymentInitRequest(CamelModel):
    amount: float = Field(..., gt=0, description="Amount in major units (e.g. 5000 for KES 5,000)")
    email: str = Field(..., description="Customer email sent to the gateway")
    content_id: str = Field(..., description="Id of the course, video, quiz or note being bought")
    content_type: ContentType

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, value: float) -> float:
        ok, message = validate_amount(value)
        if not ok:
            raise ValueError(message)
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not validate_email(value):
            raise ValueError("Invalid email address")
        return value.strip()

    @field_validator("content_id")
    @classmethod
    def _check_content_id(cls, value: str) -> str:
        if not validate_content_id(value):
            raise ValueError("contentId must be 1-64 letters, digits or hyphens")
        return value


class PaymentInitResponse(CamelModel):
    success: bool = True
    payment_id: str
    authorization_url: str
    reference: str


class PaymentVerifyRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=200)


class PaymentOut(BaseModel):
    id: str
    user_id: str
    content_id: str
    content_type: ContentType
    amount: float
    currency: str
    reference: str
    status: PaymentStatus
    verified_at: Optional[datetime] = None
    gateway_response: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentVerifyResponse(BaseModel):
    success: bool
    payment: PaymentOut


class PaymentHistoryResponse(BaseModel):
    total: int
    payments: List[PaymentOut]


# ──────────────── Webhook ────────────────

class WebhookEnvelope(BaseModel):
    """Outer shape of every gateway event; ``data`` is event specific."""

    event: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class ChargeData(BaseModel):
    """``data`` of a charge event. Unknown keys are kept for the audit payload."""

    reference: str = Field(..., min_length=1, max_length=200)
    status: Optional[str] = None
    amount: Optional[int] = Field(None, ge=0)     # Minor units
    currency: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WebhookAck(BaseModel):
    received: bool = True


# ──────────────── Admin / Audit ────────────────

class AdminPaymentListResponse(BaseModel):
    total: int
    total_revenue: float
    payments: List[PaymentOut]


class AuditLogEntry(BaseModel):
    id: int
    subject: str
    action: str
    payload_hash: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None

    model_config = ConfigDict(from_attributes=True)


# ──────────────── Generic ────────────────

class ErrorResponse(BaseModel):
    error: str
    code: Optional[str] = None
    retryable: bool = False
