"""
Payment Routes - Checkout initiation, verification and gateway webhooks.
Also serves the caller's payment history.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coursepay.config import Settings, get_settings
from coursepay.database import get_db
from coursepay.exceptions import AuthError, GatewayUnavailable, SignatureInvalid, ValidationError
from coursepay.models.payment import PaymentStatus
from coursepay.schemas.schemas import (
    PaymentInitRequest, PaymentInitResponse, PaymentVerifyRequest, PaymentVerifyResponse,
    PaymentOut, PaymentHistoryResponse, WebhookEnvelope, WebhookAck,
)
from coursepay.services.audit_service import AuditService
from coursepay.services.gateway_client import PaystackClient, SIGNATURE_HEADER
from coursepay.services.payment_ledger import PaymentLedger
from coursepay.services.reconciliation_engine import ReconciliationEngine
from coursepay.utils.auth import CurrentUser, get_current_user, get_optional_user
from coursepay.utils.hashing import sha256_hex
from coursepay.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


def get_gateway_client(settings: Settings = Depends(get_settings)):
    """FastAPI dependency: a Paystack client for the duration of one request."""
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("PAYSTACK_SECRET_KEY not configured")
        raise GatewayUnavailable("Payment gateway is not configured")
    client = PaystackClient.from_settings(settings)
    try:
        yield client
    finally:
        client.close()


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post("/initiate", response_model=PaymentInitResponse)
def initiate_payment(
    payload: PaymentInitRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_settings),
):
    """Create a pending payment and open a gateway checkout for it.

    A gateway failure after the ledger insert leaves the pending record
    behind; the stale-payment sweep expires it later.
    """
    ledger = PaymentLedger(db)
    payment = ledger.create(
        user_id=user.id,
        content_id=payload.content_id,
        content_type=payload.content_type,
        amount=payload.amount,
        currency=settings.PAYMENT_CURRENCY,
    )
    db.commit()

    payment_id, reference = payment.id, payment.reference
    logger.info(
        "Initiating payment %s: user=%s %s/%s amount=%s %s",
        reference, user.id, payload.content_type.value, payload.content_id,
        payload.amount, settings.PAYMENT_CURRENCY,
    )

    AuditService.log(
        db, reference, "PAYMENT_INITIATED",
        payload={
            "payment_id": payment_id,
            "content_id": payload.content_id,
            "content_type": payload.content_type.value,
            "amount": str(payload.amount),
        },
        ip_address=_client_ip(request),
        metadata={"user_id": user.id},
    )

    transaction = gateway.initialize_transaction(
        amount=payload.amount,
        currency=settings.PAYMENT_CURRENCY,
        reference=reference,
        customer_email=payload.email,
        callback_url=settings.callback_url,
    )

    return PaymentInitResponse(
        payment_id=payment_id,
        authorization_url=transaction.authorization_url,
        reference=reference,
    )


@router.post("/verify", response_model=PaymentVerifyResponse)
def verify_payment(
    payload: PaymentVerifyRequest,
    request: Request,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_settings),
):
    """Check a payment with the gateway after the checkout redirect and reconcile it."""
    if settings.VERIFY_REQUIRES_AUTH and user is None:
        raise AuthError("No authorization header")

    engine = ReconciliationEngine(db, ip_address=_client_ip(request))
    result = engine.verify(payload.reference, gateway, caller=user)

    return PaymentVerifyResponse(
        success=result.payment.status is PaymentStatus.COMPLETED,
        payment=PaymentOut.model_validate(result.payment),
    )


@router.post("/webhook", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Receive a gateway event. The signature is checked over the raw body before anything else."""
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    return await run_in_threadpool(
        _process_webhook, db, raw_body, signature, settings, _client_ip(request)
    )


def _process_webhook(
    db: Session,
    raw_body: bytes,
    signature: Optional[str],
    settings: Settings,
    ip_address: Optional[str],
) -> WebhookAck:
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("PAYSTACK_SECRET_KEY not configured; webhook cannot be authenticated")

    if not PaystackClient.verify_signature(raw_body, signature, settings.PAYSTACK_SECRET_KEY):
        logger.warning(
            "Rejected webhook from %s: invalid signature (provided=%s..., body_sha256=%s)",
            ip_address, (signature or "")[:8], sha256_hex(raw_body),
        )
        raise SignatureInvalid("Invalid signature")

    try:
        envelope = WebhookEnvelope.model_validate_json(raw_body)
    except SchemaValidationError:
        logger.warning("Rejected webhook from %s: malformed envelope", ip_address)
        raise ValidationError("Malformed webhook payload")

    logger.info("Webhook event received: %s", envelope.event)
    ReconciliationEngine(db, ip_address=ip_address).handle_webhook(envelope)
    return WebhookAck()


@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The caller's payments, newest first."""
    total, payments = PaymentLedger(db).list_for_user(user.id, limit=limit, offset=offset)
    return PaymentHistoryResponse(
        total=total,
        payments=[PaymentOut.model_validate(p) for p in payments],
    )
