"""
Reconciliation Engine - Converges the ledger with the gateway's outcome.

Webhooks, client verify calls and the stale-payment sweep all end in
``apply_report``. There is one transition procedure, whichever path arrives
first:

    1. look the payment up by reference (unknown reference is a hard failure)
    2. decide the terminal status the report justifies, if any
    3. conditional finalize on the ledger (compare-and-set on status = pending)
    4. only if *this* call moved the record into completed, and it is a course,
       grant the enrollment
    5. commit 3 and 4 together

Whoever loses the compare-and-set sees the stored result and triggers nothing.
"""
from datetime import datetime
from typing import NamedTuple, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from coursepay.exceptions import (
    AuthError,
    GatewayRejected,
    GatewayUnavailable,
    ReferenceNotFound,
    ValidationError,
)
from coursepay.models.payment import ContentType, PaymentRecord, PaymentStatus
from coursepay.schemas.schemas import ChargeData, WebhookEnvelope
from coursepay.services.audit_service import AuditService
from coursepay.services.entitlement_service import EntitlementGrantor
from coursepay.services.gateway_client import GatewayOutcome, PaystackClient, TransactionReport
from coursepay.services.payment_ledger import PaymentLedger
from coursepay.utils.auth import CurrentUser
from coursepay.utils.logger import get_logger
from coursepay.utils.validators import to_minor_units

logger = get_logger(__name__)

CHARGE_SUCCESS_EVENT = "charge.success"

# Gateway answers that mean our key is wrong, not that the reference is
AUTH_REJECTION_STATUSES = {401, 403}


class ReconciliationResult(NamedTuple):
    payment: PaymentRecord
    transitioned: bool              # This call performed the terminal transition
    entitlement_granted: bool       # This call created the enrollment


class ReconciliationEngine:
    """Applies gateway outcomes to one database session."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[PaymentLedger] = None,
        grantor: Optional[EntitlementGrantor] = None,
        ip_address: Optional[str] = None,
    ):
        self.db = db
        self.ledger = ledger or PaymentLedger(db)
        self.grantor = grantor or EntitlementGrantor(db)
        self.ip_address = ip_address

    # ─── Entry points ────────────────────────────────────────────────

    def handle_webhook(self, envelope: WebhookEnvelope) -> Optional[ReconciliationResult]:
        """Reconcile an authenticated gateway event.

        Returns None for event types this service does not act on.

        Raises:
            ValidationError: A charge event whose data does not match ChargeData.
            ReferenceNotFound: The charge names a payment never initiated here.
        """
        if envelope.event != CHARGE_SUCCESS_EVENT:
            logger.info("Webhook event %s acknowledged without action", envelope.event)
            return None

        try:
            charge = ChargeData.model_validate(envelope.data)
        except SchemaValidationError as e:
            logger.warning("Malformed %s payload: %s", envelope.event, e.errors(include_url=False))
            raise ValidationError("Malformed charge payload")

        # Built from the validated model so the amount checked is the coerced one
        report = TransactionReport.from_gateway_data(
            {**charge.model_dump(), "status": charge.status or "success"},
            reference=charge.reference,
        )
        return self.apply_report(charge.reference, report, source="webhook")

    def verify(
        self,
        reference: str,
        gateway: PaystackClient,
        caller: Optional[CurrentUser] = None,
    ) -> ReconciliationResult:
        """Client-initiated verification: ask the gateway, then reconcile.

        When ``caller`` is given the payment must be theirs (admins excepted).
        A record that is already terminal is returned without a gateway call.

        Raises:
            ReferenceNotFound, AuthError, GatewayUnavailable, GatewayRejected.
        """
        payment = self.ledger.find_by_reference(reference)
        if payment is None:
            raise ReferenceNotFound(reference)

        if caller is not None and payment.user_id != caller.id and not caller.is_admin:
            raise AuthError("This payment belongs to another user", status_code=403)

        if payment.status.is_terminal:
            logger.info("Verify %s: already %s", reference, payment.status.value)
            return ReconciliationResult(payment, False, False)

        report = gateway.verify_transaction(reference)
        return self.apply_report(reference, report, source="verify")

    def reconcile_stale(
        self,
        gateway: PaystackClient,
        older_than: datetime,
        limit: int = 100,
        dry_run: bool = False,
    ) -> dict:
        """Re-verify pending payments created before ``older_than``.

        Unresolved gateway states are expired to failed, and so are references
        the gateway refuses to look up (a checkout that was never opened).
        Records are skipped only while the gateway is unavailable.

        Raises:
            GatewayRejected: The gateway refused our credentials; every lookup
                would fail the same way, so the sweep stops at that record.
        """
        summary = {"scanned": 0, "completed": 0, "failed": 0, "unchanged": 0, "skipped": 0}

        for payment in self.ledger.find_stale_pending(older_than, limit=limit):
            reference = payment.reference
            summary["scanned"] += 1
            try:
                report = gateway.verify_transaction(reference)
            except GatewayUnavailable as e:
                logger.warning("Sweep skipped %s: %s", reference, e.message)
                summary["skipped"] += 1
                continue
            except GatewayRejected as e:
                if e.details.get("status_code") in AUTH_REJECTION_STATUSES:
                    logger.error("Sweep aborted on %s: gateway refused credentials: %s", reference, e.message)
                    raise
                logger.info("Sweep %s: gateway has no usable transaction (%s)", reference, e.message)
                report = TransactionReport(reference=reference, outcome=GatewayOutcome.PENDING)

            if dry_run:
                target = self._target_status(payment, report, expire_unresolved=True)[0]
                logger.info("Sweep (dry run) %s -> %s", reference, target.value)
                summary[target.value] += 1
                continue

            result = self.apply_report(reference, report, source="sweep", expire_unresolved=True)
            if result.transitioned:
                summary[result.payment.status.value] += 1
            else:
                summary["unchanged"] += 1

        logger.info("Stale payment sweep finished: %s", summary)
        return summary

    # ─── Shared transition ───────────────────────────────────────────

    def apply_report(
        self,
        reference: str,
        report: TransactionReport,
        source: str,
        expire_unresolved: bool = False,
    ) -> ReconciliationResult:
        """Apply one gateway report to the payment identified by ``reference``."""
        payment = self.ledger.find_by_reference(reference)
        if payment is None:
            logger.error("%s report for unknown reference %s", source, reference)
            raise ReferenceNotFound(reference)

        target, reason = self._target_status(payment, report, expire_unresolved)
        if target is PaymentStatus.PENDING:
            logger.info("%s %s: gateway status '%s' unresolved, left pending", source, reference, report.gateway_status)
            return ReconciliationResult(payment, False, False)

        try:
            finalized = self.ledger.finalize(reference, target, report.raw_payload or None)
            if finalized is None:
                raise ReferenceNotFound(reference)

            granted = False
            if (
                finalized.transitioned
                and finalized.payment.status is PaymentStatus.COMPLETED
                and finalized.payment.content_type is ContentType.COURSE
            ):
                granted = self.grantor.grant(
                    finalized.payment.user_id,
                    finalized.payment.content_id,
                    finalized.payment.id,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payment = finalized.payment
        if not finalized.transitioned:
            logger.info(
                "%s %s: already %s, %s report ignored",
                source, reference, payment.status.value, target.value,
            )
            return ReconciliationResult(payment, False, False)

        logger.info("%s %s: pending -> %s (%s)", source, reference, payment.status.value, reason)
        self._audit_transition(payment, report, source, reason, granted)
        return ReconciliationResult(payment, True, granted)

    def _target_status(
        self,
        payment: PaymentRecord,
        report: TransactionReport,
        expire_unresolved: bool,
    ) -> tuple[PaymentStatus, str]:
        """Terminal status a report justifies, or PENDING when it justifies none."""
        if report.outcome is GatewayOutcome.SUCCESS:
            expected = to_minor_units(payment.amount)
            if report.amount is not None and report.amount != expected:
                logger.warning(
                    "Amount mismatch on %s: gateway %s, expected %s",
                    payment.reference, report.amount, expected,
                )
                return PaymentStatus.FAILED, "amount_mismatch"
            if report.currency and report.currency.upper() != payment.currency.upper():
                logger.warning(
                    "Currency mismatch on %s: gateway %s, expected %s",
                    payment.reference, report.currency, payment.currency,
                )
                return PaymentStatus.FAILED, "currency_mismatch"
            return PaymentStatus.COMPLETED, "gateway_success"

        if report.outcome is GatewayOutcome.FAILURE:
            return PaymentStatus.FAILED, "gateway_failure"

        if expire_unresolved:
            return PaymentStatus.FAILED, "expired"
        return PaymentStatus.PENDING, "unresolved"

    def _audit_transition(
        self,
        payment: PaymentRecord,
        report: TransactionReport,
        source: str,
        reason: str,
        granted: bool,
    ) -> None:
        action = "PAYMENT_COMPLETED" if payment.status is PaymentStatus.COMPLETED else "PAYMENT_FAILED"
        AuditService.log(
            self.db, payment.reference, action,
            payload={
                "payment_id": payment.id,
                "status": payment.status.value,
                "gateway_status": report.gateway_status,
                "gateway_amount": report.amount,
            },
            ip_address=self.ip_address,
            metadata={"source": source, "reason": reason},
        )
        if granted:
            AuditService.log(
                self.db, payment.reference, "ENTITLEMENT_GRANTED",
                payload={"user_id": payment.user_id, "course_id": payment.content_id, "payment_id": payment.id},
                ip_address=self.ip_address,
                metadata={"source": source},
            )
