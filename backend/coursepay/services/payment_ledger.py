"""
Payment Ledger - Durable record of payment attempts.

The ledger never commits; callers own the transaction so a terminal transition
and the entitlement it triggers land together or not at all.
"""
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursepay.database import storage_errors
from coursepay.models.payment import ContentType, PaymentRecord, PaymentStatus
from coursepay.utils.logger import get_logger

logger = get_logger(__name__)

REFERENCE_ATTEMPTS = 3


def generate_reference(content_type: ContentType, content_id: str, user_id: str) -> str:
    """Build a payment reference: type_content_user_epochms_nonce."""
    return f"{ContentType(content_type).value}_{content_id}_{user_id}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class FinalizeResult(NamedTuple):
    payment: PaymentRecord
    transitioned: bool      # False when the record was already terminal


class PaymentLedger:
    """CRUD over PaymentRecord bound to one database session."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: str,
        content_id: str,
        content_type: ContentType,
        amount,
        currency: str,
    ) -> PaymentRecord:
        """Insert a pending record under a fresh, unique reference.

        The row is flushed, not committed. Must be the first write of the
        session's transaction: a reference collision rolls the session back
        before retrying with a new nonce.
        """
        last_error: Optional[IntegrityError] = None
        for _ in range(REFERENCE_ATTEMPTS):
            payment = PaymentRecord(
                user_id=user_id,
                content_id=content_id,
                content_type=ContentType(content_type),
                amount=Decimal(str(amount)),
                currency=currency,
                reference=generate_reference(content_type, content_id, user_id),
                status=PaymentStatus.PENDING,
            )
            try:
                with storage_errors("payment creation"):
                    self.db.add(payment)
                    self.db.flush()
            except IntegrityError as e:
                self.db.rollback()
                last_error = e
                logger.warning("Reference collision on %s, regenerating", payment.reference)
                continue
            return payment

        raise last_error

    def find_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        """Fresh read of a record; values cached in the session are overwritten."""
        with storage_errors("payment lookup"):
            return self.db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.reference == reference)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

    def finalize(self, reference: str, outcome: PaymentStatus, gateway_response: Optional[dict]) -> Optional[FinalizeResult]:
        """Move a pending record to ``outcome`` with a single compare-and-set.

        ``UPDATE payments ... WHERE reference = :ref AND status = 'pending'``.
        Exactly one concurrent caller can match the predicate. Every other
        caller gets the stored record back unchanged with ``transitioned=False``.

        Returns None when no record carries ``reference``.
        """
        outcome = PaymentStatus(outcome)
        if not outcome.is_terminal:
            raise ValueError("finalize needs a terminal outcome")

        with storage_errors("payment finalization"):
            result = self.db.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.reference == reference,
                    PaymentRecord.status == PaymentStatus.PENDING,
                )
                .values(
                    status=outcome,
                    verified_at=datetime.utcnow(),
                    gateway_response=gateway_response,
                )
                .execution_options(synchronize_session=False)
            )

        payment = self.find_by_reference(reference)
        if payment is None:
            return None
        return FinalizeResult(payment=payment, transitioned=result.rowcount == 1)

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> tuple[int, list[PaymentRecord]]:
        query = select(PaymentRecord).where(PaymentRecord.user_id == user_id)
        with storage_errors("payment history"):
            total = self.db.execute(
                select(func.count()).select_from(query.subquery())
            ).scalar_one()
            rows = self.db.execute(
                query.order_by(PaymentRecord.created_at.desc()).offset(offset).limit(limit)
            ).scalars().all()
        return total, list(rows)

    def search(
        self,
        search: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[int, list[PaymentRecord]]:
        """Admin listing: case-insensitive reference substring match and status filter."""
        query = select(PaymentRecord)
        if search:
            query = query.where(func.lower(PaymentRecord.reference).contains(search.lower(), autoescape=True))
        if status:
            query = query.where(PaymentRecord.status == PaymentStatus(status))

        with storage_errors("payment search"):
            total = self.db.execute(
                select(func.count()).select_from(query.subquery())
            ).scalar_one()
            rows = self.db.execute(
                query.order_by(PaymentRecord.created_at.desc()).offset(offset).limit(limit)
            ).scalars().all()
        return total, list(rows)

    def total_revenue(self) -> Decimal:
        """Sum of completed payment amounts."""
        with storage_errors("revenue summary"):
            total = self.db.execute(
                select(func.coalesce(func.sum(PaymentRecord.amount), 0))
                .where(PaymentRecord.status == PaymentStatus.COMPLETED)
            ).scalar_one()
        return Decimal(str(total))

    def find_stale_pending(self, older_than: datetime, limit: int = 100) -> list[PaymentRecord]:
        """Pending records created before ``older_than``, oldest first."""
        with storage_errors("stale payment scan"):
            rows = self.db.execute(
                select(PaymentRecord)
                .where(
                    PaymentRecord.status == PaymentStatus.PENDING,
                    PaymentRecord.created_at < older_than,
                )
                .order_by(PaymentRecord.created_at.asc())
                .limit(limit)
            ).scalars().all()
        return list(rows)
