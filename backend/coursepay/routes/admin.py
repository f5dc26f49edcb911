"""
Admin Routes - Payment management and audit trail access.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from coursepay.database import get_db
from coursepay.models.payment import PaymentStatus
from coursepay.schemas.schemas import AdminPaymentListResponse, AuditLogEntry, PaymentOut
from coursepay.services.audit_service import AuditService
from coursepay.services.payment_ledger import PaymentLedger
from coursepay.utils.auth import require_admin

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/payments", response_model=AdminPaymentListResponse)
def list_payments(
    search: Optional[str] = Query(None, max_length=200, description="Reference substring"),
    status: Optional[PaymentStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """List all payments with total revenue from completed ones."""
    ledger = PaymentLedger(db)
    total, payments = ledger.search(search=search, status=status, limit=limit, offset=offset)

    return AdminPaymentListResponse(
        total=total,
        total_revenue=float(ledger.total_revenue()),
        payments=[PaymentOut.model_validate(p) for p in payments],
    )


@router.get("/audit/{reference}", response_model=list[AuditLogEntry])
def get_audit_trail(reference: str, db: Session = Depends(get_db)):
    """Get the full audit trail for a payment reference."""
    logs = AuditService.get_trail(db, reference)
    if not logs:
        raise HTTPException(status_code=404, detail="No audit logs found for this reference")
    return logs


@router.get("/audit/{reference}/verify")
def verify_audit_chain(reference: str, db: Session = Depends(get_db)):
    """Verify the integrity of the audit hash chain for a payment reference."""
    return AuditService.verify_chain(db, reference)
