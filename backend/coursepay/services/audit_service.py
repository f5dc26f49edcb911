"""
Audit Service - Manages the append-only, hash-chained payment audit trail.
"""
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from coursepay.database import storage_errors
from coursepay.models.audit import AuditLog
from coursepay.utils.hashing import generate_chain_hash


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        subject: str,
        action: str,
        payload: Optional[Dict] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Append an audit entry for ``subject`` and commit it.

        Call only after the state change being audited has been committed.

        Args:
            db: Database session.
            subject: Payment reference.
            action: Action identifier (e.g. PAYMENT_INITIATED).
            payload: Data hashed into the chain.
            ip_address: Client IP.
            metadata: Additional metadata stored in clear.

        Returns:
            The created AuditLog entry.
        """
        with storage_errors("audit logging"):
            last_entry = (
                db.query(AuditLog)
                .filter(AuditLog.subject == subject)
                .order_by(AuditLog.id.desc())
                .first()
            )
            previous_hash = last_entry.payload_hash if last_entry else ""

            entry = AuditLog(
                subject=subject,
                action=action,
                payload_hash=generate_chain_hash(payload or {}, previous_hash),
                previous_hash=previous_hash,
                ip_address=ip_address,
                log_metadata=metadata or {},
                timestamp=datetime.utcnow(),
            )

            db.add(entry)
            db.commit()
            db.refresh(entry)

        return entry

    @staticmethod
    def get_trail(db: Session, subject: str) -> list[AuditLog]:
        """Get the full audit trail for a subject, in insertion order."""
        with storage_errors("audit lookup"):
            return (
                db.query(AuditLog)
                .filter(AuditLog.subject == subject)
                .order_by(AuditLog.id.asc())
                .all()
            )

    @staticmethod
    def verify_chain(db: Session, subject: str) -> dict:
        """Verify the integrity of the audit chain for a subject.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, subject)

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
