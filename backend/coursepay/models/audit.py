"""
Audit Log Model - Append-only, tamper-evident trail of payment events.
Entries for one reference are SHA-256 hash chained.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON

from coursepay.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # Payment reference the entry belongs to
    subject = Column(String(200), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # Actions: PAYMENT_INITIATED, PAYMENT_COMPLETED, PAYMENT_FAILED,
    #          ENTITLEMENT_GRANTED

    payload_hash = Column(String(64))       # Chain hash of this entry
    previous_hash = Column(String(64))      # Chain hash of the previous entry for the subject

    ip_address = Column(String(45))

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
