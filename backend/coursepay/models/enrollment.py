"""
Enrollment Model - Durable course entitlement.
(user_id, course_id) is unique; granting twice is a no-op.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint

from coursepay.database import Base


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False)

    # Payment that authorized the grant; null for free content
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True)

    enrolled_at = Column(DateTime, default=datetime.utcnow)
