"""
Payment Record Model - One row per attempted purchase.

``reference`` is unique at the storage layer; it is the lookup key for both
the webhook and the verify reconciliation paths. ``status`` only ever moves
forward, from pending to exactly one terminal state.
"""
import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime, JSON, Enum

from coursepay.database import Base


class ContentType(str, enum.Enum):
    COURSE = "course"
    VIDEO = "video"
    QUIZ = "quiz"
    NOTE = "note"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


def _enum_column(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


class PaymentRecord(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)

    content_id = Column(String(64), nullable=False)
    content_type = Column(_enum_column(ContentType), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)      # Major units (e.g. KES 5000.00)
    currency = Column(String(3), nullable=False, default="KES")

    reference = Column(String(200), unique=True, nullable=False, index=True)
    status = Column(_enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)

    verified_at = Column(DateTime, nullable=True)         # Set once, on leaving pending
    gateway_response = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
