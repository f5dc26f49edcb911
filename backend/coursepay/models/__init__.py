from coursepay.models.payment import PaymentRecord, PaymentStatus, ContentType
from coursepay.models.enrollment import Enrollment
from coursepay.models.audit import AuditLog

__all__ = ["PaymentRecord", "PaymentStatus", "ContentType", "Enrollment", "AuditLog"]
