from coursepay.services.gateway_client import PaystackClient, GatewayOutcome, TransactionReport
from coursepay.services.payment_ledger import PaymentLedger
from coursepay.services.entitlement_service import EntitlementGrantor
from coursepay.services.reconciliation_engine import ReconciliationEngine
from coursepay.services.audit_service import AuditService

__all__ = [
    "PaystackClient", "GatewayOutcome", "TransactionReport",
    "PaymentLedger", "EntitlementGrantor", "ReconciliationEngine", "AuditService",
]
