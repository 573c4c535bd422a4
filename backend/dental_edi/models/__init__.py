from dental_edi.models.claim import Claim
from dental_edi.models.invoice import Invoice, Payment
from dental_edi.models.remittance_posting import RemittancePosting
from dental_edi.models.audit_log import AuditLog

__all__ = [
    "Claim",
    "Invoice",
    "Payment",
    "RemittancePosting",
    "AuditLog",
]
