from dental_edi.schemas.prior_auth import (
    Address, Submitter, PayerInfo, RequestingProvider, Subscriber, DependentPatient,
    AuthorizationDetails, ProcedureLine, Attachment, RenderingProvider,
    PriorAuthorizationRequest, PriorAuthValidationError, PriorAuthorizationResponse,
    PriorAuthBuildResult,
)
from dental_edi.schemas.eligibility import (
    EligibilityRequest, EligibilityResponse, DegradedResult, ClaimStatusResponse,
)
from dental_edi.schemas.remittance import (
    RemittanceAdjustment, RemittanceServiceLine, RemittanceClaim, RemittanceTransaction,
    ClaimProcessingDetail, ProcessingResult, RemittanceHistoryPage, PollAndProcessResult,
)

__all__ = [
    "Address",
    "Submitter",
    "PayerInfo",
    "RequestingProvider",
    "Subscriber",
    "DependentPatient",
    "AuthorizationDetails",
    "ProcedureLine",
    "Attachment",
    "RenderingProvider",
    "PriorAuthorizationRequest",
    "PriorAuthValidationError",
    "PriorAuthorizationResponse",
    "PriorAuthBuildResult",
    "EligibilityRequest",
    "EligibilityResponse",
    "DegradedResult",
    "ClaimStatusResponse",
    "RemittanceAdjustment",
    "RemittanceServiceLine",
    "RemittanceClaim",
    "RemittanceTransaction",
    "ClaimProcessingDetail",
    "ProcessingResult",
    "RemittanceHistoryPage",
    "PollAndProcessResult",
]
