"""
Shared string enumerations.

StrEnum values compare equal to their plain-string column values, so
``request.status == RequestStatus.DRAFT`` works against loaded rows.
Pending statuses for approval levels are ``PENDING_<LEVEL>`` and are derived
from the configured chain (see ``services.level_chain``).
"""

from enum import StrEnum


class RequestStatus(StrEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING_ADMIN_REVIEW = "PENDING_ADMIN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT_BACK = "SENT_BACK"
    DISBURSED = "DISBURSED"


TERMINAL_STATUSES = frozenset({RequestStatus.REJECTED, RequestStatus.DISBURSED})


class StepStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class ApprovalAction(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT_BACK = "SENT_BACK"


class AdminReviewAction(StrEnum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ALLOW_RESUBMISSION = "ALLOW_RESUBMISSION"


class NotificationType(StrEnum):
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT_BACK = "SENT_BACK"
    DISBURSEMENT = "DISBURSEMENT"
    SLA_BREACH = "SLA_BREACH"
    SLA_WARNING = "SLA_WARNING"
    REQUEST_DELAYED = "REQUEST_DELAYED"
    ADMIN_REVIEW = "ADMIN_REVIEW"


class PaymentType(StrEnum):
    PETTY_CASH = "PETTY_CASH"
    INVOICE = "INVOICE"
    ADVANCE = "ADVANCE"
    REIMBURSEMENT = "REIMBURSEMENT"
    VENDOR_PAYMENT = "VENDOR_PAYMENT"
    SALARY = "SALARY"
    BONUS = "BONUS"
    CRITICAL = "CRITICAL"
    OTHER = "OTHER"


class PaymentMode(StrEnum):
    BANK_TRANSFER = "BANK_TRANSFER"
    NEFT = "NEFT"
    CHEQUE = "CHEQUE"
    UPI = "UPI"
    CASH = "CASH"
    DEMAND_DRAFT = "DEMAND_DRAFT"


class Currency(StrEnum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
